# streetlights/routes/map.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from streetlights.dependencies import get_cooldowns, get_state, is_admin_token
from streetlights.schemas import GuestInfo, Session
from streetlights.services import identity
from streetlights.services.cooldown import AnonymousCooldowns
from streetlights.services.lights import coords_for_light_id
from streetlights.services.state import EngineState
from streetlights.services.status import derive_status, light_history

router = APIRouter(tags=["map"])


def _viewer_key(user_id: Optional[str], email: Optional[str], phone: Optional[str], name: Optional[str]) -> Optional[str]:
    if (user_id or "").strip():
        return identity.resolve(Session(user_id=user_id.strip()), None)
    return identity.resolve(None, GuestInfo(name=name or "", email=email, phone=phone))


@router.get("/map")
async def get_map(
    user_id: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    x_admin_token: Optional[str] = Header(None),
    state: EngineState = Depends(get_state),
):
    """
    Statut de toutes les lumières (officielles + communautaires).
    Les couleurs des lumières officielles dépendent du visiteur.
    """
    snap = state.snapshot()
    statuses = derive_status(
        snap.officials, snap.reports, snap.actions, snap.fixed,
        viewer_key=_viewer_key(user_id, email, phone, name),
        is_admin=is_admin_token(x_admin_token),
    )
    lights = [s.model_dump() for s in statuses.values()]
    return {
        "lights": lights,
        "counts": {
            "official": sum(1 for s in lights if s["is_official"]),
            "community": sum(1 for s in lights if not s["is_official"]),
            "open": sum(1 for s in lights if not s["is_fixed"]),
        },
        "loaded_at": state.loaded_at,
    }


@router.get("/lights/{light_id}")
async def get_light(
    light_id: str,
    user_id: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    x_admin_token: Optional[str] = Header(None),
    state: EngineState = Depends(get_state),
    cooldowns: AnonymousCooldowns = Depends(get_cooldowns),
):
    snap = state.snapshot()
    statuses = derive_status(
        snap.officials, snap.reports, snap.actions, snap.fixed,
        viewer_key=_viewer_key(user_id, email, phone, name),
        is_admin=is_admin_token(x_admin_token),
    )
    status = statuses.get(light_id)
    if status is None:
        coords = coords_for_light_id(light_id, snap.reports, snap.officials)
        if coords is None:
            raise HTTPException(status_code=404, detail="light not found")
        # absorbée par une autre grappe : historique seulement
        lat, lng, is_official = coords
        return {
            "light_id": light_id,
            "lat": lat,
            "lng": lng,
            "is_official": is_official,
            "status": None,
            "history": light_history(light_id, snap.reports, snap.actions),
            "recently_reported": cooldowns.is_cooling(light_id),
        }

    return {
        "light_id": light_id,
        "lat": status.lat,
        "lng": status.lng,
        "is_official": status.is_official,
        "status": status.model_dump(),
        "history": light_history(light_id, snap.reports, snap.actions),
        "recently_reported": cooldowns.is_cooling(light_id),
    }
