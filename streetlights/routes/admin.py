# streetlights/routes/admin.py
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from streetlights.dependencies import get_pipeline, get_state, http_error, require_admin
from streetlights.errors import EngineError
from streetlights.scheduler import reload_state
from streetlights.schemas import OfficialLightIn, Session
from streetlights.services.state import EngineState
from streetlights.services.submission import SubmissionPipeline

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/lights/{light_id}/fix")
async def fix_light(
    light_id: str,
    actor: Optional[Session] = Body(None, embed=True),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    _=Depends(require_admin),
):
    """Ferme le cycle : une ligne `fix` par id (toute la grappe pour une lumière communautaire)."""
    ids = pipeline.ids_for_light(light_id)
    try:
        fixed_at = await pipeline.mark_fixed(light_id, actor)
    except EngineError as e:
        raise http_error(e) from e
    return {"ok": True, "light_ids": ids, "fixed_at": fixed_at}


@router.post("/lights/{light_id}/reopen")
async def reopen_light(
    light_id: str,
    actor: Optional[Session] = Body(None, embed=True),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    _=Depends(require_admin),
):
    try:
        ids = await pipeline.reopen_light(light_id, actor)
    except EngineError as e:
        raise http_error(e) from e
    return {"ok": True, "light_ids": ids}


@router.post("/official_lights")
async def add_official_lights(
    points: List[OfficialLightIn] = Body(..., embed=True),
    actor: Optional[Session] = Body(None, embed=True),
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    _=Depends(require_admin),
):
    if not points:
        raise HTTPException(status_code=400, detail="points requis")
    try:
        saved = await pipeline.add_official_lights([(p.lat, p.lng) for p in points], actor)
    except EngineError as e:
        raise http_error(e) from e
    return {"ok": True, "created": [ol.model_dump() for ol in saved]}


@router.delete("/official_lights/{light_id}")
async def delete_official_light(
    light_id: str,
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    _=Depends(require_admin),
):
    try:
        deleted = await pipeline.delete_official_light(light_id)
    except EngineError as e:
        raise http_error(e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail="light not found")
    return {"ok": True, "light_id": light_id}


@router.post("/reload")
async def reload(state: EngineState = Depends(get_state), _=Depends(require_admin)):
    ok = await reload_state(state)
    if not ok:
        raise HTTPException(status_code=503, detail="reload failed")
    return {"ok": True, "reports": len(state.reports), "officials": len(state.officials)}
