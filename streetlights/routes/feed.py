# streetlights/routes/feed.py
from typing import List, Union

from fastapi import APIRouter, Depends

from streetlights.config import LOG_ENGINE
from streetlights.dependencies import get_state, require_admin
from streetlights.schemas import FeedEvent
from streetlights.services.state import EngineState

router = APIRouter(tags=["feed"])


@router.post("/feed")
async def post_feed(
    payload: Union[FeedEvent, List[FeedEvent]],
    state: EngineState = Depends(get_state),
    _=Depends(require_admin),
):
    """
    Realtime webhook: one event or a batch. Replays and unknown deletes change nothing.
    The sender authenticates with the admin token (x-admin-token).
    """
    events = payload if isinstance(payload, list) else [payload]
    changed = 0
    for ev in events:
        if state.apply_event(ev):
            changed += 1
    if LOG_ENGINE:
        print(f"[feed] received={len(events)} changed={changed}")
    return {"ok": True, "received": len(events), "changed": changed}
