# streetlights/dependencies.py
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from streetlights.config import ADMIN_TOKEN, REQUIRE_USER_HEADER
from streetlights.crud import SqlStore
from streetlights.db import get_db
from streetlights.errors import (
    CooldownDenied,
    EngineError,
    IdentityMissingError,
    StoreConstraintError,
    ValidationError,
)
from streetlights.schemas import Session
from streetlights.services.cooldown import AnonymousCooldowns
from streetlights.services.state import EngineState
from streetlights.services.submission import SubmissionPipeline


def get_state(request: Request) -> EngineState:
    state = getattr(request.app.state, "engine", None)
    if state is None:
        state = EngineState()
        request.app.state.engine = state
    return state


def get_cooldowns(request: Request) -> AnonymousCooldowns:
    cd = getattr(request.app.state, "cooldowns", None)
    if cd is None:
        cd = AnonymousCooldowns()
        request.app.state.cooldowns = cd
    return cd


async def get_store(db: AsyncSession = Depends(get_db)) -> SqlStore:
    return SqlStore(db)


def get_pipeline(
    state: EngineState = Depends(get_state),
    store: SqlStore = Depends(get_store),
    cooldowns: AnonymousCooldowns = Depends(get_cooldowns),
) -> SubmissionPipeline:
    # HTTP has no dialog to open: missing contact goes back to the client (428)
    return SubmissionPipeline(state, store, request_contact=None, cooldowns=cooldowns)


def is_admin_token(token: Optional[str]) -> bool:
    return bool(ADMIN_TOKEN) and (token or "").strip() == ADMIN_TOKEN


async def require_admin(x_admin_token: str = Header(None)) -> bool:
    """
    Compares the x-admin-token header with ADMIN_TOKEN.
    With no ADMIN_TOKEN configured nothing is required (dev).
    """
    if not ADMIN_TOKEN:
        return True
    if not is_admin_token(x_admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")
    return True


def check_session(session: Optional[Session], x_user_id: Optional[str]) -> Optional[Session]:
    """
    A session is taken as the client sent it unless the auth proxy forwarded
    the verified user id (x-user-id); then both must agree.
    """
    if session is None or not session.user_id:
        return session
    forwarded = (x_user_id or "").strip()
    if not forwarded:
        if REQUIRE_USER_HEADER:
            raise HTTPException(status_code=401, detail="session not verified")
        return session
    if forwarded != session.user_id:
        raise HTTPException(status_code=401, detail="session mismatch")
    return session


def http_error(e: EngineError) -> HTTPException:
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, IdentityMissingError):
        return HTTPException(status_code=428, detail="contact_required")
    if isinstance(e, CooldownDenied):
        return HTTPException(status_code=409, detail="already_reported_this_cycle")
    if isinstance(e, StoreConstraintError):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=503, detail=f"store unavailable: {e}")
