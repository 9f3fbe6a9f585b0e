# streetlights/routes/report.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from streetlights.dependencies import check_session, get_pipeline, http_error
from streetlights.errors import EngineError
from streetlights.schemas import BulkReportIn, ReportDraft, ReportIn, WorkingIn
from streetlights.services.submission import SubmissionPipeline

router = APIRouter(tags=["report"])


@router.post("/report")
async def post_report(
    payload: ReportIn,
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    x_user_id: Optional[str] = Header(None),
):
    """
    Un signalement sur une lumière.
    - sans light_id : rattaché à la lumière la plus proche (25 m)
    - 401 si la session ne correspond pas à x-user-id
    - 428 si l'invité n'a pas laissé de contact (nom + téléphone ou email)
    - 409 si déjà signalé dans ce cycle
    """
    session = check_session(payload.session, x_user_id)
    draft = ReportDraft(lat=payload.lat, lng=payload.lng, light_id=payload.light_id,
                        type=payload.type, note=payload.note)
    try:
        submitted = await pipeline.submit_report(draft, session, payload.guest)
    except EngineError as e:
        raise http_error(e) from e
    return {
        "ok": True,
        "id": submitted.report.id,
        "light_id": submitted.report.light_id,
        "report_type": submitted.report_type,
        "ts": submitted.report.ts,
    }


@router.post("/report/bulk")
async def post_report_bulk(
    payload: BulkReportIn,
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    x_user_id: Optional[str] = Header(None),
):
    """Plusieurs lumières officielles d'un coup ; compte ok / ignorées / échecs."""
    if not payload.light_ids:
        raise HTTPException(status_code=400, detail="light_ids requis")
    session = check_session(payload.session, x_user_id)
    try:
        result = await pipeline.submit_bulk(
            payload.light_ids, payload.type, payload.note, session, payload.guest
        )
    except EngineError as e:
        raise http_error(e) from e
    return result.model_dump()


@router.post("/lights/{light_id}/working")
async def post_working(
    light_id: str,
    payload: WorkingIn,
    pipeline: SubmissionPipeline = Depends(get_pipeline),
    x_user_id: Optional[str] = Header(None),
):
    session = check_session(payload.session, x_user_id)
    try:
        submitted = await pipeline.submit_working(light_id, session, payload.guest)
    except EngineError as e:
        raise http_error(e) from e
    return {"ok": True, "id": submitted.report.id, "report_type": submitted.report_type}
