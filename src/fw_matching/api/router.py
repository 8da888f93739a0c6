"""fw_matching REST API — declining an offer and admin re-dispatch."""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.actor import Actor
from src.fw_common.database import get_db_session
from src.fw_common.response import ApiResponse, success_response
from src.fw_gateway.auth.dependencies import require_admin, require_fundi
from src.fw_matching.application.dispatcher import DispatchEngine
from src.fw_matching.domain.models import DispatchResult

router = APIRouter(tags=["dispatch"])

_engine = DispatchEngine()


def _result_dict(result: DispatchResult) -> dict[str, object]:
    candidate = result.candidate
    return {
        "assigned": result.assigned,
        "reason": result.reason,
        "fundi_id": candidate.fundi_id if candidate else None,
        "distance_km": round(candidate.distance_km, 2) if candidate else None,
        "score": round(candidate.score, 4) if candidate else None,
    }


@router.post("/jobs/{job_id}/decline")
async def decline_offer(
    job_id: str,
    actor: Annotated[Actor, Depends(require_fundi)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    await _engine.decline(db, job_id, actor)
    # Who gets the job next is not the declining fundi's business
    return success_response({"job_id": job_id, "declined": True}, request)


@router.post("/admin/jobs/{job_id}/dispatch")
async def redispatch(
    job_id: str,
    _admin: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    result = await _engine.dispatch(db, job_id)
    return success_response(_result_dict(result), request)
