"""fw_dispute REST API — party endpoints under /disputes, review under /admin/disputes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.actor import Actor
from src.fw_common.database import get_db_session
from src.fw_common.enums import DisputeStatus
from src.fw_common.response import ApiResponse, success_response
from src.fw_dispute.application.schemas import (
    DisputeResponse,
    EvidenceRequest,
    RaiseDisputeRequest,
    ResolveDisputeRequest,
)
from src.fw_dispute.application.service import DisputeService
from src.fw_gateway.auth.dependencies import get_current_actor, require_admin

router = APIRouter(prefix="/disputes", tags=["disputes"])
admin_router = APIRouter(prefix="/admin/disputes", tags=["admin"])

_service = DisputeService()


@router.post("", status_code=201)
async def raise_dispute(
    body: RaiseDisputeRequest,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    dispute = await _service.raise_dispute(db, body.job_id, actor, body.statement, body.evidence)
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@router.get("/{dispute_id}")
async def get_dispute(
    dispute_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    dispute = await _service.get_dispute(db, dispute_id, actor)
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@router.post("/{dispute_id}/evidence")
async def submit_evidence(
    dispute_id: str,
    body: EvidenceRequest,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    dispute = await _service.submit_evidence(
        db, dispute_id, actor, body.statement, body.evidence
    )
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@admin_router.get("")
async def list_disputes(
    _admin: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    status: DisputeStatus | None = Query(None, description="Filter by dispute status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    disputes = await _service.list_disputes(db, status, limit, offset)
    items = [DisputeResponse.from_domain(d).model_dump() for d in disputes]
    return success_response({"items": items, "limit": limit, "offset": offset}, request)


@admin_router.post("/{dispute_id}/review")
async def start_review(
    dispute_id: str,
    admin: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    dispute = await _service.start_review(db, dispute_id, admin)
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)


@admin_router.post("/{dispute_id}/resolve")
async def resolve_dispute(
    dispute_id: str,
    body: ResolveDisputeRequest,
    admin: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    dispute = await _service.resolve(
        db,
        dispute_id,
        admin,
        body.decision,
        body.notes,
        customer_amount=body.customer_amount_tzs,
        worker_amount=body.fundi_amount_tzs,
    )
    return success_response(DisputeResponse.from_domain(dispute).model_dump(), request)
