"""fw_job REST API — booking, status transitions and scope changes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.actor import Actor
from src.fw_common.database import get_db_session
from src.fw_common.enums import JobStatus
from src.fw_common.response import ApiResponse, success_response
from src.fw_gateway.auth.dependencies import get_current_actor, require_customer, require_fundi
from src.fw_job.application.schemas import (
    CreateJobRequest,
    JobListResponse,
    JobResponse,
    ScopeChangeRequest,
    TransitionRequest,
)
from src.fw_job.application.service import JobService

router = APIRouter(prefix="/jobs", tags=["jobs"])

_service = JobService()


@router.post("", status_code=201)
async def create_job(
    body: CreateJobRequest,
    actor: Annotated[Actor, Depends(require_customer)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.create_job(db, actor, body)
    return success_response(JobResponse.from_domain(job).model_dump(), request)


@router.get("")
async def list_jobs(
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    status: JobStatus | None = Query(None, description="Filter by job status"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    jobs = await _service.list_jobs(db, actor, status, limit, offset)
    data = JobListResponse(
        items=[JobResponse.from_domain(j) for j in jobs], limit=limit, offset=offset
    )
    return success_response(data.model_dump(), request)


@router.get("/{job_id}")
async def get_job(
    job_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.get_job(db, job_id, actor)
    return success_response(JobResponse.from_domain(job).model_dump(), request)


@router.post("/{job_id}/transition")
async def transition_job(
    job_id: str,
    body: TransitionRequest,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.transition(
        db,
        job_id,
        actor,
        body.status,
        reason=body.reason,
        completion_photos=body.completion_photos,
        fundi_notes=body.fundi_notes,
        fundi_id=body.fundi_id,
    )
    return success_response(JobResponse.from_domain(job).model_dump(), request)


@router.post("/{job_id}/scope-change")
async def request_scope_change(
    job_id: str,
    body: ScopeChangeRequest,
    actor: Annotated[Actor, Depends(require_fundi)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.request_scope_change(db, job_id, actor, body.amount_tzs, body.reason)
    return success_response(JobResponse.from_domain(job).model_dump(), request)


@router.post("/{job_id}/scope-change/approve")
async def approve_scope_change(
    job_id: str,
    actor: Annotated[Actor, Depends(require_customer)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.approve_scope_change(db, job_id, actor)
    return success_response(JobResponse.from_domain(job).model_dump(), request)


@router.post("/{job_id}/scope-change/reject")
async def reject_scope_change(
    job_id: str,
    actor: Annotated[Actor, Depends(require_customer)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    job = await _service.reject_scope_change(db, job_id, actor)
    return success_response(JobResponse.from_domain(job).model_dump(), request)
