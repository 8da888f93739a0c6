"""Pydantic schemas for fw_job API."""

from datetime import datetime

from pydantic import BaseModel, Field

from src.fw_common.datetime_utils import isoformat_or_none
from src.fw_common.enums import JobStatus
from src.fw_common.money import tzs_display
from src.fw_job.domain.models import Job

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ServiceItem(BaseModel):
    fundi_service_id: str
    quantity: int = Field(1, ge=1, le=100)


class CreateJobRequest(BaseModel):
    category: str = Field(..., min_length=1, max_length=64)
    service_items: list[ServiceItem] = Field(default_factory=list, max_length=20)
    description_text: str = Field("", max_length=2000)
    description_photos: list[str] = Field(default_factory=list, max_length=10)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address_text: str = Field("", max_length=500)
    scheduled_at: datetime | None = None
    payment_method: str | None = None


class TransitionRequest(BaseModel):
    status: JobStatus
    reason: str | None = Field(None, max_length=500)
    completion_photos: list[str] = Field(default_factory=list, max_length=10)
    fundi_notes: str | None = Field(None, max_length=2000)
    # Only for admins accepting on a fundi's behalf
    fundi_id: str | None = None


class ScopeChangeRequest(BaseModel):
    amount_tzs: int = Field(..., gt=0)
    reason: str = Field(..., min_length=3, max_length=500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class JobResponse(BaseModel):
    id: str
    job_reference: str
    status: str
    category: str
    customer_id: str
    fundi_id: str | None
    quoted_amount_tzs: int
    quoted_amount_display: str
    platform_fee_tzs: int
    vat_tzs: int
    net_to_fundi_tzs: int
    address_text: str
    scheduled_at: str | None
    accepted_at: str | None
    en_route_at: str | None
    arrived_at: str | None
    started_at: str | None
    completed_at: str | None
    cancelled_at: str | None
    disputed_at: str | None
    escrow_release_at: str | None
    scope_change_amount_tzs: int | None
    scope_change_status: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            job_reference=job.job_reference,
            status=job.status,
            category=job.category,
            customer_id=job.customer_id,
            fundi_id=job.fundi_id,
            quoted_amount_tzs=job.quoted_amount_tzs,
            quoted_amount_display=tzs_display(job.quoted_amount_tzs),
            platform_fee_tzs=job.platform_fee_tzs,
            vat_tzs=job.vat_tzs,
            net_to_fundi_tzs=job.net_to_fundi_tzs,
            address_text=job.address_text,
            scheduled_at=isoformat_or_none(job.scheduled_at),
            accepted_at=isoformat_or_none(job.accepted_at),
            en_route_at=isoformat_or_none(job.en_route_at),
            arrived_at=isoformat_or_none(job.arrived_at),
            started_at=isoformat_or_none(job.started_at),
            completed_at=isoformat_or_none(job.completed_at),
            cancelled_at=isoformat_or_none(job.cancelled_at),
            disputed_at=isoformat_or_none(job.disputed_at),
            escrow_release_at=isoformat_or_none(job.escrow_release_at),
            scope_change_amount_tzs=job.scope_change_amount_tzs,
            scope_change_status=job.scope_change_status,
            created_at=isoformat_or_none(job.created_at),
        )


class JobListResponse(BaseModel):
    items: list[JobResponse]
    limit: int
    offset: int
