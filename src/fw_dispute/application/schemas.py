"""Pydantic schemas for fw_dispute API."""

from pydantic import BaseModel, Field, model_validator

from src.fw_common.datetime_utils import isoformat_or_none
from src.fw_common.enums import DisputeDecision
from src.fw_dispute.domain.models import Dispute

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RaiseDisputeRequest(BaseModel):
    job_id: str
    statement: str = Field(..., min_length=10, max_length=2000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class EvidenceRequest(BaseModel):
    statement: str | None = Field(None, max_length=2000)
    evidence: list[str] = Field(default_factory=list, max_length=10)


class ResolveDisputeRequest(BaseModel):
    decision: DisputeDecision
    notes: str = Field(..., min_length=3, max_length=2000)
    customer_amount_tzs: int | None = Field(None, ge=0)
    fundi_amount_tzs: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def _split_needs_amount(self) -> "ResolveDisputeRequest":
        if self.decision is DisputeDecision.SPLIT and self.fundi_amount_tzs is None:
            raise ValueError("fundi_amount_tzs is required for a split decision")
        return self


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DisputeResponse(BaseModel):
    id: str
    job_id: str
    raised_by_id: str
    status: str
    decision: str | None
    customer_statement: str | None
    fundi_statement: str | None
    customer_evidence: list[str]
    fundi_evidence: list[str]
    resolution_notes: str | None
    resolved_by_id: str | None
    resolved_at: str | None
    resolution_amount_customer_tzs: int | None
    resolution_amount_fundi_tzs: int | None
    created_at: str | None

    @classmethod
    def from_domain(cls, dispute: Dispute) -> "DisputeResponse":
        return cls(
            id=dispute.id,
            job_id=dispute.job_id,
            raised_by_id=dispute.raised_by_id,
            status=dispute.status,
            decision=dispute.decision,
            customer_statement=dispute.customer_statement,
            fundi_statement=dispute.fundi_statement,
            customer_evidence=dispute.customer_evidence,
            fundi_evidence=dispute.fundi_evidence,
            resolution_notes=dispute.resolution_notes,
            resolved_by_id=dispute.resolved_by_id,
            resolved_at=isoformat_or_none(dispute.resolved_at),
            resolution_amount_customer_tzs=dispute.resolution_amount_customer_tzs,
            resolution_amount_fundi_tzs=dispute.resolution_amount_fundi_tzs,
            created_at=isoformat_or_none(dispute.created_at),
        )
