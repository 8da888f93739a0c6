"""Domain models for fw_dispute — pure dataclasses."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Dispute:
    id: str
    job_id: str
    raised_by_id: str
    status: str                                 # DisputeStatus value
    decision: str | None = None                 # DisputeDecision value
    customer_statement: str | None = None
    fundi_statement: str | None = None
    customer_evidence: list[str] = field(default_factory=list)
    fundi_evidence: list[str] = field(default_factory=list)
    resolution_notes: str | None = None
    resolved_by_id: str | None = None
    resolved_at: datetime | None = None
    resolution_amount_customer_tzs: int | None = None
    resolution_amount_fundi_tzs: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Settlement:
    """Fund movement decided for a dispute, computed before anything is written."""
    status: str                  # DisputeStatus the dispute ends in
    escrow_status: str | None    # TxStatus for the held escrow, None = untouched
    customer_amount: int = 0     # refunded to the customer
    fundi_amount: int = 0        # credited to the fundi wallet
