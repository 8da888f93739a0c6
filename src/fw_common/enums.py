"""Global enums — must match DB CHECK constraints exactly."""

from enum import Enum


class JobStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class Role(str, Enum):
    CUSTOMER = "customer"
    FUNDI = "fundi"
    ADMIN = "admin"
    SYSTEM = "system"  # internal actor used by scheduled handlers and disputes


class ScopeChangeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VerificationTier(str, Enum):
    """Ordered: the matching engine requires tier2_id or above."""
    TIER1_PHONE = "tier1_phone"
    TIER2_ID = "tier2_id"
    TIER3_CERTIFIED = "tier3_certified"


class OfferResponse(str, Enum):
    OFFERED = "offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class TxDirection(str, Enum):
    CUSTOMER_TO_ESCROW = "customer_to_escrow"
    ESCROW_TO_FUNDI = "escrow_to_fundi"
    PLATFORM_FEE = "platform_fee"
    TIP = "tip"
    REFUND = "refund"


class TxStatus(str, Enum):
    INITIATED = "initiated"
    PROCESSING = "processing"
    HELD_ESCROW = "held_escrow"
    RELEASED = "released"
    REFUNDED = "refunded"
    FAILED = "failed"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED_CUSTOMER = "resolved_customer"
    RESOLVED_FUNDI = "resolved_fundi"
    ESCALATED = "escalated"


class DisputeDecision(str, Enum):
    RELEASE_TO_FUNDI = "release_to_fundi"
    REFUND_CUSTOMER = "refund_customer"
    SPLIT = "split"
    ESCALATE = "escalate"


class NotificationTemplate(str, Enum):
    JOB_REQUEST = "JOB_REQUEST"
    JOB_CONFIRMED = "JOB_CONFIRMED"
    FUNDI_EN_ROUTE = "FUNDI_EN_ROUTE"
    FUNDI_ARRIVED = "FUNDI_ARRIVED"
    JOB_COMPLETED = "JOB_COMPLETED"
    JOB_CANCELLED = "JOB_CANCELLED"
    NO_FUNDI_AVAILABLE = "NO_FUNDI_AVAILABLE"
    SCOPE_CHANGE_REQUESTED = "SCOPE_CHANGE_REQUESTED"
    PAYMENT_RELEASED = "PAYMENT_RELEASED"
    DISPUTE_OPENED = "DISPUTE_OPENED"
    DISPUTE_RESOLVED = "DISPUTE_RESOLVED"
    PAYOUT_COMPLETED = "PAYOUT_COMPLETED"
    PAYOUT_FAILED = "PAYOUT_FAILED"
