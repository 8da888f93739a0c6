"""Domain models for fw_payment — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class PaymentTransaction:
    id: str
    job_id: str
    idempotency_key: str
    amount_tzs: int
    platform_fee_tzs: int
    vat_tzs: int
    net_to_fundi_tzs: int
    direction: str                 # TxDirection value
    status: str                    # TxStatus value
    payer_id: str | None = None
    payee_id: str | None = None
    payment_method: str | None = None
    phone_number: str | None = None
    gateway_reference: str | None = None
    gateway_raw_response: dict[str, Any] | None = None
    failure_reason: str | None = None
    retry_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Wallet:
    fundi_id: str
    balance_tzs: int = 0           # available for payout
    pending_tzs: int = 0           # debited, payout in flight
    total_earned_tzs: int = 0
    updated_at: datetime | None = None


@dataclass
class PayoutRequest:
    id: str
    fundi_id: str
    amount_tzs: int
    payout_network: str
    payout_number: str
    status: str                    # PayoutStatus value
    gateway_reference: str | None = None
    failure_reason: str | None = None
    requested_at: datetime | None = None
    processed_at: datetime | None = None
