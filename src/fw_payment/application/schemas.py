"""Pydantic schemas for fw_payment API and gateway callbacks."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from src.fw_common.datetime_utils import isoformat_or_none
from src.fw_common.money import tzs_display
from src.fw_payment.domain.models import PaymentTransaction, PayoutRequest, Wallet

PaymentMethod = Literal["mpesa", "tigopesa", "airtelmoney", "halopesa", "card"]

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class InitiatePaymentRequest(BaseModel):
    job_id: str
    payment_method: PaymentMethod
    phone_number: str = Field(..., pattern=r"^\+?255\d{9}$")


class TipRequest(BaseModel):
    amount_tzs: int = Field(..., gt=0)
    payment_method: PaymentMethod
    phone_number: str = Field(..., pattern=r"^\+?255\d{9}$")


class PayoutRequestBody(BaseModel):
    amount_tzs: int = Field(..., gt=0)
    payout_network: PaymentMethod
    payout_number: str = Field(..., pattern=r"^\+?255\d{9}$")


class GatewayCallback(BaseModel):
    """Selcom webhook body. Unknown fields are kept for the raw audit copy."""

    model_config = ConfigDict(extra="allow")

    order_id: str = Field(..., min_length=1)
    transid: str | None = None
    reference: str | None = None
    result: str | None = None
    resultcode: str | None = None
    payment_status: str | None = None
    amount: int | None = None
    msisdn: str | None = None
    channel: str | None = None

    @property
    def succeeded(self) -> bool:
        if self.resultcode == "000":
            return True
        return (self.payment_status or "").upper() in {"COMPLETED", "SUCCESS"}

    @property
    def failure_reason(self) -> str:
        return self.result or self.payment_status or f"resultcode {self.resultcode}"


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    id: str
    job_id: str
    direction: str
    status: str
    amount_tzs: int
    amount_display: str
    platform_fee_tzs: int
    vat_tzs: int
    net_to_fundi_tzs: int
    gateway_reference: str | None
    failure_reason: str | None
    created_at: str | None

    @classmethod
    def from_domain(cls, tx: PaymentTransaction) -> "TransactionResponse":
        return cls(
            id=tx.id,
            job_id=tx.job_id,
            direction=tx.direction,
            status=tx.status,
            amount_tzs=tx.amount_tzs,
            amount_display=tzs_display(tx.amount_tzs),
            platform_fee_tzs=tx.platform_fee_tzs,
            vat_tzs=tx.vat_tzs,
            net_to_fundi_tzs=tx.net_to_fundi_tzs,
            gateway_reference=tx.gateway_reference,
            failure_reason=tx.failure_reason,
            created_at=isoformat_or_none(tx.created_at),
        )


class WalletResponse(BaseModel):
    fundi_id: str
    balance_tzs: int
    balance_display: str
    pending_tzs: int
    total_earned_tzs: int

    @classmethod
    def from_domain(cls, wallet: Wallet) -> "WalletResponse":
        return cls(
            fundi_id=wallet.fundi_id,
            balance_tzs=wallet.balance_tzs,
            balance_display=tzs_display(wallet.balance_tzs),
            pending_tzs=wallet.pending_tzs,
            total_earned_tzs=wallet.total_earned_tzs,
        )


class PayoutResponse(BaseModel):
    id: str
    amount_tzs: int
    amount_display: str
    payout_network: str
    payout_number: str
    status: str
    failure_reason: str | None
    requested_at: str | None
    processed_at: str | None

    @classmethod
    def from_domain(cls, payout: PayoutRequest) -> "PayoutResponse":
        return cls(
            id=payout.id,
            amount_tzs=payout.amount_tzs,
            amount_display=tzs_display(payout.amount_tzs),
            payout_network=payout.payout_network,
            payout_number=payout.payout_number,
            status=payout.status,
            failure_reason=payout.failure_reason,
            requested_at=isoformat_or_none(payout.requested_at),
            processed_at=isoformat_or_none(payout.processed_at),
        )
