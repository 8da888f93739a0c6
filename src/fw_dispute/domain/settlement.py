"""Decision → fund movement mapping for dispute resolution.

    release_to_fundi  escrow released, full net to the fundi     → resolved_fundi
    refund_customer   escrow refunded, full gross to the customer → resolved_customer
    split             escrow released, worker_amount to the fundi,
                      customer_amount refunded                    → resolved_customer
    escalate          nothing moves                                → escalated

A split may not hand out more than the customer paid (gross). Allocating
less is allowed; the remainder stays with the platform.
"""

from src.fw_common.enums import DisputeDecision, DisputeStatus, TxStatus
from src.fw_common.errors import InvalidAmountError
from src.fw_common.money import validate_amount
from src.fw_dispute.domain.models import Settlement
from src.fw_payment.domain.models import PaymentTransaction


def plan_settlement(
    decision: DisputeDecision,
    held: PaymentTransaction | None,
    customer_amount: int | None = None,
    worker_amount: int | None = None,
) -> Settlement:
    if decision is DisputeDecision.ESCALATE:
        return Settlement(status=DisputeStatus.ESCALATED.value, escrow_status=None)

    if decision is DisputeDecision.RELEASE_TO_FUNDI:
        if held is None:
            return Settlement(status=DisputeStatus.RESOLVED_FUNDI.value, escrow_status=None)
        return Settlement(
            status=DisputeStatus.RESOLVED_FUNDI.value,
            escrow_status=TxStatus.RELEASED.value,
            fundi_amount=held.net_to_fundi_tzs,
        )

    if decision is DisputeDecision.REFUND_CUSTOMER:
        if held is None:
            return Settlement(status=DisputeStatus.RESOLVED_CUSTOMER.value, escrow_status=None)
        return Settlement(
            status=DisputeStatus.RESOLVED_CUSTOMER.value,
            escrow_status=TxStatus.REFUNDED.value,
            customer_amount=held.amount_tzs,
        )

    # split
    if worker_amount is None:
        raise InvalidAmountError("split requires worker_amount")
    worker = validate_amount(worker_amount)
    customer = validate_amount(customer_amount if customer_amount is not None else 0)
    if held is None:
        raise InvalidAmountError("no escrowed payment to split")
    if customer + worker > held.amount_tzs:
        raise InvalidAmountError(
            f"split of {customer} + {worker} exceeds escrowed {held.amount_tzs}"
        )
    return Settlement(
        status=DisputeStatus.RESOLVED_CUSTOMER.value,
        escrow_status=TxStatus.RELEASED.value,
        customer_amount=customer,
        fundi_amount=worker,
    )
