"""Tests for mapping a dispute decision to fund movements."""

import pytest

from src.fw_common.enums import DisputeDecision, DisputeStatus, TxStatus
from src.fw_common.errors import InvalidAmountError
from src.fw_dispute.domain.settlement import plan_settlement
from src.fw_payment.domain.models import PaymentTransaction


def _make_held(gross: int = 10000, net: int = 8500) -> PaymentTransaction:
    return PaymentTransaction(
        id="tx-1",
        job_id="job-1",
        idempotency_key="escrow:abc",
        amount_tzs=gross,
        platform_fee_tzs=gross - net,
        vat_tzs=270,
        net_to_fundi_tzs=net,
        direction="customer_to_escrow",
        status="held_escrow",
    )


class TestPlanSettlement:
    def test_release_to_fundi_pays_net(self) -> None:
        s = plan_settlement(DisputeDecision.RELEASE_TO_FUNDI, _make_held())
        assert s.status == DisputeStatus.RESOLVED_FUNDI.value
        assert s.escrow_status == TxStatus.RELEASED.value
        assert s.fundi_amount == 8500
        assert s.customer_amount == 0

    def test_refund_customer_returns_gross(self) -> None:
        s = plan_settlement(DisputeDecision.REFUND_CUSTOMER, _make_held())
        assert s.status == DisputeStatus.RESOLVED_CUSTOMER.value
        assert s.escrow_status == TxStatus.REFUNDED.value
        assert s.customer_amount == 10000
        assert s.fundi_amount == 0

    def test_escalate_moves_nothing(self) -> None:
        s = plan_settlement(DisputeDecision.ESCALATE, _make_held())
        assert s.status == DisputeStatus.ESCALATED.value
        assert s.escrow_status is None
        assert s.customer_amount == s.fundi_amount == 0

    def test_split(self) -> None:
        s = plan_settlement(DisputeDecision.SPLIT, _make_held(), 4000, 5000)
        assert s.escrow_status == TxStatus.RELEASED.value
        assert (s.customer_amount, s.fundi_amount) == (4000, 5000)

    def test_split_may_leave_remainder(self) -> None:
        s = plan_settlement(DisputeDecision.SPLIT, _make_held(), 1000, 1000)
        assert s.customer_amount + s.fundi_amount < 10000

    def test_split_over_allocation_rejected(self) -> None:
        with pytest.raises(InvalidAmountError):
            plan_settlement(DisputeDecision.SPLIT, _make_held(), 6000, 5000)

    def test_split_requires_worker_amount(self) -> None:
        with pytest.raises(InvalidAmountError):
            plan_settlement(DisputeDecision.SPLIT, _make_held(), 4000, None)

    def test_split_without_escrow_rejected(self) -> None:
        with pytest.raises(InvalidAmountError):
            plan_settlement(DisputeDecision.SPLIT, None, 0, 1000)

    def test_without_escrow_only_status_changes(self) -> None:
        s = plan_settlement(DisputeDecision.RELEASE_TO_FUNDI, None)
        assert s.status == DisputeStatus.RESOLVED_FUNDI.value
        assert s.escrow_status is None
        assert s.fundi_amount == 0
