"""Tests for PayoutService: wallet debit, gateway cash-in and reversal."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.fw_common.actor import Actor
from src.fw_common.enums import NotificationTemplate, PayoutStatus, Role
from src.fw_common.errors import GatewayError, InsufficientBalanceError, InvalidAmountError
from src.fw_payment.application.payout_service import PAYOUT_TASK, PayoutService
from src.fw_payment.domain.gateway import GatewayResult
from src.fw_payment.domain.models import PayoutRequest, Wallet

FUNDI = Actor("fundi-1", Role.FUNDI)


def _make_payout(status: PayoutStatus = PayoutStatus.PENDING, amount: int = 6000) -> PayoutRequest:
    return PayoutRequest(
        id="payout-123456789",
        fundi_id="fundi-1",
        amount_tzs=amount,
        payout_network="mpesa",
        payout_number="+255712345678",
        status=status.value,
    )


def _make_service(
    gateway: MagicMock | None = None,
) -> tuple[PayoutService, AsyncMock, AsyncMock, MagicMock, MagicMock]:
    wallets = AsyncMock()
    payouts = AsyncMock()
    notifier = MagicMock()
    scheduler = MagicMock()
    svc = PayoutService(
        wallets=wallets,
        payouts=payouts,
        gateway=gateway or MagicMock(),
        notifier=notifier,
        scheduler=scheduler,
    )
    return svc, wallets, payouts, notifier, scheduler


class TestRequestPayout:
    async def test_debits_and_enqueues(self) -> None:
        svc, wallets, payouts, _, scheduler = _make_service()
        wallets.debit_for_payout.return_value = Wallet("fundi-1", balance_tzs=4000, pending_tzs=6000)
        payouts.insert_payout.return_value = _make_payout()

        payout = await svc.request_payout(AsyncMock(), FUNDI, 6000, "mpesa", "+255712345678")

        assert payout.status == PayoutStatus.PENDING.value
        assert wallets.debit_for_payout.await_args.args[1:] == ("fundi-1", 6000)
        scheduler.run_reliable.assert_called_once_with(
            PAYOUT_TASK, {"payout_id": "payout-123456789"}
        )

    async def test_scheduling_failure_keeps_committed_payout(self) -> None:
        svc, wallets, payouts, _, scheduler = _make_service()
        wallets.debit_for_payout.return_value = Wallet("fundi-1", balance_tzs=4000, pending_tzs=6000)
        payouts.insert_payout.return_value = _make_payout()
        scheduler.run_reliable.side_effect = RuntimeError("job store unavailable")
        db = AsyncMock()

        payout = await svc.request_payout(db, FUNDI, 6000, "mpesa", "+255712345678")

        assert payout.status == PayoutStatus.PENDING.value
        db.commit.assert_awaited_once()
        db.rollback.assert_not_awaited()

    async def test_insufficient_balance(self) -> None:
        svc, wallets, payouts, _, scheduler = _make_service()
        wallets.debit_for_payout.return_value = None
        wallets.get_wallet.return_value = Wallet("fundi-1", balance_tzs=5000)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await svc.request_payout(AsyncMock(), FUNDI, 6000, "mpesa", "+255712345678")

        assert "6000" in exc_info.value.message
        assert "5000" in exc_info.value.message
        payouts.insert_payout.assert_not_awaited()
        scheduler.run_reliable.assert_not_called()

    async def test_minimum_payout(self) -> None:
        svc, wallets, *_ = _make_service()
        with pytest.raises(InvalidAmountError):
            await svc.request_payout(AsyncMock(), FUNDI, 4999, "mpesa", "+255712345678")
        wallets.debit_for_payout.assert_not_awaited()


class TestProcessPayout:
    async def test_success_settles_pending(self) -> None:
        gateway = MagicMock()
        gateway.wallet_cashin = AsyncMock(return_value=GatewayResult(True, "SEL-PO-1"))
        svc, wallets, payouts, notifier, _ = _make_service(gateway)
        payouts.lock_payout.return_value = _make_payout()
        payouts.update_payout.side_effect = [
            _make_payout(PayoutStatus.PROCESSING),
            _make_payout(PayoutStatus.COMPLETED),
        ]

        payout = await svc.process_payout(AsyncMock(), "payout-123456789")

        assert payout is not None
        assert payout.status == PayoutStatus.COMPLETED.value
        assert gateway.wallet_cashin.await_args.args == ("FW-PO-payout-1", 6000, "+255712345678")
        wallets.settle_pending.assert_awaited_once()
        wallets.reverse_payout.assert_not_awaited()
        assert notifier.enqueue.call_args.args[1] is NotificationTemplate.PAYOUT_COMPLETED

    async def test_gateway_error_reverses_debit(self) -> None:
        gateway = MagicMock()
        gateway.wallet_cashin = AsyncMock(side_effect=GatewayError("timeout"))
        svc, wallets, payouts, notifier, _ = _make_service(gateway)
        payouts.lock_payout.return_value = _make_payout()
        payouts.update_payout.side_effect = [
            _make_payout(PayoutStatus.PROCESSING),
            _make_payout(PayoutStatus.FAILED),
        ]

        await svc.process_payout(AsyncMock(), "payout-123456789")

        wallets.reverse_payout.assert_awaited_once()
        assert wallets.reverse_payout.await_args.args[1:] == ("fundi-1", 6000)
        wallets.settle_pending.assert_not_awaited()
        assert notifier.enqueue.call_args.args[1] is NotificationTemplate.PAYOUT_FAILED

    async def test_rejected_cashin_reverses_debit(self) -> None:
        gateway = MagicMock()
        gateway.wallet_cashin = AsyncMock(return_value=GatewayResult(False, "", "limit exceeded"))
        svc, wallets, payouts, _, _ = _make_service(gateway)
        payouts.lock_payout.return_value = _make_payout()
        payouts.update_payout.side_effect = [
            _make_payout(PayoutStatus.PROCESSING),
            _make_payout(PayoutStatus.FAILED),
        ]

        await svc.process_payout(AsyncMock(), "payout-123456789")

        last_update = payouts.update_payout.await_args
        assert last_update.args[2] == PayoutStatus.FAILED.value
        assert last_update.kwargs["failure_reason"] == "limit exceeded"
        wallets.reverse_payout.assert_awaited_once()

    async def test_duplicate_delivery_is_noop(self) -> None:
        gateway = MagicMock()
        gateway.wallet_cashin = AsyncMock()
        svc, _, payouts, notifier, _ = _make_service(gateway)
        payouts.lock_payout.return_value = _make_payout(PayoutStatus.COMPLETED)

        await svc.process_payout(AsyncMock(), "payout-123456789")

        gateway.wallet_cashin.assert_not_awaited()
        payouts.update_payout.assert_not_awaited()
        notifier.enqueue.assert_not_called()

    async def test_get_wallet_defaults_to_empty(self) -> None:
        svc, wallets, *_ = _make_service()
        wallets.get_wallet.return_value = None
        wallet = await svc.get_wallet(AsyncMock(), "fundi-9")
        assert wallet.balance_tzs == 0
        assert wallet.fundi_id == "fundi-9"
