"""Tests for EscrowService: collection, gateway callbacks, release and tips."""

import asyncio
import hashlib
import hmac
import json
from dataclasses import replace
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.fw_common.actor import Actor
from src.fw_common.datetime_utils import utc_now
from src.fw_common.enums import JobStatus, NotificationTemplate, Role, TxDirection, TxStatus
from src.fw_common.errors import (
    DuplicateRequestError,
    ForbiddenError,
    GatewayError,
    InvalidAmountError,
    InvalidPaymentStateError,
    InvalidRequestError,
    InvalidSignatureError,
    TransactionNotFoundError,
)
from src.fw_job.domain.models import Job
from src.fw_payment.application.escrow_service import ESCROW_RELEASE_TASK, EscrowService
from src.fw_payment.domain.gateway import GatewayResult
from src.fw_payment.domain.models import PaymentTransaction

CUSTOMER = Actor("cust-1", Role.CUSTOMER)
PHONE = "+255712345678"


def _make_job(
    status: JobStatus = JobStatus.ACCEPTED,
    release_in: timedelta | None = None,
    fundi_id: str | None = "fundi-1",
) -> Job:
    return Job(
        id="job-1",
        job_reference="FW-261019-ABCDE",
        customer_id="cust-1",
        category="plumbing",
        status=status.value,
        quoted_amount_tzs=10000,
        platform_fee_tzs=1500,
        vat_tzs=270,
        net_to_fundi_tzs=8500,
        latitude=-6.8,
        longitude=39.28,
        fundi_id=fundi_id,
        escrow_release_at=utc_now() + release_in if release_in is not None else None,
    )


def _make_tx(status: TxStatus = TxStatus.HELD_ESCROW, tx_id: str = "tx-1") -> PaymentTransaction:
    return PaymentTransaction(
        id=tx_id,
        job_id="job-1",
        idempotency_key=f"escrow:{tx_id}",
        amount_tzs=10000,
        platform_fee_tzs=1500,
        vat_tzs=270,
        net_to_fundi_tzs=8500,
        direction=TxDirection.CUSTOMER_TO_ESCROW.value,
        status=status.value,
    )


def _ok(reference: str = "SEL-1") -> GatewayResult:
    return GatewayResult(success=True, reference=reference)


def _make_gateway(signature_ok: bool = True) -> MagicMock:
    gateway = MagicMock()
    gateway.create_order = AsyncMock(return_value=_ok("ORD-1"))
    gateway.trigger_collection = AsyncMock(return_value=_ok("PUSH-1"))
    gateway.verify_callback_signature.return_value = signature_ok
    return gateway


def _make_service(
    job: Job | None = None, gateway: MagicMock | None = None
) -> tuple[EscrowService, AsyncMock, AsyncMock, AsyncMock, MagicMock, MagicMock]:
    jobs = AsyncMock()
    jobs.lock_job.return_value = job
    jobs.get_job.return_value = job
    payments = AsyncMock()
    wallets = AsyncMock()
    notifier = MagicMock()
    scheduler = MagicMock()
    svc = EscrowService(
        jobs=jobs,
        payments=payments,
        wallets=wallets,
        gateway=gateway or _make_gateway(),
        notifier=notifier,
        scheduler=scheduler,
    )
    return svc, jobs, payments, wallets, notifier, scheduler


class TestInitiate:
    async def test_new_collection(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.find_open_escrow.return_value = None
        payments.insert_transaction.return_value = _make_tx(TxStatus.INITIATED)
        payments.mark_processing.return_value = _make_tx(TxStatus.PROCESSING)

        tx = await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)

        assert tx.status == TxStatus.PROCESSING.value
        fields = payments.insert_transaction.await_args.kwargs
        assert fields["amount_tzs"] == 10000
        assert fields["platform_fee_tzs"] == 1500
        assert fields["vat_tzs"] == 270
        assert fields["net_to_fundi_tzs"] == 8500
        assert fields["direction"] == TxDirection.CUSTOMER_TO_ESCROW.value
        assert payments.mark_processing.await_args.args[1:] == ("tx-1", "PUSH-1")

    async def test_in_flight_collection_returned_unchanged(self) -> None:
        gateway = _make_gateway()
        svc, _, payments, _, _, _ = _make_service(_make_job(), gateway)
        payments.find_open_escrow.return_value = _make_tx(TxStatus.PROCESSING)

        tx = await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)

        assert tx.id == "tx-1"
        payments.insert_transaction.assert_not_awaited()
        gateway.create_order.assert_not_awaited()

    async def test_already_held(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.find_open_escrow.return_value = _make_tx(TxStatus.HELD_ESCROW)
        with pytest.raises(DuplicateRequestError):
            await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)

    async def test_only_own_customer(self) -> None:
        svc, *_ = _make_service(_make_job())
        with pytest.raises(ForbiddenError):
            await svc.initiate(AsyncMock(), "job-1", Actor("cust-2", Role.CUSTOMER), "mpesa", PHONE)

    @pytest.mark.parametrize("status", [JobStatus.PENDING, JobStatus.CANCELLED, JobStatus.DISPUTED])
    async def test_unpayable_status(self, status: JobStatus) -> None:
        svc, *_ = _make_service(_make_job(status))
        with pytest.raises(InvalidPaymentStateError):
            await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)

    async def test_gateway_failure_marks_failed(self) -> None:
        gateway = _make_gateway()
        gateway.trigger_collection.side_effect = GatewayError("timeout")
        svc, _, payments, _, _, _ = _make_service(_make_job(), gateway)
        payments.find_open_escrow.return_value = None
        payments.insert_transaction.return_value = _make_tx(TxStatus.INITIATED)

        with pytest.raises(GatewayError):
            await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)

        payments.mark_failed.assert_awaited_once()
        payments.mark_processing.assert_not_awaited()

    async def test_rejected_order_is_gateway_error(self) -> None:
        gateway = _make_gateway()
        gateway.create_order.return_value = GatewayResult(False, "", "vendor disabled")
        svc, _, payments, _, _, _ = _make_service(_make_job(), gateway)
        payments.find_open_escrow.return_value = None
        payments.insert_transaction.return_value = _make_tx(TxStatus.INITIATED)

        with pytest.raises(GatewayError):
            await svc.initiate(AsyncMock(), "job-1", CUSTOMER, "mpesa", PHONE)
        gateway.trigger_collection.assert_not_awaited()


class _LockingDb:
    """Session stand-in whose commit/rollback releases the row locks it holds."""

    def __init__(self) -> None:
        self.held: list[asyncio.Lock] = []

    async def commit(self) -> None:
        self._release()

    async def rollback(self) -> None:
        self._release()

    def _release(self) -> None:
        while self.held:
            self.held.pop().release()


class _LockingJobs:
    def __init__(self, job: Job) -> None:
        self.job = job
        self.lock = asyncio.Lock()

    async def lock_job(self, db: _LockingDb, job_id: str) -> Job:
        await self.lock.acquire()
        db.held.append(self.lock)
        return self.job


class _MemoryPayments:
    def __init__(self) -> None:
        self.txs: list[PaymentTransaction] = []

    async def find_open_escrow(self, db: Any, job_id: str) -> PaymentTransaction | None:
        open_states = {TxStatus.INITIATED.value, TxStatus.PROCESSING.value, TxStatus.HELD_ESCROW.value}
        return next((t for t in self.txs if t.status in open_states), None)

    async def insert_transaction(self, db: Any, **fields: Any) -> PaymentTransaction:
        await asyncio.sleep(0)
        tx = _make_tx(TxStatus.INITIATED, tx_id=f"tx-{len(self.txs) + 1}")
        self.txs.append(tx)
        return tx

    async def mark_processing(self, db: Any, tx_id: str, reference: str) -> PaymentTransaction:
        tx = next(t for t in self.txs if t.id == tx_id)
        updated = replace(tx, status=TxStatus.PROCESSING.value, gateway_reference=reference)
        self.txs[self.txs.index(tx)] = updated
        return updated


class TestConcurrentInitiate:
    async def test_two_concurrent_calls_collect_once(self) -> None:
        gateway = _make_gateway()
        payments = _MemoryPayments()
        svc = EscrowService(
            jobs=_LockingJobs(_make_job()),  # type: ignore[arg-type]
            payments=payments,  # type: ignore[arg-type]
            wallets=AsyncMock(),
            gateway=gateway,
            notifier=MagicMock(),
            scheduler=MagicMock(),
        )

        first, second = await asyncio.gather(
            svc.initiate(_LockingDb(), "job-1", CUSTOMER, "mpesa", PHONE),  # type: ignore[arg-type]
            svc.initiate(_LockingDb(), "job-1", CUSTOMER, "mpesa", PHONE),  # type: ignore[arg-type]
        )

        assert len(payments.txs) == 1
        assert first.id == second.id == "tx-1"
        gateway.create_order.assert_awaited_once()
        gateway.trigger_collection.assert_awaited_once()


def _callback_body(**fields: Any) -> bytes:
    return json.dumps({"order_id": "tx-1", **fields}).encode()


class TestGatewayCallback:
    async def test_success_holds_funds(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.lock_transaction.return_value = _make_tx(TxStatus.PROCESSING)
        payments.mark_held.return_value = _make_tx(TxStatus.HELD_ESCROW)

        tx = await svc.on_gateway_callback(
            AsyncMock(), _callback_body(resultcode="000", transid="T-9"), "sig"
        )

        assert tx.status == TxStatus.HELD_ESCROW.value
        assert payments.mark_held.await_args.args[1:3] == ("tx-1", "T-9")

    async def test_bad_signature_rejected_before_parsing(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job(), _make_gateway(signature_ok=False))
        with pytest.raises(InvalidSignatureError):
            await svc.on_gateway_callback(AsyncMock(), b"not json", "bad")
        payments.lock_transaction.assert_not_awaited()

    async def test_malformed_body(self) -> None:
        svc, *_ = _make_service(_make_job())
        with pytest.raises(InvalidRequestError):
            await svc.on_gateway_callback(AsyncMock(), b"{not json", "sig")
        with pytest.raises(InvalidRequestError):
            await svc.on_gateway_callback(AsyncMock(), b'{"resultcode": "000"}', "sig")

    async def test_unknown_transaction(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.lock_transaction.return_value = None
        with pytest.raises(TransactionNotFoundError):
            await svc.on_gateway_callback(AsyncMock(), _callback_body(resultcode="000"), "sig")

    async def test_duplicate_success_is_noop(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.lock_transaction.return_value = _make_tx(TxStatus.HELD_ESCROW)
        tx = await svc.on_gateway_callback(AsyncMock(), _callback_body(resultcode="000"), "sig")
        assert tx.status == TxStatus.HELD_ESCROW.value
        payments.mark_held.assert_not_awaited()

    async def test_failure_marks_failed(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.lock_transaction.return_value = _make_tx(TxStatus.PROCESSING)
        payments.mark_failed.return_value = _make_tx(TxStatus.FAILED)

        await svc.on_gateway_callback(
            AsyncMock(), _callback_body(resultcode="999", result="Insufficient funds"), "sig"
        )

        assert payments.mark_failed.await_args.args[2] == "Insufficient funds"
        payments.mark_held.assert_not_awaited()

    async def test_late_success_with_other_open_escrow(self) -> None:
        svc, _, payments, _, _, _ = _make_service(_make_job())
        payments.lock_transaction.return_value = _make_tx(TxStatus.FAILED)
        payments.find_open_escrow.return_value = _make_tx(TxStatus.PROCESSING, tx_id="tx-2")

        tx = await svc.on_gateway_callback(AsyncMock(), _callback_body(resultcode="000"), "sig")

        assert tx.status == TxStatus.FAILED.value
        payments.mark_held.assert_not_awaited()

    async def test_real_signature_check(self) -> None:
        from src.fw_payment.infrastructure.selcom_client import SelcomClient

        client = SelcomClient(webhook_secret="whsec")
        body = _callback_body(resultcode="000")
        digest = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
        assert client.verify_callback_signature(body, digest)
        assert not client.verify_callback_signature(body, "0" * 64)
        await client.close()


class TestRelease:
    async def test_release_credits_net_and_records_fee(self) -> None:
        job = _make_job(JobStatus.COMPLETED, release_in=timedelta(seconds=-1))
        svc, _, payments, wallets, notifier, _ = _make_service(job)
        payments.lock_held_escrow.return_value = _make_tx()
        payments.settle_escrow.return_value = _make_tx(TxStatus.RELEASED)

        released = await svc.release(AsyncMock(), "job-1")

        assert released is not None
        payments.settle_escrow.assert_awaited_once_with(
            payments.settle_escrow.await_args.args[0], "tx-1", TxStatus.RELEASED.value
        )
        wallets.credit.assert_awaited_once()
        assert wallets.credit.await_args.args[1:] == ("fundi-1", 8500)
        fee_tx = payments.insert_transaction.await_args.kwargs
        assert fee_tx["direction"] == TxDirection.PLATFORM_FEE.value
        assert fee_tx["amount_tzs"] == 1500
        assert fee_tx["idempotency_key"] == "platform_fee:tx-1"
        assert notifier.enqueue.call_args.args[1] is NotificationTemplate.PAYMENT_RELEASED

    async def test_disputed_job_is_never_released(self) -> None:
        job = _make_job(JobStatus.DISPUTED, release_in=timedelta(seconds=-1))
        svc, _, payments, wallets, notifier, _ = _make_service(job)

        assert await svc.release(AsyncMock(), "job-1") is None

        payments.lock_held_escrow.assert_not_awaited()
        payments.settle_escrow.assert_not_awaited()
        wallets.credit.assert_not_awaited()
        notifier.enqueue.assert_not_called()

    async def test_cleared_schedule_is_noop(self) -> None:
        svc, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.COMPLETED))
        assert await svc.release(AsyncMock(), "job-1") is None
        wallets.credit.assert_not_awaited()

    async def test_not_yet_due(self) -> None:
        job = _make_job(JobStatus.COMPLETED, release_in=timedelta(hours=3))
        svc, _, payments, wallets, _, _ = _make_service(job)
        assert await svc.release(AsyncMock(), "job-1") is None
        payments.lock_held_escrow.assert_not_awaited()

    async def test_second_run_finds_nothing_held(self) -> None:
        job = _make_job(JobStatus.COMPLETED, release_in=timedelta(seconds=-1))
        svc, _, payments, wallets, _, _ = _make_service(job)
        payments.lock_held_escrow.return_value = None
        assert await svc.release(AsyncMock(), "job-1") is None
        wallets.credit.assert_not_awaited()

    def test_schedule_release_uses_job_key(self) -> None:
        svc, _, _, _, _, scheduler = _make_service(_make_job())
        at = utc_now()
        svc.schedule_release("job-1", at)
        scheduler.run_at.assert_called_once_with(
            ESCROW_RELEASE_TASK, {"job_id": "job-1"}, at, key="job-1"
        )


class TestTip:
    async def test_tip_credits_fundi(self) -> None:
        svc, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.COMPLETED))
        payments.insert_transaction.return_value = _make_tx(TxStatus.RELEASED)

        await svc.send_tip(AsyncMock(), "job-1", CUSTOMER, 2000, "mpesa", PHONE)

        fields = payments.insert_transaction.await_args.kwargs
        assert fields["direction"] == TxDirection.TIP.value
        assert fields["amount_tzs"] == 2000
        assert fields["platform_fee_tzs"] == 0
        assert wallets.credit.await_args.args[1:] == ("fundi-1", 2000)

    async def test_minimum_tip(self) -> None:
        svc, *_ = _make_service(_make_job(JobStatus.COMPLETED))
        with pytest.raises(InvalidAmountError):
            await svc.send_tip(AsyncMock(), "job-1", CUSTOMER, 999, "mpesa", PHONE)

    async def test_tip_only_after_completion(self) -> None:
        svc, *_ = _make_service(_make_job(JobStatus.IN_PROGRESS))
        with pytest.raises(InvalidPaymentStateError):
            await svc.send_tip(AsyncMock(), "job-1", CUSTOMER, 2000, "mpesa", PHONE)
