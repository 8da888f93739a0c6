"""Tests for DisputeService: raising, evidence, review and resolution."""

import asyncio
from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.fw_common.actor import SYSTEM_ACTOR, Actor
from src.fw_common.enums import (
    DisputeDecision,
    DisputeStatus,
    JobStatus,
    NotificationTemplate,
    Role,
    TxDirection,
    TxStatus,
)
from src.fw_common.errors import (
    AlreadyResolvedError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidAmountError,
    InvalidTransitionError,
)
from src.fw_dispute.application.service import DisputeService
from src.fw_dispute.domain.models import Dispute, Settlement
from src.fw_job.domain.models import Job
from src.fw_payment.domain.models import PaymentTransaction

CUSTOMER = Actor("cust-1", Role.CUSTOMER)
FUNDI = Actor("fundi-1", Role.FUNDI)
ADMIN = Actor("admin-1", Role.ADMIN)


def _make_job(status: JobStatus = JobStatus.COMPLETED) -> Job:
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
        fundi_id="fundi-1",
    )


def _make_dispute(status: DisputeStatus = DisputeStatus.OPEN) -> Dispute:
    return Dispute(id="disp-1", job_id="job-1", raised_by_id="cust-1", status=status.value)


def _make_held() -> PaymentTransaction:
    return PaymentTransaction(
        id="tx-1",
        job_id="job-1",
        idempotency_key="escrow:1",
        amount_tzs=10000,
        platform_fee_tzs=1500,
        vat_tzs=270,
        net_to_fundi_tzs=8500,
        direction=TxDirection.CUSTOMER_TO_ESCROW.value,
        status=TxStatus.HELD_ESCROW.value,
    )


def _make_service(
    job: Job | None = None,
) -> tuple[DisputeService, AsyncMock, AsyncMock, AsyncMock, AsyncMock, AsyncMock, MagicMock]:
    repo = AsyncMock()
    jobs = AsyncMock()
    jobs.lock_job.return_value = job or _make_job()
    jobs.get_job.return_value = job or _make_job()
    payments = AsyncMock()
    wallets = AsyncMock()
    job_service = AsyncMock()
    job_service.apply_transition_locked.return_value = _make_job(JobStatus.DISPUTED)
    notifier = MagicMock()
    svc = DisputeService(
        repo=repo,
        jobs=jobs,
        payments=payments,
        wallets=wallets,
        job_service=job_service,
        notifier=notifier,
    )
    return svc, repo, jobs, payments, wallets, job_service, notifier


class TestRaiseDispute:
    async def test_customer_raises_on_completed_job(self) -> None:
        svc, repo, _, _, _, job_service, notifier = _make_service()
        repo.get_by_job.return_value = None
        repo.insert_dispute.return_value = _make_dispute()

        dispute = await svc.raise_dispute(
            AsyncMock(), "job-1", CUSTOMER, "Leak is back after one day", ["leak.jpg"]
        )

        assert dispute.status == DisputeStatus.OPEN.value
        transition = job_service.apply_transition_locked.await_args
        assert transition.args[2] is SYSTEM_ACTOR
        assert transition.args[3] is JobStatus.DISPUTED
        assert repo.insert_dispute.await_args.args[1:] == (
            "job-1",
            "cust-1",
            "customer",
            "Leak is back after one day",
            ["leak.jpg"],
        )
        assert notifier.enqueue.call_args.args[0] == "fundi-1"
        assert notifier.enqueue.call_args.args[1] is NotificationTemplate.DISPUTE_OPENED

    async def test_fundi_can_raise(self) -> None:
        svc, repo, *_ = _make_service(_make_job(JobStatus.IN_PROGRESS))
        repo.get_by_job.return_value = None
        repo.insert_dispute.return_value = _make_dispute()
        await svc.raise_dispute(AsyncMock(), "job-1", FUNDI, "Customer refuses to pay", [])
        assert repo.insert_dispute.await_args.args[3] == "fundi"

    async def test_second_dispute_rejected(self) -> None:
        svc, repo, _, _, _, job_service, _ = _make_service()
        repo.get_by_job.return_value = _make_dispute()
        with pytest.raises(DuplicateRequestError):
            await svc.raise_dispute(AsyncMock(), "job-1", CUSTOMER, "Leak is back again", [])
        job_service.apply_transition_locked.assert_not_awaited()

    async def test_outsider_forbidden(self) -> None:
        svc, repo, *_ = _make_service()
        repo.get_by_job.return_value = None
        with pytest.raises(ForbiddenError):
            await svc.raise_dispute(
                AsyncMock(), "job-1", Actor("cust-2", Role.CUSTOMER), "Not my job at all", []
            )

    async def test_job_must_be_in_progress_or_completed(self) -> None:
        svc, repo, _, _, _, job_service, _ = _make_service(_make_job(JobStatus.ACCEPTED))
        repo.get_by_job.return_value = None
        db = AsyncMock()
        with pytest.raises(InvalidTransitionError):
            await svc.raise_dispute(db, "job-1", CUSTOMER, "Fundi never showed up", [])
        job_service.apply_transition_locked.assert_not_awaited()
        db.rollback.assert_awaited_once()


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


class _MemoryDisputes:
    def __init__(self) -> None:
        self.disputes: list[Dispute] = []

    async def get_by_job(self, db: Any, job_id: str) -> Dispute | None:
        return next((d for d in self.disputes if d.job_id == job_id), None)

    async def insert_dispute(self, db: Any, job_id: str, raised_by: str, *_: Any) -> Dispute:
        await asyncio.sleep(0)
        dispute = Dispute(id=f"disp-{len(self.disputes) + 1}", job_id=job_id,
                          raised_by_id=raised_by, status=DisputeStatus.OPEN.value)
        self.disputes.append(dispute)
        return dispute


class TestConcurrentRaise:
    async def test_second_party_gets_duplicate_request(self) -> None:
        jobs = _LockingJobs(_make_job(JobStatus.COMPLETED))
        disputes = _MemoryDisputes()

        async def _to_disputed(db: Any, job: Job, actor: Actor, to: JobStatus) -> Job:
            jobs.job = replace(job, status=to.value)
            return jobs.job

        job_service = MagicMock()
        job_service.apply_transition_locked = AsyncMock(side_effect=_to_disputed)
        svc = DisputeService(
            repo=disputes,  # type: ignore[arg-type]
            jobs=jobs,  # type: ignore[arg-type]
            payments=AsyncMock(),
            wallets=AsyncMock(),
            job_service=job_service,
            notifier=MagicMock(),
        )

        results = await asyncio.gather(
            svc.raise_dispute(_LockingDb(), "job-1", CUSTOMER, "Leak is back after one day", []),  # type: ignore[arg-type]
            svc.raise_dispute(_LockingDb(), "job-1", FUNDI, "Customer refuses to pay me", []),  # type: ignore[arg-type]
            return_exceptions=True,
        )

        assert len(disputes.disputes) == 1
        assert sum(isinstance(r, Dispute) for r in results) == 1
        assert sum(isinstance(r, DuplicateRequestError) for r in results) == 1
        job_service.apply_transition_locked.assert_awaited_once()


class TestEvidenceAndReview:
    async def test_party_adds_evidence(self) -> None:
        svc, repo, *_ = _make_service()
        repo.lock_dispute.return_value = _make_dispute()
        repo.add_evidence.return_value = _make_dispute()
        await svc.submit_evidence(AsyncMock(), "disp-1", FUNDI, "Work was done", ["after.jpg"])
        assert repo.add_evidence.await_args.args[1:] == (
            "disp-1",
            "fundi",
            "Work was done",
            ["after.jpg"],
        )

    async def test_no_evidence_after_resolution(self) -> None:
        svc, repo, *_ = _make_service()
        repo.lock_dispute.return_value = _make_dispute(DisputeStatus.RESOLVED_FUNDI)
        with pytest.raises(AlreadyResolvedError):
            await svc.submit_evidence(AsyncMock(), "disp-1", FUNDI, None, ["late.jpg"])

    async def test_start_review(self) -> None:
        svc, repo, *_ = _make_service()
        repo.lock_dispute.return_value = _make_dispute()
        repo.set_status.return_value = _make_dispute(DisputeStatus.UNDER_REVIEW)
        dispute = await svc.start_review(AsyncMock(), "disp-1", ADMIN)
        assert dispute.status == DisputeStatus.UNDER_REVIEW.value
        assert repo.set_status.await_args.args[2] == DisputeStatus.UNDER_REVIEW.value


class TestResolve:
    async def test_release_to_fundi(self) -> None:
        svc, repo, _, payments, wallets, _, notifier = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute(DisputeStatus.UNDER_REVIEW)
        payments.lock_held_escrow.return_value = _make_held()
        repo.record_resolution.return_value = _make_dispute(DisputeStatus.RESOLVED_FUNDI)

        dispute = await svc.resolve(
            AsyncMock(), "disp-1", ADMIN, DisputeDecision.RELEASE_TO_FUNDI, "Photos show the fix"
        )

        assert dispute.status == DisputeStatus.RESOLVED_FUNDI.value
        assert payments.settle_escrow.await_args.args[1:] == ("tx-1", TxStatus.RELEASED.value)
        assert wallets.credit.await_args.args[1:] == ("fundi-1", 8500)
        payments.insert_transaction.assert_not_awaited()
        repo.insert_audit.assert_awaited_once()
        recipients = {c.args[0] for c in notifier.enqueue.call_args_list}
        assert recipients == {"cust-1", "fundi-1"}

    async def test_refund_customer(self) -> None:
        svc, repo, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute()
        payments.lock_held_escrow.return_value = _make_held()
        repo.record_resolution.return_value = _make_dispute(DisputeStatus.RESOLVED_CUSTOMER)

        await svc.resolve(AsyncMock(), "disp-1", ADMIN, DisputeDecision.REFUND_CUSTOMER, "No show")

        assert payments.settle_escrow.await_args.args[1:] == ("tx-1", TxStatus.REFUNDED.value)
        wallets.credit.assert_not_awaited()
        refund = payments.insert_transaction.await_args.kwargs
        assert refund["direction"] == TxDirection.REFUND.value
        assert refund["amount_tzs"] == 10000
        assert refund["idempotency_key"] == "refund:tx-1"

    async def test_split(self) -> None:
        svc, repo, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute()
        payments.lock_held_escrow.return_value = _make_held()
        repo.record_resolution.return_value = _make_dispute(DisputeStatus.RESOLVED_CUSTOMER)

        await svc.resolve(
            AsyncMock(),
            "disp-1",
            ADMIN,
            DisputeDecision.SPLIT,
            "Half the work done",
            customer_amount=4000,
            worker_amount=5000,
        )

        assert wallets.credit.await_args.args[1:] == ("fundi-1", 5000)
        assert payments.insert_transaction.await_args.kwargs["amount_tzs"] == 4000
        settlement: Settlement = repo.record_resolution.await_args.args[3]
        assert (settlement.customer_amount, settlement.fundi_amount) == (4000, 5000)

    async def test_split_over_allocation_moves_nothing(self) -> None:
        svc, repo, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute()
        payments.lock_held_escrow.return_value = _make_held()
        db = AsyncMock()

        with pytest.raises(InvalidAmountError):
            await svc.resolve(
                db, "disp-1", ADMIN, DisputeDecision.SPLIT, "Bad split",
                customer_amount=6000, worker_amount=5000,
            )

        payments.settle_escrow.assert_not_awaited()
        wallets.credit.assert_not_awaited()
        repo.record_resolution.assert_not_awaited()
        db.rollback.assert_awaited_once()

    async def test_escalate_leaves_escrow_held(self) -> None:
        svc, repo, _, payments, wallets, _, _ = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute()
        payments.lock_held_escrow.return_value = _make_held()
        repo.record_resolution.return_value = _make_dispute(DisputeStatus.ESCALATED)

        await svc.resolve(AsyncMock(), "disp-1", ADMIN, DisputeDecision.ESCALATE, "Needs legal")

        payments.settle_escrow.assert_not_awaited()
        wallets.credit.assert_not_awaited()

    async def test_second_resolution_rejected(self) -> None:
        svc, repo, _, payments, *_ = _make_service(_make_job(JobStatus.DISPUTED))
        repo.lock_dispute.return_value = _make_dispute(DisputeStatus.RESOLVED_CUSTOMER)

        with pytest.raises(AlreadyResolvedError):
            await svc.resolve(
                AsyncMock(), "disp-1", ADMIN, DisputeDecision.RELEASE_TO_FUNDI, "Second try"
            )

        payments.lock_held_escrow.assert_not_awaited()
