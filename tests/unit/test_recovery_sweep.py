"""Tests for the periodic recovery sweep."""

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

from config.settings import settings
from src.fw_common.datetime_utils import utc_now
from src.fw_common.errors import JobNotFoundError
from src.fw_job.application.service import DISPATCH_TASK
from src.fw_matching.application.dispatcher import OFFER_TIMEOUT_TASK
from src.fw_payment.application.escrow_service import ESCROW_RELEASE_TASK
from src.fw_payment.application.payout_service import PAYOUT_TASK
from src.fw_scheduler import tasks
from src.fw_scheduler.scheduler import registered_kinds


def _payouts(*payout_ids: str) -> AsyncMock:
    payouts = AsyncMock()
    payouts.list_stale_pending.return_value = list(payout_ids)
    return payouts


def _session_factory(db: AsyncMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = db
    return factory


class TestRecoverySweep:
    async def test_reenqueues_due_work_with_stable_keys(self) -> None:
        jobs = AsyncMock()
        jobs.list_due_releases.return_value = ["job-1", "job-2"]
        offers = AsyncMock()
        offers.list_expired_offers.return_value = [
            SimpleNamespace(job_id="job-3", fundi_id="fundi-9")
        ]
        scheduler = MagicMock()

        with patch.object(tasks, "async_session_factory", _session_factory(AsyncMock())):
            await tasks.recovery_sweep(jobs, offers, scheduler, _payouts("payout-7"))

        calls = scheduler.run_at.call_args_list
        assert [(c.args[0], c.kwargs["key"]) for c in calls] == [
            (ESCROW_RELEASE_TASK, "job-1"),
            (ESCROW_RELEASE_TASK, "job-2"),
            (OFFER_TIMEOUT_TASK, "job-3:fundi-9"),
            (PAYOUT_TASK, "payout-7"),
        ]
        assert calls[2].args[1] == {"job_id": "job-3", "fundi_id": "fundi-9"}
        assert calls[3].args[1] == {"payout_id": "payout-7"}

    async def test_payouts_get_a_grace_period(self) -> None:
        jobs = AsyncMock()
        jobs.list_due_releases.return_value = []
        offers = AsyncMock()
        offers.list_expired_offers.return_value = []
        payouts = _payouts("payout-7")
        before = utc_now()

        with patch.object(tasks, "async_session_factory", _session_factory(AsyncMock())):
            await tasks.recovery_sweep(jobs, offers, MagicMock(), payouts)

        cutoff = payouts.list_stale_pending.await_args.args[1]
        grace = timedelta(seconds=settings.PAYOUT_RECOVERY_GRACE_SECONDS)
        assert before - grace - timedelta(seconds=5) < cutoff <= utc_now() - grace

    async def test_nothing_due(self) -> None:
        jobs = AsyncMock()
        jobs.list_due_releases.return_value = []
        offers = AsyncMock()
        offers.list_expired_offers.return_value = []
        scheduler = MagicMock()

        with patch.object(tasks, "async_session_factory", _session_factory(AsyncMock())):
            await tasks.recovery_sweep(jobs, offers, scheduler, _payouts())

        scheduler.run_at.assert_not_called()

    async def test_database_failure_does_not_raise(self) -> None:
        jobs = AsyncMock()
        jobs.list_due_releases.side_effect = ConnectionError("db down")
        scheduler = MagicMock()

        with patch.object(tasks, "async_session_factory", _session_factory(AsyncMock())):
            await tasks.recovery_sweep(jobs, AsyncMock(), scheduler, _payouts())

        scheduler.run_at.assert_not_called()


class TestRegistration:
    def test_register_all(self) -> None:
        tasks.register_all()
        assert {ESCROW_RELEASE_TASK, DISPATCH_TASK, OFFER_TIMEOUT_TASK} <= set(registered_kinds())

    def test_schedule_sweep_interval(self) -> None:
        scheduler = MagicMock()
        tasks.schedule_recovery_sweep(scheduler)
        func, _seconds, job_id = scheduler.add_interval.call_args.args
        assert func is tasks.recovery_sweep
        assert job_id == tasks.RECOVERY_SWEEP_JOB_ID

    async def test_dispatch_for_deleted_job_is_dropped(self) -> None:
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(side_effect=JobNotFoundError("job-x"))
        with (
            patch.object(tasks, "async_session_factory", _session_factory(AsyncMock())),
            patch.object(tasks, "_dispatcher", dispatcher),
        ):
            await tasks.handle_dispatch({"job_id": "job-x"})
