"""PayoutService — fundi wallet withdrawals to mobile money.

request_payout moves money from available to pending in one conditional
UPDATE (balance >= amount), so two concurrent requests can never overdraw the
wallet. The cash-in itself runs later as a reliable task:

    pending ──lock──► processing ──cash-in ok──► completed   (pending settles)
                                  └─failed────► failed      (balance restored)
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.fw_common.actor import Actor
from src.fw_common.enums import NotificationTemplate, PayoutStatus
from src.fw_common.errors import (
    GatewayError,
    InsufficientBalanceError,
    InvalidAmountError,
)
from src.fw_common.money import validate_amount
from src.fw_common.unit_of_work import unit_of_work
from src.fw_notification.sink import NotificationSink, QueuedNotificationSink
from src.fw_payment.domain.gateway import PaymentGateway
from src.fw_payment.domain.models import PayoutRequest, Wallet
from src.fw_payment.domain.repository import (
    PayoutRepositoryProtocol,
    WalletRepositoryProtocol,
)
from src.fw_payment.infrastructure.persistence import PayoutRepository, WalletRepository
from src.fw_payment.infrastructure.selcom_client import get_gateway
from src.fw_scheduler.scheduler import TaskScheduler, get_task_scheduler

logger = logging.getLogger(__name__)

PAYOUT_TASK = "payout.process"


class PayoutService:
    def __init__(
        self,
        wallets: WalletRepositoryProtocol | None = None,
        payouts: PayoutRepositoryProtocol | None = None,
        gateway: PaymentGateway | None = None,
        notifier: NotificationSink | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self._wallets: WalletRepositoryProtocol = wallets or WalletRepository()
        self._payouts: PayoutRepositoryProtocol = payouts or PayoutRepository()
        self._gateway = gateway
        self._notifier: NotificationSink = notifier or QueuedNotificationSink(scheduler)
        self._scheduler = scheduler

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_gateway()

    @property
    def tasks(self) -> TaskScheduler:
        return self._scheduler or get_task_scheduler()

    async def get_wallet(self, db: AsyncSession, fundi_id: str) -> Wallet:
        wallet = await self._wallets.get_wallet(db, fundi_id)
        return wallet or Wallet(fundi_id=fundi_id)

    async def list_payouts(
        self, db: AsyncSession, fundi_id: str, limit: int = 20
    ) -> list[PayoutRequest]:
        return await self._payouts.list_payouts(db, fundi_id, limit)

    async def request_payout(
        self,
        db: AsyncSession,
        actor: Actor,
        amount: int,
        payout_network: str,
        payout_number: str,
    ) -> PayoutRequest:
        amount = validate_amount(amount)
        if amount < settings.MIN_PAYOUT_TZS:
            raise InvalidAmountError(f"minimum payout is {settings.MIN_PAYOUT_TZS} TZS")

        async with unit_of_work(db):
            wallet = await self._wallets.debit_for_payout(db, actor.user_id, amount)
            if wallet is None:
                current = await self._wallets.get_wallet(db, actor.user_id)
                raise InsufficientBalanceError(amount, current.balance_tzs if current else 0)
            payout = await self._payouts.insert_payout(
                db, actor.user_id, amount, payout_network, payout_number
            )

        logger.info(
            "Payout requested: payout=%s fundi=%s amount=%d balance_after=%d",
            payout.id,
            actor.user_id,
            amount,
            wallet.balance_tzs,
        )
        try:
            self.tasks.run_reliable(PAYOUT_TASK, {"payout_id": payout.id})
        except Exception:
            # Still pending; the recovery sweep re-enqueues it
            logger.exception("Failed to schedule payout %s", payout.id)
        return payout

    async def process_payout(self, db: AsyncSession, payout_id: str) -> PayoutRequest | None:
        """Execute one pending payout. Duplicate deliveries find it non-pending and stop."""
        async with unit_of_work(db):
            payout = await self._payouts.lock_payout(db, payout_id)
            if payout is None:
                logger.warning("Payout %s not found", payout_id)
                return None
            if payout.status != PayoutStatus.PENDING:
                logger.info("Payout %s already %s", payout_id, payout.status)
                return payout
            payout = await self._payouts.update_payout(db, payout_id, PayoutStatus.PROCESSING.value)

        trans_id = f"FW-PO-{payout.id[:8]}"
        try:
            result = await self.gateway.wallet_cashin(
                trans_id, payout.amount_tzs, payout.payout_number
            )
            failure = None if result.success else (result.message or "cash-in rejected")
        except GatewayError as exc:
            result = None
            failure = exc.message

        async with unit_of_work(db):
            if failure is None:
                payout = await self._payouts.update_payout(
                    db,
                    payout_id,
                    PayoutStatus.COMPLETED.value,
                    gateway_reference=result.reference if result else None,
                )
                await self._wallets.settle_pending(db, payout.fundi_id, payout.amount_tzs)
            else:
                payout = await self._payouts.update_payout(
                    db, payout_id, PayoutStatus.FAILED.value, failure_reason=failure
                )
                await self._wallets.reverse_payout(db, payout.fundi_id, payout.amount_tzs)

        if failure is None:
            logger.info("Payout completed: payout=%s amount=%d", payout_id, payout.amount_tzs)
            template = NotificationTemplate.PAYOUT_COMPLETED
        else:
            logger.warning("Payout failed: payout=%s reason=%s", payout_id, failure)
            template = NotificationTemplate.PAYOUT_FAILED
        self._notifier.enqueue(
            payout.fundi_id,
            template,
            {"amount": payout.amount_tzs, "network": payout.payout_network},
            channels=("push", "sms"),
        )
        return payout
