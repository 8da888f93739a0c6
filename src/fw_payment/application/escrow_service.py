"""EscrowService — customer payments into escrow and their release to fundis.

Life of a job payment:

    initiate ──► initiated ──gateway accepts──► processing ──callback ok──► held_escrow
                     │                              │                          │
                     └──gateway rejects──► failed ◄─┘ callback failed          │
                                                                               ▼
                             released (fundi credited)  ◄── release / dispute ──┤
                             refunded (customer)        ◄── dispute ────────────┘

Row locks are always taken job first, then the payment transaction, then the
wallet. Every balance change happens in the same unit of work as the ledger
status change that justifies it.
"""

import json
import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.fw_common.actor import Actor
from src.fw_common.datetime_utils import utc_now
from src.fw_common.enums import (
    JobStatus,
    NotificationTemplate,
    Role,
    TxDirection,
    TxStatus,
)
from src.fw_common.errors import (
    DuplicateRequestError,
    ForbiddenError,
    GatewayError,
    InvalidAmountError,
    InvalidPaymentStateError,
    InvalidRequestError,
    InvalidSignatureError,
    JobNotFoundError,
    TransactionNotFoundError,
)
from src.fw_common.id_generator import new_idempotency_key
from src.fw_common.money import compute_fees, validate_amount
from src.fw_common.unit_of_work import unit_of_work
from src.fw_job.domain.repository import JobRepositoryProtocol
from src.fw_job.infrastructure.persistence import JobRepository
from src.fw_notification.sink import NotificationSink, QueuedNotificationSink
from src.fw_payment.application.schemas import GatewayCallback
from src.fw_payment.domain.gateway import PaymentGateway
from src.fw_payment.domain.models import PaymentTransaction
from src.fw_payment.domain.repository import (
    PaymentRepositoryProtocol,
    WalletRepositoryProtocol,
)
from src.fw_payment.infrastructure.persistence import PaymentRepository, WalletRepository
from src.fw_payment.infrastructure.selcom_client import get_gateway
from src.fw_scheduler.scheduler import TaskScheduler, get_task_scheduler

logger = logging.getLogger(__name__)

ESCROW_RELEASE_TASK = "escrow.release"

_PAYABLE = {
    JobStatus.ACCEPTED,
    JobStatus.EN_ROUTE,
    JobStatus.ARRIVED,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
}

# Callbacks for these states are duplicates: nothing left to do
_SETTLED = {TxStatus.HELD_ESCROW, TxStatus.RELEASED, TxStatus.REFUNDED}


class EscrowService:
    def __init__(
        self,
        jobs: JobRepositoryProtocol | None = None,
        payments: PaymentRepositoryProtocol | None = None,
        wallets: WalletRepositoryProtocol | None = None,
        gateway: PaymentGateway | None = None,
        notifier: NotificationSink | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self._jobs: JobRepositoryProtocol = jobs or JobRepository()
        self._payments: PaymentRepositoryProtocol = payments or PaymentRepository()
        self._wallets: WalletRepositoryProtocol = wallets or WalletRepository()
        self._gateway = gateway
        self._notifier: NotificationSink = notifier or QueuedNotificationSink(scheduler)
        self._scheduler = scheduler

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_gateway()

    @property
    def tasks(self) -> TaskScheduler:
        return self._scheduler or get_task_scheduler()

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    async def initiate(
        self,
        db: AsyncSession,
        job_id: str,
        actor: Actor,
        payment_method: str,
        phone_number: str,
    ) -> PaymentTransaction:
        """Start collecting the job's quoted amount into escrow.

        Idempotent per job: while a collection is in flight the existing
        transaction is returned unchanged and the gateway is not called again.
        The job row lock serializes concurrent calls; the partial unique index
        on open escrow transactions backs it at the database level.
        """
        created = False
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if actor.role is not Role.ADMIN and job.customer_id != actor.user_id:
                raise ForbiddenError("Only the job's customer can pay for it")
            if JobStatus(job.status) not in _PAYABLE:
                raise InvalidPaymentStateError(f"Job in status {job.status} cannot be paid")

            tx = await self._payments.find_open_escrow(db, job_id)
            if tx is not None and tx.status == TxStatus.HELD_ESCROW:
                raise DuplicateRequestError(f"Payment for job {job_id} is already held in escrow")
            if tx is None:
                fees = compute_fees(
                    job.quoted_amount_tzs, settings.PLATFORM_FEE_PERCENT, settings.VAT_PERCENT
                )
                tx = await self._payments.insert_transaction(
                    db,
                    job_id=job_id,
                    idempotency_key=new_idempotency_key("escrow"),
                    amount_tzs=fees.gross,
                    platform_fee_tzs=fees.fee,
                    vat_tzs=fees.vat,
                    net_to_fundi_tzs=fees.net,
                    direction=TxDirection.CUSTOMER_TO_ESCROW.value,
                    status=TxStatus.INITIATED.value,
                    payer_id=job.customer_id,
                    payee_id=job.fundi_id,
                    payment_method=payment_method,
                    phone_number=phone_number,
                )
                created = True

        if not created:
            logger.info("Escrow already in flight: job=%s tx=%s status=%s", job_id, tx.id, tx.status)
            return tx

        # Gateway calls happen outside the row lock
        try:
            reference = await self._collect(tx, phone_number)
        except GatewayError as exc:
            async with unit_of_work(db):
                await self._payments.mark_failed(db, tx.id, exc.message)
            logger.warning("Escrow collection failed: job=%s tx=%s reason=%s", job_id, tx.id, exc.message)
            raise

        async with unit_of_work(db):
            tx = await self._payments.mark_processing(db, tx.id, reference)
        logger.info("Escrow collection started: job=%s tx=%s amount=%d", job_id, tx.id, tx.amount_tzs)
        return tx

    async def _collect(self, tx: PaymentTransaction, phone_number: str) -> str:
        webhook_url = f"{settings.API_BASE_URL}/api/v1/webhooks/selcom"
        order = await self.gateway.create_order(tx.id, tx.amount_tzs, phone_number, webhook_url)
        if not order.success:
            raise GatewayError(order.message or "order rejected")
        push = await self.gateway.trigger_collection(tx.id, tx.idempotency_key, phone_number)
        if not push.success:
            raise GatewayError(push.message or "collection rejected")
        return push.reference or order.reference

    async def on_gateway_callback(
        self, db: AsyncSession, raw_body: bytes, signature: str
    ) -> PaymentTransaction:
        """Apply a signed gateway callback to its transaction.

        Raises:
            InvalidSignatureError: before anything is parsed or mutated.
            InvalidRequestError: body is not a valid callback.
            TransactionNotFoundError: order_id matches no transaction.
        """
        if not self.gateway.verify_callback_signature(raw_body, signature):
            logger.warning("Rejected gateway callback with bad signature")
            raise InvalidSignatureError()

        try:
            raw = json.loads(raw_body)
            callback = GatewayCallback.model_validate(raw)
        except (ValueError, ValidationError) as exc:
            raise InvalidRequestError(f"Malformed gateway callback: {exc}") from exc

        async with unit_of_work(db):
            tx = await self._payments.lock_transaction(db, callback.order_id)
            if tx is None:
                raise TransactionNotFoundError(callback.order_id)

            if TxStatus(tx.status) in _SETTLED:
                logger.info("Duplicate gateway callback ignored: tx=%s status=%s", tx.id, tx.status)
                return tx

            if not callback.succeeded:
                tx = await self._payments.mark_failed(db, tx.id, callback.failure_reason, raw)
                logger.warning(
                    "Escrow payment failed: tx=%s reason=%s retries=%d",
                    tx.id,
                    tx.failure_reason,
                    tx.retry_count,
                )
                return tx

            if tx.status == TxStatus.FAILED:
                other = await self._payments.find_open_escrow(db, tx.job_id)
                if other is not None:
                    logger.critical(
                        "Late success on failed tx=%s while tx=%s is open for job=%s; "
                        "manual reconciliation required",
                        tx.id,
                        other.id,
                        tx.job_id,
                    )
                    return tx

            reference = callback.reference or callback.transid
            tx = await self._payments.mark_held(db, tx.id, reference, raw)
        logger.info("Escrow held: job=%s tx=%s amount=%d", tx.job_id, tx.id, tx.amount_tzs)
        return tx

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def schedule_release(self, job_id: str, at: datetime) -> str:
        """One delayed release per job; re-scheduling replaces the pending run."""
        return self.tasks.run_at(ESCROW_RELEASE_TASK, {"job_id": job_id}, at, key=job_id)

    async def release(self, db: AsyncSession, job_id: str) -> PaymentTransaction | None:
        """Release held escrow to the fundi's wallet.

        Safe to run any number of times. Returns None without side effects when
        the job is disputed, its release was cleared or is not yet due, or no
        payment is held.
        """
        now = utc_now()
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                logger.warning("Escrow release for unknown job %s", job_id)
                return None
            if job.status == JobStatus.DISPUTED or job.escrow_release_at is None:
                logger.info("Escrow release skipped: job=%s status=%s", job_id, job.status)
                return None
            if job.escrow_release_at > now:
                logger.info("Escrow release not yet due: job=%s at=%s", job_id, job.escrow_release_at)
                return None
            if job.fundi_id is None:
                logger.warning("Escrow release for job %s without a fundi", job_id)
                return None

            held = await self._payments.lock_held_escrow(db, job_id)
            if held is None:
                logger.info("No held escrow to release: job=%s", job_id)
                return None

            released = await self._payments.settle_escrow(db, held.id, TxStatus.RELEASED.value)
            if released is None:
                return None
            await self._wallets.credit(db, job.fundi_id, held.net_to_fundi_tzs)
            await self._payments.insert_transaction(
                db,
                job_id=job_id,
                idempotency_key=f"platform_fee:{held.id}",
                amount_tzs=held.platform_fee_tzs,
                platform_fee_tzs=held.platform_fee_tzs,
                vat_tzs=held.vat_tzs,
                net_to_fundi_tzs=0,
                direction=TxDirection.PLATFORM_FEE.value,
                status=TxStatus.RELEASED.value,
                payer_id=job.customer_id,
            )

        logger.info(
            "Escrow released: job=%s tx=%s fundi=%s net=%d",
            job_id,
            held.id,
            job.fundi_id,
            held.net_to_fundi_tzs,
        )
        self._notifier.enqueue(
            job.fundi_id,
            NotificationTemplate.PAYMENT_RELEASED,
            {"amount": held.net_to_fundi_tzs, "jobRef": job.job_reference},
            channels=("push", "sms"),
        )
        return released

    # ------------------------------------------------------------------
    # Tips
    # ------------------------------------------------------------------

    async def send_tip(
        self,
        db: AsyncSession,
        job_id: str,
        actor: Actor,
        amount: int,
        payment_method: str,
        phone_number: str,
    ) -> PaymentTransaction:
        amount = validate_amount(amount)
        if amount < settings.MIN_TIP_TZS:
            raise InvalidAmountError(f"minimum tip is {settings.MIN_TIP_TZS} TZS")

        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.customer_id != actor.user_id:
                raise ForbiddenError("Only the job's customer can tip")
            if job.status != JobStatus.COMPLETED or job.fundi_id is None:
                raise InvalidPaymentStateError("Tips are only possible on completed jobs")

            tip = await self._payments.insert_transaction(
                db,
                job_id=job_id,
                idempotency_key=new_idempotency_key("tip"),
                amount_tzs=amount,
                platform_fee_tzs=0,
                vat_tzs=0,
                net_to_fundi_tzs=amount,
                direction=TxDirection.TIP.value,
                status=TxStatus.RELEASED.value,
                payer_id=actor.user_id,
                payee_id=job.fundi_id,
                payment_method=payment_method,
                phone_number=phone_number,
            )
            await self._wallets.credit(db, job.fundi_id, amount)

        logger.info("Tip credited: job=%s fundi=%s amount=%d", job_id, job.fundi_id, amount)
        self._notifier.enqueue(
            job.fundi_id,
            NotificationTemplate.PAYMENT_RELEASED,
            {"amount": amount, "jobRef": job.job_reference, "kind": "tip"},
        )
        return tip

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_job_payments(
        self, db: AsyncSession, job_id: str, actor: Actor
    ) -> list[PaymentTransaction]:
        job = await self._jobs.get_job(db, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not actor.is_privileged and not job.is_party(actor.user_id):
            raise ForbiddenError("Not a party to this job")
        return await self._payments.list_for_job(db, job_id)

    async def get_transaction(
        self, db: AsyncSession, transaction_id: str, actor: Actor
    ) -> PaymentTransaction:
        tx = await self._payments.get_transaction(db, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        if not actor.is_privileged:
            job = await self._jobs.get_job(db, tx.job_id)
            if job is None or not job.is_party(actor.user_id):
                raise TransactionNotFoundError(transaction_id)
        return tx
