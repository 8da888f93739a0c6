"""Repository Protocols for fw_payment."""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_payment.domain.models import PaymentTransaction, PayoutRequest, Wallet


class PaymentRepositoryProtocol(Protocol):
    async def find_open_escrow(
        self, db: AsyncSession, job_id: str
    ) -> PaymentTransaction | None: ...

    async def insert_transaction(
        self, db: AsyncSession, **fields: Any
    ) -> PaymentTransaction: ...

    async def get_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> PaymentTransaction | None: ...

    async def lock_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> PaymentTransaction | None: ...

    async def lock_held_escrow(
        self, db: AsyncSession, job_id: str
    ) -> PaymentTransaction | None: ...

    async def mark_processing(
        self, db: AsyncSession, transaction_id: str, gateway_reference: str
    ) -> PaymentTransaction: ...

    async def mark_held(
        self,
        db: AsyncSession,
        transaction_id: str,
        gateway_reference: str | None,
        raw_response: dict[str, Any],
    ) -> PaymentTransaction: ...

    async def mark_failed(
        self,
        db: AsyncSession,
        transaction_id: str,
        reason: str,
        raw_response: dict[str, Any] | None = None,
    ) -> PaymentTransaction: ...

    async def settle_escrow(
        self, db: AsyncSession, transaction_id: str, status: str
    ) -> PaymentTransaction | None: ...

    async def list_for_job(
        self, db: AsyncSession, job_id: str
    ) -> list[PaymentTransaction]: ...


class WalletRepositoryProtocol(Protocol):
    async def get_wallet(self, db: AsyncSession, fundi_id: str) -> Wallet | None: ...

    async def credit(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet: ...

    async def debit_for_payout(
        self, db: AsyncSession, fundi_id: str, amount: int
    ) -> Wallet | None: ...

    async def settle_pending(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet: ...

    async def reverse_payout(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet: ...


class PayoutRepositoryProtocol(Protocol):
    async def insert_payout(
        self,
        db: AsyncSession,
        fundi_id: str,
        amount: int,
        network: str,
        number: str,
    ) -> PayoutRequest: ...

    async def lock_payout(self, db: AsyncSession, payout_id: str) -> PayoutRequest | None: ...

    async def update_payout(
        self,
        db: AsyncSession,
        payout_id: str,
        status: str,
        gateway_reference: str | None = None,
        failure_reason: str | None = None,
    ) -> PayoutRequest: ...

    async def list_payouts(
        self, db: AsyncSession, fundi_id: str, limit: int
    ) -> list[PayoutRequest]: ...

    async def list_stale_pending(
        self, db: AsyncSession, requested_before: datetime, limit: int
    ) -> list[str]: ...
