"""Payment, wallet and payout repositories.

All balance-mutating operations use atomic PostgreSQL UPDATE ... RETURNING.
A result of 0 rows means a business constraint was violated (insufficient
balance, escrow no longer held).

Transaction ownership: the CALLER (application service) holds the unit of work.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.errors import InternalError, PayoutNotFoundError, TransactionNotFoundError
from src.fw_payment.domain.models import PaymentTransaction, PayoutRequest, Wallet

# ---------------------------------------------------------------------------
# SQL: payment_transactions
# ---------------------------------------------------------------------------

_TX_COLUMNS = """
    id, job_id, idempotency_key, amount_tzs, platform_fee_tzs, vat_tzs,
    net_to_fundi_tzs, direction, status, payer_id, payee_id, payment_method,
    phone_number, gateway_reference, gateway_raw_response, failure_reason,
    retry_count, created_at, updated_at
"""

_INSERT_TX_SQL = text(f"""
    INSERT INTO payment_transactions
        (job_id, idempotency_key, amount_tzs, platform_fee_tzs, vat_tzs,
         net_to_fundi_tzs, direction, status, payer_id, payee_id,
         payment_method, phone_number)
    VALUES
        (:job_id, :idempotency_key, :amount_tzs, :platform_fee_tzs, :vat_tzs,
         :net_to_fundi_tzs, :direction, :status, :payer_id, :payee_id,
         :payment_method, :phone_number)
    RETURNING {_TX_COLUMNS}
""")

_OPEN_ESCROW_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM payment_transactions
    WHERE job_id = :job_id
      AND direction = 'customer_to_escrow'
      AND status IN ('initiated', 'processing', 'held_escrow')
    ORDER BY created_at DESC
    LIMIT 1
""")

_GET_TX_SQL = text(f"SELECT {_TX_COLUMNS} FROM payment_transactions WHERE id = :tx_id")

_LOCK_TX_SQL = text(f"""
    SELECT {_TX_COLUMNS} FROM payment_transactions WHERE id = :tx_id FOR UPDATE
""")

_LOCK_HELD_ESCROW_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM payment_transactions
    WHERE job_id = :job_id
      AND direction = 'customer_to_escrow'
      AND status = 'held_escrow'
    FOR UPDATE
""")

_MARK_PROCESSING_SQL = text(f"""
    UPDATE payment_transactions
    SET status = 'processing',
        gateway_reference = :gateway_reference,
        updated_at = NOW()
    WHERE id = :tx_id
    RETURNING {_TX_COLUMNS}
""")

_MARK_HELD_SQL = text(f"""
    UPDATE payment_transactions
    SET status = 'held_escrow',
        gateway_reference = COALESCE(:gateway_reference, gateway_reference),
        gateway_raw_response = CAST(:raw AS JSONB),
        failure_reason = NULL,
        updated_at = NOW()
    WHERE id = :tx_id
    RETURNING {_TX_COLUMNS}
""")

# A repeated failure callback on an already-failed row only bumps retry_count
_MARK_FAILED_SQL = text(f"""
    UPDATE payment_transactions
    SET status = 'failed',
        failure_reason = :reason,
        gateway_raw_response = COALESCE(CAST(:raw AS JSONB), gateway_raw_response),
        retry_count = retry_count + 1,
        updated_at = NOW()
    WHERE id = :tx_id
    RETURNING {_TX_COLUMNS}
""")

_SETTLE_ESCROW_SQL = text(f"""
    UPDATE payment_transactions
    SET status = :status,
        updated_at = NOW()
    WHERE id = :tx_id AND status = 'held_escrow'
    RETURNING {_TX_COLUMNS}
""")

_LIST_FOR_JOB_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM payment_transactions
    WHERE job_id = :job_id
    ORDER BY created_at
""")

# ---------------------------------------------------------------------------
# SQL: fundi_wallets
# ---------------------------------------------------------------------------

_WALLET_COLUMNS = "fundi_id, balance_tzs, pending_tzs, total_earned_tzs, updated_at"

_GET_WALLET_SQL = text(f"SELECT {_WALLET_COLUMNS} FROM fundi_wallets WHERE fundi_id = :fundi_id")

_CREDIT_SQL = text(f"""
    INSERT INTO fundi_wallets (fundi_id, balance_tzs, pending_tzs, total_earned_tzs)
    VALUES (:fundi_id, :amount, 0, :amount)
    ON CONFLICT (fundi_id) DO UPDATE
        SET balance_tzs = fundi_wallets.balance_tzs + EXCLUDED.balance_tzs,
            total_earned_tzs = fundi_wallets.total_earned_tzs + EXCLUDED.total_earned_tzs,
            updated_at = NOW()
    RETURNING {_WALLET_COLUMNS}
""")

_DEBIT_FOR_PAYOUT_SQL = text(f"""
    UPDATE fundi_wallets
    SET balance_tzs = balance_tzs - :amount,
        pending_tzs = pending_tzs + :amount,
        updated_at = NOW()
    WHERE fundi_id = :fundi_id AND balance_tzs >= :amount
    RETURNING {_WALLET_COLUMNS}
""")

_SETTLE_PENDING_SQL = text(f"""
    UPDATE fundi_wallets
    SET pending_tzs = pending_tzs - :amount,
        updated_at = NOW()
    WHERE fundi_id = :fundi_id AND pending_tzs >= :amount
    RETURNING {_WALLET_COLUMNS}
""")

_REVERSE_PAYOUT_SQL = text(f"""
    UPDATE fundi_wallets
    SET balance_tzs = balance_tzs + :amount,
        pending_tzs = pending_tzs - :amount,
        updated_at = NOW()
    WHERE fundi_id = :fundi_id AND pending_tzs >= :amount
    RETURNING {_WALLET_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: payout_requests
# ---------------------------------------------------------------------------

_PAYOUT_COLUMNS = """
    id, fundi_id, amount_tzs, payout_network, payout_number, status,
    gateway_reference, failure_reason, requested_at, processed_at
"""

_INSERT_PAYOUT_SQL = text(f"""
    INSERT INTO payout_requests (fundi_id, amount_tzs, payout_network, payout_number, status)
    VALUES (:fundi_id, :amount, :network, :number, 'pending')
    RETURNING {_PAYOUT_COLUMNS}
""")

_LOCK_PAYOUT_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS} FROM payout_requests WHERE id = :payout_id FOR UPDATE
""")

_UPDATE_PAYOUT_SQL = text(f"""
    UPDATE payout_requests
    SET status = :status,
        gateway_reference = COALESCE(:gateway_reference, gateway_reference),
        failure_reason = :failure_reason,
        processed_at = CASE WHEN :status IN ('completed', 'failed') THEN NOW()
                            ELSE processed_at END
    WHERE id = :payout_id
    RETURNING {_PAYOUT_COLUMNS}
""")

_LIST_PAYOUTS_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM payout_requests
    WHERE fundi_id = :fundi_id
    ORDER BY requested_at DESC
    LIMIT :limit
""")

_STALE_PENDING_PAYOUTS_SQL = text("""
    SELECT id
    FROM payout_requests
    WHERE status = 'pending' AND requested_at < :requested_before
    ORDER BY requested_at
    LIMIT :limit
""")


def _row_to_tx(row: object) -> PaymentTransaction:
    raw = row.gateway_raw_response  # type: ignore[attr-defined]
    if isinstance(raw, str):
        raw = json.loads(raw)
    return PaymentTransaction(
        id=str(row.id),  # type: ignore[attr-defined]
        job_id=str(row.job_id),  # type: ignore[attr-defined]
        idempotency_key=row.idempotency_key,  # type: ignore[attr-defined]
        amount_tzs=row.amount_tzs,  # type: ignore[attr-defined]
        platform_fee_tzs=row.platform_fee_tzs,  # type: ignore[attr-defined]
        vat_tzs=row.vat_tzs,  # type: ignore[attr-defined]
        net_to_fundi_tzs=row.net_to_fundi_tzs,  # type: ignore[attr-defined]
        direction=row.direction,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        payer_id=row.payer_id,  # type: ignore[attr-defined]
        payee_id=row.payee_id,  # type: ignore[attr-defined]
        payment_method=row.payment_method,  # type: ignore[attr-defined]
        phone_number=row.phone_number,  # type: ignore[attr-defined]
        gateway_reference=row.gateway_reference,  # type: ignore[attr-defined]
        gateway_raw_response=raw,
        failure_reason=row.failure_reason,  # type: ignore[attr-defined]
        retry_count=row.retry_count,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_wallet(row: object) -> Wallet:
    return Wallet(
        fundi_id=row.fundi_id,  # type: ignore[attr-defined]
        balance_tzs=row.balance_tzs,  # type: ignore[attr-defined]
        pending_tzs=row.pending_tzs,  # type: ignore[attr-defined]
        total_earned_tzs=row.total_earned_tzs,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_payout(row: object) -> PayoutRequest:
    return PayoutRequest(
        id=str(row.id),  # type: ignore[attr-defined]
        fundi_id=row.fundi_id,  # type: ignore[attr-defined]
        amount_tzs=row.amount_tzs,  # type: ignore[attr-defined]
        payout_network=row.payout_network,  # type: ignore[attr-defined]
        payout_number=row.payout_number,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        gateway_reference=row.gateway_reference,  # type: ignore[attr-defined]
        failure_reason=row.failure_reason,  # type: ignore[attr-defined]
        requested_at=row.requested_at,  # type: ignore[attr-defined]
        processed_at=row.processed_at,  # type: ignore[attr-defined]
    )


class PaymentRepository:
    """Ledger of payment transactions. Rows are never deleted."""

    async def find_open_escrow(
        self, db: AsyncSession, job_id: str
    ) -> PaymentTransaction | None:
        result = await db.execute(_OPEN_ESCROW_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_tx(row) if row is not None else None

    async def insert_transaction(self, db: AsyncSession, **fields: Any) -> PaymentTransaction:
        params = {
            "payer_id": None,
            "payee_id": None,
            "payment_method": None,
            "phone_number": None,
            **fields,
        }
        result = await db.execute(_INSERT_TX_SQL, params)
        return _row_to_tx(result.fetchone())

    async def get_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> PaymentTransaction | None:
        result = await db.execute(_GET_TX_SQL, {"tx_id": transaction_id})
        row = result.fetchone()
        return _row_to_tx(row) if row is not None else None

    async def lock_transaction(
        self, db: AsyncSession, transaction_id: str
    ) -> PaymentTransaction | None:
        result = await db.execute(_LOCK_TX_SQL, {"tx_id": transaction_id})
        row = result.fetchone()
        return _row_to_tx(row) if row is not None else None

    async def lock_held_escrow(
        self, db: AsyncSession, job_id: str
    ) -> PaymentTransaction | None:
        result = await db.execute(_LOCK_HELD_ESCROW_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_tx(row) if row is not None else None

    async def mark_processing(
        self, db: AsyncSession, transaction_id: str, gateway_reference: str
    ) -> PaymentTransaction:
        result = await db.execute(
            _MARK_PROCESSING_SQL,
            {"tx_id": transaction_id, "gateway_reference": gateway_reference},
        )
        return self._one(result.fetchone(), transaction_id)

    async def mark_held(
        self,
        db: AsyncSession,
        transaction_id: str,
        gateway_reference: str | None,
        raw_response: dict[str, Any],
    ) -> PaymentTransaction:
        result = await db.execute(
            _MARK_HELD_SQL,
            {
                "tx_id": transaction_id,
                "gateway_reference": gateway_reference,
                "raw": json.dumps(raw_response),
            },
        )
        return self._one(result.fetchone(), transaction_id)

    async def mark_failed(
        self,
        db: AsyncSession,
        transaction_id: str,
        reason: str,
        raw_response: dict[str, Any] | None = None,
    ) -> PaymentTransaction:
        result = await db.execute(
            _MARK_FAILED_SQL,
            {
                "tx_id": transaction_id,
                "reason": reason,
                "raw": json.dumps(raw_response) if raw_response is not None else None,
            },
        )
        return self._one(result.fetchone(), transaction_id)

    async def settle_escrow(
        self, db: AsyncSession, transaction_id: str, status: str
    ) -> PaymentTransaction | None:
        """held_escrow -> released | refunded. None if the row was no longer held."""
        result = await db.execute(_SETTLE_ESCROW_SQL, {"tx_id": transaction_id, "status": status})
        row = result.fetchone()
        return _row_to_tx(row) if row is not None else None

    async def list_for_job(self, db: AsyncSession, job_id: str) -> list[PaymentTransaction]:
        result = await db.execute(_LIST_FOR_JOB_SQL, {"job_id": job_id})
        return [_row_to_tx(r) for r in result.fetchall()]

    @staticmethod
    def _one(row: object | None, transaction_id: str) -> PaymentTransaction:
        if row is None:
            raise TransactionNotFoundError(transaction_id)
        return _row_to_tx(row)


class WalletRepository:
    """Fundi wallets. Balances can never go negative (CHECK constraints back this)."""

    async def get_wallet(self, db: AsyncSession, fundi_id: str) -> Wallet | None:
        result = await db.execute(_GET_WALLET_SQL, {"fundi_id": fundi_id})
        row = result.fetchone()
        return _row_to_wallet(row) if row is not None else None

    async def credit(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet:
        result = await db.execute(_CREDIT_SQL, {"fundi_id": fundi_id, "amount": amount})
        return _row_to_wallet(result.fetchone())

    async def debit_for_payout(
        self, db: AsyncSession, fundi_id: str, amount: int
    ) -> Wallet | None:
        """Available -> pending. None when the balance does not cover ``amount``."""
        result = await db.execute(_DEBIT_FOR_PAYOUT_SQL, {"fundi_id": fundi_id, "amount": amount})
        row = result.fetchone()
        return _row_to_wallet(row) if row is not None else None

    async def settle_pending(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet:
        result = await db.execute(_SETTLE_PENDING_SQL, {"fundi_id": fundi_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Pending balance of {fundi_id} below payout amount {amount}")
        return _row_to_wallet(row)

    async def reverse_payout(self, db: AsyncSession, fundi_id: str, amount: int) -> Wallet:
        result = await db.execute(_REVERSE_PAYOUT_SQL, {"fundi_id": fundi_id, "amount": amount})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Pending balance of {fundi_id} below payout amount {amount}")
        return _row_to_wallet(row)


class PayoutRepository:
    async def insert_payout(
        self,
        db: AsyncSession,
        fundi_id: str,
        amount: int,
        network: str,
        number: str,
    ) -> PayoutRequest:
        result = await db.execute(
            _INSERT_PAYOUT_SQL,
            {"fundi_id": fundi_id, "amount": amount, "network": network, "number": number},
        )
        return _row_to_payout(result.fetchone())

    async def lock_payout(self, db: AsyncSession, payout_id: str) -> PayoutRequest | None:
        result = await db.execute(_LOCK_PAYOUT_SQL, {"payout_id": payout_id})
        row = result.fetchone()
        return _row_to_payout(row) if row is not None else None

    async def update_payout(
        self,
        db: AsyncSession,
        payout_id: str,
        status: str,
        gateway_reference: str | None = None,
        failure_reason: str | None = None,
    ) -> PayoutRequest:
        result = await db.execute(
            _UPDATE_PAYOUT_SQL,
            {
                "payout_id": payout_id,
                "status": status,
                "gateway_reference": gateway_reference,
                "failure_reason": failure_reason,
            },
        )
        row = result.fetchone()
        if row is None:
            raise PayoutNotFoundError(payout_id)
        return _row_to_payout(row)

    async def list_payouts(
        self, db: AsyncSession, fundi_id: str, limit: int
    ) -> list[PayoutRequest]:
        result = await db.execute(_LIST_PAYOUTS_SQL, {"fundi_id": fundi_id, "limit": limit})
        return [_row_to_payout(r) for r in result.fetchall()]

    async def list_stale_pending(
        self, db: AsyncSession, requested_before: datetime, limit: int
    ) -> list[str]:
        result = await db.execute(
            _STALE_PENDING_PAYOUTS_SQL, {"requested_before": requested_before, "limit": limit}
        )
        return [str(r.id) for r in result.fetchall()]
