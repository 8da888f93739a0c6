"""Unit-of-work helpers for money and status mutations.

Every read-then-write path runs inside one of these: row locks taken with
SELECT ... FOR UPDATE are held until the commit, and any exception rolls the
whole unit back before it propagates.

Lock order across modules: dispute -> job -> payment transaction -> wallet/payout.
"""

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

L = TypeVar("L")
R = TypeVar("R")


@asynccontextmanager
async def unit_of_work(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Commit on clean exit, roll back and re-raise on any exception."""
    try:
        yield db
        await db.commit()
    except Exception:
        await db.rollback()
        raise


async def run_locked(
    db: AsyncSession,
    lock: Callable[[AsyncSession], Awaitable[L]],
    work: Callable[[AsyncSession, L], Awaitable[R]],
) -> R:
    """Acquire a row lock via ``lock`` and run ``work`` on the locked row.

    Both run in one transaction; the lock is released by the commit/rollback.
    """
    async with unit_of_work(db):
        locked = await lock(db)
        return await work(db, locked)
