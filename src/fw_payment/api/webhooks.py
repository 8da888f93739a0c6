"""Selcom payment callbacks.

Always answers 200 so the gateway stops retrying: a callback that cannot be
applied is logged and left for reconciliation, never bounced back.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.database import get_db_session
from src.fw_common.errors import AppError
from src.fw_payment.application.escrow_service import EscrowService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

_escrow = EscrowService()


@router.post("/selcom")
async def selcom_callback(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> dict[str, str]:
    raw_body = await request.body()
    signature = request.headers.get("x-selcom-digest") or request.headers.get(
        "x-selcom-signature", ""
    )
    try:
        tx = await _escrow.on_gateway_callback(db, raw_body, signature)
    except AppError as exc:
        logger.warning("Selcom callback not applied: %s (%s)", exc.message, exc.error)
        return {"status": "ignored"}
    except Exception:
        # Acknowledged anyway; the transaction is left for reconciliation
        logger.exception("Selcom callback processing failed")
        return {"status": "ignored"}
    return {"status": "ok", "transaction_id": tx.id, "transaction_status": tx.status}
