"""fw_payment REST API — escrow payments, tips, fundi wallet and payouts."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.actor import Actor
from src.fw_common.database import get_db_session
from src.fw_common.response import ApiResponse, success_response
from src.fw_gateway.auth.dependencies import get_current_actor, require_customer, require_fundi
from src.fw_payment.application.escrow_service import EscrowService
from src.fw_payment.application.payout_service import PayoutService
from src.fw_payment.application.schemas import (
    InitiatePaymentRequest,
    PayoutRequestBody,
    PayoutResponse,
    TipRequest,
    TransactionResponse,
    WalletResponse,
)

router = APIRouter(tags=["payments"])

_escrow = EscrowService()
_payouts = PayoutService()


@router.post("/payments/initiate", status_code=201)
async def initiate_payment(
    body: InitiatePaymentRequest,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _escrow.initiate(db, body.job_id, actor, body.payment_method, body.phone_number)
    return success_response(TransactionResponse.from_domain(tx).model_dump(), request)


@router.get("/payments/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _escrow.get_transaction(db, transaction_id, actor)
    return success_response(TransactionResponse.from_domain(tx).model_dump(), request)


@router.get("/jobs/{job_id}/payments")
async def list_job_payments(
    job_id: str,
    actor: Annotated[Actor, Depends(get_current_actor)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    txs = await _escrow.list_job_payments(db, job_id, actor)
    return success_response([TransactionResponse.from_domain(t).model_dump() for t in txs], request)


@router.post("/jobs/{job_id}/tip", status_code=201)
async def send_tip(
    job_id: str,
    body: TipRequest,
    actor: Annotated[Actor, Depends(require_customer)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _escrow.send_tip(
        db, job_id, actor, body.amount_tzs, body.payment_method, body.phone_number
    )
    return success_response(TransactionResponse.from_domain(tx).model_dump(), request)


@router.get("/wallet")
async def get_wallet(
    actor: Annotated[Actor, Depends(require_fundi)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    wallet = await _payouts.get_wallet(db, actor.user_id)
    return success_response(WalletResponse.from_domain(wallet).model_dump(), request)


@router.post("/wallet/payouts", status_code=201)
async def request_payout(
    body: PayoutRequestBody,
    actor: Annotated[Actor, Depends(require_fundi)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    payout = await _payouts.request_payout(
        db, actor, body.amount_tzs, body.payout_network, body.payout_number
    )
    return success_response(PayoutResponse.from_domain(payout).model_dump(), request)


@router.get("/wallet/payouts")
async def list_payouts(
    actor: Annotated[Actor, Depends(require_fundi)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int = Query(20, ge=1, le=100),
) -> ApiResponse:
    payouts = await _payouts.list_payouts(db, actor.user_id, limit)
    return success_response([PayoutResponse.from_domain(p).model_dump() for p in payouts], request)
