"""Payment gateway port.

Collections (customer → escrow) are two calls: create an order, then push a
USSD collection prompt to the payer's phone. The gateway reports the outcome
later through a signed webhook. Payouts use a direct wallet cash-in.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    reference: str
    message: str = ""


class PaymentGateway(Protocol):
    async def create_order(
        self, order_id: str, amount: int, payer_phone: str, webhook_url: str
    ) -> GatewayResult: ...

    async def trigger_collection(
        self, order_id: str, transaction_id: str, payer_phone: str
    ) -> GatewayResult: ...

    def verify_callback_signature(self, raw_body: bytes, signature: str) -> bool: ...

    async def wallet_cashin(
        self, trans_id: str, amount: int, receiver_phone: str
    ) -> GatewayResult: ...
