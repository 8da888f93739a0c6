"""Async HTTP client for the Selcom mobile-money gateway.

Implements the PaymentGateway port:
  - create_order       POST /checkout/create-order-minimal
  - trigger_collection POST /checkout/wallet-payment   (USSD push to the payer)
  - wallet_cashin      POST /walletcashin/process       (fundi payout)
  - verify_callback_signature: hex HMAC-SHA256 of the raw webhook body

Every request is signed: Digest = base64(HMAC-SHA256(api_secret,
"timestamp=<ts>&<field>=<value>...")) over the fields listed in Signed-Fields.

When credentials are not configured and APP_ENV is "development", calls are
simulated and succeed, so the whole payment flow can be exercised locally.
"""

import base64
import hashlib
import hmac
import logging
from typing import Any

import httpx

from config.settings import settings
from src.fw_common.datetime_utils import utc_now
from src.fw_common.errors import GatewayError
from src.fw_payment.domain.gateway import GatewayResult

logger = logging.getLogger(__name__)

_SUCCESS_CODE = "000"


class SelcomClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        api_secret: str | None = None,
        vendor_id: str | None = None,
        webhook_secret: str | None = None,
        timeout_seconds: int | None = None,
        app_env: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or settings.SELCOM_BASE_URL
        self._api_key = settings.SELCOM_API_KEY if api_key is None else api_key
        self._api_secret = settings.SELCOM_API_SECRET if api_secret is None else api_secret
        self._vendor_id = settings.SELCOM_VENDOR_ID if vendor_id is None else vendor_id
        self._webhook_secret = (
            settings.SELCOM_WEBHOOK_SECRET if webhook_secret is None else webhook_secret
        )
        self._app_env = app_env or settings.APP_ENV
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds or settings.SELCOM_TIMEOUT_SECONDS),
            transport=transport,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._api_secret and self._vendor_id)

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # PaymentGateway port
    # ------------------------------------------------------------------

    async def create_order(
        self, order_id: str, amount: int, payer_phone: str, webhook_url: str
    ) -> GatewayResult:
        if not self.is_configured:
            return self._simulate("create_order", order_id, f"DEV-{order_id}")
        body = {
            "vendor": self._vendor_id,
            "order_id": order_id,
            "buyer_phone": payer_phone,
            "buyer_email": "",
            "buyer_name": "",
            "amount": amount,
            "currency": "TZS",
            "webhook": base64.b64encode(webhook_url.encode()).decode(),
            "no_of_items": 1,
        }
        logger.info("Selcom create_order: order_id=%s amount=%d", order_id, amount)
        return await self._post("/checkout/create-order-minimal", body)

    async def trigger_collection(
        self, order_id: str, transaction_id: str, payer_phone: str
    ) -> GatewayResult:
        if not self.is_configured:
            return self._simulate("trigger_collection", order_id, f"DEV-{transaction_id}")
        body = {"transid": transaction_id, "order_id": order_id, "msisdn": payer_phone}
        logger.info("Selcom wallet-payment: order_id=%s", order_id)
        return await self._post("/checkout/wallet-payment", body)

    async def wallet_cashin(
        self, trans_id: str, amount: int, receiver_phone: str
    ) -> GatewayResult:
        if not self.is_configured:
            return self._simulate("wallet_cashin", trans_id, f"DEV-PAYOUT-{trans_id}")
        body = {
            "transid": trans_id,
            "utilityref": receiver_phone,
            "amount": amount,
            "vendor": self._vendor_id,
            "msisdn": receiver_phone,
        }
        logger.info("Selcom walletcashin: trans_id=%s amount=%d", trans_id, amount)
        return await self._post("/walletcashin/process", body)

    def verify_callback_signature(self, raw_body: bytes, signature: str) -> bool:
        if not self._webhook_secret:
            logger.warning("Selcom webhook secret not configured")
            return self._app_env == "development"
        expected = hmac.new(self._webhook_secret.encode(), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature or "")

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _simulate(self, operation: str, order_id: str, reference: str) -> GatewayResult:
        if self._app_env != "development":
            raise GatewayError("Selcom payment gateway not configured")
        logger.warning("Selcom not configured, simulating %s: order_id=%s", operation, order_id)
        return GatewayResult(success=True, reference=reference, message="Development mode: simulated")

    def _auth_headers(self, body: dict[str, Any]) -> dict[str, str]:
        timestamp = utc_now().isoformat(timespec="seconds")
        signed_fields = list(body)
        message = "&".join(
            [f"timestamp={timestamp}"] + [f"{k}={body[k]}" for k in signed_fields]
        )
        digest = hmac.new(self._api_secret.encode(), message.encode(), hashlib.sha256).digest()
        return {
            "Authorization": f"SELCOM {base64.b64encode(self._api_key.encode()).decode()}",
            "Digest-Method": "HS256",
            "Digest": base64.b64encode(digest).decode(),
            "Timestamp": timestamp,
            "Signed-Fields": ",".join(signed_fields),
        }

    async def _post(self, path: str, body: dict[str, Any]) -> GatewayResult:
        try:
            response = await self._client.post(path, json=body, headers=self._auth_headers(body))
        except httpx.HTTPError as exc:
            logger.warning("Selcom request failed: path=%s error=%s", path, exc)
            raise GatewayError(f"cannot reach Selcom: {exc}") from exc

        if response.status_code >= 500:
            raise GatewayError(f"Selcom returned HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayError("Selcom returned a non-JSON response") from exc

        success = data.get("resultcode") == _SUCCESS_CODE
        if not success:
            logger.warning(
                "Selcom rejected request: path=%s resultcode=%s message=%s",
                path,
                data.get("resultcode"),
                data.get("message"),
            )
        return GatewayResult(
            success=success,
            reference=str(data.get("reference") or ""),
            message=str(data.get("message") or data.get("result") or ""),
        )


_gateway: SelcomClient | None = None


def get_gateway() -> SelcomClient:
    """Shared gateway client (one httpx connection pool per process)."""
    global _gateway  # noqa: PLW0603
    if _gateway is None:
        _gateway = SelcomClient()
    return _gateway


async def close_gateway() -> None:
    global _gateway  # noqa: PLW0603
    if _gateway is not None:
        await _gateway.close()
        _gateway = None
