"""HTTP-level tests: envelope, auth guards and the Selcom webhook."""

from collections.abc import AsyncGenerator, Iterator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from src.fw_common.database import get_db_session
from src.fw_common.enums import Role, TxStatus
from src.fw_common.errors import InvalidSignatureError
from src.fw_gateway.auth.jwt_handler import create_access_token
from src.main import app


@pytest.fixture(autouse=True)
def fake_db() -> Iterator[AsyncMock]:
    db = AsyncMock()

    async def _session() -> AsyncGenerator[AsyncMock, None]:
        yield db

    app.dependency_overrides[get_db_session] = _session
    yield db
    app.dependency_overrides.clear()


def _auth(user_id: str, role: Role) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


class TestAuth:
    async def test_missing_token(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/jobs")
        assert resp.status_code == 401
        body = resp.json()
        assert body["code"] == 1001
        assert body["error"] == "UNAUTHORIZED"
        assert body["request_id"] == resp.headers["X-Request-ID"]

    async def test_customer_cannot_read_wallet(self, client: AsyncClient) -> None:
        resp = await client.get("/api/v1/wallet", headers=_auth("cust-1", Role.CUSTOMER))
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    async def test_fundi_cannot_resolve_disputes(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/api/v1/admin/disputes/disp-1/review", headers=_auth("fundi-1", Role.FUNDI)
        )
        assert resp.status_code == 403


class TestSelcomWebhook:
    async def test_applied_callback(self, client: AsyncClient) -> None:
        escrow = MagicMock()
        escrow.on_gateway_callback = AsyncMock(
            return_value=MagicMock(id="tx-1", status=TxStatus.HELD_ESCROW.value)
        )
        with patch("src.fw_payment.api.webhooks._escrow", escrow):
            resp = await client.post(
                "/api/v1/webhooks/selcom",
                content=b'{"transid": "tx-1", "result": "SUCCESS"}',
                headers={"x-selcom-digest": "sig"},
            )

        assert resp.status_code == 200
        assert resp.json() == {
            "status": "ok",
            "transaction_id": "tx-1",
            "transaction_status": "held_escrow",
        }
        _db, raw, signature = escrow.on_gateway_callback.await_args.args
        assert raw == b'{"transid": "tx-1", "result": "SUCCESS"}'
        assert signature == "sig"

    async def test_rejected_callback_still_answers_200(self, client: AsyncClient) -> None:
        escrow = MagicMock()
        escrow.on_gateway_callback = AsyncMock(side_effect=InvalidSignatureError())
        with patch("src.fw_payment.api.webhooks._escrow", escrow):
            resp = await client.post("/api/v1/webhooks/selcom", content=b"{}")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ignored"}

    async def test_database_failure_still_answers_200(self, client: AsyncClient) -> None:
        escrow = MagicMock()
        escrow.on_gateway_callback = AsyncMock(
            side_effect=OperationalError("UPDATE payment_transactions", {}, Exception("gone"))
        )
        with patch("src.fw_payment.api.webhooks._escrow", escrow):
            resp = await client.post(
                "/api/v1/webhooks/selcom",
                content=b'{"order_id": "tx-1", "result": "SUCCESS"}',
                headers={"x-selcom-digest": "sig"},
            )

        assert resp.status_code == 200
        assert resp.json() == {"status": "ignored"}
