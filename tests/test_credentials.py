"""Tests for the SQL credential store and the credential connectivity check."""

from __future__ import annotations

import httpx
from sqlalchemy import select

from src.erp_sync.sync.credentials import SqlCredentialStore
from src.erp_sync.sync.models import ErpCredentialModel
from src.erp_sync.sync.schemas import Credentials


def _make_credentials(account: str = "1234", **overrides) -> Credentials:
    defaults = {
        "tenant_id": "tenant-alpha",
        "remote_account_id": account,
        "secret_key": f"key-{account}",
        "api_endpoint": "https://erp.test/api/",
    }
    defaults.update(overrides)
    return Credentials(**defaults)


async def _rows(session_factory) -> list[ErpCredentialModel]:
    async for session in session_factory():
        result = await session.execute(select(ErpCredentialModel))
        return list(result.scalars().all())


# ── Storage ───────────────────────────────────────────────────────────────


class TestSqlCredentialStore:
    async def test_get_unknown_tenant(self, session_factory):
        assert await SqlCredentialStore(session_factory).get("nobody") is None

    async def test_save_then_get(self, session_factory):
        store = SqlCredentialStore(session_factory)

        await store.save("tenant-alpha", _make_credentials())

        assert await store.get("tenant-alpha") == _make_credentials()

    async def test_save_supersedes_previous_credentials(self, session_factory):
        store = SqlCredentialStore(session_factory)
        await store.save("tenant-alpha", _make_credentials("1111"))

        await store.save("tenant-alpha", _make_credentials("2222"))

        assert (await store.get("tenant-alpha")).remote_account_id == "2222"
        rows = await _rows(session_factory)
        assert len(rows) == 2
        [old] = [r for r in rows if not r.is_active]
        assert old.remote_account_id == "1111"
        assert old.deactivated_at is not None

    async def test_delete_deactivates(self, session_factory):
        store = SqlCredentialStore(session_factory)
        await store.save("tenant-alpha", _make_credentials())
        await store.save("tenant-beta", _make_credentials(tenant_id="tenant-beta"))

        await store.delete("tenant-alpha")

        assert await store.get("tenant-alpha") is None
        assert await store.get("tenant-beta") is not None
        assert len(await _rows(session_factory)) == 2


# ── Connectivity Check ─────────────────────────────────────────────────────


class TestCredentialCheck:
    async def test_valid_credentials(self, session_factory):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"opr_code": "0", "product_list": []})

        result = await SqlCredentialStore(session_factory).test(
            _make_credentials(), transport=httpx.MockTransport(handler)
        )

        assert result.ok is True
        assert result.error is None
        assert seen[0].url.path.endswith("/product_list")

    async def test_rejected_credentials(self, session_factory):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(
                200, json={"opr_code": "1", "opr_desc": "Invalid secret key"}
            )
        )

        result = await SqlCredentialStore(session_factory).test(
            _make_credentials(), transport=transport
        )

        assert result.ok is False
        assert "Invalid secret key" in result.error

    async def test_unreachable_erp(self, session_factory):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        result = await SqlCredentialStore(session_factory).test(
            _make_credentials(), transport=httpx.MockTransport(handler)
        )

        assert result.ok is False
