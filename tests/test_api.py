"""
Tests for the HTTP surface.

Covers:
  - Every route reaches its gateway operation
  - Account and fee scenarios end to end
  - Uniform 404 + raw error body, and the typed mode
  - Body handling (empty, invalid JSON, non-object)
  - Conversion routes backed by the real xrpl-py adapter
  - Middleware: API key, CORS, rate limiting, body size cap
  - Health endpoint
"""

from __future__ import annotations

import pytest

from ripple_gateway.api import ROUTES, _TokenBucket
from ripple_gateway.config import APIConfig
from ripple_gateway.errors import NotFound, SubmissionRejected
from ripple_gateway.gateway import OPERATIONS, RequestGateway
from ripple_gateway.pool import SessionPool

ACCOUNT = "rHb9CJAWyB4rj91VRWn96DkukG4bwdtyTh"


def _build_api_config(**overrides):
    defaults = {
        "host": "127.0.0.1",
        "port": 3000,
        "api_key": "",
        "rate_limit_rpm": 0,
        "cors_origins": [],
        "max_body_bytes": 1_048_576,
    }
    defaults.update(overrides)
    return APIConfig(**defaults)


# ═══════════════════════════════════════════════════════════════════
#  Routes
# ═══════════════════════════════════════════════════════════════════

class TestRouteTable:
    def test_every_operation_has_a_route(self):
        assert sorted(op for _, op in ROUTES) == sorted(OPERATIONS)

    def test_paths(self):
        assert [path for path, _ in ROUTES] == [
            "/ripple/account",
            "/ripple/account/generate",
            "/ripple/balance",
            "/ripple/transaction",
            "/ripple/transaction/hash",
            "/fee/XRP",
            "/DropsToXrp",
            "/XrpToDrops",
        ]


@pytest.mark.asyncio
class TestScenarios:
    async def test_account_info(self, gateway, make_client):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/account", json={"address": ACCOUNT})
            assert resp.status == 200
            assert await resp.json() == {"sequence": 5, "Balance": "1000000"}

    async def test_fee(self, gateway, make_client):
        async with make_client(gateway) as client:
            resp = await client.post("/fee/XRP")
            assert resp.status == 200
            assert await resp.json() == {"status": True, "data": "0.000012"}

    async def test_generate_without_body(self, gateway, make_client, adapter):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/account/generate")
            assert resp.status == 200
            assert (await resp.json())["address"] == "rNewAddr"
        assert adapter.call_names() == ["generate_address"]

    async def test_balance_list(self, gateway, make_client):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/balance", json={"address": ACCOUNT})
            body = await resp.json()
            assert [b["currency"] for b in body] == ["XRP", "USD"]
            assert body[1]["counterparty"] == "rGateway"

    async def test_payment_returns_hash(self, gateway, make_client, adapter):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/transaction", json={
                "address": "rSrc", "secret": "sSecret",
                "payment": {"source": {}, "destination": {}},
            })
            assert resp.status == 200
            body = await resp.json()
            assert body["resultHash"] == "ABC123"
            assert resp.headers["X-Transaction-Hash"] == "ABC123"
        assert adapter.call_names() == ["prepare_payment", "sign", "submit"]

    async def test_transaction_by_hash(self, gateway, make_client, adapter):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/transaction/hash", json={"hash": "ABC123"})
            assert resp.status == 200
        assert adapter.calls == [("get_transaction", ("ABC123",))]

    async def test_get_not_allowed(self, gateway, make_client):
        async with make_client(gateway) as client:
            resp = await client.get("/ripple/account")
            assert resp.status == 405


@pytest.mark.asyncio
class TestErrors:
    async def test_adapter_error_is_404_with_raw_body(self, gateway, make_client, adapter):
        payload = {"error": "actNotFound", "error_code": 19, "error_message": "Account not found."}
        adapter.failures["get_account_info"] = NotFound(payload)
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/account", json={"address": ACCOUNT})
            assert resp.status == 404
            assert await resp.json() == payload
            assert resp.headers["X-Error-Kind"] == "not_found"

    async def test_submission_rejected_is_404_by_default(self, gateway, make_client, adapter):
        payload = {"engine_result": "temBAD_FEE"}
        adapter.failures["submit"] = SubmissionRejected(payload)
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/transaction", json={})
            assert resp.status == 404
            assert await resp.json() == payload

    async def test_typed_mode(self, adapter, make_client):
        adapter.failures["submit"] = SubmissionRejected({"engine_result": "temBAD_FEE"})
        gw = RequestGateway(SessionPool(adapter), typed_errors=True)
        async with make_client(gw) as client:
            resp = await client.post("/ripple/transaction", json={})
            assert resp.status == 422

    async def test_invalid_json_is_400(self, gateway, make_client, adapter):
        async with make_client(gateway) as client:
            resp = await client.post(
                "/ripple/account",
                data=b"{not json",
                headers={"Content-Type": "application/json"},
            )
            assert resp.status == 400
        assert adapter.connects == 0

    async def test_non_object_json_is_400(self, gateway, make_client):
        async with make_client(gateway) as client:
            resp = await client.post("/ripple/account", json=["rA"])
            assert resp.status == 400


# ═══════════════════════════════════════════════════════════════════
#  Conversions through the real adapter
# ═══════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
class TestConversions:
    async def test_drops_to_xrp(self, make_client, xrpl_gateway):
        async with make_client(xrpl_gateway) as client:
            resp = await client.post("/DropsToXrp", json={"val": "120000000"})
            assert resp.status == 200
            assert await resp.json() == "120"

    async def test_conversion_body_is_json_string(self, make_client, xrpl_gateway):
        async with make_client(xrpl_gateway) as client:
            resp = await client.post("/DropsToXrp", json={"val": "120000000"})
            assert resp.content_type == "application/json"
            assert await resp.text() == '"120"'

    async def test_xrp_to_drops(self, make_client, xrpl_gateway):
        async with make_client(xrpl_gateway) as client:
            resp = await client.post("/XrpToDrops", json={"val": "120"})
            assert resp.status == 200
            assert await resp.json() == "120000000"

    @pytest.mark.parametrize("drops", [0, 1, 12, 999_999, 1_000_000, 120_000_000, 10_000_000_000_000_000])
    async def test_round_trip(self, make_client, xrpl_gateway, drops):
        async with make_client(xrpl_gateway) as client:
            resp = await client.post("/DropsToXrp", json={"val": str(drops)})
            xrp = await resp.json()
            resp = await client.post("/XrpToDrops", json={"val": xrp})
            assert await resp.json() == str(drops)

    async def test_bad_value_is_404(self, make_client, xrpl_gateway):
        async with make_client(xrpl_gateway) as client:
            resp = await client.post("/DropsToXrp", json={"val": "abc"})
            assert resp.status == 404
            assert resp.headers["X-Error-Kind"] == "validation_failure"
            assert "message" in await resp.json()


# ═══════════════════════════════════════════════════════════════════
#  Middleware
# ═══════════════════════════════════════════════════════════════════

class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTokenBucket:
    def test_unlimited_never_waits(self):
        bucket = _TokenBucket(0)
        assert all(bucket.take("10.0.0.1") == 0.0 for _ in range(500))

    def test_burst_then_wait(self):
        clock = _Clock()
        bucket = _TokenBucket(3, clock=clock)
        assert [bucket.take("10.0.0.1") for _ in range(3)] == [0.0, 0.0, 0.0]
        # 3 per minute refills one token every 20 seconds
        assert bucket.take("10.0.0.1") == pytest.approx(20.0)

    def test_clients_have_separate_buckets(self):
        clock = _Clock()
        bucket = _TokenBucket(1, clock=clock)
        assert bucket.take("10.0.0.1") == 0.0
        assert bucket.take("10.0.0.1") > 0
        assert bucket.take("10.0.0.2") == 0.0

    def test_refill_shortens_wait(self):
        clock = _Clock()
        bucket = _TokenBucket(60, clock=clock)
        for _ in range(60):
            bucket.take("10.0.0.1")
        assert bucket.take("10.0.0.1") == pytest.approx(1.0)
        clock.now += 0.5
        assert bucket.take("10.0.0.1") == pytest.approx(0.5)
        clock.now += 1.0
        assert bucket.take("10.0.0.1") == 0.0


@pytest.mark.asyncio
class TestMiddleware:
    async def test_post_rejected_without_key(self, gateway, make_client, adapter):
        cfg = _build_api_config(api_key="secret123")
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/fee/XRP")
            assert resp.status == 401
        assert adapter.connects == 0

    async def test_post_allowed_with_key(self, gateway, make_client):
        cfg = _build_api_config(api_key="secret123")
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/fee/XRP", headers={"X-API-Key": "secret123"})
            assert resp.status == 200

    async def test_health_open_without_key(self, gateway, make_client):
        cfg = _build_api_config(api_key="secret123")
        async with make_client(gateway, cfg) as client:
            resp = await client.get("/health")
            assert resp.status == 200

    @pytest.mark.parametrize("path", [path for path, _ in ROUTES])
    async def test_every_ledger_route_needs_key(self, gateway, make_client, adapter, path):
        cfg = _build_api_config(api_key="secret123")
        async with make_client(gateway, cfg) as client:
            resp = await client.post(path, json={}, headers={"X-API-Key": "wrong"})
            assert resp.status == 401
        assert adapter.calls == []

    async def test_unknown_path_is_404_not_401(self, gateway, make_client):
        cfg = _build_api_config(api_key="secret123")
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/ripple/unknown")
            assert resp.status == 404

    async def test_cors_allowed_origin(self, gateway, make_client):
        cfg = _build_api_config(cors_origins=["https://wallet.example.com"])
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/fee/XRP", headers={"Origin": "https://wallet.example.com"})
            assert resp.headers["Access-Control-Allow-Origin"] == "https://wallet.example.com"
            assert "X-Transaction-Hash" in resp.headers["Access-Control-Expose-Headers"]

    async def test_cors_wildcard_ignored(self, gateway, make_client):
        cfg = _build_api_config(cors_origins=["*"])
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/fee/XRP", headers={"Origin": "https://evil.example"})
            assert "Access-Control-Allow-Origin" not in resp.headers

    async def test_cors_preflight_before_auth(self, gateway, make_client):
        cfg = _build_api_config(cors_origins=["https://wallet.example.com"], api_key="k")
        async with make_client(gateway, cfg) as client:
            resp = await client.options(
                "/ripple/transaction",
                headers={"Origin": "https://wallet.example.com"},
            )
            assert resp.status == 204

    async def test_rate_limit(self, gateway, make_client):
        cfg = _build_api_config(rate_limit_rpm=2)
        async with make_client(gateway, cfg) as client:
            assert (await client.post("/fee/XRP")).status == 200
            assert (await client.post("/fee/XRP")).status == 200
            resp = await client.post("/fee/XRP")
            assert resp.status == 429
            assert resp.headers["Retry-After"] == "30"

    async def test_rate_limit_skips_health(self, gateway, make_client):
        cfg = _build_api_config(rate_limit_rpm=1)
        async with make_client(gateway, cfg) as client:
            assert (await client.post("/fee/XRP")).status == 200
            for _ in range(3):
                assert (await client.get("/health")).status == 200

    async def test_body_size_cap(self, gateway, make_client):
        cfg = _build_api_config(max_body_bytes=64)
        async with make_client(gateway, cfg) as client:
            resp = await client.post("/ripple/account", json={"address": "r" * 200})
            assert resp.status == 413


@pytest.mark.asyncio
async def test_health_reports_pool(gateway, make_client):
    async with make_client(gateway) as client:
        await client.post("/fee/XRP")
        resp = await client.get("/health")
        body = await resp.json()
        assert body["ok"] is True
        assert body["pool"]["idle"] == 1
        assert body["pool"]["in_use"] == 0
