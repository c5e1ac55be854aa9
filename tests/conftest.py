"""
Shared pytest fixtures for the Ripple gateway test suite.

``FakeAdapter`` stands in for the ledger client: it hands out
``FakeSession``s that return canned results, raise injected faults, and
record every call so tests can check ordering and release counts.

``FakeXRPLClient`` stands in for xrpl-py's ``AsyncWebsocketClient`` so the
real ``XRPLAdapter`` can be exercised without a network.
"""

from __future__ import annotations

from typing import Any

import pytest
from aiohttp.test_utils import TestClient, TestServer
from xrpl.models.response import Response, ResponseStatus

from ripple_gateway.api import APIServer
from ripple_gateway.gateway import RequestGateway
from ripple_gateway.pool import SessionPool
from ripple_gateway.xrpl_adapter import XRPLAdapter


# ─── Ledger adapter double ──────────────────────────────────────────

DEFAULT_RESULTS: dict[str, Any] = {
    "get_account_info": {"sequence": 5, "Balance": "1000000"},
    "generate_address": {"address": "rNewAddr", "secret": "sNewSecret"},
    "get_balances": [
        {"currency": "XRP", "value": "1"},
        {"currency": "USD", "value": "10", "counterparty": "rGateway"},
    ],
    "prepare_payment": {"txJSON": '{"TransactionType": "Payment"}', "instructions": {}},
    "sign": {"signedTransaction": "DEADBEEF", "id": "ABC123"},
    "submit": {"resultCode": "tesSUCCESS", "resultMessage": "applied"},
    "get_transaction": {"hash": "ABC123", "validated": True},
    "get_fee": "0.000012",
    "drops_to_xrp": "1",
    "xrp_to_drops": "1000000",
}


class FakeSession:
    def __init__(self, adapter: FakeAdapter, session_id: int):
        self.adapter = adapter
        self.session_id = session_id
        self.open = True

    def is_open(self) -> bool:
        return self.open

    async def _call(self, name: str, *args: Any) -> Any:
        self.adapter.calls.append((name, args))
        if name in self.adapter.failures:
            raise self.adapter.failures[name]
        result = self.adapter.results[name]
        return result(*args) if callable(result) else result

    async def get_account_info(self, address):
        return await self._call("get_account_info", address)

    async def generate_address(self):
        return await self._call("generate_address")

    async def get_balances(self, address):
        return await self._call("get_balances", address)

    async def prepare_payment(self, address, payment):
        return await self._call("prepare_payment", address, payment)

    async def sign(self, tx_json, secret):
        return await self._call("sign", tx_json, secret)

    async def submit(self, signed_tx):
        return await self._call("submit", signed_tx)

    async def get_transaction(self, tx_hash):
        return await self._call("get_transaction", tx_hash)

    async def get_fee(self):
        return await self._call("get_fee")

    async def drops_to_xrp(self, val):
        return await self._call("drops_to_xrp", val)

    async def xrp_to_drops(self, val):
        return await self._call("xrp_to_drops", val)


class FakeAdapter:
    def __init__(self):
        self.results: dict[str, Any] = dict(DEFAULT_RESULTS)
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.connect_error: Exception | None = None
        self.disconnect_error: Exception | None = None
        self.connects = 0
        self.disconnects = 0
        self.sessions: list[FakeSession] = []

    async def connect(self) -> FakeSession:
        if self.connect_error is not None:
            raise self.connect_error
        self.connects += 1
        session = FakeSession(self, self.connects)
        self.sessions.append(session)
        return session

    async def disconnect(self, session: FakeSession) -> None:
        self.disconnects += 1
        session.open = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


# ─── xrpl-py client double ──────────────────────────────────────────

class FakeXRPLClient:
    """Answers requests by method name from a canned table."""

    def __init__(self, url: str = "wss://fake"):
        self.url = url
        self.opened = False
        self.closed = False
        self.requests: list[Any] = []
        self.replies: dict[str, Any] = {}
        self.open_error: Exception | None = None

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    async def close(self) -> None:
        self.opened = False
        self.closed = True

    def is_open(self) -> bool:
        return self.opened

    def reply(self, method: str, result: dict, ok: bool = True) -> None:
        self.replies.setdefault(method, []).append((result, ok))

    async def request(self, request: Any) -> Response:
        self.requests.append(request)
        method = request.method.value
        queue = self.replies[method]
        result, ok = queue.pop(0) if len(queue) > 1 else queue[0]
        status = ResponseStatus.SUCCESS if ok else ResponseStatus.ERROR
        return Response(status=status, result=result)


# ─── Fixtures ───────────────────────────────────────────────────────

@pytest.fixture
def adapter():
    """Fake ledger adapter with default canned results."""
    return FakeAdapter()


@pytest.fixture
def pool(adapter):
    return SessionPool(adapter, size=1)


@pytest.fixture
def gateway(pool):
    return RequestGateway(pool)


@pytest.fixture
def make_client():
    """Factory building an aiohttp TestClient around a gateway."""

    def _make(gw: RequestGateway, api_config=None) -> TestClient:
        server = APIServer(gw, host="127.0.0.1", port=0, api_config=api_config)
        return TestClient(TestServer(server.build_app()))

    return _make


@pytest.fixture
def xrpl_client():
    client = FakeXRPLClient()
    client.opened = True
    return client


@pytest.fixture
def xrpl_gateway():
    """Gateway over the real XRPLAdapter, talking to a FakeXRPLClient."""
    adapter = XRPLAdapter("wss://fake", client_factory=FakeXRPLClient)
    return RequestGateway(SessionPool(adapter))
