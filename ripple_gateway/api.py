"""
HTTP API for the Ripple gateway.

Built on ``aiohttp``.  Every ledger route is a POST with a JSON body and is
served by one ``RequestGateway`` operation.

Endpoints
---------
POST /ripple/account             Account info            {address}
POST /ripple/account/generate    New address + secret
POST /ripple/balance             Balances                {address}
POST /ripple/transaction         Prepare, sign, submit   {address, secret, payment}
POST /ripple/transaction/hash    Transaction by hash     {hash}
POST /fee/XRP                    Estimated fee           -> {"status": true, "data": fee}
POST /DropsToXrp                 drops -> XRP            {val}
POST /XrpToDrops                 XRP -> drops            {val}
GET  /health                     Session pool status

Errors from the ledger come back with the client library's own error
object as the body and status 404 (see ``APIConfig.typed_errors``).

Every response is JSON.  The conversion routes therefore answer with a JSON
string (``"120"``, quotes included) rather than the bare ``120`` text body
earlier versions of this API sent; clients that parsed the raw text must
JSON-decode it now.

Security
--------
- Optional API key on the ledger routes via the ``X-API-Key`` header,
  compared with ``hmac.compare_digest``.
- Optional per-client token bucket on the ledger routes, with a
  ``Retry-After`` computed from the refill rate.
- CORS for explicitly listed origins, exposing ``X-Transaction-Hash`` and
  ``X-Error-Kind``.
- Request body size cap (``max_body_bytes``, default 1 MiB).

Usage:
    api = APIServer(gateway, host="127.0.0.1", port=3000)
    await api.start()
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import math
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from aiohttp import web

from ripple_gateway.gateway import (
    ERROR_KIND_HEADER,
    TX_HASH_HEADER,
    OperationOutcome,
    RequestGateway,
    build_request,
)

if TYPE_CHECKING:
    from ripple_gateway.config import APIConfig

logger = logging.getLogger("ripple_gateway.api")

ROUTES: tuple[tuple[str, str], ...] = (
    ("/ripple/account", "get-account"),
    ("/ripple/account/generate", "generate-address"),
    ("/ripple/balance", "get-balances"),
    ("/ripple/transaction", "submit-payment"),
    ("/ripple/transaction/hash", "get-transaction"),
    ("/fee/XRP", "get-fee"),
    ("/DropsToXrp", "drops-to-unit"),
    ("/XrpToDrops", "unit-to-drops"),
)

LEDGER_PATHS: dict[str, str] = dict(ROUTES)

API_KEY_HEADER = "X-API-Key"


# ═══════════════════════════════════════════════════════════════════
#  Rate limiter (per-client token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-client token bucket refilled continuously at ``rpm / 60`` per second."""

    __slots__ = ("rpm", "_clock", "_state")

    def __init__(self, rpm: int, clock: Callable[[], float] = time.monotonic):
        self.rpm = rpm  # 0 = unlimited
        self._clock = clock
        # client -> (tokens, last refill)
        self._state: dict[str, tuple[float, float]] = {}

    def take(self, client: str) -> float:
        """Spend one token for *client*.

        Returns ``0.0`` when the request may proceed, otherwise the number
        of seconds until the next token is available.
        """
        if self.rpm <= 0:
            return 0.0
        now = self._clock()
        rate = self.rpm / 60.0
        tokens, stamp = self._state.get(client, (float(self.rpm), now))
        tokens = min(float(self.rpm), tokens + (now - stamp) * rate)
        if tokens >= 1.0:
            self._state[client] = (tokens - 1.0, now)
            return 0.0
        self._state[client] = (tokens, now)
        return (1.0 - tokens) / rate


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════
#
# Each factory takes the path -> operation map of the ledger routes.  Only
# those routes open a ledger session, so only they are rate limited and
# guarded by the API key; /health stays open for health checks.

def _make_rate_limit_middleware(bucket: _TokenBucket, ledger_paths: dict[str, str]):
    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        operation = ledger_paths.get(request.path)
        if operation is not None:
            wait = bucket.take(request.remote or "unknown")
            if wait > 0:
                logger.warning(
                    f"Rate limit hit by {request.remote}",
                    extra={"operation": operation},
                )
                raise web.HTTPTooManyRequests(
                    text="Rate limit exceeded. Try again later.",
                    headers={"Retry-After": str(math.ceil(wait))},
                )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str, ledger_paths: dict[str, str]):
    """Require ``X-API-Key`` on the ledger routes.

    The key is only read from the header, never from query params, so it
    does not end up in access logs.
    """
    expected = api_key.encode()

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        operation = ledger_paths.get(request.path)
        if operation is not None:
            supplied = request.headers.get(API_KEY_HEADER, "").encode()
            if not hmac.compare_digest(supplied, expected):
                logger.warning(
                    f"Rejected {request.remote}: invalid or missing API key",
                    extra={"operation": operation},
                )
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str], ledger_paths: dict[str, str]):
    """CORS for explicitly listed origins (``*`` is ignored).

    Preflight requests for ledger routes are answered here, before the
    API-key check.  The gateway's response headers are exposed so browser
    clients can read the transaction hash and error kind.
    """
    allowed = {origin for origin in origins if origin != "*"}
    cors_headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": f"Content-Type, {API_KEY_HEADER}",
        "Access-Control-Expose-Headers": f"{TX_HASH_HEADER}, {ERROR_KIND_HEADER}",
        "Access-Control-Max-Age": "3600",
    }

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        if request.method == "OPTIONS" and request.path in ledger_paths:
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        origin = request.headers.get("Origin", "")
        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers.update(cors_headers)
        return resp

    return cors_middleware


# ═══════════════════════════════════════════════════════════════════
#  Server
# ═══════════════════════════════════════════════════════════════════

class APIServer:
    """aiohttp front end for a ``RequestGateway``."""

    def __init__(
        self,
        gateway: RequestGateway,
        host: str = "127.0.0.1",
        port: int = 3000,
        *,
        api_config: APIConfig | None = None,
    ):
        self.gateway = gateway
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 1_048_576  # default 1 MiB

        if self._api_config is not None:
            cfg = self._api_config
            max_body = cfg.max_body_bytes

            # CORS goes first so preflight requests are answered before auth.
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins, LEDGER_PATHS))
            if cfg.rate_limit_rpm > 0:
                middlewares.append(
                    _make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm), LEDGER_PATHS)
                )
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key, LEDGER_PATHS))

        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        for path, operation in ROUTES:
            app.router.add_post(path, self._make_handler(operation))
        app.router.add_get("/health", self._health)

    def _make_handler(self, operation: str):
        async def handler(request: web.Request) -> web.Response:
            body = await _read_body(request)
            outcome = await self.gateway.execute(build_request(operation, body))
            return _respond(outcome)

        handler.__name__ = f"handle_{operation.replace('-', '_')}"
        return handler

    async def _health(self, _request: web.Request) -> web.Response:
        return web.json_response({"ok": True, "pool": self.gateway.pool.stats()})


async def _read_body(request: web.Request) -> Any:
    """Decoded JSON object from the request; ``{}`` when there is no body."""
    raw = await request.read()
    if not raw.strip():
        return {}
    try:
        body = json.loads(raw)
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _respond(outcome: OperationOutcome) -> web.Response:
    return web.json_response(
        outcome.body,
        status=outcome.status,
        headers=outcome.headers or None,
        dumps=_json_dumps,
    )


def _json_dumps(obj: Any) -> str:
    """JSON serialiser that handles non-standard types (Decimal, bytes)."""
    return json.dumps(obj, default=str)
