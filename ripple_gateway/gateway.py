"""
Request gateway — one HTTP request, one ledger operation.

Each supported operation is a row in ``OPERATIONS``: the body fields it
reads and the coroutine that calls the adapter session.  ``RequestGateway``
runs the same lifecycle for every row:

    1. lease a session from the ``SessionPool``
    2. pull the operation's fields out of the request body (no local
       validation, missing fields are passed as ``None``)
    3. run the operation (``submit-payment`` chains prepare → sign → submit)
    4. release the lease, always, before anything is returned
    5. map the result or the adapter's error to an ``OperationOutcome``

Adapter failures never escape: they become an outcome whose body is the
adapter's raw error payload and whose status is ``404`` (or the typed
status table when ``typed_errors`` is on).

``submit-payment`` broadcasts to the network.  Once the transaction has
been signed its id is attached to the outcome as ``X-Transaction-Hash``
whatever happens next, so a caller can look the transaction up rather than
blindly resubmit.  The gateway itself never retries.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from ripple_gateway.adapter import LedgerSession
from ripple_gateway.errors import error_kind, error_payload, status_for
from ripple_gateway.pool import SessionPool

logger = logging.getLogger("ripple_gateway.gateway")

TX_HASH_HEADER = "X-Transaction-Hash"
ERROR_KIND_HEADER = "X-Error-Kind"


# ═══════════════════════════════════════════════════════════════════
#  Request / outcome types
# ═══════════════════════════════════════════════════════════════════

@dataclass
class OperationRequest:
    """A single inbound call: operation name plus the parameters it uses."""
    operation: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class OperationOutcome:
    """What the router should send back."""
    status: int
    body: Any
    error_kind: str | None = None
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error_kind is None


class _Context:
    """Per-request scratch space shared with the operation coroutine."""

    __slots__ = ("operation", "lease_id", "headers")

    def __init__(self, operation: str) -> None:
        self.operation = operation
        self.lease_id: int | None = None
        self.headers: dict[str, str] = {}

    def log_extra(self, **fields: Any) -> dict[str, Any]:
        """Request context for ``logger.*(..., extra=...)``."""
        extra = {
            "operation": self.operation,
            "lease_id": self.lease_id,
            "tx_hash": self.headers.get(TX_HASH_HEADER),
        }
        extra.update(fields)
        return extra


OperationFn = Callable[[LedgerSession, dict[str, Any], _Context], Awaitable[Any]]


@dataclass(frozen=True)
class Operation:
    name: str
    fields: tuple[str, ...]
    call: OperationFn


# ═══════════════════════════════════════════════════════════════════
#  Operation table
# ═══════════════════════════════════════════════════════════════════

async def _get_account(session: LedgerSession, p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.get_account_info(p["address"])


async def _generate_address(session: LedgerSession, _p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.generate_address()


async def _get_balances(session: LedgerSession, p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.get_balances(p["address"])


async def _submit_payment(session: LedgerSession, p: dict[str, Any], ctx: _Context) -> Any:
    prepared = await session.prepare_payment(p["address"], p["payment"])
    signed = await session.sign(prepared["txJSON"], p["secret"])
    if signed.get("id"):
        ctx.headers[TX_HASH_HEADER] = str(signed["id"])
    result = await session.submit(signed["signedTransaction"])
    if isinstance(result, dict):
        result = dict(result)
    else:
        result = {"result": result}
    result["resultHash"] = signed.get("id")
    return result


async def _get_transaction(session: LedgerSession, p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.get_transaction(p["hash"])


async def _get_fee(session: LedgerSession, _p: dict[str, Any], _ctx: _Context) -> Any:
    fee = await session.get_fee()
    return {"status": True, "data": str(fee)}


async def _drops_to_unit(session: LedgerSession, p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.drops_to_xrp(p["val"])


async def _unit_to_drops(session: LedgerSession, p: dict[str, Any], _ctx: _Context) -> Any:
    return await session.xrp_to_drops(p["val"])


OPERATIONS: dict[str, Operation] = {
    op.name: op
    for op in (
        Operation("get-account", ("address",), _get_account),
        Operation("generate-address", (), _generate_address),
        Operation("get-balances", ("address",), _get_balances),
        Operation("submit-payment", ("address", "secret", "payment"), _submit_payment),
        Operation("get-transaction", ("hash",), _get_transaction),
        Operation("get-fee", (), _get_fee),
        Operation("drops-to-unit", ("val",), _drops_to_unit),
        Operation("unit-to-drops", ("val",), _unit_to_drops),
    )
}


def build_request(operation: str, body: Any) -> OperationRequest:
    """Pick *operation*'s fields out of a decoded JSON body.

    Absent fields become ``None``; the adapter decides whether that is an
    error.
    """
    op = OPERATIONS[operation]
    source = body if isinstance(body, dict) else {}
    return OperationRequest(operation, {name: source.get(name) for name in op.fields})


# ═══════════════════════════════════════════════════════════════════
#  Gateway
# ═══════════════════════════════════════════════════════════════════

class RequestGateway:
    """Runs the lease → call → release → respond lifecycle."""

    def __init__(self, pool: SessionPool, *, typed_errors: bool = False):
        self.pool = pool
        self.typed_errors = typed_errors

    async def execute(self, request: OperationRequest) -> OperationOutcome:
        op = OPERATIONS.get(request.operation)
        if op is None:
            raise KeyError(f"unknown operation: {request.operation}")

        ctx = _Context(op.name)
        try:
            async with self.pool.lease() as lease:
                ctx.lease_id = lease.lease_id
                logger.debug("Running operation", extra=ctx.log_extra())
                result = await lease.run(
                    op.name, lambda session: op.call(session, request.params, ctx)
                )
        except Exception as exc:
            return self._failure(exc, ctx)

        logger.debug("Operation succeeded", extra=ctx.log_extra())
        return OperationOutcome(status=200, body=result, headers=ctx.headers)

    async def call(self, operation: str, body: Any = None) -> OperationOutcome:
        return await self.execute(build_request(operation, body))

    def _failure(self, exc: Exception, ctx: _Context) -> OperationOutcome:
        kind = error_kind(exc)
        extra = ctx.log_extra(error_kind=kind)
        if kind == "unexpected":
            logger.error(f"{ctx.operation} failed unexpectedly", exc_info=exc, extra=extra)
        else:
            logger.warning(f"{ctx.operation} failed: {exc}", extra=extra)
        if TX_HASH_HEADER in ctx.headers:
            logger.warning(
                "Transaction was signed before the failure and may have reached the network",
                extra=extra,
            )
        headers = dict(ctx.headers)
        headers[ERROR_KIND_HEADER] = kind
        return OperationOutcome(
            status=status_for(exc, self.typed_errors),
            body=error_payload(exc),
            error_kind=kind,
            headers=headers,
        )
