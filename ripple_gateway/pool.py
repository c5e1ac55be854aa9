"""
Lease-based session pool for ledger adapter connections.

Handlers never open raw connections.  They take a short-lived
``ConnectionLease`` from the pool, run exactly one ledger operation on it,
and give it back:

    async with pool.lease() as lease:
        result = await lease.run("get-account", session_fn)

Guarantees:
  - at most ``size`` sessions are ever leased at the same time, and a
    session is used by one lease at a time (mutual exclusion);
  - a lease is released exactly once on every exit path and is never
    handed to a second request;
  - a session whose operation failed with ``ConnectionFailure`` is
    disconnected instead of being returned to the idle list;
  - with ``persistent=False`` every release disconnects, which is the
    plain connect-per-request model.

Releasing never raises: disconnect errors are logged and dropped so that a
completed operation (notably a broadcast payment) is never reported as a
failure after the fact.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from ripple_gateway.adapter import LedgerAdapter, LedgerSession
from ripple_gateway.errors import ConnectionFailure

logger = logging.getLogger("ripple_gateway.pool")

_lease_ids = itertools.count(1)


class ConnectionLease:
    """Exclusive, single-operation use of one adapter session."""

    __slots__ = ("lease_id", "session", "operation", "broken")

    def __init__(self, session: LedgerSession):
        self.lease_id = next(_lease_ids)
        self.session = session
        self.operation: str | None = None
        self.broken = False

    async def run(
        self,
        operation: str,
        call: Callable[[LedgerSession], Awaitable[Any]],
    ) -> Any:
        """Run *call* against the leased session.  Only once per lease."""
        if self.operation is not None:
            raise RuntimeError(
                f"lease {self.lease_id} already used for {self.operation!r}"
            )
        self.operation = operation
        try:
            return await call(self.session)
        except ConnectionFailure:
            self.broken = True
            raise


class SessionPool:
    """Bounded pool of adapter sessions handing out ``ConnectionLease``s."""

    def __init__(
        self,
        adapter: LedgerAdapter,
        size: int = 1,
        *,
        persistent: bool = True,
        acquire_timeout: float = 0.0,
    ):
        if size < 1:
            raise ValueError("pool size must be at least 1")
        self.adapter = adapter
        self.size = size
        self.persistent = persistent
        self.acquire_timeout = acquire_timeout
        self._slots = asyncio.Semaphore(size)
        self._idle: list[LedgerSession] = []
        self._in_use = 0
        self._closed = False

    # ── leases ───────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def lease(self) -> AsyncIterator[ConnectionLease]:
        if self._closed:
            raise ConnectionFailure({"name": "PoolClosed", "message": "session pool is closed"})

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.acquire_timeout if self.acquire_timeout > 0 else None

        await self._wait(self._slots.acquire(), deadline, "waiting for a free session")
        try:
            session = await self._checkout(deadline)
        except BaseException:
            self._slots.release()
            raise

        lease = ConnectionLease(session)
        self._in_use += 1
        logger.debug("Lease acquired", extra={"lease_id": lease.lease_id})
        try:
            yield lease
        finally:
            self._in_use -= 1
            try:
                await self._checkin(lease)
            finally:
                self._slots.release()
                logger.debug("Lease released", extra={"lease_id": lease.lease_id})

    async def _wait(self, aw: Awaitable[Any], deadline: float | None, what: str) -> Any:
        if deadline is None:
            return await aw
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        try:
            return await asyncio.wait_for(aw, remaining)
        except asyncio.TimeoutError as exc:
            raise ConnectionFailure(
                {"name": "TimeoutError", "message": f"timed out {what}"}
            ) from exc

    async def _checkout(self, deadline: float | None) -> LedgerSession:
        while self._idle:
            session = self._idle.pop()
            is_open = getattr(session, "is_open", None)
            if is_open is None or is_open():
                return session
            # dropped by the server while idle
            await self._disconnect(session)
        logger.info("Connecting to ledger network")
        return await self._wait(self.adapter.connect(), deadline, "connecting to the ledger")

    async def _checkin(self, lease: ConnectionLease) -> None:
        if self.persistent and not lease.broken and not self._closed:
            self._idle.append(lease.session)
            return
        await self._disconnect(lease.session)

    async def _disconnect(self, session: LedgerSession) -> None:
        try:
            await self.adapter.disconnect(session)
        except Exception:
            logger.warning("Disconnect from ledger network failed", exc_info=True)
        else:
            logger.info("Breaking connection from ledger network")

    # ── lifecycle ────────────────────────────────────────────────

    async def close(self) -> None:
        """Refuse new leases and disconnect every idle session."""
        self._closed = True
        idle, self._idle = self._idle, []
        for session in idle:
            await self._disconnect(session)

    def stats(self) -> dict[str, Any]:
        return {
            "size": self.size,
            "idle": len(self._idle),
            "in_use": self._in_use,
            "persistent": self.persistent,
            "closed": self._closed,
        }
