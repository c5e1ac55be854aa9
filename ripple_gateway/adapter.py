"""
Ledger client protocol — the boundary between the gateway and the network.

The gateway never talks to a ledger client directly.  It is handed a
``LedgerAdapter`` that opens ``LedgerSession`` objects, and every ledger
operation is a coroutine on the session.  Implementations:

    - ``ripple_gateway.xrpl_adapter.XRPLAdapter`` (xrpl-py websocket client)
    - fake adapters in ``tests/conftest.py``

Failures must be raised as ``ripple_gateway.errors.LedgerError`` subclasses
carrying the client's raw error payload.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class LedgerSession(Protocol):
    """One live connection to the ledger network."""

    async def get_account_info(self, address: Any) -> Any: ...

    async def generate_address(self) -> dict[str, Any]: ...

    async def get_balances(self, address: Any) -> list[dict[str, Any]]: ...

    async def prepare_payment(self, address: Any, payment: Any) -> dict[str, Any]: ...

    async def sign(self, tx_json: Any, secret: Any) -> dict[str, Any]: ...

    async def submit(self, signed_tx: Any) -> dict[str, Any]: ...

    async def get_transaction(self, tx_hash: Any) -> Any: ...

    async def get_fee(self) -> str: ...

    async def drops_to_xrp(self, val: Any) -> str: ...

    async def xrp_to_drops(self, val: Any) -> str: ...


@runtime_checkable
class LedgerAdapter(Protocol):
    """Factory for ledger sessions.  Configured once per process."""

    async def connect(self) -> LedgerSession: ...

    async def disconnect(self, session: LedgerSession) -> None: ...
