"""
Error taxonomy for ledger adapter failures.

The HTTP surface historically collapsed every failure into a single
``404`` whose body was the client library's raw error.  The classes here
keep the cause distinguishable inside the process (and in the
``X-Error-Kind`` response header) while still letting the router send the
raw payload back untouched.

    LedgerError            catch-all, unclassified rippled / client errors
    ├── ConnectionFailure  server unreachable, handshake or socket failure
    ├── ValidationFailure  malformed parameters (bad address, bad seed, ...)
    ├── NotFound           account / transaction / ledger does not exist
    └── SubmissionRejected transaction rejected at submission time
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for every failure reported by a ledger adapter."""

    kind = "ledger_error"

    def __init__(self, payload: Any = None, message: str | None = None):
        self.payload = payload
        if message is None:
            message = _describe(payload)
        super().__init__(message)


class ConnectionFailure(LedgerError):
    kind = "connection_failure"


class ValidationFailure(LedgerError):
    kind = "validation_failure"


class NotFound(LedgerError):
    kind = "not_found"


class SubmissionRejected(LedgerError):
    kind = "submission_rejected"


# Status codes used when typed error mapping is switched on.
TYPED_STATUS: dict[type[LedgerError], int] = {
    ConnectionFailure: 503,
    ValidationFailure: 400,
    NotFound: 404,
    SubmissionRejected: 422,
}

# Status for everything in uniform mode, and for unclassified errors in
# typed mode.
DEFAULT_STATUS = 404


def _describe(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error_message", "message", "error", "resultMessage"):
            if payload.get(key):
                return str(payload[key])
    if payload is None:
        return "ledger error"
    return str(payload)


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy name for *exc* (``"unexpected"`` if unclassified)."""
    if isinstance(exc, LedgerError):
        return exc.kind
    return "unexpected"


def error_payload(exc: BaseException) -> Any:
    """Return the body to send back for *exc*.

    Adapter errors carry the client library's own payload and it is
    returned as-is.  Anything else is reduced to its name and message.
    """
    if isinstance(exc, LedgerError) and exc.payload is not None:
        return exc.payload
    return {"name": type(exc).__name__, "message": str(exc)}


def status_for(exc: BaseException, typed: bool = False) -> int:
    """HTTP status for *exc*: uniform 404, or the typed table when *typed*."""
    if not typed:
        return DEFAULT_STATUS
    for cls in type(exc).__mro__:
        if cls in TYPED_STATUS:
            return TYPED_STATUS[cls]
    return DEFAULT_STATUS
