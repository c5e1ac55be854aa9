"""
Ripple Gateway - an HTTP front end for the XRP Ledger.

Key pieces:
- Request gateway: one HTTP request, one ledger operation
- Lease-based session pool over ledger client connections
- xrpl-py adapter shaped like the ripple-lib results clients expect
- aiohttp API server with optional auth, CORS and rate limiting
"""

__version__ = "0.2.0"
__all__ = [
    "adapter",
    "api",
    "config",
    "errors",
    "gateway",
    "logging_config",
    "pool",
    "xrpl_adapter",
]
