"""
TOML-based configuration for the Ripple gateway.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from ripple_gateway.config import load_config
    cfg = load_config("gateway.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class LedgerConfig:
    """Ledger node the adapter connects to.  Fixed for the process."""
    server: str = "wss://s.altnet.rippletest.net:51233"
    connect_timeout: float = 10.0
    fee_cushion: float = 1.2           # multiplier applied to the open-ledger fee
    max_fee_xrp: float = 2.0           # ceiling for autofilled / estimated fees


@dataclass
class PoolConfig:
    """Session pool settings."""
    size: int = 1                      # concurrent sessions (1 = serialised access)
    persistent_sessions: bool = True   # False = connect/disconnect per request
    acquire_timeout: float = 0.0       # seconds to wait for a session (0 = forever)


@dataclass
class APIConfig:
    """HTTP API settings."""
    host: str = "127.0.0.1"
    port: int = 3000
    api_key: str = ""                  # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 0            # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 1_048_576    # 1 MiB max request body
    typed_errors: bool = False         # distinct status per error kind instead of uniform 404


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class GatewayConfig:
    """Top-level configuration container."""
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: str | None = None) -> GatewayConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        RIPPLE_IP                      -> ledger.server
        RIPPLE_GATEWAY_SERVER          -> ledger.server (wins over RIPPLE_IP)
        RIPPLE_GATEWAY_HOST            -> api.host
        RIPPLE_GATEWAY_PORT            -> api.port
        RIPPLE_GATEWAY_POOL_SIZE       -> pool.size
        RIPPLE_GATEWAY_API_KEY         -> api.api_key
        RIPPLE_GATEWAY_CORS_ORIGINS    -> api.cors_origins (comma-separated)
        RIPPLE_GATEWAY_TYPED_ERRORS    -> api.typed_errors
        RIPPLE_GATEWAY_LOG_LEVEL       -> logging.level
        RIPPLE_GATEWAY_LOG_FMT         -> logging.format
    """
    cfg = GatewayConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("ledger", cfg.ledger),
                ("pool", cfg.pool),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("RIPPLE_IP"):
        cfg.ledger.server = v
    if v := os.environ.get("RIPPLE_GATEWAY_SERVER"):
        cfg.ledger.server = v
    if v := os.environ.get("RIPPLE_GATEWAY_HOST"):
        cfg.api.host = v
    if v := os.environ.get("RIPPLE_GATEWAY_PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("RIPPLE_GATEWAY_POOL_SIZE"):
        cfg.pool.size = int(v)
    if v := os.environ.get("RIPPLE_GATEWAY_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("RIPPLE_GATEWAY_CORS_ORIGINS"):
        cfg.api.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("RIPPLE_GATEWAY_TYPED_ERRORS"):
        cfg.api.typed_errors = _flag(v)
    if v := os.environ.get("RIPPLE_GATEWAY_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("RIPPLE_GATEWAY_LOG_FMT"):
        cfg.logging.format = v

    return cfg
