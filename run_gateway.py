#!/usr/bin/env python3
"""
Ripple Gateway runner — starts the HTTP API in front of an XRP Ledger node.

Usage:
    python run_gateway.py --config gateway.toml
    python run_gateway.py --server wss://s1.ripple.com --port 3000

Environment variables (alternative to flags):
    RIPPLE_IP, RIPPLE_GATEWAY_SERVER, RIPPLE_GATEWAY_HOST, RIPPLE_GATEWAY_PORT,
    RIPPLE_GATEWAY_POOL_SIZE, RIPPLE_GATEWAY_LOG_LEVEL (see ripple_gateway.config)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from ripple_gateway.api import APIServer  # noqa: E402
from ripple_gateway.config import GatewayConfig, load_config  # noqa: E402
from ripple_gateway.gateway import RequestGateway  # noqa: E402
from ripple_gateway.logging_config import setup_logging  # noqa: E402
from ripple_gateway.pool import SessionPool  # noqa: E402
from ripple_gateway.xrpl_adapter import XRPLAdapter  # noqa: E402

logger = logging.getLogger("ripple_gateway")


def build_gateway(cfg: GatewayConfig) -> RequestGateway:
    """Wire adapter → pool → gateway from a loaded config."""
    adapter = XRPLAdapter(
        cfg.ledger.server,
        connect_timeout=cfg.ledger.connect_timeout,
        fee_cushion=cfg.ledger.fee_cushion,
        max_fee_xrp=cfg.ledger.max_fee_xrp,
    )
    pool = SessionPool(
        adapter,
        size=cfg.pool.size,
        persistent=cfg.pool.persistent_sessions,
        acquire_timeout=cfg.pool.acquire_timeout,
    )
    return RequestGateway(pool, typed_errors=cfg.api.typed_errors)


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="Ripple Gateway HTTP API")
    p.add_argument("--config", default=None, help="Path to gateway TOML config file")
    p.add_argument("--server", default=None, help="rippled websocket URL (overrides config)")
    p.add_argument("--host", default=None, help="Listen host")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--pool-size", type=int, default=None, help="Concurrent ledger sessions")
    return p.parse_args(argv)


def configure(argv: list[str] | None = None) -> GatewayConfig:
    """Load config (TOML + env overrides), then apply CLI flags, which win."""
    args = parse_args(argv)
    cfg = load_config(args.config)
    if args.server:
        cfg.ledger.server = args.server
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.pool_size is not None:
        cfg.pool.size = args.pool_size
    return cfg


async def main(argv: list[str] | None = None):
    cfg = configure(argv)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    gateway = build_gateway(cfg)
    api = APIServer(gateway, cfg.api.host, cfg.api.port, api_config=cfg.api)
    await api.start()
    logger.info(
        f"Proxying to {cfg.ledger.server} with {cfg.pool.size} session(s), "
        f"typed_errors={cfg.api.typed_errors}"
    )

    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await api.stop()
        await gateway.pool.close()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
