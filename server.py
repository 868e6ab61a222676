#!/usr/bin/env python3
"""
htlc-bridge counterparty server
Lock / complete / abort bridge transfers over HTTP.

Endpoints:
  GET  /api/status                      - Health check
  GET  /api/config                      - Bridge configuration
  POST /api/transfers/lock              - Lock assets for a transfer
  POST /api/transfers/{id}/complete     - Reveal pre-image, mint to recipient
  POST /api/transfers/{id}/abort        - Cancel expired transfer (admin)
  GET  /api/transfers/{id}              - Transfer state and details
  GET  /api/transfers?state=pending     - List a bucket
  GET  /api/events                      - Recent bridge events

Configuration via BRIDGE_* environment variables (see htlc_bridge/config.py).
Mutating endpoints require "Authorization: Bearer <token>" (BRIDGE_API_KEYS).

The app is built on demand, there is no module-level app:
  python server.py
  uvicorn server:create_app --factory --port 8080
"""

import time
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from htlc_bridge import (
    BridgeCounterparty, TransferLedger, LocalMintingAuthority, TimestampClock,
    EventBus, EventLog, LoggingSink, ExpiryWatcher, WatcherConfig,
    BridgeError, ServiceConfig, load_service_config,
)
from htlc_bridge.config import load_keyring
from htlc_bridge.chains.evm import EVMBlockClock, EVMMintingAuthority
from routes import transfers as transfer_routes

# =============================================================================
# LOGGING
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)

VERSION = "0.1.0"

# =============================================================================
# SERVICE WIRING
# =============================================================================


def build_counterparty(config: ServiceConfig, event_log: EventLog = None) -> BridgeCounterparty:
    """
    Assemble the counterparty from service configuration.

    EVM backend when BRIDGE_RPC_URL and BRIDGE_TOKEN_CONTRACT are set,
    otherwise a local in-memory token with a wall-clock block height.
    """
    bridge_config = config.bridge
    ledger = TransferLedger(bridge_config, config.db_path)

    if config.rpc_url and config.token_contract:
        keys = load_keyring(config.keyring_path)
        clock = EVMBlockClock(config.rpc_url)
        authority = EVMMintingAuthority(
            config.token_contract, keys,
            rpc_url=config.rpc_url, chain_id=config.chain_id,
        )
        log.info(f"EVM backend: rpc={config.rpc_url}, token={config.token_contract}")
    else:
        clock = TimestampClock(config.block_seconds)
        authority = LocalMintingAuthority(config.master_minter)
        log.info(f"Local backend: in-memory token, {config.block_seconds}s blocks")

    bus = EventBus()
    bus.on("*", LoggingSink().emit)
    if event_log is not None:
        bus.on("*", event_log.emit)

    return BridgeCounterparty(bridge_config, ledger, clock, authority, bus)


def create_app(config: ServiceConfig = None, counterparty: BridgeCounterparty = None,
               event_log: EventLog = None) -> FastAPI:
    """Create the FastAPI app. A prebuilt counterparty skips service wiring."""
    config = config or load_service_config()
    if event_log is None:
        event_log = EventLog(max_events=1000)
    if counterparty is None:
        counterparty = build_counterparty(config, event_log)

    transfer_routes.configure(counterparty, config.master_minter, event_log, config.api_keys)
    if not config.api_keys:
        log.warning("No API keys configured: lock, complete and abort will return 401")

    watcher: Optional[ExpiryWatcher] = None
    if config.auto_abort:
        watcher = ExpiryWatcher(
            counterparty, config.admin,
            WatcherConfig(poll_interval=config.watch_interval),
        )

    app = FastAPI(
        title="htlc-bridge counterparty",
        description="Counterparty side of a cross-chain HTLC bridge",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.counterparty = counterparty
    app.state.watcher = watcher

    @app.exception_handler(BridgeError)
    async def bridge_error_handler(request: Request, exc: BridgeError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.name, "detail": str(exc)},
        )

    @app.get("/api/status")
    def get_status():
        """Health check."""
        ledger = counterparty.ledger
        return {
            "status": "ok",
            "version": VERSION,
            "timestamp": int(time.time()),
            "height": counterparty.clock.now(),
            "admin": counterparty.config.admin,
            "pending": len(ledger.pending),
            "completed": len(ledger.completed),
            "aborted": len(ledger.aborted),
            "watcher": bool(watcher and watcher.running),
        }

    @app.get("/api/config")
    def get_config():
        """Bridge configuration."""
        return counterparty.config.to_dict()

    app.include_router(transfer_routes.router)

    @app.on_event("startup")
    def startup_event():
        if watcher:
            watcher.start()
        log.info(f"Bridge counterparty ready (admin={counterparty.config.admin})")

    @app.on_event("shutdown")
    def shutdown_event():
        if watcher:
            watcher.stop()

    return app



# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    config = load_service_config()
    port = config.port
    log.info(f"Starting htlc-bridge counterparty on port {port}")
    log.info(f"Docs: http://0.0.0.0:{port}/docs")
    uvicorn.run(create_app(config), host="0.0.0.0", port=port)
