#!/usr/bin/env python3
"""
Example: bridge transfer from the counterparty's perspective

1. Relayer locks a transfer under keccak256(secret)
2. Initiator reveals the secret, recipient receives minted tokens
3. A second transfer is never claimed and the admin aborts it after expiry

Usage:
    python counterparty_swap.py
"""

import sys
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from htlc_bridge import (
    BridgeConfig, TransferLedger, BridgeCounterparty, LocalMintingAuthority,
    ManualClock, EventBus, EventLog, LoggingSink, generate_secret, TooEarly,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s'
)
log = logging.getLogger(__name__)


def main():
    config = BridgeConfig(admin="bridge_admin", minter="bridge_minter")
    clock = ManualClock(1000)
    token = LocalMintingAuthority(master_minter="bridge_minter")
    history = EventLog()

    bus = EventBus()
    bus.on("*", LoggingSink().emit)
    bus.on("*", history.emit)

    bridge = BridgeCounterparty(config, TransferLedger(config), clock, token, bus)

    # =================================================================
    # Transfer 1: completed with the secret
    # =================================================================
    secret, hash_lock = generate_secret()
    bridge.lock_transfer_assets(
        "relayer", bytes.fromhex("ab" * 20), b"transfer-1", hash_lock,
        time_lock=100, recipient="alice", amount=250,
    )
    clock.advance(10)
    bridge.complete_transfer("relayer", b"transfer-1", secret, "bridge_minter")
    log.info(f"alice balance: {token.balance_of('alice')}")

    # =================================================================
    # Transfer 2: never claimed, aborted after expiry
    # =================================================================
    _, hash_lock = generate_secret()
    bridge.lock_transfer_assets(
        "relayer", bytes.fromhex("cd" * 20), b"transfer-2", hash_lock,
        time_lock=50, recipient="bob", amount=75,
    )
    try:
        bridge.abort_transfer("bridge_admin", b"transfer-2")
    except TooEarly as e:
        log.info(f"Abort refused: {e}")

    clock.advance(51)
    bridge.abort_transfer("bridge_admin", b"transfer-2")

    state, details = bridge.get_transfer(b"transfer-2")
    log.info(f"transfer-2 is {state.value}, bob balance: {token.balance_of('bob')}")
    log.info(f"{len(history)} events, total supply {token.total_supply}")


if __name__ == "__main__":
    main()
