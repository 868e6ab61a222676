"""
htlc-bridge - Counterparty side of a cross-chain HTLC bridge

A relayer locks a transfer under a Keccak-256 hash lock and a block-height
time lock. Revealing the pre-image before expiry mints the bridged asset to
the recipient; after expiry the bridge administrator may abort.

Usage:
    from htlc_bridge import (
        BridgeConfig, TransferLedger, BridgeCounterparty,
        LocalMintingAuthority, ManualClock, EventLog, generate_secret,
    )

    config = BridgeConfig(admin="admin", minter="minter")
    bridge = BridgeCounterparty(
        config, TransferLedger(config), ManualClock(),
        LocalMintingAuthority("minter"), EventLog(),
    )

    secret, hash_lock = generate_secret()
    bridge.lock_transfer_assets("relayer", b"0xabc", b"t1", hash_lock, 3600, "alice", 100)
    bridge.complete_transfer("relayer", b"t1", secret, "minter")
"""

from .core import (
    TransferState,
    BridgeTransferDetails,
    keccak256,
    generate_secret,
    verify_preimage,
    parse_hex,
    HASH_LOCK_SIZE,
    DEFAULT_TIME_LOCK_BLOCKS,
)
from .errors import (
    BridgeError,
    DuplicateKey,
    NotFound,
    InvalidSecret,
    Unauthorized,
    TooEarly,
    InvalidParameter,
    ConfigMismatch,
    PersistenceError,
    MintingError,
)
from .config import BridgeConfig, ServiceConfig, load_service_config
from .ledger import TransferLedger, Bucket
from .events import AssetsLocked, TransferCompleted, TransferCancelled, EventLog, EventBus, LoggingSink
from .clock import ManualClock, TimestampClock
from .minting import MintingAuthority, LocalMintingAuthority, minting_rights
from .counterparty import BridgeCounterparty
from .watcher import ExpiryWatcher, WatcherConfig

__version__ = "0.1.0"
__all__ = [
    # Core types
    "TransferState",
    "BridgeTransferDetails",
    # Hash lock utilities
    "keccak256",
    "generate_secret",
    "verify_preimage",
    "parse_hex",
    "HASH_LOCK_SIZE",
    "DEFAULT_TIME_LOCK_BLOCKS",
    # Errors
    "BridgeError",
    "DuplicateKey",
    "NotFound",
    "InvalidSecret",
    "Unauthorized",
    "TooEarly",
    "InvalidParameter",
    "ConfigMismatch",
    "PersistenceError",
    "MintingError",
    # Configuration
    "BridgeConfig",
    "ServiceConfig",
    "load_service_config",
    # Ledger
    "TransferLedger",
    "Bucket",
    # Events
    "AssetsLocked",
    "TransferCompleted",
    "TransferCancelled",
    "EventLog",
    "EventBus",
    "LoggingSink",
    # Collaborators
    "ManualClock",
    "TimestampClock",
    "MintingAuthority",
    "LocalMintingAuthority",
    "minting_rights",
    # State machine
    "BridgeCounterparty",
    "ExpiryWatcher",
    "WatcherConfig",
]
