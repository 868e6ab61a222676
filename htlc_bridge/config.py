"""
Bridge configuration.

BridgeConfig is the singleton record created once at bridge setup.
ServiceConfig holds the deployment settings read from the environment.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BridgeConfig:
    """Identities the counterparty trusts."""
    admin: str      # Deployer / operator, sole authority for abort
    minter: str     # Account authorized to mint the bridged asset

    def is_admin(self, identity: str) -> bool:
        return identity == self.admin

    def to_dict(self) -> Dict[str, Any]:
        return {"admin": self.admin, "minter": self.minter}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeConfig":
        return cls(admin=data["admin"], minter=data["minter"])


@dataclass
class ServiceConfig:
    """Counterparty service settings."""
    admin: str = "bridge_admin"
    minter: str = "bridge_minter"
    master_minter: str = ""             # Credential passed to complete_transfer
    db_path: Optional[str] = None       # None = in-memory ledger

    # EVM minting backend (optional)
    rpc_url: Optional[str] = None
    chain_id: int = 84532
    token_contract: Optional[str] = None
    keyring_path: str = "~/.keys/bridge_keys.json"

    # HTTP API: identity -> bearer token. Callers are who their token says.
    api_keys: Dict[str, str] = field(default_factory=dict)

    # Local clock: seconds per block when no RPC is configured
    block_seconds: int = 12

    # Expiry watcher
    auto_abort: bool = False
    watch_interval: int = 30

    port: int = 8080

    def __post_init__(self):
        if not self.master_minter:
            self.master_minter = self.minter

    @property
    def bridge(self) -> BridgeConfig:
        return BridgeConfig(admin=self.admin, minter=self.minter)


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_service_config() -> ServiceConfig:
    """Build ServiceConfig from BRIDGE_* environment variables."""
    db_path = os.environ.get("BRIDGE_DB", "")
    return ServiceConfig(
        admin=os.environ.get("BRIDGE_ADMIN", "bridge_admin"),
        minter=os.environ.get("BRIDGE_MINTER", "bridge_minter"),
        master_minter=os.environ.get("BRIDGE_MASTER_MINTER", ""),
        db_path=os.path.expanduser(db_path) if db_path else None,
        rpc_url=os.environ.get("BRIDGE_RPC_URL") or None,
        chain_id=int(os.environ.get("BRIDGE_CHAIN_ID", "84532")),
        token_contract=os.environ.get("BRIDGE_TOKEN_CONTRACT") or None,
        keyring_path=os.environ.get("BRIDGE_KEYRING", "~/.keys/bridge_keys.json"),
        block_seconds=int(os.environ.get("BRIDGE_BLOCK_SECONDS", "12")),
        auto_abort=_env_bool("BRIDGE_AUTO_ABORT", False),
        watch_interval=int(os.environ.get("BRIDGE_WATCH_INTERVAL", "30")),
        api_keys=load_api_keys(os.environ.get("BRIDGE_API_KEYS", "~/.keys/bridge_api_keys.json")),
        port=int(os.environ.get("PORT", "8080")),
    )


def load_keyring(path: str) -> Dict[str, str]:
    """
    Load signing keys from a JSON file.

    Expected format: {"<address>": "<hex private key>", ...}
    Addresses are normalized to lower case.
    """
    key_path = Path(os.path.expanduser(path))
    if not key_path.exists():
        log.warning(f"No keyring found at {key_path}")
        return {}

    with open(key_path, "r") as f:
        data = json.load(f)

    keys = {addr.lower(): key for addr, key in data.items()}
    log.info(f"Loaded {len(keys)} signing keys from {key_path}")
    return keys


def load_api_keys(path: str) -> Dict[str, str]:
    """
    Load HTTP API tokens from a JSON file.

    Expected format: {"<identity>": "<token>", ...}
    """
    key_path = Path(os.path.expanduser(path))
    if not key_path.exists():
        log.warning(f"No API keys found at {key_path}, mutating endpoints will reject every request")
        return {}

    with open(key_path, "r") as f:
        data = json.load(f)

    log.info(f"Loaded {len(data)} API identities from {key_path}")
    return {str(identity): str(token) for identity, token in data.items()}
