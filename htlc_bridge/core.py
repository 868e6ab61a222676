"""
Core types and helpers for the HTLC bridge counterparty.
"""

import hmac
import secrets
from enum import Enum
from dataclasses import dataclass
from typing import Dict, Any, Tuple

from web3 import Web3


class TransferState(Enum):
    """Ledger bucket a transfer lives in."""
    PENDING = "pending"       # Locked, waiting for pre-image or expiry
    COMPLETED = "completed"   # Pre-image revealed, asset minted
    ABORTED = "aborted"       # Expired and cancelled by the administrator


@dataclass(frozen=True)
class BridgeTransferDetails:
    """One swap attempt on the counterparty chain."""
    initiator: bytes        # Foreign-chain address, opaque
    recipient: str          # Local account that receives the minted asset
    amount: int             # Smallest unit
    hash_lock: bytes        # keccak256(pre_image), 32 bytes
    time_lock: int          # Absolute expiry (block height)

    def is_expired(self, now: int) -> bool:
        """Abort is allowed only strictly after the time lock."""
        return now > self.time_lock

    def to_dict(self) -> Dict[str, Any]:
        return {
            "initiator": self.initiator.hex(),
            "recipient": self.recipient,
            "amount": self.amount,
            "hash_lock": self.hash_lock.hex(),
            "time_lock": self.time_lock,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BridgeTransferDetails":
        return cls(
            initiator=bytes.fromhex(data["initiator"]),
            recipient=data["recipient"],
            amount=int(data["amount"]),
            hash_lock=bytes.fromhex(data["hash_lock"]),
            time_lock=int(data["time_lock"]),
        )


# =============================================================================
# Hash lock utilities
# =============================================================================

def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest, matching the initiator chain's hashing."""
    return bytes(Web3.keccak(data))


def generate_secret() -> Tuple[bytes, bytes]:
    """
    Generate a random pre-image and its Keccak-256 hash lock.

    Returns:
        (pre_image, hash_lock)
    """
    pre_image = secrets.token_bytes(SECRET_SIZE)
    return pre_image, keccak256(pre_image)


def verify_preimage(pre_image: bytes, hash_lock: bytes) -> bool:
    """Check keccak256(pre_image) == hash_lock in constant time."""
    return hmac.compare_digest(keccak256(pre_image), hash_lock)


def parse_hex(value: str) -> bytes:
    """Decode a hex string, with or without 0x prefix."""
    if value.startswith("0x") or value.startswith("0X"):
        value = value[2:]
    return bytes.fromhex(value)


# =============================================================================
# Constants
# =============================================================================

HASH_LOCK_SIZE = 32
SECRET_SIZE = 32

# Default relative time lock (in blocks) used by tooling
DEFAULT_TIME_LOCK_BLOCKS = 3600
