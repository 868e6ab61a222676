"""
Transfer ledger for the bridge counterparty.

Three disjoint buckets (pending, completed, aborted) map a transfer id to its
BridgeTransferDetails. Mutations go through transaction(), which serializes
writers, rolls every bucket back if the block raises, and persists the ledger
to disk (JSON) when it commits.
"""

import os
import json
import logging
import tempfile
import threading
from contextlib import contextmanager
from typing import Optional, Dict, Iterator, Tuple

from .config import BridgeConfig
from .core import BridgeTransferDetails, TransferState
from .errors import DuplicateKey, NotFound, ConfigMismatch, PersistenceError

log = logging.getLogger(__name__)


class Bucket:
    """One named mapping of transfer id -> details."""

    def __init__(self, state: TransferState):
        self.state = state
        self._entries: Dict[bytes, BridgeTransferDetails] = {}

    @property
    def name(self) -> str:
        return self.state.value

    def insert(self, transfer_id: bytes, details: BridgeTransferDetails):
        """Insert if absent."""
        if transfer_id in self._entries:
            raise DuplicateKey(f"Transfer {transfer_id.hex()} already {self.name}")
        self._entries[transfer_id] = details

    def remove(self, transfer_id: bytes) -> BridgeTransferDetails:
        """Remove and return."""
        try:
            return self._entries.pop(transfer_id)
        except KeyError:
            raise NotFound(f"Transfer {transfer_id.hex()} not {self.name}") from None

    def get(self, transfer_id: bytes) -> BridgeTransferDetails:
        try:
            return self._entries[transfer_id]
        except KeyError:
            raise NotFound(f"Transfer {transfer_id.hex()} not {self.name}") from None

    def items(self) -> Iterator[Tuple[bytes, BridgeTransferDetails]]:
        return iter(list(self._entries.items()))

    def __contains__(self, transfer_id: bytes) -> bool:
        return transfer_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def _snapshot(self) -> Dict[bytes, BridgeTransferDetails]:
        # Details are frozen, a shallow copy is enough
        return dict(self._entries)

    def _restore(self, entries: Dict[bytes, BridgeTransferDetails]):
        self._entries = entries

    def _to_json(self) -> Dict[str, Dict]:
        return {tid.hex(): d.to_dict() for tid, d in self._entries.items()}

    def _load_json(self, data: Dict[str, Dict]):
        self._entries = {
            bytes.fromhex(tid): BridgeTransferDetails.from_dict(d)
            for tid, d in data.items()
        }


class TransferLedger:
    """
    Pending / completed / aborted transfers owned by the bridge administrator.

    Args:
        config: Bridge configuration stored alongside the buckets
        path: JSON file to persist to (None keeps the ledger in memory)
    """

    def __init__(self, config: BridgeConfig, path: Optional[str] = None):
        self.config = config
        self.path = path
        self.pending = Bucket(TransferState.PENDING)
        self.completed = Bucket(TransferState.COMPLETED)
        self.aborted = Bucket(TransferState.ABORTED)
        self._lock = threading.RLock()

        if self.path:
            self._load()

    @property
    def owner(self) -> str:
        return self.config.admin

    @property
    def buckets(self) -> Tuple[Bucket, Bucket, Bucket]:
        return (self.pending, self.completed, self.aborted)

    def bucket(self, state: TransferState) -> Bucket:
        return {
            TransferState.PENDING: self.pending,
            TransferState.COMPLETED: self.completed,
            TransferState.ABORTED: self.aborted,
        }[state]

    def state_of(self, transfer_id: bytes) -> Optional[TransferState]:
        """Bucket holding transfer_id, or None if unknown."""
        for bucket in self.buckets:
            if transfer_id in bucket:
                return bucket.state
        return None

    def lookup(self, transfer_id: bytes) -> Tuple[TransferState, BridgeTransferDetails]:
        """Find a transfer in any bucket."""
        with self._lock:
            for bucket in self.buckets:
                if transfer_id in bucket:
                    return bucket.state, bucket.get(transfer_id)
        raise NotFound(f"Unknown transfer {transfer_id.hex()}")

    @contextmanager
    def transaction(self):
        """
        Run a block as one indivisible ledger update.

        Holds the writer lock for the duration. If the block raises, all
        buckets are restored and the exception propagates. Otherwise the
        update is committed in memory and then persisted; a failed write
        raises PersistenceError but does not undo the committed update.
        """
        with self._lock:
            snapshots = [b._snapshot() for b in self.buckets]
            try:
                yield self
            except BaseException:
                for bucket, entries in zip(self.buckets, snapshots):
                    bucket._restore(entries)
                raise

            try:
                self._save()
            except OSError as e:
                log.error(f"Ledger write to {self.path} failed, in-memory state kept: {e}")
                raise PersistenceError(f"Could not write ledger to {self.path}: {e}") from e

    # =========================================================================
    # Persistence
    # =========================================================================

    def _save(self):
        if not self.path:
            return

        document = {
            "owner": self.owner,
            "config": self.config.to_dict(),
        }
        for bucket in self.buckets:
            document[bucket.name] = bucket._to_json()

        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".ledger-")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(document, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _load(self):
        if not os.path.exists(self.path):
            log.info(f"Initializing new ledger at {self.path} (owner={self.owner})")
            self._save()
            return

        with open(self.path, "r") as f:
            document = json.load(f)

        stored = BridgeConfig.from_dict(document["config"])
        if stored != self.config:
            raise ConfigMismatch(
                f"Ledger {self.path} was initialized for admin={stored.admin}, "
                f"minter={stored.minter}"
            )

        for bucket in self.buckets:
            bucket._load_json(document.get(bucket.name, {}))

        log.info(f"Loaded ledger from {self.path}: "
                 f"pending={len(self.pending)}, completed={len(self.completed)}, "
                 f"aborted={len(self.aborted)}")
