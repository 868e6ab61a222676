"""
Expiry watcher for the bridge counterparty.

Polls the pending bucket and aborts transfers whose time lock has passed,
acting as the bridge administrator. Runs as a background thread.
"""

import time
import logging
import threading
from typing import List, Callable, Optional
from dataclasses import dataclass

from .counterparty import BridgeCounterparty
from .errors import BridgeError

log = logging.getLogger(__name__)


@dataclass
class WatcherConfig:
    """Watcher configuration."""
    poll_interval: int = 30     # seconds
    auto_abort: bool = True     # Abort expired transfers (otherwise only report)


class ExpiryWatcher:
    """
    Background service that cancels expired transfers.

    Callbacks:
    - on_transfer_expired: expired transfer found (before abort)
    - on_transfer_aborted: transfer moved to the aborted bucket
    """

    def __init__(self, counterparty: BridgeCounterparty, admin: str,
                 config: WatcherConfig = None):
        self.counterparty = counterparty
        self.admin = admin
        self.config = config or WatcherConfig()

        self.on_transfer_expired: Optional[Callable[[bytes], None]] = None
        self.on_transfer_aborted: Optional[Callable[[bytes], None]] = None

        self._running = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start watcher in background thread."""
        if self._running:
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._watch_loop, daemon=True)
        self._thread.start()
        log.info("Expiry watcher started")

    def stop(self):
        """Stop watcher."""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
        log.info("Expiry watcher stopped")

    def _watch_loop(self):
        while self._running:
            try:
                self.check_once()
            except Exception:
                log.exception("Watcher error")
            self._stop_event.wait(self.config.poll_interval)

    def check_once(self) -> List[bytes]:
        """
        Scan for expired transfers once.

        Returns:
            Ids aborted during this pass
        """
        aborted = []
        for transfer_id in self.counterparty.expired_transfers():
            if self.on_transfer_expired:
                self.on_transfer_expired(transfer_id)

            if not self.config.auto_abort:
                continue

            try:
                self.counterparty.abort_transfer(self.admin, transfer_id)
            except BridgeError as e:
                # Completed or aborted concurrently, or clock reading changed
                log.warning(f"Could not abort {transfer_id.hex()}: {e.name}: {e}")
                continue

            aborted.append(transfer_id)
            if self.on_transfer_aborted:
                self.on_transfer_aborted(transfer_id)

        if aborted:
            log.info(f"Aborted {len(aborted)} expired transfer(s)")
        return aborted

    def wait_until_idle(self, timeout: int = 60) -> bool:
        """
        Block until no expired transfer remains pending.

        Blocking call - use for CLI or testing.
        """
        start = time.time()
        while time.time() - start < timeout:
            if not self.counterparty.expired_transfers():
                return True
            self.check_once()
            time.sleep(0.1)
        return False
