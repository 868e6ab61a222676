"""
Block-height clocks.

A clock returns the current monotonic block height. Time locks are
compared against it; the bridge never waits on it.
"""

import time
import threading


class ManualClock:
    """Clock driven by hand. Used in tests and simulations."""

    def __init__(self, height: int = 0):
        self._height = height
        self._lock = threading.Lock()

    def now(self) -> int:
        return self._height

    def advance(self, blocks: int = 1) -> int:
        if blocks < 0:
            raise ValueError("Clock cannot go backwards")
        with self._lock:
            self._height += blocks
            return self._height

    def set(self, height: int):
        with self._lock:
            if height < self._height:
                raise ValueError(f"Clock cannot go backwards ({height} < {self._height})")
            self._height = height


class TimestampClock:
    """
    Derive a block height from wall-clock time.

    Used when no chain RPC is configured: height = unix time // block_seconds.
    Never returns less than a previous reading.
    """

    def __init__(self, block_seconds: int = 12):
        if block_seconds <= 0:
            raise ValueError("block_seconds must be positive")
        self.block_seconds = block_seconds
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            height = int(time.time()) // self.block_seconds
            self._last = max(self._last, height)
            return self._last
