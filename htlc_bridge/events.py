"""
Bridge events and sinks.

Each successful counterparty operation emits exactly one event after the
ledger commits. Sinks are fire-and-forget.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Callable, Any, Type, Union

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetsLocked:
    transfer_id: bytes
    recipient: str
    amount: int
    hash_lock: bytes
    time_lock: int          # Absolute

    name = "assets_locked"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "transfer_id": self.transfer_id.hex(),
            "recipient": self.recipient,
            "amount": self.amount,
            "hash_lock": self.hash_lock.hex(),
            "time_lock": self.time_lock,
        }


@dataclass(frozen=True)
class TransferCompleted:
    transfer_id: bytes
    pre_image: bytes        # Now public, lets the initiator chain settle

    name = "transfer_completed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "transfer_id": self.transfer_id.hex(),
            "pre_image": self.pre_image.hex(),
        }


@dataclass(frozen=True)
class TransferCancelled:
    transfer_id: bytes

    name = "transfer_cancelled"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "transfer_id": self.transfer_id.hex(),
        }


BridgeEvent = Union[AssetsLocked, TransferCompleted, TransferCancelled]


class EventLog:
    """Sink that records events in order, keeping at most max_events."""

    def __init__(self, max_events: int = None):
        self.max_events = max_events
        self.events: List[BridgeEvent] = []

    def emit(self, event: BridgeEvent):
        self.events.append(event)
        if self.max_events and len(self.events) > self.max_events:
            del self.events[0]

    def of_type(self, event_type: Type) -> List[BridgeEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self):
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)


class LoggingSink:
    """Sink that writes events to the log."""

    def __init__(self, logger: logging.Logger = None):
        self.log = logger or log

    def emit(self, event: BridgeEvent):
        self.log.info(f"Event {event.name}: {event.to_dict()}")


class EventBus:
    """
    Fan-out sink with per-event handlers.

    Handlers registered under an event name, or "*" for every event.
    A failing handler is logged and does not affect the others.
    """

    def __init__(self):
        self._handlers: Dict[str, List[Callable]] = {}

    def on(self, event: str, handler: Callable):
        """Register event handler."""
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable):
        """Remove event handler."""
        if handler in self._handlers.get(event, []):
            self._handlers[event].remove(handler)

    def emit(self, event: BridgeEvent):
        for handler in self._handlers.get(event.name, []) + self._handlers.get("*", []):
            try:
                handler(event)
            except Exception:
                log.exception(f"Handler error for {event.name}")
