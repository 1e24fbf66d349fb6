# =============================================================================
# upp_core/offline/channel.py
# Notification Channel - message passing between offline components
# =============================================================================
"""
NotificationChannel - a small publish/subscribe hub.

The connectivity monitor, synchronizer, push handler and UI never call each
other's callbacks directly. Producers publish ChannelEvents; each consumer owns
a Subscription with its own queue and drains it on its own thread (or on the
Streamlit script thread via drain()).
"""

from __future__ import annotations
import queue
import threading
import weakref
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Kinds of events carried on the channel."""
    CONNECTIVITY_ONLINE = "connectivity_online"
    CONNECTIVITY_OFFLINE = "connectivity_offline"
    SYNC_REQUESTED = "sync_requested"
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    QUEUE_CHANGED = "queue_changed"
    STORAGE_FAILURE = "storage_failure"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class ChannelEvent:
    """A single message on the channel."""
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    source: str = ""
    created_at: datetime = field(default_factory=datetime.now)


class Subscription:
    """
    A consumer's view of the channel: a private FIFO of matching events.

    With maxsize set, the queue keeps only the newest `maxsize` events and
    counts the ones it discarded in `dropped`.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        name: str,
        kinds: Optional[FrozenSet[EventKind]],
        maxsize: int = 0,
    ):
        self.name = name
        self.kinds = kinds
        self.maxsize = maxsize
        self.dropped = 0
        self._channel = channel
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.closed = False

    def accepts(self, event: ChannelEvent) -> bool:
        return self.kinds is None or event.kind in self.kinds

    def _deliver(self, event: ChannelEvent) -> None:
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def get(self, timeout: Optional[float] = None) -> Optional[ChannelEvent]:
        """Block for the next event; None on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[ChannelEvent]:
        """Return all events delivered so far without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._channel.unsubscribe(self)
        self.closed = True


class NotificationChannel:
    """
    Thread-safe fan-out of ChannelEvents to subscriptions.

    The channel holds subscriptions weakly: a subscription whose owner is
    garbage collected stops receiving events without an explicit close().

    Usage:
        channel = NotificationChannel()
        sub = channel.subscribe("ui", kinds=[EventKind.QUEUE_CHANGED])
        channel.publish(ChannelEvent(EventKind.QUEUE_CHANGED, {"pending": 3}))
        sub.drain()  # -> [ChannelEvent(...)]
    """

    def __init__(self):
        self._subscriptions: weakref.WeakSet = weakref.WeakSet()
        self._lock = threading.Lock()

    def subscribe(
        self,
        name: str,
        kinds: Optional[Iterable[EventKind]] = None,
        maxsize: int = 0,
    ) -> Subscription:
        """
        Register a consumer.

        Args:
            name: Label used in logs
            kinds: Event kinds to receive; None for all
            maxsize: Keep at most this many undrained events (0 = unbounded)
        """
        subscription = Subscription(
            self, name, frozenset(kinds) if kinds is not None else None, maxsize=maxsize
        )
        with self._lock:
            self._subscriptions.add(subscription)
        logger.debug(f"Channel subscriber added: {name}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions.discard(subscription)

    def publish(self, event: ChannelEvent) -> int:
        """
        Deliver an event to every matching subscription.

        Returns:
            Number of subscriptions the event was delivered to
        """
        with self._lock:
            targets = [s for s in self._subscriptions if s.accepts(event)]
        for subscription in targets:
            subscription._deliver(event)
        logger.debug(f"Published {event.kind.value} to {len(targets)} subscriber(s)")
        return len(targets)

    def emit(self, kind: EventKind, source: str = "", **payload: Any) -> int:
        """Shorthand for publish(ChannelEvent(kind, payload, source))."""
        return self.publish(ChannelEvent(kind=kind, payload=payload, source=source))

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
