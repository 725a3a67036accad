"""Cross-instance change notification.

Two channels carry the same events: an in-process broadcast reaching live
instances in this process, and a durable last-event slot in the shared store
that instances elsewhere poll. Both only nudge a listener into reconciling;
the store stays the source of truth.
"""
from __future__ import annotations

import json
import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from resurev.backends import KeyValueBackend
from resurev.errors import BackendUnavailable
from resurev.log import get_logger
from resurev.models import now_ms

log = get_logger(__name__)

LAST_EVENT_KEY = "sync:last-event"

EVENT_CREATED = "created"
EVENT_DELETED = "deleted"
EVENT_TYPES: tuple[str, ...] = (EVENT_CREATED, EVENT_DELETED)

Listener = Callable[["SyncEvent"], None]


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class SyncEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)
    event_id: str = field(default_factory=_new_id)
    origin: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "eventId": self.event_id,
            "origin": self.origin,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SyncEvent:
        if not isinstance(data, dict):
            raise ValueError("event is not an object")
        kind = data.get("type")
        event_id = data.get("eventId")
        if kind not in EVENT_TYPES:
            raise ValueError(f"unknown event type {kind!r}")
        if not isinstance(event_id, str) or not event_id:
            raise ValueError("event has no eventId")
        payload = data.get("payload")
        timestamp = data.get("timestamp")
        return cls(
            type=kind,
            payload=payload if isinstance(payload, dict) else {},
            timestamp=timestamp if isinstance(timestamp, int) else 0,
            event_id=event_id,
            origin=data.get("origin") if isinstance(data.get("origin"), str) else "",
        )


class LocalBroadcast:
    """Named in-process channel; a post reaches every other open endpoint."""

    _channels: dict[str, list[LocalBroadcast]] = {}
    _registry_lock = threading.Lock()

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Listener] = []
        self.closed = False
        with self._registry_lock:
            self._channels.setdefault(name, []).append(self)

    def on_message(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def post(self, event: SyncEvent) -> int:
        """Deliver to every peer except self. Returns the number of peers reached."""
        if self.closed:
            return 0
        with self._registry_lock:
            peers = [p for p in self._channels.get(self.name, []) if p is not self]
        for peer in peers:
            peer._dispatch(event)
        return len(peers)

    def _dispatch(self, event: SyncEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                log.error("Broadcast listener on %r failed: %s", self.name, exc)

    def close(self) -> None:
        with self._registry_lock:
            peers = self._channels.get(self.name, [])
            if self in peers:
                peers.remove(self)
            if not peers:
                self._channels.pop(self.name, None)
        self.closed = True


class SyncBus:
    """Publish/subscribe over the broadcast channel and the last-event slot.

    Each event id reaches this instance's subscribers at most once, whichever
    channel brings it first; events this instance published are never
    delivered back to it.
    """

    def __init__(
        self,
        kv: KeyValueBackend,
        *,
        origin: str | None = None,
        channel: str = "resurev",
        seen_limit: int = 1024,
    ) -> None:
        self.kv = kv
        self.origin = origin or _new_id()
        self._listeners: list[Listener] = []
        # Most recent event ids, oldest first; the set mirrors the deque
        self._seen: set[str] = set()
        self._seen_order: deque[str] = deque()
        self._seen_limit = max(1, seen_limit)
        self._lock = threading.Lock()
        self._broadcast = LocalBroadcast(channel)
        self._broadcast.on_message(self.deliver)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, kind: str, payload: dict[str, Any] | None = None) -> SyncEvent:
        if kind not in EVENT_TYPES:
            raise ValueError(f"unknown event type {kind!r}")
        event = SyncEvent(type=kind, payload=dict(payload or {}), origin=self.origin)
        self._remember(event.event_id)

        try:
            if not self.kv.set(LAST_EVENT_KEY, json.dumps(event.to_dict())):
                log.warning("Could not persist %s event %s", kind, event.event_id)
        except BackendUnavailable as exc:
            log.warning("Last-event slot unavailable (%s); broadcasting only", exc)

        reached = self._broadcast.post(event)
        log.debug("Published %s %s to %d local peer(s)", kind, event.event_id, reached)
        return event

    def _remember(self, event_id: str) -> bool:
        """Record *event_id*; False when it was already seen."""
        with self._lock:
            if event_id in self._seen:
                return False
            self._seen.add(event_id)
            self._seen_order.append(event_id)
            while len(self._seen_order) > self._seen_limit:
                self._seen.discard(self._seen_order.popleft())
        return True

    def deliver(self, event: SyncEvent) -> bool:
        """Hand *event* to subscribers unless it is ours or already seen."""
        if event.origin == self.origin:
            return False
        if not self._remember(event.event_id):
            return False
        log.info("Received %s event %s from %s", event.type, event.event_id, event.origin or "?")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                log.error("Sync listener failed on %s: %s", event.event_id, exc)
        return True

    def poll(self) -> SyncEvent | None:
        """Check the last-event slot once. Returns the event if it was delivered."""
        try:
            raw = self.kv.get(LAST_EVENT_KEY)
        except BackendUnavailable as exc:
            log.debug("Poll skipped: %s", exc)
            return None
        if raw is None:
            return None
        try:
            event = SyncEvent.from_dict(json.loads(raw))
        except ValueError as exc:
            log.warning("Ignoring malformed last-event slot: %s", exc)
            return None
        return event if self.deliver(event) else None

    def start_polling(self, interval: float = 2.0) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()

        def loop() -> None:
            while not self._stop.wait(interval):
                self.poll()

        self._thread = threading.Thread(target=loop, name=f"resurev-sync-{self.origin[:8]}", daemon=True)
        self._thread.start()
        log.debug("Polling %s every %.1fs", LAST_EVENT_KEY, interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self._broadcast.close()
