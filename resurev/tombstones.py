"""Sticky deletion markers, authoritative over any stored record payload."""
from __future__ import annotations

from datetime import datetime, timezone

from resurev.backends import KeyValueBackend
from resurev.log import get_logger

log = get_logger(__name__)

TOMBSTONE_PREFIX = "tombstone:"


def tombstone_key(record_id: str) -> str:
    return f"{TOMBSTONE_PREFIX}{record_id}"


class TombstoneStore:
    """Record id → deletion marker. Markers are never removed."""

    def __init__(self, kv: KeyValueBackend) -> None:
        self.kv = kv

    def mark(self, record_id: str) -> bool:
        ok = self.kv.set(tombstone_key(record_id), datetime.now(timezone.utc).isoformat())
        if not ok:
            log.error("Tombstone write failed for %s", record_id)
        return ok

    def is_marked(self, record_id: str) -> bool:
        return self.kv.get(tombstone_key(record_id)) is not None

    def list_marked(self) -> set[str]:
        return {key[len(TOMBSTONE_PREFIX):] for key in self.kv.list(TOMBSTONE_PREFIX)}
