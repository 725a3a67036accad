"""Fingerprint → record id index used as the dedup fast path.

The index is an optimization only. A failed merge leaves the record
unindexed and the legacy scan in RecordStore still finds it.
"""
from __future__ import annotations

import json

from resurev.backends import KeyValueBackend
from resurev.log import get_logger

log = get_logger(__name__)

DEDUP_PREFIX = "dedup:"


def dedup_key(fingerprint: str) -> str:
    return f"{DEDUP_PREFIX}{fingerprint}"


class DedupIndex:
    def __init__(self, kv: KeyValueBackend) -> None:
        self.kv = kv

    def lookup(self, fingerprint: str) -> list[str]:
        """Record ids sharing *fingerprint*, in first-insertion order."""
        raw = self.kv.get(dedup_key(fingerprint))
        if raw is None:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("Corrupt dedup entry for %s, ignoring", fingerprint)
            return []
        if not isinstance(ids, list):
            return []
        return list(dict.fromkeys(i for i in ids if isinstance(i, str)))

    def append(self, fingerprint: str, record_id: str) -> bool:
        """Merge *record_id* into the entry; a no-op if already present.

        Returns False when the write failed. Concurrent appends may race; the
        loser's id is recovered by a later append or the legacy scan.
        """
        ids = self.lookup(fingerprint)
        if record_id in ids:
            return True
        ids.append(record_id)
        ok = self.kv.set(dedup_key(fingerprint), json.dumps(ids))
        if not ok:
            log.warning("Dedup index write failed for %s → %s", fingerprint, record_id)
        return ok
