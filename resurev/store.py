"""Record persistence over the shared key-value store.

Every read path re-derives visibility: a tombstoned id or a payload whose
status is ``deleted`` is never returned, whatever a lagging copy says.
"""
from __future__ import annotations

import json
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from resurev.backends import KeyValueBackend
from resurev.dedup import DedupIndex
from resurev.errors import BackendUnavailable, DeleteConflict, NotFound, ParseError
from resurev.fingerprint import FileIdentity
from resurev.log import get_logger
from resurev.models import (
    FEEDBACK_VERSION,
    STATUS_COMPLETED,
    STATUS_DELETED,
    STATUS_ERROR,
    STATUS_PENDING,
    STATUSES,
    Feedback,
    Record,
    now_ms,
)
from resurev.repair import validate_feedback
from resurev.tombstones import TombstoneStore

log = get_logger(__name__)

RECORD_PREFIX = "resume:"

# Statuses a record must have to be reused as a dedup match; pending ones
# only while younger than the store's pending_ttl
_REUSABLE = (STATUS_PENDING, STATUS_COMPLETED)


def record_key(record_id: str) -> str:
    return f"{RECORD_PREFIX}{record_id}"


def _ms_to_iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _needs_backfill(feedback: Any) -> bool:
    if not isinstance(feedback, dict):
        return False
    meta = feedback.get("meta")
    return (
        not feedback.get("version")
        or not isinstance(meta, dict)
        or not isinstance(meta.get("generatedAt"), str)
        or not meta.get("generatedAt")
    )


def decode_record(key: str, raw: str) -> Record:
    """Parse a stored payload. Raises ParseError on anything unusable."""
    try:
        data = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ParseError(key, f"invalid JSON ({exc})") from exc
    if not isinstance(data, dict):
        raise ParseError(key, "payload is not an object")

    record_id = data.get("id")
    if not isinstance(record_id, str) or not record_id:
        raise ParseError(key, "missing id")

    created_at = data.get("createdAt")
    if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
        created_at = 0
    created_at = int(created_at)

    raw_feedback = data.get("feedback")
    if raw_feedback is not None and not isinstance(raw_feedback, dict):
        raise ParseError(key, "feedback is not an object")

    status = data.get("status")
    if status is None:
        # Records written before statuses existed
        status = STATUS_COMPLETED if raw_feedback else STATUS_PENDING
    if status not in STATUSES:
        raise ParseError(key, f"unknown status {status!r}")

    feedback: Feedback | None = None
    if raw_feedback is not None:
        feedback, _ = validate_feedback(
            raw_feedback,
            default_generated_at=_ms_to_iso(created_at or now_ms()),
        )
    if status == STATUS_COMPLETED and feedback is None:
        log.warning("Record %s is completed without feedback; treating as error", record_id)
        status = STATUS_ERROR

    meta = data.get("meta") if isinstance(data.get("meta"), dict) else {}
    file_size = meta.get("fileSize")

    def text(name: str) -> str:
        value = data.get(name)
        return value if isinstance(value, str) else ""

    return Record(
        id=record_id,
        created_at=created_at,
        job_title=text("jobTitle"),
        company_name=text("companyName"),
        job_description=text("jobDescription"),
        resume_path=text("resumePath"),
        image_path=data.get("imagePath") if isinstance(data.get("imagePath"), str) else None,
        input_hash=data.get("inputHash") if isinstance(data.get("inputHash"), str) else None,
        status=status,
        feedback=feedback,
        file_name=meta.get("fileName") if isinstance(meta.get("fileName"), str) else "",
        file_size=file_size if isinstance(file_size, int) and not isinstance(file_size, bool) else None,
        version=text("version") or FEEDBACK_VERSION,
    )


def encode_record(record: Record) -> str:
    return json.dumps(record.to_dict())


@dataclass
class DeleteOutcome:
    record_id: str
    hard_deleted: bool
    tombstoned: bool
    soft_deleted: bool = False


class RecordStore:
    def __init__(
        self,
        kv: KeyValueBackend,
        *,
        tombstones: TombstoneStore | None = None,
        index: DedupIndex | None = None,
        scan_limit: int = 500,
        pending_ttl: float = 300.0,
    ) -> None:
        self.kv = kv
        self.tombstones = tombstones or TombstoneStore(kv)
        self.index = index or DedupIndex(kv)
        self.scan_limit = scan_limit
        self.pending_ttl = pending_ttl
        self.stats: Counter[str] = Counter()

    # ── Writes ───────────────────────────────────────────────────────────

    def save(self, record: Record) -> bool:
        return self.kv.set(record_key(record.id), encode_record(record))

    def create_pending(
        self,
        *,
        identity: FileIdentity,
        job_title: str,
        company_name: str = "",
        job_description: str = "",
        resume_path: str = "",
        image_path: str | None = None,
        fingerprint: str | None = None,
    ) -> Record:
        record = Record(
            id=uuid.uuid4().hex,
            created_at=now_ms(),
            job_title=job_title,
            company_name=company_name,
            job_description=job_description,
            resume_path=resume_path,
            image_path=image_path,
            input_hash=fingerprint,
            status=STATUS_PENDING,
            file_name=identity.name,
            file_size=identity.size,
        )
        if not self.save(record):
            raise BackendUnavailable(f"could not persist pending record {record.id}")
        log.info("Created pending record %s (%s)", record.id, job_title or "untitled")
        return record

    def finalize(self, record: Record, feedback: Feedback, status: str) -> Record:
        """Attach feedback and move a pending record to completed/error."""
        if status not in (STATUS_COMPLETED, STATUS_ERROR):
            raise ValueError(f"cannot finalize with status {status!r}")
        record.feedback = feedback
        record.status = status
        if not self.save(record):
            raise BackendUnavailable(f"could not persist record {record.id}")
        log.info("Finalized record %s → %s", record.id, status)
        return record

    def index_record(self, record: Record) -> bool:
        """Best-effort dedup index update; failures are tolerated."""
        if not record.input_hash:
            return False
        try:
            return self.index.append(record.input_hash, record.id)
        except BackendUnavailable as exc:
            log.warning("Dedup index unavailable for %s: %s", record.id, exc)
            return False

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, record_id: str) -> Record:
        """Load one visible record, backfilling legacy feedback metadata."""
        if self.tombstones.is_marked(record_id):
            raise NotFound(record_id)
        key = record_key(record_id)
        raw = self.kv.get(key)
        if raw is None:
            raise NotFound(record_id)
        record = decode_record(key, raw)
        if record.status == STATUS_DELETED:
            raise NotFound(record_id)

        if _needs_backfill(json.loads(raw).get("feedback")):
            log.info("Backfilling feedback version/meta on legacy record %s", record_id)
            try:
                self.save(record)
            except BackendUnavailable as exc:
                log.debug("Backfill write skipped for %s: %s", record_id, exc)
        return record

    def list(self) -> list[Record]:
        """All visible records; corrupt payloads are skipped, never fatal."""
        marked = self.tombstones.list_marked()
        records: list[Record] = []
        for key, raw in self.kv.list(RECORD_PREFIX, with_values=True):
            record_id = key[len(RECORD_PREFIX):]
            if record_id in marked:
                continue
            try:
                record = decode_record(key, raw)
            except ParseError as exc:
                self.stats["skipped_corrupt"] += 1
                log.warning("Skipping record: %s", exc)
                continue
            if record.id != record_id:
                self.stats["skipped_corrupt"] += 1
                log.warning("Skipping record at %s: payload id %s does not match key", key, record.id)
                continue
            if record.status == STATUS_DELETED:
                continue
            records.append(record)
        return records

    # ── Dedup ────────────────────────────────────────────────────────────

    def find_duplicate(
        self,
        fingerprint: str,
        identity: FileIdentity,
        job_title: str,
        job_description: str = "",
        *,
        exclude: set[str] | frozenset[str] = frozenset(),
    ) -> Record | None:
        """Find a live record for the same submission.

        Index candidates are tried first and re-verified; the bounded legacy
        scan runs only when none of them verifies. Ids in *exclude* are never
        returned, and a pending record older than ``pending_ttl`` is treated
        as abandoned.
        """
        for candidate_id in self.index.lookup(fingerprint):
            if candidate_id in exclude or self.tombstones.is_marked(candidate_id):
                continue
            key = record_key(candidate_id)
            raw = self.kv.get(key)
            if raw is None:
                continue
            try:
                candidate = decode_record(key, raw)
            except ParseError as exc:
                log.warning("Dedup candidate unreadable: %s", exc)
                continue
            if self._same_submission(candidate, fingerprint, identity, job_title, job_description):
                self.stats["index_hits"] += 1
                return candidate
        return self._legacy_scan(fingerprint, identity, job_title, job_description, exclude)

    def _legacy_scan(
        self,
        fingerprint: str,
        identity: FileIdentity,
        job_title: str,
        job_description: str,
        exclude: set[str] | frozenset[str] = frozenset(),
    ) -> Record | None:
        self.stats["legacy_scans"] += 1
        entries = self.kv.list(RECORD_PREFIX, with_values=True)
        if len(entries) > self.scan_limit:
            log.warning(
                "Legacy dedup scan truncated to %d of %d records", self.scan_limit, len(entries)
            )
            entries = entries[: self.scan_limit]
        log.warning("Dedup index miss for %s; scanning %d record(s)", fingerprint, len(entries))

        marked = self.tombstones.list_marked()
        matches: list[Record] = []
        for key, raw in entries:
            if key[len(RECORD_PREFIX):] in marked:
                continue
            try:
                candidate = decode_record(key, raw)
            except ParseError:
                continue
            if candidate.id in marked or candidate.id in exclude:
                continue
            if self._same_submission(candidate, fingerprint, identity, job_title, job_description):
                matches.append(candidate)
        if not matches:
            return None

        found = min(matches, key=lambda r: (r.created_at, r.id))
        self.stats["legacy_hits"] += 1
        log.info("Legacy scan found %s for %s; re-indexing", found.id, fingerprint)
        self.index_record(found)
        return found

    def _is_stale(self, record: Record) -> bool:
        return record.status == STATUS_PENDING and now_ms() - record.created_at > self.pending_ttl * 1000

    def _same_submission(
        self,
        candidate: Record,
        fingerprint: str,
        identity: FileIdentity,
        job_title: str,
        job_description: str,
    ) -> bool:
        if candidate.input_hash != fingerprint or candidate.status not in _REUSABLE:
            return False
        if self._is_stale(candidate):
            log.info("Ignoring stale pending record %s for %s", candidate.id, fingerprint)
            return False
        if candidate.job_title.strip() != job_title.strip():
            return False
        if candidate.job_description.strip() != job_description.strip():
            return False
        if candidate.file_name and candidate.file_name != identity.name:
            return False
        if candidate.file_size is not None and candidate.file_size != identity.size:
            return False
        return True

    # ── Delete ───────────────────────────────────────────────────────────

    def _hard_delete(self, record_id: str) -> None:
        try:
            ok = self.kv.delete(record_key(record_id))
        except BackendUnavailable as exc:
            raise DeleteConflict(record_id) from exc
        if not ok:
            raise DeleteConflict(record_id)

    def _soft_delete(self, record_id: str) -> bool:
        key = record_key(record_id)
        raw = self.kv.get(key)
        if raw is None:
            return False
        try:
            record = decode_record(key, raw)
        except ParseError:
            payload = json.dumps({"id": record_id, "status": STATUS_DELETED, "createdAt": 0})
            return self.kv.set(key, payload)
        record.status = STATUS_DELETED
        return self.save(record)

    def delete(self, record_id: str) -> DeleteOutcome:
        """Hard delete, then tombstone unconditionally, then soft-delete if needed.

        Raises BackendUnavailable only when none of the three writes landed.
        """
        hard_deleted = True
        try:
            self._hard_delete(record_id)
        except DeleteConflict as exc:
            hard_deleted = False
            log.warning("%s; falling back to tombstone + soft delete", exc)

        try:
            tombstoned = self.tombstones.mark(record_id)
        except BackendUnavailable as exc:
            log.error("Tombstone for %s not written: %s", record_id, exc)
            tombstoned = False

        soft_deleted = False
        if not hard_deleted:
            try:
                soft_deleted = self._soft_delete(record_id)
            except BackendUnavailable as exc:
                log.error("Soft delete of %s not written: %s", record_id, exc)

        if not (hard_deleted or tombstoned or soft_deleted):
            raise BackendUnavailable(f"could not delete {record_id}")
        log.info(
            "Deleted %s (hard=%s, tombstone=%s, soft=%s)",
            record_id, hard_deleted, tombstoned, soft_deleted,
        )
        return DeleteOutcome(record_id, hard_deleted, tombstoned, soft_deleted)
