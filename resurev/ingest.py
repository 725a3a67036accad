"""
Resume ingestion.

Runs: fingerprint → dedup lookup → upload → pending record → AI call →
repair → finalize → index update → announce, checking the cancel token
between every step.
"""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from resurev.ai import build_prompt
from resurev.context import ServiceContext
from resurev.errors import BackendUnavailable, IngestionCancelled
from resurev.fingerprint import FileIdentity, compute_fingerprint
from resurev.log import get_logger
from resurev.models import STATUS_COMPLETED, STATUS_ERROR, STATUS_PENDING, Record
from resurev.repair import diagnostic_feedback, parse_feedback
from resurev.retry import CancelToken
from resurev.store import RecordStore
from resurev.sync import EVENT_CREATED, SyncBus

log = get_logger(__name__)


@dataclass
class Submission:
    file_name: str
    data: bytes
    job_title: str
    company_name: str = ""
    job_description: str = ""


@dataclass
class IngestOutcome:
    record_id: str
    status: str
    duplicate_of: str | None = None
    diagnostics: list[str] = field(default_factory=list)

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None


@dataclass
class _Claim:
    """One in-flight fingerprint; `ready` fires once its record id is known."""

    ready: threading.Event = field(default_factory=threading.Event)
    record_id: str | None = None


class Ingestor:
    def __init__(
        self,
        ctx: ServiceContext,
        *,
        store: RecordStore | None = None,
        bus: SyncBus | None = None,
    ) -> None:
        self.ctx = ctx
        self.store = store or RecordStore(
            ctx.kv, scan_limit=ctx.settings.scan_limit, pending_ttl=ctx.settings.pending_ttl
        )
        self.bus = bus
        self._in_flight: dict[str, _Claim] = {}
        # Pending records this instance created but will never finalize
        self._abandoned: set[str] = set()
        self._lock = threading.Lock()

    def submit(self, submission: Submission, *, token: CancelToken | None = None) -> IngestOutcome:
        token = token or CancelToken()
        try:
            return self._submit(submission, token)
        except IngestionCancelled as exc:
            log.info("Ingestion of %s %s", submission.file_name, exc)
            raise

    def _submit(self, sub: Submission, token: CancelToken) -> IngestOutcome:
        token.raise_if_cancelled("fingerprint")
        identity = FileIdentity.from_bytes(sub.file_name, sub.data)
        fingerprint = compute_fingerprint(identity, sub.job_title, sub.job_description)

        token.raise_if_cancelled("lookup")
        claim = self._claim(fingerprint, token)
        if claim.record_id is not None:
            # Another submission of the same input in this instance got there first
            log.info("Duplicate of in-flight record %s (%s)", claim.record_id, fingerprint)
            return IngestOutcome(claim.record_id, STATUS_PENDING, duplicate_of=claim.record_id)

        try:
            with self._lock:
                abandoned = set(self._abandoned)
            existing = self.store.find_duplicate(
                fingerprint, identity, sub.job_title, sub.job_description, exclude=abandoned
            )
            if existing is not None:
                claim.record_id = existing.id
                log.info("Duplicate of existing record %s (%s)", existing.id, fingerprint)
                return IngestOutcome(existing.id, existing.status, duplicate_of=existing.id)

            token.raise_if_cancelled("upload")
            handle = self.ctx.blobs.upload(sub.file_name, sub.data)

            token.raise_if_cancelled("pending create")
            record = self.store.create_pending(
                identity=identity,
                job_title=sub.job_title,
                company_name=sub.company_name,
                job_description=sub.job_description,
                resume_path=handle,
                fingerprint=fingerprint,
            )
            claim.record_id = record.id
            claim.ready.set()
            self.store.index_record(record)

            try:
                return self._analyze(record, handle, token)
            except Exception:
                with self._lock:
                    self._abandoned.add(record.id)
                raise
        finally:
            with self._lock:
                if self._in_flight.get(fingerprint) is claim:
                    del self._in_flight[fingerprint]
            claim.ready.set()

    def _claim(self, fingerprint: str, token: CancelToken) -> _Claim:
        """Own *fingerprint*, or return another submission's claim once it has a record.

        The owner's claim comes back with ``record_id`` None.
        """
        while True:
            with self._lock:
                claim = self._in_flight.get(fingerprint)
                if claim is None:
                    claim = self._in_flight[fingerprint] = _Claim()
                    return claim
            while not claim.ready.wait(0.05):
                token.raise_if_cancelled("lookup")
            if claim.record_id is not None:
                return claim
            # The owner stopped before creating a record; try to take over

    def _analyze(self, record: Record, handle: str, token: CancelToken) -> IngestOutcome:
        token.raise_if_cancelled("AI call")
        try:
            raw = self.ctx.ai.analyze(handle, build_prompt(record.job_title, record.job_description))
        except IngestionCancelled:
            raise
        except Exception as exc:
            log.error("Analysis of %s failed: %s", record.id, exc)
            self._mark_failed(record, exc)
            raise

        token.raise_if_cancelled("repair")
        result = parse_feedback(raw)
        feedback = result.feedback
        feedback.model = feedback.model or self.ctx.ai.model or None
        feedback.input_hash = record.input_hash
        status = STATUS_COMPLETED if result.ok else STATUS_ERROR
        if not result.ok:
            log.warning("Feedback for %s unusable: %s", record.id, "; ".join(result.diagnostics))

        token.raise_if_cancelled("finalize")
        self.store.finalize(record, feedback, status)

        token.raise_if_cancelled("index update")
        self.store.index_record(record)

        token.raise_if_cancelled("announce")
        self._announce(record)
        return IngestOutcome(record.id, status, diagnostics=result.diagnostics)

    def _mark_failed(self, record: Record, exc: Exception) -> None:
        feedback = diagnostic_feedback("", [{"stage": "ai", "message": str(exc)}])
        try:
            self.store.finalize(record, feedback, STATUS_ERROR)
        except BackendUnavailable as store_exc:
            log.error("Could not mark %s as error: %s", record.id, store_exc)
            return
        self._announce(record)

    def _announce(self, record: Record) -> None:
        if self.bus is not None:
            self.bus.publish(EVENT_CREATED, record.to_dict())

    def submit_many(
        self,
        submissions: list[Submission],
        *,
        max_workers: int = 4,
        token: CancelToken | None = None,
    ) -> list[IngestOutcome | Exception]:
        """Ingest in parallel. Failed entries hold the exception, in input order."""
        token = token or CancelToken()

        def run_one(sub: Submission) -> IngestOutcome | Exception:
            try:
                return self.submit(sub, token=token)
            except Exception as exc:
                log.error("[%s] FAILED: %s", sub.file_name, exc)
                return exc

        if not submissions:
            return []
        log.info("Ingesting %d submission(s) in parallel...", len(submissions))
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(submissions)))) as pool:
            return list(pool.map(run_one, submissions))
