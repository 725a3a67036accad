"""One live ResuRev instance: a local view kept consistent with the shared store."""
from __future__ import annotations

import threading

from resurev.context import ServiceContext
from resurev.errors import BackendUnavailable, NotFound, ParseError
from resurev.ingest import IngestOutcome, Ingestor, Submission
from resurev.listing import ListingPage, ListingQuery, build_listing
from resurev.log import get_logger
from resurev.models import Record
from resurev.retry import CancelToken
from resurev.store import DeleteOutcome, RecordStore
from resurev.sync import EVENT_DELETED, SyncBus, SyncEvent

log = get_logger(__name__)


class ReviewClient:
    """Owns the visible record view of one instance.

    Ids deleted by this instance or announced as deleted by a peer are kept in
    a local set and filtered out of every refresh, on top of the tombstones
    the store already honours.
    """

    def __init__(self, ctx: ServiceContext, *, origin: str | None = None, bus: SyncBus | None = None) -> None:
        self.ctx = ctx
        self.store = RecordStore(
            ctx.kv, scan_limit=ctx.settings.scan_limit, pending_ttl=ctx.settings.pending_ttl
        )
        self.bus = bus or SyncBus(ctx.kv, origin=origin, channel=ctx.settings.sync_channel)
        self.ingestor = Ingestor(ctx, store=self.store, bus=self.bus)
        self._records: dict[str, Record] = {}
        self._deleted: set[str] = set()
        self._lock = threading.Lock()
        self._unsubscribe = self.bus.subscribe(self._on_event)

    @property
    def origin(self) -> str:
        return self.bus.origin

    def __enter__(self) -> ReviewClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def start(self) -> None:
        self.refresh()
        self.bus.start_polling(self.ctx.settings.sync_interval)

    def close(self) -> None:
        self._unsubscribe()
        self.bus.stop()

    # ── View ─────────────────────────────────────────────────────────────

    def records(self) -> list[Record]:
        with self._lock:
            return list(self._records.values())

    def refresh(self) -> list[Record]:
        """Merge the store's listing into the local view.

        Records the listing omits are kept until ``store.get`` confirms they
        are gone, so a lagging listing never hides a record this instance
        already shows.
        """
        fresh = {r.id: r for r in self.store.list()}
        with self._lock:
            missing = [rid for rid in self._records if rid not in fresh]
        gone: set[str] = set()
        for record_id in missing:
            try:
                fresh[record_id] = self.store.get(record_id)
            except (NotFound, ParseError):
                gone.add(record_id)
            except BackendUnavailable as exc:
                log.debug("Keeping %s; could not confirm it is gone: %s", record_id, exc)
        if gone:
            log.info("Dropping %d record(s) no longer in the store", len(gone))
        with self._lock:
            for record_id in gone | self._deleted:
                self._records.pop(record_id, None)
            for record_id, record in fresh.items():
                if record_id not in self._deleted:
                    self._records[record_id] = record
            return list(self._records.values())

    def reconcile(self) -> bool:
        """Silent refresh; returns False when the store was unreachable."""
        try:
            self.refresh()
        except BackendUnavailable as exc:
            log.warning("Reconcile skipped: %s", exc)
            return False
        return True

    def _on_event(self, event: SyncEvent) -> None:
        record_id = event.payload.get("id")
        if event.type == EVENT_DELETED and isinstance(record_id, str):
            with self._lock:
                self._records.pop(record_id, None)
                self._deleted.add(record_id)
        self.reconcile()

    def listing(self, query: ListingQuery | None = None, **kwargs) -> ListingPage:
        if query is None:
            kwargs.setdefault("page_size", self.ctx.settings.page_size)
            query = ListingQuery(**kwargs)
        return build_listing(self.records(), query)

    def get(self, record_id: str) -> Record:
        with self._lock:
            if record_id in self._deleted:
                raise NotFound(record_id)
        return self.store.get(record_id)

    # ── Mutations ────────────────────────────────────────────────────────

    def submit(
        self,
        file_name: str,
        data: bytes,
        job_title: str,
        *,
        company_name: str = "",
        job_description: str = "",
        token: CancelToken | None = None,
    ) -> IngestOutcome:
        outcome = self.ingestor.submit(
            Submission(
                file_name=file_name,
                data=data,
                job_title=job_title,
                company_name=company_name,
                job_description=job_description,
            ),
            token=token,
        )
        try:
            record = self.store.get(outcome.record_id)
        except (NotFound, BackendUnavailable) as exc:
            log.debug("Submitted record %s not yet readable: %s", outcome.record_id, exc)
        else:
            with self._lock:
                if record.id not in self._deleted:
                    self._records[record.id] = record
        return outcome

    def delete(self, record_id: str) -> DeleteOutcome:
        """Remove locally first, then run the store's delete protocol and announce."""
        with self._lock:
            previous = self._records.pop(record_id, None)
            already_deleted = record_id in self._deleted
            self._deleted.add(record_id)
        try:
            outcome = self.store.delete(record_id)
        except BackendUnavailable:
            with self._lock:
                if not already_deleted:
                    self._deleted.discard(record_id)
                if previous is not None:
                    self._records[record_id] = previous
            raise
        self.bus.publish(EVENT_DELETED, {"id": record_id})
        return outcome
