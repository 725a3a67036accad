from __future__ import annotations

import json
from dataclasses import replace

import pytest

from resurev.backends import MemoryKV
from resurev.client import ReviewClient
from resurev.errors import BackendUnavailable, NotFound
from resurev.listing import ListingQuery
from resurev.store import record_key

CV = b"resume bytes " * 20


@pytest.fixture
def clients(ctx):
    a, b = ReviewClient(ctx, origin="tab-a"), ReviewClient(ctx, origin="tab-b")
    yield a, b
    a.close()
    b.close()


def test_submission_shows_up_in_both_instances(clients):
    a, b = clients
    outcome = a.submit("cv.txt", CV, "Backend Engineer")
    assert [r.id for r in a.records()] == [outcome.record_id]
    assert [r.id for r in b.records()] == [outcome.record_id]


def test_delete_propagates_and_stays_deleted(clients, kv):
    a, b = clients
    outcome = a.submit("cv.txt", CV, "Backend Engineer")
    record_id = outcome.record_id
    payload = kv.get(record_key(record_id))

    result = a.delete(record_id)
    assert result.hard_deleted and result.tombstoned
    assert a.records() == [] and b.records() == []
    with pytest.raises(NotFound):
        b.get(record_id)

    # A stale copy written back by a lagging peer never resurfaces
    kv.set(record_key(record_id), payload)
    assert a.refresh() == []
    assert b.reconcile() and b.records() == []


def test_delete_with_failing_hard_delete(clients, kv):
    a, b = clients
    record_id = a.submit("cv.txt", CV, "Backend Engineer").record_id
    kv.fail_delete.add(record_key(record_id))

    result = a.delete(record_id)

    assert (result.hard_deleted, result.tombstoned, result.soft_deleted) == (False, True, True)
    assert json.loads(kv.get(record_key(record_id)))["status"] == "deleted"
    assert b.records() == []


def test_failed_delete_restores_the_local_view(clients, kv):
    a, _ = clients
    record_id = a.submit("cv.txt", CV, "Backend Engineer").record_id
    kv.offline = True
    with pytest.raises(BackendUnavailable):
        a.delete(record_id)
    kv.offline = False
    assert [r.id for r in a.records()] == [record_id]
    assert a.get(record_id).id == record_id


def test_reconcile_reports_unreachable_store(clients, kv):
    a, _ = clients
    kv.offline = True
    assert a.reconcile() is False


def test_listing_uses_configured_page_size(clients, ctx):
    a, _ = clients
    ctx.settings.page_size = 2
    for i in range(3):
        a.submit(f"cv{i}.txt", CV + bytes([i]), f"Role {i}")
    page = a.listing()
    assert page.page_size == 2 and page.total == 3 and page.total_pages == 2
    assert len(a.listing(ListingQuery(text="role 1")).items) == 1


def test_start_refreshes_from_store(ctx):
    writer = ReviewClient(ctx, origin="writer")
    record_id = writer.submit("cv.txt", CV, "Backend Engineer").record_id
    writer.close()

    with ReviewClient(ctx, origin="late") as late:
        late.start()
        assert [r.id for r in late.records()] == [record_id]


class LaggingKV(MemoryKV):
    """Listing leaves out keys in ``hidden``, like a replica that is behind."""

    def __init__(self) -> None:
        super().__init__()
        self.hidden: set[str] = set()

    def list(self, prefix: str, with_values: bool = False):
        items = super().list(prefix, with_values=with_values)
        if with_values:
            return [(k, v) for k, v in items if k not in self.hidden]
        return [k for k in items if k not in self.hidden]


def test_reconcile_keeps_records_a_lagging_listing_omits(ctx):
    lagging = LaggingKV()
    ctx = replace(ctx, kv=lagging)
    with ReviewClient(ctx, origin="tab-a") as a, ReviewClient(ctx, origin="tab-b") as b:
        mine = a.submit("cv.txt", CV, "Backend Engineer").record_id
        lagging.hidden.add(record_key(mine))

        theirs = b.submit("cv.txt", CV, "Platform Engineer").record_id

        assert {r.id for r in a.records()} == {mine, theirs}
        assert a.reconcile()
        assert {r.id for r in a.records()} == {mine, theirs}


def test_refresh_drops_records_confirmed_gone(clients, kv):
    a, _ = clients
    kept = a.submit("cv.txt", CV, "Backend Engineer").record_id
    removed = a.submit("cv.txt", CV, "Data Engineer").record_id

    # Removed behind this instance's back, without a tombstone or an event
    kv.delete(record_key(removed))

    assert [r.id for r in a.refresh()] == [kept]
