from __future__ import annotations

import json

from resurev.dedup import DedupIndex, dedup_key
from resurev.tombstones import TombstoneStore, tombstone_key


def test_lookup_of_unknown_fingerprint_is_empty(kv):
    assert DedupIndex(kv).lookup("h0000000000000000") == []


def test_append_merges_in_insertion_order_and_is_idempotent(kv):
    index = DedupIndex(kv)
    assert index.append("hfp", "r1")
    assert index.append("hfp", "r2")
    assert index.append("hfp", "r1")
    assert index.lookup("hfp") == ["r1", "r2"]
    assert json.loads(kv.get(dedup_key("hfp"))) == ["r1", "r2"]


def test_corrupt_entry_is_treated_as_empty_and_rewritten(kv):
    kv.set(dedup_key("hfp"), "{broken")
    index = DedupIndex(kv)
    assert index.lookup("hfp") == []
    assert index.append("hfp", "r9")
    assert index.lookup("hfp") == ["r9"]


def test_lookup_drops_non_string_ids_and_repeats(kv):
    kv.set(dedup_key("hfp"), json.dumps(["r1", 7, None, "r1", "r2"]))
    assert DedupIndex(kv).lookup("hfp") == ["r1", "r2"]


def test_failed_write_reports_false_without_raising(kv):
    kv.fail_set.add("dedup:")
    index = DedupIndex(kv)
    assert index.append("hfp", "r1") is False
    assert index.lookup("hfp") == []


def test_tombstones_mark_and_list(kv):
    tombstones = TombstoneStore(kv)
    assert not tombstones.is_marked("r1")
    assert tombstones.mark("r1")
    assert tombstones.mark("r2")
    assert tombstones.is_marked("r1")
    assert tombstones.list_marked() == {"r1", "r2"}
    assert kv.get(tombstone_key("r1"))


def test_tombstone_write_failure_returns_false(kv):
    kv.fail_set.add("tombstone:")
    tombstones = TombstoneStore(kv)
    assert tombstones.mark("r1") is False
    assert not tombstones.is_marked("r1")
