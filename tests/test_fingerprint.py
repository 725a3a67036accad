from __future__ import annotations

import re

from resurev.fingerprint import FileIdentity, compute_fingerprint


def test_fingerprint_format_and_determinism():
    identity = FileIdentity("cv.pdf", 2048)
    fp = compute_fingerprint(identity, "Backend Engineer", "Build APIs")
    assert re.fullmatch(r"h[0-9a-f]{16}", fp)
    assert fp == compute_fingerprint(FileIdentity("cv.pdf", 2048), "Backend Engineer", "Build APIs")


def test_fingerprint_ignores_surrounding_whitespace():
    identity = FileIdentity("cv.pdf", 2048)
    assert compute_fingerprint(identity, " Backend Engineer ", "Build APIs\n") == compute_fingerprint(
        identity, "Backend Engineer", "Build APIs"
    )


def test_fingerprint_is_order_sensitive():
    identity = FileIdentity("cv.pdf", 2048)
    assert compute_fingerprint(identity, "a", "b") != compute_fingerprint(identity, "b", "a")
    assert compute_fingerprint(identity, "ab", "") != compute_fingerprint(identity, "a", "b")


def test_fingerprint_changes_with_file_identity():
    title = "Backend Engineer"
    base = compute_fingerprint(FileIdentity("cv.pdf", 2048), title)
    assert compute_fingerprint(FileIdentity("cv.pdf", 2049), title) != base
    assert compute_fingerprint(FileIdentity("resume.pdf", 2048), title) != base


def test_identity_from_bytes_includes_digest():
    a = FileIdentity.from_bytes("cv.pdf", b"x" * 2048)
    b = FileIdentity.from_bytes("cv.pdf", b"y" * 2048)
    assert a.size == b.size == 2048
    assert a.digest != b.digest
    assert compute_fingerprint(a, "t") != compute_fingerprint(b, "t")
