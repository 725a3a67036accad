from __future__ import annotations

from resurev.listing import ListingQuery, build_listing
from resurev.models import Record
from resurev.repair import parse_feedback
from resurev.report import render_listing, render_review


def _record(**kw) -> Record:
    defaults = dict(id="r1", created_at=1_700_000_000_000, job_title="Backend Engineer", company_name="Acme", file_name="cv.pdf")
    defaults.update(kw)
    return Record(**defaults)


def test_render_completed_review(good_response):
    record = _record(status="completed", feedback=parse_feedback(good_response).feedback)
    text = render_review(record)
    assert text.startswith("# Backend Engineer @ Acme")
    assert "## ATS score: 72/100" in text
    assert "| Python | ✅ | 4 |" in text
    assert "- Quantify the impact of the payments rewrite" in text
    assert "- **Programming:** Python, Go" in text
    assert "BSc Computer Science" in text


def test_render_pending_and_failed_reviews():
    assert "still in progress" in render_review(_record())
    failed = _record(status="error", feedback=parse_feedback("garbage").feedback)
    text = render_review(failed)
    assert "## Analysis failed" in text
    assert "`parse`" in text
    assert "garbage" in text


def test_render_listing():
    assert render_listing(build_listing([], ListingQuery())) == "_No reviews yet._"
    page = build_listing([_record(), _record(id="r2", job_title="Designer")], ListingQuery(page_size=1, sort="oldest"))
    text = render_listing(page)
    assert "**2** review(s)" in text and "page 1/2" in text
    assert "`r1`" in text and "`r2`" not in text
