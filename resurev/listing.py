"""Filter, sort and paginate a snapshot of records."""
from __future__ import annotations

import math
from dataclasses import dataclass, field

from resurev.models import STATUSES, Record

SORT_KEYS: tuple[str, ...] = ("newest", "oldest", "score_desc", "score_asc")
STATUS_ALL = "all"

# Records without a score sort below every scored one
_MISSING_SCORE = -1


@dataclass
class ListingQuery:
    text: str = ""
    status: str = STATUS_ALL
    sort: str = "newest"
    page: int = 1
    page_size: int = 10

    def __post_init__(self) -> None:
        if self.sort not in SORT_KEYS:
            raise ValueError(f"Unknown sort {self.sort!r}; expected one of {', '.join(SORT_KEYS)}")
        if self.status != STATUS_ALL and self.status not in STATUSES:
            raise ValueError(f"Unknown status filter {self.status!r}")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")


@dataclass
class ListingPage:
    items: list[Record] = field(default_factory=list)
    total: int = 0
    total_pages: int = 0
    page: int = 1
    page_size: int = 10


def filter_records(records: list[Record], text: str = "", status: str = STATUS_ALL) -> list[Record]:
    needle = text.strip().lower()
    out: list[Record] = []
    for r in records:
        if status != STATUS_ALL and r.status != status:
            continue
        if needle:
            haystack = (r.job_title, r.company_name, r.file_name)
            if not any(needle in (h or "").lower() for h in haystack):
                continue
        out.append(r)
    return out


def _score(r: Record) -> float:
    score = r.score
    return score if score is not None else _MISSING_SCORE


def sort_records(records: list[Record], sort: str = "newest") -> list[Record]:
    """Sort by *sort*; equal keys always fall back to ascending id."""
    if sort == "newest":
        return sorted(records, key=lambda r: (-r.created_at, r.id))
    if sort == "oldest":
        return sorted(records, key=lambda r: (r.created_at, r.id))
    if sort == "score_desc":
        return sorted(records, key=lambda r: (-_score(r), r.id))
    if sort == "score_asc":
        return sorted(records, key=lambda r: (_score(r), r.id))
    raise ValueError(f"Unknown sort {sort!r}")


def paginate(records: list[Record], page: int, page_size: int) -> ListingPage:
    total = len(records)
    total_pages = math.ceil(total / page_size) if total else 0
    page = min(max(page, 1), max(total_pages, 1))
    start = (page - 1) * page_size
    return ListingPage(
        items=records[start : start + page_size],
        total=total,
        total_pages=total_pages,
        page=page,
        page_size=page_size,
    )


def build_listing(records: list[Record], query: ListingQuery) -> ListingPage:
    matched = filter_records(records, query.text, query.status)
    return paginate(sort_records(matched, query.sort), query.page, query.page_size)
