"""Markdown rendering of reviews and listings."""
from __future__ import annotations

from datetime import datetime, timezone

from resurev.listing import ListingPage
from resurev.log import get_logger
from resurev.models import Record

log = get_logger(__name__)

_TIER_BADGES: dict[str, str] = {
    "Excellent": "\U0001f7e2",
    "Good": "\U0001f7e1",
    "Fair": "\U0001f7e0",
    "Poor": "\U0001f534",
}


def _when(created_at: int) -> str:
    if not created_at:
        return "—"
    return datetime.fromtimestamp(created_at / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _clip(text: str, width: int) -> str:
    return text[:width] + ("…" if len(text) > width else "")


def _bullets(lines: list[str], title: str, items: list[str]) -> None:
    if items:
        lines.append(f"- **{title}:** {', '.join(items)}")


def render_review(record: Record) -> str:
    title = record.job_title or "Untitled role"
    heading = f"# {title} @ {record.company_name}" if record.company_name else f"# {title}"
    lines: list[str] = [heading, ""]
    lines.append(f"- **Resume:** {record.file_name or record.resume_path or '—'}")
    lines.append(f"- **Submitted:** {_when(record.created_at)}")
    lines.append(f"- **Status:** {record.status}")
    lines.append("")

    fb = record.feedback
    if fb is None:
        lines.append("_Analysis still in progress._")
        return "\n".join(lines)

    if fb.is_diagnostic:
        lines.append("## Analysis failed")
        lines.append("")
        for err in fb.errors or []:
            if isinstance(err, dict):
                lines.append(f"- `{err.get('stage', '?')}`: {err.get('message', '')}")
            else:
                lines.append(f"- {err}")
        if fb.raw:
            lines.append("")
            lines.append("Raw response:")
            lines.append("")
            lines.append("```")
            lines.append(str(fb.raw))
            lines.append("```")
        return "\n".join(lines)

    if fb.ats is not None:
        badge = _TIER_BADGES.get(fb.ats.tier, "")
        lines.append(f"## ATS score: {fb.ats.score:g}/100 {badge} {fb.ats.tier}".rstrip())
        lines.append("")
        if fb.ats.keyword_match:
            lines.append("| Keyword | Present | Count |")
            lines.append("|---------|:-------:|------:|")
            for k in fb.ats.keyword_match:
                lines.append(f"| {k.term} | {'✅' if k.present else '❌'} | {k.count} |")
            lines.append("")
        good = [t.tip for t in fb.ats.tips if t.type == "good"]
        improve = [t.tip for t in fb.ats.tips if t.type == "improve"]
        if good:
            lines.append("**What works**")
            lines.extend(f"- {tip}" for tip in good)
            lines.append("")
        if improve:
            lines.append("**To improve**")
            lines.extend(f"- {tip}" for tip in improve)
            lines.append("")

    if fb.summary:
        lines.append("## Summary")
        lines.append("")
        lines.append(fb.summary)
        lines.append("")

    sections = fb.sections
    if sections is not None:
        lines.append("## Sections")
        lines.append("")
        if sections.experience is not None:
            _bullets(lines, "Projects", sections.experience.projects)
        if sections.skills is not None:
            s = sections.skills
            _bullets(lines, "Programming", s.programming)
            _bullets(lines, "Backend", s.backend)
            _bullets(lines, "Frontend", s.frontend)
            _bullets(lines, "Tools", s.tools)
        if sections.education is not None:
            e = sections.education
            parts = [p for p in (e.degree, e.institution, e.period, e.percentage) if p]
            if parts:
                lines.append(f"- **Education:** {' · '.join(parts)}")
        if sections.achievements is not None:
            _bullets(lines, "Competitions", sections.achievements.competitions)
            _bullets(lines, "Training", sections.achievements.training)
        lines.append("")

    if fb.warnings:
        lines.append("## Warnings")
        lines.append("")
        lines.extend(f"- {w}" for w in fb.warnings)
        lines.append("")

    lines.append(f"_Generated {fb.generated_at}{f' by {fb.model}' if fb.model else ''}._")
    return "\n".join(lines)


def render_listing(page: ListingPage) -> str:
    if not page.total:
        return "_No reviews yet._"
    lines: list[str] = [
        f"**{page.total}** review(s) — page {page.page}/{max(page.total_pages, 1)}",
        "",
        "| # | Role | Company | Resume | Score | Status | Submitted | Id |",
        "|--:|------|---------|--------|------:|--------|-----------|----|",
    ]
    offset = (page.page - 1) * page.page_size
    for i, r in enumerate(page.items, offset + 1):
        score = f"{r.score:g}" if r.score is not None else "—"
        lines.append(
            f"| {i} | {_clip(r.job_title, 40)} | {_clip(r.company_name, 22)} | {_clip(r.file_name, 24)} "
            f"| {score} | {r.status} | {_when(r.created_at)} | `{r.id}` |"
        )
    log.debug("Rendered listing page %d with %d row(s)", page.page, len(page.items))
    return "\n".join(lines)
