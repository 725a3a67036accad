"""Repair and validate raw AI feedback into a Feedback value.

The pipeline never raises: text that cannot be repaired degrades to a
diagnostic Feedback carrying the original text in ``raw`` and the failure
detail in ``errors``. Parsed objects are validated leniently: unknown fields
are ignored, missing fields defaulted and malformed array entries dropped.
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from resurev.errors import FeedbackValidationError
from resurev.log import get_logger
from resurev.models import (
    FEEDBACK_VERSION,
    TIERS,
    TIP_TYPES,
    AchievementsSection,
    ATSSection,
    ATSTip,
    EducationSection,
    ExperienceSection,
    Feedback,
    KeywordMatch,
    Sections,
    SkillsSection,
)

log = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$")

# (minimum score, tier), checked top-down
TIER_THRESHOLDS: tuple[tuple[float, str], ...] = (
    (80, "Excellent"),
    (60, "Good"),
    (40, "Fair"),
)


@dataclass
class ParseResult:
    feedback: Feedback
    diagnostics: list[str] = field(default_factory=list)
    ok: bool = True

    def unwrap(self) -> Feedback:
        """Return the feedback, or raise FeedbackValidationError when unusable."""
        if not self.ok:
            raise FeedbackValidationError("; ".join(self.diagnostics) or "invalid feedback")
        return self.feedback


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Score helpers ────────────────────────────────────────────────────────


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not (
        isinstance(value, float) and math.isnan(value)
    )


def clamp_score(value: float) -> float:
    """Clamp a score into [0, 100]; NaN maps to 0."""
    if not _is_number(value):
        return 0
    return min(100, max(0, value))


def tier_for(score: float) -> str:
    for minimum, tier in TIER_THRESHOLDS:
        if score >= minimum:
            return tier
    return "Poor"


# ── Text repair ──────────────────────────────────────────────────────────


def strip_fences(text: str) -> str:
    s = text.strip()
    if s.startswith("```"):
        s = _FENCE_OPEN_RE.sub("", s)
        s = _FENCE_CLOSE_RE.sub("", s).strip()
    return s


def _scan_object(s: str) -> tuple[str, int]:
    """Cut *s* where brace depth first returns to zero.

    Braces inside string literals are ignored. Returns the kept text and the
    depth left open at its end (0 when the object closed).
    """
    depth = 0
    in_string = False
    escaped = False
    for i, ch in enumerate(s):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth <= 0:
                return s[: i + 1], depth
    return s, depth


def repair_json(text: str) -> str | None:
    """Extract the JSON object embedded in *text*, or None if unrecoverable."""
    s = strip_fences(text)
    first = s.find("{")
    last = s.rfind("}")
    if first == -1 or last == -1 or last < first:
        return None
    out, depth = _scan_object(s[first : last + 1])
    try:
        json.loads(out)
        return out
    except ValueError:
        pass
    while depth < 0:
        out = "{" + out
        depth += 1
    while depth > 0:
        out += "}"
        depth -= 1
    try:
        json.loads(out)
        log.debug("Repaired JSON by rebalancing braces")
        return out
    except ValueError:
        return None


# ── Schema validation ────────────────────────────────────────────────────


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _validate_ats(ats: dict[str, Any], diagnostics: list[str]) -> ATSSection:
    raw_score = ats.get("score")
    if _is_number(raw_score):
        score = clamp_score(raw_score)
        if score != raw_score:
            diagnostics.append(f"ATS.score {raw_score!r} clamped to {score!r}")
    else:
        score = 0
        diagnostics.append("ATS.score missing or not a number")

    tier = ats.get("tier")
    if tier not in TIERS:
        if tier is not None:
            diagnostics.append(f"ATS.tier {tier!r} unrecognized")
        tier = tier_for(score)

    keywords: list[KeywordMatch] = []
    raw_keywords = ats.get("keywordMatch")
    if isinstance(raw_keywords, list):
        for entry in raw_keywords:
            if (
                isinstance(entry, dict)
                and isinstance(entry.get("term"), str)
                and isinstance(entry.get("present"), bool)
            ):
                count = entry.get("count")
                keywords.append(
                    KeywordMatch(
                        term=entry["term"],
                        present=entry["present"],
                        count=count if _is_number(count) else 0,
                    )
                )
        dropped = len(raw_keywords) - len(keywords)
        if dropped:
            diagnostics.append(f"dropped {dropped} malformed keywordMatch entr{'y' if dropped == 1 else 'ies'}")

    tips: list[ATSTip] = []
    raw_tips = ats.get("tips")
    if isinstance(raw_tips, list):
        for entry in raw_tips:
            if not isinstance(entry, dict):
                continue
            kind, text = entry.get("type"), entry.get("tip")
            if kind in TIP_TYPES and isinstance(text, str) and len(text.strip()) >= 2:
                tips.append(ATSTip(type=kind, tip=text.strip()))
        dropped = len(raw_tips) - len(tips)
        if dropped:
            diagnostics.append(f"dropped {dropped} malformed tip entr{'y' if dropped == 1 else 'ies'}")

    return ATSSection(score=score, tier=tier, keyword_match=keywords, tips=tips)


def _validate_sections(raw: Any) -> Sections | None:
    if not isinstance(raw, dict):
        return None
    sections = Sections()

    experience = raw.get("experience")
    if isinstance(experience, dict) and isinstance(experience.get("projects"), list):
        sections.experience = ExperienceSection(projects=_strings(experience["projects"]))

    skills = raw.get("skills")
    if isinstance(skills, dict):
        sections.skills = SkillsSection(
            programming=_strings(skills.get("programming")),
            backend=_strings(skills.get("backend")),
            frontend=_strings(skills.get("frontend")),
            tools=_strings(skills.get("tools")),
        )

    education = raw.get("education")
    if isinstance(education, dict):
        fields_ = {k: education.get(k) for k in ("degree", "institution", "period", "percentage")}
        if any(isinstance(v, str) for v in fields_.values()):
            sections.education = EducationSection(
                **{k: v if isinstance(v, str) else "" for k, v in fields_.items()}
            )

    achievements = raw.get("achievements")
    if isinstance(achievements, dict):
        sections.achievements = AchievementsSection(
            competitions=_strings(achievements.get("competitions")),
            training=_strings(achievements.get("training")),
        )
    return sections


def validate_feedback(
    obj: dict[str, Any],
    *,
    default_generated_at: str | None = None,
) -> tuple[Feedback, list[str]]:
    """Coerce a parsed object into a Feedback; returns (feedback, diagnostics)."""
    diagnostics: list[str] = []

    if obj.get("version") != FEEDBACK_VERSION:
        diagnostics.append("Unsupported or missing version")

    meta = obj.get("meta") if isinstance(obj.get("meta"), dict) else {}
    generated_at = meta.get("generatedAt")
    if not isinstance(generated_at, str) or not generated_at:
        diagnostics.append("meta.generatedAt missing")
        generated_at = default_generated_at or utc_now_iso()

    raw_ats = obj.get("ATS", obj.get("ats"))
    ats = _validate_ats(raw_ats, diagnostics) if isinstance(raw_ats, dict) else None

    warnings = _strings(obj["warnings"]) if isinstance(obj.get("warnings"), list) else None
    errors = obj.get("errors")

    feedback = Feedback(
        generated_at=generated_at,
        version=FEEDBACK_VERSION,
        model=meta.get("model") if isinstance(meta.get("model"), str) else None,
        input_hash=meta.get("inputHash") if isinstance(meta.get("inputHash"), str) else None,
        ats=ats,
        summary=obj.get("summary") if isinstance(obj.get("summary"), str) else None,
        sections=_validate_sections(obj.get("sections")),
        warnings=warnings,
        raw=obj.get("raw"),
        errors=list(errors) if isinstance(errors, list) else None,
    )
    return feedback, diagnostics


def diagnostic_feedback(raw: Any, errors: list[Any]) -> Feedback:
    return Feedback(generated_at=utc_now_iso(), raw=raw, errors=errors)


def parse_feedback(raw: str) -> ParseResult:
    """Turn a raw model response into a Feedback value. Never raises."""
    text = raw if isinstance(raw, str) else ""
    if not text.strip():
        return ParseResult(
            feedback=diagnostic_feedback(raw, [{"stage": "input", "message": "empty response"}]),
            diagnostics=["empty response"],
            ok=False,
        )

    cleaned = repair_json(text)
    try:
        parsed = json.loads(cleaned if cleaned is not None else text)
    except ValueError as exc:
        log.warning("AI response is not parseable JSON: %s", exc)
        return ParseResult(
            feedback=diagnostic_feedback(raw, [{"stage": "parse", "message": str(exc)}]),
            diagnostics=[f"parse: {exc}"],
            ok=False,
        )

    if not isinstance(parsed, dict):
        return ParseResult(
            feedback=diagnostic_feedback(raw, [{"stage": "validate", "message": "Root is not an object"}]),
            diagnostics=["Root is not an object"],
            ok=False,
        )

    feedback, diagnostics = validate_feedback(parsed)
    if diagnostics:
        log.debug("Feedback validated with %d diagnostic(s): %s", len(diagnostics), "; ".join(diagnostics))
    return ParseResult(feedback=feedback, diagnostics=diagnostics, ok=True)
