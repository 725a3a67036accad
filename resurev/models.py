"""Data models for resume records and AI feedback."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

FEEDBACK_VERSION = "v1"

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
STATUS_DELETED = "deleted"
STATUSES: tuple[str, ...] = (STATUS_PENDING, STATUS_COMPLETED, STATUS_ERROR, STATUS_DELETED)

TIERS: tuple[str, ...] = ("Excellent", "Good", "Fair", "Poor")
TIP_TYPES: tuple[str, ...] = ("good", "improve")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class KeywordMatch:
    term: str
    present: bool
    count: int = 0


@dataclass
class ATSTip:
    type: str
    tip: str


@dataclass
class ATSSection:
    score: float
    tier: str
    keyword_match: list[KeywordMatch] = field(default_factory=list)
    tips: list[ATSTip] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "tier": self.tier,
            "keywordMatch": [
                {"term": k.term, "present": k.present, "count": k.count} for k in self.keyword_match
            ],
            "tips": [{"type": t.type, "tip": t.tip} for t in self.tips],
        }


@dataclass
class ExperienceSection:
    projects: list[str] = field(default_factory=list)


@dataclass
class SkillsSection:
    programming: list[str] = field(default_factory=list)
    backend: list[str] = field(default_factory=list)
    frontend: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)


@dataclass
class EducationSection:
    degree: str = ""
    institution: str = ""
    period: str = ""
    percentage: str = ""


@dataclass
class AchievementsSection:
    competitions: list[str] = field(default_factory=list)
    training: list[str] = field(default_factory=list)


@dataclass
class Sections:
    experience: ExperienceSection | None = None
    skills: SkillsSection | None = None
    education: EducationSection | None = None
    achievements: AchievementsSection | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for name in ("experience", "skills", "education", "achievements"):
            section = getattr(self, name)
            if section is not None:
                out[name] = dict(vars(section))
        return out


@dataclass
class Feedback:
    """Validated result of repairing an AI response.

    `raw` and `errors` are only set when the response could not be parsed:
    the unparsed response text and the failure detail.
    """

    generated_at: str
    version: str = FEEDBACK_VERSION
    model: str | None = None
    input_hash: str | None = None
    ats: ATSSection | None = None
    summary: str | None = None
    sections: Sections | None = None
    warnings: list[str] | None = None
    raw: Any = None
    errors: list[Any] | None = None

    @property
    def is_diagnostic(self) -> bool:
        return self.errors is not None and self.ats is None and self.raw is not None

    def to_dict(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"generatedAt": self.generated_at}
        if self.model:
            meta["model"] = self.model
        if self.input_hash:
            meta["inputHash"] = self.input_hash
        out: dict[str, Any] = {"version": self.version, "meta": meta}
        if self.ats is not None:
            out["ATS"] = self.ats.to_dict()
        if self.summary is not None:
            out["summary"] = self.summary
        if self.sections is not None:
            out["sections"] = self.sections.to_dict()
        if self.warnings is not None:
            out["warnings"] = list(self.warnings)
        if self.raw is not None:
            out["raw"] = self.raw
        if self.errors is not None:
            out["errors"] = list(self.errors)
        return out


@dataclass
class Record:
    id: str
    created_at: int
    job_title: str = ""
    company_name: str = ""
    job_description: str = ""
    resume_path: str = ""
    image_path: str | None = None
    input_hash: str | None = None
    status: str = STATUS_PENDING
    feedback: Feedback | None = None
    file_name: str = ""
    file_size: int | None = None
    version: str = FEEDBACK_VERSION

    @property
    def score(self) -> float | None:
        if self.feedback is not None and self.feedback.ats is not None:
            return self.feedback.ats.score
        return None

    def to_dict(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"fileName": self.file_name}
        if self.file_size is not None:
            meta["fileSize"] = self.file_size
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "companyName": self.company_name,
            "jobTitle": self.job_title,
            "jobDescription": self.job_description,
            "resumePath": self.resume_path,
            "imagePath": self.image_path,
            "inputHash": self.input_hash,
            "version": self.version,
            "status": self.status,
            "feedback": self.feedback.to_dict() if self.feedback is not None else None,
            "meta": meta,
        }
