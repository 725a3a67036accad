"""Submission fingerprints used as the dedup key."""
from __future__ import annotations

import hashlib
from dataclasses import dataclass

_SEP = "\x1f"


@dataclass(frozen=True)
class FileIdentity:
    """Stable identity of an uploaded resume file.

    Name + size is enough; a content digest is used when the bytes are known.
    """

    name: str
    size: int
    digest: str | None = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes) -> FileIdentity:
        return cls(name=name, size=len(data), digest=hashlib.sha256(data).hexdigest())

    def token(self) -> str:
        if self.digest:
            return f"{self.name}:{self.size}:{self.digest}"
        return f"{self.name}:{self.size}"


def compute_fingerprint(identity: FileIdentity, job_title: str, job_description: str = "") -> str:
    """Order-sensitive digest of (file identity, job title, job description).

    Not a proof of identity: callers must re-verify candidate matches.
    """
    material = _SEP.join((identity.token(), job_title.strip(), job_description.strip()))
    return "h" + hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]
