from __future__ import annotations

import json
import os
import uuid

os.environ.setdefault("RESUREV_LOG_FILE", "0")

import pytest

from resurev.ai import StaticInvoker
from resurev.backends import MemoryKV
from resurev.blobs import LocalBlobStore
from resurev.config import Settings
from resurev.context import ServiceContext

GOOD_FEEDBACK = {
    "version": "v1",
    "meta": {"generatedAt": "2024-05-01T10:00:00+00:00"},
    "ATS": {
        "score": 72,
        "keywordMatch": [
            {"term": "Python", "present": True, "count": 4},
            {"term": "Kubernetes", "present": False},
        ],
        "tips": [
            {"type": "good", "tip": "Clear project descriptions"},
            {"type": "improve", "tip": "Quantify the impact of the payments rewrite"},
        ],
    },
    "summary": "Solid backend profile with room for measurable outcomes.",
    "sections": {
        "experience": {"projects": ["Payments API", "Search indexer"]},
        "skills": {"programming": ["Python", "Go"], "backend": ["PostgreSQL"], "frontend": [], "tools": ["Docker"]},
        "education": {"degree": "BSc Computer Science", "institution": "State University", "period": "2015-2019", "percentage": ""},
    },
}


@pytest.fixture
def good_response() -> str:
    return "```json\n" + json.dumps(GOOD_FEEDBACK) + "\n```"


@pytest.fixture
def kv() -> MemoryKV:
    return MemoryKV()


@pytest.fixture
def settings(tmp_path) -> Settings:
    # A private broadcast channel keeps tests from hearing each other
    return Settings(
        data_dir=tmp_path,
        kv_backend="memory",
        sync_channel=f"test-{uuid.uuid4().hex}",
        sync_interval=0.01,
    )


@pytest.fixture
def invoker(good_response) -> StaticInvoker:
    return StaticInvoker(good_response)


@pytest.fixture
def ctx(kv, settings, invoker, tmp_path) -> ServiceContext:
    return ServiceContext(kv=kv, blobs=LocalBlobStore(tmp_path / "blobs"), ai=invoker, settings=settings)
