"""AI collaborators that turn an uploaded resume into raw feedback text.

The text they return is untrusted; resurev.repair turns it into Feedback.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import PurePath
from typing import Callable

from openai import APIConnectionError, OpenAI, OpenAIError

from resurev.blobs import BlobStore
from resurev.config import Settings
from resurev.errors import AIInvocationFailed, BackendUnavailable
from resurev.log import get_logger
from resurev.models import FEEDBACK_VERSION
from resurev.resume_text import extract_text

log = get_logger(__name__)

_PROMPT = """\
You are an ATS + resume analysis system. Output ONLY valid JSON matching this
shape, without markdown fences:
{{
  "version": "{version}",
  "meta": {{ "generatedAt": string }},
  "ATS": {{ "score": number, "tier"?: string,
           "keywordMatch"?: [{{"term": string, "present": boolean, "count"?: number}}],
           "tips"?: [{{"type": "good" | "improve", "tip": string}}] }},
  "summary": string,
  "sections": {{ "experience"?: {{"projects": [string]}},
                "skills"?: {{"programming": [string], "backend": [string],
                            "frontend": [string], "tools": [string]}},
                "education"?: {{"degree": string, "institution": string,
                               "period": string, "percentage": string}},
                "achievements"?: {{"competitions": [string], "training": [string]}} }},
  "warnings"?: [string]
}}
Rules:
- Do not wrap in backticks.
- Provide concise actionable tips.
- Score criteria: formatting, clarity, keyword alignment, impact.
Job Title: {job_title}
Job Description: {job_description}
"""


def build_prompt(job_title: str, job_description: str = "") -> str:
    return _PROMPT.format(
        version=FEEDBACK_VERSION,
        job_title=job_title.strip(),
        job_description=job_description.strip() or "(none)",
    )


class AIInvoker(ABC):
    """Analyze the resume behind a blob handle against a prompt."""

    model: str = ""

    @abstractmethod
    def analyze(self, handle: str, prompt: str) -> str:
        """Return the model's raw text response."""
        ...


class GroqInvoker(AIInvoker):
    """Groq's OpenAI-compatible chat endpoint with the resume text inlined."""

    def __init__(
        self,
        blobs: BlobStore,
        *,
        api_key: str,
        model: str = "llama-3.3-70b-versatile",
        base_url: str = "https://api.groq.com/openai/v1",
        max_chars: int = 8000,
        client: OpenAI | None = None,
    ) -> None:
        self.blobs = blobs
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.max_chars = max_chars
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise AIInvocationFailed("GROQ_API_KEY is not set")
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    def analyze(self, handle: str, prompt: str) -> str:
        try:
            resume_text = extract_text(PurePath(handle).name, self.blobs.read(handle))
        except ValueError as exc:
            raise AIInvocationFailed(f"cannot read resume: {exc}") from exc
        if not resume_text.strip():
            raise AIInvocationFailed(f"no text could be extracted from {handle}")

        client = self._get_client()
        content = f"{prompt}\nResume text:\n{resume_text[: self.max_chars]}"
        log.info("Requesting feedback from %s (%d chars of resume)", self.model, min(len(resume_text), self.max_chars))
        try:
            resp = client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                max_tokens=2000,
                temperature=0.2,
            )
        except APIConnectionError as exc:
            raise BackendUnavailable(f"AI endpoint unreachable: {exc}") from exc
        except OpenAIError as exc:
            raise AIInvocationFailed(f"AI call failed: {exc}") from exc

        raw = (resp.choices[0].message.content or "").strip() if resp.choices else ""
        if not raw:
            raise AIInvocationFailed("AI returned an empty response")
        return raw


class StaticInvoker(AIInvoker):
    """Replays canned responses; for offline runs and tests.

    *responses* is consumed in order and the last one repeats. An entry may be
    an exception instance (raised) or a callable taking (handle, prompt).
    """

    model = "static"

    def __init__(self, *responses: str | Exception | Callable[[str, str], str]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    def analyze(self, handle: str, prompt: str) -> str:
        self.calls.append((handle, prompt))
        if not self.responses:
            raise AIInvocationFailed("no canned response configured")
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(handle, prompt)
        return response


def get_invoker(settings: Settings, blobs: BlobStore) -> AIInvoker:
    if not settings.ai_api_key:
        log.warning("GROQ_API_KEY not set; analysis requests will fail until it is configured")
    return GroqInvoker(
        blobs,
        api_key=settings.ai_api_key,
        model=settings.ai_model,
        base_url=settings.ai_base_url,
    )
