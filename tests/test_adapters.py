from __future__ import annotations

import io
import zipfile
from types import SimpleNamespace

import pytest

from resurev.ai import GroqInvoker, StaticInvoker, build_prompt
from resurev.blobs import LocalBlobStore
from resurev.errors import AIInvocationFailed
from resurev.resume_text import _respace, extract_text

_DOCX_XML = (
    '<w:document xmlns:w="http://schemas.openxmlformats.org/wordprocessingml/2006/main"><w:body>'
    "<w:p><w:r><w:t>Jane </w:t></w:r><w:r><w:t>Doe</w:t></w:r></w:p>"
    "<w:p><w:r><w:t>Backend Engineer</w:t></w:r></w:p>"
    "</w:body></w:document>"
)


def _docx_bytes() -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("word/document.xml", _DOCX_XML)
    return buf.getvalue()


class FakeCompletions:
    def __init__(self, content) -> None:
        self.content = content
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _fake_client(content) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


# ── Blobs ────────────────────────────────────────────────────────────────


def test_blob_store_is_content_addressed(tmp_path):
    blobs = LocalBlobStore(tmp_path)
    first = blobs.upload("CV.PDF", b"same bytes")
    second = blobs.upload("other.pdf", b"same bytes")
    assert first == second and first.endswith(".pdf")
    assert blobs.read(first) == b"same bytes"
    assert blobs.delete(first)
    assert blobs.delete(first)


def test_blob_handles_cannot_escape_root(tmp_path):
    with pytest.raises(ValueError):
        LocalBlobStore(tmp_path / "blobs").read("../secret.txt")


# ── Text extraction ──────────────────────────────────────────────────────


def test_extract_text_formats():
    assert extract_text("cv.txt", "Jane Doe\nPython".encode()) == "Jane Doe\nPython"
    assert extract_text("cv.DOCX", _docx_bytes()) == "Jane Doe\nBackend Engineer"


def test_docx_tabs_and_line_breaks_are_kept():
    xml = _DOCX_XML.replace(
        "<w:t>Backend Engineer</w:t>", "<w:t>Backend Engineer</w:t><w:tab/><w:t>2019</w:t><w:br/><w:t>Acme</w:t>"
    )
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("word/document.xml", xml)
    assert extract_text("cv.docx", buf.getvalue()) == "Jane Doe\nBackend Engineer\t2019\nAcme"


def test_respace_splits_merged_words_on_sparse_pages():
    merged = "SeniorEngineerAcme2019,LeadDeveloperGlobex2021." * 2
    assert "Senior Engineer Acme 2019, Lead Developer Globex 2021." in _respace(merged)
    spaced = "plain words with normal spacing " * 3
    assert _respace(spaced) == spaced


@pytest.mark.parametrize("name, data", [("cv.rtf", b"x"), ("cv.docx", b"not a zip"), ("cv.pdf", b"not a pdf")])
def test_extract_text_rejects_bad_input(name, data):
    with pytest.raises(ValueError):
        extract_text(name, data)


# ── AI invokers ──────────────────────────────────────────────────────────


def test_build_prompt_mentions_role_and_schema():
    prompt = build_prompt(" Backend Engineer ", "")
    assert "Job Title: Backend Engineer" in prompt
    assert "Job Description: (none)" in prompt
    assert '"version": "v1"' in prompt
    assert '"ATS"' in prompt


def test_groq_invoker_inlines_resume_text(tmp_path):
    blobs = LocalBlobStore(tmp_path)
    handle = blobs.upload("cv.txt", b"Jane Doe, Python developer")
    client = _fake_client('{"version": "v1"}')
    invoker = GroqInvoker(blobs, api_key="k", model="llama-test", client=client)

    assert invoker.analyze(handle, "PROMPT") == '{"version": "v1"}'
    kwargs = client.chat.completions.kwargs
    assert kwargs["model"] == "llama-test"
    content = kwargs["messages"][0]["content"]
    assert content.startswith("PROMPT") and "Jane Doe, Python developer" in content


def test_groq_invoker_failures(tmp_path):
    blobs = LocalBlobStore(tmp_path)
    handle = blobs.upload("cv.txt", b"Jane Doe")
    with pytest.raises(AIInvocationFailed, match="empty"):
        GroqInvoker(blobs, api_key="k", client=_fake_client("  ")).analyze(handle, "p")
    with pytest.raises(AIInvocationFailed, match="GROQ_API_KEY"):
        GroqInvoker(blobs, api_key="").analyze(handle, "p")
    blank = blobs.upload("blank.txt", b"   ")
    with pytest.raises(AIInvocationFailed, match="no text"):
        GroqInvoker(blobs, api_key="k", client=_fake_client("x")).analyze(blank, "p")


def test_static_invoker_replays_in_order():
    invoker = StaticInvoker("one", ValueError("boom"), "last")
    assert invoker.analyze("h", "p") == "one"
    with pytest.raises(ValueError):
        invoker.analyze("h", "p")
    assert invoker.analyze("h", "p") == "last"
    assert invoker.analyze("h", "p") == "last"
    assert len(invoker.calls) == 4
