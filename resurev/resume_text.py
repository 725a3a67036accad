"""Plain text from uploaded resume bytes.

Supports PDF (via pypdf), DOCX (via stdlib zipfile) and TXT.
"""
from __future__ import annotations

import io
import re
import zipfile
from pathlib import PurePath
from xml.etree import ElementTree

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from resurev.log import get_logger

log = get_logger(__name__)

SUPPORTED_SUFFIXES: tuple[str, ...] = (".pdf", ".docx", ".txt")

_W = "{http://schemas.openxmlformats.org/wordprocessingml/2006/main}"
_W_PARA, _W_TEXT, _W_TAB, _W_BREAK = f"{_W}p", f"{_W}t", f"{_W}tab", f"{_W}br"


def extract_text(name: str, data: bytes) -> str:
    """Return plain text from a PDF, DOCX, or TXT upload named *name*."""
    suffix = PurePath(name).suffix.lower()
    if suffix == ".txt":
        return data.decode("utf-8", errors="ignore")
    if suffix == ".docx":
        return _extract_docx(data)
    if suffix == ".pdf":
        return _extract_pdf(data)
    raise ValueError(f"Unsupported resume format: {suffix or name}")


# Merged-word repairs for PDFs whose text layer drops spaces
_RESPACE_MIN_CHARS = 50
_RESPACE_MAX_SPACE_RATIO = 0.08
_RESPACE_RULES: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?<=[a-z])(?=[A-Z])"),
    re.compile(r"(?<=[A-Za-z])(?=\d)|(?<=\d)(?=[A-Za-z])"),
    re.compile(r"(?<=[.!?,;:])(?=[A-Za-z])"),
)


def _respace(page_text: str) -> str:
    """Split camel-cased runs like ``SeniorEngineerAcme2019`` on sparse pages."""
    if len(page_text) < _RESPACE_MIN_CHARS:
        return page_text
    ratio = page_text.count(" ") / len(page_text)
    if ratio > _RESPACE_MAX_SPACE_RATIO:
        return page_text
    log.debug("Page has %.1f%% spaces; splitting merged words", ratio * 100)
    for rule in _RESPACE_RULES:
        page_text = rule.sub(" ", page_text)
    return page_text


def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [_respace(page.extract_text() or "") for page in reader.pages]
    except PyPdfError as exc:
        raise ValueError(f"Unreadable PDF: {exc}") from exc
    return "\n".join(pages)


def _paragraph_text(para: ElementTree.Element) -> str:
    out: list[str] = []
    for node in para.iter():
        if node.tag == _W_TEXT and node.text:
            out.append(node.text)
        elif node.tag == _W_TAB:
            out.append("\t")
        elif node.tag == _W_BREAK:
            out.append("\n")
    return "".join(out).strip()


def _extract_docx(data: bytes) -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            root = ElementTree.fromstring(zf.read("word/document.xml"))
    except (zipfile.BadZipFile, KeyError, ElementTree.ParseError) as exc:
        raise ValueError(f"Unreadable DOCX: {exc}") from exc
    paragraphs = (_paragraph_text(p) for p in root.iter(_W_PARA))
    return "\n".join(text for text in paragraphs if text)
