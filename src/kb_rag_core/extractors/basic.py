from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from html.parser import HTMLParser

import docx
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from kb_rag_core.errors import InputError

PDF_TYPES = {"application/pdf"}
DOCX_TYPES = {"application/vnd.openxmlformats-officedocument.wordprocessingml.document"}
# Binary Word 97-2003; python-docx only reads OOXML.
LEGACY_DOC_TYPES = {"application/msword"}
HTML_TYPES = {"text/html", "application/xhtml+xml"}


@dataclass(frozen=True)
class ExtractResult:
    extractor: str
    text: str
    metrics: dict[str, object]


class _HTMLToText(HTMLParser):
    _SKIP_TAGS = {"script", "style", "nav", "header", "footer", "aside", "noscript", "form"}
    _VOID_TAGS = {
        "area", "base", "br", "col", "embed", "hr", "img", "input",
        "link", "meta", "param", "source", "track", "wbr",
    }
    _BLOCK_TAGS = {"p", "br", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6"}

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._chunks: list[str] = []
        self._skip_tag_stack: list[str] = []

    def handle_starttag(self, tag: str, attrs) -> None:  # noqa: ANN001
        tag = tag.lower()
        if tag in self._VOID_TAGS:
            if not self._skip_tag_stack and tag == "br":
                self._chunks.append("\n")
            return
        role = (dict(attrs or []).get("role") or "").lower()
        if self._skip_tag_stack or tag in self._SKIP_TAGS or role in {"navigation", "banner", "contentinfo"}:
            self._skip_tag_stack.append(tag)

    def handle_startendtag(self, tag: str, attrs) -> None:  # noqa: ANN001
        self.handle_starttag(tag, attrs)

    def handle_endtag(self, tag: str) -> None:
        tag = tag.lower()
        if self._skip_tag_stack:
            # Pop until we close the most recent skipped element.
            while self._skip_tag_stack:
                if self._skip_tag_stack.pop() == tag:
                    break
            return
        if tag in self._BLOCK_TAGS:
            # Block boundaries become paragraph breaks for the chunker.
            self._chunks.append("\n\n")

    def handle_data(self, data: str) -> None:
        if self._skip_tag_stack:
            return
        if data.strip():
            self._chunks.append(data)
            self._chunks.append(" ")

    def text(self) -> str:
        return "".join(self._chunks)


_WS_RE = re.compile(r"[ \t\r\f\v]+")
_NL_RE = re.compile(r"\n[ \t]*\n(?:[ \t]*\n)+")


def _normalize_text(text: str) -> str:
    text = text.replace("\x00", "").replace("\u200b", "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _WS_RE.sub(" ", text)
    text = _NL_RE.sub("\n\n", text)
    return text.strip()


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _extract_html(data: bytes) -> str:
    parser = _HTMLToText()
    parser.feed(_decode_text(data))
    parser.close()
    return parser.text()


def _extract_pdf(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        return "\n\n".join(page.extract_text() or "" for page in reader.pages)
    except PdfReadError as e:
        raise InputError(f"Failed to extract text from PDF: {e}") from e


def _extract_docx(data: bytes) -> str:
    try:
        document = docx.Document(io.BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as e:
        raise InputError(f"Failed to extract text from DOCX: {e}") from e
    return "\n\n".join(p.text for p in document.paragraphs)


def _kind(content_type: str | None, filename: str | None) -> str | None:
    ct = (content_type or "").split(";")[0].strip().lower()
    name = (filename or "").lower()
    if ct in PDF_TYPES or name.endswith(".pdf"):
        return "pdf"
    if ct in DOCX_TYPES or name.endswith(".docx"):
        return "docx"
    if ct in LEGACY_DOC_TYPES or name.endswith(".doc"):
        return "doc"
    if ct in HTML_TYPES or name.endswith((".html", ".htm")):
        return "html"
    if ct.startswith("text/") or name.endswith((".txt", ".md")):
        return "text"
    return None


def extract_text(
    *,
    data: bytes,
    content_type: str | None,
    filename: str | None = None,
) -> ExtractResult:
    if not data:
        raise InputError("File is empty")

    kind = _kind(content_type, filename)
    if kind == "pdf":
        extractor, raw = "pypdf", _extract_pdf(data)
    elif kind == "docx":
        extractor, raw = "python_docx", _extract_docx(data)
    elif kind == "html":
        extractor, raw = "html_parser", _extract_html(data)
    elif kind == "text":
        extractor, raw = "text_utf8", _decode_text(data)
    elif kind == "doc":
        raise InputError("Legacy .doc files are not supported. Save the document as DOCX and upload it again")
    else:
        raise InputError(
            f"Unsupported file type: {content_type or filename or 'unknown'}. "
            "Supported types: PDF, DOCX, TXT, HTML"
        )

    text = _normalize_text(raw)
    if not text:
        raise InputError(f"{kind.upper()} file appears to be empty or contains no extractable text")
    return ExtractResult(extractor=extractor, text=text, metrics={"bytes": len(data), "chars": len(text)})
