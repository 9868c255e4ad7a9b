"""Stateless PDF, DOCX and Markdown export of document content."""

from __future__ import annotations

import html
import io
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html.parser import HTMLParser
from typing import Callable, Literal

import docx
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

__all__ = [
    "ExportFormat",
    "ExportResult",
    "export_docx",
    "export_document",
    "export_filename",
    "export_markdown",
    "export_pdf",
    "html_to_text",
]

ExportFormat = Literal["pdf", "docx", "md"]
DEFAULT_EXPORT_TITLE = "Untitled"
_FIXED_TIMESTAMP = datetime(2000, 1, 1, tzinfo=timezone.utc)
_BLOCK_TAGS = {"p", "div", "h1", "h2", "h3", "h4", "h5", "h6", "li", "blockquote", "pre", "ul", "ol"}
_MARKDOWN_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"<h1[^>]*>(.*?)</h1>", re.I | re.S), r"# \1\n\n"),
    (re.compile(r"<h2[^>]*>(.*?)</h2>", re.I | re.S), r"## \1\n\n"),
    (re.compile(r"<h3[^>]*>(.*?)</h3>", re.I | re.S), r"### \1\n\n"),
    (re.compile(r"<li[^>]*>(.*?)</li>", re.I | re.S), r"- \1\n"),
    (re.compile(r"<p[^>]*>(.*?)</p>", re.I | re.S), r"\1\n\n"),
    (re.compile(r"<(?:strong|b)>(.*?)</(?:strong|b)>", re.I | re.S), r"**\1**"),
    (re.compile(r"<(?:em|i)>(.*?)</(?:em|i)>", re.I | re.S), r"_\1_"),
    (re.compile(r"<br\s*/?>", re.I), "\n"),
)
_LEFTOVER_TAG_RE = re.compile(r"<[^>]+>")
_EXTRA_BLANK_LINES_RE = re.compile(r"\n{3,}")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True, frozen=True)
class ExportResult:
    filename: str
    data: bytes
    media_type: str


class _TextExtractor(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag == "br":
            self._parts.append("\n")

    def handle_endtag(self, tag: str) -> None:
        if tag in _BLOCK_TAGS:
            self._parts.append("\n")

    def handle_data(self, data: str) -> None:
        self._parts.append(data)

    def text(self) -> str:
        return "".join(self._parts)


def html_to_text(content: str) -> str:
    """Reduce markup to plain text with one line per block element."""

    parser = _TextExtractor()
    parser.feed(content or "")
    parser.close()
    lines = [line.rstrip() for line in parser.text().split("\n")]
    return "\n".join(lines).strip("\n")


def export_filename(title: str | None, extension: str) -> str:
    clean = (title or "").strip() or DEFAULT_EXPORT_TITLE
    return f"{_WHITESPACE_RE.sub('_', clean.lower())}.{extension}"


def _paragraphs(content: str) -> list[str]:
    return [line for line in html_to_text(content).split("\n") if line.strip()]


def export_pdf(content: str, title: str | None = None) -> bytes:
    """Render ``content`` as a simple titled PDF."""

    buffer = io.BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=0.75 * inch,
        rightMargin=0.75 * inch,
        topMargin=0.75 * inch,
        bottomMargin=0.75 * inch,
        title=(title or DEFAULT_EXPORT_TITLE),
        invariant=1,
    )
    styles = getSampleStyleSheet()
    story: list[object] = [
        Paragraph(html.escape(title or DEFAULT_EXPORT_TITLE), styles["Title"]),
        Spacer(1, 0.2 * inch),
    ]
    for paragraph in _paragraphs(content):
        story.append(Paragraph(html.escape(paragraph), styles["BodyText"]))
        story.append(Spacer(1, 0.12 * inch))
    document.build(story)
    return buffer.getvalue()


def export_docx(content: str, title: str | None = None) -> bytes:
    """Render ``content`` as a Word document: bold title then one paragraph per line."""

    document = docx.Document()
    properties = document.core_properties
    properties.title = title or DEFAULT_EXPORT_TITLE
    properties.created = _FIXED_TIMESTAMP
    properties.modified = _FIXED_TIMESTAMP
    heading = document.add_paragraph()
    heading.add_run(title or DEFAULT_EXPORT_TITLE).bold = True
    for paragraph in _paragraphs(content):
        document.add_paragraph(paragraph)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def export_markdown(content: str, title: str | None = None) -> str:
    """Convert the common inline/block tags to Markdown; plain text passes through."""

    markdown = content or ""
    for pattern, replacement in _MARKDOWN_RULES:
        markdown = pattern.sub(replacement, markdown)
    markdown = html.unescape(_LEFTOVER_TAG_RE.sub("", markdown))
    markdown = _EXTRA_BLANK_LINES_RE.sub("\n\n", markdown).strip()
    if title and not markdown.startswith("# "):
        markdown = f"# {title}\n\n{markdown}"
    return markdown + "\n"


_EXPORTERS: dict[str, tuple[Callable[[str, str | None], bytes], str]] = {
    "pdf": (export_pdf, "application/pdf"),
    "docx": (
        export_docx,
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ),
    "md": (lambda content, title: export_markdown(content, title).encode("utf-8"), "text/markdown"),
}


def export_document(content: str, title: str | None, fmt: ExportFormat) -> ExportResult:
    try:
        exporter, media_type = _EXPORTERS[fmt]
    except KeyError:
        raise ValueError(f"Unsupported export format {fmt!r}") from None
    return ExportResult(filename=export_filename(title, fmt), data=exporter(content, title), media_type=media_type)
