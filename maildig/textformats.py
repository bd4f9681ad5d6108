"""Classify attachment MIME types by how their text can be extracted."""

from __future__ import annotations

from enum import Enum

__all__ = ["TextFormat", "classify_mime"]

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX_MIME = "application/vnd.openxmlformats-officedocument.presentationml.presentation"

_LEGACY_OFFICE = frozenset(
    {
        "application/msword",
        "application/vnd.ms-excel",
        "application/vnd.ms-powerpoint",
    }
)


class TextFormat(Enum):
    """How the text of an attachment is obtained."""

    JSON = "json"
    XML = "xml"
    CSV = "csv"
    MARKDOWN = "markdown"
    HTML = "html"
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"
    PPTX = "pptx"
    LEGACY_OFFICE = "legacy_office"
    IMAGE = "image"
    AUDIO_VIDEO = "audio_video"
    PLAIN_TEXT = "plain_text"
    BINARY = "binary"


def _path_extension(value: str) -> str | None:
    """Return the extension of ``value`` read as a slash-separated path."""
    components = [part for part in value.split("/") if part and part != "."]
    if not components:
        return None
    name = components[-1]
    if name == ".." or "." not in name:
        return None
    before, after = name.rsplit(".", 1)
    if not before:
        return None
    return after


def _has_extension(value: str, extension: str) -> bool:
    found = _path_extension(value)
    return found is not None and found.lower() == extension


def classify_mime(mime_type: str) -> TextFormat:
    """Return the text format for ``mime_type``, compared case-insensitively."""
    mime = mime_type.lower()

    if mime == "application/json":
        return TextFormat.JSON
    if mime in ("application/xml", "text/xml"):
        return TextFormat.XML
    if mime == "text/csv":
        return TextFormat.CSV
    if mime == "text/markdown" or _has_extension(mime, "md"):
        return TextFormat.MARKDOWN
    if mime == "text/html" or _has_extension(mime, "html"):
        return TextFormat.HTML
    if mime == "application/pdf":
        return TextFormat.PDF
    if mime == DOCX_MIME:
        return TextFormat.DOCX
    if mime == XLSX_MIME:
        return TextFormat.XLSX
    if mime == PPTX_MIME:
        return TextFormat.PPTX
    if mime in _LEGACY_OFFICE:
        return TextFormat.LEGACY_OFFICE
    if mime.startswith("image/"):
        return TextFormat.IMAGE
    if mime.startswith(("audio/", "video/")):
        return TextFormat.AUDIO_VIDEO
    if mime.startswith("text/"):
        return TextFormat.PLAIN_TEXT
    return TextFormat.BINARY