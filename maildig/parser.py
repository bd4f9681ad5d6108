"""Read ``.emlx`` message files: body text, HTML and attachments.

An ``.emlx`` file holds a decimal byte count on its first line, then that
many bytes of RFC 2822 message, then optional property-list metadata.
"""

from __future__ import annotations

import html
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from email import message_from_bytes, policy
from email.message import Message
from pathlib import Path

from maildig.htmltext import html_to_plain_text

__all__ = [
    "ParsedEmail",
    "RawAttachment",
    "BodyFileNotFoundError",
    "parse_emlx",
    "parse_emlx_without_attachment_content",
]

DEFAULT_MIME_TYPE = "application/octet-stream"
MAX_ATTACHMENT_WALK_DEPTH = 4

_BYTE_COUNT = re.compile(r"\+?[0-9]+")
_PARTIAL_SUFFIX = ".partial.emlx"
_EMLX_SUFFIX = ".emlx"


class BodyFileNotFoundError(Exception):
    """The message file is missing or is not a readable ``.emlx`` file."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        super().__init__(f"message body file not found: {self.path}")


@dataclass
class RawAttachment:
    """An attachment as found in a message."""

    filename: str | None
    mime_type: str
    size_bytes: int
    content: bytes | None = None
    is_inline: bool = False


@dataclass
class ParsedEmail:
    """Body and attachments of a parsed message."""

    body_text: str | None = None
    body_html: str | None = None
    attachments: list[RawAttachment] = field(default_factory=list)


def parse_emlx(path: Path | str) -> ParsedEmail:
    """Parse an ``.emlx`` file, including attachment bytes.

    Raises BodyFileNotFoundError if the file is missing or malformed, and
    OSError for other read failures.
    """
    return _parse(Path(path), include_attachment_content=True)


def parse_emlx_without_attachment_content(path: Path | str) -> ParsedEmail:
    """Parse an ``.emlx`` file, keeping attachment sizes but not their bytes."""
    return _parse(Path(path), include_attachment_content=False)


def _message_bytes(path: Path) -> bytes:
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        raise BodyFileNotFoundError(path) from None

    header_end = data.find(b"\n")
    if header_end < 0:
        raise BodyFileNotFoundError(path)
    try:
        count_text = data[:header_end].decode("utf-8").strip()
    except UnicodeDecodeError:
        raise BodyFileNotFoundError(path) from None
    if not _BYTE_COUNT.fullmatch(count_text):
        raise BodyFileNotFoundError(path)

    start = header_end + 1
    end = start + int(count_text)
    if len(data) < end:
        raise BodyFileNotFoundError(path)
    return data[start:end]


def _leaves(part: Message) -> Iterator[Message]:
    """Yield the non-multipart parts of a message in document order."""
    if part.get_content_maintype() == "multipart":
        payload = part.get_payload()
        if isinstance(payload, list):
            for child in payload:
                yield from _leaves(child)
        return
    yield part


def _is_body_part(part: Message) -> bool:
    if part.get_content_type() not in ("text/plain", "text/html"):
        return False
    if part.get_content_disposition() == "attachment":
        return False
    return not part.get_filename()


def _part_text(part: Message) -> str:
    try:
        content = part.get_content()
        if isinstance(content, str):
            return content
    except (LookupError, ValueError, AssertionError):
        pass
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def _part_bytes(part: Message) -> bytes:
    if part.get_content_type() == "message/rfc822":
        inner = part.get_payload()
        if isinstance(inner, list) and inner:
            return inner[0].as_bytes()
    payload = part.get_payload(decode=True)
    return payload if isinstance(payload, bytes) else b""


def _mime_type(part: Message) -> str:
    if part.get("Content-Type") is None:
        return DEFAULT_MIME_TYPE
    return part.get_content_type()


def _is_inline(part: Message) -> bool:
    disposition = part.get("Content-Disposition")
    return disposition is not None and "inline" in str(disposition).lower()


def _text_to_html(text: str) -> str:
    return html.escape(text).replace("\n", "<br/>\n")


def _parse(path: Path, include_attachment_content: bool) -> ParsedEmail:
    email_bytes = _message_bytes(path)
    if not email_bytes.strip():
        raise BodyFileNotFoundError(path)
    message = message_from_bytes(email_bytes, policy=policy.default)

    text_parts: list[str] = []
    html_parts: list[str] = []
    attachment_parts: list[Message] = []
    for part in _leaves(message):
        if _is_body_part(part):
            target = text_parts if part.get_content_subtype() == "plain" else html_parts
            target.append(_part_text(part))
        else:
            attachment_parts.append(part)

    body_text = text_parts[0] if text_parts else None
    body_html = html_parts[0] if html_parts else None
    if body_text is None and body_html is not None:
        body_text = html_to_plain_text(body_html)
    elif body_html is None and body_text is not None:
        body_html = _text_to_html(body_text)

    attachments = []
    for index, part in enumerate(attachment_parts):
        filename = part.get_filename()
        size_bytes, content = _resolve_attachment_payload(
            path, filename, index, _part_bytes(part), include_attachment_content
        )
        attachments.append(
            RawAttachment(
                filename=filename,
                mime_type=_mime_type(part),
                size_bytes=size_bytes,
                content=content,
                is_inline=_is_inline(part),
            )
        )

    return ParsedEmail(body_text=body_text, body_html=body_html, attachments=attachments)


def _resolve_attachment_payload(
    emlx_path: Path,
    filename: str | None,
    attachment_index: int,
    embedded: bytes,
    include_content: bool,
) -> tuple[int, bytes | None]:
    if embedded:
        return len(embedded), (embedded if include_content else None)

    external = _find_external_attachment_file(emlx_path, filename, attachment_index)
    if external is not None:
        try:
            size_bytes = external.stat().st_size
        except OSError:
            size_bytes = 0
        content = None
        if include_content:
            try:
                content = external.read_bytes()
            except OSError:
                content = None
        if size_bytes > 0 or content is not None:
            return (len(content) if content is not None else size_bytes), content

    return 0, None


def _find_external_attachment_file(
    emlx_path: Path, filename: str | None, attachment_index: int
) -> Path | None:
    if filename is None:
        return None
    attachments_dir = _external_attachments_dir(emlx_path)
    if attachments_dir is None:
        return None

    direct = attachments_dir / str(attachment_index + 1) / filename
    if direct.is_file():
        return direct

    return next(
        (path for path in _walk_files(attachments_dir, 0) if path.name == filename),
        None,
    )


def _walk_files(directory: Path, depth: int) -> Iterator[Path]:
    """Yield files below ``directory`` whose depth from the start is at most the limit."""
    try:
        with os.scandir(directory) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        try:
            if entry.is_file(follow_symlinks=False):
                if depth + 1 <= MAX_ATTACHMENT_WALK_DEPTH:
                    yield Path(entry.path)
            elif entry.is_dir(follow_symlinks=False) and depth + 1 < MAX_ATTACHMENT_WALK_DEPTH:
                yield from _walk_files(Path(entry.path), depth + 1)
        except OSError:
            continue


def _external_attachments_dir(emlx_path: Path) -> Path | None:
    messages_dir = next(
        (ancestor for ancestor in (emlx_path, *emlx_path.parents) if ancestor.name == "Messages"),
        None,
    )
    if messages_dir is None:
        return None
    storage_id = _message_storage_id(emlx_path)
    if storage_id is None:
        return None
    return messages_dir.parent / "Attachments" / storage_id


def _message_storage_id(emlx_path: Path) -> str | None:
    name = emlx_path.name
    if name.endswith(_PARTIAL_SUFFIX):
        return name[: -len(_PARTIAL_SUFFIX)]
    if name.endswith(_EMLX_SUFFIX):
        return name[: -len(_EMLX_SUFFIX)]
    return None