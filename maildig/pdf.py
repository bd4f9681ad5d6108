"""Extract the text layer of a PDF document (no OCR)."""

from __future__ import annotations

import base64
import re
import zlib
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

__all__ = [
    "PdfError",
    "PdfParseError",
    "NoTextLayerError",
    "EmptyDocumentError",
    "pdf_to_text",
]


class PdfError(Exception):
    """Base class for PDF text extraction failures."""


class PdfParseError(PdfError):
    """The document could not be parsed."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Failed to parse PDF: {detail}")


class NoTextLayerError(PdfError):
    """The document has pages but no extractable text."""

    def __init__(self) -> None:
        super().__init__("PDF contains no extractable text (possibly scanned)")


class EmptyDocumentError(PdfError):
    """The document has no pages."""

    def __init__(self) -> None:
        super().__init__("PDF is empty")


class _Malformed(Exception):
    """Raised internally when PDF syntax cannot be read."""


class _Name(str):
    """A PDF name object such as ``/Type``."""


class _Keyword(str):
    """A bare PDF keyword or content-stream operator."""


@dataclass(frozen=True)
class _Ref:
    num: int
    gen: int


@dataclass
class _Stream:
    attrs: dict
    raw: bytes


_EOF = object()
_WHITESPACE = frozenset(b"\x00\t\n\x0c\r ")
_WS_BYTES = bytes(sorted(_WHITESPACE))
_DELIMITERS = frozenset(b"()<>[]{}/%")
_VALUE_KEYWORDS = frozenset({"[", "<<", "true", "false", "null"})
_ESCAPES = {
    ord("n"): 0x0A,
    ord("r"): 0x0D,
    ord("t"): 0x09,
    ord("b"): 0x08,
    ord("f"): 0x0C,
    ord("("): 0x28,
    ord(")"): 0x29,
    ord("\\"): 0x5C,
}
_NUMBER_RE = re.compile(rb"[+-]?(?:\d+\.?\d*|\.\d+)")
_NAME_ESCAPE_RE = re.compile(rb"#([0-9A-Fa-f]{2})")
_HEADER_RE = re.compile(rb"%PDF-\d+\.\d+")
_OBJECT_RE = re.compile(
    rb"(?<![0-9])(\d+)[\x00\t\n\x0c\r ]+(\d+)[\x00\t\n\x0c\r ]+obj"
    rb"(?![^\x00\t\n\x0c\r ()<>\[\]{}/%])"
)
_TRAILER_RE = re.compile(rb"trailer")
_INLINE_IMAGE_END = re.compile(rb"[\x00\t\n\x0c\r ]EI(?=[\x00\t\n\x0c\r ]|\Z)")
_WORD_GAP = -200


def _is_keyword(token: Any, word: str) -> bool:
    return isinstance(token, _Keyword) and token == word


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class _Lexer:
    """Tokenizer and object reader over PDF bytes."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    def _skip_whitespace(self) -> None:
        data, n = self.data, len(self.data)
        while self.pos < n:
            byte = data[self.pos]
            if byte in _WHITESPACE:
                self.pos += 1
            elif byte == 0x25:
                while self.pos < n and data[self.pos] not in (0x0A, 0x0D):
                    self.pos += 1
            else:
                break

    def next_token(self) -> Any:
        self._skip_whitespace()
        data, n = self.data, len(self.data)
        if self.pos >= n:
            return _EOF
        byte = data[self.pos]
        if byte == 0x28:
            return self._literal_string()
        if byte == 0x3C:
            if data[self.pos + 1 : self.pos + 2] == b"<":
                self.pos += 2
                return _Keyword("<<")
            return self._hex_string()
        if byte == 0x3E:
            if data[self.pos + 1 : self.pos + 2] == b">":
                self.pos += 2
                return _Keyword(">>")
            raise _Malformed("unexpected '>'")
        if byte in b"[]{}":
            self.pos += 1
            return _Keyword(chr(byte))
        if byte == 0x2F:
            return self._name()
        if byte == 0x29:
            raise _Malformed("unbalanced ')'")
        start = self.pos
        while self.pos < n and data[self.pos] not in _WHITESPACE and data[self.pos] not in _DELIMITERS:
            self.pos += 1
        word = data[start : self.pos]
        if _NUMBER_RE.fullmatch(word):
            return float(word) if b"." in word else int(word)
        return _Keyword(word.decode("latin-1"))

    def _literal_string(self) -> bytes:
        data, n = self.data, len(self.data)
        pos = self.pos + 1
        depth = 1
        out = bytearray()
        while pos < n:
            byte = data[pos]
            if byte == 0x5C:
                pos += 1
                if pos >= n:
                    break
                escaped = data[pos]
                if escaped in _ESCAPES:
                    out.append(_ESCAPES[escaped])
                    pos += 1
                elif 0x30 <= escaped <= 0x37:
                    end = pos
                    while end < n and end - pos < 3 and 0x30 <= data[end] <= 0x37:
                        end += 1
                    out.append(int(data[pos:end], 8) & 0xFF)
                    pos = end
                elif escaped == 0x0D:
                    pos += 1
                    if data[pos : pos + 1] == b"\n":
                        pos += 1
                elif escaped == 0x0A:
                    pos += 1
                else:
                    out.append(escaped)
                    pos += 1
                continue
            if byte == 0x28:
                depth += 1
            elif byte == 0x29:
                depth -= 1
                if depth == 0:
                    self.pos = pos + 1
                    return bytes(out)
            out.append(byte)
            pos += 1
        raise _Malformed("unterminated string")

    def _hex_string(self) -> bytes:
        end = self.data.find(b">", self.pos + 1)
        if end < 0:
            raise _Malformed("unterminated hex string")
        digits = bytes(b for b in self.data[self.pos + 1 : end] if b not in _WHITESPACE)
        self.pos = end + 1
        if len(digits) % 2:
            digits += b"0"
        try:
            return bytes.fromhex(digits.decode("ascii"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise _Malformed("invalid hex string") from exc

    def _name(self) -> _Name:
        data, n = self.data, len(self.data)
        start = self.pos + 1
        self.pos = start
        while self.pos < n and data[self.pos] not in _WHITESPACE and data[self.pos] not in _DELIMITERS:
            self.pos += 1
        raw = _NAME_ESCAPE_RE.sub(lambda m: bytes([int(m[1], 16)]), data[start : self.pos])
        return _Name(raw.decode("latin-1"))

    def read_object(self, allow_refs: bool = True) -> Any:
        return self.build(self.next_token(), allow_refs)

    def build(self, token: Any, allow_refs: bool = True) -> Any:
        if token is _EOF:
            raise _Malformed("unexpected end of data")
        if isinstance(token, _Keyword):
            if token == "[":
                return self._array(allow_refs)
            if token == "<<":
                return self._dict(allow_refs)
            if token == "true":
                return True
            if token == "false":
                return False
            if token == "null":
                return None
            return token
        if allow_refs and _is_int(token):
            ref = self._try_reference(token)
            if ref is not None:
                return ref
        return token

    def _try_reference(self, num: int) -> _Ref | None:
        mark = self.pos
        try:
            gen = self.next_token()
            if _is_int(gen) and _is_keyword(self.next_token(), "R"):
                return _Ref(num, gen)
        except _Malformed:
            pass
        self.pos = mark
        return None

    def _array(self, allow_refs: bool) -> list:
        items = []
        while True:
            token = self.next_token()
            if _is_keyword(token, "]"):
                return items
            items.append(self.build(token, allow_refs))

    def _dict(self, allow_refs: bool) -> dict:
        result: dict = {}
        while True:
            token = self.next_token()
            if _is_keyword(token, ">>"):
                return result
            if not isinstance(token, _Name):
                raise _Malformed("dictionary key is not a name")
            result[str(token)] = self.build(self.next_token(), allow_refs)

    def read_stream(self, attrs: dict) -> dict | _Stream:
        """Return a stream if ``stream`` follows the dictionary, else the dictionary."""
        mark = self.pos
        try:
            token = self.next_token()
        except _Malformed:
            token = None
        if not _is_keyword(token, "stream"):
            self.pos = mark
            return attrs
        data = self.data
        start = self.pos
        if data[start : start + 2] == b"\r\n":
            start += 2
        elif data[start : start + 1] in (b"\r", b"\n"):
            start += 1
        length = attrs.get("Length")
        if _is_int(length) and length >= 0:
            end = start + length
            if end <= len(data) and data[end : end + 64].lstrip(_WS_BYTES).startswith(b"endstream"):
                return _Stream(attrs, data[start:end])
        end = data.find(b"endstream", start)
        if end < 0:
            raise _Malformed("unterminated stream")
        raw = data[start:end]
        if raw.endswith(b"\r\n"):
            raw = raw[:-2]
        elif raw.endswith((b"\n", b"\r")):
            raw = raw[:-1]
        return _Stream(attrs, raw)

    def skip_inline_image(self) -> None:
        match = _INLINE_IMAGE_END.search(self.data, self.pos)
        self.pos = match.end() if match else len(self.data)


def _inflate(data: bytes) -> bytes:
    try:
        return zlib.decompress(data)
    except zlib.error:
        try:
            return zlib.decompressobj().decompress(data)
        except zlib.error as exc:
            raise _Malformed(f"corrupt deflate stream: {exc}") from exc


def _ascii_hex(data: bytes) -> bytes:
    digits = bytes(b for b in data if b not in _WHITESPACE).split(b">", 1)[0]
    if len(digits) % 2:
        digits += b"0"
    try:
        return bytes.fromhex(digits.decode("ascii"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise _Malformed("invalid ASCIIHex stream") from exc


def _ascii85(data: bytes) -> bytes:
    text = bytes(b for b in data if b not in _WHITESPACE)
    if text.startswith(b"<~"):
        text = text[2:]
    end = text.find(b"~>")
    if end >= 0:
        text = text[:end]
    try:
        return base64.a85decode(text)
    except ValueError as exc:
        raise _Malformed("invalid ASCII85 stream") from exc


def _decode_string(raw: bytes) -> str:
    if raw.startswith(b"\xfe\xff"):
        return raw[2:].decode("utf-16-be", errors="replace")
    try:
        return raw.decode("cp1252")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _content_text(content: bytes) -> str:
    """Collect the text shown by a page content stream."""
    lexer = _Lexer(content)
    operands: list = []
    parts: list[str] = []

    def newline() -> None:
        if parts and not parts[-1].endswith("\n"):
            parts.append("\n")

    def show(value: Any) -> None:
        if isinstance(value, bytes):
            parts.append(_decode_string(value))

    while True:
        token = lexer.next_token()
        if token is _EOF:
            break
        if not (isinstance(token, _Keyword) and token not in _VALUE_KEYWORDS):
            operands.append(lexer.build(token, allow_refs=False))
            continue
        operator = str(token)
        if operator == "ID":
            lexer.skip_inline_image()
        elif operator == "Tj" and operands:
            show(operands[-1])
        elif operator in ("'", '"') and operands:
            newline()
            show(operands[-1])
        elif operator == "TJ" and operands and isinstance(operands[-1], list):
            for item in operands[-1]:
                if isinstance(item, bytes):
                    show(item)
                elif isinstance(item, (int, float)) and item < _WORD_GAP:
                    parts.append(" ")
        elif operator == "T*":
            newline()
        elif operator in ("Td", "TD") and len(operands) >= 2:
            offset = operands[-1]
            if isinstance(offset, (int, float)) and offset != 0:
                newline()
        elif operator == "ET":
            newline()
        operands.clear()
    return "".join(parts)


class _Document:
    """Objects of a PDF file, recovered by scanning its body."""

    def __init__(self, data: bytes) -> None:
        if not _HEADER_RE.search(data[:1024]):
            raise PdfParseError("Failed to load PDF: invalid file header")
        self.objects = self._scan(data)
        self.root = self._find_root(data)

    def _scan(self, data: bytes) -> dict[int, Any]:
        objects: dict[int, Any] = {}
        for match in _OBJECT_RE.finditer(data):
            lexer = _Lexer(data, match.end())
            try:
                value = lexer.read_object()
                if isinstance(value, dict):
                    value = lexer.read_stream(value)
            except _Malformed:
                continue
            objects[int(match[1])] = value
        self.objects = objects
        for value in list(objects.values()):
            if isinstance(value, _Stream) and value.attrs.get("Type") == "ObjStm":
                try:
                    unpacked = list(self._unpack(value))
                except _Malformed:
                    continue
                for num, obj in unpacked:
                    objects.setdefault(num, obj)
        return objects

    def _unpack(self, stream: _Stream) -> Iterator[tuple[int, Any]]:
        count = self.resolve(stream.attrs.get("N"))
        first = self.resolve(stream.attrs.get("First"))
        if not (_is_int(count) and _is_int(first)):
            return
        data = self.decode(stream)
        header = _Lexer(data)
        pairs = []
        for _ in range(count):
            num, offset = header.next_token(), header.next_token()
            if not (_is_int(num) and _is_int(offset)):
                raise _Malformed("invalid object stream header")
            pairs.append((num, offset))
        for num, offset in pairs:
            yield num, _Lexer(data, first + offset).read_object()

    def _find_root(self, data: bytes) -> dict:
        root = None
        for match in _TRAILER_RE.finditer(data):
            try:
                trailer = _Lexer(data, match.end()).read_object()
            except _Malformed:
                continue
            if isinstance(trailer, dict) and "Root" in trailer:
                root = trailer["Root"]
        if root is None:
            for value in self.objects.values():
                if (
                    isinstance(value, _Stream)
                    and value.attrs.get("Type") == "XRef"
                    and "Root" in value.attrs
                ):
                    root = value.attrs["Root"]
        if root is None:
            root = next(
                (
                    value
                    for value in self.objects.values()
                    if isinstance(value, dict) and value.get("Type") == "Catalog"
                ),
                None,
            )
        catalog = self.resolve(root)
        if not isinstance(catalog, dict):
            raise PdfParseError("Failed to load PDF: document catalog not found")
        return catalog

    def resolve(self, value: Any) -> Any:
        for _ in range(32):
            if not isinstance(value, _Ref):
                return value
            value = self.objects.get(value.num)
        return None

    def pages(self) -> list[dict]:
        found: list[dict] = []
        self._collect_pages(self.root.get("Pages"), found, set())
        return found

    def _collect_pages(self, node_ref: Any, found: list[dict], seen: set[int]) -> None:
        if isinstance(node_ref, _Ref):
            if node_ref.num in seen:
                return
            seen.add(node_ref.num)
        node = self.resolve(node_ref)
        if not isinstance(node, dict):
            return
        kids = self.resolve(node.get("Kids"))
        if node.get("Type") == "Pages" or (isinstance(kids, list) and node.get("Type") != "Page"):
            for kid in kids if isinstance(kids, list) else []:
                self._collect_pages(kid, found, seen)
        else:
            found.append(node)

    def decode(self, stream: _Stream) -> bytes:
        filters = self.resolve(stream.attrs.get("Filter"))
        if filters is None:
            filters = []
        elif not isinstance(filters, list):
            filters = [filters]
        data = stream.raw
        for entry in filters:
            name = str(self.resolve(entry))
            if name in ("FlateDecode", "Fl"):
                data = _inflate(data)
            elif name in ("ASCIIHexDecode", "AHx"):
                data = _ascii_hex(data)
            elif name in ("ASCII85Decode", "A85"):
                data = _ascii85(data)
            else:
                raise _Malformed(f"unsupported stream filter {name}")
        return data

    def page_text(self, page: dict) -> str:
        contents = self.resolve(page.get("Contents"))
        if isinstance(contents, _Stream):
            streams = [contents]
        elif isinstance(contents, list):
            streams = [s for s in map(self.resolve, contents) if isinstance(s, _Stream)]
        else:
            streams = []
        content = b"\n".join(self.decode(stream) for stream in streams)
        return _content_text(content).rstrip("\n")


def pdf_to_text(data: bytes) -> str:
    """Return the text layer of every page, trimmed.

    Raises PdfParseError, EmptyDocumentError or NoTextLayerError.
    """
    document = _Document(bytes(data))
    pages = document.pages()
    if not pages:
        raise EmptyDocumentError()
    try:
        text = "\n".join(document.page_text(page) for page in pages)
    except _Malformed as exc:
        raise PdfParseError(f"Failed to extract text: {exc}") from exc
    stripped = text.strip()
    if not stripped:
        raise NoTextLayerError()
    return stripped