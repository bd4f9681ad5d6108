"""Mailbox-local indexes of ``.emlx`` files and the caches the locator keeps."""

from __future__ import annotations

import os
import threading
from collections import OrderedDict
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, TypeVar

__all__ = [
    "CacheKey",
    "MailboxIndex",
    "LocatorCache",
    "CACHE",
    "build_mailbox_index",
    "read_message_id_header",
    "clear_caches",
]

MAX_WALK_DEPTH = 8
HEADER_LINE_LIMIT = 200

_PARTIAL_SUFFIX = ".partial.emlx"
_EMLX_SUFFIX = ".emlx"

K = TypeVar("K")
V = TypeVar("V")
_MISSING = object()


@dataclass(frozen=True)
class CacheKey:
    """Identifies a message by its mail root and database row id."""

    mail_root: Path
    message_rowid: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "mail_root", Path(self.mail_root))


@dataclass
class MailboxIndex:
    """The ``.emlx`` files below one mailbox directory.

    Files are indexed by numeric stem at once; ``Message-ID`` headers are read
    only when :meth:`load_headers` is called.
    """

    by_header: dict[str, Path] = field(default_factory=dict)
    by_stem: dict[str, Path] = field(default_factory=dict)
    header_candidates: list[Path] = field(default_factory=list)
    headers_loaded: bool = False

    def load_headers(self, cache: LocatorCache | None = None) -> None:
        """Read the ``Message-ID`` of every indexed file, once."""
        if self.headers_loaded:
            return
        read = cache.message_id if cache is not None else read_message_id_header
        for path in self.header_candidates:
            header = read(path)
            if header is not None:
                self.by_header.setdefault(header, path)
        self.headers_loaded = True


class _LruMap(Generic[K, V]):
    """A bounded mapping that forgets the least recently used entry."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self._capacity = capacity
        self._items: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K, default=None):
        try:
            value = self._items[key]
        except KeyError:
            return default
        self._items.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> None:
        self._items[key] = value
        self._items.move_to_end(key)
        while len(self._items) > self._capacity:
            self._items.popitem(last=False)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


class LocatorCache:
    """Resolved message paths, ``Message-ID`` headers and mailbox indexes."""

    def __init__(
        self,
        max_paths: int = 10_000,
        max_headers: int = 50_000,
        max_indexes: int = 256,
    ) -> None:
        self._lock = threading.RLock()
        self._paths: _LruMap[CacheKey, Path] = _LruMap(max_paths)
        self._headers: _LruMap[Path, str | None] = _LruMap(max_headers)
        self._indexes: _LruMap[Path, MailboxIndex] = _LruMap(max_indexes)

    def clear(self) -> None:
        """Forget everything cached."""
        with self._lock:
            self._paths.clear()
            self._headers.clear()
            self._indexes.clear()

    def lookup_path(self, key: CacheKey) -> Path | None:
        """Return the path remembered for ``key``, if any."""
        with self._lock:
            return self._paths.get(key)

    def remember_path(self, key: CacheKey, path: Path) -> None:
        """Remember where the message identified by ``key`` lives."""
        with self._lock:
            self._paths.put(key, Path(path))

    def message_id(self, path: Path) -> str | None:
        """Return the ``Message-ID`` of ``path``, reading the file only once."""
        path = Path(path)
        with self._lock:
            cached = self._headers.get(path, _MISSING)
        if cached is not _MISSING:
            return cached
        header = read_message_id_header(path)
        with self._lock:
            self._headers.put(path, header)
        return header

    def mailbox_index(self, mailbox_dir: Path) -> MailboxIndex | None:
        """Return the cached index of ``mailbox_dir``; changes to it persist."""
        with self._lock:
            return self._indexes.get(Path(mailbox_dir))

    def store_mailbox_index(self, mailbox_dir: Path, index: MailboxIndex) -> None:
        """Cache ``index`` as the index of ``mailbox_dir``."""
        with self._lock:
            self._indexes.put(Path(mailbox_dir), index)

    def lookup_by_header(self, mailbox_dir: Path, header: str) -> Path | None:
        """Return an existing file with ``header`` from a cached index."""
        index = self.mailbox_index(mailbox_dir)
        if index is None:
            return None
        path = index.by_header.get(header)
        return path if path is not None and path.exists() else None

    def lookup_by_stem(self, mailbox_dir: Path, stem: str) -> Path | None:
        """Return an existing file named ``stem`` from a cached index."""
        index = self.mailbox_index(mailbox_dir)
        if index is None:
            return None
        path = index.by_stem.get(stem)
        return path if path is not None and path.exists() else None


CACHE = LocatorCache()


def clear_caches() -> None:
    """Clear the shared locator cache."""
    CACHE.clear()


def _walk_files(root: Path, depth: int = 0) -> Iterator[Path]:
    """Yield regular files below ``root`` down to ``MAX_WALK_DEPTH`` levels."""
    try:
        with os.scandir(root) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        try:
            if entry.is_file(follow_symlinks=False):
                yield Path(entry.path)
            elif entry.is_dir(follow_symlinks=False) and depth + 1 < MAX_WALK_DEPTH:
                yield from _walk_files(Path(entry.path), depth + 1)
        except OSError:
            continue


def _is_utf8_name(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _strip_all(name: str, suffix: str) -> str:
    while name.endswith(suffix):
        name = name[: -len(suffix)]
    return name


def _emlx_stem(file_name: str) -> str:
    return _strip_all(_strip_all(file_name, _PARTIAL_SUFFIX), _EMLX_SUFFIX)


def build_mailbox_index(mailbox_dir: Path) -> MailboxIndex | None:
    """Index the ``.emlx`` files below ``mailbox_dir``, or None if it is missing."""
    mailbox_dir = Path(mailbox_dir)
    if not mailbox_dir.exists():
        return None
    files = (
        iter([mailbox_dir])
        if mailbox_dir.is_file() and not mailbox_dir.is_symlink()
        else _walk_files(mailbox_dir)
    )
    index = MailboxIndex()
    for path in files:
        name = path.name
        if not _is_utf8_name(name) or Path(name).suffix.lower() != _EMLX_SUFFIX:
            continue
        index.by_stem.setdefault(_emlx_stem(name), path)
        index.header_candidates.append(path)
    return index


def _text_lines(raw_lines: Iterator[bytes]) -> Iterator[str | None]:
    for raw in raw_lines:
        if raw.endswith(b"\n"):
            raw = raw[:-1]
            if raw.endswith(b"\r"):
                raw = raw[:-1]
        try:
            yield raw.decode("utf-8")
        except UnicodeDecodeError:
            yield None


def read_message_id_header(path: Path) -> str | None:
    """Return the ``Message-ID`` header of an ``.emlx`` file, skipping its byte count."""
    try:
        with open(path, "rb") as handle:
            lines = _text_lines(iter(handle))
            first = next(lines, None)
            if first is None:
                return None
            name = ""
            value = ""
            for count, line in enumerate(lines):
                if count >= HEADER_LINE_LIMIT:
                    break
                if line is None:
                    return None
                if not line.strip():
                    break
                if line.startswith((" ", "\t")):
                    value += line.strip()
                    continue
                if name.lower() == "message-id":
                    return value.strip()
                if ":" in line:
                    head, tail = line.split(":", 1)
                    name = head.strip()
                    value = tail.strip()
    except OSError:
        return None
    if name.lower() == "message-id":
        return value.strip()
    return None