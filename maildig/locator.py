"""Find the ``.emlx`` file that holds a message in an Apple Mail store.

The database row id of a message does not map to a fixed path. Lookup runs
from cheap to expensive:

1. derive mailbox directories from the mailbox URL;
2. probe the usual ``Messages`` and hashed ``Data`` layouts directly;
3. optionally walk the mailbox directories;
4. fall back to mailbox-local indexes keyed by file stem or ``Message-ID``.

Resolved paths are remembered in the shared locator cache.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path

from maildig.mailindex import CACHE, CacheKey, build_mailbox_index

__all__ = [
    "locate_emlx",
    "locate_emlx_with_hints",
    "locate_emlx_quick",
    "locate_emlx_quick_with_hints",
    "lookup_mailbox_header",
    "parse_mailbox_url",
    "percent_decode",
    "file_name_candidates",
    "matches_candidate",
    "hashed_data_bucket_segments",
]

MAX_SCAN_DEPTH = 8

_HEX_BYTE = re.compile(rb"\+?[0-9A-Fa-f]{1,2}")


def locate_emlx(
    mail_dir: Path | str, mail_version: str, mailbox_url: str, message_rowid: int
) -> Path | None:
    """Return the ``.emlx`` path of a message, searching exhaustively if needed."""
    return locate_emlx_with_hints(
        mail_dir, mail_version, mailbox_url, message_rowid, [str(message_rowid)], None
    )


def locate_emlx_with_hints(
    mail_dir: Path | str,
    mail_version: str,
    mailbox_url: str,
    message_rowid: int,
    numeric_hints: Iterable[str] = (),
    message_id_header: str | None = None,
) -> Path | None:
    """Locate a message using exact-path hints, a directory walk and mailbox indexes."""
    mail_dir = Path(mail_dir)
    mail_root = mail_dir / mail_version
    key = CacheKey(mail_root, message_rowid)

    cached = CACHE.lookup_path(key)
    if cached is not None:
        return cached

    rowid_text = str(message_rowid)
    candidate_ids = _candidate_ids(numeric_hints, rowid_text)

    path = _find_emlx_file(mail_root, mailbox_url, [rowid_text], allow_recursive_scan=False)
    if path is not None:
        return _remember(key, path)

    mailbox_dirs = _candidate_mailbox_directories(mail_root, mailbox_url)

    for recursive in (False, True):
        path = _find_emlx_file(mail_root, mailbox_url, candidate_ids, recursive)
        if path is not None and _path_matches_message_id(path, message_id_header):
            return _remember(key, path)

    if message_id_header is not None:
        for mailbox_dir in mailbox_dirs:
            path = lookup_mailbox_header(mailbox_dir, message_id_header)
            if path is not None:
                return _remember(key, path)

    for mailbox_dir in mailbox_dirs:
        path = _lookup_mailbox_index(mailbox_dir, candidate_ids, message_id_header)
        if path is not None:
            return _remember(key, path)

    return None


def locate_emlx_quick(
    mail_dir: Path | str, mail_version: str, mailbox_url: str, message_rowid: int
) -> Path | None:
    """Return the ``.emlx`` path using the cache and direct paths only."""
    return locate_emlx_quick_with_hints(
        mail_dir, mail_version, mailbox_url, message_rowid, [str(message_rowid)], None
    )


def locate_emlx_quick_with_hints(
    mail_dir: Path | str,
    mail_version: str,
    mailbox_url: str,
    message_rowid: int,
    numeric_hints: Iterable[str] = (),
    message_id_header: str | None = None,
) -> Path | None:
    """Locate a message without walking directories or building new indexes."""
    mail_dir = Path(mail_dir)
    mail_root = mail_dir / mail_version
    key = CacheKey(mail_root, message_rowid)

    cached = CACHE.lookup_path(key)
    if cached is not None:
        return cached

    candidate_ids = _candidate_ids(numeric_hints, str(message_rowid))
    mailbox_dirs = _candidate_mailbox_directories(mail_root, mailbox_url)

    if message_id_header is not None:
        for mailbox_dir in mailbox_dirs:
            path = CACHE.lookup_by_header(mailbox_dir, message_id_header)
            if path is not None:
                return _remember(key, path)

    path = _find_emlx_file(mail_root, mailbox_url, candidate_ids, allow_recursive_scan=False)
    if path is not None:
        return _remember(key, path)

    for mailbox_dir in mailbox_dirs:
        path = _lookup_mailbox_index_cached(mailbox_dir, candidate_ids, message_id_header)
        if path is not None:
            return _remember(key, path)

    return None


def lookup_mailbox_header(mailbox_dir: Path | str, message_id_header: str) -> Path | None:
    """Find the file in ``mailbox_dir`` whose ``Message-ID`` is ``message_id_header``.

    A cached mailbox index is reused and has its headers loaded on demand;
    otherwise an index is built and cached.
    """
    mailbox_dir = Path(mailbox_dir)
    path = CACHE.lookup_by_header(mailbox_dir, message_id_header)
    if path is not None:
        return path

    index = CACHE.mailbox_index(mailbox_dir)
    if index is not None:
        index.load_headers(CACHE)
        path = index.by_header.get(message_id_header)
        return path if path is not None and path.exists() else None

    index = build_mailbox_index(mailbox_dir)
    if index is None:
        return None
    index.load_headers(CACHE)
    matched = index.by_header.get(message_id_header)
    CACHE.store_mailbox_index(mailbox_dir, index)
    return matched


def parse_mailbox_url(mailbox_url: str) -> tuple[str, list[str]] | None:
    """Split a mailbox URL into its account id and decoded path segments."""
    scheme_end = mailbox_url.find("://")
    if scheme_end < 0:
        return None
    rest = mailbox_url[scheme_end + 3 :]
    slash = rest.find("/")
    if slash < 0:
        return None
    account_id = rest[:slash]
    segments = [percent_decode(part) for part in rest[slash + 1 :].split("/")]
    return account_id, segments


def percent_decode(segment: str) -> str:
    """Decode ``%XX`` escapes; each byte becomes one character, invalid escapes stay."""
    raw = segment.encode("utf-8", "surrogateescape")
    decoded: list[str] = []
    index = 0
    while index < len(raw):
        if raw[index] == 0x25 and index + 2 < len(raw):
            pair = raw[index + 1 : index + 3]
            if _HEX_BYTE.fullmatch(pair):
                decoded.append(chr(int(pair, 16)))
                index += 3
                continue
        decoded.append(chr(raw[index]))
        index += 1
    return "".join(decoded)


def file_name_candidates(candidate_id: str) -> tuple[str, str]:
    """Return the full and partial ``.emlx`` file names for an id."""
    return f"{candidate_id}.emlx", f"{candidate_id}.partial.emlx"


def matches_candidate(file_name: str, candidate_ids: Iterable[str]) -> bool:
    """Tell whether ``file_name`` is the ``.emlx`` file of any candidate id."""
    return any(file_name in file_name_candidates(candidate) for candidate in candidate_ids)


def hashed_data_bucket_segments(candidate_id: str) -> list[str] | None:
    """Return the hashed ``Data`` bucket directories for a numeric id.

    The id without its last three digits, read backwards, one digit per level.
    Non-numeric ids and ids of three digits or fewer have no bucket.
    """
    if not (candidate_id.isascii() and candidate_id.isdigit()) or len(candidate_id) <= 3:
        return None
    return list(reversed(candidate_id[:-3]))


def _remember(key: CacheKey, path: Path) -> Path:
    CACHE.remember_path(key, path)
    return path


def _candidate_ids(numeric_hints: Iterable[str], rowid_text: str) -> list[str]:
    candidate_ids = list(numeric_hints)
    if rowid_text not in candidate_ids:
        candidate_ids.append(rowid_text)
    return candidate_ids


def _candidate_mailbox_directories(mail_root: Path, mailbox_url: str) -> list[Path]:
    parsed = parse_mailbox_url(mailbox_url)
    if parsed is None:
        return []
    account_id, segments = parsed

    roots = [mail_root / account_id]
    try:
        children = sorted(child for child in mail_root.iterdir() if child.is_dir())
    except OSError:
        children = []
    for child in children:
        if child not in roots:
            roots.append(child)

    return [_build_mailbox_path(root, segments) for root in roots]


def _build_mailbox_path(root: Path, segments: Sequence[str]) -> Path:
    mailbox_dir = root
    for segment in segments:
        mailbox_dir = mailbox_dir / f"{percent_decode(segment)}.mbox"
    return mailbox_dir


def _is_utf8_name(name: str) -> bool:
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _walk_files(root: Path) -> Iterator[Path]:
    """Yield regular files at or below ``root``, at most ``MAX_SCAN_DEPTH`` levels deep."""
    if root.is_file() and not root.is_symlink():
        yield root
        return
    yield from _walk_below(root, 1)


def _walk_below(directory: Path, depth: int) -> Iterator[Path]:
    try:
        with os.scandir(directory) as listing:
            entries = sorted(listing, key=lambda entry: entry.name)
    except OSError:
        return
    for entry in entries:
        try:
            if entry.is_file(follow_symlinks=False):
                yield Path(entry.path)
            elif entry.is_dir(follow_symlinks=False) and depth < MAX_SCAN_DEPTH:
                yield from _walk_below(Path(entry.path), depth + 1)
        except OSError:
            continue


def _find_emlx_file(
    mail_root: Path,
    mailbox_url: str,
    candidate_ids: Sequence[str],
    allow_recursive_scan: bool,
) -> Path | None:
    mailbox_dirs = _candidate_mailbox_directories(mail_root, mailbox_url)

    for mailbox_dir in mailbox_dirs:
        path = _find_candidate_in_mailbox_dir(mailbox_dir, candidate_ids)
        if path is not None:
            if path.exists():
                return path
            break

    if allow_recursive_scan:
        for mailbox_dir in mailbox_dirs:
            for path in _walk_files(mailbox_dir):
                name = path.name
                if _is_utf8_name(name) and matches_candidate(name, candidate_ids):
                    return path

    return None


def _sorted_children(directory: Path) -> list[Path]:
    """List ``directory``; an unreadable directory raises ``OSError``."""
    return sorted(directory.iterdir())


def _find_candidate_in_mailbox_dir(
    mailbox_dir: Path, candidate_ids: Sequence[str]
) -> Path | None:
    try:
        for candidate_id in candidate_ids:
            names = file_name_candidates(candidate_id)

            for name in names:
                direct = mailbox_dir / "Messages" / name
                if direct.exists():
                    return direct

            for child in _sorted_children(mailbox_dir):
                if not child.is_dir():
                    continue

                for name in names:
                    child_messages = child / "Messages" / name
                    if child_messages.exists():
                        return child_messages

                data_root = child / "Data"
                if not data_root.is_dir():
                    continue

                hashed = _find_candidate_in_hashed_data_dir(data_root, candidate_id)
                if hashed is not None:
                    return hashed

                for level_one in _sorted_children(data_root):
                    if not level_one.is_dir():
                        continue
                    for level_two in _sorted_children(level_one):
                        if not level_two.is_dir():
                            continue
                        for name in names:
                            nested = level_two / "Messages" / name
                            if nested.exists():
                                return nested
    except OSError:
        return None
    return None


def _find_candidate_in_hashed_data_dir(data_root: Path, candidate_id: str) -> Path | None:
    segments = hashed_data_bucket_segments(candidate_id)
    if segments is None:
        return None
    bucket = data_root.joinpath(*segments) / "Messages"
    for name in file_name_candidates(candidate_id):
        path = bucket / name
        if path.exists():
            return path
    return None


def _lookup_mailbox_index_cached(
    mailbox_dir: Path, candidate_ids: Sequence[str], message_id_header: str | None
) -> Path | None:
    if message_id_header is not None:
        path = CACHE.lookup_by_header(mailbox_dir, message_id_header)
        if path is not None:
            return path
    for candidate_id in candidate_ids:
        path = CACHE.lookup_by_stem(mailbox_dir, candidate_id)
        if path is not None:
            return path
    return None


def _first_by_stem(by_stem: dict[str, Path], candidate_ids: Sequence[str]) -> Path | None:
    return next(
        (by_stem[candidate] for candidate in candidate_ids if candidate in by_stem), None
    )


def _lookup_mailbox_index(
    mailbox_dir: Path, candidate_ids: Sequence[str], message_id_header: str | None
) -> Path | None:
    path = _lookup_mailbox_index_cached(mailbox_dir, candidate_ids, message_id_header)
    if path is not None:
        return path

    index = CACHE.mailbox_index(mailbox_dir)
    if index is not None:
        if message_id_header is not None:
            index.load_headers(CACHE)
            path = index.by_header.get(message_id_header)
            if path is not None and path.exists():
                return path
        path = _first_by_stem(index.by_stem, candidate_ids)
        return path if path is not None and path.exists() else None

    index = build_mailbox_index(mailbox_dir)
    if index is None:
        return None
    matched = None
    if message_id_header is not None:
        index.load_headers(CACHE)
        matched = index.by_header.get(message_id_header)
    if matched is None:
        matched = _first_by_stem(index.by_stem, candidate_ids)
    CACHE.store_mailbox_index(mailbox_dir, index)
    return matched


def _path_matches_message_id(path: Path, message_id_header: str | None) -> bool:
    if message_id_header is None:
        return True
    return CACHE.message_id(path) == message_id_header