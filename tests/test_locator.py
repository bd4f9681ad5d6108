from pathlib import Path

import pytest

from maildig.locator import (
    file_name_candidates,
    hashed_data_bucket_segments,
    locate_emlx,
    locate_emlx_quick,
    locate_emlx_quick_with_hints,
    locate_emlx_with_hints,
    lookup_mailbox_header,
    matches_candidate,
    parse_mailbox_url,
    percent_decode,
)
from maildig.mailindex import CACHE, build_mailbox_index, clear_caches


@pytest.fixture(autouse=True)
def _fresh_caches():
    clear_caches()
    yield
    clear_caches()


def _emlx(message_id: str, subject: str, body: str) -> str:
    return f"123\nMessage-ID: {message_id}\nSubject: {subject}\n\n{body}\n"


def _touch(path: Path, content: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def test_locate_emlx_finds_file_in_mbox_structure(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "AAAAAAAA-AAAA-AAAA-AAAA-AAAAAAAAAAAA" / "INBOX.mbox" / "Messages" / "42.emlx"
    )
    result = locate_emlx(tmp_path, "V10", "imap://user@mail.example.com/INBOX", 42)
    assert result == emlx


def test_locate_emlx_returns_none_for_missing_file(tmp_path):
    assert locate_emlx(tmp_path, "V10", "imap://user@mail.example.com/INBOX", 999) is None


def test_cache_is_namespaced_by_mail_root(tmp_path):
    first = tmp_path / "first"
    second = tmp_path / "second"
    first_file = _touch(first / "V10" / "AAAA" / "INBOX.mbox" / "Messages" / "42.emlx")
    second_file = _touch(second / "V10" / "BBBB" / "INBOX.mbox" / "Messages" / "42.emlx")

    assert locate_emlx(first, "V10", "imap://u@example.com/INBOX", 42) == first_file
    assert locate_emlx(second, "V10", "imap://u@example.com/INBOX", 42) == second_file


def test_locate_emlx_quick_uses_direct_path(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "AAAAAAAA-AAAA-AAAA-AAAA-AAAAAAAAAAAA" / "Inbox.mbox" / "Messages" / "7.emlx"
    )
    assert locate_emlx_quick(tmp_path, "V10", "ews://account/Inbox", 7) == emlx


def test_locate_emlx_prefers_account_specific_directory_hint(tmp_path):
    base = tmp_path / "V10"
    _touch(base / "other-account" / "Inbox.mbox" / "Messages" / "9.emlx")
    right = _touch(base / "account-b" / "Inbox.mbox" / "Messages" / "9.emlx")
    assert locate_emlx(tmp_path, "V10", "ews://account-b/Inbox", 9) == right


def test_locate_emlx_finds_message_in_nested_mailbox_path(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Internal services.mbox"
        / "Confluence.mbox" / "Messages" / "194184.emlx"
    )
    result = locate_emlx(
        tmp_path, "V10", "ews://account-b/Inbox/Internal%20services/Confluence", 194184
    )
    assert result == emlx


def test_locate_emlx_finds_message_in_uuid_data_subtree(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Internal services.mbox"
        / "Confluence.mbox" / "UUID-1234" / "Data" / "4" / "8" / "Messages" / "194184.emlx"
    )
    result = locate_emlx(
        tmp_path, "V10", "ews://account-b/Inbox/Internal%20services/Confluence", 194184
    )
    assert result == emlx


def test_locate_emlx_quick_finds_message_in_three_level_data_subtree(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Internal services.mbox"
        / "TFS.mbox" / "UUID-1234" / "Data" / "4" / "9" / "1" / "Messages" / "194418.emlx"
    )
    result = locate_emlx_quick(
        tmp_path, "V10", "ews://account-b/Inbox/Internal%20services/TFS", 194418
    )
    assert result == emlx


def test_with_hints_matches_by_message_id_when_filename_differs(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Internal services.mbox"
        / "Confluence.mbox" / "UUID-1234" / "Data" / "4" / "8" / "Messages" / "79665.emlx",
        "121\nMessage-ID: <confluence@example.com>\nSubject: Nested\n\nBody\n",
    )
    result = locate_emlx_with_hints(
        tmp_path,
        "V10",
        "ews://account-b/Inbox/Internal%20services/Confluence",
        194184,
        ["194184", "99974"],
        "<confluence@example.com>",
    )
    assert result == emlx


def test_with_hints_prefers_message_id_over_wrong_numeric_hint(tmp_path):
    messages = tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Messages"
    _touch(messages / "99974.emlx", _emlx("<wrong@example.com>", "Wrong", "Wrong body"))
    correct = _touch(
        messages / "79665.emlx", _emlx("<right@example.com>", "Correct", "Correct body")
    )
    result = locate_emlx_with_hints(
        tmp_path,
        "V10",
        "ews://account-b/Inbox",
        194184,
        ["194184", "99974"],
        "<right@example.com>",
    )
    assert result == correct


def test_quick_with_hints_does_not_build_index_on_cache_miss(tmp_path):
    _touch(
        tmp_path / "V10" / "account-b" / "Inbox.mbox" / "Messages" / "79665.emlx",
        _emlx("<right@example.com>", "Correct", "Correct body"),
    )
    result = locate_emlx_quick_with_hints(
        tmp_path,
        "V10",
        "ews://account-b/Inbox",
        194184,
        ["194184", "99974"],
        "<right@example.com>",
    )
    assert result is None


def test_quick_with_hints_uses_cached_index(tmp_path):
    mailbox = tmp_path / "V10" / "account-b" / "Inbox.mbox"
    emlx = _touch(
        mailbox / "Messages" / "79665.emlx",
        _emlx("<right@example.com>", "Correct", "Correct body"),
    )
    index = build_mailbox_index(mailbox)
    index.load_headers(CACHE)
    CACHE.store_mailbox_index(mailbox, index)
    result = locate_emlx_quick_with_hints(
        tmp_path, "V10", "ews://account-b/Inbox", 194184, ["194184"], "<right@example.com>"
    )
    assert result == emlx


def test_lookup_mailbox_header_populates_cached_headers_lazily(tmp_path):
    mailbox = tmp_path / "Inbox.mbox"
    emlx = _touch(
        mailbox / "Messages" / "79665.emlx",
        _emlx("<lazy-cache@example.com>", "Lazy cache", "Body"),
    )
    CACHE.store_mailbox_index(mailbox, build_mailbox_index(mailbox))

    assert CACHE.lookup_by_header(mailbox, "<lazy-cache@example.com>") is None
    assert lookup_mailbox_header(mailbox, "<lazy-cache@example.com>") == emlx
    assert CACHE.mailbox_index(mailbox).by_header["<lazy-cache@example.com>"] == emlx


def test_lookup_mailbox_header_builds_and_caches_index(tmp_path):
    mailbox = tmp_path / "Inbox.mbox"
    emlx = _touch(mailbox / "Messages" / "5.emlx", _emlx("<built@example.com>", "S", "B"))
    assert lookup_mailbox_header(mailbox, "<built@example.com>") == emlx
    assert CACHE.lookup_by_header(mailbox, "<built@example.com>") == emlx


def test_lookup_mailbox_header_missing_directory(tmp_path):
    assert lookup_mailbox_header(tmp_path / "absent.mbox", "<x@example.com>") is None


def test_located_path_is_cached(tmp_path):
    emlx = _touch(tmp_path / "V10" / "acct" / "Inbox.mbox" / "Messages" / "3.emlx")
    assert locate_emlx(tmp_path, "V10", "ews://acct/Inbox", 3) == emlx
    emlx.unlink()
    assert locate_emlx(tmp_path, "V10", "ews://acct/Inbox", 3) == emlx


def test_hashed_data_bucket_segments():
    assert hashed_data_bucket_segments("194184") == ["4", "9", "1"]
    assert hashed_data_bucket_segments("79665") == ["9", "7"]
    assert hashed_data_bucket_segments("1234567") == ["4", "3", "2", "1"]
    assert hashed_data_bucket_segments("123") is None
    assert hashed_data_bucket_segments("abc123") is None


def test_hashed_data_bucket_segments_edge_cases():
    assert hashed_data_bucket_segments("") is None
    assert hashed_data_bucket_segments("1") is None
    assert hashed_data_bucket_segments("12") is None
    assert hashed_data_bucket_segments("123") is None
    assert hashed_data_bucket_segments("1234") == ["1"]
    assert hashed_data_bucket_segments("12345") == ["2", "1"]


@pytest.mark.parametrize(
    ("encoded", "decoded"),
    [
        ("Inbox", "Inbox"),
        ("Internal%20services", "Internal services"),
        ("Test%20Folder%20Name", "Test Folder Name"),
        ("%48%65%6C%6C%6F", "Hello"),
        ("partial%", "partial%"),
        ("Hello%20World", "Hello World"),
        ("Test%2B", "Test+"),
        ("100%25", "100%"),
        ("%GG", "%GG"),
        ("%2", "%2"),
        ("%", "%"),
    ],
)
def test_percent_decode(encoded, decoded):
    assert percent_decode(encoded) == decoded


def test_file_name_candidates_includes_partial_emlx():
    assert file_name_candidates("42") == ("42.emlx", "42.partial.emlx")
    assert file_name_candidates("194184") == ("194184.emlx", "194184.partial.emlx")


def test_matches_candidate_checks_both_emlx_and_partial():
    candidate_ids = ["42", "100"]
    assert matches_candidate("42.emlx", candidate_ids)
    assert matches_candidate("42.partial.emlx", candidate_ids)
    assert matches_candidate("100.emlx", candidate_ids)
    assert not matches_candidate("99.emlx", candidate_ids)
    assert not matches_candidate("99.partial.emlx", candidate_ids)


def test_parse_mailbox_url():
    assert parse_mailbox_url("imap://user@mail.example.com/INBOX") == (
        "user@mail.example.com",
        ["INBOX"],
    )
    assert parse_mailbox_url("ews://acct/Inbox/Internal%20services") == (
        "acct",
        ["Inbox", "Internal services"],
    )
    assert parse_mailbox_url("no-scheme/INBOX") is None
    assert parse_mailbox_url("imap://host-only") is None


def test_locate_emlx_returns_none_for_empty_mailbox_url(tmp_path):
    assert locate_emlx(tmp_path, "V10", "", 42) is None


def test_locate_emlx_with_empty_hints(tmp_path):
    assert locate_emlx_with_hints(tmp_path, "V10", "imap://test/INBOX", 42, [], None) is None


def test_locate_emlx_with_empty_hints_still_uses_rowid(tmp_path):
    emlx = _touch(tmp_path / "V10" / "test" / "INBOX.mbox" / "Messages" / "42.partial.emlx")
    assert locate_emlx_with_hints(tmp_path, "V10", "imap://test/INBOX", 42, [], None) == emlx


def test_locate_emlx_quick_missing(tmp_path):
    assert locate_emlx_quick(tmp_path, "V10", "imap://test/INBOX", 42) is None


def test_url_naming_mbox_directory_does_not_match(tmp_path):
    _touch(
        tmp_path / "V10" / "IMAP-test@example.com" / "INBOX.mbox" / "Messages" / "999.emlx",
        "100\nFrom: test@example.com\n\nBody",
    )
    result = locate_emlx(tmp_path, "V10", "imap://test@example.com/INBOX.mbox", 999)
    assert result is None


def test_locate_emlx_handles_nonexistent_mailbox(tmp_path):
    assert locate_emlx(tmp_path, "V10", "imap://test/NonExistentMailbox", 42) is None


def test_recursive_scan_finds_deeply_nested_file(tmp_path):
    emlx = _touch(
        tmp_path / "V10" / "acct" / "Inbox.mbox" / "a" / "b" / "c" / "77.emlx"
    )
    assert locate_emlx(tmp_path, "V10", "ews://acct/Inbox", 77) == emlx
    clear_caches()
    assert locate_emlx_quick(tmp_path, "V10", "ews://acct/Inbox", 77) is None