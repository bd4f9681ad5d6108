"""Render HTML as plain text, one line per text node."""

from __future__ import annotations

import re
from html.parser import HTMLParser

__all__ = ["html_to_plain_text"]

_SKIPPED_ELEMENTS = frozenset({"script", "style"})
_EXTRA_BLANK_LINES = re.compile(r"\n{3,}")


class _TextCollector(HTMLParser):
    """Gather trimmed text nodes, ignoring script and style content."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.lines: list[str] = []
        self._pending: list[str] = []
        self._skip_depth = 0

    def _flush(self) -> None:
        if self._pending:
            text = "".join(self._pending).strip()
            self._pending.clear()
            if text:
                self.lines.append(text)

    def handle_starttag(self, tag, attrs):
        self._flush()
        if tag in _SKIPPED_ELEMENTS:
            self._skip_depth += 1

    def handle_startendtag(self, tag, attrs):
        self._flush()

    def handle_endtag(self, tag):
        self._flush()
        if tag in _SKIPPED_ELEMENTS and self._skip_depth:
            self._skip_depth -= 1

    def handle_data(self, data):
        if not self._skip_depth:
            self._pending.append(data)

    def handle_comment(self, data):
        self._flush()

    def handle_decl(self, decl):
        self._flush()

    def handle_pi(self, data):
        self._flush()

    def close(self) -> None:
        super().close()
        self._flush()


def html_to_plain_text(html: str) -> str:
    """Return the visible text of ``html``, each text node on its own line.

    Script and style content is dropped, entities are decoded and runs of
    three or more newlines collapse to two.
    """
    collector = _TextCollector()
    collector.feed(html)
    collector.close()
    output = "".join(f"{line}\n" for line in collector.lines)
    return _EXTRA_BLANK_LINES.sub("\n\n", output)