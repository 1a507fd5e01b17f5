"""Escape repair: escape literal quotes the model left inside string values.

A quote seen inside a string only closes it when the next non-whitespace
character is one of ``: , } ]`` or the end of input. Any other quote belongs to
the string's content and is written out as ``\\"``. Backslash escapes pass
their next character through untouched.
"""

from __future__ import annotations

STRUCTURAL_FOLLOWERS = frozenset(":,}]")


class QuoteScanner:
    """Left-to-right scanner with state ``{in_string, pending_escape}``."""

    def __init__(self, text: str) -> None:
        self._text = text
        self.in_string = False
        self.pending_escape = False

    def next_significant(self, index: int) -> str:
        """Return the first non-whitespace character after ``index`` ('' at end)."""
        text = self._text
        j = index + 1
        while j < len(text) and text[j].isspace():
            j += 1
        return text[j] if j < len(text) else ""

    def closes_string(self, index: int) -> bool:
        """True if the quote at ``index`` is structural, i.e. terminates the string."""
        nxt = self.next_significant(index)
        return nxt == "" or nxt in STRUCTURAL_FOLLOWERS

    def step(self, index: int, ch: str) -> str:
        """Consume one character and return what to emit for it."""
        if self.pending_escape:
            self.pending_escape = False
            return ch
        if ch == "\\":
            self.pending_escape = True
            return ch
        if ch != '"':
            return ch
        if not self.in_string:
            self.in_string = True
            return ch
        if self.closes_string(index):
            self.in_string = False
            return ch
        return '\\"'

    def scan(self) -> str:
        return "".join(self.step(i, ch) for i, ch in enumerate(self._text))


def escape_literal_quotes(buffer: str) -> str:
    """Escape embedded quote characters inside string literals.

    Only ever inserts backslashes; valid JSON passes through unchanged.

    >>> escape_literal_quotes('{"text":"he said "hi""}')
    '{"text":"he said \\\\"hi\\\\""}'
    """
    if '"' not in buffer:
        return buffer
    return QuoteScanner(buffer).scan()
