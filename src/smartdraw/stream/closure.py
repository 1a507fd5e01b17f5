"""Closure repair: make a truncated JSON buffer structurally balanced.

Model output arrives token by token, so at almost every chunk boundary the
buffer ends inside a string, an object or an array. This module strips the
markdown fence decoration the model wraps around its answer and appends the
minimal closing tokens, innermost construct first. It does not validate:
a balanced buffer can still fail to decode, which the extractor reports as
"no result yet".
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from smartdraw.stream.extract import try_decode

_CLOSERS = {"[": "]", "{": "}"}
_OPENERS = {"]": "[", "}": "{"}

# ```json / ```JavaScript / bare ``` on the first line
_OPEN_FENCE_RE = re.compile(r"\A```[ \t]*[\w.+-]*[ \t]*(?:\r?\n|\Z)")
# first token of a fence that is still arriving
_PARTIAL_OPEN_FENCE_RE = re.compile(r"\A`{1,2}\Z")
# closing marker (possibly still arriving) on the last line
_CLOSE_FENCE_RE = re.compile(r"(?:\r?\n[ \t]*`{1,3}|```)[ \t]*\Z")

_PARTIAL_LITERAL_RE = re.compile(r"[A-Za-z]+\Z")
_PARTIAL_NUMBER_RE = re.compile(r"(?<=\d)(?:\.|[eE][+-]?)\Z")
_LITERALS = ("true", "false", "null")


def strip_fences(text: str) -> str:
    """Remove a leading and/or trailing fenced-block marker, repeatedly.

    Backticks at the end of a buffer that stops inside a string are string
    content, not a closing marker.
    """
    text = text.strip()
    previous = None
    while text != previous:
        previous = text
        text = _OPEN_FENCE_RE.sub("", text, count=1)
        if _PARTIAL_OPEN_FENCE_RE.match(text):
            text = ""
        if not _ends_in_string(text):
            text = _CLOSE_FENCE_RE.sub("", text, count=1).strip()
    return text


def _ends_in_string(text: str) -> bool:
    start = _first_structural(text)
    return start != -1 and _scan(text, start).in_string


@dataclass
class _Frame:
    opener: str
    # index where the member currently being written starts (just after
    # the opener, or at the separating comma)
    member_start: int
    expect_key: bool = True


@dataclass
class _ScanState:
    stack: list[_Frame] = field(default_factory=list)
    in_string: bool = False
    string_is_key: bool = False
    pending_escape: bool = False
    escape_at: int = -1

    @property
    def has_debts(self) -> bool:
        return self.in_string or bool(self.stack)


def _first_structural(text: str) -> int:
    positions = [p for p in (text.find("["), text.find("{"), text.find('"')) if p != -1]
    return min(positions) if positions else -1


def _scan(text: str, start: int) -> _ScanState:
    state = _ScanState()
    stack = state.stack
    for i in range(start, len(text)):
        ch = text[i]
        if state.in_string:
            if state.pending_escape:
                state.pending_escape = False
            elif ch == "\\":
                state.pending_escape = True
                state.escape_at = i
            elif ch == '"':
                state.in_string = False
            continue

        if ch == '"':
            state.in_string = True
            state.string_is_key = bool(stack) and stack[-1].opener == "{" and stack[-1].expect_key
        elif ch in _CLOSERS:
            stack.append(_Frame(ch, member_start=i + 1))
        elif ch in _OPENERS:
            # mismatched closers are left alone
            if stack and stack[-1].opener == _OPENERS[ch]:
                stack.pop()
        elif ch == "," and stack:
            stack[-1].member_start = i
            stack[-1].expect_key = True
        elif ch == ":" and stack and stack[-1].opener == "{":
            stack[-1].expect_key = False
    return state


def _drop_dangling_member(text: str, frame: _Frame) -> str:
    """Cut an object member that has no value yet (``"ke``, ``"key"``, ``"key":``)."""
    member = text[frame.member_start:].lstrip(", \t\r\n")
    if frame.expect_key and member:
        return text[:frame.member_start]
    if not frame.expect_key and member.rstrip().endswith(":"):
        return text[:frame.member_start]
    return text


def _complete_tail(text: str) -> str:
    text = text.rstrip()
    if text.endswith(","):
        return text[:-1].rstrip()
    if _PARTIAL_NUMBER_RE.search(text):
        return _PARTIAL_NUMBER_RE.sub("", text)
    m = _PARTIAL_LITERAL_RE.search(text)
    if m:
        word = m.group()
        for literal in _LITERALS:
            if literal.startswith(word):
                return text + literal[len(word):]
    return text


def _drop_incomplete_escape(text: str, state: _ScanState) -> str:
    if state.pending_escape:
        return text[:state.escape_at]
    # \uXXXX still arriving
    at = state.escape_at
    if at >= 0 and text[at + 1:at + 2] == "u" and len(text) - at < 6:
        return text[:at]
    return text


def repair_closure(buffer: str) -> str:
    """Best-effort completion of a truncated JSON buffer.

    Pure and total; ``repair_closure(repair_closure(s)) == repair_closure(s)``.
    A buffer that already decodes is returned unchanged.
    """
    if not buffer:
        return ""
    ok, _ = try_decode(buffer)
    if ok:
        return buffer

    text = strip_fences(buffer)
    start = _first_structural(text)
    if start == -1:
        return text

    state = _scan(text, start)
    if not state.has_debts:
        return text

    stack = state.stack
    if state.in_string:
        if state.string_is_key:
            text = _drop_dangling_member(text, stack[-1])
        else:
            text = _drop_incomplete_escape(text, state) + '"'
    elif stack:
        if stack[-1].opener == "{":
            text = _drop_dangling_member(text, stack[-1])
        text = _complete_tail(text)

    return text + "".join(_CLOSERS[f.opener] for f in reversed(stack))
