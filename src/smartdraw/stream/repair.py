"""Combined repair pass, and parsing of complete (non-streaming) code buffers."""

from __future__ import annotations

import json
import logging

from json_repair import repair_json

from smartdraw.elements.identity import IdentityStabilizer
from smartdraw.elements.sanitize import sanitize_elements
from smartdraw.stream.closure import repair_closure, strip_fences
from smartdraw.stream.escape import escape_literal_quotes
from smartdraw.stream.extract import extract_elements, try_decode

logger = logging.getLogger(__name__)


class CodeParseError(ValueError):
    """Raised when a complete code buffer holds no decodable element array."""


def repair_buffer(raw: str) -> str:
    """Fence-strip and close the buffer; escape stray quotes only if that is not enough.

    Quote escaping runs on the unclosed text so that a quote near the end of a
    truncated buffer is judged before any closing tokens are appended.
    """
    if not raw:
        return ""
    closed = repair_closure(raw)
    ok, _ = try_decode(closed)
    if ok:
        return closed
    return repair_closure(escape_literal_quotes(strip_fences(raw)))


def _explain(repaired: str) -> str:
    start = repaired.find("[")
    end = repaired.rfind("]")
    if start == -1 or end <= start:
        return "No JSON array found in the code"
    try:
        json.loads(repaired[start:end + 1], strict=False)
    except ValueError as e:
        return f"JSON syntax error: {e}"
    return "The code does not contain an element array"


def _lenient_candidates(code: str) -> list | None:
    """Last resort for complete buffers: single quotes, missing commas, comments."""
    repaired = repair_json(strip_fences(code))
    if not isinstance(repaired, str):
        return None
    return extract_elements(repaired)


def parse_code(code: str, stabilizer: IdentityStabilizer | None = None) -> list[dict]:
    """Repair, extract and sanitize a complete buffer (pasted code, history entry).

    Raises:
        CodeParseError: if no element array can be decoded.
    """
    repaired = repair_buffer(code)
    candidates = extract_elements(repaired)
    if candidates is not None:
        return sanitize_elements(candidates, stabilizer=stabilizer)

    candidates = _lenient_candidates(code)
    elements = sanitize_elements(candidates, stabilizer=stabilizer) if candidates else []
    if not elements:
        raise CodeParseError(_explain(repaired))
    logger.info("Parsed code with lenient JSON repair: %d element(s)", len(elements))
    return elements
