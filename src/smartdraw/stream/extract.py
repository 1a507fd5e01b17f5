"""Tolerant extraction of the element array from a repaired buffer."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def try_decode(text: str) -> tuple[bool, Any]:
    """Decode JSON permissively. Returns (ok, value); never raises.

    ``strict=False`` lets raw control characters (newlines the model left
    inside string values) through.
    """
    try:
        return True, json.loads(text, strict=False)
    except (ValueError, RecursionError):
        return False, None


def _as_element_list(value: Any) -> list | None:
    if isinstance(value, list):
        return value
    # Excalidraw scene shape: {"type": "excalidraw", "elements": [...]}
    if isinstance(value, dict) and isinstance(value.get("elements"), list):
        return value["elements"]
    return None


def extract_elements(buffer: str) -> list | None:
    """Return the decoded candidate array, or None when there is not enough data yet.

    The whole buffer is tried first; only when it does not decode to an array
    is the span from the first ``[`` to the last ``]`` decoded. Records are not
    validated here.
    """
    if not buffer:
        return None

    ok, value = try_decode(buffer)
    if ok:
        found = _as_element_list(value)
        if found is not None:
            return found

    start = buffer.find("[")
    end = buffer.rfind("]")
    if start == -1 or end <= start:
        return None

    ok, value = try_decode(buffer[start:end + 1])
    if not ok or not isinstance(value, list):
        logger.debug("No decodable array yet (%d chars buffered)", len(buffer))
        return None
    return value
