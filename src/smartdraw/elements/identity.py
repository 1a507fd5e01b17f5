"""Identity stabilization for elements that arrive without an explicit id."""

from __future__ import annotations

import hashlib
import logging
from typing import Iterable

logger = logging.getLogger(__name__)

STREAM_ID_PREFIX = "stream_"
STRATEGIES = ("positional", "content")

# coordinates are bucketed so that small nudges between snapshots keep the id
_CONTENT_GRID = 10


def positional_id(index: int) -> str:
    return f"{STREAM_ID_PREFIX}{index}"


def content_id(element: dict) -> str:
    """Hash of the element's kind and grid-rounded position."""
    def _bucket(value) -> int:
        try:
            return round(float(value) / _CONTENT_GRID)
        except (TypeError, ValueError):
            return 0

    key = f"{element.get('type')}|{_bucket(element.get('x'))}|{_bucket(element.get('y'))}"
    digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
    return f"{STREAM_ID_PREFIX}{digest}"


class IdentityStabilizer:
    """Assigns ids to id-less records, consistently across one session's snapshots.

    The positional strategy relies on the model appending to its output
    rather than rewriting earlier elements; the content strategy survives
    reordering but not an element being moved.
    """

    def __init__(self, strategy: str = "positional") -> None:
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown identity strategy {strategy!r}. Available: {', '.join(STRATEGIES)}")
        self.strategy = strategy
        self.prior_ids: frozenset[str] = frozenset()

    def assign(self, element: dict, index: int, taken: set[str]) -> str:
        """Pick an id for ``element`` (at batch position ``index``) not in ``taken``."""
        if self.strategy == "content":
            base = content_id(element)
        else:
            base = positional_id(index)
        candidate = base
        n = 1
        while candidate in taken:
            candidate = f"{base}_{n}"
            n += 1
        return candidate

    def observe(self, snapshot_ids: Iterable[str]) -> set[str]:
        """Record the ids of an emitted snapshot; return ids that disappeared."""
        current = frozenset(snapshot_ids)
        dropped = set(self.prior_ids - current)
        if dropped:
            logger.debug("Identity churn: %d id(s) dropped since last snapshot: %s",
                         len(dropped), sorted(dropped)[:10])
        self.prior_ids = current
        return dropped
