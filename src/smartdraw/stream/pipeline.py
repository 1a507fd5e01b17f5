"""Per-session driver: raw chunks in, renderable snapshots out."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from smartdraw.elements.identity import IdentityStabilizer
from smartdraw.elements.optimize import optimize_elements
from smartdraw.elements.sanitize import sanitize_elements
from smartdraw.stream.extract import extract_elements
from smartdraw.stream.repair import repair_buffer

logger = logging.getLogger(__name__)


@dataclass
class Snapshot:
    """A fully validated element list, safe to render as-is."""

    elements: list[dict] = field(default_factory=list)
    sequence: int = 0
    final: bool = False

    @property
    def ids(self) -> list[str]:
        return [e["id"] for e in self.elements]

    def to_dict(self) -> dict:
        return {"sequence": self.sequence, "final": self.final, "elements": self.elements}


class StreamPipeline:
    """Runs repair → extract → sanitize → stabilize on every appended chunk.

    Owns the raw buffer of one generation. Everything here is synchronous:
    a snapshot is computed completely before the caller awaits the next chunk.
    """

    def __init__(self, stabilizer: IdentityStabilizer | None = None) -> None:
        self._stabilizer = stabilizer or IdentityStabilizer()
        self._buffer = ""
        self._sequence = 0
        self.last_snapshot: Snapshot | None = None

    @property
    def buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: str) -> Snapshot | None:
        """Append a chunk; return a new snapshot, or None to keep the previous one."""
        if not chunk:
            return None
        self._buffer += chunk
        return self._process()

    def _process(self) -> Snapshot | None:
        t0 = time.perf_counter()
        candidates = extract_elements(repair_buffer(self._buffer))
        if candidates is None:
            return None

        prior = self.last_snapshot.ids if self.last_snapshot else None
        elements = sanitize_elements(candidates, prior_ids=prior, stabilizer=self._stabilizer)
        if not elements:
            return None
        if self.last_snapshot is not None and elements == self.last_snapshot.elements:
            return None
        logger.debug(
            "Snapshot %d: %d element(s) from %d candidate(s), %d chars buffered (%.1fms)",
            self._sequence + 1, len(elements), len(candidates), len(self._buffer),
            (time.perf_counter() - t0) * 1000,
        )
        return self._emit(elements)

    def _emit(self, elements: list[dict], final: bool = False) -> Snapshot:
        self._sequence += 1
        snapshot = Snapshot(elements=elements, sequence=self._sequence, final=final)
        self._stabilizer.observe(snapshot.ids)
        self.last_snapshot = snapshot
        return snapshot

    def finalize(self) -> Snapshot | None:
        """Run the post-stream optimizer once over the complete buffer.

        Returns the final snapshot, or None if the stream never produced one.
        """
        # the complete buffer may decode where the last chunk boundary did not
        candidates = extract_elements(repair_buffer(self._buffer))
        if candidates is not None:
            prior = self.last_snapshot.ids if self.last_snapshot else None
            elements = sanitize_elements(candidates, prior_ids=prior, stabilizer=self._stabilizer)
        else:
            elements = []
        if not elements:
            if self.last_snapshot is None:
                return None
            elements = self.last_snapshot.elements
        return self._emit(optimize_elements(elements), final=True)

    def reset(self) -> None:
        """Discard the raw buffer. The last snapshot stays as the visible state."""
        self._buffer = ""
