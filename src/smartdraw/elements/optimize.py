"""Post-stream optimization: settle arrows and spacing once every element is known.

During streaming each element is positioned on its own and arrows may point
at shapes that had not arrived yet. Once the stream completes this pass runs
exactly once over the final snapshot:

1. partially overlapping shapes are pushed apart,
2. inline endpoint descriptors that sit on an existing shape of the requested
   type become id bindings to that shape,
3. id-bound arrows get their endpoints re-derived from the bound shapes' edges.
"""

from __future__ import annotations

import copy
import json
import logging
import time

from smartdraw.elements.geometry import Box, edge_anchor, element_box, overlap
from smartdraw.stream.repair import CodeParseError, parse_code

logger = logging.getLogger(__name__)

MIN_GAP = 40
ANCHOR_TOLERANCE = 20
MOVABLE_KINDS = frozenset({"rectangle", "ellipse", "diamond", "image", "text"})


def _related(a: dict, b: dict, frame_of: dict[str, str]) -> bool:
    """Elements laid out together on purpose (shared group or frame)."""
    if set(a.get("groupIds") or ()) & set(b.get("groupIds") or ()):
        return True
    fa, fb = frame_of.get(a["id"]), frame_of.get(b["id"])
    return fa is not None and fa == fb


def _nests(a: Box, b: Box) -> bool:
    return (
        (a.x <= b.x and a.y <= b.y and a.right >= b.right and a.bottom >= b.bottom)
        or (b.x <= a.x and b.y <= a.y and b.right >= a.right and b.bottom >= a.bottom)
    )


def _escape_vector(moving: Box, fixed: Box) -> tuple[float, float]:
    """Smallest axis-aligned displacement leaving MIN_GAP between the boxes."""
    options = [
        (fixed.right + MIN_GAP - moving.x, 0.0),
        (fixed.x - MIN_GAP - moving.right, 0.0),
        (0.0, fixed.bottom + MIN_GAP - moving.y),
        (0.0, fixed.y - MIN_GAP - moving.bottom),
    ]
    return min(options, key=lambda v: abs(v[0]) + abs(v[1]))


def _separate_overlaps(elements: list[dict]) -> int:
    frame_of = {
        child: frame["id"]
        for frame in elements if frame["type"] == "frame"
        for child in frame.get("children", [])
    }
    shapes = [e for e in elements if e["type"] in MOVABLE_KINDS and not e.get("containerId")]
    moved = 0
    for i, current in enumerate(shapes):
        if current.get("locked"):
            continue
        # earlier shapes are settled; bounded so that crowded layouts terminate
        for _ in range(len(shapes)):
            shifted = False
            for other in shapes[:i]:
                if _related(current, other, frame_of):
                    continue
                box, other_box = element_box(current), element_box(other)
                ox, oy = overlap(box, other_box)
                if not ox or _nests(box, other_box):
                    continue
                dx, dy = _escape_vector(box, other_box)
                current["x"] = round(current["x"] + dx, 2)
                current["y"] = round(current["y"] + dy, 2)
                shifted = True
            if not shifted:
                break
            moved += 1
    return moved


def _points(arrow: dict) -> tuple[tuple[float, float], tuple[float, float]]:
    x, y = float(arrow["x"]), float(arrow["y"])
    points = arrow.get("points")
    if isinstance(points, list) and len(points) >= 2:
        try:
            last = points[-1]
            return (x, y), (x + float(last[0]), y + float(last[1]))
        except (TypeError, ValueError, IndexError, KeyError):
            pass
    width = arrow.get("width", 100)
    height = arrow.get("height", 0)
    return (x, y), (x + float(width), y + float(height))


def _bound_element(arrow: dict, end: str, by_id: dict[str, dict]) -> dict | None:
    binding = arrow.get(end)
    if isinstance(binding, dict) and binding.get("id") in by_id:
        return by_id[binding["id"]]
    native = arrow.get(f"{end}Binding")
    if isinstance(native, dict) and native.get("elementId") in by_id:
        return by_id[native["elementId"]]
    return None


def _settle_descriptors(elements: list[dict]) -> int:
    settled = 0
    for arrow in (e for e in elements if e["type"] == "arrow"):
        start, finish = _points(arrow)
        for end, point in (("start", start), ("end", finish)):
            descriptor = arrow.get(end)
            if not isinstance(descriptor, dict) or "id" in descriptor:
                continue
            kind = descriptor.get("type")
            match = next(
                (e for e in elements
                 if e["type"] == kind and element_box(e).contains(point, ANCHOR_TOLERANCE)),
                None,
            )
            if match is not None:
                arrow[end] = {"id": match["id"]}
                settled += 1
    return settled


def _reroute_arrows(elements: list[dict]) -> int:
    by_id = {e["id"]: e for e in elements}
    rerouted = 0
    for arrow in (e for e in elements if e["type"] == "arrow"):
        source = _bound_element(arrow, "start", by_id)
        target = _bound_element(arrow, "end", by_id)
        # unbound, or a self-loop
        if source is target:
            continue
        start, finish = _points(arrow)
        if source is not None and target is not None:
            source_box, target_box = element_box(source), element_box(target)
            start = edge_anchor(source_box, target_box.center)
            finish = edge_anchor(target_box, source_box.center)
        elif source is not None:
            start = edge_anchor(element_box(source), finish)
        else:
            finish = edge_anchor(element_box(target), start)

        arrow["x"], arrow["y"] = round(start[0], 2), round(start[1], 2)
        arrow["width"] = round(finish[0] - start[0], 2)
        arrow["height"] = round(finish[1] - start[1], 2)
        arrow.pop("points", None)
        rerouted += 1
    return rerouted


def optimize_elements(elements: list[dict]) -> list[dict]:
    """Return an optimized copy of a complete, sanitized element list."""
    t0 = time.perf_counter()
    result = copy.deepcopy(list(elements))
    moved = _separate_overlaps(result)
    settled = _settle_descriptors(result)
    rerouted = _reroute_arrows(result)
    logger.debug(
        "Optimized %d element(s): %d moved, %d descriptor(s) settled, %d arrow(s) rerouted (%.1fms)",
        len(result), moved, settled, rerouted, (time.perf_counter() - t0) * 1000,
    )
    return result


def optimize_code(code: str) -> str:
    """Optimize a complete code buffer; returns it unchanged if nothing can be parsed."""
    try:
        elements = parse_code(code)
    except CodeParseError as e:
        logger.info("Skipping optimization: %s", e)
        return code
    return json.dumps(optimize_elements(elements), indent=2, ensure_ascii=False)
