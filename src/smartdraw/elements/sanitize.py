"""Validate decoded records and make them safe to render.

Every snapshot handed to the renderer goes through ``sanitize_elements``:
records that are not well-formed elements are dropped, loosely-typed
presentation fields are coerced, ids are assigned, and references to
elements that have not streamed in yet are removed so the renderer never
sees a dangling binding.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Iterable

from smartdraw.elements.geometry import element_box, is_number, union_box
from smartdraw.elements.identity import IdentityStabilizer

logger = logging.getLogger(__name__)

ELEMENT_KINDS = frozenset({
    "rectangle", "ellipse", "diamond", "arrow", "line",
    "text", "freedraw", "image", "frame",
})

# Kinds an arrow endpoint descriptor may ask the renderer to create
CREATABLE_KINDS = frozenset({"rectangle", "ellipse", "diamond", "text"})

STYLE_DEFAULTS = {
    "strokeColor": "#000000",
    "backgroundColor": "transparent",
    "fillStyle": "solid",
    "strokeStyle": "solid",
}

NUMERIC_FIELDS = ("width", "height", "strokeWidth", "roughness", "opacity", "angle", "fontSize")

FRAME_PADDING = 10


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _as_number(value):
    if is_number(value):
        return value
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        if is_number(number):
            return int(number) if number.is_integer() else number
    return None


def _as_id(value) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _validate(candidate) -> tuple[dict, bool] | None:
    """Structural check. Returns (element copy, needs_frame_bounds) or None to drop."""
    if not isinstance(candidate, dict):
        return None
    kind = candidate.get("type")
    if not isinstance(kind, str):
        return None
    kind = kind.strip().lower()
    if kind not in ELEMENT_KINDS:
        return None

    has_position = is_number(candidate.get("x")) and is_number(candidate.get("y"))
    needs_bounds = False
    if not has_position:
        # frames may leave their bounds to be derived from their children
        if kind != "frame" or not isinstance(candidate.get("children"), list):
            return None
        needs_bounds = True

    element = copy.deepcopy(candidate)
    element["type"] = kind
    return element, needs_bounds


def _coerce_presentation(element: dict) -> None:
    kind = element["type"]
    if kind == "text" or "text" in element:
        element["text"] = _as_text(element.get("text"))

    if "label" in element:
        label = element["label"]
        if isinstance(label, dict):
            label["text"] = _as_text(label.get("text"))
            if "fontSize" in label and _as_number(label["fontSize"]) is None:
                del label["fontSize"]
        elif isinstance(label, str):
            element["label"] = {"text": label}
        else:
            del element["label"]

    if kind != "frame":
        for key, default in STYLE_DEFAULTS.items():
            if not isinstance(element.get(key), str):
                element[key] = default

    for key in NUMERIC_FIELDS:
        if key in element:
            number = _as_number(element[key])
            if number is None:
                del element[key]
            else:
                element[key] = number

    if "groupIds" in element:
        groups = element["groupIds"]
        if isinstance(groups, list):
            element["groupIds"] = [g for g in (_as_id(g) for g in groups) if g]
        else:
            del element["groupIds"]

    if "locked" in element and not isinstance(element["locked"], bool):
        locked = element["locked"]
        if isinstance(locked, str) and locked.lower() in ("true", "false"):
            element["locked"] = locked.lower() == "true"
        else:
            del element["locked"]

    if "link" in element and element["link"] is not None and not isinstance(element["link"], str):
        del element["link"]

    if "points" in element:
        points = _as_points(element["points"])
        if points is None:
            del element["points"]
        else:
            element["points"] = points


def _as_points(value) -> list[list] | None:
    """A list of [x, y] number pairs, or None if any entry is not one."""
    if not isinstance(value, list):
        return None
    points = []
    for point in value:
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            return None
        x, y = _as_number(point[0]), _as_number(point[1])
        if x is None or y is None:
            return None
        points.append([x, y])
    return points


def _binding_resolves(binding, ids: set[str]) -> bool:
    if not isinstance(binding, dict):
        return False
    if "id" in binding:
        ident = _as_id(binding["id"])
        if ident is None or ident not in ids:
            return False
        binding["id"] = ident
        return True
    kind = binding.get("type")
    if isinstance(kind, str) and kind.strip().lower() in CREATABLE_KINDS:
        binding["type"] = kind.strip().lower()
        if binding["type"] == "text":
            binding["text"] = _as_text(binding.get("text"))
        return True
    return False


def _repair_references(element: dict, ids: set[str]) -> None:
    kind = element["type"]
    if kind == "arrow":
        for end in ("start", "end"):
            if end in element and not _binding_resolves(element[end], ids):
                del element[end]
        for key in ("startBinding", "endBinding"):
            if key in element:
                binding = element[key]
                if not (isinstance(binding, dict) and _as_id(binding.get("elementId")) in ids):
                    del element[key]

    if "containerId" in element and _as_id(element["containerId"]) not in ids:
        del element["containerId"]

    if kind == "frame" and "children" in element:
        children = element["children"]
        if isinstance(children, list):
            element["children"] = [c for c in children if c in ids]
        else:
            del element["children"]

    if "boundElements" in element:
        bound = element["boundElements"]
        if isinstance(bound, list):
            element["boundElements"] = [
                b for b in bound if isinstance(b, dict) and _as_id(b.get("id")) in ids
            ]
        else:
            del element["boundElements"]


def _assign_ids(kept: list[tuple[int, dict]], stabilizer: IdentityStabilizer) -> set[str]:
    taken: set[str] = set()
    missing: list[tuple[int, dict]] = []
    # explicit ids first so generated ones never shadow them; first occurrence wins
    for index, element in kept:
        ident = _as_id(element.get("id"))
        if ident is None or ident in taken:
            missing.append((index, element))
            continue
        element["id"] = ident
        taken.add(ident)
    for index, element in missing:
        element["id"] = stabilizer.assign(element, index, taken)
        taken.add(element["id"])
    return taken


def _place_frame(frame: dict, children: list[dict]) -> bool:
    boxes = [element_box(c) for c in children if is_number(c.get("x")) and is_number(c.get("y"))]
    if not boxes:
        return False
    bounds = union_box(boxes, padding=FRAME_PADDING)
    frame["x"], frame["y"] = bounds.x, bounds.y
    frame["width"], frame["height"] = bounds.width, bounds.height
    return True


def _resolve_frames(kept: list[tuple[int, dict]], pending: set[str]) -> list[tuple[int, dict]]:
    """Normalize frame children and derive bounds for frames streamed without x/y.

    Nested pending frames are placed innermost first. Frames that end up with
    no placed children, or that only contain each other, are dropped.
    """
    by_id = {element["id"]: element for _, element in kept}
    for _, element in kept:
        children = element.get("children")
        if element["type"] == "frame" and isinstance(children, list):
            element["children"] = [
                c for c in (_as_id(c) for c in children)
                if c and c != element["id"] and c in by_id
            ]

    unresolved = set(pending)
    dropped: set[str] = set()
    while unresolved:
        ready = [
            ident for ident in unresolved
            if not any(c in unresolved for c in by_id[ident]["children"])
        ]
        if not ready:
            dropped |= unresolved
            break
        for ident in ready:
            frame = by_id[ident]
            if not _place_frame(frame, [by_id[c] for c in frame["children"] if c not in dropped]):
                dropped.add(ident)
            unresolved.discard(ident)

    if dropped:
        logger.debug("Dropped %d frame(s) without placeable children", len(dropped))
    return [(index, element) for index, element in kept if element["id"] not in dropped]


def sanitize_elements(
    candidates: Iterable | None,
    prior_ids: Iterable[str] | None = None,
    stabilizer: IdentityStabilizer | None = None,
) -> list[dict]:
    """Filter, coerce and cross-check decoded records.

    Args:
        candidates: Decoded records from the extractor, in stream order.
        prior_ids: Ids of the previously emitted snapshot (only used to log churn).
        stabilizer: Session-scoped id assigner. A positional one is used if omitted.

    Returns:
        New element dicts in input order; inputs are never mutated.
    """
    if not candidates:
        return []
    stabilizer = stabilizer or IdentityStabilizer()

    kept: list[tuple[int, dict]] = []
    pending_frames: list[dict] = []
    dropped = 0
    for index, candidate in enumerate(candidates):
        checked = _validate(candidate)
        if checked is None:
            dropped += 1
            continue
        element, needs_bounds = checked
        _coerce_presentation(element)
        kept.append((index, element))
        if needs_bounds:
            pending_frames.append(element)

    _assign_ids(kept, stabilizer)
    pending = {element["id"] for element in pending_frames}
    kept = _resolve_frames(kept, pending)

    ids = {element["id"] for _, element in kept}
    elements = []
    for _, element in kept:
        _repair_references(element, ids)
        elements.append(element)

    if dropped:
        logger.debug("Dropped %d of %d candidate record(s)", dropped, dropped + len(kept))
    if prior_ids is not None:
        lost = set(prior_ids) - ids
        if lost:
            logger.debug("%d id(s) from the previous snapshot are absent: %s", len(lost), sorted(lost)[:10])
    return elements
