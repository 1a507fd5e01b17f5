"""Tests for the post-stream optimizer."""

from __future__ import annotations

import copy
import json

from smartdraw.elements.optimize import MIN_GAP, optimize_code, optimize_elements


def _shape(ident: str, x: float, y: float, w: float = 100, h: float = 100, kind: str = "rectangle", **kw) -> dict:
    return {"id": ident, "type": kind, "x": x, "y": y, "width": w, "height": h, **kw}


def _arrow(ident: str = "arr", **kw) -> dict:
    return {"id": ident, "type": "arrow", "x": 0, "y": 0, "width": 100, "height": 0, **kw}


class TestSeparateOverlaps:
    def test_pushes_overlapping_shape_apart(self):
        a, b = optimize_elements([_shape("a", 0, 0), _shape("b", 50, 0)])
        assert (a["x"], a["y"]) == (0, 0)
        assert (b["x"], b["y"]) == (100 + MIN_GAP, 0)

    def test_disjoint_shapes_untouched(self):
        elements = [_shape("a", 0, 0), _shape("b", 300, 0)]
        assert optimize_elements(elements) == elements

    def test_nested_shapes_untouched(self):
        elements = [_shape("outer", 0, 0, 300, 300), _shape("inner", 50, 50, 50, 50)]
        assert optimize_elements(elements) == elements

    def test_locked_shape_untouched(self):
        elements = [_shape("a", 0, 0), _shape("b", 50, 0, locked=True)]
        assert optimize_elements(elements) == elements

    def test_grouped_shapes_untouched(self):
        elements = [_shape("a", 0, 0, groupIds=["g"]), _shape("b", 50, 0, groupIds=["g"])]
        assert optimize_elements(elements) == elements

    def test_frame_siblings_untouched(self):
        elements = [
            {"id": "f", "type": "frame", "x": -10, "y": -10, "width": 200, "height": 130, "children": ["a", "b"]},
            _shape("a", 0, 0),
            _shape("b", 50, 0),
        ]
        assert optimize_elements(elements) == elements


class TestArrows:
    def test_reroutes_bound_arrow_to_edges(self):
        elements = [
            _shape("a", 0, 0),
            _shape("b", 300, 0),
            _arrow(start={"id": "a"}, end={"id": "b"}, points=[[0, 0], [10, 10]]),
        ]
        arrow = optimize_elements(elements)[2]
        assert (arrow["x"], arrow["y"]) == (100, 50)
        assert (arrow["width"], arrow["height"]) == (200, 0)
        assert "points" not in arrow

    def test_settles_inline_descriptor(self):
        elements = [
            _shape("r", 290, -20),
            _arrow(width=300, end={"type": "rectangle"}),
        ]
        arrow = optimize_elements(elements)[1]
        assert arrow["end"] == {"id": "r"}
        assert (arrow["x"], arrow["y"]) == (0, 0)
        assert (arrow["width"], arrow["height"]) == (290, 30)

    def test_descriptor_without_match_kept(self):
        elements = [_shape("r", 900, 900), _arrow(end={"type": "ellipse"})]
        arrow = optimize_elements(elements)[1]
        assert arrow["end"] == {"type": "ellipse"}

    def test_unbound_and_self_loop_untouched(self):
        elements = [
            _shape("a", 0, 0),
            _arrow("free", x=500, y=500),
            _arrow("loop", start={"id": "a"}, end={"id": "a"}),
        ]
        assert optimize_elements(elements) == elements

    def test_malformed_points_fall_back_to_size(self):
        elements = [
            _shape("r", 290, -20),
            _arrow(width=300, end={"type": "rectangle"}, points=[{"x": 0, "y": 0}, {"x": 300, "y": 0}]),
        ]
        arrow = optimize_elements(elements)[1]
        assert arrow["end"] == {"id": "r"}
        assert (arrow["width"], arrow["height"]) == (290, 30)

    def test_native_binding(self):
        elements = [
            _shape("a", 0, 0),
            _shape("b", 0, 300),
            _arrow(startBinding={"elementId": "a"}, endBinding={"elementId": "b"}),
        ]
        arrow = optimize_elements(elements)[2]
        assert (arrow["x"], arrow["y"]) == (50, 100)
        assert (arrow["width"], arrow["height"]) == (0, 200)


class TestOptimizeElements:
    def test_does_not_mutate_input(self):
        elements = [_shape("a", 0, 0), _shape("b", 50, 0)]
        before = copy.deepcopy(elements)
        optimize_elements(elements)
        assert elements == before


class TestOptimizeCode:
    def test_returns_formatted_elements(self):
        code = optimize_code('[{"type":"rectangle","x":0,"y":0},{"type":"ellipse","x":30,"y":0}]')
        elements = json.loads(code)
        assert [e["id"] for e in elements] == ["stream_0", "stream_1"]
        assert elements[1]["x"] == 100 + MIN_GAP
        assert code.startswith("[\n  {")

    def test_unparseable_code_unchanged(self):
        assert optimize_code("not a diagram") == "not a diagram"
