"""Tests for closure repair and fence stripping."""

from __future__ import annotations

import json

import pytest

from smartdraw.stream.closure import repair_closure, strip_fences


class TestStripFences:
    def test_strips_json_fence(self):
        assert strip_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'

    def test_strips_bare_fence(self):
        assert strip_fences("```\n[1]\n```") == "[1]"

    def test_strips_opening_fence_only(self):
        assert strip_fences("```json\n[1, 2") == "[1, 2"

    def test_strips_partial_closing_fence(self):
        assert strip_fences("[1]\n``") == "[1]"

    def test_partial_opening_fence_is_empty(self):
        assert strip_fences("``") == ""
        assert strip_fences("```json") == ""

    def test_leaves_plain_json(self):
        assert strip_fences('  [{"a": 1}]  ') == '[{"a": 1}]'

    def test_backticks_inside_open_string_kept(self):
        assert strip_fences('[{"text":"code ```') == '[{"text":"code ```'
        assert strip_fences('```json\n[{"text":"a\n```') == '[{"text":"a\n```'


class TestRepairClosure:
    def test_valid_json_unchanged(self):
        buf = '[{"type": "rectangle", "x": 1, "y": 2}]\n'
        assert repair_closure(buf) == buf

    def test_empty(self):
        assert repair_closure("") == ""

    def test_no_structure_returns_text(self):
        assert repair_closure("Sure, here is") == "Sure, here is"

    def test_stray_quote(self):
        assert repair_closure('"') == '""'

    def test_closes_object_and_array(self):
        assert repair_closure('[{"type":"rectangle","x":1') == '[{"type":"rectangle","x":1}]'

    def test_closes_value_string(self):
        assert repair_closure('[{"type":"rect') == '[{"type":"rect"}]'

    def test_drops_partial_key(self):
        assert repair_closure('[{"type":"text","te') == '[{"type":"text"}]'

    def test_drops_key_without_value(self):
        assert repair_closure('[{"type":"text","x":') == '[{"type":"text"}]'
        assert repair_closure('[{"type":"text","x"') == '[{"type":"text"}]'

    def test_strips_trailing_comma(self):
        assert repair_closure('[{"a":1},') == '[{"a":1}]'
        assert repair_closure('[{"a":1,') == '[{"a":1}]'

    def test_completes_literal(self):
        assert repair_closure('[{"locked":tr') == '[{"locked":true}]'
        assert repair_closure('[{"link":nu') == '[{"link":null}]'

    def test_strips_partial_number(self):
        assert repair_closure('[{"x":1.') == '[{"x":1}]'
        assert repair_closure('[{"x":2e') == '[{"x":2}]'

    def test_drops_pending_backslash(self):
        assert repair_closure('[{"text":"a\\') == '[{"text":"a"}]'

    def test_drops_incomplete_unicode_escape(self):
        assert repair_closure('[{"text":"caf\\u00') == '[{"text":"caf"}]'

    def test_keeps_complete_unicode_escape(self):
        repaired = repair_closure('[{"text":"caf\\u00e9')
        assert json.loads(repaired) == [{"text": "café"}]

    def test_escaped_backslash_is_not_pending(self):
        repaired = repair_closure('[{"text":"a\\\\')
        assert json.loads(repaired) == [{"text": "a\\"}]

    def test_nested_label(self):
        repaired = repair_closure('[{"type":"rectangle","label":{"text":"Sta')
        assert json.loads(repaired) == [{"type": "rectangle", "label": {"text": "Sta"}}]

    def test_strips_fence_before_closing(self):
        assert repair_closure('```json\n[{"a":1') == '[{"a":1}]'

    def test_backticks_inside_string_stay_content(self):
        repaired = repair_closure('[{"text":"code ```')
        assert json.loads(repaired) == [{"text": "code ```"}]

    def test_ignores_mismatched_closer(self):
        repaired = repair_closure('[{"a":1]')
        assert repaired.endswith("}]")

    @pytest.mark.parametrize("buf", [
        '"',
        '[{"type":"rectangle","x":1',
        '[{"type":"text","te',
        '[{"locked":tr',
        '```json\n[{"a":1},',
        '[{"text":"caf\\u00',
        "prose only",
    ])
    def test_idempotent(self, buf):
        once = repair_closure(buf)
        assert repair_closure(once) == once
