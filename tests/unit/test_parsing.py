"""Unit tests for decoding model responses into plan objects."""

import sys
from pathlib import Path

_root = Path(__file__).resolve().parent.parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

import pytest
from cowork.utils.parsing import decode_plan


class TestDecodePlan:

    @pytest.mark.parametrize("text", [
        '{"goal": "g", "steps": []}',
        'Here you go:\n```json\n{"goal": "g", "steps": []}\n```',
        '```\n{"goal": "g", "steps": []}\n```',
        'The plan is {"goal": "g", "steps": []} as requested.',
        '<think>maybe {"goal": "wrong"}</think>{"goal": "g", "steps": []}',
    ])
    def test_decodes(self, text):
        assert decode_plan(text) == {"goal": "g", "steps": []}

    def test_braces_inside_strings(self):
        text = 'Plan: {"goal": "use {braces}", "steps": []} done'
        assert decode_plan(text)["goal"] == "use {braces}"

    def test_nested_objects(self):
        text = 'ok: {"goal": "g", "steps": [{"type": "readFiles", "params": {"path": "."}}]}'
        assert decode_plan(text)["steps"][0]["params"] == {"path": "."}

    @pytest.mark.parametrize("text", ["", None, "no json at all", "[1, 2, 3]", "{broken"])
    def test_returns_none(self, text):
        assert decode_plan(text) is None
