"""Tests for chime/core/parsing.py"""

import pytest

from chime.core.parsing import parse_json_object, strip_code_fence


@pytest.mark.parametrize(
    "raw,expected",
    [
        ('```json\n{"a": 1}\n```', '{"a": 1}'),
        ('```\n{"a": 1}\n```', '{"a": 1}'),
        ('  {"a": 1}  ', '{"a": 1}'),
        ("no fence", "no fence"),
    ],
)
def test_strip_code_fence(raw, expected):
    assert strip_code_fence(raw) == expected


def test_parse_object():
    assert parse_json_object('```json\n{"shouldEngage": true}\n```') == {"shouldEngage": True}


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]", '"just a string"', "{broken"])
def test_parse_rejects_non_objects(raw):
    assert parse_json_object(raw) is None
