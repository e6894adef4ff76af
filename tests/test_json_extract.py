from __future__ import annotations

import allure
import pytest

from inbox_pilot.content.json_extract import (
    JsonExtractionError,
    extract_balanced,
    extract_json,
    parse_json_payload,
)

pytestmark = [
    allure.epic("Content Pipelines"),
    allure.feature("JSON Recovery"),
]


def test_plain_json_reply() -> None:
    assert extract_json('  {"a": 1}  ') == {"a": 1}


def test_fenced_block_inside_prose() -> None:
    reply = 'Sure, here it is:\n\n```json\n{"title": "T", "sections": []}\n```\nHope that helps.'

    assert extract_json(reply) == {"title": "T", "sections": []}


def test_four_backtick_fence_wins_over_nested_three_backtick_fence() -> None:
    reply = '````json\n{"article": "Intro\\n```python\\nprint(1)\\n```\\nEnd"}\n````'

    assert extract_json(reply) == {"article": "Intro\n```python\nprint(1)\n```\nEnd"}


def test_balanced_object_is_found_in_free_text() -> None:
    reply = 'Result: {"items": [1, {"nested": "}"}]} trailing words'

    assert extract_json(reply) == {"items": [1, {"nested": "}"}]}


def test_first_parsing_candidate_wins() -> None:
    reply = '```json\n{"first": true}\n```\n```json\n{"second": true}\n```'

    assert extract_json(reply) == {"first": True}


def test_truncated_json_is_repaired_when_nothing_else_parses() -> None:
    reply = '```json\n{"topic": "cut off", "key_points": ["one", "tw'

    assert extract_json(reply) == {"topic": "cut off", "key_points": ["one", "tw"]}


@pytest.mark.parametrize("reply", ["", "   ", "no json at all", "{{{ not json"])
def test_unrecoverable_reply_raises(reply: str) -> None:
    with pytest.raises(JsonExtractionError):
        extract_json(reply)


def test_extract_balanced_returns_only_parsing_spans() -> None:
    assert extract_balanced("x [1, 2] y") == "[1, 2]"
    assert extract_balanced('pre {"a": [1, 2') is None
    assert extract_balanced("nothing here") is None


@pytest.mark.parametrize(
    "reply",
    [
        'Based on my search [draft notes] here is the plan:\n{"topic": "t", "key_points": ["a"]}',
        'Findings from source [1]:\n{"topic": "t", "key_points": ["a"]}',
        'See {braces in prose} then {"topic": "t", "key_points": ["a"]}',
    ],
)
def test_bracketed_notes_before_the_object_are_skipped(reply: str) -> None:
    assert extract_json(reply) == {"topic": "t", "key_points": ["a"]}


def test_enclosing_array_wins_over_its_first_record() -> None:
    reply = 'Sources [1] and [2] give:\n[{"url": "a"}, {"url": "b"}] as records'

    assert extract_json(reply) == [{"url": "a"}, {"url": "b"}]


def test_truncated_object_after_citation_is_repaired() -> None:
    reply = 'Per [1]: {"topic": "cut off", "key_points": ["one'

    assert extract_json(reply) == {"topic": "cut off", "key_points": ["one"]}


def test_parse_json_payload_is_strict() -> None:
    assert parse_json_payload('{"post": "hi"}') == (True, {"post": "hi"})
    assert parse_json_payload('```json\n["a"]\n```') == (True, ["a"])
    assert parse_json_payload('Text before {"post": "hi"}') == (False, None)
    assert parse_json_payload('{"post": "cut') == (False, None)
