import json

import pytest

from taskmesh.tasks.parsing import (
    ResponseFormatError,
    decode_subtasks,
    decode_verdict,
    extract_json_array,
    extract_json_object,
)


def test_extract_array_from_surrounding_prose():
    text = 'Here is the plan:\n[{"title": "A"}]\nLet me know if you need more.'
    assert extract_json_array(text) == [{"title": "A"}]


def test_extract_array_skips_malformed_brackets():
    text = "Steps [see below] and then: [1, 2, 3]"
    assert extract_json_array(text) == [1, 2, 3]


def test_extract_array_without_json_raises():
    with pytest.raises(ResponseFormatError):
        extract_json_array("I am unable to help with that.")


def test_extract_object_ignores_arrays():
    assert extract_json_object('[1] then {"isValid": true}') == {"isValid": True}


def test_decode_subtasks_accepts_camel_case_and_normalizes():
    text = json.dumps(
        [
            {
                "title": "  Research  ",
                "description": "Collect facts",
                "requiredCapabilities": ["research", " "],
                "dependencies": [],
                "complexity": 9,
                "expectedOutput": "notes",
            },
            {
                "title": "Draft",
                "description": "Write it",
                "dependencies": [1, "Research"],
                "complexity": 0,
            },
        ]
    )
    first, second = decode_subtasks(text)
    assert first.title == "Research"
    assert first.required_capabilities == ["research"]
    assert first.complexity == 5
    assert first.expected_output == "notes"
    assert second.dependencies == ["1", "Research"]
    assert second.complexity == 1
    assert second.required_capabilities == []


def test_decode_subtasks_rejects_whole_batch_on_bad_element():
    text = json.dumps([{"title": "A", "description": "fine"}, {"title": "B"}])
    with pytest.raises(ResponseFormatError, match="index 1"):
        decode_subtasks(text)


def test_decode_subtasks_rejects_non_numeric_complexity():
    text = json.dumps([{"title": "A", "description": "x", "complexity": "high"}])
    with pytest.raises(ResponseFormatError, match="complexity"):
        decode_subtasks(text)


def test_decode_subtasks_rejects_empty_plan():
    with pytest.raises(ResponseFormatError, match="empty"):
        decode_subtasks("[]")


def test_decode_verdict():
    verdict = decode_verdict(
        'Review: {"isValid": false, "feedback": "too short", "suggestedImprovements": "add examples"}'
    )
    assert verdict.is_valid is False
    assert verdict.feedback == "too short"
    assert verdict.suggested_improvements == ["add examples"]


def test_decode_verdict_requires_real_boolean():
    with pytest.raises(ResponseFormatError):
        decode_verdict('{"isValid": "true", "feedback": "ok"}')


def test_decode_verdict_requires_is_valid():
    with pytest.raises(ResponseFormatError):
        decode_verdict('{"feedback": "looks fine"}')
