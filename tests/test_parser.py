"""Tests for model reply parsing and repair."""

import json

import pytest

from codeagent.actions import AgentResponse, CreateFile, DeleteFile, EditFile
from codeagent.errors import ResponseParseError
from codeagent.parser import (
    ResponseParser,
    complete_truncated,
    extract_candidate,
    first_success,
    parse_direct,
    strip_trailing_commas,
)

VALID = {
    "analysis": "Add a footer",
    "actions": [
        {
            "type": "create_file",
            "path": "src/components/Footer.jsx",
            "content": "export default function Footer() {\n  return <footer>Hi</footer>;\n}\n",
            "reason": "New component",
        }
    ],
    "explanation": "Created the footer.",
}


@pytest.fixture
def parser():
    return ResponseParser()


def test_parse_valid_json(parser):
    """Test well-formed replies parse directly."""
    outcome = parser.parse(json.dumps(VALID))

    assert outcome.ok
    assert outcome.strategy == "direct"
    action = outcome.response.actions[0]
    assert isinstance(action, CreateFile)
    assert action.path == "src/components/Footer.jsx"
    assert action.content == VALID["actions"][0]["content"]


def test_round_trip(parser):
    """Test serializing a response and parsing it back yields an equal response."""
    original = AgentResponse.model_validate({
        "analysis": "Several changes",
        "actions": [
            {"type": "create_file", "path": "a.js", "content": "const a = \"1\";\n"},
            {"type": "edit_file", "path": "b.js", "content": "b", "dependencies": ["a.js"]},
            {"type": "delete_file", "path": "c.js", "reason": "unused"},
            {"type": "create_folder", "path": "lib"},
        ],
        "explanation": "Done",
    })
    outcome = parser.parse(original.model_dump_json())

    assert outcome.ok
    assert outcome.response == original


def test_content_with_code_fence(parser):
    """Test a markdown fence inside file content does not hide the reply object."""
    original = AgentResponse.model_validate({
        "analysis": "Add a README",
        "actions": [{
            "type": "create_file",
            "path": "README.md",
            "content": "# Demo\n\n```js\nfunction a() { return 1; }\n```\n",
        }],
        "explanation": "",
    })

    for raw in (
        original.model_dump_json(),
        "Here you go:\n```json\n" + original.model_dump_json(indent=2) + "\n```",
    ):
        outcome = parser.parse(raw)
        assert outcome.ok, outcome.error
        assert outcome.response == original


def test_parse_fenced_reply_with_prose(parser):
    raw = "Sure! Here is the plan:\n```json\n" + json.dumps(VALID, indent=2) + "\n```\nLet me know."
    outcome = parser.parse(raw)

    assert outcome.ok
    assert len(outcome.response.actions) == 1


def test_parse_trailing_commas(parser):
    raw = '{"analysis": "x", "actions": [{"type": "delete_file", "path": "old.js",},], "explanation": "",}'
    outcome = parser.parse(raw)

    assert outcome.strategy == "cleanup"
    assert isinstance(outcome.response.actions[0], DeleteFile)


def test_parse_unescaped_quotes_in_content(parser):
    """Test stray quotes inside file content are escaped."""
    raw = (
        '{"analysis":"x","actions":[{"type":"edit_file","path":"a.js",'
        '"content":"const s = "hi";"}],"explanation":"e"}'
    )
    outcome = parser.parse(raw)

    assert outcome.strategy == "content_fix"
    assert isinstance(outcome.response.actions[0], EditFile)
    assert outcome.response.actions[0].content == 'const s = "hi";'


def test_parse_truncated_reply(parser):
    """Test a reply cut off before its closing brackets is completed."""
    raw = '{"analysis":"x","actions":[{"type":"create_file","path":"a.js","content":"1"'
    outcome = parser.parse(raw)

    assert outcome.ok
    assert outcome.strategy == "truncation_repair"
    assert outcome.response.actions == [CreateFile(path="a.js", content="1")]


def test_parse_bare_keys(parser):
    outcome = parser.parse('{analysis: "x", actions: [], explanation: "e"}')

    assert outcome.ok
    assert outcome.strategy == "aggressive_repair"
    assert outcome.response.analysis == "x"


@pytest.mark.parametrize("raw", [
    "I cannot help with that.",
    "{{{{",
    '{"analysis": }',
    "```json\n```",
])
def test_unrecoverable_input_falls_back(parser, raw):
    """Test garbage never raises and never yields actions."""
    outcome = parser.parse(raw)

    assert not outcome.ok
    assert outcome.response.actions == []
    assert outcome.response.analysis.startswith("Failed to parse AI response")
    assert "No files will be created automatically" in outcome.response.explanation


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_empty_input_falls_back(parser, raw):
    outcome = parser.parse(raw)
    assert outcome.error == "empty response"
    assert outcome.response.actions == []


def test_non_object_falls_back(parser):
    outcome = parser.parse("[1, 2, 3]")
    assert outcome.error == "response is not a JSON object"
    assert outcome.response.actions == []


@pytest.mark.parametrize("action", [
    {"type": "rename_file", "path": "a.js"},
    {"type": "create_file", "path": "a.js"},
    {"type": "create_file", "path": "", "content": "x"},
    {"path": "a.js", "content": "x"},
])
def test_invalid_actions_fall_back(parser, action):
    """Test schema violations produce the empty fallback."""
    raw = json.dumps({"analysis": "x", "actions": [action], "explanation": ""})
    outcome = parser.parse(raw)

    assert not outcome.ok
    assert "actions" in outcome.error
    assert outcome.response.actions == []


def test_missing_analysis_falls_back(parser):
    outcome = parser.parse(json.dumps({"analysis": "  ", "actions": []}))
    assert not outcome.ok


def test_action_normalization(parser):
    """Test path normalization, ignored extras and optional fields."""
    raw = json.dumps({
        "analysis": "x",
        "actions": [{"type": "delete_file", "path": "./src\\old.js", "content": "ignored", "reason": None}],
        "explanation": None,
    })
    action = parser.parse(raw).response.actions[0]

    assert action.path == "src/old.js"
    assert action.reason == ""
    assert not hasattr(action, "content")


def test_extract_candidate():
    assert extract_candidate('Result: {"a": 1} done') == '{"a": 1}'
    assert extract_candidate('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert extract_candidate('```json\n{"a": [1') == '{"a": [1'


def test_strip_trailing_commas_leaves_strings():
    assert strip_trailing_commas('{"a": "x,}", "b": [1, 2,],}') == '{"a": "x,}", "b": [1, 2]}'


def test_complete_truncated_drops_dangling_key():
    assert json.loads(complete_truncated('{"analysis":"x","actions":[],"expl')) == {"analysis": "x", "actions": []}
    assert json.loads(complete_truncated('{"analysis":"x","explanation":')) == {"analysis": "x"}


def test_first_success_raises_when_all_fail():
    decode = first_success([("direct", parse_direct)])
    assert decode('{"a": 1}') == ("direct", {"a": 1})
    with pytest.raises(ResponseParseError):
        decode("not json")
