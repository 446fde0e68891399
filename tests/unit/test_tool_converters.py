"""L1 Unit Tests: OpenAI tool format conversion."""

from storymem.llm.converters.tools import (
    _try_repair_json,
    convert_tool_calls_from_openai,
    convert_tools_to_openai,
)
from storymem.llm.types import Tool


class TestToolsToOpenAI:
    def test_shape(self):
        tools = [Tool(name="recall_character", description="d",
                      input_schema={"type": "object", "properties": {}})]
        assert convert_tools_to_openai(tools) == [{
            "type": "function",
            "function": {
                "name": "recall_character",
                "description": "d",
                "parameters": {"type": "object", "properties": {}},
            },
        }]


class TestToolCallsFromOpenAI:
    def test_arguments_decoded(self):
        calls = convert_tool_calls_from_openai([{
            "id": "call_1",
            "type": "function",
            "function": {"name": "recall_story_page", "arguments": '{"page_id": "pg_1"}'},
        }])
        assert len(calls) == 1
        assert calls[0].name == "recall_story_page"
        assert calls[0].arguments == {"page_id": "pg_1"}
        assert calls[0].id == "call_1"

    def test_missing_type_accepted(self):
        calls = convert_tool_calls_from_openai([
            {"function": {"name": "recall_character", "arguments": {"name": "Lyra"}}},
        ])
        assert calls[0].arguments == {"name": "Lyra"}

    def test_malformed_call_dropped_others_kept(self):
        calls = convert_tool_calls_from_openai([
            {"type": "function", "function": {"name": "recall_story_page", "arguments": "not json"}},
            {"type": "function", "function": {"name": "recall_character", "arguments": '{"name": "Kai"}'}},
            {"type": "function", "function": {"name": "search_by_day", "arguments": "[1, 2]"}},
            {"type": "function", "function": {"arguments": "{}"}},
            "garbage",
        ])
        assert [c.name for c in calls] == ["recall_character"]

    def test_truncated_arguments_repaired(self):
        calls = convert_tool_calls_from_openai([
            {"type": "function", "function": {"name": "search_by_keyword", "arguments": '{"keyword": "酒馆'}},
        ])
        assert calls[0].arguments == {"keyword": "酒馆"}


def test_repair_gives_up_on_non_objects():
    assert _try_repair_json("[1, 2") is None
    assert _try_repair_json("") is None
