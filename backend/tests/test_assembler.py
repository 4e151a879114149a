"""Tests for content assembly."""

from app.schemas.content import is_canonical_order, parse_parts, dump_parts
from app.services.generation.assembler import assemble_content, recover_partial_content
from app.services.generation.records import GeneratedFile, ToolCall, ToolResult


class TestAssembleContent:
    def test_canonical_order(self):
        parts = assemble_content(
            tool_calls=[ToolCall("c1", "brave_web_search", {"query": "q"})],
            tool_results=[ToolResult("c1", "brave_web_search", {"results": []})],
            reasoning="thinking",
            text="answer",
            files=[GeneratedFile("image/png", "AAAA")],
        )
        assert [p.type for p in parts] == ["tool-invocation", "reasoning", "text", "generated-file"]
        assert is_canonical_order(parts)
        assert parts[3].data == "data:image/png;base64,AAAA"

    def test_results_matched_by_call_id(self):
        parts = assemble_content(
            tool_calls=[ToolCall("c1", "a"), ToolCall("c2", "b")],
            tool_results=[ToolResult("c2", "b", {"ok": 2}), ToolResult("c1", "a", {"ok": 1})],
        )
        assert [(p.tool_call_id, p.result) for p in parts] == [("c1", {"ok": 1}), ("c2", {"ok": 2})]
        assert all(p.state == "result" for p in parts)

    def test_unmatched_call_kept_with_null_result(self):
        parts = assemble_content(
            tool_calls=[ToolCall("c1", "youtube_search", {"query": "cats"})],
            text="done",
        )
        assert parts[0].type == "tool-invocation"
        assert parts[0].state == "call"
        assert parts[0].result is None
        assert parts[0].args == {"query": "cats"}
        assert parts[1].type == "text"

    def test_empty_input_is_empty_list(self):
        assert assemble_content() == []

    def test_json_shape_survives_storage(self):
        parts = assemble_content(tool_calls=[ToolCall("c1", "a")], text="hi")
        stored = dump_parts(parts)
        assert stored[0]["result"] is None
        assert parse_parts(stored) == parts


class TestRecoverPartialContent:
    def test_reasoning_before_text(self):
        parts = recover_partial_content("why", "Hello, wo")
        assert [(p.type, p.text) for p in parts] == [("reasoning", "why"), ("text", "Hello, wo")]

    def test_nothing_to_recover(self):
        assert recover_partial_content("", "") == []


class TestCanonicalOrder:
    def test_rejects_text_before_reasoning(self):
        parts = parse_parts([{"type": "text", "text": "a"}, {"type": "reasoning", "text": "b"}])
        assert not is_canonical_order(parts)
