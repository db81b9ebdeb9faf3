"""Tests for chatrelay.llm.tool_call_assembler.ToolCallAssembler."""

from __future__ import annotations

import json

from chatrelay.llm.tool_call_assembler import ToolCallAssembler
from chatrelay.llm.types import RawToolDelta


class TestSingleToolCall:
    """Assemble a single tool call from incremental deltas."""

    def test_openai_style_fragments(self):
        asm = ToolCallAssembler()

        # First fragment carries id and name, the rest carry argument text.
        assert asm.feed(RawToolDelta(call_index=0, id="call_1", name_delta="web_")) == []
        assert asm.feed(RawToolDelta(call_index=0, name_delta="search")) == []
        assert asm.feed(RawToolDelta(call_index=0, args_delta='{"query": ')) == []
        assert asm.feed(RawToolDelta(call_index=0, args_delta='"weather in Oslo"}')) == []
        assert asm.pending

        result = asm.feed(RawToolDelta(call_index=0, done=True))
        assert len(result) == 1
        tc = result[0]
        assert tc.id == "call_1"
        assert tc.name == "web_search"
        assert tc.arguments == {"query": "weather in Oslo"}
        assert not asm.pending

    def test_gemini_style_single_delta(self):
        """Gemini delivers whole function calls at once."""
        asm = ToolCallAssembler()
        result = asm.feed(
            RawToolDelta(
                call_index=0,
                id="call_x",
                name_delta="web_search",
                args_delta='{"query": "news"}',
                done=True,
            )
        )
        assert len(result) == 1
        assert result[0].arguments == {"query": "news"}
        assert asm.errors == []

    def test_anthropic_block_indices(self):
        """Tool-use blocks keep their content-block index, which need not start at 0."""
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=1, id="toolu_1", name_delta="web_search"))
        asm.feed(RawToolDelta(call_index=1, args_delta=""))
        asm.feed(RawToolDelta(call_index=1, args_delta='{"query":'))
        asm.feed(RawToolDelta(call_index=1, args_delta=' "rust"}'))
        result = asm.feed(RawToolDelta(call_index=1, done=True))
        assert [tc.id for tc in result] == ["toolu_1"]
        assert result[0].arguments == {"query": "rust"}

    def test_later_id_does_not_replace_first(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="first", name_delta="echo"))
        asm.feed(RawToolDelta(call_index=0, id="second", args_delta="{}"))
        result = asm.feed(RawToolDelta(call_index=0, done=True))
        assert result[0].id == "first"


class TestParallelToolCalls:
    def test_interleaved_calls(self):
        asm = ToolCallAssembler()
        for idx in range(3):
            asm.feed(RawToolDelta(call_index=idx, id=f"c{idx}", name_delta=f"tool_{idx}"))
        for idx in range(3):
            asm.feed(RawToolDelta(call_index=idx, args_delta=json.dumps({"idx": idx})))

        calls = []
        for idx in range(3):
            calls.extend(asm.feed(RawToolDelta(call_index=idx, done=True)))

        assert [tc.name for tc in calls] == ["tool_0", "tool_1", "tool_2"]
        assert [tc.arguments["idx"] for tc in calls] == [0, 1, 2]


class TestMalformedArguments:
    def test_invalid_json_is_dropped_and_recorded(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="bad", name_delta="broken"))
        asm.feed(RawToolDelta(call_index=0, args_delta='{"key": "val'))
        result = asm.feed(RawToolDelta(call_index=0, done=True))

        assert result == []
        assert len(asm.errors) == 1
        assert "tool_call_json_parse_failed" in asm.errors[0]
        assert "idx=0" in asm.errors[0]

    def test_non_object_arguments_are_dropped(self):
        asm = ToolCallAssembler()
        result = asm.feed(
            RawToolDelta(call_index=0, id="arr", name_delta="t", args_delta="[1, 2]", done=True)
        )
        assert result == []
        assert asm.errors == ["tool_call_args_not_object idx=0"]

    def test_malformed_does_not_block_valid_calls(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="bad", name_delta="broken", args_delta="{BAD"))
        asm.feed(RawToolDelta(call_index=1, id="good", name_delta="ok", args_delta='{"a": 1}'))

        assert asm.feed(RawToolDelta(call_index=0, done=True)) == []
        good = asm.feed(RawToolDelta(call_index=1, done=True))
        assert [tc.name for tc in good] == ["ok"]


class TestFlush:
    """flush() finalizes whatever is still buffered at step end."""

    def test_flush_in_index_order(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=1, id="b", name_delta="beta", args_delta='{"v": 2}'))
        asm.feed(RawToolDelta(call_index=0, id="a", name_delta="alpha", args_delta='{"v": 1}'))

        result = asm.flush()
        assert [tc.name for tc in result] == ["alpha", "beta"]
        assert not asm.pending

    def test_flush_with_bad_json(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="f1", name_delta="bad", args_delta="NOPE"))
        assert asm.flush() == []
        assert len(asm.errors) == 1

    def test_flush_on_empty_assembler(self):
        assert ToolCallAssembler().flush() == []


class TestDefaults:
    def test_missing_arguments_default_to_empty_object(self):
        asm = ToolCallAssembler()
        result = asm.feed(RawToolDelta(call_index=0, id="n", name_delta="simple", done=True))
        assert result[0].arguments == {}

    def test_missing_id_is_generated(self):
        asm = ToolCallAssembler()
        result = asm.feed(
            RawToolDelta(call_index=7, name_delta="no_id", args_delta="{}", done=True)
        )
        assert result[0].id.startswith("call_")
        assert len(result[0].id) > len("call_")

    def test_name_whitespace_is_stripped(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="ws", name_delta="  web_"))
        result = asm.feed(RawToolDelta(call_index=0, name_delta="search ", done=True))
        assert result[0].name == "web_search"

    def test_reset_clears_buffers_and_errors(self):
        asm = ToolCallAssembler()
        asm.feed(RawToolDelta(call_index=0, id="x", name_delta="left_over"))
        asm.feed(RawToolDelta(call_index=1, id="y", name_delta="bad", args_delta="INVALID", done=True))
        assert len(asm.errors) == 1

        asm.reset()
        assert asm.errors == []
        assert asm.flush() == []
