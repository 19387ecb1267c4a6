"""
Tests for ContextManager - history, contextual prompts and summarization.

Summarization is destructive on success and must leave the history
untouched on failure.
"""

import pytest

from mcphost.config import ContextConfig
from mcphost.context import SUMMARY_INSTRUCTION, ContextManager
from mcphost.types import Role, ToolFailure, ToolMessageStateError, ToolSuccess


class MockGenerator:
    """Returns a fixed summary and records prompts."""

    def __init__(self, output: str = '{"response":"Short summary."}') -> None:
        self.output = output
        self.prompts: list[str] = []

    async def generate_text(self, prompt: str, model: str) -> str:
        self.prompts.append(prompt)
        return self.output

    async def generate_stream(self, prompt: str, model: str):
        yield self.output


class FailingGenerator:
    async def generate_text(self, prompt: str, model: str) -> str:
        raise ConnectionError("backend down")

    async def generate_stream(self, prompt: str, model: str):
        raise ConnectionError("backend down")
        yield ""


class TestTokenEstimation:
    """Test token estimation (approximate: chars / 4)."""

    def test_estimate_tokens_basic(self) -> None:
        cm = ContextManager(config=ContextConfig(chars_per_token=4.0))

        assert cm.estimate_tokens("hello") == 1
        assert cm.estimate_tokens("a" * 100) == 25

    def test_estimate_respects_config(self) -> None:
        cm = ContextManager(config=ContextConfig(chars_per_token=2.0))
        assert cm.estimate_tokens("hello") == 2


class TestShouldSummarize:
    """Threshold checks on the accumulated history."""

    def test_crosses_threshold(self) -> None:
        cm = ContextManager(config=ContextConfig(summarize_threshold=10))

        cm.add_message(Role.USER, "a" * 40)
        assert not cm.should_summarize()

        cm.add_message(Role.ASSISTANT, "b" * 4)
        assert cm.should_summarize()

    def test_false_after_clear(self) -> None:
        cm = ContextManager(config=ContextConfig(summarize_threshold=1))
        cm.add_message(Role.USER, "x" * 100)
        assert cm.should_summarize()

        cm.clear()
        assert not cm.should_summarize()

    def test_empty_context_never_summarizes(self) -> None:
        cm = ContextManager(config=ContextConfig(summarize_threshold=0))
        assert not cm.should_summarize()


class TestContextualPrompt:
    """Rendering of summary, recent window and the new user turn."""

    def test_disabled_passes_through(self) -> None:
        cm = ContextManager(config=ContextConfig(enabled=False))
        cm.add_message(Role.USER, "earlier")

        assert cm.get_contextual_prompt("What time is it?") == "What time is it?"

    def test_empty_history(self) -> None:
        cm = ContextManager(config=ContextConfig())
        assert cm.get_contextual_prompt("hi") == "User: hi"

    def test_window_keeps_most_recent(self) -> None:
        cm = ContextManager(config=ContextConfig(window=2))
        cm.add_message(Role.USER, "one")
        cm.add_message(Role.ASSISTANT, "two")
        cm.add_message(Role.USER, "three")

        prompt = cm.get_contextual_prompt("four")

        assert prompt == "assistant: two\nuser: three\n\nUser: four"

    def test_summary_line_first(self) -> None:
        cm = ContextManager(config=ContextConfig())
        cm.state.summary = "We talked about files."
        cm.add_message(Role.USER, "next")

        prompt = cm.get_contextual_prompt("go on")

        assert prompt.startswith("Previous context summary: We talked about files.")
        assert prompt.endswith("User: go on")

    def test_tool_messages_render_as_triples(self) -> None:
        cm = ContextManager(config=ContextConfig())
        cm.add_tool_use("calculate", {"expression": "1+1"})
        cm.add_tool_result("calculate", ToolSuccess({"result": 2}))
        cm.add_tool_use("read_file", {"path": "/x"})
        cm.add_tool_result("read_file", ToolFailure("not found"))

        prompt = cm.get_contextual_prompt("ok?")

        assert 'Tool: calculate\nInput: {"expression": "1+1"}\nResult: {"result": 2}' in prompt
        assert "Tool: read_file" in prompt
        assert "Result: Error: not found" in prompt


class TestToolMessages:
    """Pending -> resolved transitions of tool messages."""

    def test_resolve_most_recent_pending(self) -> None:
        cm = ContextManager(config=ContextConfig())
        first = cm.add_tool_use("calculate", {"expression": "1"})
        second = cm.add_tool_use("calculate", {"expression": "2"})

        resolved = cm.add_tool_result("calculate", ToolSuccess(2))

        assert resolved is second
        assert second.tool_result == ToolSuccess(2)
        assert first.is_pending

    def test_result_without_pending_is_noop(self) -> None:
        cm = ContextManager(config=ContextConfig())
        cm.add_message(Role.USER, "hi")

        assert cm.add_tool_result("calculate", ToolSuccess(1)) is None
        assert len(cm.messages) == 1

    def test_resolving_twice_is_illegal(self) -> None:
        cm = ContextManager(config=ContextConfig())
        message = cm.add_tool_use("calculate", {})
        message.resolve(ToolSuccess(1))

        with pytest.raises(ToolMessageStateError):
            message.resolve(ToolSuccess(2))

    def test_cancel_pending(self) -> None:
        cm = ContextManager(config=ContextConfig())
        message = cm.add_tool_use("slow_tool", {})

        assert cm.cancel_pending() == 1
        assert isinstance(message.tool_result, ToolFailure)
        assert message.tool_result.error == "cancelled"
        assert cm.pending_tool_messages() == []

    def test_add_message_rejects_tool_role(self) -> None:
        cm = ContextManager(config=ContextConfig())
        with pytest.raises(ValueError):
            cm.add_message(Role.TOOL, "nope")


class TestSummarize:
    """Summarization replaces history with a generated summary."""

    @pytest.mark.asyncio
    async def test_summarize_replaces_history(self) -> None:
        generator = MockGenerator()
        cm = ContextManager(generator, ContextConfig(), default_model="m")
        cm.add_message(Role.USER, "What is in /tmp?")
        cm.add_message(Role.ASSISTANT, "Two files.")

        assert await cm.summarize()

        assert cm.summary == "Short summary."
        assert cm.messages == []
        [prompt] = generator.prompts
        assert prompt.startswith(SUMMARY_INSTRUCTION)
        assert "user: What is in /tmp?" in prompt
        assert "assistant: Two files." in prompt

    @pytest.mark.asyncio
    async def test_previous_summary_folded_in(self) -> None:
        generator = MockGenerator()
        cm = ContextManager(generator, ContextConfig())
        cm.state.summary = "Earlier facts."
        cm.add_message(Role.USER, "more")

        await cm.summarize()

        assert "Previous summary: Earlier facts." in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_failure_leaves_history_untouched(self) -> None:
        cm = ContextManager(FailingGenerator(), ContextConfig())
        cm.add_message(Role.USER, "keep me")

        assert await cm.summarize() is False

        assert [m.content for m in cm.messages] == ["keep me"]
        assert cm.summary is None

    @pytest.mark.asyncio
    async def test_empty_summary_keeps_history(self) -> None:
        cm = ContextManager(MockGenerator('{"response":"   "}'), ContextConfig())
        cm.add_message(Role.USER, "keep me")

        assert await cm.summarize() is False
        assert len(cm.messages) == 1

    @pytest.mark.asyncio
    async def test_nothing_to_summarize(self) -> None:
        generator = MockGenerator()
        cm = ContextManager(generator, ContextConfig())

        assert await cm.summarize() is False
        assert generator.prompts == []


class TestDebugViews:
    """Inspection helpers."""

    def test_debug_info(self) -> None:
        cm = ContextManager(config=ContextConfig(summarize_threshold=2000))
        cm.add_message(Role.USER, "hello")
        cm.add_tool_use("calculate", {})

        info = cm.get_debug_info()

        assert info["message_count"] == 2
        assert info["pending_tool_messages"] == 1
        assert info["should_summarize"] is False
        assert info["last_message_at"] is not None

    def test_full_context_includes_everything(self) -> None:
        cm = ContextManager(config=ContextConfig(window=1))
        cm.state.summary = "S"
        cm.add_message(Role.USER, "one")
        cm.add_message(Role.ASSISTANT, "two")

        assert cm.get_full_context() == "Summary: S\nuser: one\nassistant: two"
