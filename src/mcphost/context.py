"""
Context Manager - conversation history and summarization.

Each session owns one ContextManager. It records user, assistant and
tool messages, renders the recent window into a single prompt string,
and compacts the history into a summary once the estimated size passes
the configured threshold.

Summarization is destructive: after it succeeds the original messages
are gone from this component. The OperationLogger keeps its own record
of tool calls for anyone who needs an audit trail.
"""

import logging
from datetime import datetime
from typing import Any

from mcphost.config import ContextConfig
from mcphost.llm import TextGenerator
from mcphost.parsing import extract_text
from mcphost.types import (
    ContextMessage,
    ConversationState,
    Role,
    ToolFailure,
    ToolResult,
)

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTION = (
    "Summarize the following conversation while preserving key points and context. "
    "Make it concise but include important details:\n\n"
)


class ContextManager:
    """
    Holds a ConversationState and builds contextual prompts from it.

    Token counts are estimated as characters / chars_per_token. This is a
    cheap proxy, not a tokenizer.
    """

    def __init__(
        self,
        generator: TextGenerator | None = None,
        config: ContextConfig | None = None,
        default_model: str = "",
    ) -> None:
        self.generator = generator
        self.config = config or ContextConfig.from_env()
        self.state = ConversationState(enabled=self.config.enabled, default_model=default_model)

    @property
    def messages(self) -> list[ContextMessage]:
        return list(self.state.messages)

    @property
    def summary(self) -> str | None:
        return self.state.summary

    @property
    def enabled(self) -> bool:
        return self.state.enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self.state.enabled = value

    def add_message(self, role: Role | str, content: str) -> ContextMessage:
        """Append a user, assistant or system message."""
        role = Role(role)
        if role == Role.TOOL:
            raise ValueError("Tool messages are added with add_tool_use()")
        message = ContextMessage(role=role, content=content)
        self.state.messages.append(message)
        return message

    def add_tool_use(self, tool_name: str, tool_input: dict[str, Any]) -> ContextMessage:
        """Append a pending tool message."""
        message = ContextMessage(role=Role.TOOL, tool_name=tool_name, tool_input=dict(tool_input))
        self.state.messages.append(message)
        return message

    def add_tool_result(self, tool_name: str, result: ToolResult) -> ContextMessage | None:
        """
        Resolve the most recent pending message for this tool.

        Returns None (and changes nothing) when there is no pending
        message for the tool.
        """
        for message in reversed(self.state.messages):
            if message.is_pending and message.tool_name == tool_name:
                message.resolve(result)
                return message
        logger.debug(f"No pending tool message for {tool_name}; result ignored")
        return None

    def pending_tool_messages(self) -> list[ContextMessage]:
        return [m for m in self.state.messages if m.is_pending]

    def cancel_pending(self, reason: str = "cancelled") -> int:
        """Resolve every pending tool message with an explicit error."""
        pending = self.pending_tool_messages()
        for message in pending:
            message.resolve(ToolFailure(reason, {"tool": message.tool_name}))
        return len(pending)

    def get_contextual_prompt(self, user_input: str) -> str:
        """
        Render the summary, the recent window and the new user turn.

        With context disabled the input is returned unchanged.
        """
        if not self.state.enabled:
            return user_input

        sections = []
        if self.state.summary:
            sections.append(f"Previous context summary: {self.state.summary}")

        window = self.state.messages[-self.config.window:] if self.config.window > 0 else []
        if window:
            sections.append("\n".join(m.render() for m in window))

        sections.append(f"User: {user_input}")
        return "\n\n".join(sections)

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count from text (chars / chars_per_token)."""
        return int(len(text) / self.config.chars_per_token)

    def history_tokens(self) -> int:
        chars = sum(m.char_count() for m in self.state.messages)
        return int(chars / self.config.chars_per_token)

    def should_summarize(self) -> bool:
        """True once the history estimate exceeds the summarize threshold."""
        if not self.state.messages:
            return False
        return self.history_tokens() > self.config.summarize_threshold

    async def summarize(self, model: str | None = None) -> bool:
        """
        Replace the history with a generated summary.

        A previous summary is fed into the request so it survives the
        compaction. On failure the history is left exactly as it was.

        Returns:
            True if the history was compacted
        """
        if not self.state.messages:
            return False
        if self.generator is None:
            logger.warning("Cannot summarize: no text generator configured")
            return False

        compacted = list(self.state.messages)
        body = "\n".join(m.render() for m in compacted)
        if self.state.summary:
            body = f"Previous summary: {self.state.summary}\n{body}"
        prompt = SUMMARY_INSTRUCTION + body

        try:
            raw = await self.generator.generate_text(prompt, model or self.state.default_model)
        except Exception as e:
            logger.warning(f"Summarization failed, keeping full history: {e}")
            return False

        summary = extract_text(raw).strip()
        if not summary:
            logger.warning("Summarization returned no text, keeping full history")
            return False

        self.state.summary = summary
        # Messages added while the summary was generated stay in history
        del self.state.messages[:len(compacted)]
        logger.info(f"Summarized {len(compacted)} messages into {len(summary)} chars")
        return True

    def clear(self) -> None:
        """Forget all history and the summary."""
        self.state.messages.clear()
        self.state.summary = None

    @property
    def last_message_timestamp(self) -> datetime | None:
        return self.state.messages[-1].timestamp if self.state.messages else None

    def get_full_context(self) -> str:
        """Summary plus every message, not just the recent window."""
        lines = []
        if self.state.summary:
            lines.append(f"Summary: {self.state.summary}")
        lines.extend(m.render() for m in self.state.messages)
        return "\n".join(lines)

    def get_debug_info(self) -> dict[str, Any]:
        last = self.last_message_timestamp
        return {
            "enabled": self.state.enabled,
            "message_count": len(self.state.messages),
            "pending_tool_messages": len(self.pending_tool_messages()),
            "estimated_tokens": self.history_tokens(),
            "summarize_threshold": self.config.summarize_threshold,
            "should_summarize": self.should_summarize(),
            "has_summary": self.state.summary is not None,
            "default_model": self.state.default_model,
            "last_message_at": last.isoformat() if last else None,
        }
