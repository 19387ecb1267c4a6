"""
Protocol Engine - the generate / detect / execute / continue loop.

One call to generate() is one turn:

1. Build the contextual prompt (tool catalog + history + user input)
2. Generate and scan the raw output for a tool-use envelope
3. If there is none, the extracted text is the answer
4. Otherwise run the tool, record the result in the context and the
   operation log, and generate a continuation from the result

A turn always ends in TextFinal with exactly one TextResponse. Unknown
tools and failing tools are reported back to the model as tool results,
never raised. max_tool_rounds bounds how many tools one turn may chain.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from mcphost.config import ContextConfig, EngineConfig
from mcphost.context import ContextManager
from mcphost.llm import LLMError, TextGenerator
from mcphost.oplog import OperationLogger
from mcphost.parsing import RecoveryAdapter, interpret, recover_tool_use
from mcphost.session import Session
from mcphost.tools import ToolRegistry
from mcphost.types import (
    EngineState,
    MCPResponse,
    Role,
    TextResponse,
    ToolCall,
    ToolFailure,
    ToolResult,
    ToolUseEnvelope,
    ToolUseResponse,
    dump_json,
)

logger = logging.getLogger(__name__)

TOOL_INSTRUCTIONS = """You have access to the following tools:

{catalog}

To use a tool, reply with a single line of JSON in exactly this form:
{{"type": "tool_use", "tool": "<tool name>", "tool_input": {{<parameters>}}}}

Use at most one tool per reply. If no tool is needed, answer directly."""

CONTINUATION_TEMPLATE = (
    "Previous user query: {prompt}\n\n"
    "You used the {tool} tool, which returned the following result:\n"
    "<tool_result>\n{result}\n</tool_result>\n\n"
    "Based on this tool result, please provide a helpful response to the user's "
    "original query. If you need to use another tool, respond in the tool_use "
    "format as instructed previously."
)

CANCELLED = "cancelled"


@dataclass
class ToolInvocation:
    """A tool the engine ran during a turn, with its result."""
    envelope: ToolUseEnvelope
    result: ToolResult


@dataclass
class TurnResult:
    """Everything that happened during one generate() turn."""
    response: TextResponse
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    states: list[EngineState] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.response.text


class ProtocolEngine:
    """
    Drives tool-calling turns for any number of sessions.

    The engine holds no per-conversation state itself; everything lives on
    the Session. Different sessions can run turns concurrently; turns on
    the same session queue behind each other (or are rejected when
    reject_concurrent is set).
    """

    def __init__(
        self,
        registry: ToolRegistry,
        generator: TextGenerator,
        oplog: OperationLogger | None = None,
        config: EngineConfig | None = None,
        context_config: ContextConfig | None = None,
        default_model: str = "",
        recovery: RecoveryAdapter | None = recover_tool_use,
    ) -> None:
        self.registry = registry
        self.generator = generator
        self.oplog = oplog
        self.config = config or EngineConfig()
        self.context_config = context_config or ContextConfig()
        self.default_model = default_model
        self.recovery = recovery

    def open_session(self, model: str | None = None) -> Session:
        """Create a session with a fresh, empty context."""
        model = model or self.default_model
        context = ContextManager(self.generator, self.context_config, default_model=model)
        session = Session(context=context, model=model)
        logger.info(f"Opened session {session.id}")
        return session

    def close_session(self, session: Session) -> None:
        session.close()
        logger.info(f"Closed session {session.id}")

    def tool_instructions(self) -> str:
        """Catalog of enabled tools and the envelope format, or '' with no tools."""
        tools = self.registry.list_enabled()
        if not tools:
            return ""
        catalog = "\n".join(d.render_for_prompt() for d in tools)
        return TOOL_INSTRUCTIONS.format(catalog=catalog)

    def build_prompt(self, session: Session, prompt: str) -> str:
        contextual = session.context.get_contextual_prompt(prompt)
        instructions = self.tool_instructions()
        return f"{instructions}\n\n{contextual}" if instructions else contextual

    @staticmethod
    def continuation_prompt(prompt: str, tool: str, result: ToolResult) -> str:
        return CONTINUATION_TEMPLATE.format(
            prompt=prompt,
            tool=tool,
            result=dump_json(result.payload(), indent=2),
        )

    def _model(self, session: Session, model: str | None) -> str:
        return model or session.model or self.default_model

    async def generate(self, session: Session, prompt: str, model: str | None = None) -> TextResponse:
        """Run one full turn and return its final text."""
        turn = await self.generate_turn(session, prompt, model)
        return turn.response

    async def generate_turn(
        self,
        session: Session,
        prompt: str,
        model: str | None = None,
    ) -> TurnResult:
        """
        Run one full turn.

        Raises:
            LLMError: If the first generation fails (history is untouched)
            SessionBusyError: If the session is busy and rejection is configured
        """
        model = self._model(session, model)
        async with session.turn(self.config.reject_concurrent):
            try:
                return await self._run_turn(session, prompt, model)
            except asyncio.CancelledError:
                cancelled = session.context.cancel_pending(CANCELLED)
                if cancelled:
                    logger.info(f"Turn cancelled; resolved {cancelled} pending tool message(s)")
                raise
            except Exception as e:
                aborted = session.context.cancel_pending(f"turn failed: {e}")
                if aborted:
                    logger.warning(f"Turn failed; resolved {aborted} pending tool message(s)")
                raise

    async def _run_turn(self, session: Session, prompt: str, model: str) -> TurnResult:
        response = await self._request(session, prompt, model)
        session.context.add_message(Role.USER, prompt)

        invocations: list[ToolInvocation] = []
        while isinstance(response, ToolUseResponse) and len(invocations) < self.config.max_tool_rounds:
            envelope = response.envelope
            result = await self._execute(session, envelope)
            invocations.append(ToolInvocation(envelope, result))
            try:
                response = await self._continue(session, prompt, envelope, result, model)
            except LLMError as e:
                logger.error(f"Continuation after {envelope.tool} failed: {e}")
                response = TextResponse(f"Error generating a response after using {envelope.tool}: {e}")

        if isinstance(response, ToolUseResponse):
            logger.warning(f"Tool chaining limit reached; not running {response.tool}")
            response = TextResponse(
                f"Tool limit of {self.config.max_tool_rounds} reached; "
                f"the model requested another tool: {response.tool}"
            )

        await self._finish(session, response, model)
        return TurnResult(response, invocations, list(session.state_history))

    async def _finish(self, session: Session, response: TextResponse, model: str) -> None:
        session.transition(EngineState.TEXT_FINAL)
        session.context.add_message(Role.ASSISTANT, response.text)
        if self.context_config.auto_summarize and session.context.should_summarize():
            await session.context.summarize(model)

    async def _request(self, session: Session, prompt: str, model: str) -> MCPResponse:
        session.transition(EngineState.GENERATING)
        raw = await self.generator.generate_text(self.build_prompt(session, prompt), model)
        response = interpret(raw, self.recovery)
        if isinstance(response, ToolUseResponse):
            logger.info(f"Tool use detected: {response.tool}")
            session.transition(EngineState.TOOL_DETECTED)
        return response

    async def _execute(self, session: Session, envelope: ToolUseEnvelope) -> ToolResult:
        session.transition(EngineState.EXECUTING)
        session.context.add_tool_use(envelope.tool, envelope.input)
        try:
            result = await self.registry.execute(ToolCall(envelope.tool, envelope.input))
        except asyncio.CancelledError:
            self._record(session, envelope, ToolFailure(CANCELLED, {"tool": envelope.tool}))
            raise
        self._record(session, envelope, result)
        session.transition(EngineState.RESULT_INTEGRATED)
        return result

    def _record(self, session: Session, envelope: ToolUseEnvelope, result: ToolResult) -> None:
        session.context.add_tool_result(envelope.tool, result)
        if self.oplog is None:
            return
        if isinstance(result, ToolFailure):
            self.oplog.log_operation(envelope.tool, envelope.input, success=False, error=result.error)
        else:
            self.oplog.log_operation(envelope.tool, envelope.input, result=result.payload())

    async def _continue(
        self,
        session: Session,
        prompt: str,
        envelope: ToolUseEnvelope,
        result: ToolResult,
        model: str,
    ) -> MCPResponse:
        session.transition(EngineState.GENERATING)
        raw = await self.generator.generate_text(
            self.continuation_prompt(prompt, envelope.tool, result), model
        )
        response = interpret(raw, self.recovery)
        if isinstance(response, ToolUseResponse):
            session.transition(EngineState.TOOL_DETECTED)
        return response

    async def request(self, session: Session, prompt: str, model: str | None = None) -> MCPResponse:
        """
        Generate once and report what the model produced, without running tools.

        A TextResponse ends the turn. A ToolUseResponse is left for the caller
        to pass to execute_tool_use() and continue_with_tool_result().
        """
        model = self._model(session, model)
        async with session.turn(self.config.reject_concurrent):
            response = await self._request(session, prompt, model)
            session.context.add_message(Role.USER, prompt)
            if isinstance(response, TextResponse):
                await self._finish(session, response, model)
            return response

    async def execute_tool_use(
        self,
        session: Session,
        tool_use: ToolUseResponse | ToolUseEnvelope,
    ) -> ToolResult:
        """Run a detected tool and integrate its result into the session."""
        envelope = tool_use.envelope if isinstance(tool_use, ToolUseResponse) else tool_use
        async with session.turn(self.config.reject_concurrent):
            return await self._execute(session, envelope)

    async def continue_with_tool_result(
        self,
        session: Session,
        prompt: str,
        tool_use: ToolUseResponse | ToolUseEnvelope,
        result: ToolResult,
        model: str | None = None,
    ) -> MCPResponse:
        """Generate the follow-up to a tool result."""
        envelope = tool_use.envelope if isinstance(tool_use, ToolUseResponse) else tool_use
        model = self._model(session, model)
        async with session.turn(self.config.reject_concurrent):
            response = await self._continue(session, prompt, envelope, result, model)
            if isinstance(response, TextResponse):
                await self._finish(session, response, model)
            return response

    async def stream(
        self,
        session: Session,
        prompt: str,
        model: str | None = None,
    ) -> AsyncIterator[str]:
        """
        Stream a plain-text answer through the session context.

        No tool detection happens on a stream. The exchange is added to
        the history once the stream completes.
        """
        model = self._model(session, model)
        async with session.turn(self.config.reject_concurrent):
            session.transition(EngineState.GENERATING)
            contextual = session.context.get_contextual_prompt(prompt)
            chunks: list[str] = []
            async for chunk in self.generator.generate_stream(contextual, model):
                chunks.append(chunk)
                yield chunk
            session.context.add_message(Role.USER, prompt)
            await self._finish(session, TextResponse("".join(chunks)), model)
