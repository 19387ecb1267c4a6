"""
Session - one conversation and its state.

A session owns its ContextManager. Only one generation may run on a
session at a time: turn() serializes callers (or rejects the second one,
if the engine is configured that way) so history is never mutated by two
turns at once. close() discards all state.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from mcphost.context import ContextManager
from mcphost.types import EngineState

logger = logging.getLogger(__name__)


class SessionBusyError(RuntimeError):
    """Raised when a turn is requested on a session that is already generating."""


class SessionClosedError(RuntimeError):
    """Raised when a closed session is used."""


@dataclass
class Session:
    """
    A single conversation.

    state and state_history expose where the current (or last) turn is in
    the Idle -> Generating -> ... -> TextFinal sequence.
    """

    context: ContextManager
    model: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)
    state: EngineState = EngineState.IDLE
    state_history: list[EngineState] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _closed: bool = field(default=False, repr=False)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_busy(self) -> bool:
        return self._lock.locked()

    def transition(self, state: EngineState) -> None:
        logger.debug(f"Session {self.id[:8]}: {self.state.value} -> {state.value}")
        self.state = state
        self.state_history.append(state)

    @asynccontextmanager
    async def turn(self, reject_concurrent: bool = False) -> AsyncIterator["Session"]:
        """
        Hold the session for one generation turn.

        Raises:
            SessionBusyError: If reject_concurrent is set and a turn is running
            SessionClosedError: If the session is closed
        """
        self._check_not_closed()
        if reject_concurrent and self._lock.locked():
            raise SessionBusyError(f"Session {self.id} already has a generation in flight")

        async with self._lock:
            self._check_not_closed()
            self.state_history = []
            self.transition(EngineState.IDLE)
            yield self

    def close(self) -> None:
        """Close the session and discard all conversation state."""
        self._closed = True
        self.context.clear()
        self.metadata.clear()

    def _check_not_closed(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Session {self.id} is closed")
