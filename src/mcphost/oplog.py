"""
Operation Logger - audit trail of tool invocations.

Entries go into a bounded in-memory ring (oldest evicted first) and,
when file logging is on, are appended to one JSON file per day. A failing
file write is reported on the module logger and otherwise ignored: the
audit trail must never break the tool call it is recording.
"""

import asyncio
import logging
import threading
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from mcphost.config import OperationLogConfig
from mcphost.types import OperationLogEntry, dump_json

logger = logging.getLogger(__name__)


class OperationLogger:
    """Bounded, optionally file-backed log of tool operations."""

    def __init__(self, config: OperationLogConfig | None = None) -> None:
        self.config = config or OperationLogConfig.from_env()
        if self.config.capacity < 1:
            raise ValueError("Operation log capacity must be at least 1")
        self._entries: deque[OperationLogEntry] = deque(maxlen=self.config.capacity)
        self._lock = threading.Lock()
        self._file_lock = threading.Lock()
        self._unwritten: deque[OperationLogEntry] = deque()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def log_dir(self) -> Path:
        return self.config.resolved_log_dir

    def log_file_for(self, day: datetime) -> Path:
        return self.log_dir / f"tool_operations_{day:%Y%m%d}.json"

    def log_operation(
        self,
        tool_name: str,
        input: Any,
        result: Any = None,
        success: bool = True,
        error: str | None = None,
    ) -> OperationLogEntry:
        """
        Record a tool call.

        The in-memory append happens before this returns. The file append
        is scheduled on the running event loop when there is one; call
        flush() to wait for it.
        """
        entry = OperationLogEntry(
            tool_name=tool_name,
            input=input,
            result=result,
            success=success,
            error_message=error,
        )
        with self._lock:
            self._entries.append(entry)
            if self.config.file_logging:
                self._unwritten.append(entry)

        if self.config.file_logging:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                self._drain()
            else:
                task = loop.create_task(asyncio.to_thread(self._drain))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        return entry

    async def flush(self) -> None:
        """Wait for every scheduled file write to finish."""
        while self._pending:
            pending = list(self._pending)
            await asyncio.gather(*pending, return_exceptions=True)
            self._pending.difference_update(pending)

    def _drain(self) -> None:
        """Write queued entries in the order they were logged."""
        with self._file_lock:
            while True:
                with self._lock:
                    if not self._unwritten:
                        return
                    entry = self._unwritten.popleft()
                self._write_entry(entry)

    def _write_entry(self, entry: OperationLogEntry) -> None:
        try:
            path = self.log_file_for(entry.timestamp.astimezone(UTC))
            record = dump_json(entry.to_dict(), indent=2) + ",\n"
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(record)
        except Exception as e:
            logger.warning(f"Failed to write operation log for {entry.tool_name}: {e}")

    @property
    def recent_operations(self) -> list[OperationLogEntry]:
        """Entries currently held in memory, oldest first."""
        with self._lock:
            return list(self._entries)

    def operations_for_tool(self, tool_name: str) -> list[OperationLogEntry]:
        with self._lock:
            return [e for e in self._entries if e.tool_name == tool_name]

    def clear(self) -> None:
        """Drop the in-memory entries. Log files are left alone."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
