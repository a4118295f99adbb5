"""Per-session tool-call bookkeeping.

Correlates tool start and end notifications by id. A tracker belongs to exactly
one session and is never shared.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.COMPLETED, ToolCallStatus.FAILED)


@dataclass
class ToolCallInfo:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Any = None

    def snapshot(self) -> ToolCallInfo:
        """Detached copy, safe to embed in an event."""
        return replace(self, args=deepcopy(self.args))


class ToolCallTracker:
    """Tool calls of one session, in insertion order."""

    def __init__(self) -> None:
        self._calls: dict[str, ToolCallInfo] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self._calls

    def start_tool_call(
        self, name: str, tool_id: str, args: dict[str, Any] | None = None
    ) -> ToolCallInfo:
        # Last start wins; the replacement moves to the end.
        self._calls.pop(tool_id, None)
        info = ToolCallInfo(
            id=tool_id,
            name=name,
            args=dict(args or {}),
            status=ToolCallStatus.RUNNING,
        )
        self._calls[tool_id] = info
        return info

    def end_tool_call(
        self, tool_id: str, result: Any = None, success: bool = True
    ) -> ToolCallInfo | None:
        info = self._calls.get(tool_id)
        if info is None:
            return None
        if info.status.is_terminal:
            return info
        info.status = ToolCallStatus.COMPLETED if success else ToolCallStatus.FAILED
        info.result = result
        return info

    def get(self, tool_id: str) -> ToolCallInfo | None:
        return self._calls.get(tool_id)

    def find_running(self, name: str) -> ToolCallInfo | None:
        """Oldest running call with this name, for ends that carry no id."""
        for info in self._calls.values():
            if info.name == name and info.status is ToolCallStatus.RUNNING:
                return info
        return None

    def get_tool_calls(self) -> list[ToolCallInfo]:
        return [info.snapshot() for info in self._calls.values()]

    def clear(self) -> None:
        self._calls.clear()
