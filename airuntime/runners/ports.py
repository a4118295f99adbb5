"""Ports (interfaces) for engine adapters and sessions.

The rest of the system (registry, consumers, scripts) should depend on these
contracts rather than concrete engine implementations. An engine is a
`SessionBackend` (transport) plus an `EventParser` (native records to
canonical events); `AgentSession` composes the two.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Protocol, runtime_checkable

from airuntime.events import BaseEvent
from airuntime.tasks import AITask
from airuntime.tool_calls import ToolCallTracker

RawEvent = dict[str, Any]
EventListener = Callable[[BaseEvent], None]


@runtime_checkable
class SessionBackend(Protocol):
    """Transport for one session (CLI process, HTTP stream)."""

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[RawEvent]:
        """Start backend work and return the raw record iterator."""
        ...

    def cancel(self) -> None:
        """Request backend-side cancellation. Must not block."""
        ...

    def close(self) -> None:
        """Release every resource held by the backend."""
        ...


@runtime_checkable
class EventParser(Protocol):
    """Translates one engine's native records into canonical events."""

    tracker: ToolCallTracker

    def parse(self, raw: RawEvent) -> list[BaseEvent]:
        ...

    def parse_line(self, line: str | bytes) -> list[BaseEvent]:
        ...

    def reset(self) -> None:
        ...


@runtime_checkable
class Session(Protocol):
    """A running (or idle) agent conversation bound to one engine."""

    @property
    def id(self) -> str:
        ...

    @property
    def engine_id(self) -> str:
        ...

    @property
    def status(self) -> str:
        ...

    @property
    def current_task_id(self) -> str | None:
        ...

    async def run(self, task: AITask) -> None:
        ...

    def abort(self, task_id: str | None = None) -> None:
        ...

    def dispose(self) -> None:
        ...

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        ...
