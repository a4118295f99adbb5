"""Developer inspector: a passive, bounded record of everything on the bus."""

from __future__ import annotations

from collections import Counter, deque
from typing import Callable

from airuntime.bus import EventBus
from airuntime.events import (
    AssistantMessageEvent,
    BaseEvent,
    ErrorEvent,
    ProgressEvent,
    ResultEvent,
    SessionEndEvent,
    ToolCallEndEvent,
    ToolCallStartEvent,
    UserMessageEvent,
)
from airuntime.runners.tool_logging import format_tool_marker


def format_event(event: BaseEvent) -> str:
    """One-line rendering of an event for logs and terminals."""

    if isinstance(event, AssistantMessageEvent):
        return event.text
    if isinstance(event, UserMessageEvent):
        return f"> {event.text}"
    if isinstance(event, ToolCallStartEvent):
        return format_tool_marker(event.name, event.args)
    if isinstance(event, ToolCallEndEvent):
        return f"[tool:{event.name} {'ok' if event.success else 'failed'}]"
    if isinstance(event, ProgressEvent):
        if event.percent is not None:
            return f"... {event.message} ({event.percent:.0f}%)"
        return f"... {event.message}"
    if isinstance(event, ResultEvent):
        return _format_usage(event.usage)
    if isinstance(event, ErrorEvent):
        code = f":{event.code}" if event.code else ""
        return f"[error{code}] {event.message}"
    if isinstance(event, SessionEndEvent):
        return f"[session ended: {event.reason}]"
    if event.type == "session_start":
        return "[session started]"
    todo_id = getattr(event, "todo_id", None)
    if todo_id:
        return f"[{event.type} {todo_id}]"
    return f"[{event.type}]"


def _format_usage(usage: dict) -> str:
    if not usage:
        return "[result]"
    parts = []
    if "turns" in usage:
        parts.append(f"{usage['turns']}t")
    if "tool_calls" in usage:
        parts.append(f"{usage['tool_calls']}tools")
    if "cost_usd" in usage:
        parts.append(f"${usage['cost_usd']:.3f}")
    if "duration_s" in usage:
        parts.append(f"{usage['duration_s']:.1f}s")
    tokens = usage.get("total_tokens")
    if tokens is None and "prompt_tokens" in usage:
        tokens = usage.get("prompt_tokens", 0) + usage.get("completion_tokens", 0)
    if tokens is not None:
        parts.append(f"| {tokens / 1000:.1f}k tokens")
    return f"[{' '.join(parts)}]" if parts else "[result]"


class EventInspector:
    """Keeps the last `max_events` events seen on a bus. Never emits."""

    def __init__(self, bus: EventBus, max_events: int = 500):
        self.bus = bus
        self._events: deque[BaseEvent] = deque(maxlen=max_events)
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.on_any(self._events.append)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def events(self, session_id: str | None = None, event_type: str | None = None) -> list[BaseEvent]:
        return [
            event
            for event in self._events
            if (session_id is None or event.session_id == session_id)
            and (event_type is None or event.type == event_type)
        ]

    def counts(self) -> dict[str, int]:
        return dict(Counter(event.type for event in self._events))

    def clear(self) -> None:
        self._events.clear()

    def dump(self, session_id: str | None = None) -> list[dict]:
        return [event.to_dict() for event in self.events(session_id=session_id)]
