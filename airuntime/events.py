"""Canonical event model.

Every engine parser translates its native output into these events. Consumers
(chat UI, inspector, todo sync) only ever see `AIEvent` values, never raw
backend records.

Events are frozen. Producers build them through the `create_*` helpers, which
validate fields and assign `seq` / `timestamp`. The owning session stamps
`session_id` by building a new event with `dataclasses.replace`.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Iterable, Literal, Mapping, Union

from airuntime.errors import EventValidationError
from airuntime.tool_calls import ToolCallInfo

SessionEndReason = Literal["completed", "aborted", "error"]
TodoSource = Literal["user", "ai"]
TodoPriority = Literal["low", "medium", "high"]

SESSION_END_REASONS = frozenset({"completed", "aborted", "error"})
TODO_SOURCES = frozenset({"user", "ai"})

_seq = itertools.count(1)


def _stamp() -> dict[str, Any]:
    return {"seq": next(_seq), "timestamp": time.time()}


@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    type: ClassVar[str] = ""

    seq: int
    timestamp: float
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type
        return data


@dataclass(frozen=True, kw_only=True)
class SessionStartEvent(BaseEvent):
    type: ClassVar[str] = "session_start"


@dataclass(frozen=True, kw_only=True)
class SessionEndEvent(BaseEvent):
    type: ClassVar[str] = "session_end"

    reason: SessionEndReason = "completed"


@dataclass(frozen=True, kw_only=True)
class UserMessageEvent(BaseEvent):
    type: ClassVar[str] = "user_message"

    text: str
    files: tuple[str, ...] = ()


@dataclass(frozen=True, kw_only=True)
class AssistantMessageEvent(BaseEvent):
    type: ClassVar[str] = "assistant_message"

    text: str
    is_delta: bool = False
    tool_calls: tuple[ToolCallInfo, ...] = ()


@dataclass(frozen=True, kw_only=True)
class ToolCallStartEvent(BaseEvent):
    type: ClassVar[str] = "tool_call_start"

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    tool_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ToolCallEndEvent(BaseEvent):
    type: ClassVar[str] = "tool_call_end"

    name: str
    result: Any = None
    success: bool = True
    tool_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ProgressEvent(BaseEvent):
    type: ClassVar[str] = "progress"

    message: str
    percent: float | None = None


@dataclass(frozen=True, kw_only=True)
class ResultEvent(BaseEvent):
    type: ClassVar[str] = "result"

    output: str = ""
    usage: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class ErrorEvent(BaseEvent):
    type: ClassVar[str] = "error"

    message: str
    code: str | None = None


@dataclass(frozen=True, kw_only=True)
class TodoCreatedEvent(BaseEvent):
    type: ClassVar[str] = "todo_created"

    todo_id: str
    content: str
    priority: TodoPriority = "medium"
    source: TodoSource = "ai"


@dataclass(frozen=True, kw_only=True)
class TodoUpdatedEvent(BaseEvent):
    type: ClassVar[str] = "todo_updated"

    todo_id: str
    changes: dict[str, Any] = field(default_factory=dict)
    source: TodoSource = "ai"


@dataclass(frozen=True, kw_only=True)
class TodoDeletedEvent(BaseEvent):
    type: ClassVar[str] = "todo_deleted"

    todo_id: str
    source: TodoSource = "ai"


AIEvent = Union[
    SessionStartEvent,
    SessionEndEvent,
    UserMessageEvent,
    AssistantMessageEvent,
    ToolCallStartEvent,
    ToolCallEndEvent,
    ProgressEvent,
    ResultEvent,
    ErrorEvent,
    TodoCreatedEvent,
    TodoUpdatedEvent,
    TodoDeletedEvent,
]

EVENT_CLASSES: dict[str, type[BaseEvent]] = {
    cls.type: cls
    for cls in (
        SessionStartEvent,
        SessionEndEvent,
        UserMessageEvent,
        AssistantMessageEvent,
        ToolCallStartEvent,
        ToolCallEndEvent,
        ProgressEvent,
        ResultEvent,
        ErrorEvent,
        TodoCreatedEvent,
        TodoUpdatedEvent,
        TodoDeletedEvent,
    )
}

EVENT_TYPES = frozenset(EVENT_CLASSES)

TODO_EVENT_TYPES = frozenset({"todo_created", "todo_updated", "todo_deleted"})


def is_terminal_event(event: BaseEvent) -> bool:
    """True for events that end a task: `session_end` and `error`."""
    return event.type in ("session_end", "error")


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise EventValidationError(f"{what} must be a non-empty string")
    return value


def _require_source(source: str) -> TodoSource:
    if source not in TODO_SOURCES:
        raise EventValidationError(f"Invalid todo source: {source!r}")
    return source  # type: ignore[return-value]


def create_session_start_event(session_id: str) -> SessionStartEvent:
    _require_text(session_id, "session_id")
    return SessionStartEvent(session_id=session_id, **_stamp())


def create_session_end_event(
    session_id: str, reason: SessionEndReason = "completed"
) -> SessionEndEvent:
    _require_text(session_id, "session_id")
    if reason not in SESSION_END_REASONS:
        raise EventValidationError(f"Invalid session end reason: {reason!r}")
    return SessionEndEvent(session_id=session_id, reason=reason, **_stamp())


def create_user_message_event(
    text: str, files: Iterable[str] | None = None
) -> UserMessageEvent:
    if not isinstance(text, str):
        raise EventValidationError("user message text must be a string")
    return UserMessageEvent(text=text, files=tuple(files or ()), **_stamp())


def create_assistant_message_event(
    text: str,
    is_delta: bool = False,
    tool_calls: Iterable[ToolCallInfo] | None = None,
) -> AssistantMessageEvent:
    if not isinstance(text, str):
        raise EventValidationError("assistant message text must be a string")
    calls = tuple(call.snapshot() for call in tool_calls or ())
    if not text and not calls:
        raise EventValidationError("assistant message needs text or tool calls")
    return AssistantMessageEvent(
        text=text, is_delta=is_delta, tool_calls=calls, **_stamp()
    )


def create_tool_call_start_event(
    name: str, args: Mapping[str, Any] | None = None, tool_id: str | None = None
) -> ToolCallStartEvent:
    _require_text(name, "tool name")
    return ToolCallStartEvent(
        name=name, args=dict(args or {}), tool_id=tool_id, **_stamp()
    )


def create_tool_call_end_event(
    name: str, result: Any = None, success: bool = True, tool_id: str | None = None
) -> ToolCallEndEvent:
    _require_text(name, "tool name")
    return ToolCallEndEvent(
        name=name, result=result, success=bool(success), tool_id=tool_id, **_stamp()
    )


def create_progress_event(message: str, percent: float | None = None) -> ProgressEvent:
    if not isinstance(message, str):
        raise EventValidationError("progress message must be a string")
    if percent is not None and not 0 <= percent <= 100:
        raise EventValidationError(f"progress percent out of range: {percent}")
    return ProgressEvent(message=message, percent=percent, **_stamp())


def create_result_event(
    output: str = "", usage: Mapping[str, Any] | None = None
) -> ResultEvent:
    return ResultEvent(output=output or "", usage=dict(usage or {}), **_stamp())


def create_error_event(message: str, code: str | None = None) -> ErrorEvent:
    _require_text(message, "error message")
    return ErrorEvent(message=message, code=code, **_stamp())


def create_todo_created_event(
    todo_id: str,
    content: str,
    priority: TodoPriority = "medium",
    source: TodoSource = "ai",
) -> TodoCreatedEvent:
    _require_text(todo_id, "todo_id")
    _require_text(content, "todo content")
    return TodoCreatedEvent(
        todo_id=todo_id,
        content=content,
        priority=priority,
        source=_require_source(source),
        **_stamp(),
    )


def create_todo_updated_event(
    todo_id: str, changes: Mapping[str, Any], source: TodoSource = "ai"
) -> TodoUpdatedEvent:
    _require_text(todo_id, "todo_id")
    return TodoUpdatedEvent(
        todo_id=todo_id,
        changes=dict(changes),
        source=_require_source(source),
        **_stamp(),
    )


def create_todo_deleted_event(todo_id: str, source: TodoSource = "ai") -> TodoDeletedEvent:
    _require_text(todo_id, "todo_id")
    return TodoDeletedEvent(todo_id=todo_id, source=_require_source(source), **_stamp())
