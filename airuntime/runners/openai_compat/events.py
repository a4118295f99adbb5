"""OpenAI-compatible stream records to canonical events.

Raw records are either chat-completion chunks straight off the SSE stream or
records relayed by a host process (`text_delta`, `session_start`,
`session_end`, `error`).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from airuntime.events import (
    SESSION_END_REASONS,
    BaseEvent,
    create_assistant_message_event,
    create_error_event,
    create_progress_event,
    create_result_event,
    create_session_end_event,
    create_tool_call_start_event,
)
from airuntime.runners.parsing import RecordHandler, RecordParser, new_tool_id
from airuntime.runners.ports import RawEvent
from airuntime.tool_calls import ToolCallTracker

log = logging.getLogger("openai_compat")

_TRUNCATION_MESSAGES = {
    "length": "Response truncated: token limit reached",
    "content_filter": "Response stopped by the content filter",
}


@dataclass
class PendingToolCall:
    """A streamed tool call whose arguments are still arriving."""

    id: str = ""
    name: str = ""
    arguments: str = ""

    def decoded_args(self) -> dict[str, Any]:
        if not self.arguments:
            return {}
        try:
            args = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {"raw": self.arguments}
        return args if isinstance(args, dict) else {"raw": self.arguments}


def extract_session_id(record: RawEvent) -> str | None:
    for key in ("session_id", "sessionId", "sessionID"):
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class OpenAICompatEventParser(RecordParser):
    engine = "openai-compat"

    def __init__(self, session_id: str, tracker: ToolCallTracker | None = None):
        super().__init__(session_id, tracker)
        self._pending: dict[int, PendingToolCall] = {}

    def _build_handlers(self) -> dict[str, RecordHandler]:
        return {
            "chunk": self._handle_chunk,
            "text_delta": self._handle_text_delta,
            "session_start": self._handle_session_start,
            "session_end": self._handle_session_end,
            "error": self._handle_error,
        }

    def _record_kind(self, raw: RawEvent) -> object:
        if "choices" in raw:
            return "chunk"
        if "type" in raw:
            return raw["type"]
        if "error" in raw:
            return "error"
        return None

    def reset(self) -> None:
        super().reset()
        self._pending.clear()

    def _handle_chunk(self, chunk: RawEvent) -> list[BaseEvent]:
        events: list[BaseEvent] = []
        choices = chunk.get("choices") or []
        choice = choices[0] if choices else {}
        delta = choice.get("delta") or {}

        content = delta.get("content")
        if isinstance(content, str) and content:
            events.append(create_assistant_message_event(content, is_delta=True))

        for call_delta in delta.get("tool_calls") or []:
            self._accumulate_tool_call(call_delta)

        finish_reason = choice.get("finish_reason")
        if not finish_reason:
            return events

        events.extend(self._flush_tool_calls())
        truncation = _TRUNCATION_MESSAGES.get(finish_reason)
        if truncation:
            events.append(create_progress_event(truncation))
        usage = chunk.get("usage")
        if isinstance(usage, dict) and usage:
            events.append(create_result_event("", usage))
        events.append(create_session_end_event(self.session_id, "completed"))
        return events

    def _accumulate_tool_call(self, call_delta: dict[str, Any]) -> None:
        index = call_delta.get("index", 0)
        pending = self._pending.setdefault(index, PendingToolCall())
        if call_delta.get("id") and not pending.id:
            pending.id = call_delta["id"]
        function = call_delta.get("function") or {}
        if function.get("name") and not pending.name:
            pending.name = function["name"]
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            pending.arguments += arguments

    def _flush_tool_calls(self) -> list[BaseEvent]:
        events: list[BaseEvent] = []
        for index in sorted(self._pending):
            pending = self._pending[index]
            name = pending.name or "unknown"
            tool_id = pending.id or new_tool_id()
            args = pending.decoded_args()
            self.tracker.start_tool_call(name, tool_id, args)
            events.append(create_tool_call_start_event(name, args, tool_id=tool_id))
        self._pending.clear()
        return events

    def _handle_text_delta(self, record: RawEvent) -> list[BaseEvent]:
        text = record.get("text") or record.get("content")
        if not isinstance(text, str) or not text:
            return []
        return [create_assistant_message_event(text, is_delta=True)]

    def _handle_session_start(self, record: RawEvent) -> list[BaseEvent]:
        # The session announces its own start.
        log.debug(f"Relayed session_start for {extract_session_id(record) or self.session_id}")
        return []

    def _handle_session_end(self, record: RawEvent) -> list[BaseEvent]:
        reason = record.get("reason")
        if reason not in SESSION_END_REASONS:
            reason = "completed"
        return [create_session_end_event(self.session_id, reason)]

    def _handle_error(self, record: RawEvent) -> list[BaseEvent]:
        error = record.get("error") or record.get("message")
        code = None
        if isinstance(error, dict):
            code = error.get("code") or error.get("type")
            error = error.get("message")
        return [
            create_error_event(
                str(error or "Unknown error"),
                code=str(code) if code is not None else None,
            )
        ]
