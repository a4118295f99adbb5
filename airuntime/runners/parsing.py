"""Shared parsing plumbing for engine parsers.

Engines differ in record shapes, but several pieces repeat: JSON line
decoding, Anthropic-style content blocks (`text`, `tool_use`, `tool_result`)
and correlating tool completions with the tracker. Each engine parser
subclasses `RecordParser` and supplies a dispatch table.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Callable, ClassVar

from airuntime.events import (
    BaseEvent,
    ToolCallEndEvent,
    create_assistant_message_event,
    create_tool_call_end_event,
    create_tool_call_start_event,
)
from airuntime.runners.ports import RawEvent
from airuntime.tool_calls import ToolCallTracker

log = logging.getLogger("parsing")

RecordHandler = Callable[[RawEvent], list[BaseEvent]]


def new_tool_id() -> str:
    return f"tool-{uuid.uuid4().hex[:12]}"


def parse_json_line(line: str | bytes) -> RawEvent | None:
    """Decode one JSON line; anything but a JSON object yields None."""
    if isinstance(line, bytes):
        line = line.decode(errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        log.debug(f"Skipping non-JSON line: {line[:120]}")
        return None
    return record if isinstance(record, dict) else None


def flatten_content(content: object) -> str:
    """Render tool output / message content as plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
        return "\n".join(parts)
    return json.dumps(content, ensure_ascii=False, default=str)


def tool_args(raw_input: object) -> dict[str, Any]:
    if isinstance(raw_input, dict):
        return raw_input
    if raw_input is None:
        return {}
    return {"input": raw_input}


def translate_assistant_blocks(blocks: object, tracker: ToolCallTracker) -> list[BaseEvent]:
    """Content blocks of one assistant message.

    Text blocks are concatenated into a single assistant message. Each
    `tool_use` block is registered and emitted as `tool_call_start` before that
    aggregate message.
    """
    if isinstance(blocks, str):
        blocks = [{"type": "text", "text": blocks}]
    if not isinstance(blocks, list):
        return []

    events: list[BaseEvent] = []
    texts: list[str] = []
    calls = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text":
            text = block.get("text")
            if isinstance(text, str):
                texts.append(text)
        elif kind == "tool_use":
            name = block.get("name") or "unknown"
            tool_id = block.get("id") or new_tool_id()
            args = tool_args(block.get("input"))
            calls.append(tracker.start_tool_call(name, tool_id, args))
            events.append(create_tool_call_start_event(name, args, tool_id=tool_id))

    text = "".join(texts)
    if text or calls:
        events.append(create_assistant_message_event(text, False, calls))
    return events


def translate_tool_results(blocks: object, tracker: ToolCallTracker) -> list[BaseEvent]:
    """`tool_result` blocks, correlated by `tool_use_id`."""
    if not isinstance(blocks, list):
        return []
    events: list[BaseEvent] = []
    for block in blocks:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        events.append(
            complete_tool_call(
                tracker,
                tool_id=block.get("tool_use_id"),
                name=None,
                result=flatten_content(block.get("content")),
                success=not block.get("is_error"),
            )
        )
    return events


def collect_text(blocks: object) -> str:
    """Plain text of a message whose content may be a string or block list."""
    if isinstance(blocks, str):
        return blocks
    if not isinstance(blocks, list):
        return ""
    return "".join(
        block["text"]
        for block in blocks
        if isinstance(block, dict)
        and block.get("type") == "text"
        and isinstance(block.get("text"), str)
    )


def complete_tool_call(
    tracker: ToolCallTracker,
    *,
    tool_id: str | None,
    name: str | None,
    result: Any,
    success: bool,
) -> ToolCallEndEvent:
    """Close a tool call and build its end event.

    With an id the tracker record is looked up directly. Without one, the
    oldest running call with the same name is assumed. When neither resolves,
    the end is still emitted under a placeholder id.
    """
    record = tracker.get(tool_id) if tool_id else None
    if record is None and not tool_id and name:
        record = tracker.find_running(name)

    if record is not None:
        tracker.end_tool_call(record.id, result, success)
        return create_tool_call_end_event(record.name, result, success, tool_id=record.id)

    placeholder = tool_id or new_tool_id()
    log.debug(f"Tool end without a matching start: name={name} id={placeholder}")
    return create_tool_call_end_event(name or "unknown", result, success, tool_id=placeholder)


class RecordParser:
    """Base for engine parsers: dispatch table, error guard, line decoding."""

    engine: ClassVar[str] = "engine"

    def __init__(self, session_id: str, tracker: ToolCallTracker | None = None):
        self.session_id = session_id
        self.tracker = tracker if tracker is not None else ToolCallTracker()
        self._handlers: dict[str, RecordHandler] = self._build_handlers()

    def _build_handlers(self) -> dict[str, RecordHandler]:
        raise NotImplementedError

    def _record_kind(self, raw: RawEvent) -> object:
        return raw.get("type")

    def parse(self, raw: RawEvent) -> list[BaseEvent]:
        if not isinstance(raw, dict):
            log.warning(f"{self.engine}: ignoring non-object record {type(raw).__name__}")
            return []
        kind = self._record_kind(raw)
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            log.warning(f"{self.engine}: unknown event type {kind!r}")
            return []
        try:
            return handler(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            log.warning(f"{self.engine}: malformed {kind} record: {e}")
            return []

    def parse_line(self, line: str | bytes) -> list[BaseEvent]:
        raw = parse_json_line(line)
        if raw is None:
            return []
        return self.parse(raw)

    def reset(self) -> None:
        self.tracker.clear()
