"""Shared pipeline helpers.

Two halves of every session run live here:
- `iter_json_line_pipeline` turns a JSON-lines byte stream (CLI stdout) into
  raw records, keeping a sample of non-JSON lines for error reporting.
- `drain_events` pulls raw records, parses them and delivers the canonical
  events until a terminal one has been delivered.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from airuntime.events import BaseEvent, is_terminal_event
from airuntime.runners.ports import RawEvent


@dataclass
class JSONLineStats:
    emitted_any: bool = False
    non_json_lines: list[str] = field(default_factory=list)


async def iter_json_line_pipeline(
    *,
    byte_stream: AsyncIterator[bytes],
    stats: JSONLineStats,
    non_json_limit: int = 50,
) -> AsyncIterator[RawEvent]:
    """Parse a JSON-lines byte stream and yield JSON objects."""

    async for raw_line in byte_stream:
        line = raw_line.decode(errors="replace").strip()
        if not line:
            continue

        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            if len(stats.non_json_lines) < non_json_limit:
                stats.non_json_lines.append(line)
            continue

        if not isinstance(record, dict):
            continue

        stats.emitted_any = True
        yield record


async def drain_events(
    *,
    raw_events: AsyncIterator[RawEvent],
    parse: Callable[[RawEvent], list[BaseEvent]],
    deliver: Callable[[BaseEvent], None],
    is_terminal: Callable[[BaseEvent], bool] = is_terminal_event,
    should_stop: Callable[[], bool] | None = None,
) -> BaseEvent | None:
    """Drive a raw record stream until a terminal event is delivered.

    Returns the terminal event, or None when the stream ran dry (or
    `should_stop` fired) first. The raw iterator is closed on the way out.
    """

    try:
        async for raw in raw_events:
            for event in parse(raw):
                if should_stop and should_stop():
                    return None
                deliver(event)
                if is_terminal(event):
                    return event
            if should_stop and should_stop():
                return None
        return None
    finally:
        aclose = getattr(raw_events, "aclose", None)
        if aclose is not None:
            await aclose()
