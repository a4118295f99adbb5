"""Claude Code CLI engine: stream-json parser and process backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator

from airuntime.config import env_bool, env_str
from airuntime.events import (
    BaseEvent,
    create_assistant_message_event,
    create_error_event,
    create_progress_event,
    create_result_event,
    create_session_end_event,
    create_tool_call_start_event,
    create_user_message_event,
)
from airuntime.runners.parsing import (
    RecordHandler,
    RecordParser,
    collect_text,
    complete_tool_call,
    new_tool_id,
    tool_args,
    translate_assistant_blocks,
    translate_tool_results,
)
from airuntime.runners.ports import RawEvent
from airuntime.runners.process import CliProcessBackend
from airuntime.runners.tool_logging import format_tool_marker
from airuntime.tasks import AITask, build_prompt

log = logging.getLogger("claude")

_SYSTEM_MESSAGES = {
    "init": "Initializing session...",
    "reading": "Reading files...",
    "writing": "Writing files...",
    "thinking": "Thinking...",
    "searching": "Searching...",
}


@dataclass(frozen=True)
class ClaudeConfig:
    claude_path: str = "claude"
    model: str | None = None
    working_dir: str | None = None
    skip_permissions: bool = False
    extra_args: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> ClaudeConfig:
        extra = env_str("CLAUDE_EXTRA_ARGS")
        return cls(
            claude_path=env_str("CLAUDE_PATH", cls.claude_path),
            model=env_str("CLAUDE_MODEL"),
            working_dir=env_str("WORKSPACE_DIR"),
            skip_permissions=env_bool("CLAUDE_SKIP_PERMISSIONS", cls.skip_permissions),
            extra_args=tuple(extra.split()) if extra else (),
        )


class ClaudeEventParser(RecordParser):
    """Claude Code stream-json records to canonical events."""

    engine = "claude-code"

    def _build_handlers(self) -> dict[str, RecordHandler]:
        return {
            "system": self._handle_system,
            "assistant": self._handle_assistant,
            "user": self._handle_user,
            "text_delta": self._handle_text_delta,
            "tool_start": self._handle_tool_start,
            "tool_end": self._handle_tool_end,
            "permission_request": self._handle_permission_request,
            "result": self._handle_result,
            "error": self._handle_error,
            "session_end": self._handle_session_end,
        }

    def _handle_system(self, event: RawEvent) -> list[BaseEvent]:
        subtype = event.get("subtype")
        if not subtype:
            return []
        message = _SYSTEM_MESSAGES.get(subtype)
        if message is None:
            extra = event.get("extra")
            if isinstance(extra, dict) and isinstance(extra.get("message"), str):
                message = extra["message"]
            else:
                message = str(subtype)
        return [create_progress_event(message)]

    def _handle_assistant(self, event: RawEvent) -> list[BaseEvent]:
        message = event.get("message") or {}
        return translate_assistant_blocks(message.get("content", []), self.tracker)

    def _handle_user(self, event: RawEvent) -> list[BaseEvent]:
        content = (event.get("message") or {}).get("content", [])
        events = translate_tool_results(content, self.tracker)
        text = collect_text(content)
        if text:
            events.append(create_user_message_event(text))
        return events

    def _handle_text_delta(self, event: RawEvent) -> list[BaseEvent]:
        text = event.get("text")
        if not isinstance(text, str) or not text:
            return []
        return [create_assistant_message_event(text, is_delta=True)]

    def _handle_tool_start(self, event: RawEvent) -> list[BaseEvent]:
        name = event.get("tool_name") or "unknown"
        tool_id = event.get("tool_id") or new_tool_id()
        args = tool_args(event.get("input"))
        self.tracker.start_tool_call(name, tool_id, args)
        log.debug(f"Tool start {format_tool_marker(name, args)}")
        return [
            create_progress_event(f"Calling tool: {name}"),
            create_tool_call_start_event(name, args, tool_id=tool_id),
        ]

    def _handle_tool_end(self, event: RawEvent) -> list[BaseEvent]:
        name = event.get("tool_name") or "unknown"
        success = "output" in event and not event.get("is_error")
        end = complete_tool_call(
            self.tracker,
            tool_id=event.get("tool_id"),
            name=name,
            result=event.get("output"),
            success=success,
        )
        return [create_progress_event(f"Tool finished: {end.name}"), end]

    def _handle_permission_request(self, event: RawEvent) -> list[BaseEvent]:
        return [create_progress_event("Waiting for permission confirmation...")]

    def _handle_result(self, event: RawEvent) -> list[BaseEvent]:
        if event.get("is_error"):
            return [create_error_event(str(event.get("result") or "Unknown error"), code="result")]

        usage = event.get("usage") or {}
        total_tokens = sum(
            usage.get(key) or 0
            for key in (
                "input_tokens",
                "cache_creation_input_tokens",
                "cache_read_input_tokens",
                "output_tokens",
            )
        )
        summary: dict[str, Any] = {
            "cost_usd": event.get("total_cost_usd") or 0,
            "turns": event.get("num_turns") or 0,
            "duration_s": (event.get("duration_ms") or 0) / 1000,
            "total_tokens": total_tokens,
            "tool_calls": len(self.tracker),
        }
        output = event.get("result")
        return [
            create_result_event(output if isinstance(output, str) else "", summary),
            create_session_end_event(self.session_id, "completed"),
        ]

    def _handle_error(self, event: RawEvent) -> list[BaseEvent]:
        error = event.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return [create_error_event(str(error or "Unknown error"))]

    def _handle_session_end(self, event: RawEvent) -> list[BaseEvent]:
        return [create_session_end_event(self.session_id, "completed")]


class ClaudeBackend:
    """Runs `claude -p` in stream-json mode for one session."""

    def __init__(self, config: ClaudeConfig):
        self.config = config
        self.cli_session_id: str | None = None
        self._process = CliProcessBackend(
            "claude",
            self._build_command,
            working_dir=config.working_dir,
            on_record=self._remember_session,
        )

    def _build_command(self, task: AITask, resume: bool) -> list[str]:
        """Build the claude command line."""
        cmd = [
            self.config.claude_path, "-p", build_prompt(task),
            "--output-format", "stream-json",
            "--verbose",
        ]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        if self.config.skip_permissions:
            cmd.append("--dangerously-skip-permissions")
        if resume:
            if self.cli_session_id:
                cmd.extend(["--resume", self.cli_session_id])
            else:
                cmd.append("--continue")
        cmd.extend(self.config.extra_args)
        return cmd

    def _remember_session(self, record: RawEvent) -> None:
        if record.get("type") != "system":
            return
        session_id = record.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.cli_session_id = session_id

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[RawEvent]:
        return await self._process.open(task, resume=resume)

    def cancel(self) -> None:
        self._process.cancel()

    def close(self) -> None:
        self._process.close()
