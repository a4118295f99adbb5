"""IFlow CLI engine: JSON event parser and process backend."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator

from airuntime.config import env_str
from airuntime.events import (
    BaseEvent,
    create_assistant_message_event,
    create_error_event,
    create_progress_event,
    create_session_end_event,
    create_tool_call_start_event,
    create_user_message_event,
)
from airuntime.runners.parsing import (
    RecordHandler,
    RecordParser,
    collect_text,
    complete_tool_call,
    flatten_content,
    new_tool_id,
    tool_args,
    translate_assistant_blocks,
    translate_tool_results,
)
from airuntime.runners.ports import RawEvent
from airuntime.runners.process import CliProcessBackend
from airuntime.runners.tool_logging import format_tool_marker
from airuntime.tasks import AITask, build_prompt

log = logging.getLogger("iflow")


@dataclass(frozen=True)
class IFlowConfig:
    iflow_path: str = "iflow"
    model: str | None = None
    working_dir: str | None = None
    extra_args: tuple[str, ...] = ()

    @classmethod
    def from_env(cls) -> IFlowConfig:
        extra = env_str("IFLOW_EXTRA_ARGS")
        return cls(
            iflow_path=env_str("IFLOW_PATH", cls.iflow_path),
            model=env_str("IFLOW_MODEL"),
            working_dir=env_str("WORKSPACE_DIR"),
            extra_args=tuple(extra.split()) if extra else (),
        )


class IFlowEventParser(RecordParser):
    """IFlow JSON events (and JSONL transcript records) to canonical events."""

    engine = "iflow"

    def _build_handlers(self) -> dict[str, RecordHandler]:
        return {
            "start": self._handle_start,
            "end": self._handle_end,
            "complete": self._handle_end,
            "message": self._handle_message,
            "assistant": self._handle_assistant,
            "user": self._handle_user,
            "token": self._handle_token,
            "delta": self._handle_token,
            "tool": self._handle_tool,
            "tool_call": self._handle_tool,
            "progress": self._handle_progress,
            "permission": self._handle_permission,
            "confirmation": self._handle_permission,
            "error": self._handle_error,
        }

    def _handle_start(self, event: RawEvent) -> list[BaseEvent]:
        # The session itself announces session_start when it accepts a task.
        return [create_progress_event("Session started")]

    def _handle_end(self, event: RawEvent) -> list[BaseEvent]:
        return [create_session_end_event(self.session_id, "completed")]

    def _handle_message(self, event: RawEvent) -> list[BaseEvent]:
        role = event.get("role")
        content = event.get("content")
        if role == "assistant":
            return translate_assistant_blocks(content, self.tracker)
        text = flatten_content(content)
        if role == "user":
            return [create_user_message_event(text)] if text else []
        if role == "system" and text:
            return [create_progress_event(text)]
        return []

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

    def _handle_token(self, event: RawEvent) -> list[BaseEvent]:
        text = event.get("text") or event.get("delta")
        if not isinstance(text, str) or not text:
            return []
        return [create_assistant_message_event(text, is_delta=True)]

    def _handle_tool(self, event: RawEvent) -> list[BaseEvent]:
        name = event.get("name") or event.get("tool_name") or "unknown"
        status = event.get("status") or "start"

        if status == "start":
            tool_id = event.get("tool_id") or new_tool_id()
            args = tool_args(event.get("args") or event.get("input"))
            self.tracker.start_tool_call(name, tool_id, args)
            log.debug(f"Tool start {format_tool_marker(name, args)}")
            return [
                create_progress_event(f"Calling tool: {name}"),
                create_tool_call_start_event(name, args, tool_id=tool_id),
            ]

        if status not in ("end", "error"):
            log.warning(f"iflow: unknown tool status {status!r} for {name}")
            return []

        success = status == "end"
        result = event.get("result")
        if result is None:
            result = event.get("output")
        end = complete_tool_call(
            self.tracker,
            tool_id=event.get("tool_id"),
            name=name,
            result=result,
            success=success,
        )
        label = "Tool finished" if success else "Tool failed"
        return [create_progress_event(f"{label}: {end.name}"), end]

    def _handle_progress(self, event: RawEvent) -> list[BaseEvent]:
        percent = event.get("percent")
        if isinstance(percent, (int, float)):
            percent = min(max(float(percent), 0.0), 100.0)
        else:
            percent = None
        return [create_progress_event(str(event.get("message") or ""), percent)]

    def _handle_permission(self, event: RawEvent) -> list[BaseEvent]:
        subject = event.get("message") or event.get("tool") or event.get("name") or "operation"
        return [create_progress_event(f"Waiting for confirmation: {subject}")]

    def _handle_error(self, event: RawEvent) -> list[BaseEvent]:
        error = event.get("error") or event.get("message")
        if isinstance(error, dict):
            error = error.get("message")
        return [create_error_event(str(error or "Unknown error"))]


class IFlowBackend:
    """Runs `iflow --prompt` for one session."""

    def __init__(self, config: IFlowConfig):
        self.config = config
        self.cli_session_id: str | None = None
        self._process = CliProcessBackend(
            "iflow",
            self._build_command,
            working_dir=config.working_dir,
            on_record=self._remember_session,
        )

    def _build_command(self, task: AITask, resume: bool) -> list[str]:
        cmd = [self.config.iflow_path, "--yolo"]
        if self.config.model:
            cmd.extend(["--model", self.config.model])
        if resume and self.cli_session_id:
            cmd.extend(["--resume", self.cli_session_id])
        cmd.extend(self.config.extra_args)
        cmd.extend(["--prompt", build_prompt(task)])
        return cmd

    def _remember_session(self, record: RawEvent) -> None:
        session_id = record.get("sessionId") or record.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.cli_session_id = session_id

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[RawEvent]:
        return await self._process.open(task, resume=resume)

    def cancel(self) -> None:
        self._process.cancel()

    def close(self) -> None:
        self._process.close()
