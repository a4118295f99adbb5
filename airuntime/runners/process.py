"""CLI process transport shared by the Claude Code and IFlow engines."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import AsyncIterator, Callable, Mapping

from airuntime.errors import TransportError
from airuntime.runners.pipeline import JSONLineStats, iter_json_line_pipeline
from airuntime.runners.ports import RawEvent
from airuntime.tasks import AITask

log = logging.getLogger("process")

CommandBuilder = Callable[[AITask, bool], list[str]]

STREAM_LIMIT = 10 * 1024 * 1024


def _make_failure_message(name: str, returncode: int, stats: JSONLineStats) -> str:
    if stats.non_json_lines:
        preview = "\n".join(stats.non_json_lines[:5])
        return f"{name} exited with code {returncode}:\n{preview}"
    return f"{name} exited with code {returncode}"


class CliProcessBackend:
    """Runs an engine CLI and streams its JSON-lines stdout as raw records."""

    def __init__(
        self,
        name: str,
        build_command: CommandBuilder,
        *,
        working_dir: str | None = None,
        env: Mapping[str, str] | None = None,
        on_record: Callable[[RawEvent], None] | None = None,
    ):
        self.name = name
        self.working_dir = working_dir
        self.env = dict(env) if env else None
        self._build_command = build_command
        self._on_record = on_record
        self.process: asyncio.subprocess.Process | None = None
        self._cancelled = False

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[RawEvent]:
        cmd = self._build_command(task, resume)
        self._cancelled = False

        log.info(f"{self.name}: {task.input.prompt[:50]}...")

        env = {**os.environ, **self.env} if self.env else None
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                cwd=self.working_dir,
                env=env,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise TransportError(f"Failed to start {self.name}: {e}") from e

        if self._cancelled:
            await self._reap(self.process)
            raise TransportError(f"{self.name} cancelled while starting")
        if self.process.stdout is None:
            raise TransportError(f"{self.name} process stdout missing")

        return self._iter_records(self.process)

    async def _iter_records(self, process: asyncio.subprocess.Process) -> AsyncIterator[RawEvent]:
        stats = JSONLineStats()
        try:
            async for record in iter_json_line_pipeline(byte_stream=process.stdout, stats=stats):
                if self._on_record:
                    self._on_record(record)
                yield record

            await process.wait()
            if process.returncode and not self._cancelled:
                raise TransportError(_make_failure_message(self.name, process.returncode, stats))
        finally:
            self._stop(process, kill=True)

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        self._stop(process, kill=True)
        await process.wait()

    def _stop(self, process: asyncio.subprocess.Process | None, *, kill: bool) -> None:
        if process is None or process.returncode is not None:
            return
        try:
            if kill:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass

    def cancel(self) -> None:
        """Terminate the running process."""
        self._cancelled = True
        self._stop(self.process, kill=False)

    def close(self) -> None:
        self._cancelled = True
        self._stop(self.process, kill=True)
        self.process = None
