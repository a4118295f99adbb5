"""Session lifecycle operations.

Goal: keep run/abort/dispose semantics in one place so every engine shares one
state machine. Engines only supply a transport (`SessionBackend`) and a parser
(`EventParser`); `AgentSession` owns status transitions and event delivery.

Semantics:
- `run` is legal only from idle; the task is accepted, not awaited
- every task ends with exactly one terminal event (`session_end` or `error`)
- nothing from an aborted task is delivered after its `session_end{aborted}`
- `dispose` is terminal and idempotent
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from enum import Enum
from typing import AsyncIterator, Callable, Iterable

from airuntime.bus import EventBus
from airuntime.errors import (
    ContinuationNotSupportedError,
    SessionBusyError,
    SessionDisposedError,
)
from airuntime.events import (
    BaseEvent,
    create_error_event,
    create_session_end_event,
    create_session_start_event,
    is_terminal_event,
)
from airuntime.runners.pipeline import drain_events
from airuntime.runners.ports import EventListener, EventParser, RawEvent, SessionBackend
from airuntime.tasks import AITask, create_task

_log = logging.getLogger("lifecycle.sessions")


class SessionStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DISPOSED = "disposed"


class AgentSession:
    """One conversation with one engine."""

    def __init__(
        self,
        session_id: str,
        engine_id: str,
        backend: SessionBackend,
        parser: EventParser,
        bus: EventBus,
        *,
        timeout_s: float | None = None,
        supports_continue: bool = False,
    ):
        self.id = session_id
        self.engine_id = engine_id
        self.backend = backend
        self.parser = parser
        self.bus = bus
        self.timeout_s = timeout_s
        self.supports_continue = supports_continue
        self.status = SessionStatus.IDLE
        self.current_task_id: str | None = None
        self._listeners: list[EventListener] = []
        self._dispose_callbacks: list[Callable[[], None]] = []
        self._drain_task: asyncio.Task | None = None
        # Bumped whenever the running task changes; a drain holding an older
        # value is stale and must not deliver.
        self._generation = 0

    def __repr__(self) -> str:
        return f"AgentSession(id={self.id!r}, engine={self.engine_id!r}, status={self.status.value})"

    # Public API

    def on_event(self, listener: EventListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_dispose(self, callback: Callable[[], None]) -> None:
        """Call `callback` once when the session is disposed."""
        self._dispose_callbacks.append(callback)

    async def run(self, task: AITask) -> None:
        self._ensure_idle("run")
        self.parser.reset()
        await self._start(task, resume=False)

    async def continue_conversation(
        self, prompt: str, files: Iterable[str] | None = None
    ) -> AITask:
        self._ensure_idle("continue")
        if not self.supports_continue:
            raise ContinuationNotSupportedError(
                f"Engine {self.engine_id} cannot continue session {self.id}"
            )
        task = create_task(prompt, files=files)
        await self._start(task, resume=True)
        return task

    def abort(self, task_id: str | None = None) -> None:
        if self.status is not SessionStatus.RUNNING:
            return
        if task_id is not None and task_id != self.current_task_id:
            _log.info(f"Ignoring abort for {task_id} on {self.id}: running {self.current_task_id}")
            return
        _log.info(f"Aborting task {self.current_task_id} on session {self.id}")
        self._interrupt()
        self._deliver(create_session_end_event(self.id, "aborted"))

    def dispose(self) -> None:
        if self.status is SessionStatus.DISPOSED:
            return
        was_running = self.status is SessionStatus.RUNNING
        if was_running:
            self._interrupt()
        self.status = SessionStatus.DISPOSED
        _log.info(f"Disposing session {self.id}")

        if was_running:
            self._deliver(create_session_end_event(self.id, "aborted"))
        try:
            self.backend.close()
        except Exception:
            _log.exception(f"Backend close failed for session {self.id}")
        self.parser.reset()
        self._listeners.clear()

        callbacks, self._dispose_callbacks = self._dispose_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _log.exception(f"Dispose callback failed for session {self.id}")

    async def wait(self) -> None:
        """Wait for the current drain loop, if any."""
        task = self._drain_task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.gather(task, return_exceptions=True)

    # Internals

    def _ensure_idle(self, action: str) -> None:
        if self.status is SessionStatus.DISPOSED:
            raise SessionDisposedError(f"Session {self.id} is disposed; cannot {action}")
        if self.status is SessionStatus.RUNNING:
            raise SessionBusyError(
                f"Session {self.id} is already running task {self.current_task_id}"
            )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.status is SessionStatus.RUNNING

    async def _start(self, task: AITask, *, resume: bool) -> None:
        self._generation += 1
        generation = self._generation
        self.status = SessionStatus.RUNNING
        self.current_task_id = task.id
        _log.info(f"Session {self.id} ({self.engine_id}) accepted task {task.id}")

        self._deliver(create_session_start_event(self.id))
        if not self._is_current(generation):
            return

        try:
            raw_events = await self.backend.open(task, resume=resume)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not self._is_current(generation):
                _log.info(f"Session {self.id}: start of task {task.id} abandoned: {e}")
                return
            _log.error(f"Session {self.id}: backend failed to start: {e}")
            self._settle()
            self._deliver(create_error_event(str(e) or type(e).__name__, code="transport"))
            return

        if not self._is_current(generation):
            # Interrupted while opening; the stream was never iterated.
            if self.status is not SessionStatus.RUNNING:
                self._cancel_backend()
            aclose = getattr(raw_events, "aclose", None)
            if aclose is not None:
                await aclose()
            return

        self._drain_task = asyncio.create_task(
            self._drain(raw_events, generation), name=f"drain-{self.id}"
        )

    async def _drain(self, raw_events: AsyncIterator[RawEvent], generation: int) -> None:
        def deliver(event: BaseEvent) -> None:
            if is_terminal_event(event):
                self._settle()
            self._deliver(event)

        def should_stop() -> bool:
            return not self._is_current(generation)

        pipeline = drain_events(
            raw_events=raw_events,
            parse=self.parser.parse,
            deliver=deliver,
            should_stop=should_stop,
        )
        try:
            if self.timeout_s:
                terminal = await asyncio.wait_for(pipeline, self.timeout_s)
            else:
                terminal = await pipeline
            if terminal is None and self._is_current(generation):
                deliver(create_session_end_event(self.id, "completed"))
        except asyncio.TimeoutError:
            if self._is_current(generation):
                _log.warning(f"Session {self.id} timed out after {self.timeout_s}s")
                deliver(create_error_event(f"Task timed out after {self.timeout_s}s", code="timeout"))
                self.dispose()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._is_current(generation):
                _log.error(f"Session {self.id}: transport error: {e}")
                deliver(create_error_event(str(e) or type(e).__name__, code="transport"))
        finally:
            if self._drain_task is asyncio.current_task():
                self._drain_task = None

    def _settle(self) -> None:
        self.status = SessionStatus.IDLE
        self.current_task_id = None

    def _interrupt(self) -> None:
        self._generation += 1
        self._settle()
        self._cancel_backend()
        task, self._drain_task = self._drain_task, None
        if task is not None and not task.done():
            task.cancel()

    def _cancel_backend(self) -> None:
        try:
            self.backend.cancel()
        except Exception:
            _log.exception(f"Backend cancel failed for session {self.id}")

    def _deliver(self, event: BaseEvent) -> None:
        if event.session_id != self.id:
            event = replace(event, session_id=self.id)
        self.bus.emit(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                _log.exception(f"Session {self.id} listener failed on {event.type}")
