"""Concurrency-limited task queue.

Tasks wait in FIFO order and run on their session while fewer than
`max_parallel` are running. A task's outcome is read from the terminal event
its session delivers: `session_end{completed}` is success, `error` is failure
and `session_end{aborted}` is a cancellation.

Tasks enqueued without a session borrow one from the queue's `SessionPool`
when they start and return it when they finish.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Literal

from airuntime.errors import LifecycleError
from airuntime.events import BaseEvent, ErrorEvent, SessionEndEvent, is_terminal_event
from airuntime.lifecycle.pool import SessionPool
from airuntime.lifecycle.sessions import AgentSession
from airuntime.tasks import AITask

log = logging.getLogger("lifecycle.queue")


class QueuedTaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELED = "canceled"


@dataclass(frozen=True)
class TaskResult:
    task_id: str
    status: QueuedTaskStatus
    error: str | None = None
    duration_s: float | None = None


QueueEventType = Literal[
    "task_enqueued", "task_started", "task_completed", "task_canceled", "queue_empty"
]


@dataclass(frozen=True)
class QueueEvent:
    type: QueueEventType
    task_id: str | None = None
    result: TaskResult | None = None
    queue_size: int = 0
    running: int = 0


QueueListener = Callable[[QueueEvent], None]


@dataclass(eq=False)
class _QueuedTask:
    task: AITask
    session: AgentSession | None
    on_event: Callable[[BaseEvent], None] | None = None
    on_complete: Callable[[TaskResult], None] | None = None
    status: QueuedTaskStatus = QueuedTaskStatus.PENDING
    started_at: float | None = None
    canceled: bool = False
    borrowed: bool = False
    runner: asyncio.Task | None = field(default=None, repr=False)


class TaskQueue:
    def __init__(self, max_parallel: int = 1, *, pool: SessionPool | None = None):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.pool = pool
        self._pending: list[_QueuedTask] = []
        self._running: dict[str, _QueuedTask] = {}
        self._results: dict[str, TaskResult] = {}
        self._listeners: list[QueueListener] = []
        self._idle = asyncio.Event()
        self._idle.set()

    def __repr__(self) -> str:
        return f"TaskQueue(pending={len(self._pending)}, running={len(self._running)}/{self.max_parallel})"

    def on_event(self, listener: QueueListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def enqueue(
        self,
        task: AITask,
        session: AgentSession | None = None,
        *,
        on_event: Callable[[BaseEvent], None] | None = None,
        on_complete: Callable[[TaskResult], None] | None = None,
    ) -> str:
        """Queue `task`; returns its id. Must be called from a running loop."""
        if session is None and self.pool is None:
            raise ValueError("enqueue without a session needs a queue with a pool")
        if task.id in self._running or any(q.task.id == task.id for q in self._pending):
            raise ValueError(f"Task {task.id} is already queued")

        self._pending.append(_QueuedTask(task, session, on_event, on_complete))
        self._idle.clear()
        log.debug(f"Enqueued task {task.id} ({len(self._pending)} pending)")
        self._emit(QueueEvent("task_enqueued", task.id, queue_size=len(self._pending)))
        self._schedule()
        return task.id

    async def execute(
        self,
        task: AITask,
        session: AgentSession | None = None,
        *,
        on_event: Callable[[BaseEvent], None] | None = None,
    ) -> TaskResult:
        """Enqueue `task` and wait for its result."""
        done: asyncio.Future[TaskResult] = asyncio.get_running_loop().create_future()

        def complete(result: TaskResult) -> None:
            if not done.done():
                done.set_result(result)

        self.enqueue(task, session, on_event=on_event, on_complete=complete)
        return await done

    def cancel(self, task_id: str) -> bool:
        for queued in self._pending:
            if queued.task.id == task_id:
                self._pending.remove(queued)
                queued.canceled = True
                log.info(f"Canceled pending task {task_id}")
                self._emit(QueueEvent("task_canceled", task_id))
                self._finish(queued, QueuedTaskStatus.CANCELED)
                return True

        queued = self._running.get(task_id)
        if queued is None:
            log.debug(f"No queued task {task_id} to cancel")
            return False
        queued.canceled = True
        log.info(f"Canceling running task {task_id}")
        self._emit(QueueEvent("task_canceled", task_id))
        # The session delivers session_end{aborted}, which ends the runner.
        if queued.session is not None:
            queued.session.abort(task_id)
        return True

    def status(self, task_id: str) -> QueuedTaskStatus | None:
        if task_id in self._running:
            return QueuedTaskStatus.RUNNING
        if any(q.task.id == task_id for q in self._pending):
            return QueuedTaskStatus.PENDING
        result = self._results.get(task_id)
        return result.status if result else None

    def result(self, task_id: str) -> TaskResult | None:
        return self._results.get(task_id)

    def stats(self) -> dict[str, int]:
        return {
            "pending": len(self._pending),
            "running": len(self._running),
            "completed": len(self._results),
        }

    def clear(self) -> int:
        """Cancel every pending task; returns how many."""
        dropped, self._pending = self._pending, []
        for queued in dropped:
            queued.canceled = True
            self._finish(queued, QueuedTaskStatus.CANCELED)
        return len(dropped)

    def clear_completed(self) -> int:
        count = len(self._results)
        self._results.clear()
        return count

    async def wait_idle(self) -> None:
        await self._idle.wait()

    def dispose(self) -> None:
        for queued in list(self._pending):
            self.cancel(queued.task.id)
        for task_id in list(self._running):
            self.cancel(task_id)
        self._listeners.clear()

    # Internals

    def _schedule(self) -> None:
        while self._pending and len(self._running) < self.max_parallel:
            queued = self._pending.pop(0)
            queued.status = QueuedTaskStatus.RUNNING
            queued.started_at = time.monotonic()
            self._running[queued.task.id] = queued
            queued.runner = asyncio.create_task(self._execute(queued), name=f"queue-{queued.task.id}")
            log.info(f"Started task {queued.task.id} ({len(self._running)}/{self.max_parallel} running)")
            self._emit(QueueEvent("task_started", queued.task.id, running=len(self._running)))

    async def _execute(self, queued: _QueuedTask) -> None:
        status, error = QueuedTaskStatus.ERROR, None
        unsubscribe: Callable[[], None] | None = None
        try:
            if queued.canceled:
                return
            if queued.session is None:
                queued.session = self.pool.acquire()
                queued.borrowed = True
            session = queued.session

            terminal: asyncio.Future[BaseEvent] = asyncio.get_running_loop().create_future()

            def listener(event: BaseEvent) -> None:
                if queued.on_event is not None:
                    try:
                        queued.on_event(event)
                    except Exception:
                        log.exception(f"Event callback failed for task {queued.task.id}")
                if is_terminal_event(event) and not terminal.done():
                    terminal.set_result(event)

            unsubscribe = session.on_event(listener)
            await session.run(queued.task)
            status, error = _outcome(await terminal)
        except asyncio.CancelledError:
            status = QueuedTaskStatus.CANCELED
            raise
        except LifecycleError as e:
            error = str(e)
            log.warning(f"Task {queued.task.id} could not start: {e}")
        finally:
            if unsubscribe is not None:
                unsubscribe()
            if queued.borrowed and queued.session is not None:
                self.pool.release(queued.session)
            self._running.pop(queued.task.id, None)
            if queued.canceled:
                status, error = QueuedTaskStatus.CANCELED, None
            self._finish(queued, status, error)
            self._schedule()

    def _finish(self, queued: _QueuedTask, status: QueuedTaskStatus, error: str | None = None) -> None:
        queued.status = status
        duration = time.monotonic() - queued.started_at if queued.started_at is not None else None
        result = TaskResult(queued.task.id, status, error, duration)
        self._results[queued.task.id] = result
        log.info(f"Task {queued.task.id} finished: {status.value}")
        self._emit(QueueEvent("task_completed", queued.task.id, result=result))
        if queued.on_complete is not None:
            try:
                queued.on_complete(result)
            except Exception:
                log.exception(f"Completion callback failed for task {queued.task.id}")
        self._check_idle()

    def _check_idle(self) -> None:
        if self._pending or self._running or self._idle.is_set():
            return
        self._idle.set()
        self._emit(QueueEvent("queue_empty"))

    def _emit(self, event: QueueEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception(f"Queue listener failed on {event.type}")


def _outcome(event: BaseEvent) -> tuple[QueuedTaskStatus, str | None]:
    if isinstance(event, ErrorEvent):
        return QueuedTaskStatus.ERROR, event.message
    if isinstance(event, SessionEndEvent) and event.reason == "aborted":
        return QueuedTaskStatus.CANCELED, None
    return QueuedTaskStatus.SUCCESS, None
