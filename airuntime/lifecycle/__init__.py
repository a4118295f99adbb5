"""Session lifecycle: sessions, per-engine pools and the task queue."""

from airuntime.lifecycle.pool import PoolStats, SessionPool, SessionPoolManager
from airuntime.lifecycle.queue import QueuedTaskStatus, TaskQueue, TaskResult
from airuntime.lifecycle.sessions import AgentSession, SessionStatus

__all__ = [
    "AgentSession",
    "PoolStats",
    "QueuedTaskStatus",
    "SessionPool",
    "SessionPoolManager",
    "SessionStatus",
    "TaskQueue",
    "TaskResult",
]
