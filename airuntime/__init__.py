"""AI runtime: one event model and session lifecycle over many agent engines."""

from airuntime.bus import EventBus, get_event_bus, reset_event_bus
from airuntime.config import RuntimeSettings
from airuntime.errors import (
    AIRuntimeError,
    ContinuationNotSupportedError,
    EngineCapacityError,
    EventValidationError,
    LifecycleError,
    SessionBusyError,
    SessionDisposedError,
    TransportError,
    UnknownEngineError,
)
from airuntime.events import EVENT_TYPES, AIEvent, is_terminal_event
from airuntime.lifecycle.pool import SessionPool, SessionPoolManager
from airuntime.lifecycle.queue import QueuedTaskStatus, TaskQueue, TaskResult
from airuntime.lifecycle.sessions import AgentSession, SessionStatus
from airuntime.runners.registry import (
    Engine,
    EngineCapabilities,
    EngineRegistry,
    build_default_registry,
    create_engine,
)
from airuntime.tasks import AITask, create_task
from airuntime.tool_calls import ToolCallInfo, ToolCallStatus, ToolCallTracker

__version__ = "0.1.0"

__all__ = [
    "AIEvent",
    "AIRuntimeError",
    "AITask",
    "AgentSession",
    "ContinuationNotSupportedError",
    "EVENT_TYPES",
    "Engine",
    "EngineCapabilities",
    "EngineCapacityError",
    "EngineRegistry",
    "EventBus",
    "EventValidationError",
    "LifecycleError",
    "RuntimeSettings",
    "SessionBusyError",
    "QueuedTaskStatus",
    "SessionDisposedError",
    "SessionPool",
    "SessionPoolManager",
    "SessionStatus",
    "TaskQueue",
    "TaskResult",
    "ToolCallInfo",
    "ToolCallStatus",
    "ToolCallTracker",
    "TransportError",
    "UnknownEngineError",
    "build_default_registry",
    "create_engine",
    "create_task",
    "get_event_bus",
    "is_terminal_event",
    "reset_event_bus",
]
