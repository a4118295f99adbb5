"""Error taxonomy for the AI runtime.

Lifecycle errors are programmer errors and propagate to the caller.
Transport errors never leave a session: they are turned into `error` events.
"""

from __future__ import annotations


class AIRuntimeError(Exception):
    """Base class for every error raised by the runtime."""


class LifecycleError(AIRuntimeError):
    """An operation was called in a session/engine state that forbids it."""


class SessionDisposedError(LifecycleError):
    """The session was disposed and can no longer run tasks."""


class SessionBusyError(LifecycleError):
    """A task is already running on this session."""


class ContinuationNotSupportedError(LifecycleError):
    """The session's engine cannot continue a previous conversation."""


class EngineCapacityError(LifecycleError):
    """The engine already tracks its maximum number of live sessions."""


class TransportError(AIRuntimeError):
    """The backend process or HTTP stream failed."""


class EventValidationError(AIRuntimeError, ValueError):
    """A canonical event was constructed with missing or invalid fields."""


class UnknownEngineError(AIRuntimeError, ValueError):
    """No engine is registered under the requested id."""
