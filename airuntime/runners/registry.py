"""Engine registry.

This provides a single place to map an engine id to its concrete backend and
parser. Callers should depend on the `Session` port and on `Engine`, never on
a specific engine module.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterable

from airuntime.bus import EventBus
from airuntime.config import RuntimeSettings
from airuntime.errors import EngineCapacityError, UnknownEngineError
from airuntime.events import BaseEvent
from airuntime.lifecycle.sessions import AgentSession, SessionStatus
from airuntime.runners.ports import EventParser, SessionBackend
from airuntime.tasks import TASK_KINDS

log = logging.getLogger("registry")

BackendFactory = Callable[[dict[str, Any]], SessionBackend]
ParserFactory = Callable[[str], EventParser]
EngineFactory = Callable[[], "Engine"]

ENGINE_ALIASES = {
    "claude": "claude-code",
    "openai": "openai-compat",
}


@dataclass(frozen=True)
class EngineCapabilities:
    task_kinds: tuple[str, ...] = TASK_KINDS
    supports_streaming: bool = True
    supports_abort: bool = True
    supports_concurrent_sessions: bool = False
    supports_continue: bool = False
    # 0 means unlimited.
    max_concurrent_sessions: int = 1
    description: str = ""
    version: str = "1.0.0"


@dataclass(frozen=True)
class EngineDescriptor:
    id: str
    name: str
    available: bool
    capabilities: EngineCapabilities
    is_default: bool = False


class Engine:
    """Factory and bookkeeper for sessions of one engine."""

    def __init__(
        self,
        engine_id: str,
        name: str,
        capabilities: EngineCapabilities,
        backend_factory: BackendFactory,
        parser_factory: ParserFactory,
        *,
        bus: EventBus,
        availability_check: Callable[[], bool] | None = None,
        eviction_grace_s: float = 5.0,
        timeout_s: float | None = None,
    ):
        self.id = engine_id
        self.name = name
        self.capabilities = capabilities
        self.bus = bus
        self.eviction_grace_s = eviction_grace_s
        self.timeout_s = timeout_s
        self._backend_factory = backend_factory
        self._parser_factory = parser_factory
        self._availability_check = availability_check
        self._sessions: dict[str, AgentSession] = {}

    def __repr__(self) -> str:
        return f"Engine(id={self.id!r}, sessions={len(self._sessions)})"

    def is_available(self) -> bool:
        if self._availability_check is None:
            return True
        try:
            return bool(self._availability_check())
        except Exception:
            log.exception(f"Availability check failed for {self.id}")
            return False

    @property
    def active_session_count(self) -> int:
        """Sessions currently running a task."""
        return sum(1 for s in self._sessions.values() if s.status is SessionStatus.RUNNING)

    def get_sessions(self) -> list[AgentSession]:
        return list(self._sessions.values())

    def get_session(self, session_id: str) -> AgentSession | None:
        return self._sessions.get(session_id)

    def create_session(self, config: dict[str, Any] | None = None) -> AgentSession:
        limit = self.capabilities.max_concurrent_sessions
        if limit and self.active_session_count >= limit:
            raise EngineCapacityError(
                f"Engine {self.id} already has {self.active_session_count} running session(s) (max {limit})"
            )

        session_id = f"{self.id}-{uuid.uuid4().hex}"
        session = AgentSession(
            session_id,
            self.id,
            self._backend_factory(dict(config or {})),
            self._parser_factory(session_id),
            self.bus,
            timeout_s=self.timeout_s,
            supports_continue=self.capabilities.supports_continue,
        )
        self._sessions[session_id] = session
        session.on_event(lambda event: self._on_session_event(session_id, event))
        session.on_dispose(lambda: self._forget(session_id))
        log.info(f"Created session {session_id}")
        return session

    def _on_session_event(self, session_id: str, event: BaseEvent) -> None:
        if event.type != "session_end":
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(self.eviction_grace_s, self._evict, session_id)

    def track(self, session: AgentSession) -> None:
        """Re-register a reused session that eviction may have dropped."""
        if session.status is not SessionStatus.DISPOSED:
            self._sessions.setdefault(session.id, session)

    def _forget(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            log.debug(f"Dropped disposed session {session_id}")

    def _evict(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.status is SessionStatus.RUNNING:
            return
        del self._sessions[session_id]
        log.debug(f"Evicted session {session_id}")

    def cleanup(self) -> None:
        """Dispose every tracked session."""
        for session in list(self._sessions.values()):
            session.dispose()
        self._sessions.clear()


class EngineRegistry:
    def __init__(self) -> None:
        self._engines: dict[str, Engine] = {}
        self._factories: dict[str, EngineFactory] = {}
        self._default_id: str | None = None

    def register(self, engine: Engine, as_default: bool = False) -> None:
        if engine.id in self._engines:
            log.warning(f"Replacing registered engine {engine.id}")
            self._engines.pop(engine.id).cleanup()
        self._engines[engine.id] = engine
        self._factories.pop(engine.id, None)
        if as_default or self._default_id is None:
            self._default_id = engine.id

    def register_factory(self, engine_id: str, factory: EngineFactory, as_default: bool = False) -> None:
        engine_id = self._resolve_id(engine_id)
        self._factories[engine_id] = factory
        if as_default or self._default_id is None:
            self._default_id = engine_id

    def _resolve_id(self, engine_id: str) -> str:
        engine_id = (engine_id or "").strip().lower()
        return ENGINE_ALIASES.get(engine_id, engine_id)

    def has(self, engine_id: str) -> bool:
        engine_id = self._resolve_id(engine_id)
        return engine_id in self._engines or engine_id in self._factories

    def get(self, engine_id: str) -> Engine:
        engine_id = self._resolve_id(engine_id)
        engine = self._engines.get(engine_id)
        if engine is not None:
            return engine
        factory = self._factories.pop(engine_id, None)
        if factory is None:
            raise UnknownEngineError(f"Unknown engine: {engine_id}")
        engine = factory()
        self._engines[engine_id] = engine
        return engine

    def get_default(self) -> Engine:
        if self._default_id is None:
            raise UnknownEngineError("No default engine registered")
        return self.get(self._default_id)

    def set_default(self, engine_id: str) -> None:
        engine_id = self._resolve_id(engine_id)
        if not self.has(engine_id):
            raise UnknownEngineError(f"Unknown engine: {engine_id}")
        self._default_id = engine_id

    @property
    def default_id(self) -> str | None:
        return self._default_id

    def list(self) -> list[EngineDescriptor]:
        descriptors = []
        for engine_id in sorted({*self._engines, *self._factories}):
            engine = self.get(engine_id)
            descriptors.append(
                EngineDescriptor(
                    id=engine.id,
                    name=engine.name,
                    available=engine.is_available(),
                    capabilities=engine.capabilities,
                    is_default=engine.id == self._default_id,
                )
            )
        return descriptors

    def get_capabilities(self, engine_id: str) -> EngineCapabilities:
        return self.get(engine_id).capabilities

    def is_available(self, engine_id: str) -> bool:
        if not self.has(engine_id):
            return False
        return self.get(engine_id).is_available()

    def unregister(self, engine_id: str) -> bool:
        engine_id = self._resolve_id(engine_id)
        self._factories.pop(engine_id, None)
        engine = self._engines.pop(engine_id, None)
        if engine is not None:
            engine.cleanup()
        removed = engine is not None
        if self._default_id == engine_id:
            remaining = [*self._engines, *self._factories]
            self._default_id = remaining[0] if remaining else None
        return removed

    def clear(self) -> None:
        for engine in self._engines.values():
            engine.cleanup()
        self._engines.clear()
        self._factories.clear()
        self._default_id = None


def _cli_available(path: str) -> Callable[[], bool]:
    return lambda: shutil.which(path) is not None


def create_engine(
    engine_id: str,
    *,
    bus: EventBus,
    settings: RuntimeSettings | None = None,
    config: Any = None,
) -> Engine:
    """Build a configured engine by id (`claude-code`, `iflow`, `openai-compat`)."""
    settings = settings or RuntimeSettings.from_env()
    engine_id = (engine_id or "").strip().lower()
    engine_id = ENGINE_ALIASES.get(engine_id, engine_id)
    common = {
        "bus": bus,
        "eviction_grace_s": settings.eviction_grace_s,
        "timeout_s": settings.session_timeout_s,
    }

    if engine_id == "claude-code":
        from airuntime.runners.claude import ClaudeBackend, ClaudeConfig, ClaudeEventParser

        claude_config = config or ClaudeConfig.from_env()
        return Engine(
            "claude-code",
            "Claude Code",
            EngineCapabilities(
                supports_concurrent_sessions=True,
                supports_continue=True,
                max_concurrent_sessions=0,
                description="Anthropic Claude Code CLI (stream-json)",
            ),
            lambda overrides: ClaudeBackend(_with_overrides(claude_config, overrides)),
            ClaudeEventParser,
            availability_check=_cli_available(claude_config.claude_path),
            **common,
        )

    if engine_id == "iflow":
        from airuntime.runners.iflow import IFlowBackend, IFlowConfig, IFlowEventParser

        iflow_config = config or IFlowConfig.from_env()
        return Engine(
            "iflow",
            "IFlow",
            EngineCapabilities(
                supports_concurrent_sessions=True,
                supports_continue=True,
                max_concurrent_sessions=3,
                description="IFlow CLI (JSON events)",
            ),
            lambda overrides: IFlowBackend(_with_overrides(iflow_config, overrides)),
            IFlowEventParser,
            availability_check=_cli_available(iflow_config.iflow_path),
            **common,
        )

    if engine_id == "openai-compat":
        from airuntime.runners.openai_compat import (
            OpenAICompatBackend,
            OpenAICompatConfig,
            OpenAICompatEventParser,
        )

        openai_config = config or OpenAICompatConfig.from_env()
        return Engine(
            "openai-compat",
            openai_config.display_name,
            EngineCapabilities(
                supports_concurrent_sessions=True,
                supports_continue=True,
                max_concurrent_sessions=0,
                description=f"{openai_config.display_name} - any OpenAI-compatible API",
            ),
            lambda overrides: OpenAICompatBackend(_with_overrides(openai_config, overrides)),
            OpenAICompatEventParser,
            availability_check=openai_config.is_valid,
            **common,
        )

    raise UnknownEngineError(f"Unknown engine: {engine_id}")


def _with_overrides(config: Any, overrides: dict[str, Any]) -> Any:
    if not overrides:
        return config
    return replace(config, **overrides)


def build_default_registry(
    bus: EventBus,
    settings: RuntimeSettings | None = None,
    engine_ids: Iterable[str] = ("claude-code", "iflow", "openai-compat"),
) -> EngineRegistry:
    """Registry with every built-in engine registered lazily."""
    settings = settings or RuntimeSettings.from_env()
    registry = EngineRegistry()
    for engine_id in engine_ids:
        registry.register_factory(
            engine_id,
            lambda engine_id=engine_id: create_engine(engine_id, bus=bus, settings=settings),
        )
    default = ENGINE_ALIASES.get(settings.default_engine, settings.default_engine)
    if registry.has(default):
        registry.set_default(default)
    return registry
