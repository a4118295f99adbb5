"""Per-engine session pools.

A pool hands out idle sessions for reuse and creates new ones from its engine
when none is free. Released sessions go back to the pool unless the pool is
over size or the caller asks for disposal. Idle sessions expire after
`max_idle_s`, and any session expires after `max_lifetime_s`; expiry is
checked lazily on `acquire`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from airuntime.lifecycle.sessions import AgentSession, SessionStatus

if TYPE_CHECKING:
    from airuntime.runners.registry import Engine

log = logging.getLogger("lifecycle.pool")

SessionHook = Callable[[AgentSession], None]


@dataclass
class _PooledSession:
    session: AgentSession
    created_at: float
    last_used_at: float
    in_use: bool = True
    use_count: int = 0
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PoolStats:
    total: int
    idle: int
    in_use: int
    created: int
    destroyed: int
    acquired: int
    released: int


@dataclass(frozen=True)
class PooledSessionInfo:
    session_id: str
    in_use: bool
    use_count: int
    age_s: float
    idle_s: float


class SessionPool:
    def __init__(
        self,
        engine: Engine,
        *,
        max_pool_size: int = 5,
        min_pool_size: int = 0,
        max_idle_s: float = 30 * 60,
        max_lifetime_s: float = 2 * 60 * 60,
        on_create: SessionHook | None = None,
        on_destroy: SessionHook | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.engine = engine
        self.max_pool_size = max_pool_size
        self.min_pool_size = min_pool_size
        self.max_idle_s = max_idle_s
        self.max_lifetime_s = max_lifetime_s
        self._on_create = on_create
        self._on_destroy = on_destroy
        self._clock = clock
        self._entries: list[_PooledSession] = []
        self._created = 0
        self._destroyed = 0
        self._acquired = 0
        self._released = 0

    def __repr__(self) -> str:
        return f"SessionPool(engine={self.engine.id!r}, size={len(self._entries)})"

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def idle_count(self) -> int:
        return sum(1 for e in self._entries if not e.in_use)

    @property
    def in_use_count(self) -> int:
        return sum(1 for e in self._entries if e.in_use)

    @property
    def is_full(self) -> bool:
        return len(self._entries) >= self.max_pool_size

    def sessions(self) -> list[AgentSession]:
        return [e.session for e in self._entries]

    def acquire(self, config: dict[str, Any] | None = None) -> AgentSession:
        """Reuse an idle session or create a new one."""
        self._drop_expired()

        now = self._clock()
        for entry in self._entries:
            if not entry.in_use and entry.session.status is SessionStatus.IDLE:
                entry.in_use = True
                entry.last_used_at = now
                entry.use_count += 1
                self._acquired += 1
                self.engine.track(entry.session)
                log.debug(f"Reusing session {entry.session.id} (use {entry.use_count})")
                return entry.session

        entry = self._create(config)
        entry.use_count = 1
        self._acquired += 1
        return entry.session

    def release(self, session: AgentSession, dispose: bool = False) -> None:
        entry = self._find(session.id)
        if entry is None:
            log.debug(f"Release of unknown session {session.id}")
            return
        if not entry.in_use:
            log.debug(f"Session {session.id} already released")
            return

        entry.in_use = False
        entry.last_used_at = self._clock()
        self._released += 1

        if dispose or session.status is SessionStatus.DISPOSED or len(self._entries) > self.max_pool_size:
            self._destroy(entry)

    def abort_and_release(self, session: AgentSession, task_id: str | None = None) -> None:
        try:
            session.abort(task_id)
        except Exception:
            log.exception(f"Abort failed for pooled session {session.id}")
        self.release(session)

    def warmup(self, config: dict[str, Any] | None = None) -> int:
        """Create idle sessions up to `max(min_pool_size, 1)`; returns how many."""
        target = max(self.min_pool_size, 1)
        missing = max(0, target - self.idle_count)
        for _ in range(missing):
            entry = self._create(config)
            entry.in_use = False
        return missing

    def session_info(self, session_id: str) -> PooledSessionInfo | None:
        entry = self._find(session_id)
        if entry is None:
            return None
        now = self._clock()
        return PooledSessionInfo(
            session_id=session_id,
            in_use=entry.in_use,
            use_count=entry.use_count,
            age_s=now - entry.created_at,
            idle_s=0.0 if entry.in_use else now - entry.last_used_at,
        )

    def stats(self) -> PoolStats:
        return PoolStats(
            total=len(self._entries),
            idle=self.idle_count,
            in_use=self.in_use_count,
            created=self._created,
            destroyed=self._destroyed,
            acquired=self._acquired,
            released=self._released,
        )

    def clear(self, dispose_idle: bool = True) -> None:
        if dispose_idle:
            for entry in [e for e in self._entries if not e.in_use]:
                self._destroy(entry)

    def dispose(self) -> None:
        """Destroy every session, including those in use."""
        for entry in list(self._entries):
            self._destroy(entry)

    def _find(self, session_id: str) -> _PooledSession | None:
        for entry in self._entries:
            if entry.session.id == session_id:
                return entry
        return None

    def _expired(self, entry: _PooledSession, now: float) -> bool:
        if entry.session.status is SessionStatus.DISPOSED:
            return True
        if now - entry.created_at > self.max_lifetime_s:
            return True
        return not entry.in_use and now - entry.last_used_at > self.max_idle_s

    def _drop_expired(self) -> None:
        now = self._clock()
        for entry in [e for e in self._entries if not e.in_use and self._expired(e, now)]:
            log.debug(f"Session {entry.session.id} expired")
            self._destroy(entry)

    def _create(self, config: dict[str, Any] | None) -> _PooledSession:
        session = self.engine.create_session(config)
        now = self._clock()
        entry = _PooledSession(session, created_at=now, last_used_at=now, config=dict(config or {}))
        self._entries.append(entry)
        self._created += 1
        log.debug(f"Pool {self.engine.id}: created {session.id} (total {len(self._entries)})")
        self._run_hook(self._on_create, session)
        return entry

    def _destroy(self, entry: _PooledSession) -> None:
        if entry in self._entries:
            self._entries.remove(entry)
        entry.session.dispose()
        self._destroyed += 1
        log.debug(f"Pool {self.engine.id}: destroyed {entry.session.id} (total {len(self._entries)})")
        self._run_hook(self._on_destroy, entry.session)

    def _run_hook(self, hook: SessionHook | None, session: AgentSession) -> None:
        if hook is None:
            return
        try:
            hook(session)
        except Exception:
            log.exception(f"Pool hook failed for session {session.id}")


class SessionPoolManager:
    """One `SessionPool` per engine id."""

    def __init__(self, **pool_options: Any):
        self.pool_options = pool_options
        self._pools: dict[str, SessionPool] = {}

    def __len__(self) -> int:
        return len(self._pools)

    def get_pool(self, engine: Engine, **overrides: Any) -> SessionPool:
        pool = self._pools.get(engine.id)
        if pool is None:
            pool = SessionPool(engine, **{**self.pool_options, **overrides})
            self._pools[engine.id] = pool
        return pool

    def acquire(self, engine: Engine, config: dict[str, Any] | None = None) -> AgentSession:
        return self.get_pool(engine).acquire(config)

    def release(self, engine: Engine, session: AgentSession, dispose: bool = False) -> None:
        self.get_pool(engine).release(session, dispose)

    def remove_pool(self, engine_id: str) -> bool:
        pool = self._pools.pop(engine_id, None)
        if pool is None:
            return False
        pool.dispose()
        return True

    def all_stats(self) -> dict[str, PoolStats]:
        return {engine_id: pool.stats() for engine_id, pool in self._pools.items()}

    def clear_all(self) -> None:
        for pool in self._pools.values():
            pool.clear()

    def dispose(self) -> None:
        for pool in self._pools.values():
            pool.dispose()
        self._pools.clear()
