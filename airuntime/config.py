"""Runtime settings loaded from environment variables.

Engine-specific options live next to each engine (`ClaudeConfig`,
`IFlowConfig`, `OpenAICompatConfig`); this module holds what the session and
registry layers need plus the small env parsing helpers they share.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_PREFIX = "AIRUNTIME_"


def env_str(name: str, default: str | None = None) -> str | None:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_float(name: str, default: float | None) -> float | None:
    raw = env_str(name)
    if raw is None:
        return default
    return float(raw)


def env_int(name: str, default: int) -> int:
    raw = env_str(name)
    if raw is None:
        return default
    return int(raw)


@dataclass(frozen=True)
class RuntimeSettings:
    """Immutable settings shared by sessions and the engine registry."""

    default_engine: str = "claude-code"
    log_level: str = "INFO"
    # None disables the per-task timeout.
    session_timeout_s: float | None = None
    eviction_grace_s: float = 5.0
    inspector_max_events: int = 500

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        timeout = env_float("SESSION_TIMEOUT", cls.session_timeout_s)
        return cls(
            default_engine=env_str("DEFAULT_ENGINE", cls.default_engine),
            log_level=(env_str("LOG_LEVEL", cls.log_level) or cls.log_level).upper(),
            session_timeout_s=timeout if timeout and timeout > 0 else None,
            eviction_grace_s=env_float("EVICTION_GRACE", cls.eviction_grace_s),
            inspector_max_events=env_int("INSPECTOR_MAX_EVENTS", cls.inspector_max_events),
        )
