"""OpenAI-compatible engine configuration.

Configuration lives at the adapter boundary so higher-level code doesn't grow a
dependency on the backend's internal constructor signature.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any
from urllib.parse import urlparse

from airuntime.config import env_float, env_int, env_str


@dataclass(frozen=True)
class OpenAICompatConfig:
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o-mini"
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float | None = None
    system_prompt: str | None = "You are a helpful coding assistant."
    headers: dict[str, str] = field(default_factory=dict)
    http_timeout_s: float = 120.0

    @classmethod
    def from_env(cls) -> OpenAICompatConfig:
        return cls(
            api_key=env_str("OPENAI_API_KEY", "") or "",
            base_url=env_str("OPENAI_BASE_URL", cls.base_url),
            model=env_str("OPENAI_MODEL", cls.model),
            temperature=env_float("OPENAI_TEMPERATURE", cls.temperature),
            max_tokens=env_int("OPENAI_MAX_TOKENS", cls.max_tokens),
            http_timeout_s=env_float("OPENAI_HTTP_TIMEOUT", cls.http_timeout_s),
        )

    @property
    def display_name(self) -> str:
        if "api.openai.com" in self.base_url:
            return f"OpenAI ({self.model})"
        if "api.deepseek.com" in self.base_url:
            return f"DeepSeek ({self.model})"
        if "openrouter.ai" in self.base_url:
            return f"OpenRouter ({self.model})"
        return f"OpenAI Compatible ({self.model})"

    def validate(self) -> list[str]:
        """Problems that make the config unusable; empty when valid."""
        errors = []
        if not self.api_key:
            errors.append("API key is not set")
        parsed = urlparse(self.base_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(f"Invalid base URL: {self.base_url!r}")
        if not self.model:
            errors.append("Model is not set")
        if not 0 <= self.temperature <= 2:
            errors.append(f"Temperature must be within 0..2, got {self.temperature}")
        if self.max_tokens <= 0:
            errors.append(f"max_tokens must be positive, got {self.max_tokens}")
        return errors

    def is_valid(self) -> bool:
        return not self.validate()


PRESETS: dict[str, dict[str, Any]] = {
    "openai-gpt4o": {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "temperature": 0.7,
        "max_tokens": 4096,
    },
    "deepseek-coder": {
        "base_url": "https://api.deepseek.com/v1",
        "model": "deepseek-coder",
        "temperature": 0.3,
        "max_tokens": 8192,
    },
    "deepseek-chat": {
        "base_url": "https://api.deepseek.com/v1",
        "model": "deepseek-chat",
        "temperature": 0.7,
        "max_tokens": 8192,
    },
    "openrouter": {
        "base_url": "https://openrouter.ai/api/v1",
        "model": "anthropic/claude-3.5-sonnet",
        "temperature": 0.7,
        "max_tokens": 4096,
    },
}


def from_preset(name: str, api_key: str, **overrides: Any) -> OpenAICompatConfig:
    preset = PRESETS.get(name)
    if preset is None:
        raise ValueError(f"Unknown preset: {name}")
    return replace(OpenAICompatConfig(api_key=api_key, **preset), **overrides)
