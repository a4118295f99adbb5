"""OpenAI-compatible engine package."""

from airuntime.runners.openai_compat.backend import OpenAICompatBackend
from airuntime.runners.openai_compat.client import OpenAICompatClient
from airuntime.runners.openai_compat.config import PRESETS, OpenAICompatConfig, from_preset
from airuntime.runners.openai_compat.events import OpenAICompatEventParser

__all__ = [
    "OpenAICompatBackend",
    "OpenAICompatClient",
    "OpenAICompatConfig",
    "OpenAICompatEventParser",
    "PRESETS",
    "from_preset",
]
