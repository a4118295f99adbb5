"""Shared helpers for tool event logging.

Engines differ in their native tool names and input shapes, but logs and the
inspector want consistent tool markers like:
  [tool:Bash ls -la]

This module centralizes redaction of sensitive keys, tool input previews and
env-based gating of tool-input logging.
"""

from __future__ import annotations

import json

from airuntime.config import env_bool, env_int

_REDACT_KEYS = ("key", "token", "secret", "password", "auth", "cookie")


def should_log_tool_input() -> bool:
    return env_bool("LOG_TOOL_INPUT", False)


def tool_input_max_len() -> int:
    return env_int("LOG_TOOL_INPUT_MAX", 2000)


def redact_tool_input(obj: object) -> object:
    if isinstance(obj, dict):
        out: dict[object, object] = {}
        for k, v in obj.items():
            ks = str(k).lower()
            if any(rk in ks for rk in _REDACT_KEYS):
                out[k] = "[REDACTED]"
            else:
                out[k] = redact_tool_input(v)
        return out
    if isinstance(obj, list):
        return [redact_tool_input(x) for x in obj]
    return obj


def format_tool_input_preview(tool: str, raw_input: object) -> str | None:
    """Return a short, human-readable tool input preview (redacted if needed)."""

    if not raw_input:
        return None

    name = tool.lower()

    if name in {"bash", "shell", "run_shell_command"} and isinstance(raw_input, dict):
        cmd = raw_input.get("command")
        if isinstance(cmd, str) and cmd.strip():
            return cmd.strip()

    if name in {"read", "write", "edit", "read_file", "write_file"} and isinstance(raw_input, dict):
        fp = raw_input.get("file_path") or raw_input.get("filePath") or raw_input.get("path")
        if isinstance(fp, str) and fp:
            return fp

    if name in {"grep", "search"} and isinstance(raw_input, dict):
        pat = raw_input.get("pattern") or raw_input.get("q") or raw_input.get("query")
        if isinstance(pat, str) and pat:
            return f"pattern={pat!r}"

    redacted = redact_tool_input(raw_input)
    return json.dumps(redacted, ensure_ascii=True, sort_keys=True, default=str)


def format_tool_marker(tool: str, raw_input: object) -> str:
    """`[tool:<name> <preview>]`, preview only when input logging is enabled."""

    preview = format_tool_input_preview(tool, raw_input) if should_log_tool_input() else None
    if not preview:
        return f"[tool:{tool}]"
    limit = tool_input_max_len()
    if len(preview) > limit:
        preview = preview[:limit] + "..."
    return f"[tool:{tool} {preview}]"
