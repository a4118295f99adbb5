"""Units of work submitted to a session."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

TaskKind = Literal["chat", "refactor", "analyze", "generate"]

TASK_KINDS: tuple[str, ...] = ("chat", "refactor", "analyze", "generate")


@dataclass(frozen=True)
class TaskInput:
    prompt: str
    files: tuple[str, ...] = ()
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AITask:
    id: str
    kind: TaskKind
    input: TaskInput


def create_task(
    prompt: str,
    files: Iterable[str] | None = None,
    kind: TaskKind = "chat",
    task_id: str | None = None,
    **extra: Any,
) -> AITask:
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValueError("Task prompt must be a non-empty string")
    if kind not in TASK_KINDS:
        raise ValueError(f"Unknown task kind: {kind}")
    return AITask(
        id=task_id or str(uuid.uuid4()),
        kind=kind,
        input=TaskInput(prompt=prompt, files=tuple(files or ()), extra=dict(extra)),
    )


def build_prompt(task: AITask) -> str:
    """Prompt text sent to a backend, with referenced files listed after it."""
    prompt = task.input.prompt
    if not task.input.files:
        return prompt
    listing = "\n".join(f"- {path}" for path in task.input.files)
    return f"{prompt}\n\nReferenced files:\n{listing}"
