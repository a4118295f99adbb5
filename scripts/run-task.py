#!/usr/bin/env python3
"""Run one prompt through an engine and stream its events to stdout.

A thin driver over the runtime: builds the default engine registry, opens a
session, prints every canonical event as it arrives and exits with a status
that reflects how the task ended.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from airuntime.bus import EventBus
from airuntime.config import RuntimeSettings
from airuntime.consumers.inspector import EventInspector, format_event
from airuntime.errors import LifecycleError, UnknownEngineError
from airuntime.events import AssistantMessageEvent, BaseEvent, ErrorEvent, SessionEndEvent
from airuntime.runners.registry import build_default_registry
from airuntime.tasks import TASK_KINDS, create_task


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a prompt through an AI engine")
    parser.add_argument("prompt", nargs="+", help="prompt for the agent")
    parser.add_argument(
        "--engine",
        "-e",
        default=None,
        help="engine id (default: AIRUNTIME_DEFAULT_ENGINE or claude-code)",
    )
    parser.add_argument("--kind", choices=TASK_KINDS, default="chat", help="task kind")
    parser.add_argument("--file", "-f", action="append", default=[], help="file to reference")
    parser.add_argument(
        "--follow-up",
        action="append",
        default=[],
        help="prompt to continue the conversation with after the first task",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="max seconds per task (default: AIRUNTIME_SESSION_TIMEOUT)",
    )
    parser.add_argument("--json", action="store_true", help="print raw event dicts as JSON lines")
    parser.add_argument("--list", action="store_true", help="list engines and exit")
    return parser.parse_args(argv)


def _print_event(event: BaseEvent, as_json: bool) -> None:
    if as_json:
        print(json.dumps(event.to_dict(), ensure_ascii=False, default=str), flush=True)
        return
    if isinstance(event, AssistantMessageEvent) and event.is_delta:
        print(event.text, end="", flush=True)
        return
    print(format_event(event), flush=True)


async def main(argv: list[str]) -> int:
    args = _parse_args(argv)

    settings = RuntimeSettings.from_env()
    if args.timeout is not None:
        settings = replace(settings, session_timeout_s=args.timeout if args.timeout > 0 else None)
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )

    bus = EventBus()
    registry = build_default_registry(bus, settings)

    if args.list:
        for desc in registry.list():
            marker = "*" if desc.is_default else " "
            status = "available" if desc.available else "unavailable"
            print(f"{marker} {desc.id:<14} {desc.name} ({status})")
        return 0

    try:
        engine = registry.get(args.engine) if args.engine else registry.get_default()
    except UnknownEngineError as e:
        known = ", ".join(desc.id for desc in registry.list()) or "none"
        print(f"Error: {e}. Known: {known}", file=sys.stderr)
        return 2

    if not engine.is_available():
        print(f"Error: engine '{engine.id}' is not available", file=sys.stderr)
        return 2

    prompt_text = " ".join(args.prompt).strip()
    if not prompt_text:
        print("Error: empty prompt", file=sys.stderr)
        return 1

    inspector = EventInspector(bus, max_events=settings.inspector_max_events)
    inspector.attach()

    outcome: dict[str, BaseEvent] = {}

    def _on_event(event: BaseEvent) -> None:
        _print_event(event, args.json)
        if isinstance(event, (SessionEndEvent, ErrorEvent)):
            outcome["last"] = event

    session = engine.create_session()
    session.on_event(_on_event)
    try:
        await session.run(create_task(prompt_text, files=args.file, kind=args.kind))
        await session.wait()

        for follow_up in args.follow_up:
            if isinstance(outcome.get("last"), ErrorEvent):
                break
            await session.continue_conversation(follow_up, files=args.file)
            await session.wait()
    except LifecycleError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        session.dispose()
        registry.clear()
        inspector.detach()

    last = outcome.get("last")
    if isinstance(last, ErrorEvent):
        return 3 if last.code == "timeout" else 1
    if isinstance(last, SessionEndEvent) and last.reason != "completed":
        return 1
    logging.getLogger("run-task").debug(f"Event counts: {inspector.counts()}")
    return 0


def run(argv: list[str]) -> int:
    # Ctrl-C cancels `main` (its finally disposes the session), then surfaces here.
    try:
        return asyncio.run(main(argv))
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(run(sys.argv[1:]))
