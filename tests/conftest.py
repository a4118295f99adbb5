"""Shared fixtures: an isolated bus and an in-memory session backend."""

from __future__ import annotations

import asyncio
import os
from typing import Any, AsyncIterator

import pytest

from airuntime.bus import EventBus, reset_event_bus
from airuntime.events import BaseEvent
from airuntime.runners.claude import ClaudeEventParser
from airuntime.runners.registry import Engine, EngineCapabilities
from airuntime.tasks import AITask


class FakeBackend:
    """SessionBackend that replays canned raw records.

    `hold=True` keeps the stream open after the records until `release()` or
    cancellation, which lets tests observe a running session. `open_gate`
    holds `open` itself until the event is set.
    """

    def __init__(
        self,
        records: list[dict[str, Any]] | None = None,
        *,
        hold: bool = False,
        open_error: Exception | None = None,
        stream_error: Exception | None = None,
        open_gate: asyncio.Event | None = None,
    ):
        self.records = list(records or [])
        self.hold = hold
        self.open_error = open_error
        self.stream_error = stream_error
        self.open_gate = open_gate
        self.opened: list[tuple[AITask, bool]] = []
        self.cancel_calls = 0
        self.close_calls = 0
        self.closed_streams = 0
        self._released = asyncio.Event()

    async def open(self, task: AITask, *, resume: bool = False) -> AsyncIterator[dict[str, Any]]:
        self.opened.append((task, resume))
        if self.open_gate is not None:
            await self.open_gate.wait()
        if self.open_error is not None:
            raise self.open_error
        return self._stream()

    async def _stream(self) -> AsyncIterator[dict[str, Any]]:
        try:
            for record in self.records:
                await asyncio.sleep(0)
                yield record
            if self.hold:
                await self._released.wait()
            if self.stream_error is not None:
                raise self.stream_error
        finally:
            self.closed_streams += 1

    def release(self) -> None:
        self._released.set()

    def cancel(self) -> None:
        self.cancel_calls += 1

    def close(self) -> None:
        self.close_calls += 1


class EventLog:
    """Collects events delivered to a bus or session listener."""

    def __init__(self) -> None:
        self.events: list[BaseEvent] = []

    def __call__(self, event: BaseEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str) -> list[BaseEvent]:
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def event_log(bus: EventBus) -> EventLog:
    log = EventLog()
    bus.on_any(log)
    return log


@pytest.fixture(autouse=True)
def _isolate_global_bus():
    yield
    reset_event_bus()


@pytest.fixture(autouse=True)
def _clear_runtime_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("AIRUNTIME_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def make_log():
    return EventLog


@pytest.fixture
def make_engine(bus, make_backend):
    """Engine whose sessions replay `records` (one `session_end` by default)."""

    def factory(engine_id="fake", records=None, **capabilities):
        backends = []

        def backend_factory(config):
            backend = make_backend(records if records is not None else [{"type": "session_end"}])
            backends.append(backend)
            return backend

        engine = Engine(
            engine_id,
            "Fake",
            EngineCapabilities(**capabilities),
            backend_factory,
            ClaudeEventParser,
            bus=bus,
            eviction_grace_s=0,
        )
        engine.backends = backends
        return engine

    return factory
