"""Event bus.

The bus is the single distribution point for canonical events. Producers
(sessions, the todo store) call `emit`; consumers subscribe by event type or
to everything. Delivery is synchronous and in registration order.

A handler that raises is logged and skipped; the remaining handlers still run
and `emit` itself never raises.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from airuntime.events import EVENT_TYPES, BaseEvent

log = logging.getLogger("bus")

EventHandler = Callable[[BaseEvent], None]
Unsubscribe = Callable[[], None]

_ANY = "*"


@dataclass(eq=False)
class _Subscription:
    handler: EventHandler
    once: bool = False
    active: bool = True


class EventBus:
    """Typed publish/subscribe for `AIEvent` values."""

    def __init__(self) -> None:
        self._subs: dict[str, list[_Subscription]] = {}

    def on(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        self._check_type(event_type)
        return self._subscribe(event_type, _Subscription(handler))

    def once(self, event_type: str, handler: EventHandler) -> Unsubscribe:
        self._check_type(event_type)
        return self._subscribe(event_type, _Subscription(handler, once=True))

    def on_any(self, handler: EventHandler) -> Unsubscribe:
        return self._subscribe(_ANY, _Subscription(handler))

    def emit(self, event: BaseEvent) -> None:
        for key in (event.type, _ANY):
            subs = self._subs.get(key)
            if not subs:
                continue
            for sub in list(subs):
                if not sub.active:
                    continue
                if sub.once:
                    self._remove(key, sub)
                try:
                    sub.handler(event)
                except Exception:
                    log.exception(f"Event handler {sub.handler!r} failed on {event.type}")

    def listener_count(self, event_type: str | None = None) -> int:
        if event_type is None:
            return sum(len(subs) for subs in self._subs.values())
        return len(self._subs.get(event_type, ()))

    def clear(self) -> None:
        for subs in self._subs.values():
            for sub in subs:
                sub.active = False
        self._subs.clear()

    def _check_type(self, event_type: str) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type!r}")

    def _subscribe(self, key: str, sub: _Subscription) -> Unsubscribe:
        self._subs.setdefault(key, []).append(sub)

        def unsubscribe() -> None:
            self._remove(key, sub)

        return unsubscribe

    def _remove(self, key: str, sub: _Subscription) -> None:
        if not sub.active:
            return
        sub.active = False
        subs = self._subs.get(key)
        if subs is None or sub not in subs:
            return
        subs.remove(sub)
        if not subs:
            del self._subs[key]


_default_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Process-wide bus for hosts that do not wire their own."""
    global _default_bus
    if _default_bus is None:
        _default_bus = EventBus()
    return _default_bus


def reset_event_bus() -> None:
    """Drop the process-wide bus (tests only)."""
    global _default_bus
    if _default_bus is not None:
        _default_bus.clear()
    _default_bus = None
