"""Todo synchronization between the event bus and a todo store.

AI-originated todo events are applied to the store. User edits reach the bus
through the store itself (it publishes on every mutation) and are ignored here,
so a user edit never round-trips back into the store.

Loop guard: while a todo id is being applied, any event for the same id that
arrives re-entrantly is skipped and never retried. The store's own echo of
the mutation being applied is expected and skipped quietly; anything else is
logged as a warning.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from airuntime.bus import EventBus
from airuntime.events import (
    BaseEvent,
    TodoCreatedEvent,
    TodoDeletedEvent,
    TodoPriority,
    TodoSource,
    TodoUpdatedEvent,
    create_todo_created_event,
    create_todo_deleted_event,
    create_todo_updated_event,
)

log = logging.getLogger("todo_sync")

TODO_STATUSES = ("pending", "in_progress", "completed", "cancelled")


@dataclass
class Todo:
    id: str
    content: str
    priority: str = "medium"
    status: str = "pending"
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class TodoStore(Protocol):
    def create(
        self, todo_id: str, content: str, priority: TodoPriority = "medium", *, source: TodoSource = "user"
    ) -> Todo:
        ...

    def update(self, todo_id: str, changes: dict[str, Any], *, source: TodoSource = "user") -> Todo:
        ...

    def delete(self, todo_id: str, *, source: TodoSource = "user") -> None:
        ...

    def get(self, todo_id: str) -> Todo | None:
        ...


class InMemoryTodoStore:
    """Dict-backed store that publishes every mutation when given a bus."""

    def __init__(self, bus: EventBus | None = None):
        self.bus = bus
        self._todos: dict[str, Todo] = {}

    def __len__(self) -> int:
        return len(self._todos)

    def get(self, todo_id: str) -> Todo | None:
        return self._todos.get(todo_id)

    def list(self) -> list[Todo]:
        return list(self._todos.values())

    def create(
        self, todo_id: str, content: str, priority: TodoPriority = "medium", *, source: TodoSource = "user"
    ) -> Todo:
        if todo_id in self._todos:
            raise ValueError(f"Todo {todo_id} already exists")
        todo = Todo(id=todo_id, content=content, priority=priority)
        self._todos[todo_id] = todo
        self._publish(create_todo_created_event(todo_id, content, priority, source))
        return todo

    def update(self, todo_id: str, changes: dict[str, Any], *, source: TodoSource = "user") -> Todo:
        todo = self._todos.get(todo_id)
        if todo is None:
            raise KeyError(f"Unknown todo: {todo_id}")
        status = changes.get("status")
        if status is not None and status not in TODO_STATUSES:
            raise ValueError(f"Invalid todo status: {status!r}")
        for key, value in changes.items():
            if key in ("content", "priority", "status"):
                setattr(todo, key, value)
            else:
                todo.metadata[key] = value
        self._publish(create_todo_updated_event(todo_id, changes, source))
        return todo

    def delete(self, todo_id: str, *, source: TodoSource = "user") -> None:
        if self._todos.pop(todo_id, None) is None:
            raise KeyError(f"Unknown todo: {todo_id}")
        self._publish(create_todo_deleted_event(todo_id, source))

    def _publish(self, event: BaseEvent) -> None:
        if self.bus is not None:
            self.bus.emit(event)


class TodoEventSync:
    """Applies AI-originated todo events from the bus to a store."""

    def __init__(self, bus: EventBus, store: TodoStore):
        self.bus = bus
        self.store = store
        # todo id -> type of the event being applied
        self._in_flight: dict[str, str] = {}
        self._unsubscribers: list[Callable[[], None]] = []

    @property
    def started(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        if self._unsubscribers:
            return
        self._unsubscribers = [
            self.bus.on("todo_created", self._on_todo_event),
            self.bus.on("todo_updated", self._on_todo_event),
            self.bus.on("todo_deleted", self._on_todo_event),
        ]
        log.info("Todo event sync started")

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._in_flight.clear()

    def _on_todo_event(self, event: BaseEvent) -> None:
        if event.source == "user":
            return
        todo_id = event.todo_id
        applying = self._in_flight.get(todo_id)
        if applying is not None:
            if applying == event.type:
                log.debug(f"Skipping store echo of {event.type} for todo {todo_id}")
            else:
                log.warning(
                    f"Loop guard: skipping re-entrant {event.type} for todo {todo_id} "
                    f"while applying {applying}"
                )
            return

        self._in_flight[todo_id] = event.type
        try:
            self._apply(event)
        except (KeyError, ValueError) as e:
            log.error(f"Failed to apply {event.type} for todo {todo_id}: {e}")
        finally:
            self._in_flight.pop(todo_id, None)

    def _apply(self, event: BaseEvent) -> None:
        if isinstance(event, TodoCreatedEvent):
            log.info(f"AI created todo {event.todo_id}: {event.content}")
            self.store.create(event.todo_id, event.content, event.priority, source="ai")
        elif isinstance(event, TodoUpdatedEvent):
            log.info(f"AI updated todo {event.todo_id}: {event.changes}")
            self.store.update(event.todo_id, dict(event.changes), source="ai")
        elif isinstance(event, TodoDeletedEvent):
            log.info(f"AI deleted todo {event.todo_id}")
            self.store.delete(event.todo_id, source="ai")
