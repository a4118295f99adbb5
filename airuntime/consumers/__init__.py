"""Bus consumers that never need to know which engine produced an event."""

from airuntime.consumers.inspector import EventInspector, format_event
from airuntime.consumers.todo_sync import InMemoryTodoStore, Todo, TodoEventSync, TodoStore

__all__ = [
    "EventInspector",
    "InMemoryTodoStore",
    "Todo",
    "TodoEventSync",
    "TodoStore",
    "format_event",
]
