import asyncio

import pytest

from airuntime.lifecycle.pool import SessionPool
from airuntime.lifecycle.queue import QueuedTaskStatus, TaskQueue
from airuntime.tasks import create_task


@pytest.fixture
def held_engine(make_engine):
    """Engine whose backends keep streaming until released."""
    engine = make_engine(records=[], max_concurrent_sessions=0)

    def session():
        created = engine.create_session()
        engine.backends[-1].hold = True
        return created

    engine.held_session = session
    return engine


async def test_running_tasks_are_limited(held_engine):
    queue = TaskQueue(max_parallel=2)
    started = []
    queue.on_event(lambda e: started.append((e.task_id, e.running)) if e.type == "task_started" else None)
    tasks = [create_task(f"task {i}") for i in range(3)]

    for task in tasks:
        queue.enqueue(task, held_engine.held_session())

    assert queue.stats() == {"pending": 1, "running": 2, "completed": 0}
    assert queue.status(tasks[2].id) is QueuedTaskStatus.PENDING

    for backend in held_engine.backends:
        backend.release()
    await queue.wait_idle()

    assert [task_id for task_id, _ in started] == [t.id for t in tasks]
    assert max(running for _, running in started) == 2
    assert all(queue.result(t.id).status is QueuedTaskStatus.SUCCESS for t in tasks)


async def test_execute_reports_errors(make_engine):
    engine = make_engine(records=[{"type": "error", "error": "bad credentials"}], max_concurrent_sessions=0)
    queue = TaskQueue()
    seen = []

    result = await queue.execute(create_task("hello"), engine.create_session(), on_event=seen.append)

    assert result.status is QueuedTaskStatus.ERROR
    assert result.error == "bad credentials"
    assert result.duration_s is not None
    assert [e.type for e in seen] == ["session_start", "error"]


async def test_cancel_pending_task(held_engine):
    queue = TaskQueue()
    first, second = create_task("first"), create_task("second")
    completed = []

    queue.enqueue(first, held_engine.held_session())
    queue.enqueue(second, held_engine.held_session(), on_complete=completed.append)

    assert queue.cancel(second.id) is True
    assert queue.status(second.id) is QueuedTaskStatus.CANCELED
    assert [r.task_id for r in completed] == [second.id]
    assert held_engine.backends[1].opened == []

    held_engine.backends[0].release()
    await queue.wait_idle()
    assert queue.result(first.id).status is QueuedTaskStatus.SUCCESS


async def test_cancel_running_task_aborts_session(held_engine):
    queue = TaskQueue()
    task = create_task("hello")
    session = held_engine.held_session()
    running = asyncio.Event()

    def on_event(event):
        if event.type == "session_start":
            running.set()

    queue.enqueue(task, session, on_event=on_event)
    await running.wait()

    assert queue.cancel(task.id) is True
    await queue.wait_idle()

    assert queue.result(task.id).status is QueuedTaskStatus.CANCELED
    assert held_engine.backends[0].cancel_calls >= 1
    assert queue.cancel(task.id) is False


async def test_clear_cancels_pending_only(held_engine):
    queue = TaskQueue()
    events = []
    queue.on_event(lambda e: events.append(e.type))
    tasks = [create_task(f"task {i}") for i in range(3)]
    for task in tasks:
        queue.enqueue(task, held_engine.held_session())

    assert queue.clear() == 2
    assert queue.stats() == {"pending": 0, "running": 1, "completed": 2}

    held_engine.backends[0].release()
    await queue.wait_idle()

    assert events[-1] == "queue_empty"
    assert queue.clear_completed() == 3


async def test_tasks_without_session_borrow_from_pool(make_engine):
    pool = SessionPool(make_engine(max_concurrent_sessions=0))
    queue = TaskQueue(pool=pool)

    first = await queue.execute(create_task("one"))
    second = await queue.execute(create_task("two"))

    assert first.status is second.status is QueuedTaskStatus.SUCCESS
    stats = pool.stats()
    assert stats.created == 1
    assert stats.acquired == 2
    assert stats.idle == 1


async def test_enqueue_validation(make_engine):
    session = make_engine(max_concurrent_sessions=0).create_session()
    queue = TaskQueue()
    task = create_task("hello")

    with pytest.raises(ValueError):
        TaskQueue(max_parallel=0)
    with pytest.raises(ValueError, match="needs a queue with a pool"):
        queue.enqueue(task)

    session.backend.hold = True
    queue.enqueue(task, session)
    with pytest.raises(ValueError, match="already queued"):
        queue.enqueue(task, session)

    queue.dispose()
    await queue.wait_idle()
    assert queue.result(task.id).status is QueuedTaskStatus.CANCELED
