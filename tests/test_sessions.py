import asyncio

import pytest

from airuntime.errors import (
    ContinuationNotSupportedError,
    SessionBusyError,
    SessionDisposedError,
    TransportError,
)
from airuntime.lifecycle.sessions import AgentSession, SessionStatus
from airuntime.runners.claude import ClaudeEventParser
from airuntime.tasks import create_task

THINKING = {"type": "system", "subtype": "thinking"}
END = {"type": "session_end"}


@pytest.fixture
def make_session(bus):
    def factory(backend, **kwargs):
        return AgentSession("s1", "claude-code", backend, ClaudeEventParser("s1"), bus, **kwargs)

    return factory


async def _settle_loop():
    for _ in range(5):
        await asyncio.sleep(0)


async def test_progress_then_end_returns_to_idle(make_session, make_backend, event_log):
    session = make_session(make_backend([THINKING, THINKING, THINKING, END]))

    await session.run(create_task("hello"))
    await session.wait()

    assert session.status is SessionStatus.IDLE
    assert session.current_task_id is None
    assert event_log.types == ["session_start", "progress", "progress", "progress", "session_end"]
    assert len(event_log.of_type("session_end")) == 1
    assert all(e.session_id == "s1" for e in event_log.events)


async def test_run_is_accepted_not_completed(make_session, make_backend):
    backend = make_backend([THINKING], hold=True)
    session = make_session(backend)
    task = create_task("hello")

    await session.run(task)

    assert session.status is SessionStatus.RUNNING
    assert session.current_task_id == task.id
    with pytest.raises(SessionBusyError):
        await session.run(create_task("again"))
    assert len(backend.opened) == 1

    session.abort()
    await _settle_loop()


async def test_abort_emits_single_aborted_end(make_session, make_backend, event_log):
    backend = make_backend([THINKING], hold=True)
    session = make_session(backend)

    await session.run(create_task("hello"))
    await _settle_loop()
    session.abort()
    session.abort()
    backend.release()
    await _settle_loop()

    assert session.status is SessionStatus.IDLE
    assert backend.cancel_calls == 1
    ends = event_log.of_type("session_end")
    assert [e.reason for e in ends] == ["aborted"]
    assert event_log.types[-1] == "session_end"


async def test_abort_with_other_task_id_is_noop(make_session, make_backend, event_log):
    backend = make_backend([], hold=True)
    session = make_session(backend)

    await session.run(create_task("hello"))
    session.abort("some-other-task")

    assert session.status is SessionStatus.RUNNING
    assert backend.cancel_calls == 0
    assert event_log.of_type("session_end") == []

    session.abort()
    await _settle_loop()


async def test_abort_when_idle_is_noop(make_session, make_backend, event_log):
    session = make_session(make_backend())
    session.abort()
    assert event_log.events == []


async def test_abort_from_own_handler(make_session, make_backend, event_log):
    session = make_session(make_backend([THINKING, THINKING, END]))
    session.on_event(lambda e: session.abort() if e.type == "progress" else None)

    await session.run(create_task("hello"))
    await session.wait()
    await _settle_loop()

    assert event_log.types == ["session_start", "progress", "session_end"]
    assert event_log.events[-1].reason == "aborted"
    assert session.status is SessionStatus.IDLE


async def test_dispose_twice_is_same_as_once(make_session, make_backend, event_log):
    backend = make_backend([], hold=True)
    session = make_session(backend)
    await session.run(create_task("hello"))

    session.dispose()
    session.dispose()
    await _settle_loop()

    assert session.status is SessionStatus.DISPOSED
    assert backend.close_calls == 1
    assert [e.reason for e in event_log.of_type("session_end")] == ["aborted"]
    with pytest.raises(SessionDisposedError):
        await session.run(create_task("again"))


async def test_dispose_idle_session_emits_nothing(make_session, make_backend, event_log):
    backend = make_backend()
    session = make_session(backend)

    session.dispose()

    assert event_log.events == []
    assert backend.close_calls == 1


async def test_stream_without_terminal_gets_synthesized_end(make_session, make_backend, event_log):
    session = make_session(make_backend([THINKING]))

    await session.run(create_task("hello"))
    await session.wait()

    assert event_log.types == ["session_start", "progress", "session_end"]
    assert event_log.events[-1].reason == "completed"


async def test_open_failure_becomes_error_event(make_session, make_backend, event_log):
    session = make_session(make_backend(open_error=TransportError("claude not found")))

    await session.run(create_task("hello"))

    assert event_log.types == ["session_start", "error"]
    assert event_log.events[-1].code == "transport"
    assert session.status is SessionStatus.IDLE


async def test_stream_failure_becomes_error_event(make_session, make_backend, event_log):
    backend = make_backend([THINKING], stream_error=TransportError("claude exited with code 1"))
    session = make_session(backend)

    await session.run(create_task("hello"))
    await session.wait()

    assert event_log.types == ["session_start", "progress", "error"]
    assert event_log.events[-1].message == "claude exited with code 1"
    assert session.status is SessionStatus.IDLE


async def test_timeout_errors_and_disposes(make_session, make_backend, event_log):
    backend = make_backend([THINKING], hold=True)
    session = make_session(backend, timeout_s=0.05)

    await session.run(create_task("hello"))
    await session.wait()

    assert event_log.types[-1] == "error"
    assert event_log.events[-1].code == "timeout"
    assert session.status is SessionStatus.DISPOSED
    assert backend.close_calls == 1


async def test_status_is_idle_when_terminal_event_arrives(make_session, make_backend):
    session = make_session(make_backend([END]))
    seen = []
    session.on_event(lambda e: seen.append(session.status) if e.type == "session_end" else None)

    await session.run(create_task("hello"))
    await session.wait()

    assert seen == [SessionStatus.IDLE]


async def test_continue_keeps_parser_state(make_session, make_backend):
    tool_start = {"type": "tool_start", "tool_name": "search"}
    backend = make_backend([tool_start, END])
    session = make_session(backend, supports_continue=True)

    await session.run(create_task("first"))
    await session.wait()
    await session.continue_conversation("second")
    await session.wait()

    assert [resume for _, resume in backend.opened] == [False, True]
    assert len(session.parser.tracker) == 2

    await session.run(create_task("third"))
    await session.wait()
    assert len(session.parser.tracker) == 1


async def test_continue_requires_support(make_session, make_backend):
    session = make_session(make_backend([END]))

    with pytest.raises(ContinuationNotSupportedError):
        await session.continue_conversation("more")


async def test_listener_unsubscribe(make_session, make_backend, make_log):
    session = make_session(make_backend([END]))
    local = make_log()
    unsubscribe = session.on_event(local)
    unsubscribe()
    unsubscribe()

    await session.run(create_task("hello"))
    await session.wait()

    assert local.events == []


async def test_abort_while_backend_opens(make_session, make_backend, event_log):
    gate = asyncio.Event()
    backend = make_backend([THINKING, END], open_gate=gate)
    session = make_session(backend)

    starting = asyncio.create_task(session.run(create_task("hello")))
    await _settle_loop()
    session.abort()
    gate.set()
    await starting
    await _settle_loop()

    assert session.status is SessionStatus.IDLE
    assert backend.cancel_calls == 2
    assert event_log.types == ["session_start", "session_end"]
    assert event_log.events[-1].reason == "aborted"


async def test_dispose_while_backend_opens(make_session, make_backend, event_log):
    gate = asyncio.Event()
    backend = make_backend([THINKING, END], open_gate=gate)
    session = make_session(backend)

    starting = asyncio.create_task(session.run(create_task("hello")))
    await _settle_loop()
    session.dispose()
    gate.set()
    await starting
    await _settle_loop()

    assert session.status is SessionStatus.DISPOSED
    assert backend.close_calls == 1
    assert backend.cancel_calls == 2
    assert event_log.types == ["session_start", "session_end"]


async def test_dispose_callbacks_run_once(make_session, make_backend):
    session = make_session(make_backend())
    calls = []
    session.on_dispose(lambda: calls.append(session.status))

    session.dispose()
    session.dispose()

    assert calls == [SessionStatus.DISPOSED]
