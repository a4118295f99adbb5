from airuntime.events import create_progress_event, create_session_end_event
from airuntime.runners.openai_compat.client import OpenAICompatClient
from airuntime.runners.openai_compat.config import OpenAICompatConfig
from airuntime.runners.pipeline import JSONLineStats, drain_events, iter_json_line_pipeline
from airuntime.runners.process import _make_failure_message


async def _aiter(items):
    for item in items:
        yield item


class _FakeResponse:
    def __init__(self, lines):
        self.content = _aiter(lines)


async def test_json_line_pipeline_collects_non_json():
    stats = JSONLineStats()
    lines = [b'{"type": "system"}\n', b"\n", b"Warning: deprecated flag\n", b"[1, 2]\n", b'{"type": "result"}\n']

    records = [r async for r in iter_json_line_pipeline(byte_stream=_aiter(lines), stats=stats)]

    assert [r["type"] for r in records] == ["system", "result"]
    assert stats.emitted_any is True
    assert stats.non_json_lines == ["Warning: deprecated flag"]


def test_failure_message_includes_preview():
    stats = JSONLineStats(non_json_lines=["Error: not logged in"])
    assert _make_failure_message("claude", 1, stats) == "claude exited with code 1:\nError: not logged in"
    assert _make_failure_message("iflow", 2, JSONLineStats()) == "iflow exited with code 2"


async def test_drain_stops_at_first_terminal_event():
    delivered = []
    closed = []

    async def raw():
        try:
            yield {"n": 1}
            yield {"n": 2}
            yield {"n": 3}
        finally:
            closed.append(True)

    def parse(record):
        if record["n"] == 2:
            return [create_progress_event("two"), create_session_end_event("s1")]
        return [create_progress_event(str(record["n"]))]

    terminal = await drain_events(raw_events=raw(), parse=parse, deliver=delivered.append)

    assert terminal.type == "session_end"
    assert [e.type for e in delivered] == ["progress", "progress", "session_end"]
    assert closed == [True]


async def test_drain_returns_none_when_stream_runs_dry():
    delivered = []
    terminal = await drain_events(
        raw_events=_aiter([{"n": 1}]),
        parse=lambda r: [create_progress_event("x")],
        deliver=delivered.append,
    )
    assert terminal is None
    assert len(delivered) == 1


async def test_drain_honours_should_stop():
    delivered = []
    terminal = await drain_events(
        raw_events=_aiter([{"n": 1}, {"n": 2}]),
        parse=lambda r: [create_progress_event("x")],
        deliver=delivered.append,
        should_stop=lambda: len(delivered) >= 1,
    )
    assert terminal is None
    assert len(delivered) == 1


async def test_sse_stream_stops_at_done():
    client = OpenAICompatClient(OpenAICompatConfig(api_key="sk-1"))
    lines = [
        b": keep-alive\n",
        b'data: {"choices": [{"delta": {"content": "Hi"}}]}\n',
        b"\n",
        b"data: not-json\n",
        b"\n",
        b"data: [DONE]\n",
        b"\n",
        b'data: {"choices": []}\n',
        b"\n",
    ]

    chunks = [c async for c in client.read_sse_stream(_FakeResponse(lines))]

    assert chunks == [{"choices": [{"delta": {"content": "Hi"}}]}]


async def test_sse_stream_without_trailing_blank_line():
    client = OpenAICompatClient(OpenAICompatConfig(api_key="sk-1"))
    lines = [b'data: {"choices": []}\n']

    chunks = [c async for c in client.read_sse_stream(_FakeResponse(lines))]

    assert chunks == [{"choices": []}]


def test_client_payload_and_headers():
    config = OpenAICompatConfig(api_key="sk-1", base_url="https://api.example.com/v1/", headers={"X-Title": "t"})
    client = OpenAICompatClient(config)

    assert client._make_url("/chat/completions") == "https://api.example.com/v1/chat/completions"
    headers = client._headers()
    assert headers["Authorization"] == "Bearer sk-1"
    assert headers["X-Title"] == "t"
    payload = client.build_payload([{"role": "user", "content": "hi"}])
    assert payload["stream"] is True
    assert payload["model"] == "gpt-4o-mini"
    assert "top_p" not in payload
