import pytest

from airuntime.runners.claude import ClaudeBackend, ClaudeConfig, ClaudeEventParser
from airuntime.tasks import create_task
from airuntime.tool_calls import ToolCallStatus


@pytest.fixture
def parser() -> ClaudeEventParser:
    return ClaudeEventParser("claude-code-s1")


def test_assistant_tool_use_precedes_message(parser):
    events = parser.parse(
        {
            "type": "assistant",
            "message": {
                "content": [
                    {"type": "text", "text": "Let me look. "},
                    {"type": "tool_use", "id": "toolu_1", "name": "Read", "input": {"file_path": "a.py"}},
                    {"type": "text", "text": "Reading now."},
                ]
            },
        }
    )

    assert [e.type for e in events] == ["tool_call_start", "assistant_message"]
    start, message = events
    assert start.tool_id == "toolu_1"
    assert start.args == {"file_path": "a.py"}
    assert message.text == "Let me look. Reading now."
    assert message.is_delta is False
    assert [c.id for c in message.tool_calls] == ["toolu_1"]
    assert parser.tracker.get("toolu_1").status is ToolCallStatus.RUNNING


def test_user_tool_result_closes_call_by_id(parser):
    parser.parse(
        {
            "type": "assistant",
            "message": {"content": [{"type": "tool_use", "id": "toolu_1", "name": "Bash", "input": {}}]},
        }
    )
    events = parser.parse(
        {
            "type": "user",
            "message": {
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_1",
                        "content": [{"type": "text", "text": "file.txt"}],
                    }
                ]
            },
        }
    )

    assert [e.type for e in events] == ["tool_call_end"]
    assert events[0].name == "Bash"
    assert events[0].result == "file.txt"
    assert events[0].success is True
    assert parser.tracker.get("toolu_1").status is ToolCallStatus.COMPLETED


def test_tool_start_end_by_name(parser):
    start_events = parser.parse({"type": "tool_start", "tool_name": "search", "input": {"q": "x"}})
    end_events = parser.parse({"type": "tool_end", "tool_name": "search", "output": "y"})

    assert [e.type for e in start_events] == ["progress", "tool_call_start"]
    assert [e.type for e in end_events] == ["progress", "tool_call_end"]
    end = end_events[1]
    assert end.result == "y"
    assert end.success is True
    assert end.tool_id == start_events[1].tool_id
    assert parser.tracker.get_tool_calls()[0].status is ToolCallStatus.COMPLETED


def test_tool_end_without_output_is_failure(parser):
    parser.parse({"type": "tool_start", "tool_name": "search", "tool_id": "t1"})
    events = parser.parse({"type": "tool_end", "tool_name": "search", "tool_id": "t1"})

    assert events[1].success is False
    assert parser.tracker.get("t1").status is ToolCallStatus.FAILED


def test_tool_end_without_start_still_emits(parser):
    events = parser.parse({"type": "tool_end", "tool_name": "search", "output": "y"})

    end = events[1]
    assert end.name == "search"
    assert end.tool_id
    assert len(parser.tracker) == 0


def test_system_subtypes(parser):
    assert parser.parse({"type": "system", "subtype": "init"})[0].message == "Initializing session..."
    custom = parser.parse({"type": "system", "subtype": "compact", "extra": {"message": "Compacting"}})
    assert custom[0].message == "Compacting"
    assert parser.parse({"type": "system", "subtype": "hooks"})[0].message == "hooks"
    assert parser.parse({"type": "system"}) == []


def test_text_delta_and_terminal_records(parser):
    delta = parser.parse({"type": "text_delta", "text": "Hel"})
    assert delta[0].is_delta is True
    assert delta[0].text == "Hel"

    assert parser.parse({"type": "error", "error": "rate limited"})[0].message == "rate limited"

    end = parser.parse({"type": "session_end"})
    assert end[0].type == "session_end"
    assert end[0].reason == "completed"
    assert end[0].session_id == "claude-code-s1"


def test_result_record_reports_usage_then_ends(parser):
    events = parser.parse(
        {
            "type": "result",
            "result": "Done.",
            "total_cost_usd": 0.0123,
            "num_turns": 3,
            "duration_ms": 4200,
            "usage": {"input_tokens": 1000, "output_tokens": 500},
        }
    )

    assert [e.type for e in events] == ["result", "session_end"]
    assert events[0].output == "Done."
    assert events[0].usage["total_tokens"] == 1500
    assert events[0].usage["duration_s"] == pytest.approx(4.2)


def test_result_record_with_null_usage_still_ends(parser):
    events = parser.parse(
        {
            "type": "result",
            "result": "Done.",
            "total_cost_usd": None,
            "num_turns": None,
            "duration_ms": None,
            "usage": {"input_tokens": None, "output_tokens": 20, "cache_read_input_tokens": None},
        }
    )

    assert [e.type for e in events] == ["result", "session_end"]
    assert events[0].usage["total_tokens"] == 20
    assert events[0].usage["duration_s"] == 0
    assert events[0].usage["cost_usd"] == 0


def test_result_error(parser):
    events = parser.parse({"type": "result", "is_error": True, "result": "Max turns"})
    assert [e.type for e in events] == ["error"]
    assert events[0].message == "Max turns"


def test_unknown_record_is_ignored(parser):
    parser.parse({"type": "tool_start", "tool_name": "search"})

    assert parser.parse({"type": "frobnicate"}) == []
    assert len(parser.tracker) == 1


def test_parse_line_handles_bad_json(parser):
    assert parser.parse_line("not json") == []
    assert parser.parse_line("[1, 2]") == []
    assert parser.parse_line('{"type": "permission_request"}')[0].type == "progress"


def test_malformed_record_yields_nothing(parser):
    assert parser.parse({"type": "assistant", "message": "oops"}) == []


def test_reset_clears_tracker(parser):
    parser.parse({"type": "tool_start", "tool_name": "search"})
    parser.reset()
    assert len(parser.tracker) == 0


def test_backend_command_and_resume():
    backend = ClaudeBackend(ClaudeConfig(model="opus", skip_permissions=True))
    task = create_task("fix the bug", files=["a.py"])

    cmd = backend._build_command(task, False)
    assert cmd[:2] == ["claude", "-p"]
    assert "Referenced files:\n- a.py" in cmd[2]
    assert cmd[cmd.index("--output-format") + 1] == "stream-json"
    assert cmd[cmd.index("--model") + 1] == "opus"
    assert "--dangerously-skip-permissions" in cmd
    assert "--resume" not in cmd

    assert "--continue" in backend._build_command(task, True)

    backend._remember_session({"type": "system", "subtype": "init", "session_id": "abc"})
    resumed = backend._build_command(task, True)
    assert resumed[resumed.index("--resume") + 1] == "abc"
