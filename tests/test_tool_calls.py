from airuntime.tool_calls import ToolCallStatus, ToolCallTracker


def test_start_then_end_sets_terminal_status_in_order():
    tracker = ToolCallTracker()
    tracker.start_tool_call("Read", "a", {"file_path": "x.py"})
    tracker.start_tool_call("Bash", "b", {"command": "ls"})

    tracker.end_tool_call("b", "ok", True)
    tracker.end_tool_call("a", "missing", False)

    calls = tracker.get_tool_calls()
    assert [c.id for c in calls] == ["a", "b"]
    assert calls[0].status is ToolCallStatus.FAILED
    assert calls[1].status is ToolCallStatus.COMPLETED
    assert calls[1].result == "ok"


def test_end_with_unknown_id_is_a_noop():
    tracker = ToolCallTracker()
    tracker.start_tool_call("Read", "a")

    assert tracker.end_tool_call("nope", "x", True) is None
    assert len(tracker) == 1
    assert tracker.get("a").status is ToolCallStatus.RUNNING


def test_repeated_start_replaces_and_moves_to_end():
    tracker = ToolCallTracker()
    tracker.start_tool_call("Read", "a", {"v": 1})
    tracker.start_tool_call("Bash", "b")
    tracker.start_tool_call("Read", "a", {"v": 2})

    calls = tracker.get_tool_calls()
    assert [c.id for c in calls] == ["b", "a"]
    assert calls[1].args == {"v": 2}
    assert len(tracker) == 2


def test_terminal_status_is_not_moved_again():
    tracker = ToolCallTracker()
    tracker.start_tool_call("Bash", "a")
    tracker.end_tool_call("a", "first", False)
    tracker.end_tool_call("a", "second", True)

    info = tracker.get("a")
    assert info.status is ToolCallStatus.FAILED
    assert info.result == "first"


def test_find_running_returns_oldest_match():
    tracker = ToolCallTracker()
    tracker.start_tool_call("search", "a")
    tracker.start_tool_call("search", "b")
    assert tracker.find_running("search").id == "a"

    tracker.end_tool_call("a", "done")
    assert tracker.find_running("search").id == "b"
    assert tracker.find_running("other") is None


def test_snapshots_are_detached():
    tracker = ToolCallTracker()
    tracker.start_tool_call("Bash", "a", {"command": "ls"})
    snapshot = tracker.get_tool_calls()[0]
    snapshot.args["command"] = "rm -rf /"

    assert tracker.get("a").args == {"command": "ls"}

    tracker.clear()
    assert len(tracker) == 0
