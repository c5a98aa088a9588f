import asyncio

import orjson
import pytest

from omnilive.logging import NDJSONLogger
from omnilive.models import ToolCallRequest
from omnilive.tools import RESULT_ERROR, RESULT_OK, RESULT_UNKNOWN, TOOLS_SPEC, ToolBridge, function_declarations


def test_declarations_cover_desktop_tools():
    decls = function_declarations()
    assert [d["name"] for d in decls] == ["change_view", "system_action"]
    assert decls[0]["parameters"]["required"] == ["view"]
    assert decls[1]["parameters"]["properties"]["action"]["type"] == "STRING"
    assert function_declarations([]) == []
    assert len(TOOLS_SPEC) == 2


def test_known_tool_runs_handler_and_acknowledges():
    seen = []
    bridge = ToolBridge()
    bridge.register("change_view", lambda args: seen.append(args))

    res = bridge.dispatch(ToolCallRequest(call_id="1", name="change_view", args={"view": "vision"}))

    assert seen == [{"view": "vision"}]
    assert res.call_id == "1"
    assert res.ok is True
    assert res.result == {"result": RESULT_OK}


def test_dict_return_is_passed_through():
    bridge = ToolBridge()
    bridge.register("status", lambda args: {"result": "fine", "n": 2})
    assert bridge.dispatch(ToolCallRequest(call_id="x", name="status")).result == {"result": "fine", "n": 2}


def test_unknown_tool_still_gets_exactly_one_result():
    bridge = ToolBridge()
    res = bridge.dispatch(ToolCallRequest(call_id="42", name="launch_rocket"))
    assert res.call_id == "42"
    assert res.ok is False
    assert res.result["result"] == RESULT_UNKNOWN
    assert bridge.calls == 1


def test_handler_failure_is_reported_not_raised():
    def boom(args):
        raise RuntimeError("disk on fire")

    bridge = ToolBridge()
    bridge.register("system_action", boom)
    res = bridge.dispatch(ToolCallRequest(call_id="7", name="system_action", args={"action": "new_chat"}))

    assert res.ok is False
    assert res.result == {"result": RESULT_ERROR, "message": "disk on fire"}


def test_unregister():
    bridge = ToolBridge()
    bridge.register("a", lambda args: None)
    bridge.register("b", lambda args: None)
    bridge.unregister("a")
    bridge.unregister("missing")
    assert bridge.names == ["b"]


@pytest.mark.asyncio
async def test_coroutine_handler_is_acknowledged_before_it_finishes():
    done = asyncio.Event()

    async def slow(args):
        await asyncio.sleep(0.01)
        done.set()

    bridge = ToolBridge()
    bridge.register("slow", slow)
    res = bridge.dispatch(ToolCallRequest(call_id="s", name="slow"))

    assert res.result == {"result": RESULT_OK}
    assert not done.is_set()
    await bridge.drain()
    assert done.is_set()


def test_calls_are_logged_as_ndjson(tmp_path):
    path = tmp_path / "events.ndjson"
    bridge = ToolBridge(event_log=NDJSONLogger(str(path)))
    bridge.register("change_view", lambda args: None)
    bridge.dispatch(ToolCallRequest(call_id="1", name="change_view"), sid="s1")
    bridge.dispatch(ToolCallRequest(call_id="2", name="nope"), sid="s1")

    lines = [orjson.loads(l) for l in path.read_text().splitlines()]
    assert [(l["evt"], l["id"], l["status"]) for l in lines] == [
        ("tool_call", "1", "ok"),
        ("tool_call", "2", RESULT_UNKNOWN),
    ]
