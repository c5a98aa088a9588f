from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from .errors import ToolHandlerError
from .logging import NDJSONLogger, RichLogger
from .models import ToolCallRequest, ToolCallResult

Handler = Callable[[Dict[str, Any]], Union[None, Dict[str, Any], Awaitable[Any]]]

RESULT_OK = "Command executed successfully."
RESULT_UNKNOWN = "unknown_tool"
RESULT_ERROR = "error"


@dataclass
class ToolDef:
    name: str
    description: str
    parameters: Dict[str, Any]


TOOLS_SPEC: List[ToolDef] = [
    ToolDef(
        name="change_view",
        description="Navigate to a different application view or studio.",
        parameters={
            "type": "OBJECT",
            "properties": {
                "view": {
                    "type": "STRING",
                    "description": "The target view name. Options: 'chat', 'vision', 'veo', 'system'.",
                }
            },
            "required": ["view"],
        },
    ),
    ToolDef(
        name="system_action",
        description="Perform a general system action.",
        parameters={
            "type": "OBJECT",
            "properties": {
                "action": {
                    "type": "STRING",
                    "description": "The action to perform. Options: 'new_chat', 'toggle_sidebar'.",
                }
            },
            "required": ["action"],
        },
    ),
]


def function_declarations(tools: Optional[List[ToolDef]] = None) -> List[Dict[str, Any]]:
    return [
        {"name": t.name, "description": t.description, "parameters": t.parameters}
        for t in (TOOLS_SPEC if tools is None else tools)
    ]


class ToolBridge:
    """
    Named remote function calls → local handlers, one result per call id.

    Handlers run inline and must be quick; a coroutine handler is scheduled as
    a task and acknowledged immediately. Unknown names and handler failures are
    still answered, with a result that says so, so the remote side never waits
    on a call that will not be answered.
    """

    def __init__(self, event_log: Optional[NDJSONLogger] = None):
        self._handlers: Dict[str, Handler] = {}
        self._pending: Set[asyncio.Task] = set()
        self._event_log = event_log
        self.calls = 0

    def register(self, name: str, handler: Handler) -> None:
        self._handlers[name] = handler

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    @property
    def names(self) -> List[str]:
        return sorted(self._handlers)

    def dispatch(self, req: ToolCallRequest, sid: str = "") -> ToolCallResult:
        self.calls += 1
        print(RichLogger.line(RichLogger.tool_call(req.name, req.args), sid))

        handler = self._handlers.get(req.name)
        if handler is None:
            result = ToolCallResult(
                call_id=req.call_id,
                name=req.name,
                result={"result": RESULT_UNKNOWN, "message": f"no handler registered for {req.name}"},
                ok=False,
            )
        else:
            try:
                out = self._invoke(req.name, handler, req.args)
                payload = out if isinstance(out, dict) else {"result": RESULT_OK}
                result = ToolCallResult(call_id=req.call_id, name=req.name, result=payload, ok=True)
            except ToolHandlerError as e:
                result = ToolCallResult(
                    call_id=req.call_id,
                    name=req.name,
                    result={"result": RESULT_ERROR, "message": str(e.cause)},
                    ok=False,
                )

        status = "ok" if result.ok else result.result.get("result", RESULT_ERROR)
        print(RichLogger.line(RichLogger.tool_result(req.name, status), sid))
        if self._event_log is not None:
            self._event_log.write({"evt": "tool_call", "sid": sid, "name": req.name, "id": req.call_id, "status": status})
        return result

    def _invoke(self, name: str, handler: Handler, args: Dict[str, Any]) -> Any:
        try:
            out = handler(dict(args))
        except Exception as e:
            raise ToolHandlerError(name, e) from e
        if inspect.isawaitable(out):
            task = asyncio.ensure_future(out)
            self._pending.add(task)
            task.add_done_callback(self._finish_deferred(name))
            return None
        return out

    def _finish_deferred(self, name: str):
        def _done(task: asyncio.Task):
            self._pending.discard(task)
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                print(RichLogger.line(RichLogger.error(f"deferred tool {name}: {exc!r}")))
        return _done

    async def drain(self) -> None:
        """Wait for deferred handler work (used on teardown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
