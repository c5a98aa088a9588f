from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .agents import AgentRoster
from .commands import DesktopCommands, DesktopState
from .errors import DeviceAcquisitionError, TransportError
from .logging import RichLogger
from .metrics import summarize_file
from .models import SessionState
from .session import SessionController
from .settings import settings
from .wire import MSG_UI_COMMAND, MSG_UI_SPEAKING, MSG_UI_STATE, ui_message


class AgentRequest(BaseModel):
    agent_id: str


class DevicePatch(BaseModel):
    mic_muted: Optional[bool] = None
    camera_muted: Optional[bool] = None
    screen_sharing: Optional[bool] = None
    input_gain: Optional[float] = None


# ----------------------------
# UI push clients
# ----------------------------
class UIClient:
    def __init__(self, ws: WebSocket):
        self.ws = ws
        self._send_lock = asyncio.Lock()

    async def send_text(self, payload: str):
        async with self._send_lock:
            await self.ws.send_text(payload)


class UIHub:
    def __init__(self):
        self.clients: Set[UIClient] = set()
        self._pending: Set[asyncio.Task] = set()

    async def broadcast(self, payload: str):
        for client in list(self.clients):
            try:
                await client.send_text(payload)
            except Exception:
                self.clients.discard(client)

    def post(self, payload: str):
        """Fire-and-forget broadcast from synchronous callbacks on the loop."""
        if not self.clients:
            return
        with contextlib.suppress(RuntimeError):
            task = asyncio.get_running_loop().create_task(self.broadcast(payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def create_app(
    controller: Optional[SessionController] = None,
    roster: Optional[AgentRoster] = None,
    desktop: Optional[DesktopCommands] = None,
) -> FastAPI:
    desktop = desktop or DesktopCommands(DesktopState())
    controller = controller or SessionController()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await controller.deactivate("shutdown")
        await hub.drain()

    app = FastAPI(title="omnilive", lifespan=lifespan)
    controller.set_command_handler(desktop.handle)
    roster = roster or AgentRoster()
    hub = UIHub()

    desktop.subscribe(
        lambda command, args, state: hub.post(ui_message(MSG_UI_COMMAND, command=command, args=args, desktop=state.to_dict()))
    )
    controller.on_state(lambda state, reason: hub.post(ui_message(MSG_UI_STATE, state=state.value, reason=reason)))
    controller.on_speaking(lambda speaking: hub.post(ui_message(MSG_UI_SPEAKING, speaking=speaking)))

    app.state.controller = controller
    app.state.roster = roster
    app.state.desktop = desktop
    app.state.hub = hub

    def _agent(agent_id: str):
        try:
            return roster.get(agent_id)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0]))

    # ----------------------------
    # Live session control
    # ----------------------------
    @app.post("/live/activate")
    async def activate(req: AgentRequest):
        agent = _agent(req.agent_id)
        try:
            session = await controller.activate(agent)
        except DeviceAcquisitionError as e:
            raise HTTPException(status_code=409, detail=f"device unavailable: {e}")
        except TransportError as e:
            raise HTTPException(status_code=502, detail=f"live connection failed: {e}")
        return {"session_id": session.id, **controller.status()}

    @app.post("/live/deactivate")
    async def deactivate():
        await controller.deactivate("user")
        return controller.status()

    @app.put("/live/agent")
    async def update_agent(req: AgentRequest):
        agent = _agent(req.agent_id)
        try:
            reconnected = await controller.update_agent(agent)
        except (DeviceAcquisitionError, TransportError) as e:
            raise HTTPException(status_code=502, detail=f"reconnect failed: {e}")
        return {"reconnected": reconnected, **controller.status()}

    @app.patch("/live/devices")
    async def set_devices(patch: DevicePatch):
        try:
            await controller.set_device_state(**patch.model_dump(exclude_none=True))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return controller.status()

    @app.get("/live/status")
    def status():
        return controller.status()

    @app.get("/live/agents")
    def agents():
        return [
            {"id": a.id, "name": a.name, "voice": a.voice_name, "icon": a.icon, "description": a.description}
            for a in roster.all()
        ]

    @app.get("/desktop")
    def desktop_state():
        return desktop.state.to_dict()

    # ----------------------------
    # UI push channel
    # ----------------------------
    @app.websocket("/ws/ui")
    async def ws_ui(ws: WebSocket):
        await ws.accept()
        client = UIClient(ws)
        hub.clients.add(client)
        await client.send_text(ui_message(MSG_UI_STATE, state=controller.state.value, reason="hello"))
        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        finally:
            hub.clients.discard(client)

    # ----------------------------
    # Health & minimal metrics view
    # ----------------------------
    @app.get("/health")
    def health():
        return {"ok": True, "live": controller.state == SessionState.OPEN}

    @app.get("/metrics")
    def metrics_summary():
        return JSONResponse(summarize_file())

    return app


if __name__ == "__main__":
    import uvicorn

    print(RichLogger.line("🚀 omnilive control surface starting"))
    print(RichLogger.line(f"🤖 Live model: {settings.live_model} | 🌐 {settings.host}:{settings.port}"))
    print(RichLogger.line(f"📊 Audio: {settings.send_sample_rate}Hz up / {settings.receive_sample_rate}Hz down | 🖼️  1 frame / {settings.video_interval_s}s"))
    uvicorn.run(create_app(), host=settings.host, port=settings.port)
