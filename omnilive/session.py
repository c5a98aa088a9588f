from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from .agents import live_instructions, voice_for
from .commands import CMD_CHANGE_VIEW, CMD_SYSTEM_ACTION
from .devices import CameraSource, MicrophoneSource, ScreenSource, SpeakerSink
from .errors import DeviceAcquisitionError, SessionStateError, TransportError
from .logging import NDJSONLogger, RichLogger
from .media import AudioCaptureLoop, AudioEncoder, FrameEncoder, VideoSampler
from .models import (
    AgentProfile,
    AudioFragment,
    Closed,
    DeviceState,
    InboundEvent,
    Interrupted,
    MediaChunk,
    AudioChunk,
    Opened,
    Session,
    SessionState,
    ToolCallRequest,
)
from .playback import PlaybackScheduler
from .settings import settings
from .tools import ToolBridge, function_declarations
from .transport import Connector, LiveConnection, TransportConfig, open_transport

T = TypeVar("T")
CommandHandler = Callable[[str, Dict[str, Any]], Any]


class Cell(Generic[T]):
    """Latest-value holder read at the moment of use."""

    def __init__(self, value: T):
        self._value = value

    def get(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value


# ----------------- controller config -----------------
@dataclass
class ControllerConfig:
    reconnect_grace_ms: int = settings.reconnect_grace_ms
    video_interval_s: float = settings.video_interval_s

    def __post_init__(self):
        if self.reconnect_grace_ms < 0:
            raise ValueError(f"reconnect_grace_ms must be >= 0ms, got {self.reconnect_grace_ms}")
        if self.video_interval_s <= 0:
            raise ValueError(f"video_interval_s must be > 0s, got {self.video_interval_s}")


@dataclass
class DeviceFactory:
    microphone: Callable[[], Any] = MicrophoneSource
    speaker: Callable[[], Any] = SpeakerSink
    camera: Callable[[], Any] = CameraSource
    screen: Callable[[], Any] = ScreenSource


# ----------------- controller -----------------
class SessionController:
    """
    Owns the single live session: devices, transport, playback, tool bridge.

    Lifecycle: IDLE → CONNECTING → OPEN → CLOSING → CLOSED. Reconnecting is
    always a full teardown followed by a fresh activation, and lifecycle calls
    are serialized, so at most one session exists at a time.
    """

    def __init__(
        self,
        commands: Optional[CommandHandler] = None,
        cfg: Optional[ControllerConfig] = None,
        devices: Optional[DeviceFactory] = None,
        connector: Optional[Connector] = None,
        event_log: Optional[NDJSONLogger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cfg = cfg or ControllerConfig()
        self.devices = devices or DeviceFactory()
        self._connector = connector
        self._sleep = sleep
        self._event_log = event_log or NDJSONLogger(settings.metrics_file)

        # Shared cells
        self._agent: Cell[Optional[AgentProfile]] = Cell(None)
        self._device_state: Cell[DeviceState] = Cell(DeviceState())
        self._commands: Cell[Optional[CommandHandler]] = Cell(commands)

        self.bridge = ToolBridge(event_log=self._event_log)
        self.bridge.register(CMD_CHANGE_VIEW, lambda args: self._forward_command(CMD_CHANGE_VIEW, args))
        self.bridge.register(CMD_SYSTEM_ACTION, lambda args: self._forward_command(CMD_SYSTEM_ACTION, args))

        self._lock = asyncio.Lock()
        self._state = SessionState.IDLE
        self._live_requested = False
        self.session: Optional[Session] = None
        self.last_session: Optional[Session] = None

        # Per-session resources
        self._conn: Optional[LiveConnection] = None
        self._scheduler: Optional[PlaybackScheduler] = None
        self._sampler: Optional[VideoSampler] = None
        self._encoder: Optional[AudioEncoder] = None
        self._mic = None
        self._speaker = None
        self._camera = None
        self._screen = None
        self._tasks: List[asyncio.Task] = []
        self._opened: Optional[asyncio.Event] = None

        self._state_listeners: List[Callable[[SessionState, str], None]] = []
        self._speaking_listeners: List[Callable[[bool], None]] = []

    # ------------- observation -------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def agent(self) -> Optional[AgentProfile]:
        return self._agent.get()

    @property
    def device_state(self) -> DeviceState:
        return self._device_state.get()

    @property
    def speaking(self) -> bool:
        return self._scheduler is not None and self._scheduler.speaking

    @property
    def input_level(self) -> float:
        """Microphone level after gain, 0..1, for a volume meter."""
        return self._encoder.level if self._encoder is not None else 0.0

    @property
    def scheduler(self) -> Optional[PlaybackScheduler]:
        return self._scheduler

    @property
    def active(self) -> bool:
        return self._state in (SessionState.CONNECTING, SessionState.OPEN)

    def on_state(self, fn: Callable[[SessionState, str], None]) -> None:
        self._state_listeners.append(fn)

    def on_speaking(self, fn: Callable[[bool], None]) -> None:
        self._speaking_listeners.append(fn)

    def set_command_handler(self, handler: Optional[CommandHandler]) -> None:
        self._commands.set(handler)

    def status(self) -> Dict[str, Any]:
        agent = self.agent
        ds = self.device_state
        return {
            "state": self._state.value,
            "speaking": self.speaking,
            "level": self.input_level,
            "session_id": self.session.id if self.session else None,
            "agent": {"id": agent.id, "name": agent.name, "voice": agent.voice_name, "icon": agent.icon} if agent else None,
            "devices": {
                "mic_muted": ds.mic_muted,
                "camera_muted": ds.camera_muted,
                "screen_sharing": ds.screen_sharing,
                "input_gain": ds.input_gain,
            },
        }

    # ------------- lifecycle -------------
    async def activate(self, agent: AgentProfile) -> Session:
        async with self._lock:
            self._live_requested = True
            return await self._activate_locked(agent)

    async def deactivate(self, reason: str = "user", *, session: Optional[Session] = None) -> None:
        """Safe from any state; idempotent. `session` limits it to that session."""
        async with self._lock:
            if session is not None and session is not self.session:
                return
            self._live_requested = False
            await self._teardown_locked(reason)

    async def update_agent(self, agent: AgentProfile) -> bool:
        """Returns True when a reconnect was performed."""
        current = self._agent.get()
        if not self.active or (current is not None and current.identity_key == agent.identity_key):
            self._agent.set(agent)
            return False

        sid = self.session.id if self.session else None
        print(RichLogger.line(RichLogger.agent_changed(current.id if current else "-", agent.id), sid))
        async with self._lock:
            await self._teardown_locked("agent changed")
        self._agent.set(agent)

        await self._sleep(self.cfg.reconnect_grace_ms / 1000.0)

        async with self._lock:
            # deactivated during the grace period, or someone else already reconnected
            if not self._live_requested or self.session is not None:
                return False
            await self._activate_locked(self._agent.get())
        return True

    async def set_device_state(self, **patch: Any) -> DeviceState:
        """Takes effect on the next capture tick; never touches the connection."""
        async with self._lock:
            old = self._device_state.get()
            new = old.patch(**patch)

            if new.screen_sharing != old.screen_sharing and self.active:
                if new.screen_sharing:
                    try:
                        await self._open_screen()
                    except DeviceAcquisitionError as e:
                        print(RichLogger.line(RichLogger.error(f"screen share cancelled: {e}")))
                        new = replace(new, screen_sharing=False)
                else:
                    self._close_screen()

            self._device_state.set(new)
        print(RichLogger.line(RichLogger.device_state(new.mic_muted, new.camera_muted, new.screen_sharing, new.input_gain)))
        return new

    # ------------- internals -------------
    async def _activate_locked(self, agent: AgentProfile) -> Session:
        if self.session is not None:
            await self._teardown_locked("replaced")

        self._agent.set(agent)
        session = Session(agent=agent)
        self.session = session
        self._set_state(SessionState.CONNECTING, "activate")
        print(RichLogger.line(RichLogger.session_start(agent.name, voice_for(agent)), session.id))

        try:
            await self._acquire_devices()
            self._conn = await open_transport(
                TransportConfig(
                    voice_name=voice_for(agent),
                    system_instruction=live_instructions(agent),
                    function_declarations=function_declarations(),
                ),
                connector=self._connector,
            )
        except (DeviceAcquisitionError, TransportError) as e:
            print(RichLogger.line(RichLogger.error(str(e)), session.id))
            self._live_requested = False
            await self._teardown_locked(f"{type(e).__name__}: {e}")
            raise

        self._scheduler = PlaybackScheduler(self._speaker, on_speaking=self._emit_speaking)
        self._sampler = VideoSampler(
            state=self._device_state.get,
            sources={"camera": self._camera},
            encoder=FrameEncoder(),
            emit=self._send_media,
            interval_s=self.cfg.video_interval_s,
            on_source_lost=self._on_source_lost,
        )
        if self._screen is not None:
            self._sampler.sources["screen"] = self._screen
        self._encoder = AudioEncoder(self._device_state.get)
        capture = AudioCaptureLoop(self._mic, self._encoder, self._send_media)

        self._opened = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._consume(session, self._conn, self._scheduler), name="live-consume"),
            asyncio.create_task(self._guard(session, capture.run(), "audio capture"), name="live-audio"),
            asyncio.create_task(self._guard(session, self._sampler.run(), "video sampler"), name="live-video"),
        ]
        # Opened is always the first queued event
        await self._opened.wait()
        return session

    async def _acquire_devices(self):
        self._mic = self.devices.microphone()
        await self._mic.open()
        self._speaker = self.devices.speaker()
        await self._speaker.open()
        self._camera = self.devices.camera()
        await self._camera.open()
        if self._device_state.get().screen_sharing:
            await self._open_screen()

    async def _open_screen(self):
        screen = self.devices.screen()
        await screen.open()
        self._screen = screen
        if self._sampler is not None:
            self._sampler.sources["screen"] = screen

    def _close_screen(self):
        if self._sampler is not None:
            self._sampler.sources.pop("screen", None)
        if self._screen is not None:
            with contextlib.suppress(Exception):
                self._screen.close()
            self._screen = None

    async def _teardown_locked(self, reason: str):
        session = self.session
        if session is None:
            return
        self._set_state(SessionState.CLOSING, reason)

        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        self._tasks.clear()

        if self._conn is not None:
            with contextlib.suppress(Exception):
                await self._conn.close(reason)
        if self._scheduler is not None:
            session.fragments = self._scheduler.played
            session.fragments_dropped = self._scheduler.dropped
            session.interrupts = self._scheduler.interrupts
            self._scheduler.reset()

        self._close_screen()
        for dev in (self._mic, self._camera, self._speaker):
            if dev is not None:
                with contextlib.suppress(Exception):
                    dev.close()

        self._conn = None
        self._sampler = None
        self._encoder = None
        self._mic = self._camera = self._speaker = None
        self._opened = None

        self._finish_session(session, reason)
        self.last_session = session
        self.session = None
        self._set_state(SessionState.CLOSED, reason)
        self._scheduler = None

    def _finish_session(self, session: Session, reason: str):
        session.state = SessionState.CLOSED
        session.close_reason = reason
        duration_ms = (time.monotonic() - session.started_at) * 1000.0
        print(RichLogger.line(RichLogger.session_stop(reason), session.id))
        print(RichLogger.line(
            RichLogger.session_summary(duration_ms, session.fragments, session.fragments_dropped, session.tool_calls, session.interrupts),
            session.id,
        ))
        self._event_log.write(
            {
                "t": time.time(),
                "evt": "session_metrics",
                "sid": session.id,
                "agent": session.agent.id,
                "duration_ms": int(duration_ms),
                "fragments": session.fragments,
                "fragments_dropped": session.fragments_dropped,
                "tool_calls": session.tool_calls,
                "interrupts": session.interrupts,
                "audio_chunks": session.audio_chunks_sent,
                "frames": session.frames_sent,
                "reason": reason,
            }
        )

    async def _consume(self, session: Session, conn: LiveConnection, scheduler: PlaybackScheduler):
        """Single consumer: inbound events handled strictly in arrival order."""
        reason = "stream ended"
        try:
            async for evt in conn.events():
                if isinstance(evt, Closed):
                    reason = evt.reason
                    break
                self._handle_event(session, conn, scheduler, evt)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"consumer: {type(e).__name__}: {e}"
            print(RichLogger.line(RichLogger.error(reason), session.id))
        await self.deactivate(reason, session=session)

    def _handle_event(self, session: Session, conn: LiveConnection, scheduler: PlaybackScheduler, evt: InboundEvent):
        if isinstance(evt, AudioFragment):
            scheduler.enqueue(evt)
        elif isinstance(evt, ToolCallRequest):
            session.tool_calls += 1
            result = self.bridge.dispatch(evt, session.id)
            with contextlib.suppress(SessionStateError):
                conn.send_tool_result(result)
        elif isinstance(evt, Interrupted):
            print(RichLogger.line(RichLogger.interrupted(), session.id))
            scheduler.interrupt()
        elif isinstance(evt, Opened):
            session.opened_at = time.monotonic()
            session.state = SessionState.OPEN
            connect_ms = (session.opened_at - session.started_at) * 1000.0
            print(RichLogger.line(RichLogger.timing("Connect", connect_ms), session.id))
            self._event_log.write({"t": time.time(), "evt": "session_open", "sid": session.id, "connect_ms": int(connect_ms)})
            # activate() is waiting on this; set it before any listener runs
            if self._opened is not None:
                self._opened.set()
            self._set_state(SessionState.OPEN, "opened")

    async def _guard(self, session: Session, coro: Awaitable[Any], what: str):
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"{what} failed: {type(e).__name__}: {e}"
            print(RichLogger.line(RichLogger.error(reason), session.id))
            await self.deactivate(reason, session=session)

    def _send_media(self, chunk: MediaChunk) -> None:
        conn = self._conn
        session = self.session
        if conn is None or conn.closed or session is None:
            return
        conn.send(chunk)
        if isinstance(chunk, AudioChunk):
            session.audio_chunks_sent += 1
        else:
            session.frames_sent += 1

    async def _on_source_lost(self, which: str):
        if which == "screen":
            # display capture ended from outside; fall back to the camera
            await self.set_device_state(screen_sharing=False)
        else:
            print(RichLogger.line(RichLogger.error(f"{which} returned no frame")))

    def _forward_command(self, command: str, args: Dict[str, Any]) -> Any:
        handler = self._commands.get()
        if handler is None:
            return None
        return handler(command, args)

    def _set_state(self, new: SessionState, reason: str = ""):
        old = self._state
        if old == new:
            return
        self._state = new
        sid = self.session.id if self.session else None
        print(RichLogger.line(RichLogger.state_transition(old.value.upper(), new.value.upper(), reason), sid))
        for fn in list(self._state_listeners):
            fn(new, reason)

    def _emit_speaking(self, value: bool):
        for fn in list(self._speaking_listeners):
            fn(value)
