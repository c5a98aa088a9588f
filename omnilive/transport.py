from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed

from .errors import SessionStateError, TransportError
from .logging import RichLogger
from .models import Closed, InboundEvent, MediaChunk, Opened, ToolCallResult
from .settings import settings
from .wire import ServerMessageDecoder, build_setup, encode_media, encode_tool_results

Connector = Callable[[str], Awaitable[Any]]


@dataclass
class TransportConfig:
    voice_name: str
    system_instruction: str
    function_declarations: List[Dict[str, Any]] = field(default_factory=list)
    model: str = settings.live_model
    api_key: Optional[str] = settings.gemini_api_key
    host: str = settings.live_host
    setup_timeout_s: float = settings.setup_timeout_s
    receive_sample_rate: int = settings.receive_sample_rate

    @property
    def url(self) -> str:
        return (
            f"wss://{self.host}/ws/"
            f"google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
            f"?key={self.api_key}"
        )


async def _websocket_connect(url: str):
    from websockets.asyncio.client import connect

    return await connect(url, max_size=None)


class LiveConnection:
    """
    One open duplex stream. send()/send_tool_result() never block: payloads go
    to an outbox drained by a single writer task, so per-caller order holds.
    Inbound frames are decoded by a single reader task into an ordered queue.
    Any socket failure yields exactly one Closed event and the handle is dead.
    """

    def __init__(self, ws, decoder: ServerMessageDecoder):
        self._ws = ws
        self._decoder = decoder
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._events: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self.closed = False
        self.close_reason = ""
        self.sent = 0

    def start(self):
        self._tasks = [
            asyncio.create_task(self._reader(), name="live-reader"),
            asyncio.create_task(self._writer(), name="live-writer"),
        ]

    # ------------- outbound -------------
    def send(self, chunk: MediaChunk) -> None:
        self._post(encode_media(chunk))

    def send_tool_result(self, result: ToolCallResult) -> None:
        self._post(encode_tool_results([result]))

    def _post(self, payload: bytes) -> None:
        if self.closed:
            raise SessionStateError(f"connection closed: {self.close_reason}")
        self._outbox.put_nowait(payload)

    async def _writer(self):
        try:
            while True:
                payload = await self._outbox.get()
                await self._ws.send(payload.decode("utf-8"))
                self.sent += 1
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            self._fail(f"send: {e}")
        except Exception as e:
            self._fail(f"send: {type(e).__name__}: {e}")

    # ------------- inbound -------------
    async def events(self) -> AsyncIterator[InboundEvent]:
        while True:
            evt = await self._events.get()
            yield evt
            if isinstance(evt, Closed):
                return

    async def _reader(self):
        reason = "remote closed"
        try:
            async for raw in self._ws:
                for evt in self._decoder.decode(raw):
                    self._events.put_nowait(evt)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            reason = f"remote closed: {e}"
        except Exception as e:
            reason = f"receive: {type(e).__name__}: {e}"
        self._fail(reason)

    def _fail(self, reason: str):
        if self.closed:
            return
        self.closed = True
        self.close_reason = reason
        self._events.put_nowait(Closed(reason=reason))

    async def close(self, reason: str = "client closed"):
        self._fail(reason)
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        self._tasks.clear()
        with contextlib.suppress(Exception):
            await self._ws.close()


async def open_transport(cfg: TransportConfig, connector: Optional[Connector] = None) -> LiveConnection:
    """Connect, send setup, wait for setupComplete. Raises TransportError."""
    if not cfg.api_key and connector is None:
        raise TransportError("GEMINI_API_KEY not set")

    connect = connector or _websocket_connect
    try:
        ws = await connect(cfg.url)
    except Exception as e:
        raise TransportError(f"connect failed: {type(e).__name__}: {e}") from e

    decoder = ServerMessageDecoder(sample_rate=cfg.receive_sample_rate)
    try:
        setup = build_setup(cfg.model, cfg.voice_name, cfg.system_instruction, cfg.function_declarations)
        await ws.send(setup.decode("utf-8"))
        raw = await asyncio.wait_for(ws.recv(), timeout=cfg.setup_timeout_s)
        first = decoder.decode(raw)
    except asyncio.TimeoutError as e:
        with contextlib.suppress(Exception):
            await ws.close()
        raise TransportError(f"no setupComplete within {cfg.setup_timeout_s}s") from e
    except Exception as e:
        with contextlib.suppress(Exception):
            await ws.close()
        raise TransportError(f"setup failed: {type(e).__name__}: {e}") from e

    if not any(isinstance(evt, Opened) for evt in first):
        with contextlib.suppress(Exception):
            await ws.close()
        raise TransportError(f"unexpected setup response: {str(raw)[:200]}")

    conn = LiveConnection(ws, decoder)
    for evt in first:
        conn._events.put_nowait(evt)
    conn.start()
    print(RichLogger.line(f"🌐 Live connected: {cfg.model} voice={cfg.voice_name}"))
    return conn
