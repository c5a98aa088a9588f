from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Iterable, List, Optional

import orjson

from .models import (
    AudioChunk,
    AudioFragment,
    FrameChunk,
    InboundEvent,
    Interrupted,
    MediaChunk,
    Opened,
    ToolCallRequest,
    ToolCallResult,
)

# Client → Server
MSG_SETUP = "setup"
MSG_REALTIME_INPUT = "realtimeInput"
MSG_TOOL_RESPONSE = "toolResponse"

# Server → Client
MSG_SETUP_COMPLETE = "setupComplete"
MSG_SERVER_CONTENT = "serverContent"
MSG_TOOL_CALL = "toolCall"

# UI push channel (control surface → front end)
MSG_UI_COMMAND = "ui_command"
MSG_UI_STATE = "state"
MSG_UI_SPEAKING = "speaking"

RESPONSE_MODALITIES = ["AUDIO"]


def build_setup(
    model: str,
    voice_name: str,
    system_instruction: Optional[str],
    function_declarations: Iterable[Dict[str, Any]],
) -> bytes:
    if not model.startswith("models/"):
        model = f"models/{model}"

    setup: Dict[str, Any] = {
        "model": model,
        "generationConfig": {
            "responseModalities": RESPONSE_MODALITIES,
            "speechConfig": {
                "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_name}}
            },
        },
    }
    if system_instruction:
        setup["systemInstruction"] = {"role": "user", "parts": [{"text": system_instruction}]}

    decls = list(function_declarations)
    if decls:
        setup["tools"] = [{"functionDeclarations": decls}]
    return orjson.dumps({MSG_SETUP: setup})


def encode_media(chunk: MediaChunk) -> bytes:
    if isinstance(chunk, AudioChunk):
        key, data = "audio", chunk.pcm_bytes
    elif isinstance(chunk, FrameChunk):
        key, data = "video", chunk.image_bytes
    else:
        raise TypeError(f"Not a media chunk: {type(chunk).__name__}")
    return orjson.dumps(
        {
            MSG_REALTIME_INPUT: {
                key: {
                    "data": base64.b64encode(data).decode("ascii"),
                    "mimeType": chunk.mime_type,
                }
            }
        }
    )


def encode_tool_results(results: Iterable[ToolCallResult]) -> bytes:
    responses = []
    for r in results:
        fr: Dict[str, Any] = {"name": r.name, "response": r.result}
        if r.call_id:
            fr["id"] = r.call_id
        responses.append(fr)
    return orjson.dumps({MSG_TOOL_RESPONSE: {"functionResponses": responses}})


class ServerMessageDecoder:
    """
    Turns raw server frames into InboundEvents, in frame order.

    Audio fragments are numbered in arrival order; a frame that carries several
    inline parts yields several fragments. Unknown keys are ignored.
    """

    def __init__(self, sample_rate: int = 24000):
        self.sample_rate = sample_rate
        self._seq = 0

    def decode(self, raw: bytes | str) -> List[InboundEvent]:
        msg = orjson.loads(raw)
        if not isinstance(msg, dict):
            return []

        events: List[InboundEvent] = []

        if MSG_SETUP_COMPLETE in msg:
            events.append(Opened())

        tool_call = msg.get(MSG_TOOL_CALL)
        if tool_call is not None:
            for fc in tool_call.get("functionCalls", []):
                # a call without a name is still answered (as unknown) by the bridge
                if not fc.get("id") and not fc.get("name"):
                    continue
                events.append(
                    ToolCallRequest(call_id=fc.get("id", ""), name=fc.get("name") or "", args=fc.get("args") or {})
                )

        content = msg.get(MSG_SERVER_CONTENT)
        if content:
            model_turn = content.get("modelTurn") or {}
            for part in model_turn.get("parts", []):
                inline = part.get("inlineData")
                if not inline or not inline.get("data"):
                    continue
                mime = inline.get("mimeType", "")
                if mime and not mime.startswith("audio/"):
                    continue
                try:
                    pcm = base64.b64decode(inline["data"], validate=True)
                except (binascii.Error, ValueError):
                    # left empty; the scheduler drops it as undecodable
                    pcm = b""
                events.append(
                    AudioFragment(
                        pcm_bytes=pcm,
                        seq=self._seq,
                        sample_rate=_rate_from_mime(mime, self.sample_rate),
                    )
                )
                self._seq += 1
            if content.get("interrupted"):
                events.append(Interrupted())

        return events


def _rate_from_mime(mime: str, default: int) -> int:
    # e.g. "audio/pcm;rate=24000"
    for param in mime.split(";")[1:]:
        k, _, v = param.strip().partition("=")
        if k == "rate" and v.isdigit():
            return int(v)
    return default


def ui_message(kind: str, **payload: Any) -> str:
    return orjson.dumps({"type": kind, **payload}).decode("utf-8")
