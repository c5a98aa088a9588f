from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Literal, Optional, Union

import numpy as np

MAX_INPUT_GAIN = 3.0


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


# ----------------- outbound media -----------------
@dataclass(frozen=True)
class AudioChunk:
    pcm_bytes: bytes            # 16-bit little-endian mono
    sample_rate: int

    @property
    def mime_type(self) -> str:
        return f"audio/pcm;rate={self.sample_rate}"


@dataclass(frozen=True)
class FrameChunk:
    image_bytes: bytes
    mime_type: str = "image/jpeg"
    width: int = 0
    height: int = 0


MediaChunk = Union[AudioChunk, FrameChunk]


# ----------------- inbound events -----------------
@dataclass(frozen=True)
class AudioFragment:
    pcm_bytes: bytes
    seq: int
    sample_rate: int = 24000


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Interrupted:
    pass


@dataclass(frozen=True)
class Opened:
    pass


@dataclass(frozen=True)
class Closed:
    reason: str


InboundEvent = Union[AudioFragment, ToolCallRequest, Interrupted, Opened, Closed]


@dataclass(frozen=True)
class ToolCallResult:
    call_id: str
    name: str
    result: Dict[str, Any]
    ok: bool = True


# ----------------- playback -----------------
@dataclass(eq=False)
class PlaybackSegment:
    """Decoded fragment placed on the output timeline (seconds)."""
    seq: int
    samples: np.ndarray         # float32 in [-1, 1]
    sample_rate: int
    start: float = 0.0

    @property
    def duration(self) -> float:
        return self.samples.size / float(self.sample_rate)

    @property
    def end(self) -> float:
        return self.start + self.duration


# ----------------- device + agent state -----------------
@dataclass(frozen=True)
class DeviceState:
    mic_muted: bool = False
    camera_muted: bool = False
    screen_sharing: bool = False
    input_gain: float = 1.0

    def __post_init__(self):
        if not 0.0 <= self.input_gain <= MAX_INPUT_GAIN:
            raise ValueError(f"input_gain must be between 0 and {MAX_INPUT_GAIN}, got {self.input_gain}")

    @property
    def effective_gain(self) -> float:
        return 0.0 if self.mic_muted else self.input_gain

    @property
    def video_enabled(self) -> bool:
        return (not self.camera_muted) or self.screen_sharing

    @property
    def video_source(self) -> Optional[Literal["camera", "screen"]]:
        if self.screen_sharing:
            return "screen"
        if not self.camera_muted:
            return "camera"
        return None

    def patch(self, **changes: Any) -> "DeviceState":
        unknown = set(changes) - {"mic_muted", "camera_muted", "screen_sharing", "input_gain"}
        if unknown:
            raise ValueError(f"Unknown device fields: {', '.join(sorted(unknown))}")
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


@dataclass(frozen=True)
class AgentProfile:
    id: str
    name: str
    voice_name: str = "Kore"
    system_instruction: str = ""
    icon: str = "fa-bolt"
    description: str = ""

    @property
    def identity_key(self) -> str:
        return self.id


@dataclass
class Session:
    agent: AgentProfile
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: SessionState = SessionState.CONNECTING
    started_at: float = field(default_factory=time.monotonic)
    opened_at: float = 0.0
    close_reason: str = ""

    # counters for the session summary
    fragments: int = 0
    fragments_dropped: int = 0
    tool_calls: int = 0
    interrupts: int = 0
    audio_chunks_sent: int = 0
    frames_sent: int = 0
