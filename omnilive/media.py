from __future__ import annotations

import asyncio
import io
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Protocol

import numpy as np
from PIL import Image

from .logging import RichLogger
from .models import AudioChunk, DeviceState, FrameChunk, MediaChunk
from .settings import settings

StateGetter = Callable[[], DeviceState]
Emit = Callable[[MediaChunk], None]


# ----------------- PCM helpers -----------------
def _int16_clip(x: np.ndarray) -> np.ndarray:
    y = np.clip(x, -1.0, 1.0)
    return (y * 32767.0).astype("<i2")


def _linear_resample_f32(x: np.ndarray, src_hz: int, dst_hz: int, n_out: Optional[int] = None) -> np.ndarray:
    if src_hz == dst_hz or x.size == 0:
        return x
    if n_out is None:
        n_out = int(math.floor(x.size * dst_hz / float(src_hz)))
    xp = np.arange(x.size, dtype=np.float64)
    fp = x.astype(np.float32)
    new_pos = np.linspace(0, x.size - 1, num=n_out, dtype=np.float64)
    out = np.interp(new_pos, xp, fp).astype(np.float32)
    return out


def pcm16_to_f32(pcm_bytes: bytes) -> np.ndarray:
    return np.frombuffer(pcm_bytes, dtype="<i2").astype(np.float32) / 32768.0


def _rms16(frame_bytes: bytes) -> float:
    if not frame_bytes:
        return 0.0
    x = pcm16_to_f32(frame_bytes)
    return float(np.sqrt(np.mean(x * x)))


# ----------------- audio -----------------
@dataclass
class AudioEncoderConfig:
    out_sample_rate: int = settings.send_sample_rate
    ramp_s: float = settings.gain_ramp_s   # time constant of the gain smoothing

    def __post_init__(self):
        if self.out_sample_rate <= 0:
            raise ValueError(f"out_sample_rate must be > 0, got {self.out_sample_rate}")
        if self.ramp_s <= 0:
            raise ValueError(f"ramp_s must be > 0 (an instant gain jump clicks), got {self.ramp_s}")


class GainRamp:
    """
    Exponential approach toward a target gain, one step per input sample:
        g[n] = target + (g[n-1] - target) * exp(-1 / (tau * rate))
    """

    SNAP = 1e-4

    def __init__(self, initial: float, tau_s: float):
        self.value = float(initial)
        self.tau_s = tau_s

    def apply(self, x: np.ndarray, target: float, sample_rate: int) -> np.ndarray:
        if x.size == 0:
            return x
        if abs(self.value - target) < self.SNAP:
            self.value = target
            return x * target
        a = math.exp(-1.0 / (self.tau_s * sample_rate))
        decay = np.power(a, np.arange(1, x.size + 1, dtype=np.float64))
        gains = target + (self.value - target) * decay
        self.value = float(gains[-1])
        if abs(self.value - target) < self.SNAP:
            self.value = target
        return (x * gains).astype(np.float32)


class AudioEncoder:
    """
    Microphone samples → fixed-rate 16-bit mono PCM chunks.

    Effective gain is read from the device state on every call (0 when muted)
    and reached through GainRamp, so mute/unmute never steps the signal.
    """

    def __init__(self, state: StateGetter, cfg: Optional[AudioEncoderConfig] = None):
        self.cfg = cfg or AudioEncoderConfig()
        self._state = state
        self.gain = GainRamp(state().effective_gain, self.cfg.ramp_s)
        self.level = 0.0

    def encode(self, samples: np.ndarray, src_rate: int) -> AudioChunk:
        x = samples.astype(np.float32, copy=False)
        if x.ndim > 1:
            x = x.mean(axis=1)
        # gain runs at the capture rate so the ramp time constant is in real time
        x = self.gain.apply(x, self._state().effective_gain, src_rate)
        x = _linear_resample_f32(x, src_rate, self.cfg.out_sample_rate)
        pcm = _int16_clip(x).tobytes()
        self.level = min(1.0, _rms16(pcm) * 5.0)
        return AudioChunk(pcm_bytes=pcm, sample_rate=self.cfg.out_sample_rate)

    def encode_pcm16(self, pcm_bytes: bytes, src_rate: int) -> AudioChunk:
        return self.encode(pcm16_to_f32(pcm_bytes), src_rate)


class AudioSource(Protocol):
    sample_rate: int

    async def read(self) -> bytes: ...


class AudioCaptureLoop:
    """Reads the mic at its natural cadence and emits every chunk, in order."""

    def __init__(self, source: AudioSource, encoder: AudioEncoder, emit: Emit):
        self.source = source
        self.encoder = encoder
        self.emit = emit
        self.chunks = 0

    async def run(self):
        while True:
            data = await self.source.read()
            if not data:
                await asyncio.sleep(0)
                continue
            self.emit(self.encoder.encode_pcm16(data, self.source.sample_rate))
            self.chunks += 1


# ----------------- video -----------------
@dataclass
class FrameEncoderConfig:
    downscale: int = settings.frame_downscale
    jpeg_quality: int = settings.jpeg_quality

    def __post_init__(self):
        if self.downscale < 1:
            raise ValueError(f"downscale must be >= 1, got {self.downscale}")
        if not 1 <= self.jpeg_quality <= 95:
            raise ValueError(f"jpeg_quality must be between 1 and 95, got {self.jpeg_quality}")


class FrameEncoder:
    def __init__(self, cfg: Optional[FrameEncoderConfig] = None):
        self.cfg = cfg or FrameEncoderConfig()

    def encode(self, rgb: np.ndarray) -> FrameChunk:
        """rgb: HxWx3 uint8 frame → down-scaled JPEG."""
        img = Image.fromarray(np.ascontiguousarray(rgb[..., :3]).astype(np.uint8))
        w = max(1, img.width // self.cfg.downscale)
        h = max(1, img.height // self.cfg.downscale)
        img = img.resize((w, h), Image.Resampling.BILINEAR)

        image_io = io.BytesIO()
        img.save(image_io, format="jpeg", quality=self.cfg.jpeg_quality)
        return FrameChunk(image_bytes=image_io.getvalue(), mime_type="image/jpeg", width=w, height=h)


class FrameSource(Protocol):
    async def grab(self) -> Optional[np.ndarray]: ...


class VideoSampler:
    """
    Fixed-period frame sampler, independent of the audio cadence.

    Each tick reads the device state: with the camera muted and no screen share
    the tick produces nothing; otherwise one frame is grabbed from the active
    source (screen wins over camera), encoded and emitted. A source that returns
    None has ended; `on_source_lost` is told which one.
    """

    def __init__(
        self,
        state: StateGetter,
        sources: Dict[str, FrameSource],
        encoder: FrameEncoder,
        emit: Emit,
        interval_s: float = settings.video_interval_s,
        on_source_lost: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self._state = state
        self.sources = sources
        self.encoder = encoder
        self.emit = emit
        self.interval_s = interval_s
        self.on_source_lost = on_source_lost
        self.frames = 0

    async def tick(self) -> Optional[FrameChunk]:
        which = self._state().video_source
        if which is None:
            return None
        source = self.sources.get(which)
        if source is None:
            return None

        rgb = await source.grab()
        if rgb is None:
            if self.on_source_lost is not None:
                await self.on_source_lost(which)
            return None

        chunk = await asyncio.to_thread(self.encoder.encode, rgb)
        self.emit(chunk)
        self.frames += 1
        if settings.log_events:
            print(RichLogger.line(RichLogger.frame_sent(chunk.width, chunk.height, len(chunk.image_bytes), which)))
        return chunk

    async def run(self):
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        while True:
            await self.tick()
            next_at += self.interval_s
            await asyncio.sleep(max(0.0, next_at - loop.time()))
