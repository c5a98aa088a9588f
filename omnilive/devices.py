"""
Hardware edges of the live session: microphone, speaker, camera, screen.

Backends are imported when a device is opened so the rest of the package can
be used (and tested) without PortAudio, a camera or a display. Every open()
raises DeviceAcquisitionError on failure; every close() is idempotent.
"""

from __future__ import annotations

import asyncio
import contextlib
import threading
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .errors import DeviceAcquisitionError
from .logging import RichLogger
from .media import _int16_clip, _linear_resample_f32
from .models import PlaybackSegment
from .settings import settings

CHANNELS = 1


def _find_device(pya, index: Optional[int], want_input: bool) -> dict:
    if index is not None:
        return pya.get_device_info_by_index(index)
    if want_input:
        return pya.get_default_input_device_info()
    return pya.get_default_output_device_info()


def _pick_rate(pya, info: dict, preferred: int, want_input: bool) -> int:
    import pyaudio

    kwargs: dict = {"rate": preferred}
    if want_input:
        kwargs.update(input_device=info["index"], input_channels=CHANNELS, input_format=pyaudio.paInt16)
    else:
        kwargs.update(output_device=info["index"], output_channels=CHANNELS, output_format=pyaudio.paInt16)
    try:
        pya.is_format_supported(**kwargs)
        return preferred
    except ValueError:
        return int(info["defaultSampleRate"])


# ----------------- microphone -----------------
class MicrophoneSource:
    """PyAudio input stream read in blocks of `frames` samples."""

    def __init__(
        self,
        device_index: Optional[int] = settings.input_device,
        frames: int = settings.capture_frames,
        preferred_rate: int = settings.send_sample_rate,
    ):
        self.device_index = device_index
        self.frames = frames
        self.sample_rate = preferred_rate
        self._pya = None
        self._stream = None

    async def open(self):
        try:
            import pyaudio

            self._pya = pyaudio.PyAudio()
            info = _find_device(self._pya, self.device_index, want_input=True)
            self.sample_rate = _pick_rate(self._pya, info, self.sample_rate, want_input=True)
            self._stream = await asyncio.to_thread(
                self._pya.open,
                format=pyaudio.paInt16,
                channels=CHANNELS,
                rate=self.sample_rate,
                input=True,
                input_device_index=info["index"],
                frames_per_buffer=self.frames,
            )
        except Exception as e:
            self.close()
            raise DeviceAcquisitionError("microphone", str(e)) from e
        print(RichLogger.line(RichLogger.device_open("Mic", f"{info['name']} @ {self.sample_rate}Hz")))

    async def read(self) -> bytes:
        if self._stream is None:
            return b""
        return await asyncio.to_thread(self._stream.read, self.frames, exception_on_overflow=False)

    def close(self):
        if self._stream is not None:
            with contextlib.suppress(Exception):
                if self._stream.is_active():
                    self._stream.stop_stream()
                self._stream.close()
            self._stream = None
        if self._pya is not None:
            with contextlib.suppress(Exception):
                self._pya.terminate()
            self._pya = None


# ----------------- speaker -----------------
class SpeakerSink:
    """
    Callback-driven PyAudio output that renders scheduled segments onto a
    sample timeline. The number of frames rendered so far is the output clock.
    """

    def __init__(
        self,
        device_index: Optional[int] = settings.output_device,
        sample_rate: int = settings.receive_sample_rate,
    ):
        self.device_index = device_index
        self.rate = sample_rate
        self.on_ended: Optional[Callable[[PlaybackSegment], None]] = None

        self._lock = threading.Lock()
        self._segments: List[Tuple[PlaybackSegment, np.ndarray, int]] = []
        self._rendered = 0
        self._late = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pya = None
        self._stream = None
        self._continue: Any = 0

    def now(self) -> float:
        return self._rendered / float(self.rate)

    async def open(self):
        self._loop = asyncio.get_running_loop()
        try:
            import pyaudio

            self._pya = pyaudio.PyAudio()
            self._continue = pyaudio.paContinue
            info = _find_device(self._pya, self.device_index, want_input=False)
            self.rate = _pick_rate(self._pya, info, self.rate, want_input=False)
            self._stream = await asyncio.to_thread(
                self._pya.open,
                format=pyaudio.paInt16,
                channels=CHANNELS,
                rate=self.rate,
                output=True,
                output_device_index=info["index"],
                stream_callback=self._callback,
            )
        except Exception as e:
            self.close()
            raise DeviceAcquisitionError("speaker", str(e)) from e
        print(RichLogger.line(RichLogger.device_open("Speaker", f"{info['name']} @ {self.rate}Hz")))

    def schedule(self, segment: PlaybackSegment) -> None:
        samples = segment.samples
        if segment.sample_rate != self.rate:
            # frames between the rounded start and end, so consecutive segments tile exactly
            n_out = max(1, int(round(segment.end * self.rate)) - int(round(segment.start * self.rate)))
            samples = _linear_resample_f32(samples, segment.sample_rate, self.rate, n_out=n_out)
        with self._lock:
            if not self._segments:
                self._late = 0
            start_frame = int(round(segment.start * self.rate)) + self._late
            # the callback already rendered past this start: play it whole, and
            # push the segments queued behind it back by the same amount
            if start_frame < self._rendered:
                self._late += self._rendered - start_frame
                start_frame = self._rendered
            self._segments.append((segment, samples, start_frame))

    def stop_all(self) -> None:
        with self._lock:
            self._segments.clear()
            self._late = 0

    def _callback(self, in_data, frame_count, time_info, status):
        out = np.zeros(frame_count, dtype=np.float32)
        finished: List[PlaybackSegment] = []
        with self._lock:
            t0 = self._rendered
            t1 = t0 + frame_count
            keep = []
            for seg, samples, s0 in self._segments:
                s1 = s0 + samples.size
                lo, hi = max(t0, s0), min(t1, s1)
                if hi > lo:
                    out[lo - t0:hi - t0] += samples[lo - s0:hi - s0]
                if s1 <= t1:
                    finished.append(seg)
                else:
                    keep.append((seg, samples, s0))
            self._segments = keep
            self._rendered = t1

        if finished and self._loop is not None:
            for seg in finished:
                self._loop.call_soon_threadsafe(self._notify_ended, seg)
        return (_int16_clip(out).tobytes(), self._continue)

    def _notify_ended(self, segment: PlaybackSegment) -> None:
        if self.on_ended is not None:
            self.on_ended(segment)

    def close(self):
        self.stop_all()
        if self._stream is not None:
            with contextlib.suppress(Exception):
                if self._stream.is_active():
                    self._stream.stop_stream()
                self._stream.close()
            self._stream = None
        if self._pya is not None:
            with contextlib.suppress(Exception):
                self._pya.terminate()
            self._pya = None


# ----------------- camera -----------------
class CameraSource:
    def __init__(self, index: int = settings.camera_index):
        self.index = index
        self._cap = None

    async def open(self):
        try:
            import cv2

            self._cap = await asyncio.to_thread(cv2.VideoCapture, self.index)
            if not self._cap.isOpened():
                raise RuntimeError(f"camera {self.index} did not open")
        except Exception as e:
            self.close()
            raise DeviceAcquisitionError("camera", str(e)) from e
        print(RichLogger.line(RichLogger.device_open("Camera", f"index {self.index}")))

    async def grab(self) -> Optional[np.ndarray]:
        if self._cap is None:
            return None
        import cv2

        ret, frame = await asyncio.to_thread(self._cap.read)
        if not ret:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def close(self):
        if self._cap is not None:
            with contextlib.suppress(Exception):
                self._cap.release()
            self._cap = None


# ----------------- screen -----------------
def _grab_screen(monitor_index: int) -> np.ndarray:
    import mss

    # mss handles are per-thread; open one for each grab on the worker thread
    with mss.mss() as sct:
        monitors = sct.monitors
        monitor = monitors[monitor_index] if monitor_index < len(monitors) else monitors[0]
        shot = sct.grab(monitor)
        bgra = np.asarray(shot)
    return np.ascontiguousarray(bgra[..., 2::-1])


class ScreenSource:
    """Display capture. Monitor 1 is the primary screen in mss numbering."""

    def __init__(self, monitor_index: int = 1):
        self.monitor_index = monitor_index
        self._open = False

    async def open(self):
        try:
            await asyncio.to_thread(_grab_screen, self.monitor_index)
        except Exception as e:
            raise DeviceAcquisitionError("display", str(e)) from e
        self._open = True
        print(RichLogger.line(RichLogger.device_open("Screen", f"monitor {self.monitor_index}")))

    async def grab(self) -> Optional[np.ndarray]:
        if not self._open:
            return None
        try:
            return await asyncio.to_thread(_grab_screen, self.monitor_index)
        except Exception as e:
            # display capture ended under us
            print(RichLogger.line(RichLogger.error(f"screen capture: {e}")))
            self._open = False
            return None

    def close(self):
        self._open = False
