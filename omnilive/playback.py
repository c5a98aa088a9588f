from __future__ import annotations

from typing import Callable, List, Optional, Protocol, Set

import numpy as np

from .errors import PlaybackDecodeError
from .logging import RichLogger
from .media import pcm16_to_f32
from .models import AudioFragment, PlaybackSegment
from .settings import settings


class AudioSink(Protocol):
    """
    Output device as seen by the scheduler. `now()` is the output clock in
    seconds; `on_ended` is invoked (on the event loop) once per segment that
    played to completion.
    """

    on_ended: Optional[Callable[[PlaybackSegment], None]]

    def now(self) -> float: ...

    def schedule(self, segment: PlaybackSegment) -> None: ...

    def stop_all(self) -> None: ...


def decode_fragment(fragment: AudioFragment) -> np.ndarray:
    data = fragment.pcm_bytes
    if not data:
        raise PlaybackDecodeError(f"fragment {fragment.seq} is empty")
    if len(data) % 2 != 0:
        raise PlaybackDecodeError(f"fragment {fragment.seq} is not 16-bit aligned ({len(data)}B)")
    if fragment.sample_rate <= 0:
        raise PlaybackDecodeError(f"fragment {fragment.seq} has bad sample rate {fragment.sample_rate}")
    return pcm16_to_f32(data)


class PlaybackScheduler:
    """
    Gapless back-to-back playback of response audio.

    Each fragment starts at max(clock now, end of previously scheduled segment)
    and the cursor advances by its duration, so arrival jitter never opens a gap
    or an overlap. interrupt() silences everything and pulls the cursor back to
    the clock. `speaking` is true while at least one segment is active.
    """

    def __init__(
        self,
        sink: AudioSink,
        on_speaking: Optional[Callable[[bool], None]] = None,
    ):
        self.sink = sink
        self.sink.on_ended = self._on_segment_ended
        self.on_speaking = on_speaking
        self._cursor = 0.0
        self._active: Set[PlaybackSegment] = set()
        self._speaking = False

        self.played = 0
        self.dropped = 0
        self.interrupts = 0

    @property
    def speaking(self) -> bool:
        return self._speaking

    @property
    def cursor(self) -> float:
        return self._cursor

    @property
    def active(self) -> List[PlaybackSegment]:
        return sorted(self._active, key=lambda s: s.start)

    def enqueue(self, fragment: AudioFragment) -> Optional[PlaybackSegment]:
        try:
            samples = decode_fragment(fragment)
        except PlaybackDecodeError as e:
            self.dropped += 1
            print(RichLogger.line(RichLogger.fragment_dropped(fragment.seq, str(e))))
            return None

        start = max(self.sink.now(), self._cursor)
        seg = PlaybackSegment(seq=fragment.seq, samples=samples, sample_rate=fragment.sample_rate, start=start)
        self._cursor = seg.end
        self._active.add(seg)
        self.sink.schedule(seg)
        self.played += 1
        self._set_speaking(True)

        if settings.log_events:
            print(RichLogger.line(RichLogger.audio_fragment(seg.seq, seg.duration * 1000.0, seg.start)))
        return seg

    def interrupt(self) -> None:
        self.sink.stop_all()
        self._active.clear()
        self._cursor = self.sink.now()
        self.interrupts += 1
        self._set_speaking(False)

    def reset(self) -> None:
        """Silence playback without counting an interruption (teardown)."""
        self.sink.stop_all()
        self._active.clear()
        self._cursor = self.sink.now()
        self._set_speaking(False)

    def _on_segment_ended(self, segment: PlaybackSegment) -> None:
        # segments cut by interrupt() are already gone
        if segment not in self._active:
            return
        self._active.discard(segment)
        if not self._active:
            self._set_speaking(False)

    def _set_speaking(self, value: bool) -> None:
        if value == self._speaking:
            return
        self._speaking = value
        if self.on_speaking is not None:
            self.on_speaking(value)
