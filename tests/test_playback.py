import numpy as np
import pytest

from fakes import FakeSink
from omnilive.errors import PlaybackDecodeError
from omnilive.models import AudioFragment
from omnilive.playback import PlaybackScheduler, decode_fragment


def fragment(seq: int, ms: int, rate: int = 24000) -> AudioFragment:
    n = rate * ms // 1000
    pcm = (np.sin(np.arange(n) / 8.0) * 8000).astype("<i2").tobytes()
    return AudioFragment(pcm_bytes=pcm, seq=seq, sample_rate=rate)


def test_back_to_back_fragments_are_gapless(clock):
    sink = FakeSink(clock)
    sched = PlaybackScheduler(sink)

    a = sched.enqueue(fragment(0, 200))
    clock.advance(0.05)
    b = sched.enqueue(fragment(1, 150))

    assert a.start == pytest.approx(0.0)
    assert b.start == pytest.approx(0.2)
    assert sched.cursor == pytest.approx(0.35)
    assert [s.seq for s in sink.scheduled] == [0, 1]


def test_late_fragment_starts_at_clock(clock):
    sink = FakeSink(clock)
    sched = PlaybackScheduler(sink)

    sched.enqueue(fragment(0, 100))
    clock.advance(0.5)   # underrun: previous audio already finished
    seg = sched.enqueue(fragment(1, 100))

    assert seg.start == pytest.approx(0.5)
    assert sched.cursor == pytest.approx(0.6)


def test_interrupt_silences_and_resets_cursor(clock):
    sink = FakeSink(clock)
    sched = PlaybackScheduler(sink)
    sched.enqueue(fragment(0, 200))
    sched.enqueue(fragment(1, 200))
    clock.advance(0.1)

    sched.interrupt()

    assert sink.stops == 1
    assert sched.active == []
    assert sched.speaking is False
    assert sched.cursor == pytest.approx(0.1)
    assert sched.interrupts == 1

    # next response audio plays immediately, not after the cut audio
    seg = sched.enqueue(fragment(2, 50))
    assert seg.start == pytest.approx(0.1)


def test_speaking_flag_follows_active_segments(clock):
    sink = FakeSink(clock)
    seen = []
    sched = PlaybackScheduler(sink, on_speaking=seen.append)

    a = sched.enqueue(fragment(0, 100))
    b = sched.enqueue(fragment(1, 100))
    assert sched.speaking is True

    sink.finish(a)
    assert sched.speaking is True
    sink.finish(b)
    assert sched.speaking is False
    assert seen == [True, False]


def test_ended_callback_after_interrupt_is_ignored(clock):
    sink = FakeSink(clock)
    seen = []
    sched = PlaybackScheduler(sink, on_speaking=seen.append)
    a = sched.enqueue(fragment(0, 100))
    sched.interrupt()
    b = sched.enqueue(fragment(1, 100))

    sink.finish(a)   # stale completion of the cut segment
    assert sched.speaking is True
    sink.finish(b)
    assert seen == [True, False, True, False]


def test_undecodable_fragment_is_dropped(clock):
    sink = FakeSink(clock)
    sched = PlaybackScheduler(sink)

    assert sched.enqueue(AudioFragment(pcm_bytes=b"\x01\x02\x03", seq=0)) is None
    assert sched.enqueue(AudioFragment(pcm_bytes=b"", seq=1)) is None
    assert sched.dropped == 2
    assert sched.cursor == 0.0
    assert sched.speaking is False

    # stream continues with the next good fragment
    seg = sched.enqueue(fragment(2, 100))
    assert seg.start == pytest.approx(0.0)


def test_decode_fragment_rejects_bad_rate():
    with pytest.raises(PlaybackDecodeError):
        decode_fragment(AudioFragment(pcm_bytes=b"\x00\x00", seq=0, sample_rate=0))
