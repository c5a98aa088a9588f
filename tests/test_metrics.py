import orjson

from omnilive.metrics import read_events, summarize_events, summarize_file, summarize_sessions


def write(fp, obj):
    fp.write(orjson.dumps(obj).decode("utf-8") + "\n")


def session(sid, duration, fragments, interrupts=0, reason="user"):
    return {
        "evt": "session_metrics",
        "sid": sid,
        "duration_ms": duration,
        "fragments": fragments,
        "fragments_dropped": 0,
        "tool_calls": 1,
        "interrupts": interrupts,
        "audio_chunks": 10,
        "frames": 2,
        "reason": reason,
    }


def test_metrics_p50_p95(tmp_path):
    metrics_file = tmp_path / "live.ndjson"

    with metrics_file.open("w", encoding="utf-8") as f:
        # connect_ms: 420, 480, 510, 530, 590, 610  (p95 should be between 590..610)
        for i, ms in enumerate((420, 480, 510, 530, 590, 610)):
            write(f, {"evt": "session_open", "sid": f"s{i}", "connect_ms": ms})
            write(f, session(f"s{i}", 10_000 + i * 1000, 20 + i, interrupts=i % 2))
        write(f, {"evt": "tool_call", "sid": "s0", "name": "change_view", "status": "ok"})
        write(f, {"evt": "tool_call", "sid": "s0", "name": "nope", "status": "unknown_tool"})
        f.write("not json\n\n")

    events = read_events(metrics_file)
    assert len(events) == 14

    top = summarize_file(metrics_file)
    assert top["sessions"] == 6
    assert top["connect_ms"]["count"] == 6
    assert 480 <= top["connect_ms"]["p50"] <= 530
    assert 590 <= top["connect_ms"]["p95"] <= 610
    assert top["metrics"]["fragments"]["p50"] >= 22
    assert top["metrics"]["interrupts"]["p95"] == 1
    assert top["tool_calls"] == {"ok": 1, "unknown_tool": 1}
    assert top["close_reasons"] == {"user": 6}


def test_missing_file_is_empty(tmp_path):
    top = summarize_file(tmp_path / "nope.ndjson")
    assert top["sessions"] == 0
    assert top["connect_ms"] == {"count": 0, "p50": 0, "p95": 0}


def test_summarize_sessions_skips_non_numeric():
    out = summarize_sessions([{"fragments": "lots"}, {"fragments": 4}])
    assert out["fragments"]["count"] == 1
    assert summarize_events([])["tool_calls"] == {}
