from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List

import orjson

from .settings import settings

SESSION_KEYS = ("duration_ms", "fragments", "fragments_dropped", "tool_calls", "interrupts", "audio_chunks", "frames")


@dataclass
class Percentiles:
    count: int
    p50: int
    p95: int


def _percentile(sorted_vals: List[int], p: float) -> int:
    if not sorted_vals:
        return 0
    if p <= 0:
        return int(sorted_vals[0])
    if p >= 1:
        return int(sorted_vals[-1])
    k = p * (len(sorted_vals) - 1)
    f = int(k)
    c = min(f + 1, len(sorted_vals) - 1)
    if f == c:
        return int(sorted_vals[f])
    # linear interpolation
    return int(round(sorted_vals[f] + (sorted_vals[c] - sorted_vals[f]) * (k - f), 0))


def _summarize(vals: Iterable[int]) -> Percentiles:
    vals_sorted = sorted(int(v) for v in vals if v is not None)
    return Percentiles(
        count=len(vals_sorted),
        p50=_percentile(vals_sorted, 0.50),
        p95=_percentile(vals_sorted, 0.95),
    )


def read_events(path: str | Path) -> List[Dict]:
    """All NDJSON events in `path`; unreadable lines are skipped."""
    p = Path(path)
    if not p.exists():
        return []
    out: List[Dict] = []
    try:
        with p.open("r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = orjson.loads(line)
                except orjson.JSONDecodeError:
                    continue
                if isinstance(obj, dict) and "evt" in obj:
                    out.append(obj)
    except OSError:
        return []
    return out


def summarize_sessions(sessions: List[Dict]) -> Dict[str, Dict]:
    buckets: Dict[str, List[int]] = {k: [] for k in SESSION_KEYS}
    for s in sessions:
        for k in SESSION_KEYS:
            v = s.get(k)
            if isinstance(v, (int, float)):
                buckets[k].append(int(v))
    return {k: vars(_summarize(vs)) for k, vs in buckets.items()}


def summarize_events(events: List[Dict]) -> Dict:
    opens = [e for e in events if e.get("evt") == "session_open"]
    sessions = [e for e in events if e.get("evt") == "session_metrics"]
    tools = [e for e in events if e.get("evt") == "tool_call"]

    tool_status: Dict[str, int] = {}
    for t in tools:
        status = str(t.get("status", "ok"))
        tool_status[status] = tool_status.get(status, 0) + 1

    close_reasons: Dict[str, int] = {}
    for s in sessions:
        reason = str(s.get("reason", ""))
        close_reasons[reason] = close_reasons.get(reason, 0) + 1

    return {
        "sessions": len(sessions),
        "connect_ms": vars(_summarize(e.get("connect_ms") for e in opens if isinstance(e.get("connect_ms"), (int, float)))),
        "metrics": summarize_sessions(sessions),
        "tool_calls": tool_status,
        "close_reasons": close_reasons,
    }


def summarize_file(path: str | Path | None = None) -> Dict:
    path = path or settings.metrics_file
    return summarize_events(read_events(path))
