"""
Rich logging utilities for the live session core.
Provides structured, emoji-enhanced console lines plus an NDJSON event log.
"""

import time
from typing import Any, Dict, Optional


class RichLogger:
    """Enhanced logging with emojis and structured output for live session flow."""

    @staticmethod
    def _format_time() -> str:
        return time.strftime("%H:%M:%S", time.localtime())

    @staticmethod
    def _format_duration(ms: float) -> str:
        if ms < 1000:
            return f"{ms:.0f}ms"
        return f"{ms/1000:.1f}s"

    @staticmethod
    def line(msg: str, sid: Optional[str] = None) -> str:
        prefix = f"[{RichLogger._format_time()}]"
        if sid:
            prefix += f" 🎯 [{sid[:8]}]"
        return f"{prefix} {msg}"

    @staticmethod
    def session_start(agent_name: str, voice: str) -> str:
        return f"🚀 Live Session Start: {agent_name} (voice={voice})"

    @staticmethod
    def session_stop(reason: str) -> str:
        return f"🛑 Live Session Stop ({reason})"

    @staticmethod
    def state_transition(old_state: str, new_state: str, reason: str = "") -> str:
        return f"🔄 {old_state} → {new_state}" + (f" ({reason})" if reason else "")

    @staticmethod
    def agent_changed(old_id: str, new_id: str) -> str:
        return f"🔁 Agent changed {old_id} → {new_id}, reconnecting..."

    @staticmethod
    def device_open(kind: str, detail: str) -> str:
        return f"🎛️  {kind}: {detail}"

    @staticmethod
    def device_state(mic_muted: bool, camera_muted: bool, screen_sharing: bool, gain: float) -> str:
        mic = "🔇" if mic_muted else "🎤"
        cam = "🚫" if camera_muted else "📷"
        screen = " 🖥️ " if screen_sharing else ""
        return f"{mic} {cam}{screen} gain={gain:.1f}"

    @staticmethod
    def audio_fragment(seq: int, duration_ms: float, start_s: float) -> str:
        return f"🎵 Fragment {seq}: {RichLogger._format_duration(duration_ms)} @ {start_s:.3f}s"

    @staticmethod
    def fragment_dropped(seq: int, reason: str) -> str:
        return f"🗑️  Dropped fragment {seq}: {reason}"

    @staticmethod
    def frame_sent(width: int, height: int, nbytes: int, source: str) -> str:
        return f"🖼️  Frame [{source}] {width}x{height} {nbytes}B"

    @staticmethod
    def tool_call(tool_name: str, args: dict) -> str:
        return f"🔧 Tool: {tool_name}({', '.join(f'{k}={v}' for k, v in args.items())})"

    @staticmethod
    def tool_result(tool_name: str, status: str) -> str:
        mark = "✅" if status == "ok" else "❌"
        return f"{mark} Tool {tool_name}: {status}"

    @staticmethod
    def interrupted() -> str:
        return "⚡ Interrupted: playback cut"

    @staticmethod
    def ui_command(command: str, args: dict) -> str:
        return f"🖱️  UI Command: {command} {args}"

    @staticmethod
    def error(error_msg: str) -> str:
        return f"❌ Error: {error_msg}"

    @staticmethod
    def timing(component: str, duration_ms: float) -> str:
        return f"⏱️  {component}: {RichLogger._format_duration(duration_ms)}"

    @staticmethod
    def session_summary(duration_ms: float, fragments: int, dropped: int, tools: int, interrupts: int) -> str:
        return (
            f"⏱️  Session: {RichLogger._format_duration(duration_ms)} | Fragments: {fragments} "
            f"(dropped {dropped}) | Tools: {tools} | Interrupts: {interrupts}"
        )


class NDJSONLogger:
    """Metrics logger for structured data output."""

    def __init__(self, path: str):
        from pathlib import Path
        import orjson

        Path(path).parent.mkdir(parents=True, exist_ok=True)
        self.path = Path(path)
        if not self.path.exists():
            self.path.touch()
        self._orjson = orjson

    def write(self, event: Dict[str, Any]) -> None:
        try:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(self._orjson.dumps(event).decode("utf-8") + "\n")
        except Exception:
            pass
