from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import find_dotenv, load_dotenv

# Load .env if present
load_dotenv(find_dotenv(), override=False)

def _get_bool(key: str, default: bool = False) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")

def _get_index(key: str) -> Optional[int]:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return None
    return int(v)

@dataclass(frozen=True)
class Settings:
    # Local control surface
    host: str = os.getenv("OMNI_HOST", "127.0.0.1")
    port: int = int(os.getenv("OMNI_PORT", "8080"))

    # Remote live session
    gemini_api_key: Optional[str] = os.getenv("GEMINI_API_KEY")
    live_model: str = os.getenv("OMNI_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-09-2025")
    live_host: str = os.getenv("OMNI_LIVE_HOST", "generativelanguage.googleapis.com")
    setup_timeout_s: float = float(os.getenv("OMNI_SETUP_TIMEOUT_S", "10"))
    reconnect_grace_ms: int = int(os.getenv("OMNI_RECONNECT_GRACE_MS", "500"))

    # Audio
    send_sample_rate: int = int(os.getenv("OMNI_SEND_SAMPLE_RATE", "16000"))
    receive_sample_rate: int = int(os.getenv("OMNI_RECEIVE_SAMPLE_RATE", "24000"))
    capture_frames: int = int(os.getenv("OMNI_CAPTURE_FRAMES", "4096"))
    gain_ramp_s: float = float(os.getenv("OMNI_GAIN_RAMP_S", "0.1"))
    input_device: Optional[int] = _get_index("OMNI_INPUT_DEVICE")
    output_device: Optional[int] = _get_index("OMNI_OUTPUT_DEVICE")

    # Video
    camera_index: int = int(os.getenv("OMNI_CAMERA_INDEX", "0"))
    video_interval_s: float = float(os.getenv("OMNI_VIDEO_INTERVAL_S", "1.0"))
    frame_downscale: int = int(os.getenv("OMNI_FRAME_DOWNSCALE", "4"))
    jpeg_quality: int = int(os.getenv("OMNI_JPEG_QUALITY", "50"))

    # Metrics
    metrics_dir: str = os.getenv("OMNI_METRICS_DIR", "./metrics")
    metrics_file: str = os.getenv("OMNI_METRICS_FILE", "./metrics/live.ndjson")

    log_events: bool = _get_bool("OMNI_LOG_EVENTS", False)   # per-event fragment/frame logging


settings = Settings()
