"""
Configuration for the live recitation system.

Environment variables are loaded from a ``.env`` file when present.
"""

import os
import math
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


DEFAULT_CHUNK_DURATION_MS = 4000
LOW_LATENCY_CHUNK_DURATION_MS = 2500
DEFAULT_MAX_QUEUE_DEPTH = 6
DEFAULT_SUBSTITUTION_THRESHOLD = 0.75
MIN_SUBSTITUTION_THRESHOLD = 0.5
MAX_SUBSTITUTION_THRESHOLD = 0.95
DEFAULT_TARGET_SAMPLE_RATE = 16000
DEFAULT_TRANSCRIPTION_TIMEOUT_S = 15.0
DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024


def clamp_substitution_threshold(value: Optional[float]) -> float:
    """Clamp a substitution threshold into the supported range, or return the default."""
    if value is None:
        return DEFAULT_SUBSTITUTION_THRESHOLD
    try:
        value = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SUBSTITUTION_THRESHOLD
    if not math.isfinite(value):
        return DEFAULT_SUBSTITUTION_THRESHOLD
    return min(MAX_SUBSTITUTION_THRESHOLD, max(MIN_SUBSTITUTION_THRESHOLD, value))


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings:
    """Process-wide settings read from the environment."""

    def __init__(self):
        self.tarteel_api_key = os.getenv("TARTEEL_API_KEY") or None
        self.tarteel_api_base_url = os.getenv("TARTEEL_API_BASE_URL", "https://api.tarteel.ai/api/v1")
        self.tarteel_transcribe_path = os.getenv(
            "TARTEEL_TRANSCRIBE_PATH", "recitations/external-transcriptions"
        )
        self.tarteel_org_id = os.getenv("TARTEEL_ORG_ID") or None
        self.tarteel_app_id = os.getenv("TARTEEL_APP_ID") or None
        self.transcription_timeout = _env_float(
            "TILAWA_TRANSCRIPTION_TIMEOUT", DEFAULT_TRANSCRIPTION_TIMEOUT_S
        )
        self.max_upload_bytes = _env_int("TILAWA_MAX_UPLOAD_BYTES", DEFAULT_MAX_UPLOAD_BYTES)
        self.log_level = os.getenv("TILAWA_LOG_LEVEL", "INFO").upper()
        self.host = os.getenv("TILAWA_HOST", "127.0.0.1")
        self.port = _env_int("TILAWA_PORT", 8000)

    @property
    def transcription_configured(self) -> bool:
        return bool(self.tarteel_api_key)


@dataclass
class LiveRecitationConfig:
    """Options for one live recitation session."""
    chunk_duration_ms: int = DEFAULT_CHUNK_DURATION_MS
    dialect: str = "auto"
    substitution_threshold: float = DEFAULT_SUBSTITUTION_THRESHOLD
    locale_hint: Optional[str] = None
    max_queue_depth: int = DEFAULT_MAX_QUEUE_DEPTH
    frame_channel_depth: int = 512
    target_sample_rate: int = DEFAULT_TARGET_SAMPLE_RATE
    transcription_timeout_s: float = DEFAULT_TRANSCRIPTION_TIMEOUT_S
    finalize_on_stop: bool = True
    transcode_chunks: bool = False
    ayah_id: Optional[str] = None

    def __post_init__(self):
        if self.chunk_duration_ms <= 0:
            raise ValueError("chunk_duration_ms must be positive")
        if self.max_queue_depth < 1:
            raise ValueError("max_queue_depth must be at least 1")
        self.substitution_threshold = clamp_substitution_threshold(self.substitution_threshold)


settings = Settings()
