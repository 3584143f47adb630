from __future__ import annotations

"""Runtime configuration helpers for verbalized."""

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

_BOOL_TRUTHY = {"1", "true", "yes", "on"}

# Fixed by the upload boundary, not configurable.
TARGET_SAMPLE_RATE = 16000
MAX_PAYLOAD_BYTES = 25 * 1024 * 1024
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_MAX_REQUESTS = 30

DEFAULT_MAX_DURATION_SECONDS = 180
MIN_MAX_DURATION_SECONDS = 10
MAX_MAX_DURATION_SECONDS = 600


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in _BOOL_TRUTHY


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def clamp_max_duration(value: float) -> float:
    """Keep the recording cap inside the supported 10-600 second range."""

    if MIN_MAX_DURATION_SECONDS <= value <= MAX_MAX_DURATION_SECONDS:
        return float(value)
    clamped = float(min(max(value, MIN_MAX_DURATION_SECONDS), MAX_MAX_DURATION_SECONDS))
    logger.warning(
        "settings.max_duration.clamped",
        extra={"requested": value, "applied": clamped},
    )
    return clamped


@dataclass(frozen=True)
class AudioSettings:
    max_duration_seconds: float
    capture_sample_rate: int
    capture_channels: int
    target_sample_rate: int = TARGET_SAMPLE_RATE
    max_payload_bytes: int = MAX_PAYLOAD_BYTES


@dataclass(frozen=True)
class TranscriptionSettings:
    provider: str
    api_key: str | None
    organization: str | None
    base_url: str | None
    model: str
    timeout: float


@dataclass(frozen=True)
class GenerationSettings:
    api_key: str | None
    base_url: str
    model: str
    timeout: float


@dataclass(frozen=True)
class RateLimitSettings:
    enabled: bool
    backend: str
    max_entries: int
    redis_url: str
    sweep_probability: float
    window_seconds: int = RATE_LIMIT_WINDOW_SECONDS
    max_requests: int = RATE_LIMIT_MAX_REQUESTS


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    format: str
    file: str | None


@dataclass(frozen=True)
class Settings:
    audio: AudioSettings
    transcription: TranscriptionSettings
    generation: GenerationSettings
    rate_limit: RateLimitSettings
    logging: LoggingSettings


def load_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""

    audio_settings = AudioSettings(
        max_duration_seconds=clamp_max_duration(
            _env_float("MAX_DURATION_SECONDS", float(DEFAULT_MAX_DURATION_SECONDS))
        ),
        capture_sample_rate=_env_int("CAPTURE_SAMPLE_RATE", 48000),
        capture_channels=_env_int("CAPTURE_CHANNELS", 1),
    )

    transcription_settings = TranscriptionSettings(
        provider=os.getenv("TRANSCRIBE_PROVIDER", "openai"),
        api_key=os.getenv("OPENAI_API_KEY"),
        organization=os.getenv("OPENAI_ORG_ID"),
        base_url=os.getenv("OPENAI_BASE_URL"),
        model=os.getenv("TRANSCRIBE_MODEL", "whisper-1"),
        timeout=_env_float("TRANSCRIBE_TIMEOUT", 60.0),
    )

    generation_settings = GenerationSettings(
        api_key=os.getenv("OLLAMA_API_KEY"),
        base_url=os.getenv("OLLAMA_BASE_URL") or "https://ollama.com/api",
        model=os.getenv("OLLAMA_MODEL") or "gpt-oss:120b-cloud",
        timeout=_env_float("COMPOSE_TIMEOUT", 120.0),
    )

    rate_limit_settings = RateLimitSettings(
        enabled=_env_bool("RATE_LIMIT_ENABLED", True),
        backend=os.getenv("RATE_LIMIT_BACKEND", "memory"),
        max_entries=_env_int("RATE_LIMIT_MAX_ENTRIES", 10000),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        sweep_probability=_env_float("RATE_LIMIT_SWEEP_PROBABILITY", 0.01),
    )

    logging_settings = LoggingSettings(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
        file=os.getenv("LOG_FILE"),
    )

    return Settings(
        audio=audio_settings,
        transcription=transcription_settings,
        generation=generation_settings,
        rate_limit=rate_limit_settings,
        logging=logging_settings,
    )


settings = load_settings()

__all__ = [
    "Settings",
    "AudioSettings",
    "TranscriptionSettings",
    "GenerationSettings",
    "RateLimitSettings",
    "LoggingSettings",
    "TARGET_SAMPLE_RATE",
    "MAX_PAYLOAD_BYTES",
    "RATE_LIMIT_WINDOW_SECONDS",
    "RATE_LIMIT_MAX_REQUESTS",
    "clamp_max_duration",
    "settings",
    "load_settings",
]
