import pytest

from verbalized.settings import MAX_PAYLOAD_BYTES, TARGET_SAMPLE_RATE, clamp_max_duration, load_settings


@pytest.mark.parametrize(
    ("requested", "applied"),
    [(5, 10.0), (10, 10.0), (180, 180.0), (600, 600.0), (1000, 600.0)],
)
def test_clamp_max_duration(requested, applied):
    assert clamp_max_duration(requested) == applied


def test_load_settings_defaults(monkeypatch):
    for name in (
        "MAX_DURATION_SECONDS",
        "OLLAMA_BASE_URL",
        "OLLAMA_MODEL",
        "TRANSCRIBE_PROVIDER",
        "RATE_LIMIT_ENABLED",
        "RATE_LIMIT_BACKEND",
    ):
        monkeypatch.delenv(name, raising=False)

    cfg = load_settings()

    assert cfg.audio.max_duration_seconds == 180.0
    assert cfg.audio.target_sample_rate == TARGET_SAMPLE_RATE == 16000
    assert cfg.audio.max_payload_bytes == MAX_PAYLOAD_BYTES == 25 * 1024 * 1024
    assert cfg.generation.base_url == "https://ollama.com/api"
    assert cfg.generation.model == "gpt-oss:120b-cloud"
    assert cfg.transcription.provider == "openai"
    assert cfg.transcription.model == "whisper-1"
    assert cfg.rate_limit.enabled is True
    assert cfg.rate_limit.backend == "memory"
    assert cfg.rate_limit.max_requests == 30
    assert cfg.rate_limit.window_seconds == 60


def test_load_settings_reads_environment(monkeypatch):
    monkeypatch.setenv("MAX_DURATION_SECONDS", "5")
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("OLLAMA_MODEL", "llama3")
    monkeypatch.setenv("CAPTURE_SAMPLE_RATE", "not-a-number")

    cfg = load_settings()

    assert cfg.audio.max_duration_seconds == 10.0
    assert cfg.audio.capture_sample_rate == 48000
    assert cfg.rate_limit.enabled is False
    assert cfg.generation.model == "llama3"
