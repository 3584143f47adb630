import dataclasses
from types import SimpleNamespace

import httpx
import openai
import pytest

from verbalized.audio.types import EncodedPayload
from verbalized.errors import ProviderNotConfiguredError, UpstreamError
from verbalized.settings import TranscriptionSettings
from verbalized.transcription import TranscriptionService
from verbalized.transcription_providers import (
    MockTranscriptionProvider,
    OpenAIWhisperProvider,
    TranscriptionOptions,
)


def _default_transcription_settings() -> TranscriptionSettings:
    return TranscriptionSettings(
        provider="mock",
        api_key=None,
        organization=None,
        base_url=None,
        model="whisper-1",
        timeout=30.0,
    )


def _payload() -> EncodedPayload:
    return EncodedPayload(data=b"\x00" * 44 + b"\x00\x00" * 16000, sample_rate=16000)


def _stub_client(mocker, **create_kwargs):
    create = mocker.AsyncMock(**create_kwargs)
    return SimpleNamespace(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create))), create


def test_service_from_settings_mock():
    service = TranscriptionService.from_settings(_default_transcription_settings())

    assert isinstance(service.provider, MockTranscriptionProvider)


def test_service_from_settings_openai():
    cfg = dataclasses.replace(_default_transcription_settings(), provider="openai", api_key="sk-test")

    service = TranscriptionService.from_settings(cfg)

    assert isinstance(service.provider, OpenAIWhisperProvider)
    assert service.provider.is_configured()


def test_service_from_settings_unknown_provider():
    cfg = dataclasses.replace(_default_transcription_settings(), provider="unknown")

    with pytest.raises(RuntimeError):
        TranscriptionService.from_settings(cfg)


@pytest.mark.asyncio
async def test_mock_provider_reports_duration():
    result = await MockTranscriptionProvider().transcribe(payload=_payload(), options=TranscriptionOptions())

    assert result.text == "mock transcription"
    assert result.duration_seconds == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_whisper_provider_sends_wav_upload(mocker):
    client, create = _stub_client(mocker, return_value=SimpleNamespace(text=" hello world "))
    provider = OpenAIWhisperProvider(api_key=None, client=client)

    result = await provider.transcribe(payload=_payload(), options=TranscriptionOptions(language="en"))

    assert result.text == " hello world "
    assert result.provider == "openai-whisper-api"
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "whisper-1"
    assert kwargs["language"] == "en"
    filename, data, mime_type = kwargs["file"]
    assert filename == "audio.wav"
    assert mime_type == "audio/wav"
    assert len(data) == 44 + 32000


@pytest.mark.asyncio
async def test_whisper_provider_omits_language_when_unset(mocker):
    client, create = _stub_client(mocker, return_value=SimpleNamespace(text="x"))
    provider = OpenAIWhisperProvider(api_key=None, client=client)

    await provider.transcribe(payload=_payload(), options=TranscriptionOptions())

    assert "language" not in create.await_args.kwargs


@pytest.mark.asyncio
async def test_whisper_provider_sanitizes_status_errors(mocker):
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    error = openai.AuthenticationError(
        "Incorrect API key provided: sk-live123",
        response=httpx.Response(401, request=request),
        body=None,
    )
    client, _ = _stub_client(mocker, side_effect=error)
    provider = OpenAIWhisperProvider(api_key=None, client=client)

    with pytest.raises(UpstreamError) as excinfo:
        await provider.transcribe(payload=_payload(), options=TranscriptionOptions())

    assert excinfo.value.status_code == 401
    assert "sk-live123" not in excinfo.value.message
    assert "[REDACTED]" in excinfo.value.message


@pytest.mark.asyncio
async def test_whisper_provider_wraps_connection_errors(mocker):
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    client, _ = _stub_client(mocker, side_effect=openai.APIConnectionError(request=request))
    provider = OpenAIWhisperProvider(api_key=None, client=client)

    with pytest.raises(UpstreamError):
        await provider.transcribe(payload=_payload(), options=TranscriptionOptions())


@pytest.mark.asyncio
async def test_whisper_provider_without_key_is_not_configured():
    provider = OpenAIWhisperProvider(api_key=None)

    assert not provider.is_configured()
    with pytest.raises(ProviderNotConfiguredError):
        await provider.transcribe(payload=_payload(), options=TranscriptionOptions())
