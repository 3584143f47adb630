import io
import subprocess

import numpy as np
import pytest
import soundfile as sf

from verbalized.audio import pipeline as pipeline_module
from verbalized.audio.pipeline import TranscodingPipeline, base_mime_type, decode_recording
from verbalized.audio.types import Recording, SampleBuffer
from verbalized.audio.wav import decode_wav, read_header
from verbalized.errors import AudioDecodeError, EmptyAudioError, PayloadTooLargeError
from verbalized.transcription import TranscriptionService
from verbalized.transcription_providers import TranscriptionProvider, TranscriptionResult


def _stereo_wav(frames: int = 4410, sample_rate: int = 44100) -> bytes:
    left = np.full(frames, 0.5, dtype=np.float32)
    right = np.full(frames, -0.5, dtype=np.float32)
    buf = io.BytesIO()
    sf.write(buf, np.stack([left, right], axis=1), sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class CountingProvider(TranscriptionProvider):
    name = "counting"

    def __init__(self):
        self.calls = []

    async def transcribe(self, *, payload, options):
        self.calls.append((payload, options))
        return TranscriptionResult(text="hello", provider=self.name)


def test_base_mime_type_strips_parameters():
    assert base_mime_type("audio/webm;codecs=opus") == "audio/webm"
    assert base_mime_type(" Audio/WAV ") == "audio/wav"
    assert base_mime_type(None) == ""


def test_transcode_stereo_wav_to_16k_mono():
    pipeline = TranscodingPipeline()

    payload = pipeline.transcode(Recording(data=_stereo_wav(), mime_type="audio/wav"))

    header = read_header(payload.data)
    assert header["sample_rate"] == 16000
    assert header["channels"] == 1
    assert header["bits_per_sample"] == 16
    assert payload.sample_count == 1600
    # Opposite channels cancel in the mixdown.
    assert np.all(decode_wav(payload.data).mono() == 0.0)


def test_transcode_raw_pcm_recording():
    pcm = np.full(4800, 16384, dtype="<i2").tobytes()
    recording = Recording(data=pcm, mime_type="audio/pcm", sample_rate=48000, channels=1)

    payload = TranscodingPipeline().transcode(recording)

    assert payload.sample_count == 1600
    np.testing.assert_allclose(decode_wav(payload.data).mono(), 0.5, atol=1e-4)


def test_raw_pcm_without_format_is_rejected():
    with pytest.raises(AudioDecodeError):
        decode_recording(Recording(data=b"\x00\x01" * 10, mime_type="audio/pcm"))


def test_undecodable_bytes_raise_decode_error():
    with pytest.raises(AudioDecodeError):
        TranscodingPipeline().transcode(Recording(data=b"definitely not audio", mime_type="audio/ogg"))


def test_empty_recording_is_rejected():
    with pytest.raises(EmptyAudioError):
        TranscodingPipeline().transcode(Recording(data=b"", mime_type="audio/wav"))


def test_zero_frame_decode_is_rejected():
    def empty_decoder(_recording):
        return SampleBuffer.from_mono([], 48000)

    pipeline = TranscodingPipeline(decoder=empty_decoder)

    with pytest.raises(EmptyAudioError):
        pipeline.transcode(Recording(data=b"x", mime_type="audio/wav"))


def test_oversized_payload_is_rejected():
    pipeline = TranscodingPipeline(max_payload_bytes=100)

    with pytest.raises(PayloadTooLargeError) as excinfo:
        pipeline.transcode(Recording(data=_stereo_wav(), mime_type="audio/wav"))

    assert excinfo.value.size == 44 + 1600 * 2
    assert excinfo.value.limit == 100


@pytest.mark.asyncio
async def test_service_skips_provider_when_payload_too_large():
    provider = CountingProvider()
    service = TranscriptionService(provider=provider, pipeline=TranscodingPipeline(max_payload_bytes=100))

    with pytest.raises(PayloadTooLargeError):
        await service.transcribe(Recording(data=_stereo_wav(), mime_type="audio/wav"))

    assert provider.calls == []


@pytest.mark.asyncio
async def test_service_sends_transcoded_payload_to_provider():
    provider = CountingProvider()
    service = TranscriptionService(provider=provider)

    result = await service.transcribe(Recording(data=_stereo_wav(), mime_type="audio/wav"), language="en")

    assert result.text == "hello"
    payload, options = provider.calls[0]
    assert payload.sample_rate == 16000
    assert payload.mime_type == "audio/wav"
    assert options.language == "en"


def test_webm_recording_is_rewrapped_through_ffmpeg(monkeypatch):
    calls = []

    def fake_run(cmd, **kwargs):
        calls.append(cmd)
        stereo = np.zeros((4800, 2), dtype=np.float32)
        sf.write(cmd[-1], stereo, 48000, format="WAV", subtype="PCM_16")
        return subprocess.CompletedProcess(cmd, 0, "", "")

    monkeypatch.setattr(pipeline_module.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(pipeline_module.subprocess, "run", fake_run)

    recording = Recording(data=b"\x1aE\xdf\xa3webm-bytes", mime_type="audio/webm;codecs=opus")
    payload = TranscodingPipeline().transcode(recording)

    assert calls[0][0] == "ffmpeg"
    assert "pcm_s16le" in calls[0]
    assert read_header(payload.data)["sample_rate"] == 16000
    assert payload.sample_count == 1600


def test_missing_ffmpeg_is_a_decode_error(monkeypatch):
    monkeypatch.setattr(pipeline_module.shutil, "which", lambda name: None)

    with pytest.raises(AudioDecodeError):
        decode_recording(Recording(data=b"\x00\x00\x00\x20ftypM4A ", mime_type="audio/mp4"))


def test_failed_ffmpeg_conversion_is_a_decode_error(monkeypatch):
    def failing_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="Invalid data found when processing input")

    monkeypatch.setattr(pipeline_module.shutil, "which", lambda name: "/usr/bin/ffmpeg")
    monkeypatch.setattr(pipeline_module.subprocess, "run", failing_run)

    with pytest.raises(AudioDecodeError):
        decode_recording(Recording(data=b"garbage", mime_type="audio/x-m4a"))
