from __future__ import annotations

import io
import logging
import os
import shutil
import subprocess
import tempfile
import time
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from ..errors import AudioDecodeError, EmptyAudioError, PayloadTooLargeError
from ..settings import MAX_PAYLOAD_BYTES, TARGET_SAMPLE_RATE
from .dsp import mix_down, resample
from .types import EncodedPayload, Recording, SampleBuffer
from .wav import encode_wav

logger = logging.getLogger(__name__)

RAW_PCM_MIME_TYPES = {"audio/pcm", "audio/l16"}
# Containers libsndfile has no reader for; rewrapped as WAV by ffmpeg first.
FFMPEG_MIME_TYPES = {"audio/webm", "audio/mp4", "audio/x-m4a"}

Decoder = Callable[[Recording], SampleBuffer]


def base_mime_type(mime_type: str | None) -> str:
    """``audio/webm;codecs=opus`` -> ``audio/webm``."""
    return (mime_type or "").split(";", 1)[0].strip().lower()


def convert_to_wav(data: bytes) -> bytes:
    """Rewrap an encoded container as 16-bit PCM WAV using FFmpeg.

    Sample rate and channel count are left as recorded; mixdown and
    resampling happen afterwards in the pipeline.
    """
    if not shutil.which("ffmpeg"):
        logger.error("transcode.ffmpeg.missing")
        raise RuntimeError("ffmpeg is not installed or not in PATH")

    with tempfile.TemporaryDirectory(prefix="verbalized-") as workdir:
        input_path = os.path.join(workdir, "input")
        output_path = os.path.join(workdir, "output.wav")
        with open(input_path, "wb") as fh:
            fh.write(data)
        try:
            subprocess.run(
                [
                    "ffmpeg",
                    "-nostdin",
                    "-i",
                    input_path,
                    "-y",
                    "-vn",
                    "-acodec",
                    "pcm_s16le",
                    output_path,
                ],
                check=True,
                capture_output=True,
                text=True,
            )
        except subprocess.CalledProcessError as exc:
            logger.warning("transcode.ffmpeg.failed", extra={"stderr": (exc.stderr or "")[-500:]})
            raise RuntimeError("audio conversion failed") from exc
        with open(output_path, "rb") as fh:
            return fh.read()


def decode_recording(recording: Recording) -> SampleBuffer:
    """Decode a recording's native bytes with libsndfile, via FFmpeg for webm and mp4."""
    if not recording.data:
        raise EmptyAudioError("recording contains no audio data")
    try:
        mime_type = base_mime_type(recording.mime_type)
        if mime_type in RAW_PCM_MIME_TYPES:
            if not recording.sample_rate or not recording.channels:
                raise ValueError("raw PCM recordings need a sample rate and channel count")
            audio_array, sample_rate = sf.read(
                io.BytesIO(recording.data),
                dtype="float32",
                always_2d=True,
                format="RAW",
                subtype="PCM_16",
                endian="LITTLE",
                samplerate=recording.sample_rate,
                channels=recording.channels,
            )
        else:
            source = recording.data
            if mime_type in FFMPEG_MIME_TYPES:
                source = convert_to_wav(source)
            audio_array, sample_rate = sf.read(io.BytesIO(source), dtype="float32", always_2d=True)
    except Exception as exc:
        raise AudioDecodeError("unsupported audio encoding") from exc
    # Own a fresh contiguous copy so no decoder buffer is shared downstream.
    samples = np.array(audio_array, dtype=np.float32, copy=True, order="C")
    return SampleBuffer(samples=samples, sample_rate=int(sample_rate))


class TranscodingPipeline:
    """Decode, mix down, resample and encode a recording for upload."""

    def __init__(
        self,
        *,
        target_sample_rate: int = TARGET_SAMPLE_RATE,
        max_payload_bytes: int = MAX_PAYLOAD_BYTES,
        decoder: Optional[Decoder] = None,
    ) -> None:
        self._target_sample_rate = target_sample_rate
        self._max_payload_bytes = max_payload_bytes
        self._decoder = decoder or decode_recording

    @property
    def target_sample_rate(self) -> int:
        return self._target_sample_rate

    @property
    def max_payload_bytes(self) -> int:
        return self._max_payload_bytes

    def transcode(self, recording: Recording) -> EncodedPayload:
        started = time.perf_counter()
        buffer = self._decoder(recording)
        if buffer.frames == 0:
            raise EmptyAudioError("recording decoded to an empty buffer")

        mono = mix_down(buffer)
        try:
            resampled = resample(mono, self._target_sample_rate)
        except ValueError as exc:
            raise EmptyAudioError(str(exc)) from exc
        payload = encode_wav(resampled)

        if payload.size > self._max_payload_bytes:
            logger.warning(
                "transcode.payload_too_large",
                extra={"size": payload.size, "limit": self._max_payload_bytes},
            )
            raise PayloadTooLargeError(payload.size, self._max_payload_bytes)

        logger.info(
            "transcode.complete",
            extra={
                "mime_type": recording.mime_type,
                "source_rate": buffer.sample_rate,
                "source_channels": buffer.channels,
                "frames": resampled.frames,
                "bytes": payload.size,
                "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 1),
            },
        )
        return payload


__all__ = [
    "TranscodingPipeline",
    "decode_recording",
    "convert_to_wav",
    "base_mime_type",
    "RAW_PCM_MIME_TYPES",
    "FFMPEG_MIME_TYPES",
]
