from __future__ import annotations

"""Minimal 16-bit mono WAV container encoder and its inverse."""

import struct

import numpy as np

from .types import WAV_HEADER_SIZE, EncodedPayload, SampleBuffer

HEADER_SIZE = WAV_HEADER_SIZE
BITS_PER_SAMPLE = 16
_BYTES_PER_SAMPLE = BITS_PER_SAMPLE // 8
_FORMAT_PCM = 1
# RIFF header, fmt chunk and data chunk header in one little-endian layout.
_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def quantize(samples: np.ndarray) -> np.ndarray:
    """Clamp to [-1, 1] and scale asymmetrically onto int16."""
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    # Truncate toward zero like a plain int16 store.
    return np.trunc(scaled).astype("<i2")


def encode_wav(buffer: SampleBuffer) -> EncodedPayload:
    """Serialize a mono buffer into a WAV payload.

    The encoding is deterministic: the same buffer always yields the same bytes.
    """
    if buffer.channels != 1:
        raise ValueError("encode_wav expects a mono buffer")
    pcm = quantize(buffer.mono()).tobytes()
    data_length = len(pcm)
    header = _HEADER.pack(
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,
        _FORMAT_PCM,
        1,
        buffer.sample_rate,
        buffer.sample_rate * _BYTES_PER_SAMPLE,
        _BYTES_PER_SAMPLE,
        BITS_PER_SAMPLE,
        b"data",
        data_length,
    )
    return EncodedPayload(data=header + pcm, sample_rate=buffer.sample_rate, bits_per_sample=BITS_PER_SAMPLE)


def read_header(data: bytes) -> dict:
    if len(data) < HEADER_SIZE:
        raise ValueError("payload shorter than WAV header")
    (
        riff,
        riff_size,
        wave,
        fmt,
        fmt_size,
        audio_format,
        channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        data_tag,
        data_length,
    ) = _HEADER.unpack_from(data)
    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or data_tag != b"data":
        raise ValueError("not a canonical WAV header")
    return {
        "riff_size": riff_size,
        "fmt_size": fmt_size,
        "audio_format": audio_format,
        "channels": channels,
        "sample_rate": sample_rate,
        "byte_rate": byte_rate,
        "block_align": block_align,
        "bits_per_sample": bits_per_sample,
        "data_length": data_length,
    }


def decode_wav(data: bytes) -> SampleBuffer:
    """Inverse of :func:`encode_wav` for 16-bit mono PCM payloads."""
    header = read_header(data)
    if header["audio_format"] != _FORMAT_PCM or header["bits_per_sample"] != BITS_PER_SAMPLE:
        raise ValueError("only 16-bit linear PCM is supported")
    if header["channels"] != 1:
        raise ValueError("only mono payloads are supported")
    body = data[HEADER_SIZE : HEADER_SIZE + header["data_length"]]
    ints = np.frombuffer(body, dtype="<i2").astype(np.float64)
    samples = np.where(ints < 0, ints / 32768.0, ints / 32767.0)
    return SampleBuffer.from_mono(samples, header["sample_rate"])


__all__ = ["encode_wav", "decode_wav", "read_header", "quantize", "HEADER_SIZE", "BITS_PER_SAMPLE"]
