from __future__ import annotations

"""Channel mixdown and sample-rate conversion."""

import numpy as np

from .types import SampleBuffer


def mix_down(buffer: SampleBuffer) -> SampleBuffer:
    """Average all channels into one.

    Each channel is scaled by 1/N before summing so agreeing channels never
    leave [-1, 1]. Mono input is returned as-is.
    """
    channels = buffer.channels
    if channels == 1:
        return buffer
    scale = np.float32(1.0 / channels)
    mixed = (buffer.samples * scale).sum(axis=1, keepdims=True, dtype=np.float32)
    return SampleBuffer(samples=mixed.astype(np.float32), sample_rate=buffer.sample_rate)


def resample(buffer: SampleBuffer, target_rate: int) -> SampleBuffer:
    """Linearly interpolate a mono buffer to ``target_rate``.

    Output length is ``floor(frames * target / source)`` with a minimum of one
    sample. Same-rate input is returned untouched.
    """
    if buffer.channels != 1:
        raise ValueError("resample expects a mono buffer")
    if target_rate <= 0:
        raise ValueError("target rate must be positive")
    source_rate = buffer.sample_rate
    length = buffer.frames
    if length == 0:
        raise ValueError("cannot resample an empty buffer")
    if source_rate == target_rate:
        return buffer

    source = buffer.mono().astype(np.float64)
    out_length = max(1, (length * target_rate) // source_rate)
    positions = np.arange(out_length, dtype=np.float64) * (source_rate / target_rate)
    i0 = np.floor(positions).astype(np.int64)
    i0 = np.minimum(i0, length - 1)
    i1 = np.minimum(i0 + 1, length - 1)
    frac = positions - i0
    output = source[i0] + frac * (source[i1] - source[i0])
    return SampleBuffer(samples=output.astype(np.float32).reshape(-1, 1), sample_rate=target_rate)


__all__ = ["mix_down", "resample"]
