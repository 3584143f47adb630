from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

WAV_HEADER_SIZE = 44


@dataclass(frozen=True, slots=True)
class SampleBuffer:
    """Float samples in [-1, 1] shaped ``(frames, channels)``.

    The backing array is made read-only on construction so stages can hand
    buffers along without copying.
    """

    samples: np.ndarray
    sample_rate: int

    def __post_init__(self) -> None:
        if self.samples.ndim != 2:
            raise ValueError("samples must be shaped (frames, channels)")
        if self.samples.shape[1] < 1:
            raise ValueError("sample buffer needs at least one channel")
        if self.sample_rate <= 0:
            raise ValueError("sample rate must be positive")
        self.samples.setflags(write=False)

    @classmethod
    def from_mono(cls, samples, sample_rate: int) -> "SampleBuffer":
        array = np.array(samples, dtype=np.float32).reshape(-1, 1)
        return cls(samples=array, sample_rate=sample_rate)

    @classmethod
    def from_channels(cls, channels, sample_rate: int) -> "SampleBuffer":
        """Build a buffer from a channel-major sequence such as ``[[l...], [r...]]``."""
        array = np.array(channels, dtype=np.float32)
        if array.ndim == 1:
            array = array[None, :]
        return cls(samples=np.ascontiguousarray(array.T), sample_rate=sample_rate)

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def channels(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_seconds(self) -> float:
        return self.frames / float(self.sample_rate)

    def mono(self) -> np.ndarray:
        return self.samples[:, 0]


@dataclass(frozen=True, slots=True)
class Recording:
    """Sealed capture output in the device's native encoding."""

    data: bytes
    mime_type: str
    duration_seconds: float = 0.0
    sample_rate: Optional[int] = None
    channels: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True, slots=True)
class EncodedPayload:
    """Upload-ready PCM container."""

    data: bytes
    sample_rate: int
    bits_per_sample: int = 16
    mime_type: str = "audio/wav"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def sample_count(self) -> int:
        return (len(self.data) - WAV_HEADER_SIZE) // (self.bits_per_sample // 8)
