from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Optional

from ..audio.types import EncodedPayload


@dataclass(slots=True)
class TranscriptionOptions:
    language: Optional[str] = None


@dataclass(slots=True)
class TranscriptionResult:
    text: str
    provider: Optional[str] = None
    duration_seconds: Optional[float] = None


class TranscriptionProvider(abc.ABC):
    """Interface for speech-to-text collaborators."""

    name: str

    def is_configured(self) -> bool:
        return True

    @abc.abstractmethod
    async def transcribe(self, *, payload: EncodedPayload, options: TranscriptionOptions) -> TranscriptionResult:
        """Produce a transcription for the provided WAV payload."""
        raise NotImplementedError

    async def close(self) -> None:
        return None
