from __future__ import annotations

from ..audio.types import EncodedPayload
from .base import TranscriptionOptions, TranscriptionProvider, TranscriptionResult


class MockTranscriptionProvider(TranscriptionProvider):
    name = "mock"

    async def transcribe(self, *, payload: EncodedPayload, options: TranscriptionOptions) -> TranscriptionResult:
        duration = payload.sample_count / float(payload.sample_rate) if payload.sample_rate else None
        return TranscriptionResult(text="mock transcription", provider=self.name, duration_seconds=duration)
