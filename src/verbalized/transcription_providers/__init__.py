"""Transcription provider implementations."""

from .base import TranscriptionOptions, TranscriptionProvider, TranscriptionResult
from .mock import MockTranscriptionProvider
from .openai_whisper import OpenAIWhisperProvider

__all__ = [
    "TranscriptionOptions",
    "TranscriptionProvider",
    "TranscriptionResult",
    "MockTranscriptionProvider",
    "OpenAIWhisperProvider",
]
