from __future__ import annotations

"""Coordinates transcoding and the transcription provider."""

import asyncio
import logging
import time
from typing import Optional

from .audio.pipeline import TranscodingPipeline
from .audio.types import Recording
from .settings import AudioSettings, TranscriptionSettings
from .transcription_providers import (
    MockTranscriptionProvider,
    OpenAIWhisperProvider,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)


class TranscriptionService:
    """Turns a sealed recording into text.

    The payload is fully transcoded and size-checked before the provider
    is called, so a rejected recording never reaches the network.
    """

    def __init__(
        self,
        *,
        provider: Optional[TranscriptionProvider] = None,
        pipeline: Optional[TranscodingPipeline] = None,
    ) -> None:
        self._provider = provider or MockTranscriptionProvider()
        self._pipeline = pipeline or TranscodingPipeline()

    @classmethod
    def from_settings(
        cls,
        cfg: TranscriptionSettings,
        audio_cfg: Optional[AudioSettings] = None,
    ) -> "TranscriptionService":
        provider_name = (cfg.provider or "openai").strip().lower()
        provider: TranscriptionProvider
        if provider_name in {"mock", "fake"}:
            provider = MockTranscriptionProvider()
        elif provider_name in {"openai", "whisper", "openai-whisper"}:
            provider = OpenAIWhisperProvider(
                api_key=cfg.api_key,
                model=cfg.model,
                base_url=cfg.base_url,
                organization=cfg.organization,
                timeout=cfg.timeout,
            )
        else:
            raise RuntimeError(f"unsupported transcription provider: {cfg.provider}")

        pipeline = None
        if audio_cfg is not None:
            pipeline = TranscodingPipeline(
                target_sample_rate=audio_cfg.target_sample_rate,
                max_payload_bytes=audio_cfg.max_payload_bytes,
            )
        return cls(provider=provider, pipeline=pipeline)

    @property
    def provider(self) -> TranscriptionProvider:
        return self._provider

    @property
    def pipeline(self) -> TranscodingPipeline:
        return self._pipeline

    async def transcribe(self, recording: Recording, *, language: Optional[str] = None) -> TranscriptionResult:
        payload = await asyncio.to_thread(self._pipeline.transcode, recording)

        started = time.perf_counter()
        result = await self._provider.transcribe(payload=payload, options=TranscriptionOptions(language=language))
        logger.info(
            "transcribe.complete",
            extra={
                "provider": result.provider or self._provider.name,
                "latency_ms": round((time.perf_counter() - started) * 1000.0, 1),
                "chars": len(result.text),
            },
        )
        return result

    async def close(self) -> None:
        await self._provider.close()


__all__ = ["TranscriptionService"]
