from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import openai
from openai import AsyncOpenAI

from ..audio.types import EncodedPayload
from ..errors import ProviderNotConfiguredError, UpstreamError
from ..sanitize import sanitize_error
from .base import TranscriptionOptions, TranscriptionProvider, TranscriptionResult

logger = logging.getLogger(__name__)


class OpenAIWhisperProvider(TranscriptionProvider):
    """Transcription via the OpenAI audio transcriptions endpoint."""

    name = "openai-whisper-api"

    def __init__(
        self,
        *,
        api_key: Optional[str],
        model: str = "whisper-1",
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._organization = organization
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def is_configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _ensure_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise ProviderNotConfiguredError("Server misconfiguration. Missing OPENAI_API_KEY.")
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                organization=self._organization,
                timeout=self._timeout,
                max_retries=0,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None

    async def transcribe(self, *, payload: EncodedPayload, options: TranscriptionOptions) -> TranscriptionResult:
        client = self._ensure_client()
        params: Dict[str, Any] = {
            "model": self._model,
            "file": ("audio.wav", payload.data, payload.mime_type),
        }
        if options.language:
            params["language"] = options.language

        try:
            response = await client.audio.transcriptions.create(**params)
        except openai.APIStatusError as exc:
            logger.error(
                "transcribe.upstream.error",
                extra={"status": exc.status_code, "body": getattr(exc, "body", None), "error": repr(exc)},
            )
            raise UpstreamError(sanitize_error(exc.message), status_code=exc.status_code) from exc
        except openai.OpenAIError as exc:
            logger.error("transcribe.upstream.failed", extra={"error": repr(exc)})
            raise UpstreamError(sanitize_error(exc)) from exc

        text = getattr(response, "text", None)
        if text is None and isinstance(response, str):
            text = response
        return TranscriptionResult(
            text=str(text or ""),
            provider=self.name,
            duration_seconds=payload.sample_count / float(payload.sample_rate),
        )
