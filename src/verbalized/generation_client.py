from __future__ import annotations

"""Streaming chat client for the text-generation collaborator."""

import logging
from collections.abc import Sequence
from typing import Any, Dict, Optional

import httpx

from .errors import ProviderNotConfiguredError, UpstreamError
from .sanitize import sanitize_error
from .settings import GenerationSettings, settings

logger = logging.getLogger(__name__)

ChatMessage = Dict[str, str]

SYSTEM_PROMPT = (
    "You are a concise writing assistant. Produce clean, well structured text. "
    "Respect the user intent from the pre prompt. Remove filler. Fix obvious mistakes."
)


def compose_messages(transcript: str, pre_prompt: Optional[str] = None) -> list[ChatMessage]:
    user_msg = "\n\n".join([f"Pre prompt: {pre_prompt or 'None'}", "Transcript:", transcript])
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_msg},
    ]


class GenerationClient:
    """Opens streamed ``/chat`` calls that answer with newline-delimited JSON."""

    def __init__(
        self,
        cfg: Optional[GenerationSettings] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._cfg = cfg or settings.generation
        self._client = client
        self._owns_client = client is None

    @property
    def model(self) -> str:
        return self._cfg.model

    @property
    def base_url(self) -> str:
        return self._cfg.base_url

    def is_configured(self) -> bool:
        return bool(self._cfg.api_key)

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._cfg.timeout, connect=10.0))
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def open_stream(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: Optional[str] = None,
    ) -> httpx.Response:
        """Send the request and return the open response once headers arrive.

        The caller owns the returned response and must ``aclose`` it.
        Non-success statuses are read, logged in full and raised as
        :class:`UpstreamError` carrying a sanitized message.
        """
        if not self.is_configured():
            raise ProviderNotConfiguredError("Server misconfiguration. Missing OLLAMA_API_KEY.")

        payload: Dict[str, Any] = {
            "model": model or self._cfg.model,
            "messages": list(messages),
            "stream": True,
        }
        url = f"{self._cfg.base_url.rstrip('/')}/chat"
        client = self._ensure_client()
        request = client.build_request(
            "POST",
            url,
            json=payload,
            headers={"Authorization": f"Bearer {self._cfg.api_key}"},
        )
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("generation.request.failed", extra={"error": repr(exc)})
            raise UpstreamError(sanitize_error(exc)) from exc

        if response.is_success:
            logger.info("generation.stream.start", extra={"model": payload["model"], "status": response.status_code})
            return response

        try:
            raw = (await response.aread()).decode("utf-8", errors="replace")
        finally:
            await response.aclose()
        logger.error(
            "generation.response.error",
            extra={"status": response.status_code, "body": raw},
        )
        raise UpstreamError(sanitize_error(raw), status_code=response.status_code)


__all__ = ["GenerationClient", "ChatMessage", "SYSTEM_PROMPT", "compose_messages"]
