import json
import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .audio.pipeline import base_mime_type
from .audio.types import Recording
from .errors import (
    AudioDecodeError,
    EmptyAudioError,
    InputRejectedError,
    PayloadTooLargeError,
    ProviderNotConfiguredError,
    UpstreamError,
)
from .generation_client import GenerationClient, compose_messages
from .logger import setup_logger
from .rate_limit import RateGate, client_identity
from .relay import format_sse, relay_events
from .sanitize import sanitize_error
from .settings import MAX_PAYLOAD_BYTES, settings as runtime_settings
from .transcription import TranscriptionService

logger = logging.getLogger(__name__)

ALLOWED_AUDIO_TYPES = {
    "audio/webm",
    "audio/mp4",
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/x-m4a",
    "audio/flac",
}
LANGUAGE_RE = re.compile(r"^[A-Za-z]{2,5}$")
MAX_TRANSCRIPT_CHARS = 100_000
MAX_PRE_PROMPT_CHARS = 5_000

SECURITY_HEADERS = {
    "Content-Security-Policy": "; ".join(
        [
            "default-src 'self'",
            "script-src 'self'",
            "style-src 'self' 'unsafe-inline'",
            "img-src 'self' data: blob:",
            "media-src 'self' blob:",
            "connect-src 'self'",
            "frame-ancestors 'none'",
            "base-uri 'self'",
            "form-action 'self'",
        ]
    ),
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "microphone=(self), camera=(), geolocation=(), payment=()",
}

try:
    transcription_service = TranscriptionService.from_settings(
        runtime_settings.transcription, runtime_settings.audio
    )
except RuntimeError:
    logger.exception("transcribe.provider_init_failed")
    transcription_service = TranscriptionService()

generation_client = GenerationClient(runtime_settings.generation)
rate_gate = RateGate.from_settings(runtime_settings.rate_limit)
RATE_LIMIT_ENABLED = runtime_settings.rate_limit.enabled


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logger(runtime_settings.logging)
    logger.info(
        "service.start",
        extra={
            "transcribe_provider": transcription_service.provider.name,
            "compose_model": generation_client.model,
            "rate_limit": RATE_LIMIT_ENABLED,
        },
    )
    yield
    await transcription_service.close()
    await generation_client.close()
    logger.info("service.stop")


app = FastAPI(lifespan=lifespan)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.middleware("http")
async def _guard(request: Request, call_next):
    decision = None
    if RATE_LIMIT_ENABLED and request.url.path.startswith("/api/"):
        decision = await rate_gate.hit(client_identity(request.headers))
        if not decision.allowed:
            response = JSONResponse(
                {"error": "Too many requests. Please try again later.", "retryAfter": decision.retry_after},
                status_code=429,
                headers={"Retry-After": str(decision.retry_after)},
            )
        else:
            response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    else:
        response = await call_next(request)

    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if request.url.scheme == "https":
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "service": "verbalized",
        "transcribe_provider": transcription_service.provider.name,
        "compose_model": generation_client.model,
        "rate_limit": RATE_LIMIT_ENABLED,
    }


@app.get("/api/health/transcribe")
async def health_transcribe() -> Dict[str, Any]:
    provider = transcription_service.provider
    if not provider.is_configured():
        return {"ok": False, "error": "Missing OPENAI_API_KEY"}
    return {"ok": True, "mode": provider.name}


@app.get("/api/health/compose")
async def health_compose() -> Dict[str, Any]:
    if not generation_client.is_configured():
        return {"ok": False, "error": "Missing OLLAMA_API_KEY"}
    return {
        "ok": True,
        "provider": "ollama-cloud",
        "model": generation_client.model,
        "baseUrl": generation_client.base_url,
    }


@app.post("/api/transcribe")
async def transcribe(
    file: Optional[UploadFile] = File(None),
    language: Optional[str] = Form(None),
) -> JSONResponse:
    if file is None:
        raise HTTPException(status_code=400, detail="No file")

    content_type = base_mime_type(file.content_type)
    if content_type not in ALLOWED_AUDIO_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported type: {file.content_type}")

    data = await file.read(MAX_PAYLOAD_BYTES + 1)
    if len(data) > MAX_PAYLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large. Max 25 MB.")

    lang = language.strip() if isinstance(language, str) and language.strip() else None
    if lang is not None and not LANGUAGE_RE.match(lang):
        raise HTTPException(status_code=400, detail="Invalid language code")

    if not transcription_service.provider.is_configured():
        raise HTTPException(status_code=500, detail="Server misconfiguration. Missing OPENAI_API_KEY.")

    recording = Recording(data=data, mime_type=file.content_type or content_type)
    try:
        result = await transcription_service.transcribe(recording, language=lang)
    except AudioDecodeError as exc:
        logger.warning("transcribe.decode_failed", extra={"mime_type": content_type, "error": repr(exc.__cause__)})
        raise HTTPException(status_code=422, detail="Unsupported audio encoding") from exc
    except EmptyAudioError as exc:
        raise HTTPException(status_code=422, detail="Recording contains no audio") from exc
    except PayloadTooLargeError as exc:
        raise HTTPException(status_code=413, detail="Encoded audio exceeds 25 MB") from exc
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc

    transcript = (result.text or "").strip()
    if not transcript:
        raise HTTPException(status_code=502, detail="No transcript returned from provider")
    return JSONResponse({"transcript": transcript})


def _validate_transcript(value: Any) -> str:
    if not value or not isinstance(value, str):
        raise InputRejectedError("Invalid transcript format")
    trimmed = value.strip()
    if not trimmed:
        raise InputRejectedError("Transcript cannot be empty")
    if len(trimmed) > MAX_TRANSCRIPT_CHARS:
        raise InputRejectedError("Transcript too long. Maximum 100,000 characters.")
    return trimmed


def _validate_pre_prompt(value: Any) -> Optional[str]:
    if not value:
        return None
    if not isinstance(value, str):
        raise InputRejectedError("Invalid pre-prompt format")
    trimmed = value.strip()
    if len(trimmed) > MAX_PRE_PROMPT_CHARS:
        raise InputRejectedError("Pre-prompt too long. Maximum 5,000 characters.")
    return trimmed or None


@app.post("/api/compose")
async def compose(request: Request) -> StreamingResponse:
    content_type = request.headers.get("content-type") or ""
    if "application/json" not in content_type:
        raise HTTPException(status_code=400, detail="Invalid content type. Expected application/json.")
    try:
        body = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON in request body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON in request body")

    try:
        transcript = _validate_transcript(body.get("transcript"))
        pre_prompt = _validate_pre_prompt(body.get("prePrompt"))
    except InputRejectedError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        upstream = await generation_client.open_stream(compose_messages(transcript, pre_prompt))
    except ProviderNotConfiguredError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except UpstreamError as exc:
        raise HTTPException(status_code=500, detail=exc.message) from exc

    async def event_generator() -> AsyncGenerator[bytes, None]:
        try:
            async for event in relay_events(upstream.aiter_bytes(), should_stop=request.is_disconnected):
                yield format_sse(event)
        except Exception as exc:
            logger.exception("compose.relay.failed")
            yield format_sse_error(exc)
        finally:
            await upstream.aclose()

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(event_generator(), media_type="text/event-stream", headers=headers)


def format_sse_error(exc: Exception) -> bytes:
    payload = json.dumps({"error": sanitize_error(exc)}, ensure_ascii=False)
    return f"event: error\ndata: {payload}\n\n".encode("utf-8")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("verbalized.app:app", host="0.0.0.0", port=int(os.getenv("PORT", "3000")), reload=False)
