"""cli.py
Command-line entry point for verbalized.

Commands:
    verbalized serve     - Run the HTTP service
    verbalized record    - Capture from the microphone into a 16 kHz WAV file
    verbalized dictate   - Capture, transcribe and compose through a running service
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
import httpx

from .audio.capture import CaptureSession, CaptureState
from .audio.microphone import SoundDeviceMicrophone
from .audio.pipeline import TranscodingPipeline
from .audio.types import EncodedPayload
from .errors import CaptureError, TranscodeError
from .logger import setup_logger
from .relay import SSE_DONE
from .settings import clamp_max_duration, settings


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL for this run")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """verbalized - voice to refined text."""
    ctx.ensure_object(dict)
    setup_logger(settings.logging, level=log_level)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=3000, type=int, show_default=True)
def serve(host: str, port: int):
    """Run the HTTP service."""
    import uvicorn

    uvicorn.run("verbalized.app:app", host=host, port=port, reload=False)


@cli.command()
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--max-seconds", default=None, type=float, help="Recording cap (10-600 seconds)")
def record(output: Path, max_seconds: Optional[float]):
    """Record from the microphone and save a 16 kHz mono WAV."""
    try:
        payload = asyncio.run(_capture_payload(max_seconds))
    except (CaptureError, TranscodeError) as exc:
        raise click.ClickException(str(exc)) from exc
    output.write_bytes(payload.data)
    click.echo(f"Saved {payload.size} bytes to {output}")


@cli.command()
@click.option("--server", default="http://localhost:3000", show_default=True)
@click.option("--language", default=None, help="Optional 2-5 letter language hint")
@click.option("--pre-prompt", default=None, help="Instructions for the composed text")
@click.option("--max-seconds", default=None, type=float, help="Recording cap (10-600 seconds)")
def dictate(server: str, language: Optional[str], pre_prompt: Optional[str], max_seconds: Optional[float]):
    """Record, transcribe and stream the composed text."""
    try:
        asyncio.run(_dictate(server, language, pre_prompt, max_seconds))
    except (CaptureError, TranscodeError) as exc:
        raise click.ClickException(str(exc)) from exc
    except httpx.HTTPError as exc:
        raise click.ClickException(f"request to {server} failed: {exc}") from exc


async def _capture_payload(max_seconds: Optional[float]) -> EncodedPayload:
    audio_cfg = settings.audio
    limit = clamp_max_duration(max_seconds) if max_seconds is not None else audio_cfg.max_duration_seconds
    device = SoundDeviceMicrophone(
        sample_rate=audio_cfg.capture_sample_rate,
        channels=audio_cfg.capture_channels,
    )
    session = CaptureSession(device, max_duration_seconds=limit)

    await session.start()
    click.echo(f"Recording (max {limit:.0f}s). Press Enter to stop.", err=True)
    try:
        recording = await _wait_for_enter_or_timeout(session)
    finally:
        if session.state is CaptureState.RECORDING:
            await session.stop()
    click.echo(f"Captured {recording.duration_seconds:.1f}s of audio.", err=True)

    pipeline = TranscodingPipeline(
        target_sample_rate=audio_cfg.target_sample_rate,
        max_payload_bytes=audio_cfg.max_payload_bytes,
    )
    return await asyncio.to_thread(pipeline.transcode, recording)


async def _wait_for_enter_or_timeout(session: CaptureSession):
    loop = asyncio.get_running_loop()
    pressed = asyncio.Event()
    try:
        loop.add_reader(sys.stdin.fileno(), pressed.set)
    except (NotImplementedError, ValueError, OSError):
        # No stdin reader on this platform; rely on the duration cap.
        return await session.wait()
    try:
        waiter = asyncio.create_task(session.wait())
        enter = asyncio.create_task(pressed.wait())
        await asyncio.wait({waiter, enter}, return_when=asyncio.FIRST_COMPLETED)
        enter.cancel()
        if not waiter.done():
            sys.stdin.readline()
            await session.stop()
        return await waiter
    finally:
        loop.remove_reader(sys.stdin.fileno())


def _error_detail(response: httpx.Response, default: str) -> str:
    """Error text from a service response; proxies may answer with HTML."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:200] or default
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return default


async def _dictate(server: str, language: Optional[str], pre_prompt: Optional[str], max_seconds: Optional[float]):
    payload = await _capture_payload(max_seconds)
    base = server.rstrip("/")
    async with httpx.AsyncClient(timeout=httpx.Timeout(120.0, connect=10.0)) as client:
        data = {"language": language} if language else None
        resp = await client.post(
            f"{base}/api/transcribe",
            files={"file": ("audio.wav", payload.data, payload.mime_type)},
            data=data,
        )
        if resp.status_code != 200:
            raise click.ClickException(_error_detail(resp, "Transcription failed"))
        transcript = resp.json().get("transcript") or ""
        click.echo(f"Transcript: {transcript}\n", err=True)

        request = {"transcript": transcript}
        if pre_prompt:
            request["prePrompt"] = pre_prompt
        async with client.stream("POST", f"{base}/api/compose", json=request) as stream:
            if stream.status_code != 200:
                await stream.aread()
                raise click.ClickException(_error_detail(stream, "Composition failed"))
            done_line = SSE_DONE.decode("utf-8").strip()
            async for line in stream.aiter_lines():
                if not line.startswith("data: "):
                    continue
                if line == done_line:
                    break
                try:
                    fragment = json.loads(line[len("data: "):]).get("content", "")
                except ValueError:
                    continue
                click.echo(fragment, nl=False)
    click.echo()


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
