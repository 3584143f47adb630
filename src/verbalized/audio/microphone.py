from __future__ import annotations

"""sounddevice-backed microphone for :class:`CaptureSession`."""

import asyncio
import logging
from typing import AsyncIterator, Optional

from ..errors import CaptureUnsupportedError, MicrophoneUnavailableError
from .capture import CaptureDevice

try:  # pragma: no cover - optional dependency guard (PortAudio may be missing)
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)


class SoundDeviceMicrophone(CaptureDevice):
    """Default input device delivering 16-bit little-endian PCM chunks.

    PortAudio invokes the stream callback on its own thread; chunks are
    handed to the event loop through ``call_soon_threadsafe``.
    """

    mime_type = "audio/pcm"

    def __init__(
        self,
        *,
        sample_rate: int = 48000,
        channels: int = 1,
        blocksize: int = 0,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._blocksize = blocksize
        self._device = device
        self._stream = None
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def open(self) -> None:
        if sd is None:
            raise CaptureUnsupportedError("sounddevice/PortAudio is not available on this platform")
        if self._stream is not None:
            raise MicrophoneUnavailableError("microphone is already open")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                blocksize=self._blocksize,
                device=self._device,
                callback=self._on_audio,
            )
            stream.start()
        except Exception as exc:
            self._queue = None
            raise MicrophoneUnavailableError(f"could not open microphone: {exc}") from exc
        self._stream = stream
        logger.debug(
            "microphone.open",
            extra={"sample_rate": self.sample_rate, "channels": self.channels, "device": self._device},
        )

    async def chunks(self) -> AsyncIterator[bytes]:
        queue = self._queue
        if queue is None:
            return
        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            yield chunk

    async def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            logger.debug("microphone.close")
        if self._queue is not None:
            self._queue.put_nowait(None)

    def _on_audio(self, indata, frames, time_info, status) -> None:  # noqa: ANN001
        if status:
            logger.debug("microphone.status", extra={"status": str(status)})
        loop = self._loop
        queue = self._queue
        if loop is None or queue is None:
            return
        loop.call_soon_threadsafe(queue.put_nowait, bytes(indata))


__all__ = ["SoundDeviceMicrophone"]
