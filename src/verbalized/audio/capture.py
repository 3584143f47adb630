from __future__ import annotations

"""Microphone capture lifecycle.

A :class:`CaptureSession` owns at most one :class:`CaptureDevice` at a time
and moves between three states::

    IDLE --start--> RECORDING --stop / max duration--> IDLE
    IDLE --start (device refused)--> ERROR

Chunks arrive asynchronously from the device and are accumulated until the
session stops, at which point they are sealed into a :class:`Recording`.
"""

import abc
import asyncio
import contextlib
import enum
import logging
import time
from typing import AsyncIterator, Callable, List, Optional

from ..errors import CaptureBusyError, CaptureError, CaptureNotRecordingError, CaptureUnsupportedError
from .types import Recording

logger = logging.getLogger(__name__)


class CaptureState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    ERROR = "error"


class CaptureDevice(abc.ABC):
    """Interface for an exclusive audio input handle."""

    mime_type: str = "application/octet-stream"
    sample_rate: Optional[int] = None
    channels: Optional[int] = None

    @abc.abstractmethod
    async def open(self) -> None:
        """Acquire the device; raise a CaptureError subclass on failure."""
        raise NotImplementedError

    @abc.abstractmethod
    def chunks(self) -> AsyncIterator[bytes]:
        """Yield encoded chunks until the device is closed."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self) -> None:
        """Release the device. Must be safe to call more than once."""
        raise NotImplementedError


class CaptureSession:
    """Single-recording-at-a-time capture state machine."""

    def __init__(
        self,
        device: CaptureDevice,
        *,
        max_duration_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        drain_timeout: float = 1.0,
    ) -> None:
        if max_duration_seconds <= 0:
            raise ValueError("max_duration_seconds must be positive")
        self._device = device
        self._max_duration_seconds = max_duration_seconds
        self._clock = clock
        self._drain_timeout = drain_timeout

        self._state = CaptureState.IDLE
        self._chunks: List[bytes] = []
        self._started_at: Optional[float] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._stop_lock = asyncio.Lock()
        self._finished: Optional[asyncio.Future] = None
        self.last_recording: Optional[Recording] = None
        self.last_error: Optional[BaseException] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def elapsed_seconds(self) -> float:
        if self._state is not CaptureState.RECORDING or self._started_at is None:
            return 0.0
        return min(self._clock() - self._started_at, self._max_duration_seconds)

    @property
    def max_duration_seconds(self) -> float:
        return self._max_duration_seconds

    async def start(self) -> None:
        if self._state is CaptureState.RECORDING:
            raise CaptureBusyError("a recording is already in progress")

        self._chunks = []
        self.last_error = None
        self._finished = None
        try:
            await self._device.open()
        except CaptureError as exc:
            await self._fail(exc)
            raise
        except Exception as exc:
            await self._fail(exc)
            raise CaptureUnsupportedError(str(exc) or "audio capture is not available") from exc

        self._state = CaptureState.RECORDING
        self._started_at = self._clock()
        self._finished = asyncio.get_running_loop().create_future()
        self._reader_task = asyncio.create_task(self._read_chunks())
        self._timer_task = asyncio.create_task(self._auto_stop())
        logger.info(
            "capture.start",
            extra={"mime_type": self._device.mime_type, "max_duration_seconds": self._max_duration_seconds},
        )

    async def stop(self) -> Recording:
        """Seal whatever has been captured so far and release the device."""
        async with self._stop_lock:
            if self._state is not CaptureState.RECORDING:
                if self.last_recording is not None and self._state is CaptureState.IDLE:
                    return self.last_recording
                raise CaptureNotRecordingError("no recording in progress")

            timer = self._timer_task
            self._timer_task = None
            if timer is not None and timer is not asyncio.current_task():
                timer.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await timer

            try:
                await self._release_device()
            finally:
                await self._drain_reader()

            duration = 0.0
            if self._started_at is not None:
                duration = min(max(self._clock() - self._started_at, 0.0), self._max_duration_seconds)
            recording = Recording(
                data=b"".join(self._chunks),
                mime_type=self._device.mime_type,
                duration_seconds=duration,
                sample_rate=self._device.sample_rate,
                channels=self._device.channels,
            )
            self._chunks = []
            self._started_at = None
            self._state = CaptureState.IDLE
            self.last_recording = recording
            if self._finished is not None and not self._finished.done():
                self._finished.set_result(recording)
            logger.info(
                "capture.stop",
                extra={"bytes": recording.size, "duration_seconds": round(duration, 3)},
            )
            return recording

    async def wait(self) -> Recording:
        """Wait until the session stops, by caller or by the duration cap."""
        if self._finished is None:
            raise CaptureNotRecordingError("capture was never started")
        return await asyncio.shield(self._finished)

    async def _read_chunks(self) -> None:
        try:
            async for chunk in self._device.chunks():
                if not chunk:
                    continue
                self._chunks.append(bytes(chunk))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # Keep what was captured; the session still seals on stop.
            self.last_error = exc
            logger.warning("capture.read.failed", extra={"error": repr(exc)})

    async def _auto_stop(self) -> None:
        await asyncio.sleep(self._max_duration_seconds)
        logger.info("capture.max_duration_reached", extra={"seconds": self._max_duration_seconds})
        try:
            await self.stop()
        except Exception as exc:
            # Nobody awaits the timer task; keep the failure on the session.
            self.last_error = exc
            logger.warning("capture.auto_stop.failed", extra={"error": repr(exc)})

    async def _drain_reader(self) -> None:
        reader = self._reader_task
        self._reader_task = None
        if reader is None:
            return
        # A closed device ends its chunk iterator; give it a moment to flush.
        await asyncio.wait({reader}, timeout=self._drain_timeout)
        if not reader.done():
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader

    async def _fail(self, exc: BaseException) -> None:
        self._state = CaptureState.ERROR
        self.last_error = exc
        logger.warning("capture.start.failed", extra={"error": repr(exc)})
        await self._release_device()

    async def _release_device(self) -> None:
        try:
            await self._device.close()
        except Exception:
            logger.warning("capture.release.failed", exc_info=True)


__all__ = ["CaptureSession", "CaptureDevice", "CaptureState"]
