from __future__ import annotations

"""Error taxonomy shared by the capture, transcoding and relay paths."""

from typing import Optional


class InputRejectedError(ValueError):
    """Raised when a request is refused before any external call is made."""


class CaptureError(RuntimeError):
    """Base class for microphone capture failures."""


class MicrophoneUnavailableError(CaptureError):
    """Raised when the microphone cannot be opened (permission denied, no device)."""


class CaptureUnsupportedError(CaptureError):
    """Raised when audio capture is not available on this platform."""


class CaptureBusyError(CaptureError):
    """Raised when starting a capture session that is already recording."""


class CaptureNotRecordingError(CaptureError):
    """Raised when stopping a session that never recorded anything."""


class TranscodeError(ValueError):
    """Base class for failures while preparing an upload payload."""


class AudioDecodeError(TranscodeError):
    """Raised when a recording cannot be decoded into samples."""


class EmptyAudioError(TranscodeError):
    """Raised when a recording decodes to zero samples."""


class PayloadTooLargeError(TranscodeError):
    """Raised when the encoded payload exceeds the upload limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"encoded payload is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class ProviderNotConfiguredError(RuntimeError):
    """Raised when an upstream collaborator is used without credentials."""


class UpstreamError(RuntimeError):
    """Raised when a transcription or generation call fails.

    ``message`` is already sanitized and safe to show to callers.
    """

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


__all__ = [
    "InputRejectedError",
    "CaptureError",
    "MicrophoneUnavailableError",
    "CaptureUnsupportedError",
    "CaptureBusyError",
    "CaptureNotRecordingError",
    "TranscodeError",
    "AudioDecodeError",
    "EmptyAudioError",
    "PayloadTooLargeError",
    "ProviderNotConfiguredError",
    "UpstreamError",
]
