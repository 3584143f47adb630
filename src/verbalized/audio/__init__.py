"""Audio capture, normalization and PCM encoding."""

from .capture import CaptureDevice, CaptureSession, CaptureState
from .dsp import mix_down, resample
from .pipeline import TranscodingPipeline, decode_recording
from .types import EncodedPayload, Recording, SampleBuffer
from .wav import decode_wav, encode_wav

__all__ = [
    "CaptureDevice",
    "CaptureSession",
    "CaptureState",
    "mix_down",
    "resample",
    "TranscodingPipeline",
    "decode_recording",
    "EncodedPayload",
    "Recording",
    "SampleBuffer",
    "decode_wav",
    "encode_wav",
]
