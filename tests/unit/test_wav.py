import io

import numpy as np
import pytest
import soundfile as sf

from verbalized.audio.types import SampleBuffer
from verbalized.audio.wav import HEADER_SIZE, decode_wav, encode_wav, quantize, read_header


def test_encode_wav_writes_canonical_header():
    payload = encode_wav(SampleBuffer.from_mono(np.zeros(10), 16000))

    header = read_header(payload.data)

    assert payload.data[:4] == b"RIFF"
    assert payload.data[8:12] == b"WAVE"
    assert payload.size == HEADER_SIZE + 20
    assert header == {
        "riff_size": 56,
        "fmt_size": 16,
        "audio_format": 1,
        "channels": 1,
        "sample_rate": 16000,
        "byte_rate": 32000,
        "block_align": 2,
        "bits_per_sample": 16,
        "data_length": 20,
    }
    assert payload.sample_count == 10
    assert payload.mime_type == "audio/wav"


def test_quantize_is_asymmetric_little_endian():
    assert quantize(np.array([1.0])).tobytes() == b"\xff\x7f"
    assert quantize(np.array([-1.0])).tobytes() == b"\x00\x80"
    assert quantize(np.array([0.0])).tobytes() == b"\x00\x00"


def test_quantize_clamps_out_of_range_samples():
    assert quantize(np.array([2.0, -3.0])).tolist() == [32767, -32768]


def test_round_trip_within_one_quantization_step():
    source = [0.0, 0.5, -0.5, 1.0, -1.0]

    decoded = decode_wav(encode_wav(SampleBuffer.from_mono(source, 16000)).data)

    assert decoded.sample_rate == 16000
    np.testing.assert_allclose(decoded.mono(), source, atol=1.0 / 32768)


def test_encoding_is_deterministic():
    buffer = SampleBuffer.from_mono(np.linspace(-1.0, 1.0, 64), 16000)

    assert encode_wav(buffer).data == encode_wav(buffer).data


def test_payload_readable_by_libsndfile():
    buffer = SampleBuffer.from_mono([0.0, 0.5, -0.5, 1.0, -1.0], 16000)
    payload = encode_wav(buffer)

    data, rate = sf.read(io.BytesIO(payload.data), dtype="int16")

    assert rate == 16000
    assert data.tolist() == quantize(buffer.mono()).tolist()


def test_encode_wav_rejects_multichannel():
    with pytest.raises(ValueError):
        encode_wav(SampleBuffer.from_channels([[0.0], [0.0]], 16000))


def test_read_header_rejects_short_payload():
    with pytest.raises(ValueError):
        read_header(b"RIFF")
