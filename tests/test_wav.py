"""Tests for WAV encoding"""
import io
import struct
import wave

import numpy as np
import pytest

from sound_search.wav import (
    WAV_HEADER_SIZE,
    EncodedAudio,
    encode_recording,
    encode_wav,
    float_to_pcm16,
)

HEADER = struct.Struct('<4sI4s4sIHHIIHH4sI')


def parse_header(data: bytes) -> dict:
    (riff, riff_size, wave_tag, fmt_tag, fmt_size, audio_format, channels,
     sample_rate, byte_rate, block_align, bits, data_tag, data_size) = HEADER.unpack(data[:44])
    return {
        "riff": riff, "riff_size": riff_size, "wave": wave_tag, "fmt": fmt_tag,
        "fmt_size": fmt_size, "audio_format": audio_format, "channels": channels,
        "sample_rate": sample_rate, "byte_rate": byte_rate, "block_align": block_align,
        "bits": bits, "data": data_tag, "data_size": data_size,
    }


@pytest.mark.parametrize("count", [0, 1, 7, 4096])
def test_size_is_header_plus_two_bytes_per_sample(count):
    samples = np.linspace(-1, 1, count, dtype=np.float32)
    assert len(encode_wav(samples, 44100)) == WAV_HEADER_SIZE + 2 * count


def test_header_fields():
    samples = np.zeros(100, dtype=np.float32)
    data = encode_wav(samples, 44100)
    header = parse_header(data)

    assert header["riff"] == b"RIFF"
    assert header["wave"] == b"WAVE"
    assert header["fmt"] == b"fmt "
    assert header["data"] == b"data"
    assert header["fmt_size"] == 16
    assert header["audio_format"] == 1
    assert header["channels"] == 1
    assert header["sample_rate"] == 44100
    assert header["byte_rate"] == 44100 * 2
    assert header["block_align"] == 2
    assert header["bits"] == 16
    assert header["data_size"] == 200
    assert header["riff_size"] == 36 + 200


def test_byte_rate_follows_sample_rate():
    header = parse_header(encode_wav(np.zeros(10), 16000))
    assert header["sample_rate"] == 16000
    assert header["byte_rate"] == 32000


def test_clamping_and_scaling():
    samples = np.array([1.0, 1.5, -1.0, -2.0, 0.5, -0.5, 0.0, 1e-6], dtype=np.float32)
    pcm = float_to_pcm16(samples)
    assert pcm.dtype == np.dtype('<i2')
    assert pcm.tolist() == [32767, 32767, -32768, -32768, 16383, -16384, 0, 0]


def test_values_always_in_int16_range():
    rng = np.random.default_rng(1234)
    samples = rng.normal(0, 3, size=5000)
    pcm = float_to_pcm16(samples)
    assert pcm.min() >= -32768
    assert pcm.max() <= 32767


def test_nan_encodes_as_silence():
    assert float_to_pcm16(np.array([np.nan, 0.25])).tolist() == [0, 8191]


def test_payload_is_little_endian_pcm():
    samples = np.array([0.25, -0.25], dtype=np.float32)
    data = encode_wav(samples, 8000)
    assert data[44:] == struct.pack('<hh', 8191, -8192)


def test_encoding_is_deterministic():
    samples = np.sin(np.linspace(0, 20, 2000)).astype(np.float32)
    assert encode_wav(samples, 44100) == encode_wav(samples.copy(), 44100)


def test_output_readable_by_wave_module():
    samples = np.full(441, 0.1, dtype=np.float32)
    with wave.open(io.BytesIO(encode_wav(samples, 44100)), 'rb') as wf:
        assert wf.getnchannels() == 1
        assert wf.getsampwidth() == 2
        assert wf.getframerate() == 44100
        assert wf.getnframes() == 441


def test_encode_recording_metadata():
    audio = encode_recording(np.zeros(44100, dtype=np.float32), 44100, filename="recording.wav")
    assert isinstance(audio, EncodedAudio)
    assert audio.mime_type == "audio/wav"
    assert audio.filename == "recording.wav"
    assert audio.size_bytes == 44 + 88200
    assert audio.duration_seconds == pytest.approx(1.0)


def test_duration_is_zero_for_non_wav():
    audio = EncodedAudio(data=bytes(1000), mime_type="audio/webm")
    assert audio.duration_seconds == 0.0
