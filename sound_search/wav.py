"""
WAV Encoding Module

Converts captured float samples to 16-bit PCM and wraps them in a canonical
44-byte RIFF/WAVE header using the stdlib wave module.
The conversion is the on-wire contract with ACRCloud and must stay bit exact.
"""

import io
import wave
from dataclasses import dataclass
from typing import Optional

import numpy as np

WAV_MIME_TYPE = "audio/wav"
WAV_HEADER_SIZE = 44
SAMPLE_WIDTH = 2  # int16 = 2 bytes per sample


@dataclass(frozen=True)
class EncodedAudio:
    """
    Finished recording, ready for upload.

    Attributes:
        data: Encoded file bytes
        mime_type: Container MIME type
        sample_rate: Sample rate in Hz
        channels: Number of audio channels
        filename: Name sent with the multipart upload
    """
    data: bytes
    mime_type: str = WAV_MIME_TYPE
    sample_rate: int = 44100
    channels: int = 1
    filename: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def duration_seconds(self) -> float:
        """Duration derived from the PCM payload size (WAV only)."""
        if self.mime_type != WAV_MIME_TYPE or not self.sample_rate or not self.channels:
            return 0.0
        payload = max(0, self.size_bytes - WAV_HEADER_SIZE)
        return payload / (self.sample_rate * self.channels * SAMPLE_WIDTH)

    def __repr__(self) -> str:
        return (
            f"EncodedAudio(mime_type={self.mime_type!r}, size_bytes={self.size_bytes}, "
            f"duration={self.duration_seconds:.2f}s)"
        )


def float_to_pcm16(samples: np.ndarray) -> np.ndarray:
    """
    Convert float samples to little-endian int16.

    Each sample is clamped to [-1, 1], negatives are scaled by 32768 and
    non-negatives by 32767, then truncated toward zero. NaN encodes as 0.

    Args:
        samples: Float samples (any shape, flattened)

    Returns:
        NumPy array with dtype '<i2'
    """
    values = np.nan_to_num(np.asarray(samples, dtype=np.float64).ravel(), nan=0.0)
    clipped = np.clip(values, -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 32768.0, clipped * 32767.0)
    return np.trunc(scaled).astype('<i2')


def encode_wav(samples: np.ndarray, sample_rate: int, channels: int = 1) -> bytes:
    """
    Encode float samples as a 16-bit PCM WAV file.

    Args:
        samples: Float samples in [-1, 1] (interleaved if channels > 1)
        sample_rate: Sample rate in Hz
        channels: Number of channels

    Returns:
        WAV bytes: 44-byte header followed by 2 bytes per sample
    """
    pcm = float_to_pcm16(samples)
    buffer = io.BytesIO()

    with wave.open(buffer, 'wb') as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.tobytes())

    return buffer.getvalue()


def encode_recording(
    samples: np.ndarray,
    sample_rate: int,
    channels: int = 1,
    filename: Optional[str] = None
) -> EncodedAudio:
    """Encode samples and wrap them in an EncodedAudio."""
    return EncodedAudio(
        data=encode_wav(samples, sample_rate, channels),
        mime_type=WAV_MIME_TYPE,
        sample_rate=sample_rate,
        channels=channels,
        filename=filename,
    )
