"""
Audio level helpers for the live display.

Values computed here are for the UI meter and visualizer only; they never
touch the encoded recording.
"""

from typing import Optional

import numpy as np

# Same defaults as a browser AnalyserNode
DEFAULT_FFT_SIZE = 256
DEFAULT_SMOOTHING = 0.8
DEFAULT_MIN_DB = -100.0
DEFAULT_MAX_DB = -30.0

LOUD_THRESHOLD = 0.1


def rms_level(block: np.ndarray) -> float:
    """
    Get the RMS level of a block of float samples.

    Returns:
        Level from 0.0 to 1.0 (0.0 for an empty block)
    """
    samples = np.asarray(block, dtype=np.float64).ravel()
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(samples ** 2)))
    if not np.isfinite(rms):
        return 0.0
    return min(1.0, rms)


def is_loud(level: float, threshold: float = LOUD_THRESHOLD) -> bool:
    """Check if a level is loud enough to be worth recognizing."""
    return level > threshold


class SpectrumAnalyser:
    """
    Byte frequency data for a bar visualizer.

    Blackman-windowed FFT over the most recent fft_size samples, smoothed
    over time and mapped from [min_db, max_db] onto 0..255.
    """

    def __init__(
        self,
        fft_size: int = DEFAULT_FFT_SIZE,
        smoothing: float = DEFAULT_SMOOTHING,
        min_db: float = DEFAULT_MIN_DB,
        max_db: float = DEFAULT_MAX_DB
    ):
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        if min_db >= max_db:
            raise ValueError("min_db must be below max_db")

        self.fft_size = fft_size
        self.smoothing = smoothing
        self.min_db = min_db
        self.max_db = max_db
        self._window = np.blackman(fft_size)
        self._previous: Optional[np.ndarray] = None

    @property
    def bin_count(self) -> int:
        return self.fft_size // 2

    def empty(self) -> bytes:
        return bytes(self.bin_count)

    def reset(self) -> None:
        """Clear smoothing state (call between sessions)."""
        self._previous = None

    def analyse(self, block: np.ndarray) -> bytes:
        """
        Compute byte frequency bins for the latest samples.

        Args:
            block: Float samples; only the last fft_size are used,
                   shorter blocks are zero-padded at the front

        Returns:
            bin_count bytes, 0..255
        """
        samples = np.nan_to_num(np.asarray(block, dtype=np.float64).ravel()[-self.fft_size:])
        if samples.size < self.fft_size:
            samples = np.concatenate([np.zeros(self.fft_size - samples.size), samples])

        spectrum = np.fft.rfft(samples * self._window)[:self.bin_count]
        magnitude = np.abs(spectrum) / self.fft_size

        if self._previous is None:
            smoothed = magnitude
        else:
            smoothed = self.smoothing * self._previous + (1.0 - self.smoothing) * magnitude
        self._previous = smoothed

        with np.errstate(divide='ignore'):
            db = 20.0 * np.log10(smoothed)
        scaled = 255.0 * (db - self.min_db) / (self.max_db - self.min_db)
        scaled = np.clip(np.nan_to_num(scaled, neginf=0.0), 0, 255)
        return np.floor(scaled).astype(np.uint8).tobytes()
