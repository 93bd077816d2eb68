"""
Audio Capture Module

Records from the microphone using sounddevice and accumulates raw float
samples until the session is stopped, then encodes them as WAV.
While recording, a level feed republishes amplitude and frequency bins for
the UI meter/visualizer.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Optional, List, Dict, Any, Callable

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError):  # OSError for missing PortAudio library
    sd = None

from logging_config import get_logger
from .errors import MicrophoneUnavailable
from .formats import negotiate_mime_type, upload_filename
from .helpers import create_tracked_task, run_in_daemon_executor
from .levels import SpectrumAnalyser, rms_level
from .wav import WAV_MIME_TYPE, EncodedAudio, encode_recording

logger = get_logger(__name__)

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_CHANNELS = 1
DEFAULT_BLOCK_SIZE = 4096
DEFAULT_MAX_SECONDS = 60.0
DEFAULT_REFRESH_INTERVAL = 1 / 60  # display refresh cadence


@dataclass(frozen=True)
class CaptureConstraints:
    """
    Input stream settings requested from the device.

    Voice processing stays off: recognition needs the signal as played,
    not as cleaned up for speech. PortAudio hands over unprocessed input,
    so asking for any processing is a configuration error.
    """
    sample_rate: int = DEFAULT_SAMPLE_RATE
    channels: int = DEFAULT_CHANNELS
    block_size: int = DEFAULT_BLOCK_SIZE
    echo_cancellation: bool = False
    noise_suppression: bool = False
    auto_gain_control: bool = False
    max_seconds: Optional[float] = DEFAULT_MAX_SECONDS
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    fft_size: int = 256

    def __post_init__(self):
        if self.channels != 1:
            raise ValueError(f"Only mono capture is supported, got {self.channels} channels")
        if self.sample_rate <= 0 or self.block_size <= 0:
            raise ValueError("sample_rate and block_size must be positive")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        enabled = [
            name for name in ("echo_cancellation", "noise_suppression", "auto_gain_control")
            if getattr(self, name)
        ]
        if enabled:
            raise ValueError(f"Raw capture does not support voice processing: {', '.join(enabled)}")

    @classmethod
    def from_config(cls) -> 'CaptureConstraints':
        from config import CAPTURE
        return cls(
            sample_rate=CAPTURE["sample_rate"],
            block_size=CAPTURE["block_size"],
            max_seconds=CAPTURE["max_seconds"],
            refresh_interval=CAPTURE["refresh_interval"],
            fft_size=CAPTURE["fft_size"],
        )


class CaptureSession:
    """
    Sample blocks of one recording.

    Written by the stream callback thread, drained once on stop.
    Bounded by max_seconds: the oldest blocks are discarded past the limit.
    """

    def __init__(self, sample_rate: int, channels: int = DEFAULT_CHANNELS,
                 max_seconds: Optional[float] = DEFAULT_MAX_SECONDS):
        self.sample_rate = sample_rate
        self.channels = channels
        self.started_at = time.time()
        self.peak_amplitude = 0.0
        self.dropped_frames = 0
        self._blocks: List[np.ndarray] = []
        self._frames = 0
        self._max_frames = int(max_seconds * sample_rate) if max_seconds else None
        self._active = True
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def frame_count(self) -> int:
        return self._frames

    @property
    def block_count(self) -> int:
        return len(self._blocks)

    @property
    def duration_seconds(self) -> float:
        return self._frames / self.sample_rate

    def append(self, block: np.ndarray) -> bool:
        """
        Append one block of samples.

        Returns:
            False if the session is already closed (block ignored)
        """
        with self._lock:
            if not self._active:
                return False
            self._blocks.append(block)
            self._frames += len(block)
            if len(block):
                self.peak_amplitude = max(self.peak_amplitude, float(np.max(np.abs(block))))

            if self._max_frames is not None:
                while self._frames > self._max_frames and len(self._blocks) > 1:
                    oldest = self._blocks.pop(0)
                    self._frames -= len(oldest)
                    self.dropped_frames += len(oldest)
            return True

    def latest_samples(self, count: int) -> Optional[np.ndarray]:
        """Get the most recent `count` samples (fewer if not yet available)."""
        with self._lock:
            if not self._blocks:
                return None
            tail = []
            needed = count
            for block in reversed(self._blocks):
                tail.append(block[-needed:])
                needed -= len(tail[-1])
                if needed <= 0:
                    break
            return np.concatenate(tail[::-1])

    def close(self) -> None:
        """Stop accepting blocks."""
        with self._lock:
            self._active = False

    def drain(self) -> np.ndarray:
        """Concatenate all blocks in arrival order and clear the buffer."""
        with self._lock:
            if self._blocks:
                samples = np.concatenate(self._blocks)
            else:
                samples = np.zeros(0, dtype=np.float32)
            self._blocks = []
            self._frames = 0
            return samples


class MicrophoneCapture:
    """
    Start/stop microphone recording with a live level feed.

    One session at a time. Device faults raise MicrophoneUnavailable and are
    not retried.
    """

    SUPPORTED_MIME_TYPES = (WAV_MIME_TYPE,)

    def __init__(
        self,
        constraints: Optional[CaptureConstraints] = None,
        device_id: Optional[int] = None,
        device_name: Optional[str] = None,
        on_level: Optional[Callable[[float, bytes], None]] = None,
        mime_preferences: Optional[List[str]] = None
    ):
        """
        Initialize capture.

        Args:
            constraints: Stream settings (default: from config.CAPTURE)
            device_id: Input device index (None = system default)
            device_name: Device name to find (overrides device_id if provided)
            on_level: Called with (amplitude, frequency_bins) on every display refresh
            mime_preferences: Container preference order for the recording
        """
        if device_id == -1:
            device_id = None

        self.constraints = constraints or CaptureConstraints.from_config()
        self._device_id = device_id
        self._device_name = device_name
        self.on_level = on_level
        self.mime_type = negotiate_mime_type(
            self.SUPPORTED_MIME_TYPES, mime_preferences, default=WAV_MIME_TYPE
        )

        self._stream = None
        self._session: Optional[CaptureSession] = None
        self._stop_token: Optional[asyncio.Event] = None
        self._feed_task: Optional[asyncio.Task] = None
        self._starting = False  # set while start() awaits the device

        self._analyser = SpectrumAnalyser(fft_size=self.constraints.fft_size)
        self._amplitude = 0.0
        self._frequency_bins = self._analyser.empty()

        if not sd:
            logger.error("sounddevice not available. Microphone capture disabled.")

    # ------------------------------------------------------------------
    # Live fields
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._session is not None and self._session.is_active

    @property
    def amplitude(self) -> float:
        """RMS of the latest block, 0.0 when idle."""
        return self._amplitude

    @property
    def frequency_bins(self) -> bytes:
        return self._frequency_bins

    @property
    def peak_amplitude(self) -> float:
        return self._session.peak_amplitude if self._session else 0.0

    @property
    def elapsed(self) -> float:
        """Seconds since start() for the active session."""
        if not self.is_active:
            return 0.0
        return time.time() - self._session.started_at

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    @staticmethod
    def is_available() -> bool:
        """Check if audio capture is available (sounddevice + PortAudio)."""
        return sd is not None

    @staticmethod
    def list_devices() -> List[Dict[str, Any]]:
        """
        List available audio input devices.

        Returns:
            List of device info dicts with index, name, channels, sample_rate
        """
        if not sd:
            return []

        devices = []
        try:
            for i, device in enumerate(sd.query_devices()):
                if device.get('max_input_channels', 0) <= 0:
                    continue
                devices.append({
                    'index': i,
                    'name': device.get('name', f'Device {i}'),
                    'channels': device.get('max_input_channels', 0),
                    'sample_rate': device.get('default_samplerate', DEFAULT_SAMPLE_RATE),
                })
        except sd.PortAudioError as e:
            logger.error(f"Failed to list audio devices: {e}")

        return devices

    @classmethod
    def find_device_by_name(cls, name: str) -> Optional[int]:
        """
        Find an input device by name (partial match, case-insensitive).

        Returns:
            Device index or None if not found
        """
        name_lower = name.lower()
        for device in cls.list_devices():
            if name_lower in device['name'].lower():
                return device['index']

        logger.warning(f"Device not found by name: {name}")
        return None

    def _resolve_device_sync(self) -> Optional[int]:
        """Device priority: name > explicit ID > system default (None)."""
        if self._device_name:
            device_id = self.find_device_by_name(self._device_name)
            if device_id is not None:
                logger.info(f"Resolved device by name '{self._device_name}': ID {device_id}")
                return device_id
        return self._device_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, stop_token: Optional[asyncio.Event] = None) -> None:
        """
        Open the microphone and start accumulating samples.

        Args:
            stop_token: Cancellation token for the level feed (default: internal).
                        Setting it ends the feed; stop() always sets it.

        Raises:
            RuntimeError: A session is already active
            MicrophoneUnavailable: Permission denied, no device, or backend failure
        """
        if self._session is not None or self._starting:
            raise RuntimeError("Capture session already active")

        if not sd:
            raise MicrophoneUnavailable("Audio capture unavailable (sounddevice/PortAudio not installed)")

        c = self.constraints
        self._starting = True
        try:
            device = await run_in_daemon_executor(self._resolve_device_sync)
            session = CaptureSession(c.sample_rate, c.channels, c.max_seconds)

            # Raises MicrophoneUnavailable after releasing anything it opened
            self._stream = await run_in_daemon_executor(self._open_stream_sync, device, session)
        finally:
            self._starting = False

        self._session = session
        self._analyser.reset()
        self._stop_token = stop_token or asyncio.Event()
        self._feed_task = create_tracked_task(
            self._level_feed(session, self._stop_token), name="level-feed"
        )

        logger.info(
            f"Capture started: device={device if device is not None else 'default'}, "
            f"rate={c.sample_rate}, block={c.block_size}"
        )

    async def stop(self) -> Optional[EncodedAudio]:
        """
        Stop recording, release the device and encode what was captured.

        Returns:
            EncodedAudio, or None if nothing was recorded (or no session was active)
        """
        session = self._session
        if session is None:
            return None

        if self._stop_token is not None:
            self._stop_token.set()
        if self._feed_task is not None:
            await asyncio.gather(self._feed_task, return_exceptions=True)

        # Detach the producer before reading the buffer
        session.close()
        try:
            await run_in_daemon_executor(self._release_stream_sync)
        finally:
            self._session = None
            self._stop_token = None
            self._feed_task = None
            self._amplitude = 0.0
            self._frequency_bins = self._analyser.empty()
            self._analyser.reset()

        samples = session.drain()
        if samples.size == 0:
            logger.warning("Capture stopped with no audio recorded")
            return None

        if session.dropped_frames:
            logger.debug(f"Capture buffer limit discarded {session.dropped_frames} oldest frames")

        audio = encode_recording(
            samples,
            session.sample_rate,
            session.channels,
            filename=upload_filename(self.mime_type),
        )
        logger.info(
            f"Recording finished: {audio.duration_seconds:.1f}s, "
            f"{audio.size_bytes / 1024:.1f} KB, peak={session.peak_amplitude:.3f}"
        )
        return audio

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_stream_sync(self, device: Optional[int], session: CaptureSession):
        """Open and start the input stream. Runs in the executor."""
        c = self.constraints
        stream = None
        try:
            sd.check_input_settings(
                device=device, channels=c.channels, dtype='float32', samplerate=c.sample_rate
            )
            stream = sd.InputStream(
                samplerate=c.sample_rate,
                channels=c.channels,
                dtype='float32',
                blocksize=c.block_size,
                device=device,
                callback=lambda indata, frames, time_info, status:
                    self._on_block(session, indata, frames, time_info, status),
            )
            stream.start()
            return stream
        except (sd.PortAudioError, ValueError) as e:
            logger.error(f"Microphone unavailable: {e}")
            if stream is not None:
                self._close_stream(stream)
            raise MicrophoneUnavailable(f"Could not access microphone: {e}") from e

    def _on_block(self, session: CaptureSession, indata, frames, time_info, status) -> None:
        """Stream callback (PortAudio thread)."""
        if status:
            logger.debug(f"Audio input status: {status}")

        # PortAudio reuses indata after the callback returns
        block = np.array(indata[:, 0], dtype=np.float32)
        if session.append(block):
            self._amplitude = rms_level(block)

    def _release_stream_sync(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        except sd.PortAudioError as e:
            logger.warning(f"Failed to stop input stream: {e}")
        finally:
            self._close_stream(stream)

    @staticmethod
    def _close_stream(stream) -> None:
        try:
            stream.close()
        except sd.PortAudioError as e:
            logger.warning(f"Failed to close input stream: {e}")

    async def _level_feed(self, session: CaptureSession, stop_token: asyncio.Event) -> None:
        """Republish amplitude and frequency bins until the token is set."""
        interval = self.constraints.refresh_interval
        fft_size = self._analyser.fft_size

        while not stop_token.is_set() and session.is_active:
            latest = session.latest_samples(fft_size)
            if latest is not None:
                self._frequency_bins = self._analyser.analyse(latest)

            if self.on_level:
                try:
                    self.on_level(self._amplitude, self._frequency_bins)
                except Exception as e:
                    logger.error(f"Level callback error: {e}")

            try:
                await asyncio.wait_for(stop_token.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
