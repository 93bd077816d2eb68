"""
Listen Engine Module

Orchestrates one listen → stop → identify cycle with state management.
Features:
- Single button flow (toggle) for a UI layer
- Refuses a new cycle while a request is outstanding
- Elapsed time, minimum-duration and loudness status for the timer/meter
"""

import time
from enum import Enum
from typing import Optional, Callable, Dict, Any, Union

from logging_config import get_logger
from .acrcloud import ACRCloudClient, SongResult
from .capture import MicrophoneCapture
from .errors import CaptureError, RecognitionError, UpstreamRejected, NotFound
from .helpers import shutdown_daemon_executor
from .levels import is_loud

logger = get_logger(__name__)


class EngineState(Enum):
    """Engine state machine states."""
    IDLE = "idle"                # Ready, nothing captured
    LISTENING = "listening"      # Microphone open
    IDENTIFYING = "identifying"  # Waiting for ACRCloud
    FOUND = "found"              # Has a SongResult
    NOT_FOUND = "not_found"      # Upstream could not match the sample
    ERROR = "error"              # Microphone, configuration or transport failure


class ListenEngine:
    """
    Listen-button flow.

    Press once to start listening, press again to stop and identify.
    Results and errors are reported through state, last_result/last_error
    and the optional callbacks.
    """

    DEFAULT_MIN_DURATION = 10.0   # Seconds recommended before stopping
    DEFAULT_LOUD_THRESHOLD = 0.1  # Level above which the meter shows "loud"

    def __init__(
        self,
        capture: Optional[MicrophoneCapture] = None,
        client: Optional[ACRCloudClient] = None,
        min_duration: Optional[float] = None,
        loud_threshold: Optional[float] = None,
        on_state_change: Optional[Callable[[EngineState], None]] = None,
        on_result: Optional[Callable[[SongResult], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None
    ):
        """
        Initialize the engine.

        Args:
            capture: Microphone capture (default: configured from config.CAPTURE)
            client: ACRCloud client (default: configured from config.ACRCLOUD)
            min_duration: Recommended minimum recording length in seconds
            loud_threshold: Level treated as loud enough
            on_state_change: Callback when state changes (sync)
            on_result: Callback with the SongResult on a match (sync)
            on_error: Callback with the MicrophoneUnavailable/RecognitionError (sync)
        """
        if min_duration is None or loud_threshold is None:
            from config import LISTEN
            if min_duration is None:
                min_duration = LISTEN.get("min_duration", self.DEFAULT_MIN_DURATION)
            if loud_threshold is None:
                loud_threshold = LISTEN.get("loud_threshold", self.DEFAULT_LOUD_THRESHOLD)

        if capture is None:
            from config import CAPTURE
            capture = MicrophoneCapture(
                device_id=CAPTURE.get("device_id"),
                device_name=CAPTURE.get("device_name") or None,
                mime_preferences=CAPTURE.get("mime_preferences"),
            )

        self.capture = capture
        self.client = client or ACRCloudClient()
        self.min_duration = min_duration
        self.loud_threshold = loud_threshold

        self.on_state_change = on_state_change
        self.on_result = on_result
        self.on_error = on_error

        self._state = EngineState.IDLE
        self._last_result: Optional[SongResult] = None
        self._last_error: Optional[Exception] = None
        self._last_attempt_time: float = 0.0
        self._last_duration: float = 0.0
        self._starting = False

    @property
    def state(self) -> EngineState:
        """Current engine state."""
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == EngineState.LISTENING

    @property
    def is_busy(self) -> bool:
        """True while listening or identifying (trigger should be disabled while identifying)."""
        return self._starting or self._state in (EngineState.LISTENING, EngineState.IDENTIFYING)

    @property
    def last_result(self) -> Optional[SongResult]:
        return self._last_result

    @property
    def last_error(self) -> Optional[Exception]:
        return self._last_error

    # ------------------------------------------------------------------
    # Timer / meter helpers
    # ------------------------------------------------------------------

    @property
    def elapsed_seconds(self) -> float:
        return self.capture.elapsed if self.is_listening else 0.0

    @property
    def has_reached_min_duration(self) -> bool:
        return self.elapsed_seconds >= self.min_duration

    @property
    def remaining_seconds(self) -> float:
        return max(0.0, self.min_duration - self.elapsed_seconds)

    @property
    def is_loud(self) -> bool:
        return is_loud(self.capture.amplitude, self.loud_threshold)

    def format_elapsed(self) -> str:
        """Elapsed time as m:ss."""
        seconds = int(self.elapsed_seconds)
        return f"{seconds // 60}:{seconds % 60:02d}"

    def get_status(self) -> Dict[str, Any]:
        """
        Get engine status.

        Returns:
            Status dict for a UI/API layer
        """
        return {
            "state": self._state.value,
            "is_listening": self.is_listening,
            "elapsed": self.elapsed_seconds,
            "elapsed_display": self.format_elapsed(),
            "min_duration": self.min_duration,
            "has_reached_min_duration": self.has_reached_min_duration,
            "audio_level": self.capture.amplitude,
            "is_loud": self.is_loud,
            "result": self._last_result.to_dict() if self._last_result else None,
            "error": str(self._last_error) if self._last_error else None,
            "last_attempt_time": self._last_attempt_time,
            "last_recording_duration": self._last_duration,
        }

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def toggle(self) -> Union[SongResult, RecognitionError, None]:
        """
        Listen button handler.

        Starts listening when idle, stops and identifies when listening,
        ignored while a request is outstanding.

        Returns:
            Identification outcome when a cycle completed, else None
        """
        if self._state == EngineState.IDENTIFYING or self._starting:
            logger.debug(f"Engine busy ({'starting' if self._starting else 'identifying'}), ignoring toggle")
            return None
        if self._state == EngineState.LISTENING:
            return await self.stop_and_identify()
        await self.start_listening()
        return None

    async def start_listening(self) -> bool:
        """
        Open the microphone.

        Returns:
            True if listening started
        """
        if self.is_busy:
            logger.warning(f"Cannot start listening while {self._state.value}")
            return False

        self._last_result = None
        self._last_error = None

        self._starting = True
        try:
            await self.capture.start()
        except CaptureError as e:
            logger.error(f"Microphone error: {e}")
            self._fail(EngineState.ERROR, e)
            return False
        finally:
            self._starting = False

        self._set_state(EngineState.LISTENING)
        return True

    async def stop_and_identify(self) -> Union[SongResult, RecognitionError, None]:
        """
        Stop listening and send the recording to ACRCloud.

        Returns:
            SongResult, RecognitionError, or None if nothing was recorded
        """
        if self._state != EngineState.LISTENING:
            logger.warning(f"Not listening (state: {self._state.value})")
            return None

        self._last_duration = self.capture.elapsed
        audio = await self.capture.stop()
        if audio is None:
            logger.info("Nothing recorded, back to idle")
            self._set_state(EngineState.IDLE)
            return None

        self._set_state(EngineState.IDENTIFYING)
        self._last_attempt_time = time.time()
        outcome = await self.client.identify(audio)

        if isinstance(outcome, SongResult):
            self._last_result = outcome
            self._set_state(EngineState.FOUND)
            self._notify(self.on_result, outcome)
        elif isinstance(outcome, (UpstreamRejected, NotFound)):
            self._fail(EngineState.NOT_FOUND, outcome)
        else:
            self._fail(EngineState.ERROR, outcome)

        return outcome

    async def cancel(self) -> None:
        """Stop listening without identifying (releases the microphone)."""
        if self._state == EngineState.LISTENING:
            await self.capture.stop()
            self._set_state(EngineState.IDLE)

    async def close(self) -> None:
        """Release the microphone and shut down the worker threads. Call during app cleanup."""
        await self.cancel()
        shutdown_daemon_executor()
        logger.info("Listen engine closed")

    def _fail(self, state: EngineState, error: Exception):
        self._last_error = error
        self._set_state(state)
        self._notify(self.on_error, error)

    def _notify(self, callback: Optional[Callable], value: Any):
        if callback:
            try:
                callback(value)
            except Exception as e:
                logger.error(f"Engine callback error: {e}")

    def _set_state(self, new_state: EngineState):
        """
        Update state and trigger callback.

        Args:
            new_state: New state to set
        """
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state

        logger.debug(f"Engine state: {old_state.value} -> {new_state.value}")

        if self.on_state_change:
            try:
                self.on_state_change(new_state)
            except Exception as e:
                logger.error(f"State change callback error: {e}")
