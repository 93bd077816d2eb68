"""
Error types for capture and recognition.

Capture faults are raised. Recognition faults are returned by
ACRCloudClient.identify() so the caller always gets a typed outcome.
"""

from typing import Optional


class CaptureError(Exception):
    """Base class for microphone capture failures."""


class MicrophoneUnavailable(CaptureError):
    """Permission denied, no input device, or the audio backend failed to open."""


class RecognitionError(Exception):
    """
    Base class for recognition outcomes that are not a song.

    Attributes:
        message: User-facing description
        http_status: Status a hosting HTTP layer should answer with
    """

    http_status = 500
    default_message = "Failed to identify song"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"error": self.message}


class NoAudioProvided(RecognitionError):
    http_status = 400
    default_message = "No audio file provided"


class CredentialsMissing(RecognitionError):
    http_status = 500
    default_message = "ACRCloud credentials not configured"


class UpstreamRejected(RecognitionError):
    """ACRCloud answered with a non-zero status code."""

    http_status = 404
    default_message = "Song not found"

    def __init__(self, code: Optional[int], message: Optional[str] = None):
        self.code = code
        super().__init__(message)

    def __repr__(self) -> str:
        return f"UpstreamRejected(code={self.code!r}, message={self.message!r})"


class NotFound(RecognitionError):
    http_status = 404
    default_message = "Song not found"


class TransportFailure(RecognitionError):
    """Network error or unreadable response."""

    http_status = 500
