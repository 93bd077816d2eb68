"""
Sound Search

Records audio from the microphone, encodes it as WAV and identifies the
song through the ACRCloud identify API.
"""

from .acrcloud import ACRCloudClient, ACRCloudCredentials, SignedRequest, SongResult
from .capture import CaptureConstraints, CaptureSession, MicrophoneCapture
from .engine import EngineState, ListenEngine
from .errors import (
    CaptureError,
    MicrophoneUnavailable,
    RecognitionError,
    NoAudioProvided,
    CredentialsMissing,
    UpstreamRejected,
    NotFound,
    TransportFailure,
)
from .wav import EncodedAudio, encode_wav


def init_logging(logs_dir=None) -> None:
    """Configure logging from config.DEBUG (call once from the host application)."""
    from config import DEBUG
    from logging_config import setup_logging

    setup_logging(
        console_level=DEBUG["log_level"],
        console=DEBUG["log_to_console"],
        log_file=DEBUG["log_file"],
        logs_dir=logs_dir,
    )


__all__ = [
    'ACRCloudClient',
    'ACRCloudCredentials',
    'SignedRequest',
    'SongResult',
    'CaptureConstraints',
    'CaptureSession',
    'MicrophoneCapture',
    'EngineState',
    'ListenEngine',
    'CaptureError',
    'MicrophoneUnavailable',
    'RecognitionError',
    'NoAudioProvided',
    'CredentialsMissing',
    'UpstreamRejected',
    'NotFound',
    'TransportFailure',
    'EncodedAudio',
    'encode_wav',
    'init_logging',
]
