"""Pytest configuration and shared fixtures"""
import os
import sys
from unittest.mock import MagicMock

import numpy as np
import pytest

# Add parent directory to path to import config / logging_config / sound_search
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sound_search import capture as capture_module
from sound_search.acrcloud import ACRCloudCredentials
from sound_search.capture import CaptureConstraints
from sound_search.wav import EncodedAudio


class FakePortAudioError(Exception):
    """Stands in for sounddevice.PortAudioError on machines without PortAudio."""


@pytest.fixture
def fake_sd(monkeypatch):
    """Replace the sounddevice module used by capture with a mock."""
    sd = MagicMock(name="sounddevice")
    sd.PortAudioError = FakePortAudioError
    sd.query_devices.return_value = [
        {'name': 'Built-in Microphone', 'max_input_channels': 1, 'default_samplerate': 44100.0},
        {'name': 'Built-in Output', 'max_input_channels': 0, 'default_samplerate': 48000.0},
        {'name': 'USB Audio Interface', 'max_input_channels': 2, 'default_samplerate': 48000.0},
    ]
    sd.InputStream.return_value = MagicMock(name="stream")
    monkeypatch.setattr(capture_module, "sd", sd)
    return sd


@pytest.fixture
def constraints():
    """Small blocks and a fast refresh so tests stay quick."""
    return CaptureConstraints(sample_rate=8000, block_size=4, refresh_interval=0.005, max_seconds=None)


def stream_callback(fake_sd):
    """The callback capture registered with the (fake) InputStream."""
    return fake_sd.InputStream.call_args.kwargs['callback']


def feed(callback, samples):
    """Push one mono block through a stream callback, the way PortAudio does."""
    block = np.asarray(samples, dtype=np.float32).reshape(-1, 1)
    callback(block, len(block), None, None)


@pytest.fixture
def credentials():
    return ACRCloudCredentials(
        access_key="test_access_key",
        access_secret="test_access_secret",
        host="identify-eu-west-1.acrcloud.com",
    )


@pytest.fixture
def recording():
    """A WAV recording comfortably above the 50 000 byte floor."""
    return EncodedAudio(data=b"RIFF" + bytes(60000), mime_type="audio/wav",
                        sample_rate=44100, channels=1, filename="recording.wav")


def make_http(payload=None, post_error=None, json_error=None):
    """Mock requests session whose post() answers with payload."""
    http = MagicMock(name="session")
    if post_error is not None:
        http.post.side_effect = post_error
        return http
    response = MagicMock(name="response")
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    http.post.return_value = response
    return http
