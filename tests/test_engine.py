"""Tests for the listen → identify flow"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from sound_search import helpers
from sound_search.acrcloud import ACRCloudClient, SongResult
from sound_search.capture import MicrophoneCapture
from sound_search.engine import EngineState, ListenEngine
from sound_search.errors import (
    MicrophoneUnavailable,
    NotFound,
    TransportFailure,
    UpstreamRejected,
)
from sound_search.wav import EncodedAudio

SONG = SongResult(title="Bohemian Rhapsody", artist="Queen")


@pytest.fixture
def capture():
    mic = MagicMock(spec=MicrophoneCapture)
    mic.start = AsyncMock()
    mic.stop = AsyncMock(return_value=EncodedAudio(data=bytes(60000)))
    mic.elapsed = 12.0
    mic.amplitude = 0.3
    return mic


@pytest.fixture
def client():
    acr = MagicMock(spec=ACRCloudClient)
    acr.identify = AsyncMock(return_value=SONG)
    return acr


def make_engine(capture, client, **kwargs):
    return ListenEngine(capture=capture, client=client, min_duration=10.0, loud_threshold=0.1, **kwargs)


async def test_toggle_runs_full_cycle(capture, client):
    states, results = [], []
    engine = make_engine(capture, client, on_state_change=states.append, on_result=results.append)

    assert await engine.toggle() is None
    assert engine.state == EngineState.LISTENING
    capture.start.assert_awaited_once()

    outcome = await engine.toggle()

    assert outcome is SONG
    assert engine.last_result is SONG
    assert engine.state == EngineState.FOUND
    client.identify.assert_awaited_once_with(capture.stop.return_value)
    assert states == [EngineState.LISTENING, EngineState.IDENTIFYING, EngineState.FOUND]
    assert results == [SONG]


async def test_empty_recording_goes_back_to_idle(capture, client):
    capture.stop.return_value = None
    engine = make_engine(capture, client)
    await engine.start_listening()

    assert await engine.stop_and_identify() is None
    assert engine.state == EngineState.IDLE
    client.identify.assert_not_awaited()


async def test_microphone_error(capture, client):
    capture.start.side_effect = MicrophoneUnavailable("Permission denied")
    errors = []
    engine = make_engine(capture, client, on_error=errors.append)

    assert await engine.start_listening() is False
    assert engine.state == EngineState.ERROR
    assert isinstance(engine.last_error, MicrophoneUnavailable)
    assert errors == [engine.last_error]


@pytest.mark.parametrize("outcome, state", [
    (UpstreamRejected(2004, "No music detected"), EngineState.NOT_FOUND),
    (NotFound(), EngineState.NOT_FOUND),
    (TransportFailure("connection reset"), EngineState.ERROR),
])
async def test_failed_identification_states(capture, client, outcome, state):
    client.identify.return_value = outcome
    errors = []
    engine = make_engine(capture, client, on_error=errors.append)
    await engine.start_listening()

    assert await engine.stop_and_identify() is outcome
    assert engine.state == state
    assert engine.last_result is None
    assert errors == [outcome]
    assert engine.get_status()["error"] == outcome.message


async def test_toggle_ignored_while_identifying(capture, client):
    engine = make_engine(capture, client)
    nested = []

    async def identify(audio):
        nested.append(await engine.toggle())
        return SONG

    client.identify.side_effect = identify
    await engine.start_listening()
    await engine.stop_and_identify()

    assert nested == [None]
    capture.start.assert_awaited_once()


async def test_cannot_start_twice(capture, client):
    engine = make_engine(capture, client)
    assert await engine.start_listening() is True
    assert await engine.start_listening() is False
    capture.start.assert_awaited_once()


async def test_new_cycle_clears_previous_result(capture, client):
    engine = make_engine(capture, client)
    await engine.toggle()
    await engine.toggle()
    assert engine.last_result is SONG

    await engine.toggle()
    assert engine.state == EngineState.LISTENING
    assert engine.last_result is None


async def test_cancel_releases_microphone(capture, client):
    engine = make_engine(capture, client)
    await engine.start_listening()
    await engine.cancel()

    capture.stop.assert_awaited_once()
    client.identify.assert_not_awaited()
    assert engine.state == EngineState.IDLE


async def test_timer_and_meter_status(capture, client):
    engine = make_engine(capture, client)
    assert engine.elapsed_seconds == 0.0

    await engine.start_listening()
    capture.elapsed = 75.4

    assert engine.format_elapsed() == "1:15"
    assert engine.has_reached_min_duration
    assert engine.remaining_seconds == 0.0
    assert engine.is_loud

    capture.elapsed = 4.0
    capture.amplitude = 0.05
    status = engine.get_status()
    assert status["state"] == "listening"
    assert status["has_reached_min_duration"] is False
    assert status["is_loud"] is False
    assert engine.remaining_seconds == pytest.approx(6.0)


async def test_callback_errors_are_contained(capture, client):
    def broken(_):
        raise RuntimeError("ui gone")

    engine = make_engine(capture, client, on_state_change=broken, on_result=broken)
    await engine.toggle()
    assert await engine.toggle() is SONG
    assert engine.state == EngineState.FOUND


async def test_double_toggle_while_starting_opens_once(capture, client):
    async def slow_start():
        await asyncio.sleep(0)

    capture.start.side_effect = slow_start
    engine = make_engine(capture, client)

    await asyncio.gather(engine.toggle(), engine.toggle())

    capture.start.assert_awaited_once()
    assert engine.state == EngineState.LISTENING


async def test_close_releases_microphone_and_workers(capture, client):
    engine = make_engine(capture, client)
    await engine.start_listening()
    await helpers.run_in_daemon_executor(lambda: None)
    assert helpers._thread_executor is not None

    await engine.close()

    capture.stop.assert_awaited_once()
    assert engine.state == EngineState.IDLE
    assert helpers._thread_executor is None
