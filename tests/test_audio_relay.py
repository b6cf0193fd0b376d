from __future__ import annotations

import asyncio

import numpy as np
import pytest

from client_remote_control.audio_relay import (
    AudioRelaySession,
    CaptureConfig,
    NoiseSuppressor,
    float_to_pcm16,
    pick_input_device,
)
from client_remote_control.errors import MicrophoneUnavailable

# Long chunk interval so only explicit flush() calls emit chunks
MANUAL = CaptureConfig(noise_suppression=False, chunk_ms=60_000)


class _Sink:
    def __init__(self) -> None:
        self.chunks = []

    def __call__(self, chunk) -> bool:
        self.chunks.append(chunk)
        return True


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


def _block(value: float, frames: int = 160) -> np.ndarray:
    return np.full((frames, 1), value, dtype=np.float32)


@pytest.mark.asyncio
async def test_captured_samples_become_one_pcm16_chunk(stream_opener) -> None:
    sink = _Sink()
    session = AudioRelaySession(sink, config=MANUAL, open_stream=stream_opener).start()

    stream_opener.last.callback(_block(0.5), 160, None, None)
    stream_opener.last.callback(_block(-0.25), 160, None, None)
    await _settle()
    chunk = session.flush()

    assert sink.chunks == [chunk]
    samples = np.frombuffer(chunk.to_bytes(), dtype="<i2")
    assert len(samples) == 320
    assert samples[0] == 16383
    assert samples[-1] == -8191
    session.stop()


@pytest.mark.asyncio
async def test_flush_with_empty_buffer_sends_nothing(stream_opener) -> None:
    sink = _Sink()
    session = AudioRelaySession(sink, config=MANUAL, open_stream=stream_opener).start()

    assert session.flush() is None
    assert sink.chunks == []
    session.stop()


@pytest.mark.asyncio
async def test_timer_emits_chunks_at_fixed_interval(stream_opener) -> None:
    sink = _Sink()
    config = CaptureConfig(noise_suppression=False, chunk_ms=10)
    session = AudioRelaySession(sink, config=config, open_stream=stream_opener).start()

    stream_opener.last.callback(_block(0.1), 160, None, None)
    await asyncio.sleep(0.05)

    assert len(sink.chunks) == 1
    session.stop()


@pytest.mark.asyncio
async def test_no_chunk_after_stop(stream_opener) -> None:
    sink = _Sink()
    session = AudioRelaySession(sink, config=MANUAL, open_stream=stream_opener).start()
    stream = stream_opener.last

    stream.callback(_block(0.1), 160, None, None)
    session.stop()
    # A late block from the capture thread
    stream.callback(_block(0.1), 160, None, None)
    await _settle()

    assert session.flush() is None
    assert sink.chunks == []
    assert stream.calls == ["stop", "close"]


@pytest.mark.asyncio
async def test_stop_is_idempotent(stream_opener) -> None:
    session = AudioRelaySession(_Sink(), config=MANUAL, open_stream=stream_opener).start()

    session.stop()
    session.stop()

    assert stream_opener.last.calls == ["stop", "close"]
    assert not session.active


def test_stop_before_start_is_harmless(stream_opener) -> None:
    session = AudioRelaySession(_Sink(), config=MANUAL, open_stream=stream_opener)
    session.stop()
    assert stream_opener.streams == []


@pytest.mark.asyncio
async def test_stream_released_even_when_stop_fails(failing_stream_opener) -> None:
    opener = failing_stream_opener
    session = AudioRelaySession(_Sink(), config=MANUAL, open_stream=opener).start()

    session.stop()

    assert opener.last.calls == ["stop", "close"]


@pytest.mark.asyncio
async def test_start_failure_raises_microphone_unavailable() -> None:
    def denied(config, callback):
        raise MicrophoneUnavailable("permission denied")

    session = AudioRelaySession(_Sink(), config=MANUAL, open_stream=denied)

    with pytest.raises(MicrophoneUnavailable):
        session.start()
    assert not session.active


@pytest.mark.asyncio
async def test_failed_send_is_counted(stream_opener) -> None:
    session = AudioRelaySession(lambda chunk: False, config=MANUAL, open_stream=stream_opener).start()

    stream_opener.last.callback(_block(0.1), 160, None, None)
    await _settle()
    session.flush()

    assert session.get_stats()["chunks_failed"] == 1
    session.stop()


def test_pcm16_clips_out_of_range_samples() -> None:
    samples = np.array([2.0, -2.0, 0.0], dtype=np.float32)
    assert np.frombuffer(float_to_pcm16(samples), dtype="<i2").tolist() == [32767, -32767, 0]


def test_noise_suppressor_removes_dc_offset() -> None:
    suppressor = NoiseSuppressor(sample_rate=16000, cutoff=80.0, order=2)
    step = np.concatenate([np.zeros(1600), np.full(16000, 0.5)]).astype(np.float32)

    out = suppressor.process(step)

    assert out.dtype == np.float32
    assert abs(out[-1]) < 0.01


def test_pick_input_device_prefers_echo_cancelling_source() -> None:
    devices = [
        {"name": "Built-in Output", "max_input_channels": 0},
        {"name": "Built-in Microphone", "max_input_channels": 1},
        {"name": "Echo-Cancel Source", "max_input_channels": 1},
    ]
    assert pick_input_device(devices, echo_cancellation=True) == 2
    assert pick_input_device(devices, echo_cancellation=False) is None
    assert pick_input_device(devices[:2], echo_cancellation=True) is None
