"""
Audio Relay - streams the microphone to the host in fixed-interval chunks.

Capture runs on the PortAudio thread; samples are handed to the event loop
with call_soon_threadsafe, so buffering, chunking and sending all happen on
the loop. Every 100 ms (by default) whatever was captured since the last
tick becomes one AudioChunk: 16-bit little-endian mono PCM, base64-encoded.
Chunk boundaries are time-based, never silence- or size-based.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import numpy as np
from scipy import signal

from .errors import MicrophoneUnavailable
from .message import AudioChunk

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureConfig:
    """Microphone capture configuration"""
    sample_rate: int = 16000
    channels: int = 1
    echo_cancellation: bool = True
    noise_suppression: bool = True
    chunk_ms: int = 100
    highpass_cutoff: float = 80.0   # Hz, removes fan noise and mains hum
    highpass_order: int = 2


DEFAULT_CAPTURE = CaptureConfig()


# ============================================================================
#                          NOISE SUPPRESSION
# ============================================================================

class NoiseSuppressor:
    """High-pass Butterworth filter with state carried across chunks."""

    def __init__(self, sample_rate: int, cutoff: float, order: int):
        self.sos = signal.butter(order, cutoff, btype="highpass", fs=sample_rate, output="sos")
        self.zi: Optional[np.ndarray] = None

    def process(self, audio: np.ndarray) -> np.ndarray:
        if len(audio) == 0:
            return audio
        if self.zi is None:
            # Start from steady state to avoid a click on the first chunk
            self.zi = signal.sosfilt_zi(self.sos) * audio[0]
        filtered, self.zi = signal.sosfilt(self.sos, audio, zi=self.zi)
        return filtered.astype(np.float32)

    def reset(self) -> None:
        self.zi = None


def float_to_pcm16(audio: np.ndarray) -> bytes:
    """Convert float32 samples in [-1, 1] to little-endian int16 bytes."""
    clipped = np.clip(audio, -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


# ============================================================================
#                           CAPTURE DEVICE
# ============================================================================

def pick_input_device(devices: List[dict], echo_cancellation: bool) -> Optional[int]:
    """
    Choose the input device index.

    With echo cancellation requested, prefer the platform's echo-cancelling
    source (PulseAudio/PipeWire expose it as an "echo-cancel" input).
    Returns None for the default input device.
    """
    if not echo_cancellation:
        return None
    for i, d in enumerate(devices):
        if d.get("max_input_channels", 0) > 0 and "echo" in d.get("name", "").lower():
            logger.info(f"Using echo-cancelling input: {d['name']}")
            return i
    logger.debug("No echo-cancelling input found, using default device")
    return None


def open_input_stream(config: CaptureConfig, callback: Callable[..., None]) -> Any:
    """
    Open and start a sounddevice InputStream.

    Raises:
        MicrophoneUnavailable: If no device can be opened
    """
    try:
        import sounddevice as sd
    except OSError as e:
        # PortAudio library missing
        raise MicrophoneUnavailable(f"audio backend unavailable: {e}") from e

    try:
        device = pick_input_device(list(sd.query_devices()), config.echo_cancellation)
        stream = sd.InputStream(
            samplerate=config.sample_rate,
            channels=config.channels,
            dtype="float32",
            device=device,
            callback=callback,
        )
        stream.start()
    except (sd.PortAudioError, OSError, ValueError) as e:
        raise MicrophoneUnavailable(f"could not open microphone: {e}") from e
    return stream


# ============================================================================
#                          AUDIO RELAY SESSION
# ============================================================================

class AudioRelaySession:
    """
    Owns the microphone for as long as audio is being relayed.

    stop() always halts the chunk timer, stops the capture stream and
    releases it, even when called twice, before start(), or after capture
    failed. No chunk is emitted once stop() has returned.
    """

    def __init__(
        self,
        send: Callable[[AudioChunk], bool],
        config: CaptureConfig = DEFAULT_CAPTURE,
        open_stream: Callable[[CaptureConfig, Callable[..., None]], Any] = open_input_stream,
    ):
        """
        Args:
            send: Queues a chunk on the transport
            config: Capture configuration
            open_stream: Opens and starts the capture stream
        """
        self.send = send
        self.config = config
        self._open_stream = open_stream

        self._stream: Any = None
        self._timer: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._buffer: List[np.ndarray] = []
        self._active = False
        # Bumped on every start/stop so late callbacks from an old stream are ignored
        self._generation = 0
        self._suppressor = (
            NoiseSuppressor(config.sample_rate, config.highpass_cutoff, config.highpass_order)
            if config.noise_suppression else None
        )

        self.chunks_sent = 0
        self.chunks_failed = 0
        self.overflows = 0

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> 'AudioRelaySession':
        """
        Open the microphone and start emitting chunks.

        Must be called from inside the running event loop.

        Raises:
            MicrophoneUnavailable: If the capture device is denied or missing
        """
        if self._active:
            return self

        self._loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation
        if self._suppressor:
            self._suppressor.reset()

        def callback(indata, frames, time_info, status):
            self._on_audio(generation, indata, status)

        try:
            self._stream = self._open_stream(self.config, callback)
        except MicrophoneUnavailable:
            self.stop()
            raise

        self._active = True
        self._timer = self._loop.create_task(self._tick_loop(generation))
        logger.info(
            f"Audio relay started ({self.config.sample_rate} Hz, "
            f"{self.config.chunk_ms} ms chunks)"
        )
        return self

    def stop(self) -> None:
        """Stop capture and release the device. Idempotent."""
        was_active = self._active
        self._active = False
        self._generation += 1
        self._buffer.clear()

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            except Exception as e:
                logger.warning(f"Error stopping capture stream: {e}")
            try:
                stream.close()
            except Exception as e:
                logger.warning(f"Error closing capture stream: {e}")

        if was_active:
            logger.info(f"Audio relay stopped after {self.chunks_sent} chunks")

    def _on_audio(self, generation: int, indata: np.ndarray, status: Any) -> None:
        """PortAudio thread: copy the block and hand it to the loop."""
        if status:
            self.overflows += 1
        block = np.array(indata[:, 0] if indata.ndim > 1 else indata, dtype=np.float32)
        try:
            self._loop.call_soon_threadsafe(self._ingest, generation, block)
        except RuntimeError:
            # Loop already closed
            pass

    def _ingest(self, generation: int, block: np.ndarray) -> None:
        if not self._active or generation != self._generation:
            return
        self._buffer.append(block)

    async def _tick_loop(self, generation: int) -> None:
        interval = self.config.chunk_ms / 1000.0
        while self._active and generation == self._generation:
            await asyncio.sleep(interval)
            self.flush()

    def flush(self) -> Optional[AudioChunk]:
        """Turn everything buffered since the last tick into one chunk and send it."""
        if not self._active or not self._buffer:
            return None

        samples = np.concatenate(self._buffer)
        self._buffer.clear()
        if self._suppressor:
            samples = self._suppressor.process(samples)

        chunk = AudioChunk.from_bytes(float_to_pcm16(samples))
        try:
            if self.send(chunk):
                self.chunks_sent += 1
            else:
                self.chunks_failed += 1
        except Exception as e:
            # Transport went away mid-chunk; the disconnect handler tears us down
            self.chunks_failed += 1
            logger.debug(f"Audio chunk dropped: {e}")
        return chunk

    def get_stats(self) -> dict:
        return {
            "active": self._active,
            "chunks_sent": self.chunks_sent,
            "chunks_failed": self.chunks_failed,
            "overflows": self.overflows,
        }
