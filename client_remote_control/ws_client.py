"""
WebSocket Transport Handle for host communication.

Handles:
- One WebSocket connection per handle (no automatic reconnection)
- Lifecycle reporting as explicit TransportEvent values
- Non-blocking sends through bounded queues
- Clean, idempotent shutdown
"""

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
    WebSocketException,
)

logger = logging.getLogger(__name__)


class TransportEvent(enum.Enum):
    """Raw lifecycle events reported by a transport."""
    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"


# (transport, event, detail)
EventCallback = Callable[['WebSocketTransport', TransportEvent, Optional[str]], None]


@dataclass
class ConnectionStats:
    """Statistics about one WebSocket connection."""
    connected: bool = False
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    messages_sent: int = 0
    messages_failed: int = 0
    audio_dropped: int = 0
    last_send_time: Optional[float] = None


class WebSocketTransport:
    """
    Transport Handle over a single WebSocket connection.

    The handle does not hold application state; it only reports OPEN once
    the handshake succeeds and then exactly one terminal CLOSE or ERROR.
    Nothing is reported after close() has been called.

    Sending never blocks the caller. Control frames are queued FIFO and the
    newest is dropped when the queue is full. Droppable frames (audio) go to
    a separate backlog that drops the oldest entry when full, so a slow link
    loses stale audio rather than clicks and keys.
    """

    def __init__(
        self,
        url: str,
        on_event: Optional[EventCallback] = None,
        open_timeout: float = 10.0,
        max_queue: int = 100,
        audio_backlog: int = 20,
        connect: Callable[..., Any] = websockets.connect,
    ):
        """
        Initialize the transport.

        Args:
            url: WebSocket URL (ws://host:port?pin=XXXX)
            on_event: Called with (transport, event, detail) on lifecycle changes
            open_timeout: Seconds to wait for the opening handshake
            max_queue: Maximum queued control frames
            audio_backlog: Maximum queued droppable frames
            connect: Connection factory, websockets.connect by default
        """
        self.url = url
        self.on_event = on_event
        self.open_timeout = open_timeout
        self.max_queue = max_queue
        self._connect_fn = connect

        self._ws: Any = None
        self._open = False
        self._closing = False
        self._terminal_sent = False

        self._control: Deque[str] = deque()
        self._audio: Deque[str] = deque(maxlen=audio_backlog)
        self._wakeup = asyncio.Event()

        self.stats = ConnectionStats()

        self._run_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None

    @property
    def is_open(self) -> bool:
        """Check if the connection is open for sending."""
        return self._open and self._ws is not None and not self._closing

    def start(self) -> None:
        """Start the connection attempt. Must be called inside a running loop."""
        if self._run_task is not None:
            return
        self._run_task = asyncio.get_running_loop().create_task(self._run())

    def send(self, frame: str, droppable: bool = False) -> bool:
        """
        Queue a text frame for sending.

        Args:
            frame: Encoded frame
            droppable: True for frames that may be dropped under load (audio)

        Returns:
            True if queued, False if dropped
        """
        if not self.is_open:
            self.stats.messages_failed += 1
            logger.debug("Transport not open, dropping frame")
            return False

        if droppable:
            if len(self._audio) == self._audio.maxlen:
                self.stats.audio_dropped += 1
                logger.debug("Audio backlog full, dropping oldest chunk")
            self._audio.append(frame)
        else:
            if len(self._control) >= self.max_queue:
                self.stats.messages_failed += 1
                logger.warning("Send queue full, dropping message")
                return False
            self._control.append(frame)

        self._wakeup.set()
        return True

    def close(self) -> None:
        """
        Close the connection and stop all tasks.

        Safe to call more than once and before the connection opened.
        No lifecycle event is reported afterwards.
        """
        if self._closing:
            return
        self._closing = True
        self._open = False
        self._control.clear()
        self._audio.clear()

        if self._send_task:
            self._send_task.cancel()
        # After a terminal event the run task is already finishing its cleanup
        if self._run_task and not self._run_task.done() and not self._terminal_sent:
            self._run_task.cancel()

        logger.info("Transport closing")

    async def wait_closed(self) -> None:
        """Wait until the connection task has finished."""
        if self._run_task is None:
            return
        try:
            await self._run_task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        """Open the connection, then read until it ends."""
        try:
            logger.info(f"Connecting to {self._redacted_url()}...")
            self._ws = await self._connect_fn(
                self.url,
                open_timeout=self.open_timeout,
                ping_interval=20,
                ping_timeout=10,
                close_timeout=5,
            )
        except asyncio.CancelledError:
            raise
        except InvalidURI as e:
            self._emit(TransportEvent.ERROR, f"invalid URI: {e}")
            return
        except InvalidHandshake as e:
            logger.error(f"Handshake rejected: {e}")
            self._emit(TransportEvent.ERROR, f"handshake rejected: {e}")
            return
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Connection failed: {e}")
            self._emit(TransportEvent.ERROR, str(e) or type(e).__name__)
            return

        try:
            if self._closing:
                return

            self._open = True
            self.stats.connected = True
            self.stats.connect_time = time.time()
            logger.info("WebSocket connected successfully")
            self._emit(TransportEvent.OPEN, None)

            self._send_task = asyncio.get_running_loop().create_task(self._send_loop())

            try:
                async for message in self._ws:
                    # No replies are defined; anything inbound is informational
                    logger.debug(f"Received from host: {message!r}")
            except ConnectionClosedOK:
                pass
            except ConnectionClosed as e:
                self._mark_down()
                self._emit(TransportEvent.ERROR, f"connection lost: {e}")
                return

            self._mark_down()
            self._emit(TransportEvent.CLOSE, None)

        finally:
            self._mark_down()
            if self._send_task:
                self._send_task.cancel()
            if self._ws is not None:
                try:
                    await self._ws.close()
                except (ConnectionClosed, OSError) as e:
                    logger.debug(f"Error while closing socket: {e}")

    async def _send_loop(self) -> None:
        """Drain queued frames, control frames before audio."""
        while not self._closing:
            await self._wakeup.wait()
            self._wakeup.clear()

            while self._control or self._audio:
                if self._closing:
                    return
                frame = self._control.popleft() if self._control else self._audio.popleft()
                try:
                    await self._ws.send(frame)
                    self.stats.messages_sent += 1
                    self.stats.last_send_time = time.time()
                except (ConnectionClosed, WebSocketException, OSError) as e:
                    # The reader reports the close; just drop what is left
                    self.stats.messages_failed += 1
                    logger.warning(f"Send failed: {e}")

    def _mark_down(self) -> None:
        if self.stats.connected:
            self.stats.disconnect_time = time.time()
        self._open = False
        self.stats.connected = False

    def _emit(self, event: TransportEvent, detail: Optional[str]) -> None:
        """Report a lifecycle event unless closed or already terminated."""
        if self._closing or self._terminal_sent:
            return
        if event is not TransportEvent.OPEN:
            self._terminal_sent = True
        if self.on_event:
            try:
                self.on_event(self, event, detail)
            except Exception as e:
                logger.error(f"Error in transport event callback: {e}")

    def _redacted_url(self) -> str:
        return self.url.split("?", 1)[0]

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "connected": self.is_open,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "audio_dropped": self.stats.audio_dropped,
            "last_send_time": self.stats.last_send_time,
            "queue_size": len(self._control),
            "audio_backlog": len(self._audio),
        }
