"""
Remote Session - the Connection Orchestrator.

Owns everything that lives for the duration of one connection: the
transport, the gesture tracker, the text buffer and the audio relay. All
invariants (one live transport, one live audio session, full teardown on
disconnect) are enforced here rather than by the callers.

State machine:

    Disconnected --connect--> Connecting --OPEN--> Connected
    Connecting --ERROR/CLOSE--> Disconnected
    Connected  --ERROR/CLOSE--> Disconnected (with teardown)
"""

import asyncio
import enum
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from .audio_relay import DEFAULT_CAPTURE, AudioRelaySession, CaptureConfig, open_input_stream
from .emitters import HapticFn, TextBuffer, no_haptics
from .emitters import click as emit_click
from .emitters import key_press as emit_key_press
from .emitters import scroll as emit_scroll
from .emitters import send_text as emit_text
from .endpoint import ConnectionEndpoint
from .errors import ConnectInProgress, InvalidAddressFormat, MicrophoneUnavailable
from .gesture import DEFAULT_SENSITIVITY, GestureTranslator
from .message import AudioChunk, CommandValidator, RelayCommand, encode
from .notify import Level, Notification, Notifier, log_notifier
from .ws_client import TransportEvent, WebSocketTransport

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


TRANSITIONS: Dict[Tuple[ConnectionState, TransportEvent], ConnectionState] = {
    (ConnectionState.CONNECTING, TransportEvent.OPEN): ConnectionState.CONNECTED,
    (ConnectionState.CONNECTING, TransportEvent.ERROR): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTING, TransportEvent.CLOSE): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, TransportEvent.ERROR): ConnectionState.DISCONNECTED,
    (ConnectionState.CONNECTED, TransportEvent.CLOSE): ConnectionState.DISCONNECTED,
}


def next_state(state: ConnectionState, event: TransportEvent) -> Optional[ConnectionState]:
    """Transition for a lifecycle event, or None if the event is not expected in this state."""
    return TRANSITIONS.get((state, event))


TransportFactory = Callable[..., Any]


class RemoteSession:
    """
    Device-side session aggregate.

    Handlers are synchronous and run to completion on the event loop;
    waiting for the connection to open is expressed by the OPEN event, not
    by blocking.
    """

    def __init__(
        self,
        notifier: Notifier = log_notifier,
        haptic: HapticFn = no_haptics,
        sensitivity: float = DEFAULT_SENSITIVITY,
        capture: CaptureConfig = DEFAULT_CAPTURE,
        transport_factory: TransportFactory = WebSocketTransport,
        open_stream: Callable[..., Any] = open_input_stream,
    ):
        """
        Args:
            notifier: Receives user-visible notifications
            haptic: Haptic primitive for click/key feedback
            sensitivity: Gesture delta multiplier
            capture: Microphone capture configuration
            transport_factory: Builds a transport for (url, on_event=...)
            open_stream: Opens the microphone stream
        """
        self.notifier = notifier
        self.haptic = haptic
        self.capture = capture
        self._transport_factory = transport_factory
        self._open_stream = open_stream

        self.gestures = GestureTranslator(sensitivity=sensitivity)
        self.text_buffer = TextBuffer()
        self.validator = CommandValidator()

        self._state = ConnectionState.DISCONNECTED
        self._transport: Any = None
        self._endpoint: Optional[ConnectionEndpoint] = None
        self._audio: Optional[AudioRelaySession] = None
        self._closed = asyncio.Event()
        self._closed.set()
        self._settled = asyncio.Event()
        self._settled.set()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def endpoint(self) -> Optional[ConnectionEndpoint]:
        return self._endpoint

    @property
    def transport(self) -> Any:
        return self._transport

    def connect(self, endpoint: ConnectionEndpoint) -> Any:
        """
        Start connecting to an endpoint.

        Returns:
            The new transport handle (still Connecting)

        Raises:
            ConnectInProgress: If a connection is already Connecting or Connected
        """
        if self._state is not ConnectionState.DISCONNECTED:
            message = f"cannot connect while {self._state.value}"
            self._notify("connection_error", Level.ERROR, f"Could not connect to host: {message}")
            raise ConnectInProgress(message)

        logger.info(f"Connecting to {endpoint.redacted_url()}")
        self._endpoint = endpoint
        self.validator.reset_stats()
        self._transport = self._transport_factory(endpoint.url, on_event=self._on_transport_event)
        self._state = ConnectionState.CONNECTING
        self._closed.clear()
        self._settled.clear()
        self._transport.start()
        return self._transport

    def connect_manual(self, host: str, port: str, pin: str) -> Any:
        """Connect using manually entered fields."""
        return self.connect(self._parse(lambda: ConnectionEndpoint.from_fields(host, port, pin)))

    def connect_url(self, url: str) -> Any:
        """Connect using a URL, e.g. a decoded QR payload."""
        return self.connect(self._parse(lambda: ConnectionEndpoint.from_url(url)))

    def _parse(self, build: Callable[[], ConnectionEndpoint]) -> ConnectionEndpoint:
        try:
            return build()
        except InvalidAddressFormat as e:
            self._notify("invalid_address", Level.ERROR, f"Invalid address: {e}")
            raise

    def disconnect(self) -> None:
        """User-initiated disconnect. Safe to call in any state."""
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._teardown()
        self._notify("disconnected", Level.INFO, "Disconnected from host")

    async def wait_closed(self) -> None:
        """Wait until the session is back to Disconnected."""
        await self._closed.wait()

    async def wait_settled(self) -> bool:
        """Wait until a pending connect has opened or failed. Returns True if Connected."""
        await self._settled.wait()
        return self.connected

    def _on_transport_event(self, transport: Any, event: TransportEvent, detail: Optional[str]) -> None:
        """Drive the state machine from a transport lifecycle event."""
        if transport is not self._transport:
            logger.debug(f"Ignoring {event.value} from a stale transport")
            return

        previous = self._state
        new_state = next_state(previous, event)
        if new_state is None:
            logger.warning(f"Unexpected {event.value} event while {previous.value}")
            return

        if new_state is ConnectionState.CONNECTED:
            self._state = new_state
            self._settled.set()
            self._notify("connected", Level.INFO, "Connection established with host")
            return

        # Every other transition ends the connection
        self._teardown()
        if previous is ConnectionState.CONNECTING:
            reason = detail or "connection closed before it opened"
            self._notify("connection_error", Level.ERROR, f"Could not connect to host: {reason}")
        elif event is TransportEvent.ERROR:
            self._notify("connection_error", Level.ERROR, f"Connection error: {detail or 'unknown'}")
        else:
            self._notify("connection_lost", Level.ERROR, "Lost connection to host")

    def _teardown(self) -> None:
        """Stop audio, release the transport, return to Disconnected."""
        if self._audio is not None:
            self._audio.stop()
            self._audio = None

        self.gestures.on_contact_end()

        transport, self._transport = self._transport, None
        if transport is not None:
            transport.close()

        self._state = ConnectionState.DISCONNECTED
        self._closed.set()
        self._settled.set()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, command: RelayCommand) -> bool:
        """
        Validate, encode and queue one command.

        Returns:
            True if the command was queued
        """
        if not self.connected or self._transport is None:
            logger.debug("Not connected, dropping command")
            return False

        valid, _ = self.validator.validate(command)
        if not valid:
            return False

        frame = encode(command)
        if not isinstance(command, AudioChunk):
            logger.debug(f"Sent: {frame}")
        return self._transport.send(frame, droppable=isinstance(command, AudioChunk))

    def pointer_move(self, x: float, y: float) -> bool:
        command = self.gestures.on_move(x, y)
        if command is None:
            return False
        return self.send(command)

    def pointer_up(self) -> None:
        self.gestures.on_contact_end()

    def click(self, button: str) -> RelayCommand:
        return emit_click(self.send, button, haptic=self.haptic)

    def scroll(self, direction: str) -> RelayCommand:
        return emit_scroll(self.send, direction)

    def press_key(self, key: str) -> RelayCommand:
        return emit_key_press(self.send, key, haptic=self.haptic)

    def send_text(self) -> Optional[RelayCommand]:
        """Send the text buffer if it holds anything but whitespace."""
        if not self.connected:
            return None
        command = emit_text(self.send, self.text_buffer)
        if command is not None:
            self._notify("text_sent", Level.INFO, "Text typed on the host")
        return command

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    @property
    def recording(self) -> bool:
        return self._audio is not None and self._audio.active

    def toggle_recording(self) -> bool:
        """Start or stop the microphone. Returns the new recording state."""
        if self.recording:
            self.stop_recording()
        else:
            self.start_recording()
        return self.recording

    def start_recording(self) -> bool:
        """
        Start relaying the microphone.

        Returns:
            True if recording started
        """
        if self.recording:
            return True
        if not self.connected:
            logger.warning("Cannot start microphone while not connected")
            return False

        audio = AudioRelaySession(self.send, config=self.capture, open_stream=self._open_stream)
        try:
            audio.start()
        except MicrophoneUnavailable as e:
            logger.error(f"Microphone error: {e}")
            self._notify("microphone_unavailable", Level.ERROR, "Could not access the microphone")
            return False

        self._audio = audio
        self._notify("microphone_on", Level.INFO, "Audio is being streamed")
        return True

    def stop_recording(self) -> None:
        if self._audio is None:
            return
        self._audio.stop()
        self._audio = None
        self._notify("microphone_off", Level.INFO, "Audio streaming stopped")

    # ------------------------------------------------------------------

    def _notify(self, category: str, level: Level, message: str) -> None:
        try:
            self.notifier(Notification(category=category, level=level, message=message))
        except Exception as e:
            logger.error(f"Notifier failed: {e}")

    def get_stats(self) -> dict:
        return {
            "state": self._state.value,
            "transport": self._transport.get_stats() if self._transport else {},
            "validator": self.validator.get_stats(),
            "gestures": self.gestures.get_stats(),
            "audio": self._audio.get_stats() if self._audio else {},
        }
