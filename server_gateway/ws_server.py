"""
WebSocket Server for relay command reception.

Handles:
- FastAPI WebSocket endpoint at / (ws://host:port?pin=XXXX)
- Static PIN check
- Single-client lock (a second device is turned away)
- Decoding every frame; malformed frames are discarded, not fatal
"""

import asyncio
import logging
import time
from typing import Optional, Callable, Awaitable, Dict
from dataclasses import dataclass

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from client_remote_control.errors import MalformedFrame
from client_remote_control.message import RelayCommand, decode

from .pairing import verify_pin

logger = logging.getLogger(__name__)


@dataclass
class ClientState:
    """State of the connected device."""
    client_id: str
    connected_at: float
    last_message_at: float
    message_count: int = 0


class WebSocketServer:
    """
    WebSocket server for receiving relay commands.

    Features:
    - PIN authentication via the pin query parameter
    - One device at a time
    - Command forwarding callback
    """

    def __init__(
        self,
        pin: str,
        on_command: Optional[Callable[[RelayCommand], Awaitable[None]]] = None,
        on_client_connected: Optional[Callable[[str], Awaitable[None]]] = None,
        on_client_disconnected: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        """
        Initialize WebSocket server.

        Args:
            pin: PIN devices must present
            on_command: Callback for decoded relay commands
            on_client_connected: Callback when a device connects
            on_client_disconnected: Callback when the device disconnects
        """
        self.pin = pin
        self.on_command = on_command
        self.on_client_connected = on_client_connected
        self.on_client_disconnected = on_client_disconnected

        self._active_client: Optional[ClientState] = None
        self._client_lock = asyncio.Lock()
        self._client_counter = 0

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0
        self._rejected_clients = 0
        self._commands_by_type: Dict[str, int] = {}

        self.app = FastAPI(title="Remote Input Relay Gateway")

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", **self.get_stats()}

        @self.app.websocket("/")
        async def websocket_relay(websocket: WebSocket):
            """WebSocket endpoint for relay commands."""
            await self._handle_websocket(websocket)

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        if not verify_pin(websocket.query_params.get("pin", ""), self.pin):
            self._rejected_clients += 1
            logger.warning(f"Wrong PIN from {websocket.client}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        async with self._client_lock:
            if self._active_client is not None:
                self._rejected_clients += 1
                logger.warning(
                    f"Rejecting {websocket.client}: {self._active_client.client_id} is connected"
                )
                await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
                return

            self._client_counter += 1
            client_id = f"device_{self._client_counter}"
            now = time.time()
            self._active_client = ClientState(
                client_id=client_id,
                connected_at=now,
                last_message_at=now,
            )

        try:
            await websocket.accept()
            logger.info(f"Device connected: {client_id} from {websocket.client}")
            if self.on_client_connected:
                await self.on_client_connected(client_id)
            await self._receive_messages(websocket, client_id)
        except WebSocketDisconnect:
            logger.info(f"Device disconnected: {client_id}")
        except Exception as e:
            logger.error(f"Error handling device {client_id}: {e}")
        finally:
            async with self._client_lock:
                if self._active_client and self._active_client.client_id == client_id:
                    self._active_client = None
            if self.on_client_disconnected:
                await self.on_client_disconnected(client_id)

    async def _receive_messages(self, websocket: WebSocket, client_id: str) -> None:
        """Receive, decode and forward frames until the device goes away."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            self._total_messages += 1

            text = message.get("text")
            if text is None:
                self._invalid_messages += 1
                logger.warning(f"Binary frame from {client_id} discarded")
                continue

            try:
                command = decode(text)
            except MalformedFrame as e:
                self._invalid_messages += 1
                logger.warning(f"Malformed frame from {client_id}: {e}")
                continue

            self._commands_by_type[command.TYPE] = self._commands_by_type.get(command.TYPE, 0) + 1
            if self._active_client and self._active_client.client_id == client_id:
                self._active_client.last_message_at = time.time()
                self._active_client.message_count += 1

            if self.on_command:
                try:
                    await self.on_command(command)
                except Exception as e:
                    logger.error(f"Error in command callback: {e}")

    def get_active_client(self) -> Optional[str]:
        """Get the ID of the connected device."""
        return self._active_client.client_id if self._active_client else None

    def get_stats(self) -> dict:
        """Get server statistics."""
        return {
            "active_client": self.get_active_client(),
            "total_messages": self._total_messages,
            "invalid_messages": self._invalid_messages,
            "rejected_clients": self._rejected_clients,
            "commands_by_type": dict(self._commands_by_type),
        }
