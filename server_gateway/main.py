#!/usr/bin/env python3
"""
Relay Gateway - host-side entry point.

Accepts one device over WebSocket, checks its PIN, decodes its relay
commands and hands them to the input injector over MQTT. On startup the
connection URL is logged and printed as a terminal QR code for the device
to scan.

Environment Variables:
    RELAY_HOST: Bind address (default: 0.0.0.0)
    RELAY_PORT: Port (default: 8765)
    RELAY_PIN: Fixed PIN (default: 4 random digits per start)
    MQTT_ENABLED: Set to 0 to run without a broker (default: 1)
    MQTT_HOST: MQTT broker host (default: localhost)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_TOPIC: Command topic (default: relay/cmd)
    MQTT_AUDIO_TOPIC: Audio chunk topic (default: same as MQTT_TOPIC)
    LOG_LEVEL: Logging level (default: INFO)

Usage:
    python -m server_gateway.main
"""

import asyncio
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Mapping, Optional

import uvicorn

from client_remote_control.message import AudioChunk, RelayCommand

from .mqtt_bridge import AsyncMQTTBridge
from .pairing import connection_url, generate_pin, get_local_ip, render_qr
from .ws_server import WebSocketServer

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    """Gateway settings, normally read from the environment."""
    pin: str = field(default_factory=generate_pin)
    host: str = "0.0.0.0"
    port: int = 8765
    enable_mqtt: bool = True
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_topic: str = "relay/cmd"
    mqtt_audio_topic: Optional[str] = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] = os.environ) -> 'GatewayConfig':
        return cls(
            pin=env.get("RELAY_PIN") or generate_pin(),
            host=env.get("RELAY_HOST", "0.0.0.0"),
            port=int(env.get("RELAY_PORT", "8765")),
            enable_mqtt=env.get("MQTT_ENABLED", "1").lower() not in ("0", "false", "no"),
            mqtt_host=env.get("MQTT_HOST", "localhost"),
            mqtt_port=int(env.get("MQTT_PORT", "1883")),
            mqtt_topic=env.get("MQTT_TOPIC", "relay/cmd"),
            mqtt_audio_topic=env.get("MQTT_AUDIO_TOPIC") or None,
        )

    @property
    def advertised_host(self) -> str:
        """Address the device should dial (the LAN IP when bound to all interfaces)."""
        return get_local_ip() if self.host in ("0.0.0.0", "") else self.host

    @property
    def url(self) -> str:
        return connection_url(self.advertised_host, self.port, self.pin)


class ServerGateway:
    """
    Device -> WebSocketServer -> ServerGateway -> MQTT -> injector

    Commands are dropped (and logged at debug) while no broker is
    connected; the device link keeps working either way.
    """

    def __init__(self, config: GatewayConfig):
        self.config = config
        self.ws_server = WebSocketServer(
            pin=config.pin,
            on_command=self._on_command,
            on_client_connected=self._on_client_connected,
            on_client_disconnected=self._on_client_disconnected,
        )
        self.mqtt_bridge: Optional[AsyncMQTTBridge] = None
        self._unforwarded = 0

    async def start(self) -> None:
        if self.config.enable_mqtt:
            self.mqtt_bridge = AsyncMQTTBridge(
                host=self.config.mqtt_host,
                port=self.config.mqtt_port,
                cmd_topic=self.config.mqtt_topic,
                audio_topic=self.config.mqtt_audio_topic,
            )
            if not await self.mqtt_bridge.start():
                logger.warning("Continuing without MQTT, commands will only be logged")
        else:
            logger.info("MQTT disabled, commands will only be logged")

    async def stop(self) -> None:
        if self.mqtt_bridge:
            await self.mqtt_bridge.stop()
            self.mqtt_bridge = None

    def announce(self) -> str:
        """Log the connection URL and print it as a QR code."""
        url = self.config.url
        logger.info(f"Device URL: {url}  (PIN {self.config.pin})")
        print(render_qr(url))
        return url

    async def _on_command(self, command: RelayCommand) -> None:
        if self.mqtt_bridge and self.mqtt_bridge.connected:
            if await self.mqtt_bridge.publish_command(command):
                return
        self._unforwarded += 1
        if not isinstance(command, AudioChunk):
            logger.debug(f"Not forwarded: {command}")

    async def _on_client_connected(self, client_id: str) -> None:
        logger.info(f"{client_id} paired")

    async def _on_client_disconnected(self, client_id: str) -> None:
        logger.info(f"{client_id} left, waiting for the next device")

    def get_app(self):
        return self.ws_server.app

    def get_stats(self) -> dict:
        return {
            "ws_server": self.ws_server.get_stats(),
            "mqtt_bridge": self.mqtt_bridge.get_stats() if self.mqtt_bridge else {},
            "unforwarded": self._unforwarded,
        }


async def main_async(config: Optional[GatewayConfig] = None) -> None:
    """Run the gateway until uvicorn sees SIGINT/SIGTERM."""
    config = config or GatewayConfig.from_env()
    gateway = ServerGateway(config)

    server = uvicorn.Server(uvicorn.Config(
        gateway.get_app(),
        host=config.host,
        port=config.port,
        log_level="info",
        access_log=False,
    ))

    try:
        await gateway.start()
        gateway.announce()
        await server.serve()
    finally:
        await gateway.stop()


def main() -> None:
    try:
        asyncio.run(main_async())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
