"""
MQTT Bridge to the input injector.

The gateway does not move the cursor or press keys itself. Every decoded
relay command is republished on MQTT, and the injector process (or an
audio sink) on the same host subscribes to it. Control commands go to the
command topic; audio chunks can be split off to their own topic so the
injector never has to look at them.
"""

import asyncio
import json
import logging
import threading
import time
from typing import Dict, Optional

import paho.mqtt.client as mqtt

from client_remote_control.message import AudioChunk, RelayCommand, encode

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_S = 5.0


class MQTTBridge:
    """
    Publishes relay commands to an MQTT broker.

    Payload is the command's wire JSON with a host-side ``ts`` (ms) added.
    QoS 0 throughout: a late mouse move is worth less than no mouse move.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 1883,
        cmd_topic: str = "relay/cmd",
        audio_topic: Optional[str] = None,
        connect_timeout: float = CONNECT_TIMEOUT_S,
    ):
        """
        Args:
            host: MQTT broker host
            port: MQTT broker port
            cmd_topic: Topic for control commands
            audio_topic: Topic for audio chunks (defaults to cmd_topic)
            connect_timeout: Seconds to wait for the broker's CONNACK
        """
        self.host = host
        self.port = port
        self.cmd_topic = cmd_topic
        self.audio_topic = audio_topic or cmd_topic
        self.connect_timeout = connect_timeout

        self._client: Optional[mqtt.Client] = None
        self._ready = threading.Event()

        self._published: Dict[str, int] = {}
        self._failed = 0
        self._last_publish: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self._ready.is_set()

    def start(self) -> bool:
        """
        Connect to the broker and start paho's network thread.

        Returns:
            True once the broker accepted the connection
        """
        if self._client is not None:
            return self.connected

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"relay_gateway_{int(time.time())}",
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect

        logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}")
        try:
            client.connect(self.host, self.port, keepalive=60)
        except (OSError, ValueError) as e:
            logger.error(f"MQTT broker unreachable: {e}")
            return False

        self._client = client
        client.loop_start()

        if not self._ready.wait(self.connect_timeout):
            logger.warning(f"No CONNACK within {self.connect_timeout:.0f}s, running without MQTT")
            return False
        return True

    def stop(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        client.loop_stop()
        client.disconnect()
        self._ready.clear()
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"MQTT broker refused connection: {reason_code}")
            return
        self._ready.set()
        logger.info(f"MQTT bridge publishing to {self.cmd_topic}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        self._ready.clear()
        if reason_code.is_failure:
            logger.warning(f"Lost MQTT broker: {reason_code}")

    def topic_for(self, command: RelayCommand) -> str:
        return self.audio_topic if isinstance(command, AudioChunk) else self.cmd_topic

    def publish_command(self, command: RelayCommand) -> bool:
        """
        Publish one relay command.

        Returns:
            True if paho queued the message
        """
        if not self.connected or self._client is None:
            return False

        payload = json.loads(encode(command))
        payload["ts"] = int(time.time() * 1000)

        try:
            info = self._client.publish(self.topic_for(command), json.dumps(payload), qos=0)
        except (OSError, ValueError, RuntimeError) as e:
            self._failed += 1
            logger.error(f"MQTT publish failed: {e}")
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._failed += 1
            logger.warning(f"MQTT publish rejected: {mqtt.error_string(info.rc)}")
            return False

        self._published[command.TYPE] = self._published.get(command.TYPE, 0) + 1
        self._last_publish = time.time()
        return True

    def get_stats(self) -> dict:
        return {
            "connected": self.connected,
            "messages_sent": sum(self._published.values()),
            "messages_failed": self._failed,
            "published_by_type": dict(self._published),
            "last_send_time": self._last_publish,
        }


class AsyncMQTTBridge:
    """MQTTBridge for the event loop; blocking calls run in the default executor."""

    def __init__(self, **kwargs):
        self._bridge = MQTTBridge(**kwargs)

    @property
    def connected(self) -> bool:
        return self._bridge.connected

    async def start(self) -> bool:
        return await asyncio.get_running_loop().run_in_executor(None, self._bridge.start)

    async def stop(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self._bridge.stop)

    async def publish_command(self, command: RelayCommand) -> bool:
        return await asyncio.get_running_loop().run_in_executor(
            None, self._bridge.publish_command, command
        )

    def get_stats(self) -> dict:
        return self._bridge.get_stats()
