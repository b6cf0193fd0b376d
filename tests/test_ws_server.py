from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from client_remote_control.message import KeyPress, MouseMove
from server_gateway.ws_server import WebSocketServer

PIN = "4821"


class FakeServerSocket:
    """Minimal stand-in for a FastAPI WebSocket, fed from a queue."""

    def __init__(self, pin: str = PIN) -> None:
        self.query_params = {"pin": pin}
        self.client = ("192.168.0.40", 50000)
        self.accepted = False
        self.close_code = None
        self.inbound: asyncio.Queue = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000) -> None:
        self.close_code = code

    async def receive(self) -> dict:
        return await self.inbound.get()

    def feed_text(self, text: str) -> None:
        self.inbound.put_nowait({"type": "websocket.receive", "text": text})

    def feed_disconnect(self) -> None:
        self.inbound.put_nowait({"type": "websocket.disconnect", "code": 1000})


def _server(commands: list) -> WebSocketServer:
    async def on_command(command) -> None:
        commands.append(command)

    return WebSocketServer(pin=PIN, on_command=on_command)


@pytest.mark.asyncio
async def test_decoded_commands_are_forwarded_and_malformed_skipped() -> None:
    commands = []
    server = _server(commands)
    ws = FakeServerSocket()

    ws.feed_text('{"type":"mouse_move","dx":3,"dy":-1}')
    ws.feed_text("garbage")
    ws.feed_text('{"type":"mouse_click","button":"middle"}')
    ws.inbound.put_nowait({"type": "websocket.receive", "bytes": b"\x00"})
    ws.feed_text('{"type":"key_press","key":"f5"}')
    ws.feed_disconnect()

    await server._handle_websocket(ws)

    assert ws.accepted
    assert commands == [MouseMove(dx=3, dy=-1), KeyPress(key="f5")]
    stats = server.get_stats()
    assert stats["total_messages"] == 5
    assert stats["invalid_messages"] == 3
    assert stats["commands_by_type"] == {"mouse_move": 1, "key_press": 1}
    assert stats["active_client"] is None


@pytest.mark.asyncio
async def test_wrong_pin_is_closed_with_policy_violation() -> None:
    server = _server([])
    ws = FakeServerSocket(pin="0000")

    await server._handle_websocket(ws)

    assert not ws.accepted
    assert ws.close_code == 1008
    assert server.get_stats()["rejected_clients"] == 1


@pytest.mark.asyncio
async def test_second_device_is_turned_away() -> None:
    server = _server([])
    first = FakeServerSocket()
    first_task = asyncio.create_task(server._handle_websocket(first))
    for _ in range(3):
        await asyncio.sleep(0)
    assert server.get_active_client() == "device_1"

    second = FakeServerSocket()
    await server._handle_websocket(second)

    assert second.close_code == 1013
    assert not second.accepted

    first.feed_disconnect()
    await first_task
    assert server.get_active_client() is None



class DroppedBeforeAccept(FakeServerSocket):
    async def accept(self) -> None:
        raise RuntimeError("client went away")


@pytest.mark.asyncio
async def test_failed_accept_frees_the_slot() -> None:
    server = _server([])

    await server._handle_websocket(DroppedBeforeAccept())
    assert server.get_active_client() is None

    ws = FakeServerSocket()
    ws.feed_disconnect()
    await server._handle_websocket(ws)

    assert ws.accepted
    assert ws.close_code is None

@pytest.mark.asyncio
async def test_failing_command_callback_does_not_drop_the_device() -> None:
    seen = []

    async def on_command(command) -> None:
        seen.append(command)
        raise RuntimeError("injector down")

    server = WebSocketServer(pin=PIN, on_command=on_command)
    ws = FakeServerSocket()
    ws.feed_text('{"type":"mouse_scroll","delta":1}')
    ws.feed_text('{"type":"mouse_scroll","delta":-1}')
    ws.feed_disconnect()

    await server._handle_websocket(ws)

    assert len(seen) == 2


def test_health_endpoint() -> None:
    client = TestClient(WebSocketServer(pin=PIN).app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_websocket_wrong_pin_rejected() -> None:
    client = TestClient(WebSocketServer(pin=PIN).app)
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/?pin=0000"):
            pass
    assert exc_info.value.code == 1008


def test_websocket_forwards_commands() -> None:
    commands = []
    with TestClient(_server(commands).app) as client:
        with client.websocket_connect(f"/?pin={PIN}") as ws:
            ws.send_text('{"type":"text_type","text":"hi"}')
            ws.send_text('{"type":"key_press","key":"enter"}')

    assert [c.TYPE for c in commands] == ["text_type", "key_press"]
