from __future__ import annotations

import asyncio
import json

import pytest

cv2 = pytest.importorskip("cv2")

from client_remote_control.errors import RelayError  # noqa: E402
from client_remote_control.main import RemoteControlClient  # noqa: E402
from client_remote_control.session import RemoteSession  # noqa: E402
from client_remote_control.ws_client import TransportEvent  # noqa: E402


@pytest.fixture
def client(fake_transport_cls, recorder, stream_opener) -> RemoteControlClient:
    client = RemoteControlClient(url="ws://192.168.0.12:8765?pin=9988", show_preview=False)
    client.notifications = recorder
    client.session = RemoteSession(
        notifier=recorder,
        transport_factory=fake_transport_cls,
        open_stream=stream_opener,
    )
    return client


def _connect(client: RemoteControlClient):
    transport = client.session.connect_url(client.url)
    transport.fire(TransportEvent.OPEN)
    return transport


def test_window_keys_map_to_commands(client) -> None:
    transport = _connect(client)

    for key in (ord("l"), ord("r"), ord("w"), ord("s"), 13, 8, 27, 9):
        client._handle_key(key)

    frames = [json.loads(frame) for frame, _ in transport.sent]
    assert frames[:4] == [
        {"type": "mouse_click", "button": "left"},
        {"type": "mouse_click", "button": "right"},
        {"type": "mouse_scroll", "delta": 1},
        {"type": "mouse_scroll", "delta": -1},
    ]
    assert [f["key"] for f in frames[4:]] == ["enter", "backspace", "esc", "tab"]


def test_text_mode_collects_and_sends(client) -> None:
    transport = _connect(client)

    client._handle_key(ord("t"))
    for ch in "hey!":
        client._handle_key(ord(ch))
    client._handle_key(8)
    client._handle_key(13)
    client._handle_key(27)
    client._handle_key(ord("l"))

    frames = [json.loads(frame) for frame, _ in transport.sent]
    assert frames == [
        {"type": "text_type", "text": "hey"},
        {"type": "mouse_click", "button": "left"},
    ]


def test_mouse_drag_is_one_contact(client) -> None:
    transport = _connect(client)

    client._on_mouse(cv2.EVENT_LBUTTONDOWN, 10, 10, 0, None)
    client._on_mouse(cv2.EVENT_MOUSEMOVE, 13, 12, cv2.EVENT_FLAG_LBUTTON, None)
    client._on_mouse(cv2.EVENT_LBUTTONUP, 13, 12, 0, None)
    # Hover without the button held
    client._on_mouse(cv2.EVENT_MOUSEMOVE, 50, 50, 0, None)

    assert [json.loads(f) for f, _ in transport.sent] == [{"type": "mouse_move", "dx": 6, "dy": 4}]


def test_quit_key_stops_loop(client) -> None:
    _connect(client)
    client._running = True
    client._handle_key(ord("q"))
    assert client._running is False


@pytest.mark.asyncio
async def test_stop_disconnects(client, recorder) -> None:
    transport = _connect(client)
    await client.stop()
    assert transport.closed
    assert recorder.categories[-1] == "disconnected"


@pytest.mark.asyncio
async def test_console_lines_map_to_commands(client) -> None:
    transport = _connect(client)
    client._running = True
    reader = asyncio.StreamReader()
    reader.feed_data(b"click right\nscroll up\nkey enter\ntype hi there\nquit\n")

    await client._run_console(reader)

    assert [json.loads(f) for f, _ in transport.sent] == [
        {"type": "mouse_click", "button": "right"},
        {"type": "mouse_scroll", "delta": 1},
        {"type": "key_press", "key": "enter"},
        {"type": "text_type", "text": "hi there"},
    ]
    assert client._running is False


@pytest.mark.asyncio
async def test_console_returns_when_session_closes(client) -> None:
    _connect(client)
    client._running = True
    # No input ever arrives; only the disconnect can end the loop
    console = asyncio.create_task(client._run_console(asyncio.StreamReader()))
    await asyncio.sleep(0)

    await client.stop()

    await asyncio.wait_for(console, timeout=1.0)


@pytest.mark.asyncio
async def test_start_fails_when_connection_is_refused(client) -> None:
    start = asyncio.create_task(client.start())
    await asyncio.sleep(0)

    client.session.transport.fire(TransportEvent.ERROR, "refused")

    with pytest.raises(RelayError):
        await start
