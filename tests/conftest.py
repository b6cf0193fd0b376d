from __future__ import annotations

import pytest

from client_remote_control.notify import NotificationRecorder


class FakeTransport:
    """Stands in for WebSocketTransport; lifecycle events are fired by the test."""

    instances: list = []

    def __init__(self, url, on_event=None):
        self.url = url
        self.on_event = on_event
        self.sent: list = []
        self.started = False
        self.closed = False
        FakeTransport.instances.append(self)

    def start(self) -> None:
        self.started = True

    def send(self, frame: str, droppable: bool = False) -> bool:
        if self.closed:
            return False
        self.sent.append((frame, droppable))
        return True

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        pass

    def fire(self, event, detail=None) -> None:
        self.on_event(self, event, detail)

    def get_stats(self) -> dict:
        return {"queued": len(self.sent)}


class FakeStream:
    """Stands in for a sounddevice InputStream."""

    def __init__(self, callback, fail_on_stop: bool = False):
        self.callback = callback
        self.fail_on_stop = fail_on_stop
        self.calls: list = []

    def stop(self) -> None:
        self.calls.append("stop")
        if self.fail_on_stop:
            raise RuntimeError("device vanished")

    def close(self) -> None:
        self.calls.append("close")


class StreamOpener:
    """open_stream replacement that records the streams it opens."""

    def __init__(self, fail_on_stop: bool = False):
        self.fail_on_stop = fail_on_stop
        self.streams: list = []

    def __call__(self, config, callback):
        stream = FakeStream(callback, fail_on_stop=self.fail_on_stop)
        self.streams.append(stream)
        return stream

    @property
    def last(self) -> FakeStream:
        return self.streams[-1]


@pytest.fixture
def fake_transport_cls():
    FakeTransport.instances = []
    return FakeTransport


@pytest.fixture
def recorder() -> NotificationRecorder:
    return NotificationRecorder(forward=None)


@pytest.fixture
def stream_opener() -> StreamOpener:
    return StreamOpener()


@pytest.fixture
def failing_stream_opener() -> StreamOpener:
    return StreamOpener(fail_on_stop=True)
