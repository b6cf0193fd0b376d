from __future__ import annotations

import numpy as np
import pytest

pytest.importorskip("cv2")

from client_remote_control.errors import CameraUnavailable, ScanTimeout  # noqa: E402
from client_remote_control.frame_gate import FrameGate  # noqa: E402
from client_remote_control.qr_scanner import QrScanner  # noqa: E402

FRAME = np.dstack([np.tile(np.arange(64, dtype=np.uint8) * 4, (48, 1))] * 3)


class FakeCapture:
    def __init__(self, frames, opened: bool = True):
        self.frames = list(frames)
        self.opened = opened
        self.released = False

    def isOpened(self) -> bool:
        return self.opened

    def read(self):
        if self.frames:
            return self.frames.pop(0)
        return True, FRAME

    def release(self) -> None:
        self.released = True


class FakeDetector:
    def __init__(self, payloads):
        self.payloads = list(payloads)

    def detectAndDecode(self, frame):
        payload = self.payloads.pop(0) if self.payloads else ""
        points = np.zeros((1, 4, 2)) if payload else None
        return payload, points, None


def _scanner(capture, detector, **kwargs) -> QrScanner:
    return QrScanner(capture_factory=lambda index: capture, detector=detector, rate=1000, **kwargs)


@pytest.mark.asyncio
async def test_returns_first_decoded_payload() -> None:
    capture = FakeCapture([(False, None), (True, FRAME), (True, FRAME)])
    detector = FakeDetector(["", "ws://192.168.0.12:8765?pin=9988"])

    payload = await _scanner(capture, detector).scan()

    assert payload == "ws://192.168.0.12:8765?pin=9988"
    assert capture.released


@pytest.mark.asyncio
async def test_payload_is_returned_verbatim() -> None:
    capture = FakeCapture([])
    payload = await _scanner(capture, FakeDetector(["hello world"])).scan()
    assert payload == "hello world"


@pytest.mark.asyncio
async def test_camera_not_opened() -> None:
    capture = FakeCapture([], opened=False)
    with pytest.raises(CameraUnavailable):
        await _scanner(capture, FakeDetector([])).scan()


@pytest.mark.asyncio
async def test_camera_that_keeps_failing_aborts() -> None:
    capture = FakeCapture([(False, None)] * 5)
    scanner = _scanner(capture, FakeDetector([]))
    scanner.frame_gate = FrameGate(invalid_timeout_ms=0)

    with pytest.raises(CameraUnavailable):
        await scanner.scan()
    assert capture.released



@pytest.mark.asyncio
async def test_flat_frames_keep_scanning_until_timeout() -> None:
    flat = np.full((48, 64, 3), 200, dtype=np.uint8)
    capture = FakeCapture([(True, flat)] * 1000)
    scanner = _scanner(capture, FakeDetector([]), timeout_s=0.05)
    scanner.frame_gate = FrameGate(invalid_timeout_ms=0)

    with pytest.raises(ScanTimeout):
        await scanner.scan()
    assert capture.released

@pytest.mark.asyncio
async def test_scan_times_out() -> None:
    capture = FakeCapture([])
    with pytest.raises(ScanTimeout):
        await _scanner(capture, FakeDetector([]), timeout_s=0.05).scan()
    assert capture.released


def test_decode_frame_without_code() -> None:
    scanner = _scanner(FakeCapture([]), FakeDetector([""]))
    assert scanner.decode_frame(FRAME) is None
