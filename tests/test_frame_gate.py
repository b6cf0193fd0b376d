from __future__ import annotations

import numpy as np
import pytest

from client_remote_control import frame_gate
from client_remote_control.frame_gate import FrameGate


def _frame(color: bool = True) -> np.ndarray:
    gradient = np.tile(np.arange(64, dtype=np.uint8) * 4, (48, 1))
    return np.dstack([gradient] * 3) if color else gradient


@pytest.mark.parametrize(
    "ok, frame, reason",
    [
        (False, None, "read_failed"),
        (True, None, "frame_none"),
        (True, np.zeros((0, 0, 3), dtype=np.uint8), "empty_frame"),
        (True, np.full((48, 64, 4), 128, dtype=np.uint8), "invalid_shape"),
        (True, np.zeros((48, 64, 3), dtype=np.uint8), "blank_frame"),
        (True, np.full((48, 64), 200, dtype=np.uint8), "blank_frame"),
    ],
)
def test_invalid_frames(ok, frame, reason) -> None:
    gate = FrameGate()
    result = gate.validate(ok, frame)
    assert not result.valid
    assert result.reason == reason
    assert result.frame is None


def test_valid_color_and_grayscale_frames() -> None:
    gate = FrameGate()
    color = gate.validate(True, _frame())
    gray = gate.validate(True, _frame(color=False))

    assert color.valid and color.reason == "ok"
    assert gray.valid
    assert gate.get_stats()["last_valid_shape"] == (48, 64)


def test_abort_after_invalid_streak(monkeypatch) -> None:
    now = [100.0]
    monkeypatch.setattr(frame_gate.time, "monotonic", lambda: now[0])
    gate = FrameGate(invalid_timeout_ms=2000)

    gate.validate(False, None)
    now[0] += 1.0
    gate.validate(False, None)
    assert not gate.should_abort()

    now[0] += 1.5
    assert gate.should_abort()

    gate.validate(True, _frame())
    assert gate.get_invalid_duration_ms() == 0.0
    assert not gate.should_abort()


def test_flat_frames_are_not_camera_faults(monkeypatch) -> None:
    now = [100.0]
    monkeypatch.setattr(frame_gate.time, "monotonic", lambda: now[0])
    gate = FrameGate(invalid_timeout_ms=2000)
    flat = np.full((48, 64, 3), 200, dtype=np.uint8)

    for _ in range(5):
        assert gate.validate(True, flat).reason == "blank_frame"
        now[0] += 1.0
    assert not gate.should_abort()

    gate.validate(False, None)
    now[0] += 1.0
    gate.validate(True, flat)
    assert gate.get_invalid_duration_ms() == 0.0
    assert gate.get_stats()["invalid_frames"] == 7

def test_stats() -> None:
    gate = FrameGate()
    gate.validate(True, _frame())
    gate.validate(False, None)

    stats = gate.get_stats()
    assert stats["total_frames"] == 2
    assert stats["valid_rate"] == pytest.approx(0.5)

    gate.reset()
    assert gate.get_stats()["last_valid_shape"] is None
