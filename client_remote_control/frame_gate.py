"""
Camera frame gate for QR scanning.

A QR code can only be decoded from a frame that actually has contrast, so
the gate rejects broken reads, malformed arrays and flat frames (lens
covered, camera pointed at a wall) before they reach the detector. Only
broken reads and malformed arrays count as camera faults; a camera that
produces nothing but faults for too long makes the scan give up.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)

# Minimum spread between dark and light pixels for a decodable frame
MIN_CONTRAST = 8

# Rejections that mean the camera itself is failing
CAMERA_FAULTS = frozenset({"read_failed", "frame_none", "empty_frame", "invalid_shape"})


@dataclass
class FrameValidationResult:
    """Outcome of checking one frame."""
    valid: bool
    reason: str
    frame: Optional[np.ndarray] = None


def _shape_ok(frame: np.ndarray) -> bool:
    if frame.ndim == 2:
        return True
    return frame.ndim == 3 and frame.shape[2] == 3


def _contrast(frame: np.ndarray) -> float:
    # Every 8th pixel is plenty for a flat-field check
    sample = frame[::8, ::8]
    return float(sample.max()) - float(sample.min())


class FrameGate:
    """
    Tracks camera health while frames are being scanned.

    A fault streak starts at the first camera fault and ends at the next
    frame the camera actually delivered, flat or not; should_abort() is
    true once the streak lasts invalid_timeout_ms.
    """

    def __init__(self, invalid_timeout_ms: int = 2000, min_contrast: float = MIN_CONTRAST):
        """
        Args:
            invalid_timeout_ms: Length of a fault streak that aborts the scan
            min_contrast: Minimum max-min pixel spread of an accepted frame
        """
        self.invalid_timeout_ms = invalid_timeout_ms
        self.min_contrast = min_contrast

        self._streak_started: Optional[float] = None
        self._last_valid_shape: Optional[Tuple[int, ...]] = None
        self._accepted = 0
        self._rejected = 0

    def validate(self, ok: bool, frame: Optional[np.ndarray]) -> FrameValidationResult:
        """
        Check the (ok, frame) pair returned by cap.read().

        Returns:
            FrameValidationResult; frame is only set for accepted frames
        """
        reason = self._reject_reason(ok, frame)
        if reason is not None:
            self._rejected += 1
            if reason not in CAMERA_FAULTS:
                self._streak_started = None
            elif self._streak_started is None:
                self._streak_started = time.monotonic()
                logger.debug(f"Camera frames rejected ({reason})")
            return FrameValidationResult(False, reason)

        self._accepted += 1
        self._streak_started = None
        self._last_valid_shape = frame.shape
        return FrameValidationResult(True, "ok", frame)

    def _reject_reason(self, ok: bool, frame: Optional[np.ndarray]) -> Optional[str]:
        if not ok:
            return "read_failed"
        if frame is None:
            return "frame_none"
        if frame.size == 0:
            return "empty_frame"
        if not _shape_ok(frame):
            return "invalid_shape"
        if _contrast(frame) < self.min_contrast:
            return "blank_frame"
        return None

    def should_abort(self) -> bool:
        if self._streak_started is None:
            return False
        return self.get_invalid_duration_ms() >= self.invalid_timeout_ms

    def get_invalid_duration_ms(self) -> float:
        """Milliseconds since the current fault streak began, 0 without one."""
        if self._streak_started is None:
            return 0.0
        return (time.monotonic() - self._streak_started) * 1000

    def reset(self) -> None:
        self._streak_started = None
        self._last_valid_shape = None

    def get_stats(self) -> dict:
        total = self._accepted + self._rejected
        return {
            "total_frames": total,
            "valid_frames": self._accepted,
            "invalid_frames": self._rejected,
            "valid_rate": self._accepted / total if total > 0 else 0.0,
            "current_invalid_duration_ms": self.get_invalid_duration_ms(),
            "last_valid_shape": self._last_valid_shape,
        }
