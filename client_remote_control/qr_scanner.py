"""
QR Scanner - reads the host's connection URL from a camera.

The payload is treated as an opaque string; checking that it is a relay
URL is the job of ConnectionEndpoint.from_url.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional

import cv2

from .errors import CameraUnavailable, ScanTimeout
from .frame_gate import FrameGate

logger = logging.getLogger(__name__)


class QrScanner:
    """
    Camera QR decoder.

    Grabs frames at a fixed rate, validates them through FrameGate, and
    returns the first non-empty QR payload.
    """

    def __init__(
        self,
        camera_index: int = 0,
        timeout_s: float = 60.0,
        rate: float = 10.0,
        capture_factory: Callable[[int], Any] = cv2.VideoCapture,
        detector: Optional[Any] = None,
    ):
        """
        Args:
            camera_index: Camera device index
            timeout_s: Give up after this many seconds
            rate: Scan attempts per second
            capture_factory: Opens a capture for a camera index
            detector: QR detector, cv2.QRCodeDetector by default
        """
        self.camera_index = camera_index
        self.timeout_s = timeout_s
        self.rate = rate
        self._capture_factory = capture_factory
        self.detector = detector if detector is not None else cv2.QRCodeDetector()
        self.frame_gate = FrameGate()

    def decode_frame(self, frame) -> Optional[str]:
        """Decode a QR code from one frame. Returns None if none was found."""
        try:
            payload, points, _ = self.detector.detectAndDecode(frame)
        except cv2.error as e:
            logger.debug(f"QR decode error: {e}")
            return None
        if points is None or not payload:
            return None
        return payload

    async def scan(self) -> str:
        """
        Scan until a QR payload is found.

        Returns:
            The decoded payload string

        Raises:
            CameraUnavailable: If the camera cannot be opened or keeps failing
            ScanTimeout: If nothing was decoded within timeout_s
        """
        logger.info(f"Opening camera index: {self.camera_index}")
        cap = self._capture_factory(self.camera_index)
        if not cap.isOpened():
            raise CameraUnavailable("could not access the camera, check permissions")

        self.frame_gate.reset()
        deadline = time.monotonic() + self.timeout_s
        interval = 1.0 / self.rate
        try:
            while time.monotonic() < deadline:
                ok, frame = cap.read()
                result = self.frame_gate.validate(ok, frame)
                if result.valid:
                    payload = self.decode_frame(result.frame)
                    if payload:
                        logger.info("QR code decoded")
                        return payload
                elif self.frame_gate.should_abort():
                    raise CameraUnavailable(f"camera stopped delivering frames ({result.reason})")
                await asyncio.sleep(interval)
        finally:
            cap.release()

        raise ScanTimeout(f"no QR code found within {self.timeout_s:.0f}s")
