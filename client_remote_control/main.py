#!/usr/bin/env python3
"""
Remote Control Client - Main Entry Point

Turns this machine into a remote touchpad/keyboard/microphone for a
desktop host running the relay gateway. The OpenCV window is the
touchpad: drag with the left button held to move the host cursor.

Window keys:
    l / r       left / right click
    w / s       scroll up / down
    Enter, Backspace, Esc, Tab    forwarded as key presses
    t           text mode (type, Enter sends, Esc leaves)
    m           toggle microphone
    q           disconnect and quit

Usage:
    python -m client_remote_control.main --host 192.168.0.12 --port 8765 --pin 9988
    python -m client_remote_control.main --url "ws://192.168.0.12:8765?pin=9988"
    python -m client_remote_control.main --scan-qr --camera 0
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

import cv2
import numpy as np

from .audio_relay import CaptureConfig
from .errors import CameraUnavailable, RelayError, ScanTimeout
from .notify import Level, Notification, NotificationRecorder
from .qr_scanner import QrScanner
from .session import RemoteSession

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

WINDOW_NAME = "Remote Touchpad"

# cv2.waitKey codes
KEY_ENTER = (10, 13)
KEY_BACKSPACE = (8, 127)
KEY_ESC = 27
KEY_TAB = 9


class RemoteControlClient:
    """
    Main client that integrates all components:
    - Endpoint entry (manual, URL, or QR scan)
    - Remote session (transport, gestures, emitters, audio)
    - Touchpad window or console input
    """

    def __init__(
        self,
        url: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[str] = None,
        pin: Optional[str] = None,
        scan_qr: bool = False,
        camera_index: int = 0,
        sensitivity: float = 2.0,
        chunk_ms: int = 100,
        show_preview: bool = True,
        rate: float = 60.0,
    ):
        """
        Initialize the remote control client.

        Args:
            url: Connection URL (ws://host:port?pin=XXXX)
            host: Host address for manual entry
            port: Port for manual entry
            pin: PIN for manual entry
            scan_qr: Read the connection URL from a QR code
            camera_index: Camera used for QR scanning
            sensitivity: Touchpad delta multiplier
            chunk_ms: Audio chunk interval (ms)
            show_preview: Use the OpenCV touchpad window (else console input)
            rate: UI loop rate (Hz)
        """
        self.url = url
        self.host = host
        self.port = port
        self.pin = pin
        self.scan_qr = scan_qr
        self.camera_index = camera_index
        self.show_preview = show_preview
        self.rate = rate

        self.notifications = NotificationRecorder()
        self.session = RemoteSession(
            notifier=self.notifications,
            sensitivity=sensitivity,
            capture=CaptureConfig(chunk_ms=chunk_ms),
        )

        self._running = False
        self._text_mode = False
        self.font = cv2.FONT_HERSHEY_SIMPLEX

    async def start(self) -> None:
        """Resolve the endpoint and connect."""
        logger.info("Starting Remote Control Client...")

        if self.scan_qr:
            try:
                payload = await QrScanner(camera_index=self.camera_index).scan()
            except (CameraUnavailable, ScanTimeout) as e:
                self.notifications(Notification("scan_error", Level.ERROR, f"Scan error: {e}"))
                raise
            self.session.connect_url(payload)
        elif self.url:
            self.session.connect_url(self.url)
        else:
            self.session.connect_manual(self.host or "", self.port or "", self.pin or "")

        if not await self.session.wait_settled():
            raise RelayError("connection failed")

        if self.show_preview:
            cv2.namedWindow(WINDOW_NAME)
            cv2.setMouseCallback(WINDOW_NAME, self._on_mouse)

        self._running = True
        logger.info("Remote Control Client started")

    async def stop(self) -> None:
        """Disconnect and clean up resources."""
        logger.info("Stopping Remote Control Client...")
        self._running = False

        transport = self.session.transport
        self.session.disconnect()
        if transport is not None:
            await transport.wait_closed()

        if self.show_preview:
            cv2.destroyAllWindows()

        logger.info("Remote Control Client stopped")

    async def run(self) -> None:
        """Main UI loop."""
        if self.show_preview:
            await self._run_window()
        else:
            await self._run_console()

    async def _run_window(self) -> None:
        target_dt = 1.0 / self.rate
        while self._running and self.session.connected:
            cv2.imshow(WINDOW_NAME, self._draw())
            # Mouse callbacks fire inside waitKey
            key = cv2.waitKey(1)
            if key != -1:
                self._handle_key(key & 0xFF)
            await asyncio.sleep(target_dt)

    async def _run_console(self, reader: Optional[asyncio.StreamReader] = None) -> None:
        """Line-based input: click left|right, scroll up|down, key NAME, type TEXT, mic, quit."""
        pipe = None
        if reader is None:
            reader = asyncio.StreamReader()
            pipe, _ = await asyncio.get_running_loop().connect_read_pipe(
                lambda: asyncio.StreamReaderProtocol(reader), sys.stdin
            )

        print("Commands: click left|right, scroll up|down, key NAME, type TEXT, mic, quit")
        closed = asyncio.ensure_future(self.session.wait_closed())
        try:
            while self._running and self.session.connected:
                next_line = asyncio.ensure_future(reader.readline())
                await asyncio.wait({next_line, closed}, return_when=asyncio.FIRST_COMPLETED)
                if not next_line.done():
                    next_line.cancel()
                    break
                line = next_line.result()
                if not line:
                    break
                self._handle_console_line(line.decode(errors="replace"))
        finally:
            closed.cancel()
            if pipe is not None:
                pipe.close()

    def _handle_console_line(self, line: str) -> None:
        cmd, _, arg = line.strip().partition(" ")
        try:
            if cmd == "click":
                self.session.click(arg)
            elif cmd == "scroll":
                self.session.scroll(arg)
            elif cmd == "key":
                self.session.press_key(arg)
            elif cmd == "type":
                self.session.text_buffer.append(arg)
                self.session.send_text()
            elif cmd == "mic":
                self.session.toggle_recording()
            elif cmd in ("quit", "exit"):
                self._running = False
            elif cmd:
                print(f"Unknown command: {cmd}")
        except ValueError as e:
            print(f"Error: {e}")

    def _on_mouse(self, event, x, y, flags, param) -> None:
        """Touchpad: left-button drag is one contact."""
        if event == cv2.EVENT_LBUTTONDOWN:
            self.session.pointer_up()
            self.session.pointer_move(x, y)
        elif event == cv2.EVENT_MOUSEMOVE and flags & cv2.EVENT_FLAG_LBUTTON:
            self.session.pointer_move(x, y)
        elif event == cv2.EVENT_LBUTTONUP:
            self.session.pointer_up()

    def _handle_key(self, key: int) -> None:
        if self._text_mode:
            self._handle_text_key(key)
            return

        if key == ord('q'):
            logger.info("Quit requested")
            self._running = False
        elif key == ord('l'):
            self.session.click("left")
        elif key == ord('r'):
            self.session.click("right")
        elif key == ord('w'):
            self.session.scroll("up")
        elif key == ord('s'):
            self.session.scroll("down")
        elif key == ord('m'):
            self.session.toggle_recording()
        elif key == ord('t'):
            self._text_mode = True
        elif key in KEY_ENTER:
            self.session.press_key("enter")
        elif key in KEY_BACKSPACE:
            self.session.press_key("backspace")
        elif key == KEY_ESC:
            self.session.press_key("esc")
        elif key == KEY_TAB:
            self.session.press_key("tab")

    def _handle_text_key(self, key: int) -> None:
        buffer = self.session.text_buffer
        if key in KEY_ENTER:
            self.session.send_text()
        elif key in KEY_BACKSPACE:
            buffer.backspace()
        elif key == KEY_ESC:
            self._text_mode = False
        elif 32 <= key < 127:
            buffer.append(chr(key))

    def _draw(self) -> np.ndarray:
        """Draw the touchpad surface with status overlay."""
        frame = np.full((360, 480, 3), 24, dtype=np.uint8)

        conn_color = (0, 255, 0) if self.session.connected else (0, 0, 255)
        cv2.putText(frame, f"Host: {self.session.state.value}", (20, 30), self.font, 0.6, conn_color, 1)

        mic = "ON" if self.session.recording else "off"
        mic_color = (0, 200, 255) if self.session.recording else (160, 160, 160)
        cv2.putText(frame, f"Mic: {mic}", (20, 55), self.font, 0.6, mic_color, 1)

        cv2.putText(
            frame,
            "Drag to move the cursor",
            (130, 190),
            self.font, 0.6, (90, 90, 90), 1
        )

        if self._text_mode:
            cv2.putText(
                frame,
                f"> {self.session.text_buffer.text}_",
                (20, 310),
                self.font, 0.6, (255, 255, 255), 1
            )

        last = self.notifications.last
        if last is not None:
            cv2.putText(frame, last.message[:60], (20, 340), self.font, 0.45, (200, 200, 200), 1)

        return frame


async def main_async(args: argparse.Namespace) -> int:
    """Async main entry point."""
    client = RemoteControlClient(
        url=args.url,
        host=args.host,
        port=args.port,
        pin=args.pin,
        scan_qr=args.scan_qr,
        camera_index=args.camera,
        sensitivity=args.sensitivity,
        chunk_ms=args.chunk_ms,
        show_preview=not args.no_preview,
    )

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Shutdown signal received")
        asyncio.create_task(client.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await client.start()
        await client.run()
    except RelayError as e:
        logger.error(f"Client error: {e}")
        return 1
    finally:
        await client.stop()
    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Remote Input Relay Client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Connection URL (ws://host:port?pin=XXXX)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host address (manual entry)",
    )
    parser.add_argument(
        "--port",
        type=str,
        default="8765",
        help="Host port (manual entry)",
    )
    parser.add_argument(
        "--pin",
        type=str,
        default=None,
        help="4-character PIN shown by the host (manual entry)",
    )
    parser.add_argument(
        "--scan-qr",
        action="store_true",
        help="Read the connection URL from a QR code",
    )
    parser.add_argument(
        "--camera",
        type=int,
        default=0,
        help="Camera device index for QR scanning",
    )
    parser.add_argument(
        "--sensitivity",
        type=float,
        default=2.0,
        help="Touchpad movement multiplier",
    )
    parser.add_argument(
        "--chunk-ms",
        type=int,
        default=100,
        help="Audio chunk interval (ms)",
    )
    parser.add_argument(
        "--no-preview",
        action="store_true",
        help="Console input instead of the touchpad window",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
