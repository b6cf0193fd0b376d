"""
Pairing helpers - PIN, connection URL and terminal QR code.

The device scans the QR code (or types host, port and PIN) to build the
same ws://host:port?pin=XXXX URL printed here.
"""

import io
import logging
import secrets
import socket

import qrcode

logger = logging.getLogger(__name__)

PIN_LENGTH = 4


def generate_pin(length: int = PIN_LENGTH) -> str:
    """Random numeric PIN, regenerated on every gateway start."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def verify_pin(candidate: str, pin: str) -> bool:
    """Static PIN comparison in constant time."""
    if not candidate:
        return False
    return secrets.compare_digest(candidate.encode(), pin.encode())


def get_local_ip() -> str:
    """Auto-detect the LAN address the device should connect to."""
    try:
        # No packet is sent; connect() on UDP only selects a route
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def connection_url(host: str, port: int, pin: str, secure: bool = False) -> str:
    scheme = "wss" if secure else "ws"
    return f"{scheme}://{host}:{port}?pin={pin}"


def render_qr(url: str) -> str:
    """Render a QR code of the URL as terminal text."""
    qr = qrcode.QRCode(version=1, box_size=10, border=2)
    qr.add_data(url)
    qr.make(fit=True)

    out = io.StringIO()
    qr.print_ascii(out=out, invert=True)
    return out.getvalue()
