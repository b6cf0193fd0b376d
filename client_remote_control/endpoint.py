"""
Connection endpoint parsing.

A host is addressed as ``ws://host:port?pin=XXXX`` (or ``wss://``). The
same URL is what the host renders as a QR code, so manual entry and QR
scanning end up with the same ConnectionEndpoint.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import parse_qs, quote, urlsplit

from .errors import InvalidAddressFormat

logger = logging.getLogger(__name__)

INSECURE_SCHEME = "ws"
SECURE_SCHEME = "wss"
RELAY_SCHEMES = (INSECURE_SCHEME, SECURE_SCHEME)

PIN_LENGTH = 4


@dataclass(frozen=True)
class ConnectionEndpoint:
    """
    Host, port and PIN identifying a relay host.

    Attributes:
        host: Host name or IP address
        port: Port as entered (kept as text, validated as an integer)
        pin: Short PIN the host compares against
        secure: Whether the secure scheme is used
        raw_url: The URL as scanned or typed, dialed unchanged when set
    """
    host: str
    port: str
    pin: str
    secure: bool = False
    raw_url: Optional[str] = field(default=None, compare=False)

    @property
    def scheme(self) -> str:
        return SECURE_SCHEME if self.secure else INSECURE_SCHEME

    @property
    def url(self) -> str:
        """URL to dial: the entered URL if there was one, else ws://host:port?pin=XXXX."""
        if self.raw_url:
            return self.raw_url
        return f"{self.scheme}://{self._netloc}?pin={quote(self.pin, safe='')}"

    def redacted_url(self) -> str:
        """URL safe for logs (query dropped, PIN masked)."""
        path = urlsplit(self.raw_url).path if self.raw_url else ""
        return f"{self.scheme}://{self._netloc}{path}?pin=****"

    @property
    def _netloc(self) -> str:
        # IPv6 literals need brackets
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"

    @classmethod
    def from_fields(cls, host: str, port: str, pin: str) -> 'ConnectionEndpoint':
        """
        Build an endpoint from manually entered fields.

        Manual entry always uses the insecure scheme.

        Args:
            host: Host name or IP address
            port: Port number as text
            pin: 4-character PIN

        Returns:
            ConnectionEndpoint

        Raises:
            InvalidAddressFormat: If any field is empty or malformed
        """
        host = (host or "").strip()
        port = (port or "").strip()
        pin = (pin or "").strip()

        if not host or not port or not pin:
            raise InvalidAddressFormat("host, port and pin are all required")
        if any(c in host for c in "/?#@ "):
            raise InvalidAddressFormat(f"invalid host: {host!r}")
        _check_port(port)
        if len(pin) != PIN_LENGTH:
            raise InvalidAddressFormat(f"pin must be {PIN_LENGTH} characters")

        return cls(host=host, port=port, pin=pin, secure=False)

    @classmethod
    def from_url(cls, url: str) -> 'ConnectionEndpoint':
        """
        Parse a connection URL such as a decoded QR payload.

        Path and extra query parameters are kept: the endpoint dials the
        URL as given (scheme lowercased).

        The scheme check is case-insensitive and happens before anything
        else, so a wrong scheme never reaches the network.

        Raises:
            InvalidAddressFormat: If the URL is not a relay URL
        """
        normalized = (url or "").strip()
        lowered = normalized.lower()
        if not (lowered.startswith("ws://") or lowered.startswith("wss://")):
            raise InvalidAddressFormat(f"invalid format: {normalized[:15]}...")

        try:
            parts = urlsplit(normalized)
            port = parts.port
        except ValueError as e:
            raise InvalidAddressFormat(f"invalid URL: {e}") from e

        host = parts.hostname
        if not host:
            raise InvalidAddressFormat("URL has no host")
        if port is None:
            raise InvalidAddressFormat("URL has no port")

        pins = parse_qs(parts.query).get("pin")
        pin = pins[0].strip() if pins else ""
        if not pin:
            raise InvalidAddressFormat("URL has no pin")

        return cls(
            host=host,
            port=str(port),
            pin=pin,
            secure=parts.scheme == SECURE_SCHEME,
            raw_url=parts.geturl(),
        )


def _check_port(port: str) -> None:
    if not port.isdigit():
        raise InvalidAddressFormat(f"port must be numeric: {port!r}")
    value = int(port)
    if not 0 < value < 65536:
        raise InvalidAddressFormat(f"port out of range: {value}")
