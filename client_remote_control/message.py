"""
Relay Command Schema and Validation.

Defines the JSON frame format sent from the device to the host. Each
command is one self-contained JSON object with a ``type`` discriminator
and the command's fields at the top level:

    {"type": "mouse_move", "dx": 4, "dy": -2}

Commands are fire-and-forget: no sequence number, no acknowledgement.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, fields
from typing import Any, ClassVar, Dict, Tuple, Type, Union

from .errors import MalformedFrame

logger = logging.getLogger(__name__)

MOUSE_BUTTONS = ("left", "right")
SCROLL_UP = 1
SCROLL_DOWN = -1

# Keys the device offers; the host may understand more
KEY_VOCABULARY = (
    "enter",
    "backspace",
    "esc",
    "tab",
    "space",
    "up",
    "down",
    "left",
    "right",
    "home",
    "end",
    "delete",
)


@dataclass(frozen=True)
class MouseMove:
    """Relative pointer motion in host pixels."""
    TYPE: ClassVar[str] = "mouse_move"
    dx: int
    dy: int


@dataclass(frozen=True)
class MouseClick:
    """Single click of the left or right button."""
    TYPE: ClassVar[str] = "mouse_click"
    button: str


@dataclass(frozen=True)
class MouseScroll:
    """One scroll step: +1 up, -1 down."""
    TYPE: ClassVar[str] = "mouse_scroll"
    delta: int


@dataclass(frozen=True)
class KeyPress:
    """Symbolic key press (enter, backspace, esc, tab, ...)."""
    TYPE: ClassVar[str] = "key_press"
    key: str


@dataclass(frozen=True)
class TextType:
    """Text to be typed on the host."""
    TYPE: ClassVar[str] = "text_type"
    text: str


@dataclass(frozen=True)
class AudioChunk:
    """One base64-encoded slice of captured audio."""
    TYPE: ClassVar[str] = "audio_stream"
    data: str

    @classmethod
    def from_bytes(cls, payload: bytes) -> 'AudioChunk':
        return cls(data=base64.b64encode(payload).decode("ascii"))

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.data, validate=True)


RelayCommand = Union[MouseMove, MouseClick, MouseScroll, KeyPress, TextType, AudioChunk]

COMMAND_TYPES: Dict[str, Type] = {
    cls.TYPE: cls
    for cls in (MouseMove, MouseClick, MouseScroll, KeyPress, TextType, AudioChunk)
}

# Expected JSON type of every field
_FIELD_TYPES: Dict[str, type] = {
    "dx": int,
    "dy": int,
    "button": str,
    "delta": int,
    "key": str,
    "text": str,
    "data": str,
}


def encode(command: RelayCommand) -> str:
    """
    Serialize a command to one text frame.

    Args:
        command: Any RelayCommand variant

    Returns:
        JSON string with ``type`` first, then the command fields
    """
    payload: Dict[str, Any] = {"type": command.TYPE}
    for f in fields(command):
        payload[f.name] = getattr(command, f.name)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def decode(frame: Union[str, bytes]) -> RelayCommand:
    """
    Parse one text frame back into a command (host side).

    Args:
        frame: Text frame as received

    Returns:
        The RelayCommand it describes

    Raises:
        MalformedFrame: If the frame is not a valid relay command
    """
    try:
        d = json.loads(frame)
    except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
        raise MalformedFrame(f"not JSON: {e}") from e

    if not isinstance(d, dict):
        raise MalformedFrame("frame is not a JSON object")

    type_name = d.get("type")
    cls = COMMAND_TYPES.get(type_name) if isinstance(type_name, str) else None
    if cls is None:
        raise MalformedFrame(f"unknown command type: {type_name!r}")

    kwargs = {}
    for f in fields(cls):
        if f.name not in d:
            raise MalformedFrame(f"{type_name}: missing field {f.name!r}")
        value = d[f.name]
        expected = _FIELD_TYPES[f.name]
        # bool is a subclass of int but never a valid coordinate
        if isinstance(value, bool) or not isinstance(value, expected):
            raise MalformedFrame(
                f"{type_name}: field {f.name!r} must be {expected.__name__}"
            )
        kwargs[f.name] = value

    command = cls(**kwargs)
    ok, reason = check_command(command, strict_keys=False)
    if not ok:
        raise MalformedFrame(f"{type_name}: {reason}")
    return command


def check_command(command: RelayCommand, strict_keys: bool = True) -> Tuple[bool, str]:
    """
    Check the value rules of a command.

    Args:
        command: Command to check
        strict_keys: Limit key names to KEY_VOCABULARY

    Returns:
        Tuple of (is_valid, reason_string)
    """
    if isinstance(command, MouseMove):
        for name in ("dx", "dy"):
            value = getattr(command, name)
            if isinstance(value, bool) or not isinstance(value, int):
                return False, f"{name}_not_int"
    elif isinstance(command, MouseClick):
        if command.button not in MOUSE_BUTTONS:
            return False, "button_not_valid"
    elif isinstance(command, MouseScroll):
        if command.delta not in (SCROLL_UP, SCROLL_DOWN) or isinstance(command.delta, bool):
            return False, "delta_not_unit_step"
    elif isinstance(command, KeyPress):
        if not command.key:
            return False, "key_empty"
        if strict_keys and command.key not in KEY_VOCABULARY:
            return False, "key_not_in_vocabulary"
    elif isinstance(command, TextType):
        if not command.text:
            return False, "text_empty"
    elif isinstance(command, AudioChunk):
        if not command.data:
            return False, "audio_empty"
        try:
            base64.b64decode(command.data, validate=True)
        except (binascii.Error, ValueError):
            return False, "audio_not_base64"
    else:
        return False, "unknown_command"
    return True, "ok"


class CommandValidator:
    """
    Validates outgoing commands before transmission.

    An invalid command is never put on the wire; it is logged and
    counted instead.
    """

    def __init__(self):
        self._dropped_count: int = 0
        self._validated_count: int = 0

    def validate(self, command: RelayCommand) -> Tuple[bool, str]:
        """
        Validate a command.

        Args:
            command: The command to validate

        Returns:
            Tuple of (is_valid, reason_string)
        """
        valid, reason = check_command(command)
        if not valid:
            self._dropped_count += 1
            logger.warning(f"Invalid command {command!r}: {reason}")
            return False, reason

        self._validated_count += 1
        return True, "ok"

    def get_stats(self) -> dict:
        """Get validation statistics."""
        total = self._validated_count + self._dropped_count
        return {
            "total_commands": total,
            "validated": self._validated_count,
            "dropped": self._dropped_count,
            "drop_rate": self._dropped_count / total if total > 0 else 0.0,
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._dropped_count = 0
        self._validated_count = 0
