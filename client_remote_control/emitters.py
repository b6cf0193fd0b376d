"""
Command emitters for discrete UI actions.

Each emitter maps one action (click, scroll, key, text) to exactly one
RelayCommand and hands it to a send function. A short haptic pulse is
triggered as a local side effect; it is best-effort and never affects
what is sent.
"""

import logging
from typing import Callable, Optional

from .message import (
    KEY_VOCABULARY,
    MOUSE_BUTTONS,
    SCROLL_DOWN,
    SCROLL_UP,
    KeyPress,
    MouseClick,
    MouseScroll,
    RelayCommand,
    TextType,
)

logger = logging.getLogger(__name__)

# Haptic pulse lengths (ms)
CLICK_PULSE_MS = 30
KEY_PULSE_MS = 20

SendFn = Callable[[RelayCommand], bool]
HapticFn = Callable[[int], None]


def no_haptics(duration_ms: int) -> None:
    """Haptic primitive for devices without a vibration motor."""


def _pulse(haptic: Optional[HapticFn], duration_ms: int) -> None:
    if haptic is None:
        return
    try:
        haptic(duration_ms)
    except Exception as e:
        logger.debug(f"Haptic pulse failed: {e}")


def click(send: SendFn, button: str, haptic: Optional[HapticFn] = None) -> RelayCommand:
    """
    Emit a MouseClick.

    Args:
        send: Function queuing a command on the transport
        button: "left" or "right"
        haptic: Optional haptic primitive

    Returns:
        The command that was emitted

    Raises:
        ValueError: If button is not left or right
    """
    if button not in MOUSE_BUTTONS:
        raise ValueError(f"unknown mouse button: {button!r}")
    _pulse(haptic, CLICK_PULSE_MS)
    command = MouseClick(button=button)
    send(command)
    return command


def scroll(send: SendFn, direction: str) -> RelayCommand:
    """
    Emit a one-step MouseScroll.

    Args:
        send: Function queuing a command on the transport
        direction: "up" or "down"

    Raises:
        ValueError: If direction is not up or down
    """
    if direction == "up":
        delta = SCROLL_UP
    elif direction == "down":
        delta = SCROLL_DOWN
    else:
        raise ValueError(f"unknown scroll direction: {direction!r}")
    command = MouseScroll(delta=delta)
    send(command)
    return command


def key_press(send: SendFn, key: str, haptic: Optional[HapticFn] = None) -> RelayCommand:
    """
    Emit a KeyPress for a key from the fixed vocabulary.

    Raises:
        ValueError: If key is not in KEY_VOCABULARY
    """
    if key not in KEY_VOCABULARY:
        raise ValueError(f"unsupported key: {key!r}")
    _pulse(haptic, KEY_PULSE_MS)
    command = KeyPress(key=key)
    send(command)
    return command


class TextBuffer:
    """Local text entry buffer, cleared once its content has been sent."""

    def __init__(self, text: str = ""):
        self.text = text

    def append(self, text: str) -> None:
        self.text += text

    def backspace(self) -> None:
        self.text = self.text[:-1]

    def clear(self) -> None:
        self.text = ""

    def __bool__(self) -> bool:
        return bool(self.text)


def send_text(send: SendFn, buffer: TextBuffer) -> Optional[RelayCommand]:
    """
    Emit a TextType with the buffer content.

    Whitespace-only buffers emit nothing and are left untouched. The text
    is sent as typed, only the emptiness check uses the trimmed value.

    Returns:
        The emitted command, or None if nothing was sent
    """
    if not buffer.text.strip():
        return None
    command = TextType(text=buffer.text)
    send(command)
    # Emission is assumed, not acknowledged
    buffer.clear()
    return command
