"""
Touchpad Gesture Logic.

Turns the raw pointer positions of a touch contact into relative
MouseMove commands. Deltas, not absolute positions, are sent because the
device has no idea where the host cursor is or how large the host screen
is.
"""

import math
from dataclasses import dataclass
from typing import Optional, Tuple

from .message import MouseMove

# ============================================================================
# Constants
# ============================================================================

DEFAULT_SENSITIVITY = 2.0


# ============================================================================
# Utility Functions
# ============================================================================

def round_half_up(x: float) -> int:
    """Round half toward +inf (Python's round() rounds half to even)."""
    return math.floor(x + 0.5)


# ============================================================================
# Gesture Tracker
# ============================================================================

@dataclass
class GestureTrackerState:
    """Last pointer position of the current contact, None when no contact."""
    last_x: Optional[float] = None
    last_y: Optional[float] = None

    @property
    def has_point(self) -> bool:
        return self.last_x is not None and self.last_y is not None

    def reset(self) -> None:
        self.last_x = None
        self.last_y = None


class GestureTranslator:
    """
    Converts one contact's pointer samples into MouseMove commands.

    - First sample of a contact: position recorded, nothing emitted.
    - Every later sample: one MouseMove with the scaled delta.
    - Contact end: tracker reset, nothing emitted.
    """

    def __init__(self, sensitivity: float = DEFAULT_SENSITIVITY):
        """
        Args:
            sensitivity: Multiplier applied to raw pointer deltas
        """
        self.sensitivity = sensitivity
        self.state = GestureTrackerState()
        self._moves_emitted = 0

    def on_move(self, x: float, y: float) -> Optional[MouseMove]:
        """
        Process one pointer sample.

        Args:
            x: Pointer x position in device pixels
            y: Pointer y position in device pixels

        Returns:
            MouseMove for every sample but the first of a contact, else None
        """
        command = None
        if self.state.has_point:
            dx, dy = self.scale(x - self.state.last_x, y - self.state.last_y)
            command = MouseMove(dx=dx, dy=dy)
            self._moves_emitted += 1

        self.state.last_x = x
        self.state.last_y = y
        return command

    def on_contact_end(self) -> None:
        """End the current contact."""
        self.state.reset()

    def scale(self, dx: float, dy: float) -> Tuple[int, int]:
        """Apply sensitivity and round to whole host pixels."""
        return (
            round_half_up(dx * self.sensitivity),
            round_half_up(dy * self.sensitivity),
        )

    def get_stats(self) -> dict:
        return {
            "moves_emitted": self._moves_emitted,
            "in_contact": self.state.has_point,
        }
