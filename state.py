from __future__ import annotations

from dataclasses import dataclass, field

from gestures import GestureState
from shapes import ShapeKind


@dataclass
class SessionState:
    """
    The one mutable object both periodic tasks share.

    The tracking loop is the only writer of ``gesture`` and replaces it whole;
    the render tick re-reads it every frame. ``shape`` and ``text`` only change
    through ``SimulationSession.set_shape``.
    """
    gesture: GestureState = field(default_factory=GestureState)
    shape: ShapeKind = ShapeKind.SPHERE
    text: str = "USER"
    status: str = "initializing"


class TrackingUnavailable(RuntimeError):
    """No camera, or the landmark model could not be loaded."""
