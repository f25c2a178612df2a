# gestures.py
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Optional, Tuple

import numpy as np

from params import Params, _pget

log = logging.getLogger("gestures")

Vec3 = Tuple[float, float, float]


class HandLandmark:
    WRIST = 0
    THUMB_TIP = 4
    INDEX_FINGER_MCP = 5
    INDEX_FINGER_TIP = 8
    MIDDLE_FINGER_MCP = 9
    PINKY_MCP = 17
    COUNT = 21


def _clamp(x: float, a: float, b: float) -> float:
    return a if x < a else (b if x > b else x)


def lerp(current: float, target: float, factor: float) -> float:
    """One exponential-smoothing step: move ``factor`` of the way to ``target``."""
    return current + (target - current) * factor


def lerp_angle(current: float, target: float, factor: float) -> float:
    """
    ``lerp`` for angles: steps along the shorter arc and stays in [-pi, pi].

    >>> round(lerp_angle(3.0, -3.0, 1.0), 6)
    -3.0
    >>> round(lerp_angle(0.5, 1.5, 0.1), 6)
    0.6
    """
    step = math.remainder(target - current, 2.0 * math.pi) * factor
    return math.remainder(current + step, 2.0 * math.pi)


@dataclass(frozen=True)
class GestureState:
    """
    Smoothed hand summary shared between the tracking loop and the render tick.

    Frozen so that publishing a new one is a single reference swap.
    """
    position: Optional[Vec3] = None
    detected: bool = False
    scale: float = 1.0
    rotation: float = 0.0


NEUTRAL = GestureState()


def pinch_to_scale(p: float, closed: float = 0.3, open_: float = 0.8,
                   lo: float = 0.5, hi: float = 1.3) -> float:
    """
    Piecewise map of a normalized pinch distance to a formation scale.

    >>> pinch_to_scale(0.1), pinch_to_scale(2.0)
    (0.5, 1.3)
    """
    if p < closed:
        return lo
    if p > open_:
        return hi
    return lo + ((p - closed) / (open_ - closed)) * (hi - lo)


def hand_to_world(x: float, y: float, width: float, height: float) -> Vec3:
    # camera is mirrored, screen y grows downward, interaction is planar
    return ((1.0 - x) * width - width / 2.0, -(y * height - height / 2.0), 0.0)


def roll_angle(pinky_base, index_base) -> float:
    dx = index_base[0] - pinky_base[0]
    dy = index_base[1] - pinky_base[1]
    return -math.atan2(dy, dx)


def as_landmark_array(sample) -> Optional[np.ndarray]:
    """
    Coerce a detector sample to a (21, 3) float array.

    Accepts sequences of (x, y[, z]) tuples or objects exposing ``.x .y .z``
    (MediaPipe ``NormalizedLandmark``). Returns None for an empty sample.
    Raises ValueError when the sample is malformed.
    """
    if sample is None:
        return None
    pts = []
    for lm in sample:
        if hasattr(lm, "x"):
            pts.append((lm.x, lm.y, getattr(lm, "z", 0.0) or 0.0))
        else:
            z = lm[2] if len(lm) > 2 else 0.0
            pts.append((lm[0], lm[1], z))
    if not pts:
        return None
    if len(pts) < HandLandmark.COUNT:
        raise ValueError(f"Expected {HandLandmark.COUNT} landmarks, got {len(pts)}")
    arr = np.asarray(pts[:HandLandmark.COUNT], dtype=np.float64)
    if not np.all(np.isfinite(arr)):
        raise ValueError("Non-finite landmark coordinates")
    return arr


class GestureSignalProcessor:
    """
    Turns one raw landmark sample per detector frame into a smoothed GestureState.

    - position: index fingertip mapped onto the world plane (z = 0)
    - scale: thumb/index pinch normalized by hand size, piecewise-mapped and smoothed
    - rotation: wrist roll (pinky base -> index base) and smoothed
    - no hand: scale and rotation ease back to neutral instead of snapping
    """

    def __init__(self, params=None):
        p = params if params is not None else Params()
        self.width = float(_pget(p, "world_width", 20.0))
        self.height = float(_pget(p, "world_height", 16.0))
        self.smoothing = float(_pget(p, "gesture_smoothing", 0.1))
        self.decay = float(_pget(p, "neutral_decay", 0.05))
        self.closed = float(_pget(p, "pinch_closed", 0.3))
        self.open = float(_pget(p, "pinch_open", 0.8))
        self.scale_min = float(_pget(p, "scale_min", 0.5))
        self.scale_max = float(_pget(p, "scale_max", 1.3))
        self.eps = float(_pget(p, "hand_size_eps", 1e-6))

    def process(self, sample, previous: GestureState = NEUTRAL) -> GestureState:
        try:
            lms = as_landmark_array(sample)
        except (TypeError, ValueError, IndexError) as e:
            log.debug("Rejected landmark sample: %s", e)
            return previous

        if lms is None:
            return GestureState(
                position=None,
                detected=False,
                scale=lerp(previous.scale, 1.0, self.decay),
                rotation=lerp(previous.rotation, 0.0, self.decay),
            )

        tip = lms[HandLandmark.INDEX_FINGER_TIP]
        position = hand_to_world(float(tip[0]), float(tip[1]), self.width, self.height)

        hand_size = float(np.linalg.norm(lms[HandLandmark.WRIST] - lms[HandLandmark.MIDDLE_FINGER_MCP]))
        pinch = float(np.linalg.norm(lms[HandLandmark.THUMB_TIP] - lms[HandLandmark.INDEX_FINGER_TIP]))
        ratio = pinch / max(hand_size, self.eps)
        target_scale = pinch_to_scale(ratio, self.closed, self.open, self.scale_min, self.scale_max)

        target_rotation = roll_angle(lms[HandLandmark.PINKY_MCP], lms[HandLandmark.INDEX_FINGER_MCP])

        scale = _clamp(lerp(previous.scale, target_scale, self.smoothing), self.scale_min, self.scale_max)
        return GestureState(
            position=position,
            detected=True,
            scale=scale,
            rotation=lerp_angle(previous.rotation, target_rotation, self.smoothing),
        )
