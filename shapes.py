"""
Procedural target point-clouds for the particle swarm.

Every shape function takes a particle count, a base radius and a numpy
``Generator`` and returns ``(positions, colors)``, both ``(N, 3)`` float32.
``generate`` validates a ``ShapeRequest``, dispatches through ``shape_funcs``
and flattens the result to the ``3N`` buffers the simulator consumes, so
particle ``i`` lives at ``[3i, 3i+1, 3i+2]``.

Shapes that place particles randomly give a different (but equally valid)
cloud on every call. ``sphere`` is index-derived and always identical.
"""

from __future__ import annotations

import logging
import math
import numbers
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional

import cv2
import numpy as np

log = logging.getLogger("shapes")

MAX_TEXT_LEN = 8
TEXT_WIDTH = 25.0       # world width of a rasterized label
TEXT_FONT_PX = 200
TEXT_STRIDE = 4
TEXT_THRESHOLD = 128
FALLBACK_CUBE = 10.0


class ShapeRequestError(ValueError):
    """Raised for a shape request that cannot produce meaningful geometry."""


class ShapeKind(str, Enum):
    SPHERE = "sphere"
    HEART = "heart"
    RING = "ring"
    FLOWER = "flower"
    GALAXY = "galaxy"
    SOLAR_SYSTEM = "solar_system"
    TEXT = "text"


@dataclass(frozen=True)
class ShapeRequest:
    kind: ShapeKind
    count: int
    radius: float = 3.0
    text: Optional[str] = None

    def __post_init__(self):
        try:
            kind = ShapeKind(self.kind)
        except ValueError:
            raise ShapeRequestError(
                f"Unknown shape kind: {self.kind!r} (expected one of {[k.value for k in ShapeKind]})"
            ) from None
        object.__setattr__(self, "kind", kind)

        if isinstance(self.count, bool) or not isinstance(self.count, numbers.Integral):
            raise ShapeRequestError(f"Particle count must be an int, got {self.count!r}")
        if self.count <= 0:
            raise ShapeRequestError(f"Particle count must be positive, got {self.count}")
        object.__setattr__(self, "count", int(self.count))

        try:
            radius = float(self.radius)
        except (TypeError, ValueError):
            raise ShapeRequestError(f"Radius must be a number, got {self.radius!r}") from None
        if not math.isfinite(radius) or radius <= 0.0:
            raise ShapeRequestError(f"Radius must be finite and positive, got {self.radius!r}")
        object.__setattr__(self, "radius", radius)

        if self.text is not None and not isinstance(self.text, str):
            raise ShapeRequestError(f"Text must be a string, got {type(self.text).__name__}")


# -------------------------------------------------------------------------------
# Color helpers
# -------------------------------------------------------------------------------


def _hex(value):
    return np.array(
        [((value >> 16) & 0xFF) / 255.0, ((value >> 8) & 0xFF) / 255.0, (value & 0xFF) / 255.0],
        dtype=np.float32,
    )


def _hue_channel(p, q, t):
    t = np.mod(t, 1.0)
    return np.where(
        t < 1.0 / 6.0,
        p + (q - p) * 6.0 * t,
        np.where(t < 0.5, q, np.where(t < 2.0 / 3.0, p + (q - p) * 6.0 * (2.0 / 3.0 - t), p)),
    )


def hsl_to_rgb(h, s, l):
    """
    Vectorised HSL -> RGB. Hue wraps around, saturation and lightness clip to [0, 1].

    >>> hsl_to_rgb(0.0, 1.0, 0.5).round(3).tolist()
    [[1.0, 0.0, 0.0]]
    """
    h = np.mod(np.atleast_1d(np.asarray(h, dtype=np.float64)), 1.0)
    s = np.clip(np.broadcast_to(s, h.shape), 0.0, 1.0)
    l = np.clip(np.broadcast_to(l, h.shape), 0.0, 1.0)

    q = np.where(l <= 0.5, l * (1.0 + s), l + s - l * s)
    p = 2.0 * l - q
    rgb = np.stack(
        [_hue_channel(p, q, h + 1.0 / 3.0), _hue_channel(p, q, h), _hue_channel(p, q, h - 1.0 / 3.0)],
        axis=-1,
    )
    return rgb.astype(np.float32)


CYAN = _hex(0x00FFFF)
MAGENTA = _hex(0xFF00FF)


# -------------------------------------------------------------------------------
# Geometry helpers
# -------------------------------------------------------------------------------


def _spherical(r, phi, theta):
    """Polar angle ``phi`` from +Y, azimuth ``theta`` around Y (three.js convention)."""
    sin_phi = np.sin(phi)
    return np.stack(
        [r * sin_phi * np.sin(theta), r * np.cos(phi), r * sin_phi * np.cos(theta)], axis=-1
    )


def _random_ball(n, max_r, rng):
    """``n`` points at uniform random radius in [0, max_r), uniform direction."""
    r = rng.random(n) * max_r
    theta = rng.random(n) * 2.0 * np.pi
    phi = np.arccos(2.0 * rng.random(n) - 1.0)
    return _spherical(r, phi, theta)


def _empty(n):
    return np.zeros((n, 3), dtype=np.float32), np.zeros((n, 3), dtype=np.float32)


# -------------------------------------------------------------------------------
# Shapes
# -------------------------------------------------------------------------------


def sphere(n, radius, rng):
    i = np.arange(n, dtype=np.float64)
    phi = np.arccos(-1.0 + (2.0 * i) / n)
    theta = np.sqrt(n * np.pi) * phi
    pos = _spherical(radius, phi, theta)

    t = ((pos[:, 1] + radius) / (radius * 2.0))[:, None]
    colors = CYAN + (MAGENTA - CYAN) * t
    return pos.astype(np.float32), colors.astype(np.float32)


def heart(n, radius, rng):
    t = rng.random(n) * 2.0 * np.pi
    r = np.sqrt(rng.random(n)) * 0.15 * radius  # sqrt => area-uniform fill
    x = 16.0 * np.sin(t) ** 3
    y = 13.0 * np.cos(t) - 5.0 * np.cos(2 * t) - 2.0 * np.cos(3 * t) - np.cos(4 * t)
    z = (rng.random(n) - 0.5) * 4.0
    pos = np.stack([x * r, y * r, z], axis=-1)

    colors = hsl_to_rgb(0.95 + rng.random(n) * 0.05, 0.9, 0.5)
    return pos.astype(np.float32), colors


def ring(n, radius, rng):
    pos, colors = _empty(n)
    in_ring = rng.random(n) > 0.2
    n_ring = int(in_ring.sum())
    n_core = n - n_ring

    angle = rng.random(n_ring) * 2.0 * np.pi
    r = radius * (1.5 + rng.random(n_ring))
    pos[in_ring] = np.stack(
        [np.cos(angle) * r, (rng.random(n_ring) - 0.5) * 0.2, np.sin(angle) * r], axis=-1
    )
    colors[in_ring] = hsl_to_rgb(0.1, 0.8, 0.6)

    pos[~in_ring] = _random_ball(n_core, radius * 0.5, rng)
    colors[~in_ring] = hsl_to_rgb(0.6, 0.8, 0.7)
    return pos, colors


def flower(n, radius, rng, petals=4):
    theta = rng.random(n) * 2.0 * np.pi
    r = (np.abs(np.cos(petals * theta)) + 0.2) * radius
    z = (rng.random(n) - 0.5) * 1.0
    pos = np.stack([r * np.cos(theta), r * np.sin(theta), z], axis=-1)

    colors = hsl_to_rgb(np.abs(np.sin(theta * 2.0)), 0.8, 0.6)
    return pos.astype(np.float32), colors


GALAXY_CORE = _hex(0xFFFFFF)
GALAXY_ARM = _hex(0xFFAAEE)
GALAXY_EDGE = _hex(0x5500FF)


def galaxy(n, radius, rng, branches=3):
    i = np.arange(n, dtype=np.float64)
    spin = i / n * branches * 2.0 * np.pi
    dist = rng.random(n) * radius * 2.0
    offset = rng.random((n, 3)).sum(axis=1) - 1.5
    # the outer arms flatten, the core puffs up
    y = (rng.random(n) - 0.5) * (radius * 0.5) / (dist + 0.1)
    pos = np.stack(
        [np.cos(spin + dist) * dist + offset, y, np.sin(spin + dist) * dist + offset], axis=-1
    )

    dist_norm = dist / (radius * 2.0)
    colors = np.where(
        (dist_norm < 0.2)[:, None],
        GALAXY_CORE,
        np.where((dist_norm < 0.5)[:, None], GALAXY_ARM, GALAXY_EDGE),
    )
    return pos.astype(np.float32), colors.astype(np.float32)


class Orbit(NamedTuple):
    name: str
    r: float
    size: float


ORBITS = (
    Orbit("mercury", 3.5, 0.2),
    Orbit("venus", 4.5, 0.4),
    Orbit("earth", 6.0, 0.45),
    Orbit("mars", 7.5, 0.3),
    Orbit("jupiter", 10.5, 1.2),
    Orbit("saturn", 13.5, 1.0),
    Orbit("uranus", 16.5, 0.7),
    Orbit("neptune", 18.5, 0.7),
)

SUN_RADIUS = 1.8
SUN_FRACTION = 0.15
# (upper bound of normalized distance from the center, color)
SUN_SHELLS = (
    (0.2, _hex(0xFFFFFF)),
    (0.5, _hex(0xFFD700)),
    (0.8, _hex(0xFF8C00)),
    (np.inf, _hex(0xFF4500)),
)
PLANET_COLORS = {
    "mercury": _hex(0xA5A5A5),
    "venus": _hex(0xE3BB76),
    "saturn": _hex(0xEAD6B8),
    "uranus": _hex(0xAFEEEE),
    "neptune": _hex(0x4169E1),
}
EARTH_COLORS = (_hex(0xFFFFFF), _hex(0x1E90FF), _hex(0x228B22))  # clouds, ocean, land
MARS_COLORS = (_hex(0x8B4513), _hex(0xE27B58))
JUPITER_BANDS = (
    (0.2, _hex(0xD9A066)),
    (0.4, _hex(0xF4E4C1)),
    (0.6, _hex(0xCD853F)),
    (np.inf, _hex(0x8B4513)),
)
SATURN_RING_COLORS = (_hex(0xC2B280), _hex(0xA09070))


def _banded(value, bands):
    out = np.empty(value.shape + (3,), dtype=np.float32)
    lower = -np.inf
    for upper, color in bands:
        out[(value >= lower) & (value < upper)] = color
        lower = upper
    return out


def _sun(n, rng):
    r = rng.random(n) * SUN_RADIUS
    theta = rng.random(n) * 2.0 * np.pi
    phi = np.arccos(2.0 * rng.random(n) - 1.0)
    return _spherical(r, phi, theta), _banded(r / SUN_RADIUS, SUN_SHELLS)


def _planet(orbit, index, n, rng):
    # each body sits at a fixed angle, so it reads as a cluster and not a ring
    angle = index / len(ORBITS) * 2.0 * np.pi + np.pi / 4.0
    center = np.array([np.cos(angle) * orbit.r, 0.0, np.sin(angle) * orbit.r])

    pos = np.empty((n, 3), dtype=np.float64)
    colors = np.empty((n, 3), dtype=np.float32)

    ring_mask = np.zeros(n, dtype=bool)
    if orbit.name == "saturn":
        ring_mask = rng.random(n) > 0.4
        k = int(ring_mask.sum())
        ring_r = orbit.size * 1.2 + rng.random(k) * 1.0
        ring_a = rng.random(k) * 2.0 * np.pi
        pos[ring_mask] = center + np.stack(
            [np.cos(ring_a) * ring_r, (rng.random(k) - 0.5) * 0.15, np.sin(ring_a) * ring_r],
            axis=-1,
        )
        colors[ring_mask] = np.where(
            (rng.random(k) > 0.5)[:, None], SATURN_RING_COLORS[0], SATURN_RING_COLORS[1]
        )

    body = ~ring_mask
    k = int(body.sum())
    local = _random_ball(k, orbit.size, rng)
    pos[body] = local + center

    roll = rng.random(k)
    if orbit.name == "earth":
        colors[body] = np.where(
            (roll > 0.7)[:, None],
            EARTH_COLORS[0],
            np.where((roll > 0.35)[:, None], EARTH_COLORS[1], EARTH_COLORS[2]),
        )
    elif orbit.name == "mars":
        colors[body] = np.where((roll > 0.8)[:, None], MARS_COLORS[0], MARS_COLORS[1])
    elif orbit.name == "jupiter":
        colors[body] = _banded(np.abs(local[:, 1] / orbit.size), JUPITER_BANDS)
    else:
        colors[body] = PLANET_COLORS[orbit.name]
    return pos, colors


def solar_system(n, radius, rng):
    pos, colors = _empty(n)
    is_sun = rng.random(n) < SUN_FRACTION
    pos[is_sun], colors[is_sun] = _sun(int(is_sun.sum()), rng)

    planet_of = np.where(is_sun, -1, rng.integers(0, len(ORBITS), size=n))
    for index, orbit in enumerate(ORBITS):
        mask = planet_of == index
        k = int(mask.sum())
        if k:
            pos[mask], colors[mask] = _planet(orbit, index, k, rng)
    return pos, colors


# -------------------------------------------------------------------------------
# Text
# -------------------------------------------------------------------------------


def normalize_label(label, max_len=MAX_TEXT_LEN):
    """
    Cap a label to ``max_len`` characters and upper-case it.

    >>> normalize_label("particleflow")
    'PARTICLE'
    >>> normalize_label(None)
    ''
    """
    return (label or "")[:max_len].upper()


def rasterize_text(label, *, font_px=TEXT_FONT_PX, stride=TEXT_STRIDE, threshold=TEXT_THRESHOLD):
    """
    Draw ``label`` white-on-black with a heavy font and sample it on a grid.

    Returns:
        (pixels, width, height): ``pixels`` is an (M, 2) int array of (x, y)
        canvas coordinates brighter than ``threshold``, scanned every ``stride``
        pixels. ``M`` is 0 for an empty label.
    """
    if not label:
        return np.zeros((0, 2), dtype=np.int64), 0, 0

    font = cv2.FONT_HERSHEY_DUPLEX
    thickness = max(1, font_px // 8)
    scale = cv2.getFontScaleFromHeight(font, font_px, thickness)
    (text_w, text_h), baseline = cv2.getTextSize(label, font, scale, thickness)

    width = int(math.ceil(text_w + font_px))
    height = int(math.ceil(font_px * 3))
    canvas = np.zeros((height, width), dtype=np.uint8)
    origin = ((width - text_w) // 2, (height + text_h) // 2)
    cv2.putText(canvas, label, origin, font, scale, 255, thickness, cv2.LINE_AA)

    ys, xs = np.nonzero(canvas[::stride, ::stride] > threshold)
    pixels = np.stack([xs * stride, ys * stride], axis=-1).astype(np.int64)
    return pixels, width, height


def text(n, radius, rng, label=""):
    label = normalize_label(label)
    try:
        pixels, width, height = rasterize_text(label)
    except cv2.error as exc:
        log.warning("Could not rasterize %r (%s), using a random cube", label, exc)
        pixels, width, height = np.zeros((0, 2), dtype=np.int64), 0, 0

    if len(pixels):
        scale = TEXT_WIDTH / width
        # more particles than pixels: wrap around the pixel set
        picked = pixels[np.arange(n) % len(pixels)]
        pos = np.stack(
            [
                (picked[:, 0] - width / 2.0) * scale,
                -(picked[:, 1] - height / 2.0) * scale,
                (rng.random(n) - 0.5) * 0.5,
            ],
            axis=-1,
        )
    else:
        if label:
            log.warning("No bright pixels for %r, using a random cube", label)
        pos = (rng.random((n, 3)) - 0.5) * FALLBACK_CUBE

    t = (pos[:, 0] + TEXT_WIDTH / 2.0) / TEXT_WIDTH
    colors = hsl_to_rgb(t * 0.6 + 0.5, 0.9, 0.6)
    return pos.astype(np.float32), colors


# -------------------------------------------------------------------------------
# Dispatch
# -------------------------------------------------------------------------------

shape_funcs = {
    ShapeKind.SPHERE: sphere,
    ShapeKind.HEART: heart,
    ShapeKind.RING: ring,
    ShapeKind.FLOWER: flower,
    ShapeKind.GALAXY: galaxy,
    ShapeKind.SOLAR_SYSTEM: solar_system,
    ShapeKind.TEXT: text,
}


def generate(request: ShapeRequest, *, rng: Optional[np.random.Generator] = None):
    """
    Build the target and color buffers for ``request``.

    Returns:
        (targets, colors): flat float32 arrays of length ``3 * request.count``.

    Raises:
        ShapeRequestError: if ``request`` is not a valid ``ShapeRequest``.
    """
    if not isinstance(request, ShapeRequest):
        raise ShapeRequestError(f"Expected a ShapeRequest, got {type(request).__name__}")
    if rng is None:
        rng = np.random.default_rng()

    func = shape_funcs[request.kind]
    if request.kind is ShapeKind.TEXT:
        pos, colors = func(request.count, request.radius, rng, label=request.text)
    else:
        pos, colors = func(request.count, request.radius, rng)

    targets = np.ascontiguousarray(pos, dtype=np.float32).reshape(-1)
    colors = np.clip(np.ascontiguousarray(colors, dtype=np.float32), 0.0, 1.0).reshape(-1)
    return targets, colors
