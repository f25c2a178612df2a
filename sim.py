"""
Particle swarm that relaxes toward a target silhouette.

State:
- positions: flat 3N float32 buffer handed to the renderer (``pos`` is its Nx3 view)
- vel: Nx3 per-tick velocities, private
- target / colors: flat 3N buffers, replaced wholesale by ``set_targets``

Per tick:
- target transform: gesture scale + roll, or a scripted wave in text mode
- spring toward the transformed target + ambient flow noise
- hand field: repulsion + swirl inside a depth-flattened radius
- integrate with damping < 1
- formation spin about Y (a view transform, never baked into positions)
"""

from __future__ import annotations

from dataclasses import dataclass
import math
import threading

import numpy as np

from gestures import lerp
from params import Params, _pget
from shapes import ShapeKind, ShapeRequest, generate
from state import SessionState


@dataclass
class CursorTransform:
    position: tuple = (0.0, 0.0, 0.0)
    scale: float = 1.0
    visible: bool = False


def _finite_or(x, default):
    return x if x is not None and math.isfinite(x) else default


# ========================= Force terms =========================


def text_wave(target, t, amp):
    """Breathing offset for text mode: y rides on x, then z rides on the new y."""
    goal = np.array(target, dtype=np.float64)
    goal[:, 1] += np.sin(t * 1.5 + goal[:, 0] * 0.2) * amp
    goal[:, 2] += np.cos(t * 1.0 + goal[:, 1] * 0.2) * amp
    return goal


def gesture_transform(target, scale, rotation):
    """Uniform scale, then roll about Z."""
    goal = np.asarray(target, dtype=np.float64) * scale
    c, s = math.cos(rotation), math.sin(rotation)
    x = goal[:, 0].copy()
    y = goal[:, 1]
    goal[:, 0] = x * c - y * s
    goal[:, 1] = x * s + y * c
    return goal


def spring_acceleration(pos, goal, k):
    return (goal - pos) * k


def flow_noise(pos, t, amp):
    noise = np.zeros(pos.shape, dtype=np.float64)
    noise[:, 0] = np.sin(t * 0.5 + pos[:, 1] * 0.5) * amp
    noise[:, 1] = np.cos(t * 0.3 + pos[:, 0] * 0.5) * amp
    return noise


def hand_acceleration(pos, hand, radius, force, repulse_gain, swirl_gain, flatten=0.2):
    """
    Repulsion + swirl around ``hand``.

    Distance discounts depth (``dz * flatten``) so the field acts like a
    cylinder through the screen plane. Falloff is ``(1 - dist / radius)``;
    outside ``radius`` the contribution is exactly zero. A particle sitting on
    the hand is pushed straight up.
    """
    acc = np.zeros(pos.shape, dtype=np.float64)
    d = np.asarray(pos, dtype=np.float64) - np.asarray(hand, dtype=np.float64)
    dz = d[:, 2] * flatten
    dist_sq = d[:, 0] ** 2 + d[:, 1] ** 2 + dz ** 2
    inside = dist_sq < radius * radius
    if not inside.any():
        return acc

    dist = np.sqrt(dist_sq[inside])
    falloff = (1.0 - dist / radius) * force

    dirs = np.stack([d[inside, 0], d[inside, 1], dz[inside]], axis=-1)
    dirs /= np.maximum(dist, 1e-9)[:, None]
    dirs[dist < 1e-9] = (0.0, 1.0, 0.0)

    push = dirs * (falloff * repulse_gain)[:, None]
    push[:, 0] += -d[inside, 1] * falloff * swirl_gain
    push[:, 1] += d[inside, 0] * falloff * swirl_gain
    acc[inside] = push
    return acc


# ========================= Simulator =========================


class ParticleSim:
    def __init__(self, params=None, state=None, seed=None):
        self.params = params if params is not None else Params()
        p = self.params
        self.state = state if state is not None else SessionState()
        self.rng = np.random.default_rng(seed)

        self.n = int(_pget(p, "num_particles", 4000))
        if self.n <= 0:
            raise ValueError(f"num_particles must be positive, got {self.n}")

        self.spring = float(_pget(p, "spring", 0.05))
        self.damping = float(_pget(p, "damping", 0.92))
        if not 0.0 < self.damping < 1.0:
            raise ValueError(f"damping must be in (0, 1), got {self.damping}")
        self.noise_amp = float(_pget(p, "noise_amp", 0.02))

        self.hand_radius = float(_pget(p, "hand_radius", 4.0))
        self.hand_force = float(_pget(p, "hand_force", 0.5))
        self.repulse_gain = float(_pget(p, "repulse_gain", 6.0))
        self.swirl_gain = float(_pget(p, "swirl_gain", 5.0))
        self.depth_flatten = float(_pget(p, "depth_flatten", 0.2))

        self.text_wave_amp = float(_pget(p, "text_wave_amp", 0.2))
        self.idle_spin_rate = float(_pget(p, "idle_spin_rate", 0.05))
        self.spin_relax = float(_pget(p, "spin_relax", 0.05))
        self.cursor_follow = float(_pget(p, "cursor_follow", 0.2))
        self.cursor_pulse = float(_pget(p, "cursor_pulse", 0.2))

        self.time = 0.0
        self.spin = 0.0
        # held while targets and the active shape change together
        self.swap_lock = threading.RLock()
        self.cursor = CursorTransform()

        radius = float(_pget(p, "radius", 3.0))
        self.target, self.colors = generate(
            ShapeRequest(ShapeKind.SPHERE, self.n, radius), rng=self.rng
        )
        self.reset()

    def reset(self):
        spread = float(_pget(self.params, "initial_spread", 20.0))
        self.positions = ((self.rng.random(self.n * 3) - 0.5) * spread).astype(np.float32)
        self.pos = self.positions.reshape(-1, 3)
        self.vel = np.zeros((self.n, 3), dtype=np.float32)

    @property
    def count(self):
        return self.n

    def set_targets(self, targets, colors):
        """
        Swap in new target and color buffers.

        Both are copied and the references rebound in one go, so a tick
        running concurrently sees either the old pair or the new pair.
        Positions and velocities are left alone; the spring does the travel.
        """
        t = np.array(targets, dtype=np.float32).reshape(-1)
        c = np.array(colors, dtype=np.float32).reshape(-1)
        if t.size != self.n * 3 or c.size != self.n * 3:
            raise ValueError(
                f"Expected buffers of length {self.n * 3}, got targets={t.size} colors={c.size}"
            )
        if not (np.all(np.isfinite(t)) and np.all(np.isfinite(c))):
            raise ValueError("Target and color buffers must be finite")
        c = np.clip(c, 0.0, 1.0)
        with self.swap_lock:
            self.target, self.colors = t, c

    def snapshot_targets(self):
        """The current target buffer and whether it is a text shape, read as a pair."""
        with self.swap_lock:
            return self.target, self.state.shape == ShapeKind.TEXT

    def goal_positions(self, target, gesture, text_mode):
        target = target.reshape(-1, 3)
        if text_mode:
            return text_wave(target, self.time, self.text_wave_amp)
        return gesture_transform(
            target, _finite_or(gesture.scale, 1.0), _finite_or(gesture.rotation, 0.0)
        )

    def step(self, dt):
        dt = float(dt)
        if not math.isfinite(dt) or dt < 0.0:
            dt = 0.0
        self.time += dt

        # one read per tick: the tracking loop may publish a new state any time
        gesture = self.state.gesture
        target, text_mode = self.snapshot_targets()

        goal = self.goal_positions(target, gesture, text_mode)
        acc = spring_acceleration(self.pos, goal, self.spring)
        acc += flow_noise(self.pos, self.time, self.noise_amp)

        hand = self.active_hand(gesture, text_mode)
        if hand is not None:
            acc += hand_acceleration(
                self.pos, hand, self.hand_radius, self.hand_force,
                self.repulse_gain, self.swirl_gain, self.depth_flatten,
            )

        self.vel += acc
        self.vel *= self.damping
        self.pos += self.vel

        self._update_spin(dt, gesture.detected, text_mode)
        self._update_cursor(hand)

    @staticmethod
    def active_hand(gesture, text_mode):
        """The hand position that may act on the swarm this tick, or None."""
        hand = gesture.position if gesture.detected else None
        if hand is None or text_mode or not all(math.isfinite(v) for v in hand):
            return None
        return hand

    def _update_spin(self, dt, detected, text_mode):
        if detected or text_mode:
            self.spin = lerp(self.spin, 0.0, self.spin_relax)
        else:
            self.spin = math.remainder(self.spin + self.idle_spin_rate * dt, 2.0 * math.pi)

    def _update_cursor(self, hand):
        if hand is None:
            self.cursor = CursorTransform(self.cursor.position, self.cursor.scale, False)
            return
        hx, hy, _ = hand
        cx, cy, cz = self.cursor.position
        position = (
            lerp(cx, hx, self.cursor_follow),
            lerp(cy, hy, self.cursor_follow),
            lerp(cz, 0.0, self.cursor_follow),
        )
        scale = 1.0 + math.sin(self.time * 10.0) * self.cursor_pulse
        self.cursor = CursorTransform(position, scale, True)

    def get_positions(self) -> np.ndarray:
        return self.pos
