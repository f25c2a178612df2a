# pyright: reportInvalidTypeForm=false
import math

import numpy as np
import taichi as ti

from params import Params, _pget
from sim import ParticleSim, _finite_or

_TAICHI_READY = False


def ensure_ti():
    global _TAICHI_READY
    if _TAICHI_READY:
        return
    try:
        ti.init(arch=ti.cuda, device_memory_fraction=0.7)
        print("✅ Taichi CUDA (particles)")
    except Exception:
        ti.init(arch=ti.cpu)
        print("⚠️ Taichi CPU fallback (particles)")
    _TAICHI_READY = True


@ti.data_oriented
class ParticleSimTaichi(ParticleSim):
    """
    Same swarm as ParticleSim, with the per-particle update in one Taichi kernel.

    Keeps the numpy API:
      sim = ParticleSimTaichi(params=params, state=state)
      sim.set_targets(targets, colors)
      sim.step(dt)
      sim.positions            # flat 3N float32, refreshed after every step

    Targets are uploaded to the device at the start of the next step, on the
    render thread, so set_targets never writes into a field mid-kernel.
    """

    def __init__(self, params=None, state=None, seed=None):
        ensure_ti()
        n = int(_pget(params if params is not None else Params(), "num_particles", 4000))
        self.f_pos = ti.Vector.field(3, dtype=ti.f32, shape=max(n, 1))
        self.f_vel = ti.Vector.field(3, dtype=ti.f32, shape=max(n, 1))
        self.f_target = ti.Vector.field(3, dtype=ti.f32, shape=max(n, 1))
        self._uploaded = None
        super().__init__(params, state, seed)

    def reset(self):
        super().reset()
        self.f_pos.from_numpy(self.pos)
        self.f_vel.fill(0.0)

    def _upload_target(self, target):
        if target is not self._uploaded:
            self.f_target.from_numpy(target.reshape(-1, 3))
            self._uploaded = target

    def step(self, dt):
        dt = float(dt)
        if not math.isfinite(dt) or dt < 0.0:
            dt = 0.0
        self.time += dt

        gesture = self.state.gesture
        target, text_mode = self.snapshot_targets()
        self._upload_target(target)

        hand = self.active_hand(gesture, text_mode)
        hand_on = hand is not None
        hx, hy, hz = hand if hand_on else (0.0, 0.0, 0.0)

        self._step_kernel(
            self.time,
            1 if text_mode else 0,
            _finite_or(gesture.scale, 1.0),
            _finite_or(gesture.rotation, 0.0),
            1 if hand_on else 0,
            hx, hy, hz,
        )
        self.pos[:] = self.f_pos.to_numpy()

        self._update_spin(dt, gesture.detected, text_mode)
        self._update_cursor(hand)

    @ti.kernel
    def _step_kernel(self, t: ti.f32, text_mode: ti.i32, scale: ti.f32, rot: ti.f32,
                     hand_on: ti.i32, hx: ti.f32, hy: ti.f32, hz: ti.f32):
        c = ti.cos(rot)
        s = ti.sin(rot)
        r = self.hand_radius
        for i in range(self.n):
            tgt = self.f_target[i]
            gx = tgt[0]
            gy = tgt[1]
            gz = tgt[2]
            if text_mode == 1:
                gy = gy + ti.sin(t * 1.5 + gx * 0.2) * self.text_wave_amp
                gz = gz + ti.cos(t * 1.0 + gy * 0.2) * self.text_wave_amp
            else:
                sx = gx * scale
                sy = gy * scale
                gx = sx * c - sy * s
                gy = sx * s + sy * c
                gz = gz * scale

            p = self.f_pos[i]
            acc = (ti.Vector([gx, gy, gz]) - p) * self.spring
            acc[0] += ti.sin(t * 0.5 + p[1] * 0.5) * self.noise_amp
            acc[1] += ti.cos(t * 0.3 + p[0] * 0.5) * self.noise_amp

            if hand_on == 1:
                dx = p[0] - hx
                dy = p[1] - hy
                dz = (p[2] - hz) * self.depth_flatten
                dist_sq = dx * dx + dy * dy + dz * dz
                if dist_sq < r * r:
                    dist = ti.sqrt(dist_sq)
                    falloff = (1.0 - dist / r) * self.hand_force
                    d = ti.Vector([0.0, 1.0, 0.0])
                    if dist > 1e-9:
                        d = ti.Vector([dx, dy, dz]) / dist
                    acc += d * (falloff * self.repulse_gain)
                    acc[0] += -dy * falloff * self.swirl_gain
                    acc[1] += dx * falloff * self.swirl_gain

            v = (self.f_vel[i] + acc) * self.damping
            self.f_vel[i] = v
            self.f_pos[i] = p + v

    def get_positions(self) -> np.ndarray:
        return self.pos
