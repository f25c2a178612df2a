import numpy as np
import pytest

pytest.importorskip("taichi")

from gestures import GestureState
from params import Params
from shapes import ShapeKind, ShapeRequest, generate
from sim import ParticleSim
from sim_taichi import ParticleSimTaichi
from state import SessionState


def pair(**overrides):
    overrides.setdefault("num_particles", 256)
    params = Params(**overrides)
    return ParticleSim(params, SessionState(), seed=3), ParticleSimTaichi(params, SessionState(), seed=3)


def run_both(sims, ticks, dt=1 / 60):
    for _ in range(ticks):
        for sim in sims:
            sim.step(dt)


def test_matches_the_numpy_backend():
    ref, gpu = pair()
    np.testing.assert_array_equal(ref.positions, gpu.positions)
    run_both((ref, gpu), 60)
    np.testing.assert_allclose(gpu.positions, ref.positions, atol=1e-2)


def test_matches_with_a_hand_and_a_gesture():
    ref, gpu = pair()
    gesture = GestureState(position=(0.5, 0.5, 0.0), detected=True, scale=1.2, rotation=0.4)
    for sim in (ref, gpu):
        sim.state.gesture = gesture
    run_both((ref, gpu), 30)
    np.testing.assert_allclose(gpu.positions, ref.positions, atol=1e-2)
    assert gpu.cursor.visible
    assert gpu.spin == pytest.approx(ref.spin)


def test_new_targets_reach_the_device():
    ref, gpu = pair(noise_amp=0.0)
    targets, colors = generate(ShapeRequest("text", 256, 3.0, "OK"), rng=np.random.default_rng(0))
    for sim in (ref, gpu):
        sim.set_targets(targets, colors)
        sim.state.shape = ShapeKind.TEXT
    run_both((ref, gpu), 40)
    np.testing.assert_allclose(gpu.positions, ref.positions, atol=1e-2)
    assert np.shares_memory(gpu.pos, gpu.positions)
