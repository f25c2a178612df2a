import threading
import time

import numpy as np
import pytest

from params import Params
from session import (
    STATUS_DEGRADED,
    STATUS_INITIALIZING,
    STATUS_STOPPED,
    STATUS_TRACKING,
    SimulationSession,
    make_simulator,
)
import shapes
from shapes import ShapeKind, ShapeRequestError
from sim import ParticleSim
from state import SessionState, TrackingUnavailable

HAND = [(0.5, 0.5, 0.0)] * 21


class FakeCamera:
    def __init__(self, fail=False, crash=False):
        self.fail = fail
        self.crash = crash
        self.released = threading.Event()

    def read(self):
        if self.crash:
            raise RuntimeError("camera unplugged")
        if self.fail:
            return False, None
        return True, np.zeros((4, 4, 3), dtype=np.uint8)

    def release(self):
        self.released.set()


class FakeDetector:
    def __init__(self, sample=HAND, error=None):
        self.sample = sample
        self.error = error
        self.calls = 0
        self.closed = False

    def process(self, frame):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.sample

    def close(self):
        self.closed = True


def unavailable():
    raise TrackingUnavailable("no camera")


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def params():
    return Params(num_particles=200, tracking_hz=200.0)


def make_session(params, camera=None, detector=None, **kwargs):
    camera = camera if camera is not None else FakeCamera()
    detector = detector if detector is not None else FakeDetector()
    return SimulationSession(
        params,
        camera_factory=lambda: camera,
        detector_factory=lambda: detector,
        seed=0,
        **kwargs,
    )


def test_new_session_starts_on_the_sphere(params):
    session = make_session(params)
    assert session.status == STATUS_INITIALIZING
    debug = session.get_gesture_debug_state()
    assert debug["shape"] == "sphere"
    assert debug["text"] == "USER"
    assert debug["detected"] is False
    assert debug["scale"] == 1.0


def test_tick_returns_the_render_buffers(params):
    session = make_session(params)
    positions, colors = session.tick(1 / 60)
    assert positions.shape == (600,)
    assert colors.shape == (600,)
    assert session.count == 200


def test_missing_camera_degrades_instead_of_failing(params):
    session = SimulationSession(params, camera_factory=unavailable, seed=0)
    assert session.start_tracking() is False
    assert session.status == STATUS_DEGRADED
    assert not session.tracking
    positions, _ = session.tick(1 / 60)
    assert np.all(np.isfinite(positions))


def test_missing_model_releases_the_camera(params):
    camera = FakeCamera()

    def no_model():
        raise TrackingUnavailable("model not found")

    session = SimulationSession(params, camera_factory=lambda: camera, detector_factory=no_model)
    assert session.start_tracking() is False
    assert camera.released.is_set()
    assert session.status == STATUS_DEGRADED


def test_tracking_publishes_gestures(params):
    camera, detector = FakeCamera(), FakeDetector()
    session = make_session(params, camera, detector)
    try:
        assert session.start_tracking() is True
        assert session.status == STATUS_TRACKING
        assert wait_for(lambda: session.state.gesture.detected)
        assert session.state.gesture.position == pytest.approx((0.0, 0.0, 0.0))
        session.tick(1 / 60)
        assert session.cursor.visible
    finally:
        session.teardown()

    assert camera.released.is_set()
    assert detector.closed
    assert not session.tracking
    assert session.status == STATUS_STOPPED


def test_dropped_frames_count_as_no_hand(params):
    session = make_session(params, FakeCamera(fail=True))
    session.push_sample(HAND)
    with session:
        session.start_tracking()
        assert wait_for(lambda: not session.state.gesture.detected)
        assert session.tracking


def test_detector_errors_count_as_no_hand(params):
    detector = FakeDetector(error=RuntimeError("bad frame"))
    session = make_session(params, detector=detector)
    with session:
        session.start_tracking()
        assert wait_for(lambda: detector.calls > 3)
        assert session.tracking
        assert session.status == STATUS_TRACKING
        assert not session.state.gesture.detected


def test_crashed_tracking_loop_degrades(params):
    session = make_session(params, FakeCamera(crash=True))
    with session:
        session.start_tracking()
        assert wait_for(lambda: session.status == STATUS_DEGRADED)
        assert wait_for(lambda: not session.tracking)
        session.tick(1 / 60)


def test_retry_tracking_recovers(params):
    attempts = []

    def flaky_camera():
        attempts.append(1)
        if len(attempts) == 1:
            raise TrackingUnavailable("busy")
        return FakeCamera()

    session = SimulationSession(
        params, camera_factory=flaky_camera, detector_factory=FakeDetector, seed=0
    )
    with session:
        assert session.start_tracking() is False
        assert session.retry_tracking() is True
        assert session.status == STATUS_TRACKING


def test_set_shape_swaps_targets_without_moving_particles(params):
    session = make_session(params)
    session.tick(1 / 60)
    before = session.positions.copy()
    session.set_shape("heart")
    assert session.state.shape is ShapeKind.HEART
    np.testing.assert_array_equal(session.positions, before)


def test_set_shape_text_keeps_or_replaces_the_label(params):
    session = make_session(params)
    session.set_shape("text")
    assert session.state.text == "USER"
    session.set_shape(ShapeKind.TEXT, "hello world")
    assert session.state.text == "HELLO WO"
    session.set_shape("galaxy")
    assert session.get_gesture_debug_state()["text"] == "HELLO WO"


def test_unknown_shape_leaves_the_session_alone(params):
    session = make_session(params)
    target = session.sim.target
    with pytest.raises(ShapeRequestError):
        session.set_shape("dodecahedron")
    assert session.state.shape is ShapeKind.SPHERE
    assert session.sim.target is target


def test_push_sample_smooths_the_scale(params):
    session = make_session(params)
    g = session.push_sample(HAND)  # thumb on the index tip: fully pinched
    assert g.detected
    assert g.scale == pytest.approx(0.95)
    g = session.push_sample(None)
    assert not g.detected


def test_make_simulator_rejects_unknown_backends():
    with pytest.raises(ValueError):
        make_simulator(Params(backend="opengl", num_particles=10), SessionState())


def test_make_simulator_numpy_backend():
    sim = make_simulator(Params(num_particles=10), SessionState())
    assert isinstance(sim, ParticleSim)


def test_empty_label_falls_back_to_the_default(params):
    session = make_session(params)
    session.set_shape("text", "hi")
    session.set_shape("text", "")
    assert session.state.text == "USER"
    pos = session.sim.target.reshape(-1, 3)
    assert np.ptp(pos[:, 0]) > shapes.FALLBACK_CUBE + 1.0


def test_empty_label_uses_the_configured_default():
    session = make_session(Params(num_particles=200, default_text="hello"))
    session.set_shape(ShapeKind.TEXT, "")
    assert session.state.text == "HELLO"


def test_shape_swap_holds_off_a_concurrent_tick(params):
    session = make_session(params)
    swap = session.sim.set_targets
    seen = {}

    def set_targets_then_tick(targets, colors):
        swap(targets, colors)
        ticker = threading.Thread(target=session.tick, args=(1 / 60,))
        ticker.start()
        ticker.join(0.2)
        seen["blocked"] = ticker.is_alive()
        seen["ticker"] = ticker

    session.sim.set_targets = set_targets_then_tick
    session.set_shape("text", "hi")
    seen["ticker"].join(2.0)
    assert seen["blocked"]
    assert not seen["ticker"].is_alive()


class BlockingDetector(FakeDetector):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.resume = threading.Event()

    def process(self, frame):
        self.entered.set()
        self.resume.wait(5.0)
        return self.sample


class BlockingCamera(FakeCamera):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.resume = threading.Event()

    def read(self):
        self.entered.set()
        self.resume.wait(5.0)
        raise RuntimeError("device closed")


def test_teardown_leaves_a_busy_detector_its_handles(params):
    camera, detector = FakeCamera(), BlockingDetector()
    session = make_session(params, camera, detector)
    session.join_timeout = 0.05
    session.start_tracking()
    assert detector.entered.wait(2.0)

    session.teardown()
    assert session.status == STATUS_STOPPED
    assert not camera.released.is_set()
    assert not detector.closed

    detector.resume.set()
    assert camera.released.wait(2.0)
    assert wait_for(lambda: detector.closed)
    assert session.status == STATUS_STOPPED
    assert not session.state.gesture.detected


def test_failure_after_teardown_keeps_the_stopped_status(params):
    camera = BlockingCamera()
    session = make_session(params, camera)
    session.join_timeout = 0.05
    session.start_tracking()
    assert camera.entered.wait(2.0)

    session.teardown()
    camera.resume.set()
    assert camera.released.wait(2.0)
    assert session.status == STATUS_STOPPED


def test_crashed_tracking_loop_releases_its_handles(params):
    camera, detector = FakeCamera(crash=True), FakeDetector()
    session = make_session(params, camera, detector)
    with session:
        session.start_tracking()
        assert camera.released.wait(2.0)
        assert wait_for(lambda: detector.closed)
        assert session.status == STATUS_DEGRADED
