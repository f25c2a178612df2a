"""
Session orchestration: one simulator, one gesture pipeline, one shared state.

Two periodic tasks share ``SessionState``:

- the render tick (``tick``), on the caller's thread, every frame
- the tracking loop, on a daemon thread at ``tracking_hz``, which reads the
  camera, runs the detector and publishes a new ``GestureState``

Losing the camera or the model is not fatal: the session reports
``"degraded: no tracking"`` and keeps animating the idle swarm.
"""

from __future__ import annotations

import logging
import threading
import time

import numpy as np

from gestures import GestureSignalProcessor
from params import Params, _pget
from shapes import ShapeKind, ShapeRequest, ShapeRequestError, generate, normalize_label
from sim import ParticleSim
from state import SessionState, TrackingUnavailable

log = logging.getLogger("session")

STATUS_INITIALIZING = "initializing"
STATUS_TRACKING = "tracking"
STATUS_DEGRADED = "degraded: no tracking"
STATUS_STOPPED = "stopped"


def make_simulator(params, state, seed=None):
    backend = _pget(params, "backend", "numpy")
    if backend == "taichi":
        from sim_taichi import ParticleSimTaichi
        return ParticleSimTaichi(params, state, seed)
    if backend != "numpy":
        raise ValueError(f"Unknown simulation backend: {backend!r}")
    return ParticleSim(params, state, seed)


def _default_camera_factory(params):
    from hands import open_camera
    return lambda: open_camera(_pget(params, "camera_index", None))


def _default_detector_factory(params):
    def factory():
        from hands import Hands
        return Hands(
            model_path=_pget(params, "hand_model_path", "hand_landmarker.task"),
            det_conf=_pget(params, "det_conf", 0.5),
            presence_conf=_pget(params, "presence_conf", 0.5),
            track_conf=_pget(params, "track_conf", 0.5),
        )
    return factory


def _release(camera, detector):
    if camera is not None:
        camera.release()
    if detector is not None:
        close = getattr(detector, "close", None)
        if callable(close):
            close()


class SimulationSession:
    def __init__(self, params=None, *, camera_factory=None, detector_factory=None, seed=None):
        self.params = params if params is not None else Params()
        max_len = int(_pget(self.params, "max_text_len", 8))
        self.state = SessionState(
            text=normalize_label(_pget(self.params, "default_text", "USER"), max_len)
        )
        self.sim = make_simulator(self.params, self.state, seed)
        self.processor = GestureSignalProcessor(self.params)
        self.rng = np.random.default_rng(seed)

        self._camera_factory = camera_factory or _default_camera_factory(self.params)
        self._detector_factory = detector_factory or _default_detector_factory(self.params)
        self._thread = None
        self._stop = threading.Event()
        self.join_timeout = 2.0

    # ========================= Render side =========================

    def tick(self, dt):
        self.sim.step(dt)
        return self.sim.positions, self.sim.colors

    @property
    def positions(self):
        return self.sim.positions

    @property
    def colors(self):
        return self.sim.colors

    @property
    def count(self):
        return self.sim.n

    @property
    def cursor(self):
        return self.sim.cursor

    @property
    def spin(self):
        return self.sim.spin

    # ========================= Control surface =========================

    def set_shape(self, kind, text=None):
        """
        Switch the target silhouette.

        ``text`` replaces the stored label (capped and upper-cased); when it is
        None the current label is kept, and an empty label falls back to
        ``default_text``. Raises ShapeRequestError for an unknown kind,
        leaving the current shape untouched.

        Targets and shape change under the simulator's swap lock, so a tick
        never pairs text targets with the gesture transform or the reverse.
        """
        try:
            kind = ShapeKind(kind)
        except ValueError:
            raise ShapeRequestError(f"Unknown shape kind: {kind!r}") from None

        max_len = int(_pget(self.params, "max_text_len", 8))
        label = self.state.text if text is None else normalize_label(text, max_len)
        if not label:
            label = normalize_label(_pget(self.params, "default_text", "USER"), max_len)
        request = ShapeRequest(
            kind,
            self.sim.n,
            float(_pget(self.params, "radius", 3.0)),
            label if kind is ShapeKind.TEXT else None,
        )
        targets, colors = generate(request, rng=self.rng)
        with self.sim.swap_lock:
            self.sim.set_targets(targets, colors)
            self.state.shape = kind
        self.state.text = label
        log.info("Shape -> %s%s", kind.value, f" ({label!r})" if kind is ShapeKind.TEXT else "")

    def push_sample(self, sample):
        """Feed one detector result (21 landmarks or None) through the gesture pipeline."""
        self.state.gesture = self.processor.process(sample, self.state.gesture)
        return self.state.gesture

    def get_gesture_debug_state(self):
        g = self.state.gesture
        return {
            "detected": g.detected,
            "position": g.position,
            "scale": g.scale,
            "rotation": g.rotation,
            "shape": self.state.shape.value,
            "text": self.state.text,
            "status": self.state.status,
        }

    @property
    def status(self):
        return self.state.status

    # ========================= Tracking task =========================

    @property
    def tracking(self):
        return self._thread is not None and self._thread.is_alive()

    def start_tracking(self):
        if self.tracking:
            return True
        camera = detector = None
        try:
            camera = self._camera_factory()
            detector = self._detector_factory()
        except TrackingUnavailable as e:
            _release(camera, detector)
            self.state.status = STATUS_DEGRADED
            log.warning("Hand tracking unavailable: %s", e)
            return False

        # one stop flag per loop; a straggler from an earlier start keeps its own, already set
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._tracking_loop,
            args=(camera, detector, self._stop),
            name="hand-tracking",
            daemon=True,
        )
        self.state.status = STATUS_TRACKING
        self._thread.start()
        log.info("Hand tracking started")
        return True

    def retry_tracking(self):
        self._stop_tracking()
        return self.start_tracking()

    def _tracking_loop(self, camera, detector, stop):
        """Thread body. Owns ``camera`` and ``detector`` and releases both on exit."""
        try:
            self._run_tracking(camera, detector, stop)
        except Exception:
            if stop.is_set():
                log.debug("Hand tracking loop failed while stopping", exc_info=True)
            else:
                log.exception("Hand tracking loop crashed")
                self.state.status = STATUS_DEGRADED
                self.push_sample(None)
        finally:
            _release(camera, detector)

    def _run_tracking(self, camera, detector, stop):
        hz = float(_pget(self.params, "tracking_hz", 30.0))
        period = 1.0 / hz if hz > 0 else 0.0
        while not stop.is_set():
            started = time.monotonic()
            ok, frame = camera.read()
            sample = None
            if ok and frame is not None:
                try:
                    sample = detector.process(frame)
                except Exception as e:
                    # an opaque model failing on one frame counts as "no hand"
                    log.debug("Detector failed on a frame: %s", e)
            if stop.is_set():
                break
            self.push_sample(sample)
            stop.wait(max(0.0, period - (time.monotonic() - started)))

    def _stop_tracking(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self.join_timeout)
            if self._thread.is_alive():
                log.warning("Hand tracking thread still busy; it will release the camera when it exits")
            self._thread = None

    def teardown(self):
        self._stop_tracking()
        self.state.status = STATUS_STOPPED
        log.info("Session stopped")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.teardown()
