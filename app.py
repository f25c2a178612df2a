#!/usr/bin/env python
"""
Interactive particle swarm driven by one tracked hand.

Examples:
    # Default: sphere, webcam tracking
    particleflow

    # Start on the galaxy with the GPU backend
    particleflow --shape galaxy --backend taichi

    # Spell a label, fetching the hand model first if it is missing
    particleflow --shape text --text hello --fetch-model
"""
import logging
import time

import argh
import cv2

from params import Params
from renderer3d import Renderer3D, draw_status
from session import STATUS_DEGRADED, SimulationSession
from shapes import ShapeKind, ShapeRequestError
from state import TrackingUnavailable

WINDOW_NAME = "ParticleFlow"

SHAPE_KEYS = {
    ord("1"): ShapeKind.SPHERE,
    ord("2"): ShapeKind.HEART,
    ord("3"): ShapeKind.RING,
    ord("4"): ShapeKind.FLOWER,
    ord("5"): ShapeKind.GALAXY,
    ord("6"): ShapeKind.SOLAR_SYSTEM,
    ord("7"): ShapeKind.TEXT,
}

ENTER_KEYS = (10, 13)
BACKSPACE_KEYS = (8, 127)


class LabelEditor:
    """Collects key presses into a new text label while active."""

    def __init__(self, max_len=8):
        self.max_len = max_len
        self.active = False
        self.buffer = ""

    def start(self):
        self.active = True
        self.buffer = ""

    def feed(self, key):
        """Returns the finished label on Enter, None otherwise."""
        if key in ENTER_KEYS:
            self.active = False
            return self.buffer
        if key in BACKSPACE_KEYS:
            self.buffer = self.buffer[:-1]
        elif 32 <= key < 127 and len(self.buffer) < self.max_len:
            self.buffer += chr(key)
        return None


def _print_banner():
    print("\n" + "=" * 60)
    print("✨ PARTICLE FLOW")
    print("=" * 60)
    print("\n📋 CONTROLS:")
    print("   1 Sphere | 2 Heart | 3 Ring | 4 Flower")
    print("   5 Galaxy | 6 Solar system | 7 Text")
    print("   T - Type a new label (Enter to apply)")
    print("   R - Retry hand tracking")
    print("   ESC - Exit")
    print("\n✋ GESTURES:")
    print("   Move index finger - push and swirl particles")
    print("   Pinch / open      - shrink / grow the formation")
    print("   Roll wrist        - rotate the formation")
    print("\n" + "=" * 60 + "\n")


def run(params, shape="sphere", text=None, tracking=True, width=960, height=720):
    session = SimulationSession(params)
    session.set_shape(shape, text)
    if tracking:
        if not session.start_tracking():
            print("⚠️  Hand tracking unavailable - running idle (press R to retry)")
    else:
        session.state.status = STATUS_DEGRADED

    renderer = Renderer3D(width, height)
    editor = LabelEditor(params.max_text_len)

    cv2.namedWindow(WINDOW_NAME, cv2.WINDOW_NORMAL)
    _print_banner()

    prev = time.time()
    fps_smooth = 0.0
    try:
        while True:
            now = time.time()
            dt = max(1e-6, now - prev)
            prev = now
            fps = 1.0 / dt
            fps_smooth = fps if fps_smooth == 0 else 0.9 * fps_smooth + 0.1 * fps

            positions, colors = session.tick(dt)
            img = renderer.render(positions, colors, session.count, session.spin, session.cursor)
            draw_status(img, session.get_gesture_debug_state(), fps_smooth)
            if editor.active:
                cv2.putText(img, f"Label: {editor.buffer}_", (12, img.shape[0] - 40),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.9, (255, 255, 255), 2, cv2.LINE_AA)

            cv2.imshow(WINDOW_NAME, img)

            key = cv2.waitKey(1) & 0xFF
            if key == 27:
                break
            if key == 255:
                continue

            if editor.active:
                label = editor.feed(key)
                if label is not None:
                    session.set_shape(ShapeKind.TEXT, label)
            elif key in SHAPE_KEYS:
                session.set_shape(SHAPE_KEYS[key])
            elif key in (ord("t"), ord("T")):
                editor.start()
            elif key in (ord("r"), ord("R")):
                if session.retry_tracking():
                    print("✅ Hand tracking restarted")
                else:
                    print("⚠️  Hand tracking still unavailable")
    finally:
        session.teardown()
        cv2.destroyAllWindows()

    print("\n✅ ParticleFlow shutdown complete")


def main(
    shape: str = "sphere",
    text: str = "USER",
    count: int = 4000,
    backend: str = "numpy",
    camera: int = -1,
    model: str = "hand_landmarker.task",
    fetch_model: bool = False,
    no_tracking: bool = False,
    width: int = 960,
    height: int = 720,
    log_level: str = "INFO",
):
    """
    Run the particle swarm.

    Args:
        shape: Starting shape (sphere, heart, ring, flower, galaxy, solar_system, text)
        text: Label for the text shape (first 8 characters, upper-cased)
        count: Number of particles
        backend: Simulation backend, numpy or taichi
        camera: Camera index, -1 to use the first working one
        model: Path to the MediaPipe hand landmarker model
        fetch_model: Download the hand model if it is missing
        no_tracking: Run without a camera (idle animation only)
        width: Window width in pixels
        height: Window height in pixels
        log_level: Logging level name
    """
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO),
                        format="%(asctime)s %(name)s %(levelname)s %(message)s")

    params = Params(
        num_particles=count,
        backend=backend,
        camera_index=None if camera < 0 else camera,
        hand_model_path=model,
        default_text=text,
    )

    if fetch_model and not no_tracking:
        from hands import ensure_hand_model
        try:
            ensure_hand_model(model)
        except TrackingUnavailable as e:
            print(f"⚠️  {e}")

    try:
        run(params, shape=shape, text=text, tracking=not no_tracking, width=width, height=height)
    except ShapeRequestError as e:
        raise SystemExit(f"❌ {e}")


def dispatched_main():
    argh.dispatch_command(main)


if __name__ == "__main__":
    dispatched_main()
