import logging
import os
import time
import urllib.request

import cv2
import mediapipe as mp
from mediapipe.tasks import python as mp_python
from mediapipe.tasks.python import vision

from state import TrackingUnavailable

log = logging.getLogger("hands")

HAND_MODEL_URL = "https://storage.googleapis.com/mediapipe-models/hand_landmarker/hand_landmarker/float16/1/hand_landmarker.task"


def ensure_hand_model(path, url=HAND_MODEL_URL):
    if os.path.exists(path):
        return path
    log.info("Downloading %s ...", path)
    try:
        urllib.request.urlretrieve(url, path)
    except OSError as e:
        raise TrackingUnavailable(f"Could not download hand model: {e}") from e
    log.info("Download complete.")
    return path


def open_camera(index=None, max_index=6):
    """Open ``index`` or the first device in 0..max_index-1 that yields a frame."""
    candidates = [index] if index is not None else range(max_index)
    for i in candidates:
        cap = cv2.VideoCapture(i)
        if cap.isOpened():
            ok, _ = cap.read()
            if ok:
                log.info("Using camera index: %s", i)
                return cap
        cap.release()
    if index is not None:
        raise TrackingUnavailable(f"Camera {index} is not available.")
    raise TrackingUnavailable(f"No working camera found (0–{max_index-1}).")


class Hands:
    """
    MediaPipe hand landmarker wrapper, one hand, VIDEO running mode.

    process(frame_bgr) returns the 21 normalized landmarks of the tracked
    hand (objects with .x .y .z), or None when no hand is visible.
    Frames are fed unmirrored; the gesture mapping does the mirroring.
    """

    def __init__(self, model_path="hand_landmarker.task", det_conf=0.5, presence_conf=0.5, track_conf=0.5):
        if not os.path.isfile(model_path):
            raise TrackingUnavailable(f"Hand model not found: {model_path}")

        options = vision.HandLandmarkerOptions(
            base_options=mp_python.BaseOptions(model_asset_path=model_path),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=float(det_conf),
            min_hand_presence_confidence=float(presence_conf),
            min_tracking_confidence=float(track_conf),
        )
        try:
            self.landmarker = vision.HandLandmarker.create_from_options(options)
        except (RuntimeError, ValueError) as e:
            raise TrackingUnavailable(f"Could not load hand model: {e}") from e
        self._last_ts = -1

    def process(self, frame_bgr):
        frame_rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=frame_rgb)

        # VIDEO mode wants strictly increasing timestamps
        ts = max(int(time.monotonic() * 1000), self._last_ts + 1)
        self._last_ts = ts
        res = self.landmarker.detect_for_video(image, ts)

        if not res.hand_landmarks:
            return None
        return res.hand_landmarks[0]

    def close(self):
        self.landmarker.close()
