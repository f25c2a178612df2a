from __future__ import annotations
import math
import numpy as np
import cv2


class Renderer3D:
    """Lightweight renderer that projects the particle buffers into a viewport.

    Camera sits on +Z looking at the origin. Particles are splatted additively
    and blurred for a soft glow; the formation spin is applied here, not in
    the simulation.
    """

    def __init__(self, width: int = 960, height: int = 720, camera_z: float = 15.0, fov_deg: float = 45.0):
        self.width = int(width)
        self.height = int(height)
        self.camera_z = float(camera_z)
        self.focal = (self.height * 0.5) / math.tan(math.radians(fov_deg) * 0.5)
        self.zoom = 1.0

    def project(self, pts, spin: float = 0.0):
        """Return (sx, sy, depth, visible) for an (N, 3) array."""
        c, s = math.cos(spin), math.sin(spin)
        x = pts[:, 0] * c + pts[:, 2] * s
        z = -pts[:, 0] * s + pts[:, 2] * c
        y = pts[:, 1]

        depth = self.camera_z / self.zoom - z
        visible = depth > 0.1
        safe = np.where(visible, depth, 1.0)
        sx = self.width * 0.5 + (x / safe) * self.focal
        sy = self.height * 0.5 - (y / safe) * self.focal
        return sx, sy, depth, visible

    def render(self, positions, colors, count, spin: float = 0.0, cursor=None, glow: bool = True, background=None):
        pts = np.asarray(positions, dtype=np.float32).reshape(-1, 3)[:count]
        rgb = np.asarray(colors, dtype=np.float32).reshape(-1, 3)[:count]

        sx, sy, _, visible = self.project(pts, spin)
        xi = sx.astype(np.int32)
        yi = sy.astype(np.int32)
        inside = visible & (xi >= 0) & (xi < self.width) & (yi >= 0) & (yi < self.height)

        acc = np.zeros((self.height, self.width, 3), dtype=np.float32)
        # RGB buffer -> BGR image, additive like the points material
        np.add.at(acc, (yi[inside], xi[inside]), rgb[inside][:, ::-1] * 200.0)
        img = np.clip(acc, 0, 255).astype(np.uint8)
        img = cv2.dilate(img, np.ones((2, 2), np.uint8))

        if glow:
            blur = cv2.GaussianBlur(img, (0, 0), 3)
            img = cv2.addWeighted(img, 0.8, blur, 0.6, 0)

        if background is not None:
            bg = cv2.resize(background, (self.width, self.height))
            img = cv2.add(cv2.convertScaleAbs(bg, alpha=0.35), img)

        if cursor is not None and cursor.visible:
            self._draw_cursor(img, cursor)

        cv2.rectangle(img, (6, 6), (self.width - 6, self.height - 6), (90, 140, 160), 1, cv2.LINE_AA)
        return img

    def _draw_cursor(self, img, cursor):
        sx, sy, depth, visible = self.project(np.asarray([cursor.position], dtype=np.float32))
        if not visible[0]:
            return
        r = max(2, int(0.3 * cursor.scale * self.focal / depth[0]))
        center = (int(sx[0]), int(sy[0]))
        overlay = img.copy()
        cv2.circle(overlay, center, r, (255, 255, 0), -1, cv2.LINE_AA)
        cv2.addWeighted(overlay, 0.6, img, 0.4, 0, img)
        cv2.circle(img, center, r + 4, (255, 255, 128), 1, cv2.LINE_AA)


def draw_status(img, debug: dict, fps: float = 0.0, *, x_pos=12, y_pos=28, y_increment=24):
    """Status lines in the top-left corner: tracking status, hand, scale/roll, shape."""
    detected = debug.get("detected", False)
    lines = [
        (f"{debug.get('status', '')}", (200, 200, 200)),
        ("Hand Detected" if detected else "No Hand Detected", (120, 255, 120) if detected else (120, 120, 255)),
        (f"scale {debug.get('scale', 1.0):.2f}  roll {math.degrees(debug.get('rotation', 0.0)):+.0f} deg", (255, 255, 128)),
        (f"shape {debug.get('shape', '')}" + (f" [{debug.get('text')}]" if debug.get("shape") == "text" else ""), (255, 245, 0)),
    ]
    if fps:
        lines.append((f"FPS: {fps:5.1f}", (255, 255, 128)))
    for idx, (text, color) in enumerate(lines):
        org = (x_pos, y_pos + idx * y_increment)
        cv2.putText(img, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 0), 3, cv2.LINE_AA)
        cv2.putText(img, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 1, cv2.LINE_AA)
    return img
