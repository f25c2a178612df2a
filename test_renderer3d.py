import numpy as np

from renderer3d import Renderer3D, draw_status
from sim import CursorTransform


def test_origin_projects_to_the_center():
    r = Renderer3D(320, 240)
    sx, sy, depth, visible = r.project(np.zeros((1, 3), dtype=np.float32))
    assert visible[0]
    assert (sx[0], sy[0]) == (160.0, 120.0)
    assert depth[0] == 15.0


def test_spin_rotates_about_the_vertical_axis():
    r = Renderer3D(320, 240)
    pts = np.array([[2.0, 1.0, 0.0]], dtype=np.float32)
    sx0, sy0, _, _ = r.project(pts, 0.0)
    sx1, sy1, _, _ = r.project(pts, np.pi)
    assert sx0[0] > 160.0 > sx1[0]
    assert abs(sy0[0] - sy1[0]) < 1e-3


def test_render_lights_up_particles():
    r = Renderer3D(320, 240)
    positions = np.zeros(30, dtype=np.float32)
    colors = np.ones(30, dtype=np.float32)
    img = r.render(positions, colors, 10, glow=False)
    assert img.shape == (240, 320, 3)
    assert img.dtype == np.uint8
    assert img[120, 160].sum() > 0


def test_render_skips_points_behind_the_camera():
    r = Renderer3D(320, 240)
    positions = np.array([0.0, 0.0, 20.0], dtype=np.float32)
    img = r.render(positions, np.ones(3, dtype=np.float32), 1, glow=False)
    assert img[8:-8, 8:-8].sum() == 0


def test_cursor_and_status_are_drawn():
    r = Renderer3D(320, 240)
    empty = np.zeros(3, dtype=np.float32)
    plain = r.render(empty + 100.0, empty, 1, glow=False)
    with_cursor = r.render(empty + 100.0, empty, 1, glow=False, cursor=CursorTransform((0.0, 0.0, 0.0), 1.0, True))
    assert with_cursor.sum() > plain.sum()

    debug = {"status": "tracking", "detected": True, "scale": 1.1, "rotation": 0.2, "shape": "text", "text": "HI"}
    out = draw_status(plain.copy(), debug, fps=60.0)
    assert out.sum() > plain.sum()
