import math

import pytest

pytest.importorskip("panda3d")

from panda3d_touch_loom import circle_points, cursor_radii, to_window_pixels  # noqa: E402


def test_window_pixel_mapping_corners():
    assert to_window_pixels(-1, 1, 800, 600) == (0, 0)
    assert to_window_pixels(1, -1, 800, 600) == (800, 600)
    assert to_window_pixels(0, 0, 800, 600) == (400, 300)


def test_circle_points_close_the_loop():
    points = circle_points(10, 20, 5, segments=8)
    assert len(points) == 9
    assert points[0] == pytest.approx(points[-1])
    assert all(math.hypot(x - 10, y - 20) == pytest.approx(5) for x, y in points)


def test_cursor_radii_follow_brush_and_progress():
    outer, ring, core = cursor_radii(40, 0.5)
    assert outer == 40
    assert ring == pytest.approx(30)
    assert core == pytest.approx(7)
    assert cursor_radii(16, 0)[2] == 4
