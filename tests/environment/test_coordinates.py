"""
Tests for the 0-1000 grid mapping.
"""

import pytest

from webpilot.environment.coordinates import GRID_SIZE, scale, scale_point, unscale, unscale_point


class TestScale:
    """scale(c, dim) == round(c / 1000 * dim), halves rounded up."""

    @pytest.mark.parametrize("coord,dim,expected", [
        (0, 1280, 0),
        (1000, 1280, 1280),
        (500, 1280, 640),
        (500, 720, 360),
        (333, 1280, 426),    # 426.24
        (1, 1500, 2),        # 1.5 rounds up, not to even
        (3, 1500, 5),        # 4.5 rounds up
        (999, 721, 720),     # 720.279
    ])
    def test_exact_mapping(self, coord, dim, expected):
        assert scale(coord, dim) == expected

    def test_fractional_grid_coordinates(self):
        assert scale(250.5, 2000) == 501

    def test_rejects_out_of_grid(self):
        with pytest.raises(ValueError):
            scale(-1, 1280)
        with pytest.raises(ValueError):
            scale(GRID_SIZE + 1, 1280)

    def test_rejects_empty_viewport(self):
        with pytest.raises(ValueError):
            scale(500, 0)


class TestRoundTrip:
    """scale(unscale(p)) stays within a pixel of p and grid corners are exact."""

    @pytest.mark.parametrize("x,y", [(0, 0), (1000, 1000), (500, 500), (123, 877)])
    def test_grid_corners_and_interior(self, x, y):
        width, height = 1280, 720
        px, py = scale_point(x, y, width, height)
        gx, gy = unscale_point(px, py, width, height)
        assert abs(gx - x) <= 1
        assert abs(gy - y) <= 1
        assert abs(scale(gx, width) - px) <= 1
        assert abs(scale(gy, height) - py) <= 1

    def test_extremes_are_exact(self):
        assert unscale(scale(0, 1366), 1366) == 0
        assert unscale(scale(1000, 1366), 1366) == 1000

    def test_unscale_clamps(self):
        assert unscale(-5, 800) == 0
        assert unscale(900, 800) == 1000
