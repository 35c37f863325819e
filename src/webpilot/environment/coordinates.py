"""
Model-space <-> device-space coordinate mapping.

Models address the page on a fixed 0-1000 grid in both axes regardless of the
viewport size; the executor works in device pixels of the current viewport.
"""

import math
from typing import Tuple

GRID_SIZE = 1000


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; the grid contract rounds .5 up
    return int(math.floor(value + 0.5))


def scale(model_coord: float, viewport_dimension: int) -> int:
    """Map a 0-1000 grid coordinate to a device pixel: ``round(c / 1000 * dim)``."""
    if not 0 <= model_coord <= GRID_SIZE:
        raise ValueError(f"Coordinate {model_coord} is outside the 0-{GRID_SIZE} grid")
    if viewport_dimension <= 0:
        raise ValueError(f"Viewport dimension must be positive, got {viewport_dimension}")
    return _round_half_up(model_coord / GRID_SIZE * viewport_dimension)


def unscale(pixel: float, viewport_dimension: int) -> int:
    """Map a device pixel back onto the 0-1000 grid."""
    if viewport_dimension <= 0:
        raise ValueError(f"Viewport dimension must be positive, got {viewport_dimension}")
    value = _round_half_up(pixel / viewport_dimension * GRID_SIZE)
    return max(0, min(GRID_SIZE, value))


def scale_point(x: float, y: float, width: int, height: int) -> Tuple[int, int]:
    return scale(x, width), scale(y, height)


def unscale_point(px: float, py: float, width: int, height: int) -> Tuple[int, int]:
    return unscale(px, width), unscale(py, height)
