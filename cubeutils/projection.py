"""Cube face to equirectangular projection math."""

import math
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np


class CubeFace(str, Enum):
    """Cube map faces. Member order is the manifest and tile emission order."""
    RIGHT = "right"    # +X
    LEFT = "left"      # -X
    TOP = "top"        # +Y
    BOTTOM = "bottom"  # -Y
    FRONT = "front"    # +Z
    BACK = "back"      # -Z


# Direction vector for a face pixel is FACE_AXES[face] @ (s, t, 1), where
# s runs left->right and t runs top->bottom across the face in [-1, 1].
FACE_AXES: Dict[CubeFace, np.ndarray] = {
    CubeFace.RIGHT: np.array([
        [0, 0, 1],
        [0, -1, 0],
        [-1, 0, 0],
    ], dtype=np.float64),
    CubeFace.LEFT: np.array([
        [0, 0, -1],
        [0, -1, 0],
        [1, 0, 0],
    ], dtype=np.float64),
    CubeFace.TOP: np.array([
        [1, 0, 0],
        [0, 0, 1],
        [0, 1, 0],
    ], dtype=np.float64),
    CubeFace.BOTTOM: np.array([
        [1, 0, 0],
        [0, 0, -1],
        [0, -1, 0],
    ], dtype=np.float64),
    CubeFace.FRONT: np.array([
        [1, 0, 0],
        [0, -1, 0],
        [0, 0, 1],
    ], dtype=np.float64),
    CubeFace.BACK: np.array([
        [-1, 0, 0],
        [0, -1, 0],
        [0, 0, -1],
    ], dtype=np.float64),
}


def pixel_to_face_coords(x: float, y: float, face_size: int) -> Tuple[float, float]:
    """Map pixel (x, y) to signed face coordinates (s, t), sampling pixel centres."""
    s = 2.0 * (x + 0.5) / face_size - 1.0
    t = 2.0 * (y + 0.5) / face_size - 1.0
    return s, t


def face_direction(face: CubeFace, s: float, t: float) -> np.ndarray:
    """
    Unit direction vector through face coordinates (s, t).

    Args:
        face: Cube face
        s: Horizontal face coordinate in [-1, 1]
        t: Vertical face coordinate in [-1, 1] (top = -1)

    Returns:
        (3,) unit vector (x, y, z), +Y up, +Z front
    """
    vec = FACE_AXES[CubeFace(face)] @ np.array([s, t, 1.0])
    return vec / np.linalg.norm(vec)


def direction_to_uv(x: float, y: float, z: float) -> Tuple[float, float]:
    """
    Convert a unit direction to equirectangular UV.

    Azimuth is measured from +Z towards +X so the front direction lands on
    the horizontal centre of the panorama; v is 0 at the zenith and 1 at
    the nadir.
    """
    theta = math.atan2(x, z)
    # asin is undefined just outside [-1, 1]
    phi = math.asin(max(-1.0, min(1.0, y)))

    u = (theta + math.pi) / (2.0 * math.pi)
    v = (math.pi / 2.0 - phi) / math.pi
    return min(max(u, 0.0), 1.0), min(max(v, 0.0), 1.0)


def cube_face_to_equirect(
    face: CubeFace,
    x: int,
    y: int,
    face_size: int
) -> Tuple[float, float]:
    """
    Project the centre of face pixel (x, y) onto the equirectangular image.

    Args:
        face: Cube face
        x: Pixel column, 0 <= x < face_size
        y: Pixel row, 0 <= y < face_size
        face_size: Face edge length in pixels

    Returns:
        (u, v) in [0, 1] x [0, 1]
    """
    s, t = pixel_to_face_coords(x, y, face_size)
    dx, dy, dz = face_direction(face, s, t)
    return direction_to_uv(dx, dy, dz)


def face_uv_grid(
    face: CubeFace,
    face_size: int,
    row_start: int = 0,
    row_stop: Optional[int] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorized cube_face_to_equirect over a band of face rows.

    Args:
        face: Cube face
        face_size: Face edge length in pixels
        row_start: First row of the band
        row_stop: One past the last row (defaults to face_size)

    Returns:
        (u, v) float64 arrays of shape (rows, face_size)
    """
    if row_stop is None:
        row_stop = face_size

    cols = np.arange(face_size, dtype=np.float64)
    rows = np.arange(row_start, row_stop, dtype=np.float64)
    s = 2.0 * (cols + 0.5) / face_size - 1.0
    t = 2.0 * (rows + 0.5) / face_size - 1.0
    ss, tt = np.meshgrid(s, t)

    axes = FACE_AXES[CubeFace(face)]
    dx = axes[0, 0] * ss + axes[0, 1] * tt + axes[0, 2]
    dy = axes[1, 0] * ss + axes[1, 1] * tt + axes[1, 2]
    dz = axes[2, 0] * ss + axes[2, 1] * tt + axes[2, 2]
    del ss, tt

    norm = np.sqrt(dx * dx + dy * dy + dz * dz)
    dx /= norm
    dy /= norm
    dz /= norm
    del norm

    theta = np.arctan2(dx, dz)
    phi = np.arcsin(np.clip(dy, -1.0, 1.0))
    del dx, dy, dz

    u = np.clip((theta + np.pi) / (2.0 * np.pi), 0.0, 1.0)
    v = np.clip((np.pi / 2.0 - phi) / np.pi, 0.0, 1.0)
    return u, v
