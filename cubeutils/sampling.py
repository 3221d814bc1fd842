"""Bilinear sampling of equirectangular panoramas."""

import math
from typing import Tuple

import numpy as np


def _source_coords(u, v, width: int, height: int):
    """
    Panorama pixel coordinates for UV.

    Shared by the scalar and vectorized samplers. Works on floats or arrays.
    """
    px = u * width
    py = np.clip(v, 0.0, 1.0) * height

    x0 = np.floor(px)
    y0 = np.floor(py)
    fx = px - x0
    fy = py - y0

    x0 = x0.astype(np.int64) % width
    x1 = (x0 + 1) % width          # wrap horizontally, 360° strip
    y0 = y0.astype(np.int64)
    y1 = np.minimum(y0 + 1, height - 1)  # poles are edges, not wraps
    y0 = np.clip(y0, 0, height - 1)
    y1 = np.clip(y1, 0, height - 1)
    return x0, x1, y0, y1, fx, fy


def sample_bilinear(
    pixels: np.ndarray,
    u: float,
    v: float
) -> Tuple[int, ...]:
    """
    Sample one UV location with bilinear interpolation.

    Args:
        pixels: (H, W, C) uint8 panorama
        u: Horizontal coordinate, wraps around
        v: Vertical coordinate, clamped to [0, 1]

    Returns:
        Tuple of C channel values
    """
    height, width, channels = pixels.shape
    x0, x1, y0, y1, fx, fy = _source_coords(
        np.float64(u), np.float64(v), width, height)

    values = []
    for c in range(channels):
        v00 = float(pixels[y0, x0, c])
        v10 = float(pixels[y0, x1, c])
        v01 = float(pixels[y1, x0, c])
        v11 = float(pixels[y1, x1, c])

        top = v00 * (1.0 - fx) + v10 * fx
        bottom = v01 * (1.0 - fx) + v11 * fx
        value = top * (1.0 - fy) + bottom * fy
        values.append(int(math.floor(value + 0.5)))

    return tuple(values)


def sample_bilinear_grid(
    pixels: np.ndarray,
    u: np.ndarray,
    v: np.ndarray
) -> np.ndarray:
    """
    Vectorized sample_bilinear over a UV grid.

    Args:
        pixels: (H, W, C) uint8 panorama
        u: (h, w) horizontal coordinates
        v: (h, w) vertical coordinates

    Returns:
        (h, w, C) uint8 array
    """
    height, width = pixels.shape[:2]
    x0, x1, y0, y1, fx, fy = _source_coords(u, v, width, height)

    c00 = pixels[y0, x0].astype(np.float64)
    c10 = pixels[y0, x1].astype(np.float64)
    c01 = pixels[y1, x0].astype(np.float64)
    c11 = pixels[y1, x1].astype(np.float64)
    del x0, x1, y0, y1

    # Expand weights to broadcast over channels
    fx = fx[..., np.newaxis]
    fy = fy[..., np.newaxis]

    top = c00 * (1.0 - fx) + c10 * fx
    bottom = c01 * (1.0 - fx) + c11 * fx
    del c00, c10, c01, c11

    result = np.floor(top * (1.0 - fy) + bottom * fy + 0.5)
    return np.clip(result, 0, 255).astype(np.uint8)
