#!/usr/bin/env python3
"""
Generate a synthetic equirectangular panorama with known cube face colors.

Every pixel is colored by the cube face its view direction hits, with
graticule lines every 30°. After tiling, each face's tiles should be a
single color (plus grid lines), which makes axis or orientation mistakes
obvious at a glance.

Usage:
    python scripts/generate_test_panorama.py [output.png] [width]

Then run the pipeline:
    python -m cubetiler.process generate test_panorama.png --output-dir output/
"""

import sys
from pathlib import Path

import numpy as np
from PIL import Image


# ── Scene: one color per cube face ───────────────────────────────────

FACE_COLORS = {
    "front":  (220,  40,  40),   # +Z RED
    "back":   ( 40, 200,  40),   # -Z GREEN
    "right":  ( 40,  40, 220),   # +X BLUE
    "left":   (220, 220,  40),   # -X YELLOW
    "top":    ( 40, 220, 220),   # +Y CYAN
    "bottom": (220,  40, 220),   # -Y MAGENTA
}

GRID_STEP_DEG = 30.0
GRID_COLOR = (250, 250, 250)
GRID_WIDTH_DEG = 0.4


def panorama_directions(width: int, height: int):
    """Unit view direction (x, y, z) through each panorama pixel centre."""
    u = (np.arange(width) + 0.5) / width
    v = (np.arange(height) + 0.5) / height
    theta = u * 2.0 * np.pi - np.pi          # azimuth from +Z towards +X
    phi = np.pi / 2.0 - v * np.pi            # elevation, +90° at the top row
    tt, pp = np.meshgrid(theta, phi)

    x = np.cos(pp) * np.sin(tt)
    y = np.sin(pp)
    z = np.cos(pp) * np.cos(tt)
    return x, y, z, tt, pp


def render_panorama(width: int) -> Image.Image:
    height = width // 2
    x, y, z, theta, phi = panorama_directions(width, height)

    img = np.zeros((height, width, 3), dtype=np.uint8)
    ax, ay, az = np.abs(x), np.abs(y), np.abs(z)

    # Dominant axis decides the face
    masks = {
        "right": (ax >= ay) & (ax >= az) & (x > 0),
        "left": (ax >= ay) & (ax >= az) & (x <= 0),
        "top": (ay > ax) & (ay >= az) & (y > 0),
        "bottom": (ay > ax) & (ay >= az) & (y <= 0),
        "front": (az > ax) & (az > ay) & (z > 0),
        "back": (az > ax) & (az > ay) & (z <= 0),
    }
    for name, mask in masks.items():
        img[mask] = FACE_COLORS[name]

    lon = np.degrees(theta)
    lat = np.degrees(phi)
    on_grid = (
        (np.abs((lon + 180.0) % GRID_STEP_DEG) < GRID_WIDTH_DEG)
        | (np.abs((lat + 90.0) % GRID_STEP_DEG) < GRID_WIDTH_DEG)
    )
    img[on_grid] = GRID_COLOR

    return Image.fromarray(img)


# ── Main ─────────────────────────────────────────────────────────────

def main():
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("test_panorama.png")
    width = int(sys.argv[2]) if len(sys.argv) > 2 else 4096

    print(f"Rendering {width}×{width // 2} synthetic panorama …")
    render_panorama(width).save(out)

    print(f"\nSynthetic panorama: {out}")
    print("  Faces: RED(front) GREEN(back) BLUE(right) YELLOW(left) CYAN(top) MAGENTA(bottom)")
    print(f"  Grid: every {GRID_STEP_DEG:.0f}°")
    print(f"\nRun pipeline:  python -m cubetiler.process generate {out} --output-dir output/")


if __name__ == "__main__":
    main()
