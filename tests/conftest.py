"""Shared fixtures: synthetic panoramas with known content."""

import numpy as np
import pytest

from cubetiler.ingest import PanoramaImage


FACE_COLORS = {
    "front": (220, 40, 40),
    "back": (40, 200, 40),
    "right": (40, 40, 220),
    "left": (220, 220, 40),
    "top": (40, 220, 220),
    "bottom": (220, 40, 220),
}


def create_face_color_panorama(width: int = 256) -> PanoramaImage:
    """Equirectangular image colored by the cube face each pixel's direction hits."""
    height = width // 2
    theta = ((np.arange(width) + 0.5) / width) * 2.0 * np.pi - np.pi
    phi = np.pi / 2.0 - ((np.arange(height) + 0.5) / height) * np.pi
    tt, pp = np.meshgrid(theta, phi)

    x = np.cos(pp) * np.sin(tt)
    y = np.sin(pp)
    z = np.cos(pp) * np.cos(tt)
    ax, ay, az = np.abs(x), np.abs(y), np.abs(z)

    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    pixels[(ax >= ay) & (ax >= az) & (x > 0)] = FACE_COLORS["right"]
    pixels[(ax >= ay) & (ax >= az) & (x <= 0)] = FACE_COLORS["left"]
    pixels[(ay > ax) & (ay >= az) & (y > 0)] = FACE_COLORS["top"]
    pixels[(ay > ax) & (ay >= az) & (y <= 0)] = FACE_COLORS["bottom"]
    pixels[(az > ax) & (az > ay) & (z > 0)] = FACE_COLORS["front"]
    pixels[(az > ax) & (az > ay) & (z <= 0)] = FACE_COLORS["back"]

    return PanoramaImage.from_buffer(pixels.tobytes(), width, height, 3)


def create_noise_panorama(width: int = 64, channels: int = 3, seed: int = 0) -> PanoramaImage:
    """Random panorama for determinism checks."""
    height = width // 2
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)
    return PanoramaImage.from_buffer(pixels.tobytes(), width, height, channels)


@pytest.fixture
def face_color_panorama():
    return create_face_color_panorama()


@pytest.fixture
def noise_panorama():
    return create_noise_panorama()


@pytest.fixture(scope="session")
def default_pyramid():
    """Tiles and geometry for a small cube at the default three levels."""
    from cubetiler.rasterize import rasterize_cube
    from cubetiler.tiles import generate_cubemap_tiles

    panorama = create_face_color_panorama(128)
    raw_faces = rasterize_cube(panorama, cube_size=32)
    return generate_cubemap_tiles(panorama, raw_faces, tile_size=512, num_levels=3)
