"""Projection, sampling and validation utilities for cube map tiling."""

from .projection import (
    CubeFace,
    FACE_AXES,
    cube_face_to_equirect,
    face_direction,
    face_uv_grid,
)
from .sampling import (
    sample_bilinear,
    sample_bilinear_grid,
)
from .validation import (
    CubeMapManifest,
    LevelConfig,
    LevelDescriptor,
    tile_key,
    validate_panorama,
    validate_tile_set,
)

__all__ = [
    "CubeFace",
    "FACE_AXES",
    "cube_face_to_equirect",
    "face_direction",
    "face_uv_grid",
    "sample_bilinear",
    "sample_bilinear_grid",
    "CubeMapManifest",
    "LevelConfig",
    "LevelDescriptor",
    "tile_key",
    "validate_panorama",
    "validate_tile_set",
]
