"""Validation utilities for panoramas, tile sets and cube map manifests."""

import json
import math
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, computed_field, field_validator

from .projection import CubeFace


TILE_EXTENSION = "jpg"
PREVIEW_KEY = f"preview.{TILE_EXTENSION}"
PREVIEW_LEVEL = -1


def tile_key(face: CubeFace, level: int, x: int, y: int) -> str:
    """Storage key for a pyramid tile, e.g. ``front_l2_3_1.jpg``."""
    return f"{CubeFace(face).value}_l{level}_{x}_{y}.{TILE_EXTENSION}"


# Pydantic models for pipeline records


class LevelConfig(BaseModel):
    """One row of the level table: face resolution and tile edge at a level."""
    resolution: int = Field(..., gt=0)
    tile_size: int = Field(..., gt=0)

    model_config = {"frozen": True}


class LevelDescriptor(BaseModel):
    level: int = Field(..., ge=PREVIEW_LEVEL)
    size: int = Field(..., gt=0)
    tile_size: int = Field(..., gt=0, alias="tileSize")

    model_config = {"populate_by_name": True, "frozen": True}

    @computed_field
    @property
    def tiles(self) -> int:
        """Tiles per face side."""
        return math.ceil(self.size / self.tile_size)


class CubeMapManifest(BaseModel):
    """Pydantic model for the cube map pyramid descriptor."""

    type: Literal["cubemap"] = "cubemap"
    cube_size: int = Field(..., gt=0, alias="cubeSize")
    # Default tile size, kept for consumers that predate per-level tile sizes
    tile_size: int = Field(..., gt=0, alias="tileSize")
    levels: List[LevelDescriptor] = Field(default_factory=list)
    faces: List[CubeFace] = Field(default_factory=lambda: list(CubeFace))
    preview: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("levels")
    @classmethod
    def validate_level_order(cls, v):
        indices = [lvl.level for lvl in v]
        if indices != sorted(set(indices)):
            raise ValueError(f"Levels must be unique and ascending, got {indices}")
        return v

    @field_validator("faces")
    @classmethod
    def validate_faces(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Duplicate face in manifest")
        return v

    def level(self, index: int) -> LevelDescriptor:
        for descriptor in self.levels:
            if descriptor.level == index:
                return descriptor
        raise KeyError(f"No level {index} in manifest")

    def tile_key(self, face: CubeFace, level: int, x: int, y: int) -> str:
        return tile_key(face, level, x, y)

    def iter_tile_keys(self) -> Iterator[str]:
        """Yield every pyramid tile key in emission order (preview excluded)."""
        for descriptor in self.levels:
            for face in self.faces:
                for y in range(descriptor.tiles):
                    for x in range(descriptor.tiles):
                        yield tile_key(face, descriptor.level, x, y)

    @property
    def tile_count(self) -> int:
        """Pyramid tiles plus the preview."""
        return 1 + sum(len(self.faces) * d.tiles * d.tiles for d in self.levels)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class TilingOptions(BaseModel):
    """Numeric parameters for one tiling run."""
    cube_size: int = Field(default=2048, gt=0)
    tile_size: int = Field(default=512, gt=0)
    num_levels: int = Field(default=3, ge=1)
    quality: int = Field(default=95, ge=1, le=100)
    preview_quality: int = Field(default=90, ge=1, le=100)


def validate_panorama(panorama) -> Tuple[bool, Dict, List[str]]:
    """
    Check a decoded panorama's geometry.

    Checks:
    - Width, height and channel count are sane (errors)
    - Aspect ratio is close to 2:1 (warning)
    - Width is at least 2048 px (warning)

    Returns:
        Tuple of (is_valid, info, list_of_warnings)
    """
    warnings = []
    info = {
        "width": panorama.width,
        "height": panorama.height,
        "channels": panorama.channels,
    }

    if panorama.width <= 0 or panorama.height <= 0:
        return False, info, [f"Invalid dimensions {panorama.width}x{panorama.height}"]
    if panorama.channels not in (1, 2, 3, 4):
        return False, info, [f"Unsupported channel count: {panorama.channels}"]

    aspect_ratio = panorama.width / panorama.height
    info["aspect_ratio"] = aspect_ratio

    if abs(aspect_ratio - 2.0) > 0.1:
        warnings.append(
            f"Aspect ratio {aspect_ratio:.2f} is not 2:1, "
            "faces will be stretched")
    if panorama.width < 2048:
        warnings.append(
            f"Width {panorama.width}px is below 2048px, tiles will be upsampled")

    return True, info, warnings


def validate_tile_set(tiles: Iterable, manifest: CubeMapManifest) -> List[str]:
    """
    Check that a tile set is exactly the one the manifest addresses.

    A partial tile set is not publishable, so missing keys are errors.

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []
    counts = Counter(t.key for t in tiles)

    for key, count in counts.items():
        if count > 1:
            errors.append(f"Duplicate tile key: {key}")

    expected = set(manifest.iter_tile_keys())
    expected.add(PREVIEW_KEY)

    missing = sorted(expected - counts.keys())
    unexpected = sorted(counts.keys() - expected)
    if missing:
        errors.append(f"Missing {len(missing)} tile(s), first: {missing[0]}")
    if unexpected:
        errors.append(f"Unexpected {len(unexpected)} tile(s), first: {unexpected[0]}")

    return errors


def validate_manifest_file(manifest_path: Path) -> Tuple[bool, Optional[CubeMapManifest], List[str]]:
    """
    Validate a manifest.json file.

    Args:
        manifest_path: Path to manifest.json

    Returns:
        Tuple of (is_valid, parsed_manifest, list_of_errors)
    """
    if not manifest_path.exists():
        return False, None, ["Manifest file does not exist"]

    try:
        with open(manifest_path, "r") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        return False, None, [f"Invalid JSON: {e}"]

    try:
        manifest = CubeMapManifest(**data)
        return True, manifest, []
    except (TypeError, ValidationError) as e:
        return False, None, [str(e)]
