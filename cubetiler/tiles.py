"""
Multi-Resolution Tiling Pipeline Stage

Resizes raw cube faces to each pyramid level and slices them into JPEG
tiles. Resizing always starts from the raw faces and every tile is
encoded exactly once.
"""

import io
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image
from rich.console import Console

from cubeutils.projection import CubeFace
from cubeutils.validation import (
    PREVIEW_KEY,
    PREVIEW_LEVEL,
    LevelConfig,
    LevelDescriptor,
    tile_key,
)

from .ingest import PanoramaImage
from .rasterize import RawFace, check_cancelled

console = Console()


# Face resolution and tile edge per level. Levels past the end reuse the last row.
LEVEL_CONFIGS: List[LevelConfig] = [
    LevelConfig(resolution=512, tile_size=512),    # Level 0: reserved, not generated
    LevelConfig(resolution=1024, tile_size=512),   # Level 1: 2x2 tiles
    LevelConfig(resolution=2048, tile_size=512),   # Level 2: 4x4 tiles
    LevelConfig(resolution=4096, tile_size=512),   # Level 3: 8x8 tiles
]

# TODO: confirm with product whether level 0 should ship as a low-detail tier
# or be dropped from LEVEL_CONFIGS; viewers currently expect it to be absent.
FIRST_LEVEL = 1

PREVIEW_SIZE = (512, 256)
JPEG_QUALITY = 95
PREVIEW_QUALITY = 90


class TilingError(Exception):
    """Error during tile generation."""
    pass


class TileEncodingError(TilingError):
    """The JPEG codec failed on a single tile."""

    def __init__(self, message: str, face: Optional[CubeFace] = None, level: Optional[int] = None,
                 x: Optional[int] = None, y: Optional[int] = None):
        super().__init__(message)
        self.face = face
        self.level = level
        self.x = x
        self.y = y


@dataclass(frozen=True)
class Tile:
    """One compressed tile, addressed by (face, level, x, y)."""
    face: CubeFace
    level: int
    x: int
    y: int
    data: bytes = field(repr=False)
    key: str


@dataclass
class TilingResult:
    """Tiles in emission order plus the geometry the manifest is built from."""
    tiles: List[Tile]
    levels: List[LevelDescriptor]
    cube_size: int
    tile_size: int

    @property
    def preview(self) -> Tile:
        return self.tiles[0]

    def by_key(self) -> Dict[str, Tile]:
        return {t.key: t for t in self.tiles}


def level_config(level: int, configs: Sequence[LevelConfig] = LEVEL_CONFIGS) -> LevelConfig:
    """Level table lookup, clamped to the table bounds."""
    if not configs:
        raise TilingError("Level table is empty")
    return configs[min(max(level, 0), len(configs) - 1)]


def level_descriptors(
    num_levels: int,
    configs: Sequence[LevelConfig] = LEVEL_CONFIGS
) -> List[LevelDescriptor]:
    """Descriptors for the generated levels, FIRST_LEVEL .. num_levels - 1."""
    descriptors = []
    for level in range(FIRST_LEVEL, num_levels):
        config = level_config(level, configs)
        descriptors.append(LevelDescriptor(
            level=level,
            size=config.resolution,
            tile_size=config.tile_size,
        ))
    return descriptors


def _to_image(pixels: np.ndarray) -> Image.Image:
    # uint8 arrays map to L / LA / RGB / RGBA by channel count
    if pixels.shape[2] == 1:
        pixels = pixels[:, :, 0]
    return Image.fromarray(np.ascontiguousarray(pixels))


def _from_image(img: Image.Image) -> np.ndarray:
    pixels = np.array(img, dtype=np.uint8)
    if pixels.ndim == 2:
        pixels = pixels[:, :, np.newaxis]
    return pixels


def resize_face(raw: RawFace, size: int) -> RawFace:
    """
    Resize a raw face with a Lanczos kernel.

    Only raw faces are accepted, so already-compressed tiles can never be
    fed back through a resize.
    """
    if not isinstance(raw, RawFace):
        raise TypeError(f"resize_face expects a RawFace, got {type(raw).__name__}")
    if size <= 0:
        raise TilingError(f"Level size must be positive, got {size}")
    if raw.size == size:
        return raw

    img = _to_image(raw.pixels).resize((size, size), Image.Resampling.LANCZOS)
    pixels = _from_image(img)
    pixels.setflags(write=False)
    return RawFace(face=raw.face, size=size, channels=raw.channels, pixels=pixels)


def slice_face(raw: RawFace, tile_size: int) -> Iterator[Tuple[int, int, np.ndarray]]:
    """
    Yield (x, y, pixels) crops row by row; the last row and column may be short.
    """
    if tile_size <= 0:
        raise TilingError(f"Tile size must be positive, got {tile_size}")

    tiles_per_side = -(-raw.size // tile_size)
    for y in range(tiles_per_side):
        for x in range(tiles_per_side):
            top = y * tile_size
            left = x * tile_size
            yield x, y, raw.pixels[top:top + tile_size, left:left + tile_size]


def encode_jpeg(pixels: np.ndarray, quality: int = JPEG_QUALITY) -> bytes:
    """
    Compress a raw (h, w, C) crop to baseline JPEG with 4:4:4 chroma.

    JPEG carries no alpha, so the alpha channel of LA / RGBA input is dropped.
    """
    channels = pixels.shape[2]
    if channels == 2:
        pixels = pixels[:, :, :1]
    elif channels == 4:
        pixels = pixels[:, :, :3]

    buffer = io.BytesIO()
    _to_image(pixels).save(buffer, "JPEG", quality=quality, subsampling=0)
    return buffer.getvalue()


def generate_preview(
    panorama: PanoramaImage,
    size: Tuple[int, int] = PREVIEW_SIZE,
    quality: int = PREVIEW_QUALITY,
) -> Tile:
    """Stretch the whole panorama to the preview size and encode it."""
    img = _to_image(panorama.pixels).resize(size, Image.Resampling.LANCZOS)
    try:
        data = encode_jpeg(_from_image(img), quality)
    except (OSError, ValueError) as e:
        raise TileEncodingError(f"Failed to encode preview: {e}", level=PREVIEW_LEVEL, x=0, y=0) from e

    return Tile(face=CubeFace.FRONT, level=PREVIEW_LEVEL, x=0, y=0, data=data, key=PREVIEW_KEY)


def tile_face(
    raw: RawFace,
    level: int,
    config: LevelConfig,
    quality: int = JPEG_QUALITY,
    cancel: Optional[threading.Event] = None,
) -> List[Tile]:
    """Resize one raw face to a level and encode its tiles."""
    check_cancelled(cancel, f"{raw.face.value} l{level}")
    resized = resize_face(raw, config.resolution)

    tiles = []
    for x, y, crop in slice_face(resized, config.tile_size):
        check_cancelled(cancel, f"{raw.face.value} l{level} tile {x},{y}")
        try:
            data = encode_jpeg(crop, quality)
        except (OSError, ValueError) as e:
            raise TileEncodingError(
                f"Failed to encode tile {raw.face.value} l{level} ({x}, {y}): {e}",
                face=raw.face, level=level, x=x, y=y,
            ) from e

        tiles.append(Tile(
            face=raw.face,
            level=level,
            x=x,
            y=y,
            data=data,
            key=tile_key(raw.face, level, x, y),
        ))
    return tiles


def generate_cubemap_tiles(
    panorama: PanoramaImage,
    raw_faces: Dict[CubeFace, RawFace],
    tile_size: int = 512,
    num_levels: int = 3,
    quality: int = JPEG_QUALITY,
    preview_quality: int = PREVIEW_QUALITY,
    configs: Sequence[LevelConfig] = LEVEL_CONFIGS,
    max_workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> TilingResult:
    """
    Build the preview and every pyramid tile.

    Args:
        panorama: Source panorama, used for the preview only
        raw_faces: Six raw faces at the base cube size
        tile_size: Default tile size recorded in the manifest; per-level
            tile edges come from the level table
        num_levels: Levels FIRST_LEVEL .. num_levels - 1 are generated
        quality: JPEG quality for pyramid tiles
        preview_quality: JPEG quality for the preview
        configs: Level table
        max_workers: Threads to tile faces on within a level (1 = sequential)
        cancel: Optional cancellation event

    Returns:
        TilingResult with tiles in emission order
    """
    missing = [f.value for f in CubeFace if f not in raw_faces]
    if missing:
        raise TilingError(f"Missing raw faces: {', '.join(missing)}")
    if num_levels < 1:
        raise TilingError(f"num_levels must be at least 1, got {num_levels}")

    cube_size = raw_faces[CubeFace.FRONT].size
    check_cancelled(cancel, "preview")
    tiles = [generate_preview(panorama, quality=preview_quality)]

    levels = level_descriptors(num_levels, configs)
    for descriptor in levels:
        config = level_config(descriptor.level, configs)
        console.print(f"  Level {descriptor.level}: {descriptor.size}x{descriptor.size} per face, "
                      f"{descriptor.tiles}x{descriptor.tiles} tiles of "
                      f"{descriptor.tile_size}x{descriptor.tile_size}")

        ordered = [raw_faces[face] for face in CubeFace]
        if max_workers > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                per_face = list(executor.map(
                    lambda raw: tile_face(raw, descriptor.level, config, quality, cancel),
                    ordered,
                ))
        else:
            per_face = [tile_face(raw, descriptor.level, config, quality, cancel)
                        for raw in ordered]

        for face_tiles in per_face:
            tiles.extend(face_tiles)

    console.print(f"[green]Generated {len(tiles)} tiles "
                  f"(preview + {len(levels)} level(s))[/green]")

    return TilingResult(tiles=tiles, levels=levels, cube_size=cube_size, tile_size=tile_size)
