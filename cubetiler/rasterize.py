"""
Face Rasterization Pipeline Stage

Projects an equirectangular panorama onto the six cube faces. Faces are
kept as raw pixel arrays; nothing is compressed until tiling.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import numpy as np
from rich.console import Console

from cubeutils.projection import CubeFace, face_uv_grid
from cubeutils.sampling import sample_bilinear_grid

from .ingest import PanoramaImage

console = Console()

# Rows projected per step; bounds peak memory and sets the cancellation granularity
ROWS_PER_BAND = 256


class RasterizationError(Exception):
    """Error while projecting cube faces."""
    pass


class PipelineCancelled(Exception):
    """Raised at the next unit boundary after cancellation was requested."""
    pass


def check_cancelled(cancel: Optional[threading.Event], where: str) -> None:
    if cancel is not None and cancel.is_set():
        raise PipelineCancelled(f"Cancelled before {where}")


@dataclass(frozen=True)
class RawFace:
    """Uncompressed cube face. ``pixels`` is a read-only (size, size, channels) uint8 array."""
    face: CubeFace
    size: int
    channels: int
    pixels: np.ndarray


def rasterize_face(
    panorama: PanoramaImage,
    face: CubeFace,
    cube_size: int,
    cancel: Optional[threading.Event] = None,
    rows_per_band: int = ROWS_PER_BAND,
) -> RawFace:
    """
    Project one cube face from the panorama with bilinear sampling.

    Args:
        panorama: Source panorama (read only)
        face: Face to render
        cube_size: Face edge length in pixels
        cancel: Optional event checked between row bands
        rows_per_band: Rows projected per step

    Returns:
        RawFace at cube_size x cube_size
    """
    face = CubeFace(face)
    try:
        pixels = np.empty((cube_size, cube_size, panorama.channels), dtype=np.uint8)
        for start in range(0, cube_size, rows_per_band):
            check_cancelled(cancel, f"{face.value} rows {start}+")
            stop = min(start + rows_per_band, cube_size)
            u, v = face_uv_grid(face, cube_size, start, stop)
            pixels[start:stop] = sample_bilinear_grid(panorama.pixels, u, v)
    except MemoryError as e:
        raise RasterizationError(
            f"Out of memory rendering {face.value} face at {cube_size}px") from e

    pixels.setflags(write=False)
    return RawFace(face=face, size=cube_size, channels=panorama.channels, pixels=pixels)


def rasterize_cube(
    panorama: PanoramaImage,
    cube_size: int = 2048,
    max_workers: int = 1,
    cancel: Optional[threading.Event] = None,
    on_face_done: Optional[Callable[[RawFace], None]] = None,
) -> Dict[CubeFace, RawFace]:
    """
    Project all six cube faces.

    Faces share only the read-only panorama, so they can be rendered on
    separate threads (numpy releases the GIL in the sampling kernels).

    Args:
        panorama: Source panorama
        cube_size: Face edge length in pixels
        max_workers: Threads to render faces on (1 = sequential)
        cancel: Optional cancellation event
        on_face_done: Optional callback invoked as each face completes

    Returns:
        Dict of RawFace keyed by face, in CubeFace order
    """
    if cube_size <= 0:
        raise RasterizationError(f"Cube size must be positive, got {cube_size}")

    console.print(f"[blue]Converting {panorama.width}x{panorama.height} equirectangular "
                  f"to {cube_size}x{cube_size} cube faces[/blue]")

    faces: Dict[CubeFace, RawFace] = {}

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {}
            for face in CubeFace:
                futures[face] = executor.submit(
                    rasterize_face, panorama, face, cube_size, cancel
                )

            try:
                for face, future in futures.items():
                    faces[face] = future.result()
                    if on_face_done:
                        on_face_done(faces[face])
            except Exception:
                for future in futures.values():
                    future.cancel()
                raise
    else:
        for face in CubeFace:
            check_cancelled(cancel, f"{face.value} face")
            faces[face] = rasterize_face(panorama, face, cube_size, cancel)
            if on_face_done:
                on_face_done(faces[face])

    console.print(f"[green]Rendered {len(faces)} raw faces "
                  f"({cube_size}px, {panorama.channels} channel(s))[/green]")
    return faces
