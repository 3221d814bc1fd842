"""
Ingestion Pipeline Stage

Decodes equirectangular panoramas into raw pixel arrays and checks their
declared geometry.
"""

import io
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np
from PIL import Image, UnidentifiedImageError
from rich.console import Console

from cubeutils.validation import validate_panorama

console = Console()

# Large panoramas trip PIL's decompression bomb guard
Image.MAX_IMAGE_PIXELS = None

# Modes passed through as-is, keyed by channel count
CHANNEL_MODES = {1: "L", 2: "LA", 3: "RGB", 4: "RGBA"}


class PanoramaError(Exception):
    """Malformed or undecodable panorama input."""
    pass


@dataclass(frozen=True)
class PanoramaImage:
    """Decoded panorama. ``pixels`` is a read-only (height, width, channels) uint8 array."""
    width: int
    height: int
    channels: int
    pixels: np.ndarray

    @classmethod
    def from_buffer(
        cls,
        buffer: Union[bytes, bytearray, memoryview, np.ndarray],
        width: int,
        height: int,
        channels: int,
        strict: bool = True,
    ) -> "PanoramaImage":
        """
        Wrap a row-major, channel-interleaved raw buffer.

        Args:
            buffer: Raw pixel bytes
            width: Declared width in pixels
            height: Declared height in pixels
            channels: Declared channels per pixel (1-4)
            strict: Raise on a short buffer instead of reading missing pixels as 0

        Returns:
            PanoramaImage owning a private copy of the pixels
        """
        for name, value in (("width", width), ("height", height), ("channels", channels)):
            # numpy integers count; bools do not
            if not isinstance(value, numbers.Integral) or isinstance(value, bool):
                raise PanoramaError(f"Panorama {name} must be an integer, got {type(value).__name__}")
        width, height, channels = int(width), int(height), int(channels)

        if width <= 0 or height <= 0:
            raise PanoramaError(f"Invalid panorama dimensions: {width}x{height}")
        if channels not in CHANNEL_MODES:
            raise PanoramaError(f"Unsupported channel count: {channels} (expected 1-4)")

        if isinstance(buffer, np.ndarray):
            data = buffer.astype(np.uint8, copy=False).ravel()
        else:
            data = np.frombuffer(bytes(buffer), dtype=np.uint8)
        expected = width * height * channels

        if data.size < expected:
            if strict:
                raise PanoramaError(
                    f"Pixel buffer holds {data.size} bytes, "
                    f"{width}x{height}x{channels} needs {expected}")
            padded = np.zeros(expected, dtype=np.uint8)
            padded[:data.size] = data
            data = padded

        pixels = data[:expected].reshape(height, width, channels).copy()
        pixels.setflags(write=False)
        return cls(width=width, height=height, channels=channels, pixels=pixels)

    @classmethod
    def from_image(cls, img: Image.Image) -> "PanoramaImage":
        """Wrap a PIL image, converting modes without a 1-4 channel uint8 layout."""
        if img.mode not in CHANNEL_MODES.values():
            has_alpha = "A" in img.getbands() or "transparency" in img.info
            img = img.convert("RGBA" if has_alpha else "RGB")

        pixels = np.array(img, dtype=np.uint8)
        if pixels.ndim == 2:
            pixels = pixels[:, :, np.newaxis]
        pixels.setflags(write=False)
        height, width, channels = pixels.shape
        return cls(width=width, height=height, channels=channels, pixels=pixels)


def load_panorama(source: Union[Path, str, bytes]) -> PanoramaImage:
    """
    Decode a panorama from a file path or encoded image bytes.

    Args:
        source: Path to an image file, or the encoded file contents

    Returns:
        Decoded PanoramaImage
    """
    if isinstance(source, (bytes, bytearray)):
        stream = io.BytesIO(source)
        label = f"<{len(source)} bytes>"
    else:
        source = Path(source)
        if not source.exists():
            raise PanoramaError(f"Panorama not found: {source}")
        stream = source
        label = source.name

    try:
        with Image.open(stream) as img:
            img.load()
            panorama = PanoramaImage.from_image(img)
    except (UnidentifiedImageError, OSError) as e:
        raise PanoramaError(f"Failed to decode panorama {label}: {e}")

    console.print(f"[green]Loaded panorama {label}: "
                  f"{panorama.width}x{panorama.height}, {panorama.channels} channel(s)[/green]")
    return panorama


def ingest(source: Union[Path, str, bytes], validate: bool = True) -> PanoramaImage:
    """
    Load a panorama and report geometry warnings.

    Args:
        source: Path or encoded bytes
        validate: Whether to run geometry validation

    Returns:
        Decoded PanoramaImage
    """
    panorama = load_panorama(source)

    if validate:
        is_valid, info, warnings = validate_panorama(panorama)
        for warning in warnings:
            console.print(f"  [yellow]• {warning}[/yellow]")
        if not is_valid:
            raise PanoramaError("Panorama validation failed")

    return panorama
