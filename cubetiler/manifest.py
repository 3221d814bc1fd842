"""
Manifest Pipeline Stage

Aggregates tiling geometry into the cube map manifest consumed by the viewer.
"""

import os
from pathlib import Path
from typing import Optional

from rich.console import Console

from cubeutils.projection import CubeFace
from cubeutils.validation import PREVIEW_KEY, CubeMapManifest, validate_manifest_file

from .tiles import TilingResult

console = Console()

DEFAULT_PUBLIC_URL = "https://test.thenimto.com"


class ManifestError(Exception):
    """Error building or reading a manifest."""
    pass


def public_base_url() -> str:
    """Storage base URL, from CUBETILER_PUBLIC_URL when set."""
    return os.environ.get("CUBETILER_PUBLIC_URL", DEFAULT_PUBLIC_URL).rstrip("/")


def preview_url(base_url: str, scene_id: str) -> str:
    return f"{base_url.rstrip('/')}/scenes/{scene_id}/tiles/{PREVIEW_KEY}"


def build_manifest(
    result: TilingResult,
    scene_id: Optional[str] = None,
    base_url: Optional[str] = None,
) -> CubeMapManifest:
    """
    Build the manifest for a tiling run.

    Args:
        result: Output of generate_cubemap_tiles
        scene_id: Scene identifier used in the preview locator
        base_url: Storage base URL (defaults to public_base_url())

    Returns:
        CubeMapManifest
    """
    if scene_id:
        preview = preview_url(base_url or public_base_url(), scene_id)
    else:
        preview = PREVIEW_KEY

    return CubeMapManifest(
        cube_size=result.cube_size,
        tile_size=result.tile_size,
        levels=list(result.levels),
        faces=list(CubeFace),
        preview=preview,
    )


def write_manifest(manifest: CubeMapManifest, output_path: Path) -> Path:
    """Write manifest.json with the viewer's camelCase field names."""
    output_path = output_path.with_name("manifest.json")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(manifest.to_json())

    console.print(f"[green]Created manifest: {output_path}[/green]")
    return output_path


def load_manifest(manifest_path: Path) -> CubeMapManifest:
    """Read and validate manifest.json."""
    is_valid, manifest, errors = validate_manifest_file(manifest_path)
    if not is_valid:
        raise ManifestError(f"Invalid manifest {manifest_path}: {'; '.join(errors)}")
    return manifest
