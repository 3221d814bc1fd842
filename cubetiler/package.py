"""
Packaging Pipeline Stage

Writes a tile set and its manifest to a local directory laid out by storage
key, the same layout the object store uses under scenes/{scene_id}/tiles/.
"""

import json
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from rich.console import Console

from cubeutils.validation import PREVIEW_KEY, CubeMapManifest, validate_manifest_file

from .manifest import write_manifest
from .tiles import Tile

console = Console()


class PackageError(Exception):
    """Error during tile set packaging."""
    pass


def _swap_into_place(staging_dir: Path, output_dir: Path) -> None:
    """Replace output_dir with staging_dir, dropping whatever a previous run left."""
    retired_dir = None
    try:
        if output_dir.exists():
            retired_dir = output_dir.with_name(f".{output_dir.name}-retired-{staging_dir.name}")
            output_dir.rename(retired_dir)
        staging_dir.rename(output_dir)
    except OSError as e:
        if retired_dir is not None and retired_dir.exists() and not output_dir.exists():
            retired_dir.rename(output_dir)
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise PackageError(f"Failed to publish tile set to {output_dir}: {e}")

    if retired_dir is not None:
        shutil.rmtree(retired_dir, ignore_errors=True)


def write_tile_set(
    tiles: List[Tile],
    manifest: CubeMapManifest,
    output_dir: Path,
    processing_stats: Optional[Dict] = None,
) -> Path:
    """
    Write every tile under its key plus manifest.json.

    The set is staged in a sibling directory and swapped in once complete,
    so output_dir never mixes tiles from different runs.

    Package structure:
    tiles/
    ├── manifest.json
    ├── stats.json (optional)
    ├── preview.jpg
    └── {face}_l{level}_{x}_{y}.jpg

    Args:
        tiles: Tiles in emission order
        manifest: Manifest for the tiles
        output_dir: Directory to write into
        processing_stats: Optional processing statistics

    Returns:
        Path to the tile directory
    """
    keys = [t.key for t in tiles]
    if len(set(keys)) != len(keys):
        raise PackageError("Tile set contains duplicate keys")

    output_dir.parent.mkdir(parents=True, exist_ok=True)
    console.print(f"[blue]Writing {len(tiles)} tiles to {output_dir}[/blue]")

    # The live directory only ever holds a complete set: build a sibling, then swap
    staging_dir = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}-", dir=output_dir.parent))
    staging_dir.chmod(0o755)
    try:
        for tile in tiles:
            (staging_dir / tile.key).write_bytes(tile.data)

        write_manifest(manifest, staging_dir / "manifest.json")

        if processing_stats:
            with open(staging_dir / "stats.json", "w") as f:
                json.dump(processing_stats, f, indent=2)
    except OSError as e:
        shutil.rmtree(staging_dir, ignore_errors=True)
        raise PackageError(f"Failed to write tiles: {e}")

    _swap_into_place(staging_dir, output_dir)

    total_size = sum(len(t.data) for t in tiles)
    console.print(f"[bold green]Tile set written: {output_dir}[/bold green]")
    console.print(f"  Total size: {total_size / (1024 * 1024):.1f} MB")

    return output_dir


def create_zip_package(
    tile_dir: Path,
    output_path: Optional[Path] = None
) -> Path:
    """
    Create a ZIP archive of a tile directory.

    Args:
        tile_dir: Directory containing the tiles
        output_path: Optional output path for ZIP (defaults to tile_dir.zip)

    Returns:
        Path to created ZIP file
    """
    if output_path is None:
        output_path = tile_dir.with_suffix('.zip')

    output_path = output_path.with_suffix('.zip')

    shutil.make_archive(
        str(output_path.with_suffix('')),
        'zip',
        tile_dir.parent,
        tile_dir.name
    )

    console.print(f"[green]Created ZIP: {output_path}[/green]")
    console.print(f"  Size: {output_path.stat().st_size / (1024*1024):.1f} MB")

    return output_path


def validate_tile_dir(tile_dir: Path) -> List[str]:
    """
    Validate a tile directory holds exactly the tiles its manifest addresses.

    Returns:
        List of validation errors (empty if valid)
    """
    is_valid, manifest, errors = validate_manifest_file(tile_dir / "manifest.json")
    if not is_valid:
        return [f"manifest.json: {e}" for e in errors]

    expected = set(manifest.iter_tile_keys())
    expected.add(PREVIEW_KEY)
    present = {p.name for p in tile_dir.glob("*.jpg")}

    missing = sorted(expected - present)
    unexpected = sorted(present - expected)
    if missing:
        errors.append(f"Missing {len(missing)} tile(s), first: {missing[0]}")
    if unexpected:
        errors.append(f"Unexpected {len(unexpected)} tile(s), first: {unexpected[0]}")

    return errors
