"""
Main Processing Pipeline Orchestrator

Coordinates the full run from an equirectangular panorama to a cube map
tile pyramid and its manifest.
"""

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from cubeutils.validation import CubeMapManifest, LevelDescriptor, TilingOptions, validate_tile_set

from .ingest import PanoramaError, PanoramaImage, ingest
from .manifest import build_manifest
from .package import PackageError, create_zip_package, validate_tile_dir, write_tile_set
from .rasterize import PipelineCancelled, RasterizationError, rasterize_cube
from .tiles import LEVEL_CONFIGS, FIRST_LEVEL, Tile, TilingError, generate_cubemap_tiles, level_config

console = Console()
app = typer.Typer(help="Equirectangular to cube map tile pyramid")


@dataclass
class PipelineConfig:
    """Configuration for the tiling pipeline."""
    # Geometry
    cube_size: int = 2048
    tile_size: int = 512
    num_levels: int = 3

    # Encoding
    quality: int = 95
    preview_quality: int = 90

    # Execution
    max_workers: int = 1

    # Manifest
    scene_id: Optional[str] = None
    base_url: Optional[str] = None

    # Output
    create_zip: bool = False

    def tiling_options(self) -> TilingOptions:
        """Validated numeric parameters (raises pydantic.ValidationError)."""
        return TilingOptions(
            cube_size=self.cube_size,
            tile_size=self.tile_size,
            num_levels=self.num_levels,
            quality=self.quality,
            preview_quality=self.preview_quality,
        )


@dataclass
class PipelineStats:
    """Statistics collected during pipeline execution."""
    start_time: float = 0
    end_time: float = 0
    stages: Dict = field(default_factory=dict)

    def start(self):
        self.start_time = time.time()

    def stop(self):
        self.end_time = time.time()

    def record_stage(self, name: str, duration: float, **kwargs):
        self.stages[name] = {"duration_seconds": duration, **kwargs}

    @property
    def total_duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> Dict:
        return {
            "total_duration_seconds": self.total_duration,
            "stages": self.stages,
        }


def generate_tile_pyramid(
    panorama: PanoramaImage,
    config: Optional[PipelineConfig] = None,
    cancel: Optional[threading.Event] = None,
    stats: Optional[PipelineStats] = None,
    progress: Optional[Progress] = None,
) -> Tuple[List[Tile], CubeMapManifest]:
    """
    Turn a decoded panorama into tiles and a manifest, entirely in memory.

    Args:
        panorama: Source panorama
        config: Pipeline configuration
        cancel: Optional event; setting it stops the run at the next unit boundary
        stats: Optional stats collector
        progress: Optional rich progress display for per-face rendering

    Returns:
        Tuple of (tiles in emission order, manifest)
    """
    config = config or PipelineConfig()
    options = config.tiling_options()
    stats = stats or PipelineStats()

    # Stage 1: Rasterize
    stage_start = time.time()
    on_face_done = None
    if progress is not None:
        task = progress.add_task("Rendering cube faces", total=6)

        def on_face_done(raw):
            progress.advance(task)

    raw_faces = rasterize_cube(
        panorama,
        cube_size=options.cube_size,
        max_workers=config.max_workers,
        cancel=cancel,
        on_face_done=on_face_done,
    )
    stats.record_stage("rasterize", time.time() - stage_start,
                       cube_size=options.cube_size, channels=panorama.channels)

    # Stage 2: Tile
    stage_start = time.time()
    result = generate_cubemap_tiles(
        panorama,
        raw_faces,
        tile_size=options.tile_size,
        num_levels=options.num_levels,
        quality=options.quality,
        preview_quality=options.preview_quality,
        max_workers=config.max_workers,
        cancel=cancel,
    )
    # Raw faces are only needed until every level is cut
    del raw_faces
    stats.record_stage("tiles", time.time() - stage_start,
                       tile_count=len(result.tiles),
                       levels=[d.level for d in result.levels])

    # Stage 3: Manifest
    stage_start = time.time()
    manifest = build_manifest(result, scene_id=config.scene_id, base_url=config.base_url)
    errors = validate_tile_set(result.tiles, manifest)
    if errors:
        raise TilingError(f"Incomplete tile set: {'; '.join(errors)}")
    stats.record_stage("manifest", time.time() - stage_start)

    return result.tiles, manifest


def generate_from_buffer(
    buffer: Union[bytes, bytearray, memoryview],
    width: int,
    height: int,
    channels: int,
    config: Optional[PipelineConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> Tuple[List[Tile], CubeMapManifest]:
    """
    Tile a raw row-major, channel-interleaved pixel buffer.

    A buffer shorter than width * height * channels is rejected up front.
    """
    panorama = PanoramaImage.from_buffer(buffer, width, height, channels, strict=True)
    return generate_tile_pyramid(panorama, config, cancel=cancel)


def run_pipeline(
    input_path: Path,
    output_dir: Path,
    config: Optional[PipelineConfig] = None,
    cancel: Optional[threading.Event] = None,
) -> Path:
    """
    Run the complete pipeline on an image file and write the tile set.

    Args:
        input_path: Path to equirectangular image
        output_dir: Output directory; tiles land in output_dir/tiles
        config: Pipeline configuration
        cancel: Optional cancellation event

    Returns:
        Path to the tile directory
    """
    config = config or PipelineConfig()
    stats = PipelineStats()
    stats.start()

    console.print(Panel.fit(
        "[bold blue]Cube Map Tiling Pipeline[/bold blue]\n"
        f"Input: {input_path}\n"
        f"Output: {output_dir}",
        border_style="blue"
    ))

    # Ingest
    console.print("\n[bold]Stage 1: Ingest[/bold]")
    stage_start = time.time()
    try:
        panorama = ingest(input_path)
    except PanoramaError as e:
        console.print(f"[bold red]Ingestion failed:[/bold red] {e}")
        raise
    stats.record_stage("ingest", time.time() - stage_start,
                       width=panorama.width, height=panorama.height)

    # Rasterize, tile and describe
    console.print("\n[bold]Stage 2: Generate Tile Pyramid[/bold]")
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TimeElapsedColumn(),
            console=console,
        ) as progress:
            tiles, manifest = generate_tile_pyramid(
                panorama, config, cancel=cancel, stats=stats, progress=progress)
    except PipelineCancelled as e:
        console.print(f"[yellow]Pipeline cancelled:[/yellow] {e}")
        raise
    except (RasterizationError, TilingError) as e:
        console.print(f"[bold red]Tile generation failed:[/bold red] {e}")
        raise

    # Package
    console.print("\n[bold]Stage 3: Write Tile Set[/bold]")
    stage_start = time.time()
    stats.stop()
    try:
        tile_dir = write_tile_set(tiles, manifest, output_dir / "tiles", stats.to_dict())
        if config.create_zip:
            create_zip_package(tile_dir)
    except PackageError as e:
        console.print(f"[bold red]Packaging failed:[/bold red] {e}")
        raise
    stats.record_stage("package", time.time() - stage_start)

    console.print(Panel.fit(
        f"[bold green]Pipeline Complete![/bold green]\n\n"
        f"Tiles: {len(tiles)}\n"
        f"Total time: {stats.total_duration:.1f}s\n"
        f"Output: {tile_dir}",
        border_style="green"
    ))

    return tile_dir


@app.command()
def generate(
    input_path: Path = typer.Argument(..., help="Equirectangular panorama (JPEG, PNG, TIFF, WebP)"),
    output_dir: Path = typer.Option(Path("./output"), help="Output directory"),
    scene_id: Optional[str] = typer.Option(None, help="Scene id used in the preview URL"),
    cube_size: int = typer.Option(2048, help="Base cube face size in pixels"),
    tile_size: int = typer.Option(512, help="Default tile size recorded in the manifest"),
    levels: int = typer.Option(3, help="Number of pyramid levels (level 0 is skipped)"),
    workers: int = typer.Option(1, help="Worker threads for faces"),
    quality: int = typer.Option(95, help="JPEG quality for tiles"),
    zip_output: bool = typer.Option(False, "--zip", help="Also create a ZIP archive"),
):
    """
    Generate a cube map tile pyramid from an equirectangular panorama.
    """
    config = PipelineConfig(
        cube_size=cube_size,
        tile_size=tile_size,
        num_levels=levels,
        quality=quality,
        max_workers=workers,
        scene_id=scene_id,
        create_zip=zip_output,
    )

    try:
        run_pipeline(input_path, output_dir, config)
    except Exception as e:
        console.print(f"[bold red]Pipeline failed:[/bold red] {e}")
        raise typer.Exit(1)


@app.command("levels")
def list_levels(
    levels: int = typer.Option(3, help="Number of pyramid levels"),
):
    """List the level table and which levels a run generates."""
    console.print("[bold]Pyramid Levels:[/bold]\n")
    for index in range(max(levels, len(LEVEL_CONFIGS))):
        config = level_config(index)
        descriptor = LevelDescriptor(level=index, size=config.resolution, tile_size=config.tile_size)
        generated = FIRST_LEVEL <= index < levels
        status = "[green]generated[/green]" if generated else "[dim]skipped[/dim]"
        console.print(f"  [blue]Level {index}[/blue]: {descriptor.size}px, "
                      f"{descriptor.tiles}x{descriptor.tiles} tiles of {descriptor.tile_size}px ({status})")


@app.command("validate")
def validate(
    tile_dir: Path = typer.Argument(..., help="Tile directory to validate"),
):
    """Validate a written tile set against its manifest."""
    errors = validate_tile_dir(tile_dir)

    if errors:
        console.print("[red]Validation failed:[/red]")
        for error in errors:
            console.print(f"  [red]• {error}[/red]")
        raise typer.Exit(1)
    else:
        console.print("[green]Tile set is valid![/green]")


if __name__ == "__main__":
    app()
