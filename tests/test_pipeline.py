"""Integration tests for the processing pipeline."""

import io
import json
import threading
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from conftest import create_face_color_panorama


def encode_png(pixels: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    img = Image.fromarray(pixels)
    img.save(buffer, "PNG")
    return buffer.getvalue()


def write_test_panorama(path: Path, width: int = 64) -> Path:
    """Save the face-colored panorama as a PNG file."""
    panorama = create_face_color_panorama(width)
    path.write_bytes(encode_png(np.array(panorama.pixels)))
    return path


class TestIngest:
    """Tests for panorama decoding and raw buffers."""

    def test_from_buffer(self):
        from cubetiler.ingest import PanoramaImage

        buffer = bytes(range(24))
        panorama = PanoramaImage.from_buffer(buffer, 4, 2, 3)

        assert panorama.pixels.shape == (2, 4, 3)
        assert tuple(panorama.pixels[1, 0]) == (12, 13, 14)

    def test_pixels_read_only(self):
        from cubetiler.ingest import PanoramaImage

        panorama = PanoramaImage.from_buffer(bytes(8), 4, 2, 1)
        with pytest.raises(ValueError):
            panorama.pixels[0, 0, 0] = 1

    def test_buffer_is_copied(self):
        from cubetiler.ingest import PanoramaImage

        buffer = bytearray(8)
        panorama = PanoramaImage.from_buffer(buffer, 4, 2, 1)
        buffer[0] = 99
        assert panorama.pixels[0, 0, 0] == 0

    def test_short_buffer_strict(self):
        from cubetiler.ingest import PanoramaError, PanoramaImage

        with pytest.raises(PanoramaError, match="needs 24"):
            PanoramaImage.from_buffer(bytes(10), 4, 2, 3)

    def test_short_buffer_lenient(self):
        from cubetiler.ingest import PanoramaImage

        panorama = PanoramaImage.from_buffer(bytes([5]) * 10, 4, 2, 3, strict=False)
        flat = panorama.pixels.ravel()
        assert (flat[:10] == 5).all()
        assert (flat[10:] == 0).all()

    @pytest.mark.parametrize("width,height,channels", [
        (0, 2, 3),
        (4, -1, 3),
        (4, 2, 0),
        (4, 2, 5),
    ])
    def test_invalid_geometry(self, width, height, channels):
        from cubetiler.ingest import PanoramaError, PanoramaImage

        with pytest.raises(PanoramaError):
            PanoramaImage.from_buffer(bytes(64), width, height, channels)

    def test_numpy_integer_dimensions(self):
        """Dimensions read from numpy metadata are accepted."""
        from cubetiler.ingest import PanoramaImage

        pixels = np.arange(24, dtype=np.uint8)
        panorama = PanoramaImage.from_buffer(pixels.tobytes(), np.int64(4), np.int64(2), np.int32(3))

        assert (panorama.width, panorama.height, panorama.channels) == (4, 2, 3)
        assert type(panorama.width) is int
        assert tuple(panorama.pixels[1, 3]) == (21, 22, 23)

    @pytest.mark.parametrize("width,height", [(4.0, 2), (4, "2"), (True, 2)])
    def test_non_integer_dimensions(self, width, height):
        from cubetiler.ingest import PanoramaError, PanoramaImage

        with pytest.raises(PanoramaError, match="must be an integer"):
            PanoramaImage.from_buffer(bytes(24), width, height, 3)

    def test_load_rgba_png(self):
        from cubetiler.ingest import load_panorama

        pixels = np.zeros((4, 8, 4), dtype=np.uint8)
        pixels[..., 3] = 255
        panorama = load_panorama(encode_png(pixels))

        assert (panorama.width, panorama.height, panorama.channels) == (8, 4, 4)

    def test_load_grayscale_png(self):
        from cubetiler.ingest import load_panorama

        pixels = np.full((4, 8), 77, dtype=np.uint8)
        panorama = load_panorama(encode_png(pixels))

        assert panorama.channels == 1
        assert panorama.pixels[2, 3, 0] == 77

    def test_load_palette_png(self):
        """Palette images are expanded to RGB."""
        from cubetiler.ingest import load_panorama

        pixels = np.full((4, 8, 3), (10, 20, 30), dtype=np.uint8)
        img = Image.fromarray(pixels).quantize(colors=4)
        buffer = io.BytesIO()
        img.save(buffer, "PNG")
        panorama = load_panorama(buffer.getvalue())

        assert panorama.channels == 3
        assert tuple(panorama.pixels[0, 0]) == (10, 20, 30)

    def test_load_from_path(self, tmp_path):
        from cubetiler.ingest import load_panorama

        path = write_test_panorama(tmp_path / "pano.png", width=32)
        panorama = load_panorama(path)
        assert (panorama.width, panorama.height, panorama.channels) == (32, 16, 3)

    def test_undecodable_bytes(self):
        from cubetiler.ingest import PanoramaError, load_panorama

        with pytest.raises(PanoramaError):
            load_panorama(b"not an image")

    def test_missing_file(self, tmp_path):
        from cubetiler.ingest import PanoramaError, load_panorama

        with pytest.raises(PanoramaError, match="not found"):
            load_panorama(tmp_path / "missing.jpg")


class TestValidation:
    """Tests for panorama and manifest validation."""

    def test_validate_good_panorama(self):
        from cubetiler.ingest import PanoramaImage
        from cubeutils.validation import validate_panorama

        panorama = PanoramaImage.from_buffer(bytes(2048 * 1024), 2048, 1024, 1)
        is_valid, info, warnings = validate_panorama(panorama)

        assert is_valid
        assert info["aspect_ratio"] == 2.0
        assert warnings == []

    def test_validate_tiny_panorama(self):
        """Odd geometry is a warning, not an error."""
        from cubetiler.ingest import PanoramaImage
        from cubeutils.validation import validate_panorama

        panorama = PanoramaImage.from_buffer(bytes(3), 1, 1, 3)
        is_valid, _, warnings = validate_panorama(panorama)

        assert is_valid
        assert len(warnings) == 2

    def test_validate_missing_manifest(self, tmp_path):
        from cubeutils.validation import validate_manifest_file

        is_valid, manifest, errors = validate_manifest_file(tmp_path / "manifest.json")
        assert not is_valid
        assert manifest is None
        assert "does not exist" in errors[0]

    def test_validate_malformed_manifest(self, tmp_path):
        from cubeutils.validation import validate_manifest_file

        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"type": "cubemap", "cubeSize": -1, "tileSize": 512}))

        is_valid, _, errors = validate_manifest_file(path)
        assert not is_valid
        assert errors

    def test_duplicate_levels_rejected(self):
        from pydantic import ValidationError
        from cubeutils.validation import CubeMapManifest, LevelDescriptor

        level = LevelDescriptor(level=1, size=1024, tile_size=512)
        with pytest.raises(ValidationError):
            CubeMapManifest(cube_size=2048, tile_size=512, levels=[level, level])

    def test_tiling_options_bounds(self):
        from pydantic import ValidationError
        from cubeutils.validation import TilingOptions

        with pytest.raises(ValidationError):
            TilingOptions(num_levels=0)
        with pytest.raises(ValidationError):
            TilingOptions(quality=101)


class TestManifest:
    """Tests for the manifest builder."""

    def test_default_levels(self, default_pyramid):
        from cubetiler.manifest import build_manifest

        manifest = build_manifest(default_pyramid)

        assert manifest.type == "cubemap"
        assert manifest.cube_size == 32
        assert manifest.tile_size == 512
        assert [(d.level, d.size, d.tile_size, d.tiles) for d in manifest.levels] == [
            (1, 1024, 512, 2),
            (2, 2048, 512, 4),
        ]
        assert [f.value for f in manifest.faces] == ["right", "left", "top", "bottom", "front", "back"]
        assert manifest.tile_count == len(default_pyramid.tiles)

    def test_camel_case_json(self, default_pyramid):
        from cubetiler.manifest import build_manifest

        data = json.loads(build_manifest(default_pyramid).to_json())

        assert data["type"] == "cubemap"
        assert data["cubeSize"] == 32
        assert data["tileSize"] == 512
        assert data["levels"][0] == {"level": 1, "size": 1024, "tileSize": 512, "tiles": 2}
        assert data["faces"][0] == "right"
        assert data["preview"] == "preview.jpg"

    def test_preview_url_from_env(self, default_pyramid, monkeypatch):
        from cubetiler.manifest import build_manifest

        monkeypatch.setenv("CUBETILER_PUBLIC_URL", "https://cdn.example.com/")
        manifest = build_manifest(default_pyramid, scene_id="scene-42")

        assert manifest.preview == "https://cdn.example.com/scenes/scene-42/tiles/preview.jpg"

    def test_preview_url_default(self, default_pyramid, monkeypatch):
        from cubetiler.manifest import DEFAULT_PUBLIC_URL, build_manifest

        monkeypatch.delenv("CUBETILER_PUBLIC_URL", raising=False)
        manifest = build_manifest(default_pyramid, scene_id="abc")

        assert manifest.preview == f"{DEFAULT_PUBLIC_URL}/scenes/abc/tiles/preview.jpg"

    def test_manifest_addresses_every_tile(self, default_pyramid):
        from cubetiler.manifest import build_manifest
        from cubeutils.validation import validate_tile_set

        manifest = build_manifest(default_pyramid)
        keys = [t.key for t in default_pyramid.tiles[1:]]

        assert list(manifest.iter_tile_keys()) == keys
        assert validate_tile_set(default_pyramid.tiles, manifest) == []

    def test_missing_tiles_reported(self, default_pyramid):
        from cubetiler.manifest import build_manifest
        from cubeutils.validation import validate_tile_set

        manifest = build_manifest(default_pyramid)
        errors = validate_tile_set(default_pyramid.tiles[:-1], manifest)

        assert len(errors) == 1
        assert "back_l2_3_3.jpg" in errors[0]

    def test_write_and_load(self, default_pyramid, tmp_path):
        from cubetiler.manifest import build_manifest, load_manifest, write_manifest

        manifest = build_manifest(default_pyramid, scene_id="s1", base_url="https://x.test")
        path = write_manifest(manifest, tmp_path / "manifest.json")
        loaded = load_manifest(path)

        assert loaded == manifest
        assert loaded.level(2).tiles == 4
        with pytest.raises(KeyError):
            loaded.level(0)

    def test_load_invalid(self, tmp_path):
        from cubetiler.manifest import ManifestError, load_manifest

        path = tmp_path / "manifest.json"
        path.write_text("{not json")
        with pytest.raises(ManifestError):
            load_manifest(path)


class TestPackaging:
    """Tests for writing tile sets."""

    def test_write_and_validate(self, default_pyramid, tmp_path):
        from cubetiler.manifest import build_manifest
        from cubetiler.package import validate_tile_dir, write_tile_set

        manifest = build_manifest(default_pyramid)
        tile_dir = write_tile_set(default_pyramid.tiles, manifest, tmp_path / "tiles",
                                  {"total_duration_seconds": 1.0})

        assert (tile_dir / "manifest.json").exists()
        assert (tile_dir / "stats.json").exists()
        assert (tile_dir / "preview.jpg").read_bytes() == default_pyramid.preview.data
        assert len(list(tile_dir.glob("*.jpg"))) == 121
        assert validate_tile_dir(tile_dir) == []

    def test_validate_incomplete_tile_dir(self, default_pyramid, tmp_path):
        from cubetiler.manifest import build_manifest
        from cubetiler.package import validate_tile_dir, write_tile_set

        tile_dir = write_tile_set(default_pyramid.tiles, build_manifest(default_pyramid), tmp_path / "tiles")
        (tile_dir / "front_l1_1_1.jpg").unlink()

        errors = validate_tile_dir(tile_dir)
        assert len(errors) == 1
        assert "front_l1_1_1.jpg" in errors[0]

    def test_duplicate_keys(self, default_pyramid, tmp_path):
        from cubetiler.manifest import build_manifest
        from cubetiler.package import PackageError, write_tile_set

        tiles = default_pyramid.tiles + [default_pyramid.tiles[5]]
        with pytest.raises(PackageError):
            write_tile_set(tiles, build_manifest(default_pyramid), tmp_path / "tiles")

    def test_zip(self, default_pyramid, tmp_path):
        from cubetiler.manifest import build_manifest
        from cubetiler.package import create_zip_package, write_tile_set

        tile_dir = write_tile_set(default_pyramid.tiles, build_manifest(default_pyramid), tmp_path / "tiles")
        zip_path = create_zip_package(tile_dir)

        assert zip_path == tmp_path / "tiles.zip"
        assert zip_path.stat().st_size > 0


    def test_rewrite_with_fewer_levels(self, tmp_path):
        """Writing a smaller set over a larger one leaves no stale tiles."""
        from cubetiler.package import validate_tile_dir, write_tile_set
        from cubetiler.process import PipelineConfig, generate_from_buffer

        buffer = np.array(create_face_color_panorama(32).pixels).tobytes()
        tile_dir = tmp_path / "tiles"

        tiles, manifest = generate_from_buffer(buffer, 32, 16, 3, PipelineConfig(cube_size=8, num_levels=3))
        write_tile_set(tiles, manifest, tile_dir)
        assert len(list(tile_dir.glob("*.jpg"))) == 121

        tiles, manifest = generate_from_buffer(buffer, 32, 16, 3, PipelineConfig(cube_size=8, num_levels=2))
        write_tile_set(tiles, manifest, tile_dir)

        assert len(list(tile_dir.glob("*.jpg"))) == 25
        assert not (tile_dir / "back_l2_0_0.jpg").exists()
        assert validate_tile_dir(tile_dir) == []
        assert [p.name for p in tmp_path.iterdir()] == ["tiles"]

    def test_failed_write_keeps_previous_set(self, default_pyramid, tmp_path, monkeypatch):
        """A write that fails partway leaves the published set untouched."""
        import cubetiler.package as package_module
        from cubetiler.manifest import build_manifest
        from cubetiler.package import PackageError, validate_tile_dir, write_tile_set

        manifest = build_manifest(default_pyramid)
        tile_dir = write_tile_set(default_pyramid.tiles, manifest, tmp_path / "tiles")
        manifest_before = (tile_dir / "manifest.json").read_text()

        def failing_write_manifest(manifest, output_path):
            raise OSError("disk full")

        monkeypatch.setattr(package_module, "write_manifest", failing_write_manifest)
        with pytest.raises(PackageError, match="disk full"):
            write_tile_set(default_pyramid.tiles[:5], manifest, tile_dir)

        assert (tile_dir / "manifest.json").read_text() == manifest_before
        assert len(list(tile_dir.glob("*.jpg"))) == 121
        assert validate_tile_dir(tile_dir) == []
        assert [p.name for p in tmp_path.iterdir()] == ["tiles"]


class TestProcess:
    """End-to-end pipeline tests."""

    def test_repeat_run_is_identical(self):
        """Same buffer and config give identical tiles and manifest."""
        from cubetiler.process import PipelineConfig, generate_from_buffer

        buffer = np.array(create_face_color_panorama(32).pixels).tobytes()
        config = PipelineConfig(cube_size=8, num_levels=2, scene_id="s1", base_url="https://x.test")

        first_tiles, first_manifest = generate_from_buffer(buffer, 32, 16, 3, config)
        second_tiles, second_manifest = generate_from_buffer(buffer, 32, 16, 3, config)

        assert [(t.key, t.data) for t in first_tiles] == [(t.key, t.data) for t in second_tiles]
        assert first_manifest == second_manifest
        assert first_manifest.to_json() == second_manifest.to_json()

    def test_single_pixel_buffer(self):
        """A 1x1 panorama with one level produces just the preview."""
        from cubetiler.process import PipelineConfig, generate_from_buffer

        config = PipelineConfig(cube_size=4, num_levels=1)
        tiles, manifest = generate_from_buffer(bytes([1, 2, 3]), 1, 1, 3, config)

        assert [t.key for t in tiles] == ["preview.jpg"]
        assert manifest.levels == []
        assert manifest.tile_count == 1

    def test_short_buffer_rejected(self):
        from cubetiler.ingest import PanoramaError
        from cubetiler.process import generate_from_buffer

        with pytest.raises(PanoramaError):
            generate_from_buffer(bytes(5), 4, 2, 3)

    def test_invalid_config(self):
        from pydantic import ValidationError
        from cubetiler.process import PipelineConfig, generate_from_buffer

        with pytest.raises(ValidationError):
            generate_from_buffer(bytes(24), 4, 2, 3, PipelineConfig(num_levels=0))

    def test_cancel_before_start(self):
        from cubetiler.process import PipelineConfig, generate_from_buffer
        from cubetiler.rasterize import PipelineCancelled

        cancel = threading.Event()
        cancel.set()
        with pytest.raises(PipelineCancelled):
            generate_from_buffer(bytes(24), 4, 2, 3, PipelineConfig(cube_size=4), cancel=cancel)

    def test_stats_recorded(self, noise_panorama):
        from cubetiler.process import PipelineConfig, PipelineStats, generate_tile_pyramid

        stats = PipelineStats()
        generate_tile_pyramid(noise_panorama, PipelineConfig(cube_size=8, num_levels=1), stats=stats)

        assert set(stats.stages) == {"rasterize", "tiles", "manifest"}
        assert stats.stages["tiles"]["tile_count"] == 1

    def test_run_pipeline(self, tmp_path):
        from cubetiler.process import PipelineConfig, run_pipeline
        from cubetiler.package import validate_tile_dir

        input_path = write_test_panorama(tmp_path / "pano.png")
        config = PipelineConfig(cube_size=16, num_levels=2, max_workers=2, scene_id="demo",
                                base_url="https://tiles.test")

        tile_dir = run_pipeline(input_path, tmp_path / "output", config)

        assert tile_dir == tmp_path / "output" / "tiles"
        assert len(list(tile_dir.glob("*.jpg"))) == 1 + 24
        assert validate_tile_dir(tile_dir) == []

        manifest = json.loads((tile_dir / "manifest.json").read_text())
        assert manifest["preview"] == "https://tiles.test/scenes/demo/tiles/preview.jpg"
        assert [lvl["level"] for lvl in manifest["levels"]] == [1]

        stats = json.loads((tile_dir / "stats.json").read_text())
        assert "ingest" in stats["stages"]

    def test_run_pipeline_missing_input(self, tmp_path):
        from cubetiler.ingest import PanoramaError
        from cubetiler.process import run_pipeline

        with pytest.raises(PanoramaError):
            run_pipeline(tmp_path / "missing.jpg", tmp_path / "output")


class TestCli:
    """Tests for the typer command line."""

    def test_levels(self):
        from typer.testing import CliRunner
        from cubetiler.process import app

        result = CliRunner().invoke(app, ["levels"])
        assert result.exit_code == 0
        assert "Level 1" in result.output

    def test_levels_past_table_reuse_last_row(self):
        """The listing uses the same clamped lookup as tiling."""
        from typer.testing import CliRunner
        from cubetiler.process import app

        result = CliRunner().invoke(app, ["levels", "--levels", "6"])
        assert result.exit_code == 0
        assert "Level 0: 512px, 1x1 tiles of 512px (skipped)" in result.output
        assert "Level 5: 4096px, 8x8 tiles of 512px (generated)" in result.output

    def test_validate_empty_dir(self, tmp_path):
        from typer.testing import CliRunner
        from cubetiler.process import app

        result = CliRunner().invoke(app, ["validate", str(tmp_path)])
        assert result.exit_code == 1

    def test_generate(self, tmp_path):
        from typer.testing import CliRunner
        from cubetiler.process import app

        input_path = write_test_panorama(tmp_path / "pano.png", width=32)
        result = CliRunner().invoke(app, [
            "generate", str(input_path),
            "--output-dir", str(tmp_path / "out"),
            "--cube-size", "8",
            "--levels", "1",
        ])

        assert result.exit_code == 0
        assert (tmp_path / "out" / "tiles" / "manifest.json").exists()

    def test_generate_missing_input(self, tmp_path):
        from typer.testing import CliRunner
        from cubetiler.process import app

        result = CliRunner().invoke(app, ["generate", str(tmp_path / "missing.png")])
        assert result.exit_code == 1
