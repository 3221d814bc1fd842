"""
Cube Map Tiling Pipeline

Converts a single equirectangular (360°) panorama into a multi-resolution
cube map tile pyramid plus a manifest for streaming viewers.

Pipeline stages:
1. Ingest - Decode the panorama and check its geometry
2. Rasterize - Project the six raw cube faces (bilinear sampling)
3. Tile - Resize faces per level, slice and JPEG-encode each tile once
4. Manifest - Describe levels, faces and the preview locator
5. Package - Write tiles under their storage keys with manifest.json
"""

__version__ = "0.1.0"
