"""
Tile Generation Module

Selects the depth and the grid of pre-rendered tiles that covers a raster
query, and wraps that selection for request handling.
"""

from .tile_selector import (
    MAX_DEPTH,
    TileSelector,
    RasterQuery,
    RasterResult,
    tile_filename,
)
from .raster_service import RasterService

__all__ = [
    "MAX_DEPTH",
    "TileSelector",
    "RasterQuery",
    "RasterResult",
    "RasterService",
    "tile_filename"
]
