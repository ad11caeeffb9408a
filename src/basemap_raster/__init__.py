"""
Basemap Raster Service

Selects the grid of pre-rendered map tiles that covers a geographic query box
at the most appropriate zoom depth, and serves the result over HTTP.
"""

__version__ = "1.0.0"

from .exceptions import RasterError, ConfigurationError, InvalidQuery
from .tile_generation import (
    TileSelector,
    RasterQuery,
    RasterResult,
    RasterService,
)
from .utils.config import Config, RootBounds

__all__ = [
    "RasterError",
    "ConfigurationError",
    "InvalidQuery",
    "TileSelector",
    "RasterQuery",
    "RasterResult",
    "RasterService",
    "Config",
    "RootBounds",
]
