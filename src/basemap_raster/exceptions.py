"""
Raster Service Exceptions

Error types raised by the tile selection core and the caller-facing layers.
"""

from typing import Optional


class RasterError(Exception):
    """Base class for all raster service errors."""


class ConfigurationError(RasterError):
    """Raised when root bounds, tile size or environment settings are invalid."""


class InvalidQuery(RasterError, ValueError):
    """Raised when a raster query is missing fields or is geometrically degenerate."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field
