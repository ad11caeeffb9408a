"""
Configuration Management

Loads the static map configuration (root bounding box, tile pixel size) and
the server settings from environment variables. The loaded values are
immutable and are injected into the tile selector at construction time.
"""

import os
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Mapping

from ..exceptions import ConfigurationError


# Berkeley-area map shipped with the default tile set
DEFAULT_ROOT_ULLON = -122.2998046875
DEFAULT_ROOT_ULLAT = 37.8901903534
DEFAULT_ROOT_LRLON = -122.2119140625
DEFAULT_ROOT_LRLAT = 37.8280796649
DEFAULT_TILE_SIZE = 256


@dataclass(frozen=True)
class RootBounds:
    """Geographic extent of the whole map at depth 0."""
    west: float
    north: float
    east: float
    south: float

    def __post_init__(self):
        values = (self.west, self.north, self.east, self.south)
        if not all(math.isfinite(v) for v in values):
            raise ConfigurationError(f"Root bounds must be finite: {values}")
        if self.west >= self.east:
            raise ConfigurationError(
                f"Root west longitude {self.west} must be less than east {self.east}"
            )
        if self.south >= self.north:
            raise ConfigurationError(
                f"Root south latitude {self.south} must be less than north {self.north}"
            )

    @property
    def lon_span(self) -> float:
        return self.east - self.west

    @property
    def lat_span(self) -> float:
        return self.north - self.south

    def contains(self, lon: float, lat: float) -> bool:
        return self.west <= lon <= self.east and self.south <= lat <= self.north


def _default_root_bounds() -> RootBounds:
    return RootBounds(
        west=DEFAULT_ROOT_ULLON,
        north=DEFAULT_ROOT_ULLAT,
        east=DEFAULT_ROOT_LRLON,
        south=DEFAULT_ROOT_LRLAT,
    )


@dataclass(frozen=True)
class Config:
    """Static configuration for the raster service."""
    root_bounds: RootBounds = field(default_factory=_default_root_bounds)
    tile_size: int = DEFAULT_TILE_SIZE
    tile_dir: Path = Path("img")
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_format: str = "json"

    def __post_init__(self):
        if self.tile_size <= 0:
            raise ConfigurationError(f"Tile size must be positive, got {self.tile_size}")
        if self.log_format not in ("json", "console"):
            raise ConfigurationError(f"Unsupported log format: {self.log_format}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """
        Build a configuration from environment variables.

        Args:
            environ: Mapping to read from, defaults to ``os.environ``

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If a numeric setting cannot be parsed
        """
        if environ is None:
            environ = os.environ

        root_bounds = RootBounds(
            west=_get_float(environ, "ROOT_ULLON", DEFAULT_ROOT_ULLON),
            north=_get_float(environ, "ROOT_ULLAT", DEFAULT_ROOT_ULLAT),
            east=_get_float(environ, "ROOT_LRLON", DEFAULT_ROOT_LRLON),
            south=_get_float(environ, "ROOT_LRLAT", DEFAULT_ROOT_LRLAT),
        )

        return cls(
            root_bounds=root_bounds,
            tile_size=_get_int(environ, "TILE_SIZE", DEFAULT_TILE_SIZE),
            tile_dir=Path(environ.get("TILE_DIR", "img")),
            host=environ.get("HOST", "0.0.0.0"),
            port=_get_int(environ, "PORT", 8000),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            log_format=environ.get("LOG_FORMAT", "json").lower(),
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "root_ullon": self.root_bounds.west,
            "root_ullat": self.root_bounds.north,
            "root_lrlon": self.root_bounds.east,
            "root_lrlat": self.root_bounds.south,
            "tile_size": self.tile_size,
            "tile_dir": str(self.tile_dir),
            "host": self.host,
            "port": self.port,
            "log_level": self.log_level,
            "log_format": self.log_format,
        }


def _get_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _get_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
