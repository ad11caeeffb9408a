"""
Tile Selector

Computes, for a geographic query box and a viewport pixel width, the grid of
pre-rendered tiles that covers the box at the coarsest depth whose resolution
still meets the request.

The tile pyramid has depths 0..7. At depth ``d`` the root bounding box is
split into ``2^d`` columns and ``2^d`` rows of equally sized tiles, each
``tile_size`` pixels wide. Tiles are named ``d<depth>_x<col>_y<row>.png`` with
column 0 at the root's west edge and row 0 at the root's north edge.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog

from ..exceptions import ConfigurationError, InvalidQuery
from ..utils.config import RootBounds, DEFAULT_TILE_SIZE


MAX_DEPTH = 7

TILE_FILENAME_FORMAT = "d{depth}_x{x}_y{y}.png"

QUERY_FIELDS = ("ullon", "ullat", "lrlon", "lrlat", "w", "h")


def tile_filename(depth: int, x: int, y: int) -> str:
    """Get the storage filename for the tile at ``(depth, x, y)``."""
    return TILE_FILENAME_FORMAT.format(depth=depth, x=x, y=y)


def _parse_number(params: Mapping[str, Any], name: str) -> float:
    if name not in params or params[name] is None:
        raise InvalidQuery(f"Missing required query field '{name}'", field=name)
    value = params[name]
    if isinstance(value, bool):
        raise InvalidQuery(f"Query field '{name}' must be numeric", field=name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidQuery(
            f"Query field '{name}' must be numeric, got {value!r}", field=name
        )
    if not math.isfinite(number):
        raise InvalidQuery(f"Query field '{name}' must be finite", field=name)
    return number


@dataclass(frozen=True)
class RasterQuery:
    """A query box plus the viewport size it will be displayed at."""
    west: float
    north: float
    east: float
    south: float
    width: float
    height: Optional[float] = None

    def __post_init__(self):
        for name in ("west", "north", "east", "south", "width", "height"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise InvalidQuery(f"Query {name} must be finite, got {value}", field=name)
        if self.width <= 0:
            raise InvalidQuery(
                f"Viewport width must be positive, got {self.width}", field="w"
            )
        if self.west >= self.east:
            raise InvalidQuery(
                f"Query west longitude {self.west} must be less than east {self.east}",
                field="ullon"
            )
        if self.north <= self.south:
            raise InvalidQuery(
                f"Query north latitude {self.north} must be greater than south {self.south}",
                field="ullat"
            )

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "RasterQuery":
        """
        Build a query from request parameters.

        Args:
            params: Mapping with ``ullon``, ``ullat``, ``lrlon``, ``lrlat``,
                ``w`` and ``h``

        Raises:
            InvalidQuery: If a field is missing, non-numeric or the box is degenerate
        """
        values = {name: _parse_number(params, name) for name in QUERY_FIELDS}
        return cls(
            west=values["ullon"],
            north=values["ullat"],
            east=values["lrlon"],
            south=values["lrlat"],
            width=values["w"],
            height=values["h"],
        )

    @property
    def lon_dpp(self) -> float:
        return (self.east - self.west) / self.width


@dataclass(frozen=True)
class RasterResult:
    """Tiles covering a query and the geographic corners of their union."""
    depth: int
    render_grid: Tuple[Tuple[str, ...], ...]
    raster_ul_lon: float
    raster_ul_lat: float
    raster_lr_lon: float
    raster_lr_lat: float
    query_success: bool = True

    @classmethod
    def failed(cls) -> "RasterResult":
        return cls(
            depth=0,
            render_grid=(),
            raster_ul_lon=0.0,
            raster_ul_lat=0.0,
            raster_lr_lon=0.0,
            raster_lr_lat=0.0,
            query_success=False,
        )

    @property
    def rows(self) -> int:
        return len(self.render_grid)

    @property
    def columns(self) -> int:
        return len(self.render_grid[0]) if self.render_grid else 0

    @property
    def tile_count(self) -> int:
        return self.rows * self.columns

    def to_dict(self) -> Dict[str, Any]:
        return {
            "render_grid": [list(row) for row in self.render_grid],
            "raster_ul_lon": self.raster_ul_lon,
            "raster_ul_lat": self.raster_ul_lat,
            "raster_lr_lon": self.raster_lr_lon,
            "raster_lr_lat": self.raster_lr_lat,
            "depth": self.depth,
            "query_success": self.query_success,
        }


@dataclass(frozen=True)
class _AxisRange:
    start: int
    count: int
    near_edge: float
    far_edge: float


class TileSelector:
    """
    Selects the tile grid for a raster query.

    Holds only the per-depth LonDPP and tile count tables derived from the
    root bounds and the tile size, so a single instance can be shared by any
    number of concurrent callers.
    """

    def __init__(self, root_bounds: RootBounds, tile_size: int = DEFAULT_TILE_SIZE):
        """
        Initialize the tile selector.

        Args:
            root_bounds: Geographic extent of the whole map
            tile_size: Tile width in pixels

        Raises:
            ConfigurationError: If the tile size is not positive
        """
        if tile_size <= 0:
            raise ConfigurationError(f"Tile size must be positive, got {tile_size}")

        self.root_bounds = root_bounds
        self.tile_size = tile_size

        lon_dpp = [root_bounds.lon_span / tile_size]
        tile_counts = [1]
        for depth in range(1, MAX_DEPTH + 1):
            lon_dpp.append(lon_dpp[depth - 1] / 2)
            tile_counts.append(2 ** depth)

        self.lon_dpp: Tuple[float, ...] = tuple(lon_dpp)
        self.tile_counts: Tuple[int, ...] = tuple(tile_counts)

        self.logger = structlog.get_logger(selector_type="TileSelector")
        self.logger.debug(
            "Tile selector initialized",
            root_bounds=root_bounds,
            tile_size=tile_size,
            finest_lon_dpp=self.lon_dpp[MAX_DEPTH]
        )

    @classmethod
    def from_config(cls, config) -> "TileSelector":
        return cls(config.root_bounds, config.tile_size)

    def select_depth(self, query: RasterQuery) -> int:
        """
        Pick the coarsest depth whose LonDPP does not exceed the query's.

        Falls back to the finest depth when even that is coarser than requested.
        """
        target = query.lon_dpp
        for depth in range(MAX_DEPTH):
            if self.lon_dpp[depth] <= target:
                return depth
        return MAX_DEPTH

    def compute_raster(self, query: RasterQuery) -> RasterResult:
        """
        Compute the tile grid covering ``query``.

        Queries partially or entirely outside the root bounds are clamped to
        the valid tile range; a query with no overlap yields an empty grid.

        Args:
            query: Query box and viewport width

        Returns:
            Raster result with the grid in row-major order
        """
        depth = self.select_depth(query)
        tile_count = self.tile_counts[depth]
        root = self.root_bounds

        lon_span = root.lon_span / tile_count
        lat_span = root.lat_span / tile_count

        def lon_edge(index: int) -> float:
            if index >= tile_count:
                return root.east
            return root.west + index * lon_span

        def lat_edge(index: int) -> float:
            if index >= tile_count:
                return root.south
            return root.north - index * lat_span

        columns = self._walk_axis(
            tile_count,
            lon_edge,
            before_start=lambda edge: edge < query.west,
            before_end=lambda edge: edge < query.east,
        )
        rows = self._walk_axis(
            tile_count,
            lat_edge,
            before_start=lambda edge: edge > query.north,
            before_end=lambda edge: edge > query.south,
        )

        col_indices = self._clamp(columns, tile_count)
        row_indices = self._clamp(rows, tile_count)

        if col_indices and row_indices:
            grid = tuple(
                tuple(tile_filename(depth, col, row) for col in col_indices)
                for row in row_indices
            )
        else:
            grid = ()

        return RasterResult(
            depth=depth,
            render_grid=grid,
            raster_ul_lon=columns.near_edge,
            raster_ul_lat=rows.near_edge,
            raster_lr_lon=columns.far_edge,
            raster_lr_lat=rows.far_edge,
            query_success=True,
        )

    @staticmethod
    def _walk_axis(tile_count, edge, before_start, before_end) -> _AxisRange:
        # Skip whole tiles that end before the query starts, then take tiles
        # until the cursor reaches the query's far side or the root edge.
        start = 0
        while start < tile_count and before_start(edge(start + 1)):
            start += 1
        end = start
        while end < tile_count and before_end(edge(end)):
            end += 1
        return _AxisRange(
            start=start,
            count=end - start,
            near_edge=edge(start),
            far_edge=edge(end),
        )

    @staticmethod
    def _clamp(axis: _AxisRange, tile_count: int) -> List[int]:
        first = max(axis.start, 0)
        last = min(axis.start + axis.count, tile_count)
        return list(range(first, last))

    def tile_bounds(self, depth: int, x: int, y: int) -> Dict[str, float]:
        """
        Get the geographic bounds of a single tile.

        Raises:
            InvalidQuery: If the depth or tile indices are out of range
        """
        if not 0 <= depth <= MAX_DEPTH:
            raise InvalidQuery(f"Depth must be between 0 and {MAX_DEPTH}, got {depth}")
        tile_count = self.tile_counts[depth]
        if not (0 <= x < tile_count and 0 <= y < tile_count):
            raise InvalidQuery(
                f"Tile ({x}, {y}) is outside the {tile_count}x{tile_count} grid at depth {depth}"
            )

        root = self.root_bounds
        lon_span = root.lon_span / tile_count
        lat_span = root.lat_span / tile_count
        east = root.east if x + 1 == tile_count else root.west + (x + 1) * lon_span
        south = root.south if y + 1 == tile_count else root.north - (y + 1) * lat_span
        return {
            "west": root.west + x * lon_span,
            "north": root.north - y * lat_span,
            "east": east,
            "south": south,
        }
