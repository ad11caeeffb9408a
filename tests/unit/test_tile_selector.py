"""
Unit Tests for the Tile Selector

Covers depth selection, grid computation for queries inside, across and
outside the root bounds, and the per-depth geometry tables.
"""

import unittest

import pytest

from basemap_raster.exceptions import ConfigurationError, InvalidQuery
from basemap_raster.tile_generation.tile_selector import (
    MAX_DEPTH,
    TileSelector,
    RasterQuery,
    RasterResult,
    tile_filename,
)
from basemap_raster.utils.config import RootBounds


ROOT_ULLON = -122.2998046875
ROOT_ULLAT = 37.8901903534
ROOT_LRLON = -122.2119140625
ROOT_LRLAT = 37.8280796649


def make_query(ullon, ullat, lrlon, lrlat, w, h=None):
    return RasterQuery(west=ullon, north=ullat, east=lrlon, south=lrlat, width=w, height=h)


class TestTileSelector(unittest.TestCase):
    """Test suite for tile selection."""

    def setUp(self):
        self.root = RootBounds(
            west=ROOT_ULLON,
            north=ROOT_ULLAT,
            east=ROOT_LRLON,
            south=ROOT_LRLAT
        )
        self.selector = TileSelector(self.root, tile_size=256)

    def assertRectangular(self, result: RasterResult):
        widths = {len(row) for row in result.render_grid}
        self.assertLessEqual(len(widths), 1)

    def test_geometry_tables(self):
        """Per-depth LonDPP halves and tile counts double."""
        self.assertEqual(len(self.selector.lon_dpp), MAX_DEPTH + 1)
        self.assertEqual(self.selector.lon_dpp[0], (ROOT_LRLON - ROOT_ULLON) / 256)
        for depth in range(MAX_DEPTH + 1):
            self.assertEqual(self.selector.tile_counts[depth], 2 ** depth)
            self.assertEqual(
                self.selector.lon_dpp[depth],
                self.selector.lon_dpp[0] / 2 ** depth
            )

    def test_invalid_tile_size(self):
        with self.assertRaises(ConfigurationError):
            TileSelector(self.root, tile_size=0)
        with self.assertRaises(ConfigurationError):
            TileSelector(self.root, tile_size=-256)

    def test_select_depth_berkeley_query(self):
        query = make_query(-122.24, 37.87, -122.22, 37.85, 300)
        self.assertEqual(self.selector.select_depth(query), 3)

    def test_select_depth_picks_coarsest_qualifying(self):
        """A target exactly equal to a depth's LonDPP selects that depth."""
        span = ROOT_LRLON - ROOT_ULLON
        query = make_query(ROOT_ULLON, ROOT_ULLAT, ROOT_LRLON, ROOT_LRLAT, 256)
        self.assertEqual(self.selector.select_depth(query), 0)

        query = make_query(ROOT_ULLON, ROOT_ULLAT, ROOT_ULLON + span / 2, ROOT_LRLAT, 256)
        self.assertEqual(self.selector.select_depth(query), 1)

    def test_select_depth_falls_back_to_finest(self):
        query = make_query(-122.25, 37.86, -122.2499, 37.8599, 1000)
        self.assertEqual(self.selector.select_depth(query), MAX_DEPTH)

    def test_select_depth_monotonic_in_width(self):
        """Narrowing the viewport never selects a finer depth."""
        previous = None
        for width in (4096, 2048, 1000, 512, 300, 128, 64, 16, 1):
            depth = self.selector.select_depth(
                make_query(-122.26, 37.88, -122.24, 37.86, width)
            )
            if previous is not None:
                self.assertLessEqual(depth, previous)
            previous = depth

    def test_select_depth_monotonic_in_box(self):
        """Widening the box at a fixed viewport never selects a finer depth."""
        previous = None
        for half_width in (0.0005, 0.001, 0.004, 0.01, 0.03, 0.05, 0.2):
            depth = self.selector.select_depth(
                make_query(-122.25 - half_width, 37.87, -122.25 + half_width, 37.85, 512)
            )
            if previous is not None:
                self.assertLessEqual(depth, previous)
            previous = depth

    def test_compute_raster_berkeley_query(self):
        query = make_query(-122.24, 37.87, -122.22, 37.85, 300)
        result = self.selector.compute_raster(query)

        self.assertTrue(result.query_success)
        self.assertEqual(result.depth, 3)
        self.assertEqual(result.rows, 4)
        self.assertEqual(result.columns, 3)
        self.assertEqual(result.render_grid[0][0], "d3_x5_y2.png")
        self.assertEqual(result.render_grid[0][2], "d3_x7_y2.png")
        self.assertEqual(result.render_grid[3][0], "d3_x5_y5.png")
        self.assertEqual(result.render_grid[-1][-1], "d3_x7_y5.png")
        self.assertRectangular(result)

        self.assertLessEqual(result.raster_ul_lon, query.west)
        self.assertGreaterEqual(result.raster_lr_lon, query.east)
        self.assertGreaterEqual(result.raster_ul_lat, query.north)
        self.assertLessEqual(result.raster_lr_lat, query.south)
        self.assertAlmostEqual(result.raster_ul_lon, -122.244873046875)
        self.assertEqual(result.raster_lr_lon, ROOT_LRLON)

    def test_compute_raster_root_query(self):
        """A query equal to the root bounds is one depth 0 tile."""
        query = make_query(ROOT_ULLON, ROOT_ULLAT, ROOT_LRLON, ROOT_LRLAT, 256)
        result = self.selector.compute_raster(query)

        self.assertEqual(result.depth, 0)
        self.assertEqual(result.render_grid, (("d0_x0_y0.png",),))
        self.assertEqual(result.raster_ul_lon, ROOT_ULLON)
        self.assertEqual(result.raster_ul_lat, ROOT_ULLAT)
        self.assertEqual(result.raster_lr_lon, ROOT_LRLON)
        self.assertEqual(result.raster_lr_lat, ROOT_LRLAT)

    def test_compute_raster_root_query_finest_depth(self):
        """At the finest depth the whole map is a full 128x128 grid."""
        query = make_query(ROOT_ULLON, ROOT_ULLAT, ROOT_LRLON, ROOT_LRLAT, 256 * 128)
        result = self.selector.compute_raster(query)

        self.assertEqual(result.depth, MAX_DEPTH)
        self.assertEqual(result.rows, 128)
        self.assertEqual(result.columns, 128)
        self.assertEqual(result.render_grid[127][127], "d7_x127_y127.png")
        self.assertEqual(result.raster_lr_lon, ROOT_LRLON)
        self.assertEqual(result.raster_lr_lat, ROOT_LRLAT)

    def test_compute_raster_entirely_east_of_root(self):
        query = make_query(-122.20, 37.87, -122.19, 37.85, 256)
        result = self.selector.compute_raster(query)

        self.assertTrue(result.query_success)
        self.assertEqual(result.render_grid, ())
        self.assertEqual(result.tile_count, 0)

    def test_compute_raster_entirely_west_of_root(self):
        query = make_query(-122.40, 37.87, -122.35, 37.85, 256)
        result = self.selector.compute_raster(query)
        self.assertEqual(result.render_grid, ())

    def test_compute_raster_entirely_south_of_root(self):
        query = make_query(-122.26, 37.80, -122.24, 37.79, 256)
        result = self.selector.compute_raster(query)
        self.assertEqual(result.render_grid, ())

    def test_compute_raster_partially_outside(self):
        """Tiles are clamped to the valid range when the query crosses the root edge."""
        query = make_query(-122.32, 37.88, -122.28, 37.86, 256)
        result = self.selector.compute_raster(query)

        self.assertEqual(result.depth, 2)
        self.assertEqual(result.render_grid, (("d2_x0_y0.png",), ("d2_x0_y1.png",)))
        self.assertEqual(result.raster_ul_lon, ROOT_ULLON)
        self.assertEqual(result.raster_ul_lat, ROOT_ULLAT)

    def test_compute_raster_larger_than_root(self):
        query = make_query(-123.0, 38.5, -121.5, 37.0, 256)
        result = self.selector.compute_raster(query)

        self.assertEqual(result.depth, 0)
        self.assertEqual(result.render_grid, (("d0_x0_y0.png",),))
        self.assertEqual(result.raster_ul_lon, ROOT_ULLON)
        self.assertEqual(result.raster_lr_lat, ROOT_LRLAT)

    def test_compute_raster_contains_query(self):
        queries = [
            make_query(-122.2997, 37.8900, -122.2120, 37.8281, 700),
            make_query(-122.27, 37.885, -122.25, 37.865, 512),
            make_query(-122.2301, 37.8401, -122.2299, 37.8399, 50),
            make_query(-122.29, 37.835, -122.215, 37.83, 1920),
        ]
        for query in queries:
            result = self.selector.compute_raster(query)
            self.assertGreater(result.tile_count, 0)
            self.assertRectangular(result)
            self.assertLessEqual(result.raster_ul_lon, query.west)
            self.assertGreaterEqual(result.raster_lr_lon, query.east)
            self.assertGreaterEqual(result.raster_ul_lat, query.north)
            self.assertLessEqual(result.raster_lr_lat, query.south)

    def test_compute_raster_row_major_order(self):
        query = make_query(-122.27, 37.885, -122.25, 37.865, 512)
        result = self.selector.compute_raster(query)

        for i, row in enumerate(result.render_grid):
            for j, name in enumerate(row):
                expected_prefix = f"d{result.depth}_"
                self.assertTrue(name.startswith(expected_prefix))
                if j > 0:
                    self.assertLess(_col(row[j - 1]), _col(name))
                if i > 0:
                    self.assertLess(_row(result.render_grid[i - 1][j]), _row(name))

    def test_compute_raster_aligned_edges(self):
        """An aligned west edge keeps the tile to its left; an aligned east edge adds nothing."""
        span = (ROOT_LRLON - ROOT_ULLON) / 4
        query = make_query(
            ROOT_ULLON + span, ROOT_ULLAT - 0.001,
            ROOT_ULLON + 2 * span, ROOT_ULLAT - 0.002,
            256
        )
        result = self.selector.compute_raster(query)

        self.assertEqual(result.depth, 2)
        self.assertEqual(result.render_grid, (("d2_x0_y0.png", "d2_x1_y0.png"),))
        self.assertEqual(result.render_grid[0][0], "d2_x0_y0.png")
        self.assertEqual(result.raster_ul_lon, ROOT_ULLON)
        self.assertEqual(result.raster_lr_lon, ROOT_ULLON + 2 * span)
        self.assertEqual(result.raster_ul_lat, ROOT_ULLAT)

    def test_compute_raster_idempotent(self):
        query = make_query(-122.24, 37.87, -122.22, 37.85, 300)
        self.assertEqual(
            self.selector.compute_raster(query),
            self.selector.compute_raster(query)
        )

    def test_tile_bounds(self):
        bounds = self.selector.tile_bounds(0, 0, 0)
        self.assertEqual(bounds, {
            "west": ROOT_ULLON,
            "north": ROOT_ULLAT,
            "east": ROOT_LRLON,
            "south": ROOT_LRLAT
        })

        bounds = self.selector.tile_bounds(1, 1, 1)
        self.assertEqual(bounds["east"], ROOT_LRLON)
        self.assertEqual(bounds["south"], ROOT_LRLAT)
        self.assertAlmostEqual(bounds["west"], (ROOT_ULLON + ROOT_LRLON) / 2)

    def test_tile_bounds_out_of_range(self):
        with self.assertRaises(InvalidQuery):
            self.selector.tile_bounds(8, 0, 0)
        with self.assertRaises(InvalidQuery):
            self.selector.tile_bounds(2, 4, 0)
        with self.assertRaises(InvalidQuery):
            self.selector.tile_bounds(2, 0, -1)


def _col(name):
    return int(name.split("_")[1][1:])


def _row(name):
    return int(name.split("_")[2].split(".")[0][1:])


class TestRasterQuery:
    """Test cases for query construction and validation."""

    def test_from_params(self):
        query = RasterQuery.from_params({
            "ullon": "-122.24", "ullat": 37.87,
            "lrlon": -122.22, "lrlat": "37.85",
            "w": "300", "h": 400
        })
        assert query.west == -122.24
        assert query.south == 37.85
        assert query.width == 300.0
        assert query.height == 400.0

    def test_from_params_missing_field(self):
        with pytest.raises(InvalidQuery) as excinfo:
            RasterQuery.from_params({"ullon": -122.24, "ullat": 37.87, "lrlon": -122.22})
        assert excinfo.value.field == "lrlat"

    @pytest.mark.parametrize("value", ["abc", None, "nan", "inf", True])
    def test_from_params_non_numeric(self, value):
        params = {"ullon": -122.24, "ullat": 37.87, "lrlon": -122.22,
                  "lrlat": 37.85, "w": value, "h": 300}
        with pytest.raises(InvalidQuery):
            RasterQuery.from_params(params)

    def test_non_positive_width(self):
        with pytest.raises(InvalidQuery):
            make_query(-122.24, 37.87, -122.22, 37.85, 0)
        with pytest.raises(InvalidQuery):
            make_query(-122.24, 37.87, -122.22, 37.85, -10)

    def test_degenerate_box(self):
        with pytest.raises(InvalidQuery):
            make_query(-122.22, 37.87, -122.24, 37.85, 300)
        with pytest.raises(InvalidQuery):
            make_query(-122.24, 37.85, -122.22, 37.85, 300)

    @pytest.mark.parametrize("field", ["west", "north", "east", "south", "width", "height"])
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_values(self, field, value):
        values = dict(west=-122.24, north=37.87, east=-122.22, south=37.85, width=300, height=300)
        values[field] = value
        with pytest.raises(InvalidQuery) as excinfo:
            RasterQuery(**values)
        assert excinfo.value.field == field

    def test_invalid_query_is_value_error(self):
        with pytest.raises(ValueError):
            make_query(-122.24, 37.87, -122.24, 37.85, 300)


class TestRasterResult:

    def test_to_dict(self):
        result = RasterResult(
            depth=1,
            render_grid=(("d1_x0_y0.png", "d1_x1_y0.png"),),
            raster_ul_lon=-1.0,
            raster_ul_lat=1.0,
            raster_lr_lon=1.0,
            raster_lr_lat=0.0
        )
        assert result.to_dict() == {
            "render_grid": [["d1_x0_y0.png", "d1_x1_y0.png"]],
            "raster_ul_lon": -1.0,
            "raster_ul_lat": 1.0,
            "raster_lr_lon": 1.0,
            "raster_lr_lat": 0.0,
            "depth": 1,
            "query_success": True
        }

    def test_failed(self):
        data = RasterResult.failed().to_dict()
        assert data["query_success"] is False
        assert data["render_grid"] == []

    def test_tile_filename(self):
        assert tile_filename(7, 12, 3) == "d7_x12_y3.png"
