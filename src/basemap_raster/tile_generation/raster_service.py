"""
Raster Service

Caller-facing wrapper around the tile selector. Parses raw request
parameters, turns invalid input into a ``query_success=false`` response and
records logging and metrics for every query.
"""

import time
from typing import Dict, Any, Mapping, Optional

import structlog

from ..exceptions import InvalidQuery
from ..monitoring.metrics import MetricsCollector
from ..utils.config import Config
from .tile_selector import TileSelector, RasterQuery, RasterResult


class RasterService:
    """
    Answers raster queries in the wire format expected by the map front end.

    The response always carries the seven fields ``render_grid``,
    ``raster_ul_lon``, ``raster_ul_lat``, ``raster_lr_lon``,
    ``raster_lr_lat``, ``depth`` and ``query_success``.
    """

    def __init__(
        self,
        selector: TileSelector,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        """
        Initialize the raster service.

        Args:
            selector: Configured tile selector
            metrics_collector: Optional metrics collector for monitoring
        """
        self.selector = selector
        self.metrics = metrics_collector or MetricsCollector()

        self.logger = structlog.get_logger(service_type="RasterService")

        self.stats = {
            'queries_processed': 0,
            'queries_failed': 0,
            'tiles_emitted': 0
        }

    @classmethod
    def from_config(
        cls,
        config: Config,
        metrics_collector: Optional[MetricsCollector] = None
    ) -> "RasterService":
        return cls(TileSelector.from_config(config), metrics_collector)

    def get_map_raster(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Compute the raster for an HTTP query.

        Args:
            params: Query parameters ``ullon``, ``ullat``, ``lrlon``,
                ``lrlat``, ``w`` and ``h``

        Returns:
            Response dictionary; ``query_success`` is false and the grid is
            empty when the parameters are invalid
        """
        try:
            query = RasterQuery.from_params(params)
        except InvalidQuery as e:
            self.stats['queries_failed'] += 1
            self.metrics.increment_counter(
                'raster_queries_total', labels={'status': 'invalid'}
            )
            self.logger.warning("Rejected raster query", error=str(e), field=e.field)
            return RasterResult.failed().to_dict()

        return self.compute(query).to_dict()

    def compute(self, query: RasterQuery) -> RasterResult:
        """Compute the raster for an already validated query."""
        start_time = time.perf_counter()

        result = self.selector.compute_raster(query)

        duration = time.perf_counter() - start_time
        self.stats['queries_processed'] += 1
        self.stats['tiles_emitted'] += result.tile_count

        self.metrics.increment_counter(
            'raster_queries_total', labels={'status': 'success'}
        )
        self.metrics.increment_counter(
            'raster_depth_selected_total', labels={'depth': str(result.depth)}
        )
        self.metrics.record_timing('raster_query_duration_seconds', duration)
        self.metrics.record_histogram('raster_tiles_emitted', result.tile_count)

        if result.tile_count == 0:
            self.logger.info(
                "Raster query does not overlap the map",
                query=query,
                depth=result.depth
            )
        else:
            self.logger.debug(
                "Raster computed",
                depth=result.depth,
                rows=result.rows,
                columns=result.columns,
                processing_time=duration
            )

        return result

    def get_statistics(self) -> Dict[str, Any]:
        return dict(self.stats)
