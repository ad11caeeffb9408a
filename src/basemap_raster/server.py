"""
Basemap Raster Server

A FastAPI server that answers raster queries for the slippy-map front end
and serves the pre-rendered PNG tiles the answers refer to.
"""

import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, PlainTextResponse
import uvicorn
import structlog

from . import __version__
from .exceptions import InvalidQuery
from .monitoring.metrics import MetricsCollector
from .tile_generation import RasterService, TileSelector, MAX_DEPTH
from .utils.config import Config
from .utils.logging_config import configure_logging

logger = structlog.get_logger()

TILE_FILENAME_PATTERN = re.compile(r"^d(\d+)_x(\d+)_y(\d+)\.png$")


def create_app(config: Optional[Config] = None) -> FastAPI:
    """
    Build the raster server application.

    Args:
        config: Server configuration, loaded from the environment by default
    """
    if config is None:
        config = Config.from_env()

    metrics = MetricsCollector()
    selector = TileSelector.from_config(config)
    service = RasterService(selector, metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting Basemap Raster Server",
            tile_dir=str(config.tile_dir),
            port=config.port,
            root_bounds=config.root_bounds
        )
        tile_dir_available = config.tile_dir.is_dir()
        metrics.set_gauge("tile_directory_available", int(tile_dir_available))
        if not tile_dir_available:
            logger.warning("Tile directory does not exist", tile_dir=str(config.tile_dir))
        yield
        logger.info("Shutting down Basemap Raster Server")

    app = FastAPI(
        title="Basemap Raster Server",
        description="Selects and serves pre-rendered map tiles for a query box",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.metrics = metrics
    app.state.selector = selector
    app.state.raster_service = service

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "basemap-raster-server",
            "version": __version__,
            "tile_directory": str(config.tile_dir),
            "metrics": metrics.get_system_health()
        }

    @app.get("/")
    async def root():
        """Root endpoint with server information."""
        return {
            "service": "Basemap Raster Server",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "raster": "/raster?ullon=&ullat=&lrlon=&lrlat=&w=&h=",
                "tiles": "/tiles/{filename}",
                "tile_bounds": "/tiles/{depth}/{x}/{y}/bounds",
                "metrics": "/metrics",
                "docs": "/docs"
            },
            "max_depth": MAX_DEPTH,
            "tile_size": config.tile_size,
            "root_bounds": {
                "ullon": config.root_bounds.west,
                "ullat": config.root_bounds.north,
                "lrlon": config.root_bounds.east,
                "lrlat": config.root_bounds.south
            }
        }

    @app.get("/raster")
    async def get_raster(request: Request):
        """
        Compute the tile grid for a query box.

        Invalid parameters are reported through ``query_success`` rather than
        an HTTP error so the front end can always parse the response.
        """
        return service.get_map_raster(dict(request.query_params))

    @app.get("/tiles/{depth}/{x}/{y}/bounds")
    async def get_tile_bounds(depth: int, x: int, y: int):
        """Get geographic bounds for a tile."""
        try:
            bounds = selector.tile_bounds(depth, x, y)
        except InvalidQuery as e:
            raise HTTPException(status_code=400, detail=str(e))

        return {
            "depth": depth,
            "x": x,
            "y": y,
            "bounds": bounds,
            "bbox": [bounds["west"], bounds["south"], bounds["east"], bounds["north"]]
        }

    @app.get("/tiles/{filename}")
    async def get_tile(filename: str):
        """
        Serve a pre-rendered tile image.

        Args:
            filename: Tile name in the ``d<depth>_x<col>_y<row>.png`` form
        """
        match = TILE_FILENAME_PATTERN.match(filename)
        valid = match is not None and int(match.group(1)) <= MAX_DEPTH
        if valid:
            tile_count = selector.tile_counts[int(match.group(1))]
            valid = int(match.group(2)) < tile_count and int(match.group(3)) < tile_count
        if not valid:
            metrics.increment_counter('tile_requests_total', labels={'status': 'invalid'})
            raise HTTPException(status_code=400, detail="Invalid tile name")

        tile_path = config.tile_dir / filename
        if not tile_path.is_file():
            metrics.increment_counter('tile_requests_total', labels={'status': 'missing'})
            raise HTTPException(status_code=404, detail="Tile not found")

        metrics.increment_counter('tile_requests_total', labels={'status': 'served'})
        logger.debug("Serving tile", filename=filename, path=str(tile_path))

        return FileResponse(
            tile_path,
            media_type="image/png",
            headers={"Cache-Control": "public, max-age=3600"}
        )

    @app.get("/metrics")
    async def get_metrics():
        """Prometheus scrape endpoint."""
        return PlainTextResponse(
            metrics.export_metrics("prometheus"),
            media_type="text/plain; version=0.0.4"
        )

    return app


def main() -> None:
    config = Config.from_env()
    configure_logging(config.log_level, config.log_format)

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
