"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from blockmap.config import settings
from blockmap.middleware.error_handler import ErrorHandlerMiddleware
from blockmap.api.v1.routers import boundaries, rasters

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Logs the effective configuration on startup and closes the imagery
    client on shutdown.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Geodesy: ellipsoid={settings.geod_ellipsoid}, "
                f"closing_tolerance_ft={settings.closing_tolerance_ft}")
    logger.info(f"Raster gate: min_valid_pixel_percent={settings.min_valid_pixel_percent}, "
                f"cache_max_entries={settings.raster_cache_max_entries}")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    yield

    from blockmap.infrastructure.imagery_client import get_imagery_client
    logger.info("Shutting down application...")
    client = get_imagery_client()
    await client.close()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Field boundary geometry and raster layers for vineyard blocks

    ## Features

    - **Boundary measurement**: Geodesic acreage and perimeter of a block
    - **Row layout**: Parallel vine rows clipped to the block, with total
      row length and vine count
    - **Raster layers**: Cache-first NDVI rasters with a cloud/no-data
      quality gate and last-good fallback
    - **Vigor zones**: NDVI classified into irrigation zones, exported as GeoJSON
    - **Rate Limiting**: Protects the API from abuse
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(ErrorHandlerMiddleware)

app.include_router(boundaries.router, prefix="/api/v1")
app.include_router(rasters.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.

    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.app_name,
    }
