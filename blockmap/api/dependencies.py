"""
Dependency injection for FastAPI.
"""
from typing import Annotated, Optional
from fastapi import Depends

from blockmap.infrastructure.imagery_client import (
    ImageryClient,
    get_imagery_client,
)
from blockmap.services.application.field_service import FieldService
from blockmap.services.application.raster_cache import RasterLayerCache


# Singleton instance
_raster_cache: Optional[RasterLayerCache] = None


def get_raster_cache(
    imagery_client: Annotated[ImageryClient, Depends(get_imagery_client)],
) -> RasterLayerCache:
    """
    Get or create the process-wide raster cache.

    Args:
        imagery_client: Imagery client (injected)

    Returns:
        RasterLayerCache instance
    """
    global _raster_cache
    if _raster_cache is None:
        _raster_cache = RasterLayerCache(imagery_client=imagery_client)
    return _raster_cache


def get_field_service(
    raster_cache: Annotated[RasterLayerCache, Depends(get_raster_cache)],
) -> FieldService:
    """
    Dependency factory for FieldService.

    Args:
        raster_cache: Raster cache (injected)

    Returns:
        FieldService instance
    """
    return FieldService(raster_cache=raster_cache)


# Type aliases for cleaner route signatures
FieldServiceDep = Annotated[FieldService, Depends(get_field_service)]
