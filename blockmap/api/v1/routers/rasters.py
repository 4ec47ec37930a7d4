"""
API router for field raster layers.
"""
from typing import Annotated, Any, Dict
from fastapi import APIRouter, HTTPException, Path

from blockmap.api.dependencies import FieldServiceDep
from blockmap.api.v1.models.requests import DeltaRequest, RasterRequest
from blockmap.api.v1.models.responses import DeltaSummaryResponse, RasterSummaryResponse
from blockmap.domain.models import LayerKind
from blockmap.utils.geojson import zones_to_feature_collection
from blockmap.utils.geodesy import area_acres


router = APIRouter(
    prefix="/fields",
    tags=["rasters"],
)


@router.post(
    "/{field_id}/rasters/ndvi/delta",
    response_model=DeltaSummaryResponse,
    summary="NDVI change between two windows",
    description="""
    Fetch (or reuse) the NDVI rasters of a baseline and a current window and
    return their per-pixel difference. Only rasters that passed the quality
    gate for exactly those windows are compared.
    """,
    responses={
        404: {"description": "One of the windows has no usable NDVI raster"},
    },
)
async def get_ndvi_delta(
    field_id: Annotated[str, Path(description="Unique identifier for the field")],
    request: DeltaRequest,
    field_service: FieldServiceDep,
) -> DeltaSummaryResponse:
    baseline, current = request.to_windows()
    delta = await field_service.get_ndvi_delta(
        field_id, request.geometry.to_ring(), baseline, current
    )
    if delta is None:
        raise HTTPException(
            status_code=404,
            detail=f"No NDVI delta available for field '{field_id}' ({baseline.key} -> {current.key})"
        )
    return DeltaSummaryResponse.from_delta(field_id, baseline.key, current.key, delta)


@router.post(
    "/{field_id}/rasters/{layer}",
    response_model=RasterSummaryResponse,
    summary="Resolve the raster a field displays",
    description="""
    Cache-first lookup of a raster layer for a date window.

    Fresh rasters must pass the quality gate (non-zero mean, at least 50%
    cloud-free pixels) before they are cached. When the requested window is
    rejected or unavailable the field's last good raster is returned with
    `substituted=true` and the window actually shown in `actual_window`.
    """,
    responses={
        404: {"description": "No raster is available for the field"},
        502: {"description": "Imagery service failure"},
    },
)
async def get_field_raster(
    field_id: Annotated[str, Path(description="Unique identifier for the field")],
    layer: Annotated[LayerKind, Path(description="Raster layer")],
    request: RasterRequest,
    field_service: FieldServiceDep,
) -> RasterSummaryResponse:
    shown = await field_service.get_field_raster(
        field_id, request.geometry.to_ring(), layer, request.to_window()
    )
    if shown is None:
        raise HTTPException(
            status_code=404,
            detail=f"No raster available for field '{field_id}' ({layer.value})"
        )
    return RasterSummaryResponse.from_displayed(field_id, shown)


@router.post(
    "/{field_id}/rasters/ndvi/zones",
    summary="NDVI vigor zones",
    description="""
    Classify the field's NDVI raster into five vigor zones with recommended
    irrigation rates, returned as a GeoJSON FeatureCollection together with
    the block boundary.
    """,
)
async def get_vigor_zones(
    field_id: Annotated[str, Path(description="Unique identifier for the field")],
    request: RasterRequest,
    field_service: FieldServiceDep,
) -> Dict[str, Any]:
    ring = request.geometry.to_ring()
    shown, zones = await field_service.get_vigor_zones(field_id, ring, request.to_window())
    if shown is None:
        raise HTTPException(
            status_code=404,
            detail=f"No NDVI raster available for field '{field_id}'"
        )
    return zones_to_feature_collection(
        zones,
        boundary=ring,
        record=shown.record,
        field_id=field_id,
        acres=round(area_acres(ring), 2),
    )
