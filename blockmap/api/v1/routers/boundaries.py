"""
API router for boundary geometry endpoints.
"""
from fastapi import APIRouter

from blockmap.api.dependencies import FieldServiceDep
from blockmap.api.v1.models.requests import BoundaryRequest, PolygonGeometry
from blockmap.api.v1.models.responses import (
    MeasureResponse,
    RowLineModel,
    RowLinesResponse,
)


router = APIRouter(
    prefix="/boundaries",
    tags=["boundaries"],
)


@router.post(
    "/measure",
    response_model=MeasureResponse,
    summary="Measure a boundary",
    description="""
    Geodesic area (acres) and perimeter (feet) of a block boundary, and
    whether the ring is simple. Rings with fewer than 3 vertices measure 0.
    """,
)
async def measure_boundary(
    geometry: PolygonGeometry,
    field_service: FieldServiceDep,
) -> MeasureResponse:
    measurement = field_service.measure(geometry.to_ring())
    return MeasureResponse(
        acres=measurement.acres,
        perimeter_ft=measurement.perimeter_ft,
        vertex_count=measurement.vertex_count,
        is_simple=measurement.is_simple,
    )


@router.post(
    "/rows",
    response_model=RowLinesResponse,
    summary="Generate vine rows",
    description="""
    Lay out parallel vine rows across a block.

    Rows run along `row_orientation_deg` (0 = north, clockwise), are spaced
    `row_spacing_ft` apart and are clipped to the boundary; a row crossing a
    concave part of the block comes back as several segments. A missing or
    non-positive spacing yields no rows.
    """,
)
async def generate_rows(
    request: BoundaryRequest,
    field_service: FieldServiceDep,
) -> RowLinesResponse:
    layout = field_service.layout(request.to_boundary())
    return RowLinesResponse(
        row_count=len(layout.rows),
        total_length_ft=layout.total_length_ft,
        vine_count=layout.vine_count,
        rows=[RowLineModel.from_row(row) for row in layout.rows],
    )
