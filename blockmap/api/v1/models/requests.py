"""
API request models using Pydantic.
"""
from datetime import date
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, model_validator

from blockmap.domain.models import Boundary, DateWindow, LatLng
from blockmap.utils.geojson import geojson_to_ring


class PolygonGeometry(BaseModel):
    """GeoJSON Polygon; only the outer ring is used."""
    type: Literal["Polygon"] = "Polygon"
    coordinates: List[List[List[float]]] = Field(
        description="Closed rings of [longitude, latitude] pairs"
    )

    def to_ring(self) -> List[LatLng]:
        return geojson_to_ring(self.model_dump())


class BoundaryRequest(BaseModel):
    """A block boundary with its row attributes."""
    geometry: PolygonGeometry
    row_spacing_ft: Optional[float] = Field(default=None, description="Distance between rows in feet")
    vine_spacing_ft: Optional[float] = Field(default=None, description="Distance between vines in feet")
    row_orientation_deg: float = Field(
        default=90.0,
        ge=0,
        le=360,
        description="Row bearing in degrees clockwise from north"
    )

    def to_boundary(self) -> Boundary:
        return Boundary(
            vertices=self.geometry.to_ring(),
            row_spacing_ft=self.row_spacing_ft,
            vine_spacing_ft=self.vine_spacing_ft,
            row_orientation_deg=self.row_orientation_deg,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[
                        [-98.8800, 30.2670],
                        [-98.8790, 30.2670],
                        [-98.8790, 30.2680],
                        [-98.8800, 30.2680],
                        [-98.8800, 30.2670],
                    ]]
                },
                "row_spacing_ft": 8,
                "vine_spacing_ft": 6,
                "row_orientation_deg": 0,
            }
        }


class RasterRequest(BaseModel):
    """Field geometry and the date window to show."""
    geometry: PolygonGeometry
    start: date
    end: date

    @model_validator(mode="after")
    def check_window(self) -> "RasterRequest":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def to_window(self) -> DateWindow:
        return DateWindow(start=self.start, end=self.end)


class DeltaRequest(BaseModel):
    """Field geometry plus the baseline and current windows to compare."""
    geometry: PolygonGeometry
    baseline_start: date
    baseline_end: date
    start: date
    end: date

    @model_validator(mode="after")
    def check_windows(self) -> "DeltaRequest":
        if self.baseline_end < self.baseline_start or self.end < self.start:
            raise ValueError("window end must not be before its start")
        return self

    def to_windows(self) -> tuple[DateWindow, DateWindow]:
        return (
            DateWindow(start=self.baseline_start, end=self.baseline_end),
            DateWindow(start=self.start, end=self.end),
        )
