"""
Domain models for block boundaries, row layouts and raster layers.

These models represent the core domain entities and should be independent
of any infrastructure concerns (API clients, map widgets, storage, etc.).
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, NamedTuple, Optional

import numpy as np
from pydantic import BaseModel, Field


# (min_lng, min_lat, max_lng, max_lat)
BBox = tuple[float, float, float, float]


class LatLng(NamedTuple):
    """A geodetic vertex in decimal degrees."""
    lat: float
    lng: float


Segment = tuple[LatLng, LatLng]


class LayerKind(str, Enum):
    """Map layers a field can be shown with."""
    BASEMAP = "basemap"
    NDVI = "ndvi"
    NDVI_DELTA = "ndvi_delta"
    WATER_BALANCE = "water_balance"
    ET = "et"

    @property
    def is_raster(self) -> bool:
        return self in (LayerKind.NDVI, LayerKind.NDVI_DELTA)

    @property
    def is_scalar(self) -> bool:
        return self in (LayerKind.WATER_BALANCE, LayerKind.ET)

    @property
    def is_derived(self) -> bool:
        """Computed from other cached rasters, never fetched."""
        return self is LayerKind.NDVI_DELTA


class DateWindow(BaseModel):
    """A requested acquisition window on the timeline."""
    start: date
    end: date

    class Config:
        frozen = True

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}/{self.end.isoformat()}"


class Boundary(BaseModel):
    """A block boundary with the row attributes carried alongside it."""
    vertices: list[LatLng] = Field(
        description="Unclosed ring of (lat, lng) vertices"
    )
    row_spacing_ft: Optional[float] = Field(default=None, description="Distance between rows in feet")
    vine_spacing_ft: Optional[float] = Field(default=None, description="Distance between vines in feet")
    row_orientation_deg: float = Field(
        default=90.0,
        description="Row bearing in degrees clockwise from north"
    )


@dataclass(frozen=True)
class CommittedBoundary:
    """Ring handed back to the owning field when an edit session commits."""
    vertices: tuple[LatLng, ...]
    geojson: dict[str, Any]
    acres: float


@dataclass(frozen=True)
class RowLine:
    """One vine row; split into several segments by a non-convex boundary."""
    segments: tuple[Segment, ...]


@dataclass
class RasterStats:
    """Quality and summary statistics of a raster."""
    mean: float
    min: float
    max: float
    std: float
    valid_count: int
    total_count: int
    diverging: bool = False

    @property
    def valid_percent(self) -> float:
        if self.total_count == 0:
            return 0.0
        return self.valid_count / self.total_count * 100

    @property
    def cloud_percent(self) -> float:
        return 100.0 - self.valid_percent


@dataclass
class RasterRecord:
    """A per-pixel scalar grid covering a field's bounding box."""
    width: int
    height: int
    bbox: BBox
    values: Optional[np.ndarray]
    mean_value: Optional[float]
    acquisition_date: Optional[date] = None
    scene_id: Optional[str] = None
    layer: LayerKind = LayerKind.NDVI
    window: Optional[DateWindow] = None
    stats: Optional[RasterStats] = None


@dataclass
class DeltaRaster:
    """Pixel-wise change between a baseline and a current raster."""
    width: int
    height: int
    bbox: BBox
    values: np.ndarray
    stats: RasterStats
    baseline_date: Optional[date] = None
    current_date: Optional[date] = None


@dataclass
class ScalarOverlay:
    """A single value per field (water balance, ET) shown as a flat overlay."""
    field_id: str
    layer: LayerKind
    value: float
    unit: str
    as_of: Optional[date] = None


@dataclass
class DisplayedRaster:
    """What a field currently shows for a layer, and where it came from."""
    record: RasterRecord
    requested_key: str
    actual_key: str
    substituted: bool = False

    @property
    def actual_date(self) -> Optional[date]:
        return self.record.acquisition_date


@dataclass
class VigorZone:
    """Pixels of one NDVI vigor band."""
    level: str
    ndvi_range: tuple[float, float]
    recommended_rate: float
    color: str
    pixel_count: int
    percent_of_field: float
    polygon: Optional[dict[str, Any]] = None
    mean_ndvi: Optional[float] = None


@dataclass
class FieldRef:
    """Minimal view of a field record needed by the map core."""
    id: str
    name: str
    boundary: Optional[Boundary] = None
    extra: dict[str, Any] = field(default_factory=dict)
