"""
API response models using Pydantic.
"""
from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field

from blockmap.domain.models import DeltaRaster, DisplayedRaster, RasterStats, RowLine


class MeasureResponse(BaseModel):
    """Response model for the boundary measurement endpoint."""
    acres: float = Field(description="Geodesic area in acres")
    perimeter_ft: float = Field(description="Perimeter in feet")
    vertex_count: int
    is_simple: bool = Field(description="False when the ring self-intersects")


class RowLineModel(BaseModel):
    """Single row; several segments when split by the boundary."""
    segments: List[List[List[float]]] = Field(
        description="Segments as [[lng, lat], [lng, lat]]"
    )

    @classmethod
    def from_row(cls, row: RowLine) -> "RowLineModel":
        return cls(segments=[
            [[a.lng, a.lat], [b.lng, b.lat]] for a, b in row.segments
        ])


class RowLinesResponse(BaseModel):
    """Response model for the row layout endpoint."""
    row_count: int
    total_length_ft: float
    vine_count: int
    rows: List[RowLineModel]


class RasterStatsModel(BaseModel):
    mean: float
    min: float
    max: float
    std: float
    valid_percent: float
    cloud_percent: float
    diverging: bool

    @classmethod
    def from_stats(cls, stats: RasterStats) -> "RasterStatsModel":
        return cls(
            mean=stats.mean,
            min=stats.min,
            max=stats.max,
            std=stats.std,
            valid_percent=stats.valid_percent,
            cloud_percent=stats.cloud_percent,
            diverging=stats.diverging,
        )


class RasterSummaryResponse(BaseModel):
    """What a field displays for a layer; substituted marks a last-good fallback."""
    field_id: str
    layer: str
    requested_window: str
    actual_window: str
    substituted: bool
    acquisition_date: Optional[date] = None
    scene_id: Optional[str] = None
    width: int
    height: int
    bbox: List[float]
    mean_value: Optional[float] = None
    stats: Optional[RasterStatsModel] = None

    @classmethod
    def from_displayed(cls, field_id: str, shown: DisplayedRaster) -> "RasterSummaryResponse":
        record = shown.record
        return cls(
            field_id=field_id,
            layer=record.layer.value,
            requested_window=shown.requested_key,
            actual_window=shown.actual_key,
            substituted=shown.substituted,
            acquisition_date=shown.actual_date,
            scene_id=record.scene_id,
            width=record.width,
            height=record.height,
            bbox=list(record.bbox),
            mean_value=record.mean_value,
            stats=RasterStatsModel.from_stats(record.stats) if record.stats is not None else None,
        )


class DeltaSummaryResponse(BaseModel):
    """NDVI change between two windows; positive values mean more vigor."""
    field_id: str
    baseline_window: str
    current_window: str
    baseline_date: Optional[date] = None
    current_date: Optional[date] = None
    width: int
    height: int
    bbox: List[float]
    stats: RasterStatsModel

    @classmethod
    def from_delta(
        cls,
        field_id: str,
        baseline_window: str,
        current_window: str,
        delta: DeltaRaster,
    ) -> "DeltaSummaryResponse":
        return cls(
            field_id=field_id,
            baseline_window=baseline_window,
            current_window=current_window,
            baseline_date=delta.baseline_date,
            current_date=delta.current_date,
            width=delta.width,
            height=delta.height,
            bbox=list(delta.bbox),
            stats=RasterStatsModel.from_stats(delta.stats),
        )
