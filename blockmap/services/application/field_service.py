"""
Application service: Orchestration layer for field geometry and layers.
"""
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence
import logging

from blockmap.domain.models import (
    Boundary,
    CommittedBoundary,
    DateWindow,
    DeltaRaster,
    DisplayedRaster,
    LatLng,
    LayerKind,
    RowLine,
    VigorZone,
)
from blockmap.services.application.raster_cache import RasterLayerCache
from blockmap.services.domain.boundary_editor import BoundaryEditSession
from blockmap.services.domain.raster_analysis import classify_vigor_zones
from blockmap.services.domain.row_layout import (
    generate_row_lines,
    total_row_length_ft,
    vine_count,
)
from blockmap.utils.geodesy import area_acres, perimeter_ft
from blockmap.utils.spatial_helpers import is_simple_ring

logger = logging.getLogger(__name__)


class BoundaryRepository(Protocol):
    """Persistence collaborator that stores committed boundaries."""

    async def save_boundary(self, field_id: str, committed: CommittedBoundary) -> None: ...


@dataclass
class BoundaryMeasurement:
    acres: float
    perimeter_ft: float
    vertex_count: int
    is_simple: bool


@dataclass
class RowLayout:
    rows: list[RowLine]
    total_length_ft: float
    vine_count: int


class FieldService:
    """
    Application service for field geometry and map layers.

    Coordinates the edit session, row layout and raster cache with the
    persistence collaborator. No geometry or caching rules live here.
    """

    def __init__(
        self,
        raster_cache: RasterLayerCache,
        repository: Optional[BoundaryRepository] = None,
    ):
        """
        Initialize the service with dependencies.

        Args:
            raster_cache: Raster layer cache
            repository: Boundary persistence collaborator
        """
        self.raster_cache = raster_cache
        self.repository = repository

    def measure(self, ring: Sequence[LatLng]) -> BoundaryMeasurement:
        return BoundaryMeasurement(
            acres=round(area_acres(ring), 2),
            perimeter_ft=perimeter_ft(ring),
            vertex_count=len(ring),
            is_simple=is_simple_ring(ring),
        )

    def layout(self, boundary: Boundary) -> RowLayout:
        """
        Rows for a boundary plus their total length and vine count.

        Args:
            boundary: Boundary with row spacing, orientation and vine spacing

        Returns:
            RowLayout, empty when the boundary or spacing is degenerate
        """
        rows = generate_row_lines(
            boundary.vertices,
            boundary.row_spacing_ft,
            boundary.row_orientation_deg,
        )
        return RowLayout(
            rows=rows,
            total_length_ft=total_row_length_ft(rows),
            vine_count=vine_count(rows, boundary.vine_spacing_ft),
        )

    async def commit_session(
        self,
        field_id: str,
        session: BoundaryEditSession,
    ) -> Optional[CommittedBoundary]:
        """
        Save an edit session and hand the ring to the owning field.

        Sessions committed in immediate mode are persisted as they are.

        Args:
            field_id: Owning field
            session: Session to commit

        Returns:
            The committed boundary, or None if the session could not commit
        """
        committed = session.committed or session.save()
        if committed is None:
            return None
        await self.save_boundary(field_id, committed)
        return committed

    async def save_boundary(self, field_id: str, committed: CommittedBoundary) -> None:
        """
        Persist a committed boundary.

        Raises:
            ValueError: If no repository is configured
        """
        if self.repository is None:
            raise ValueError("No boundary repository configured")
        await self.repository.save_boundary(field_id, committed)
        logger.info(f"Saved boundary for field {field_id} ({committed.acres} acres)")

    async def get_field_raster(
        self,
        field_id: str,
        ring: Sequence[LatLng],
        layer: LayerKind,
        window: DateWindow,
    ) -> Optional[DisplayedRaster]:
        """
        Raster a field should display for a window.

        Raises:
            ValueError: If the ring has fewer than 3 vertices or the layer is not
                a fetchable raster
        """
        if len(ring) < 3:
            raise ValueError(f"Field {field_id} needs at least 3 boundary vertices")
        if not layer.is_raster:
            raise ValueError(f"Layer '{layer.value}' is not a raster layer")
        if layer.is_derived:
            raise ValueError(f"Layer '{layer.value}' is computed from two NDVI windows and cannot be fetched")
        return await self.raster_cache.request(field_id, ring, layer, window)

    async def get_vigor_zones(
        self,
        field_id: str,
        ring: Sequence[LatLng],
        window: DateWindow,
    ) -> tuple[Optional[DisplayedRaster], list[VigorZone]]:
        """NDVI vigor zones of the raster a field displays for a window."""
        shown = await self.get_field_raster(field_id, ring, LayerKind.NDVI, window)
        if shown is None:
            return None, []
        return shown, classify_vigor_zones(shown.record)

    async def get_ndvi_delta(
        self,
        field_id: str,
        ring: Sequence[LatLng],
        baseline: DateWindow,
        current: DateWindow,
    ) -> Optional[DeltaRaster]:
        """
        NDVI change between two windows.

        Both windows are requested through the cache; the delta is only
        computed from rasters cached under exactly those windows, so a
        last-good substitute never stands in for either side.
        """
        await self.get_field_raster(field_id, ring, LayerKind.NDVI, baseline)
        await self.get_field_raster(field_id, ring, LayerKind.NDVI, current)
        delta = self.raster_cache.delta(field_id, baseline.key, current.key)
        if delta is None:
            logger.info(f"No NDVI delta for {field_id}: {baseline.key} -> {current.key}")
        return delta
