"""
Builders and fakes shared by the test modules.
"""
from datetime import date
from typing import Any, Optional, Sequence

import numpy as np

from blockmap.domain.models import BBox, LayerKind, RasterRecord
from blockmap.services.application.capture_orchestrator import VisualizationState


BLOCK_BBOX: BBox = (-98.8800, 30.2670, -98.8790, 30.2680)


def make_raster(
    values: Any,
    mean_value: Optional[float] = None,
    bbox: BBox = BLOCK_BBOX,
    acquisition_date: Optional[date] = None,
    scene_id: Optional[str] = None,
) -> RasterRecord:
    """Build a RasterRecord from a 2-D list or array."""
    grid = np.asarray(values, dtype=np.float32)
    if mean_value is None:
        finite = grid[np.isfinite(grid)]
        mean_value = float(finite.mean()) if finite.size else None
    return RasterRecord(
        width=grid.shape[1],
        height=grid.shape[0],
        bbox=bbox,
        values=grid,
        mean_value=mean_value,
        acquisition_date=acquisition_date,
        scene_id=scene_id,
    )


def cloudy_raster(valid_fraction: float, value: float = 0.6, size: int = 10) -> RasterRecord:
    """Raster with the given share of finite pixels, the rest NaN."""
    flat = np.full(size * size, np.nan, dtype=np.float32)
    flat[: int(round(valid_fraction * size * size))] = value
    return make_raster(flat.reshape(size, size), mean_value=value)


class FakeMap:
    """In-memory map widget recording every call."""

    def __init__(self, state: Optional[VisualizationState] = None):
        self.state = state or VisualizationState(
            active_layers=frozenset({LayerKind.NDVI}),
            selected_field_id="field-9",
            visible_field_ids=None,
            rows_visible=True,
        )
        self.calls: list[tuple] = []

    async def get_state(self) -> VisualizationState:
        self.calls.append(("get_state",))
        return self.state

    async def apply_state(self, state: VisualizationState) -> None:
        self.calls.append(("apply_state", state))
        self.state = state

    async def fit_bounds(self, bbox: BBox, padding_px: int) -> None:
        self.calls.append(("fit_bounds", bbox, padding_px))

    def viewport_region(self) -> str:
        return "viewport"


class FakeCapturer:
    """Screen capturer failing for chosen field ids."""

    def __init__(self, map_handle: Optional[FakeMap] = None, fail_for: Sequence[str] = ()):
        self.map = map_handle
        self.fail_for = set(fail_for)
        self.captured: list[tuple[Any, tuple]] = []

    async def capture(self, region: Any, hide_markers: Sequence[str]) -> bytes:
        selected = self.map.state.selected_field_id if self.map else None
        self.captured.append((region, tuple(hide_markers)))
        if selected in self.fail_for:
            raise RuntimeError(f"capture failed for {selected}")
        return f"png:{selected}".encode()
