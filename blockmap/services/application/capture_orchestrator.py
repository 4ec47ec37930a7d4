"""
Application service: Sequential multi-view map capture.

Each (field, layer) pair is captured in isolation: the map state is
snapshotted, narrowed to the target, fitted, left to settle, captured and
then restored. The map is a single shared widget, so pairs never overlap.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence
import asyncio
import logging

from blockmap.config import settings
from blockmap.domain.models import BBox, LatLng, LayerKind
from blockmap.utils.spatial_helpers import ring_bbox

logger = logging.getLogger(__name__)

CaptureKey = tuple[str, LayerKind]


@dataclass(frozen=True)
class VisualizationState:
    """Everything a capture changes on the map and must put back."""
    active_layers: frozenset = frozenset()
    selected_field_id: Optional[str] = None
    visible_field_ids: Optional[frozenset] = None  # None shows every field
    rows_visible: bool = True


class MapHandle(Protocol):
    """The live map widget, as seen by the capture pipeline."""

    async def get_state(self) -> VisualizationState: ...

    async def apply_state(self, state: VisualizationState) -> None: ...

    async def fit_bounds(self, bbox: BBox, padding_px: int) -> None: ...

    def viewport_region(self) -> Any: ...


class ScreenCapturer(Protocol):
    """Screenshot collaborator; may raise."""

    async def capture(self, region: Any, hide_markers: Sequence[str]) -> bytes: ...


@dataclass
class CaptureResult:
    field_id: str
    layer: LayerKind
    image: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.image is None


@dataclass
class CaptureProgress:
    current: int
    total: int
    message: str


@dataclass
class CaptureJob:
    """One export request: ordered pairs, a cursor and the results so far."""
    pairs: list[CaptureKey]
    cursor: int = 0
    current: int = 0
    results: dict[CaptureKey, CaptureResult] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.pairs)

    @property
    def succeeded(self) -> list[CaptureResult]:
        return [r for r in self.results.values() if not r.failed]

    @property
    def failed(self) -> list[CaptureResult]:
        return [r for r in self.results.values() if r.failed]


class CaptureOrchestrator:
    """
    Produces one image per (field, layer) pair without leaking map state
    between captures.
    """

    def __init__(
        self,
        map_handle: MapHandle,
        capturer: ScreenCapturer,
        boundary_lookup: Callable[[str], Optional[Sequence[LatLng]]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        settle_raster_s: Optional[float] = None,
        settle_basemap_s: Optional[float] = None,
        padding_px: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            map_handle: Live map to drive
            capturer: Screenshot collaborator
            boundary_lookup: Field id to ring, None when the field has none
            sleep: Coroutine used for settle delays
            settle_raster_s: Override of settings.settle_raster_s
            settle_basemap_s: Override of settings.settle_basemap_s
            padding_px: Override of settings.capture_padding_px
        """
        self.map_handle = map_handle
        self.capturer = capturer
        self.boundary_lookup = boundary_lookup
        self._sleep = sleep
        self.settle_raster_s = settings.settle_raster_s if settle_raster_s is None else settle_raster_s
        self.settle_basemap_s = settings.settle_basemap_s if settle_basemap_s is None else settle_basemap_s
        self.padding_px = settings.capture_padding_px if padding_px is None else padding_px

    async def run(
        self,
        pairs: Sequence[CaptureKey],
        on_progress: Optional[Callable[[CaptureProgress], None]] = None,
    ) -> CaptureJob:
        """
        Capture every pair in order.

        A failing pair is recorded as failed and the batch moves on.

        Args:
            pairs: (field id, layer) pairs
            on_progress: Receives progress after each step

        Returns:
            The finished CaptureJob
        """
        job = CaptureJob(pairs=list(pairs))
        logger.info(f"Starting capture of {job.total} views")

        def report(message: str) -> None:
            if on_progress is not None:
                on_progress(CaptureProgress(current=job.current, total=job.total, message=message))

        for index, (field_id, layer) in enumerate(job.pairs):
            job.cursor = index
            label = f"{field_id} / {layer.value}"
            report(f"Preparing {label}")

            result = await self._capture_one(field_id, layer, report)
            job.results[(field_id, layer)] = result

            job.current = index + 1
            if result.failed:
                report(f"Failed {label}: {result.error}")
            else:
                report(f"Captured {label}")

        logger.info(f"Capture finished: {len(job.succeeded)} captured, {len(job.failed)} failed")
        return job

    async def _capture_one(
        self,
        field_id: str,
        layer: LayerKind,
        report: Callable[[str], None],
    ) -> CaptureResult:
        try:
            snapshot = await self.map_handle.get_state()
        except Exception as e:
            logger.exception(f"Could not read map state before capturing {field_id}/{layer.value}")
            return CaptureResult(field_id=field_id, layer=layer, error=str(e))

        try:
            boundary = self.boundary_lookup(field_id)
            if not boundary or len(boundary) < 3:
                raise ValueError(f"Field {field_id} has no boundary")

            await self.map_handle.apply_state(VisualizationState(
                active_layers=frozenset() if layer == LayerKind.BASEMAP else frozenset({layer}),
                selected_field_id=field_id,
                visible_field_ids=frozenset({field_id}),
                rows_visible=False,
            ))
            report(f"Fitting map to {field_id}")
            await self.map_handle.fit_bounds(ring_bbox(boundary), self.padding_px)

            settle = self.settle_basemap_s if layer == LayerKind.BASEMAP else self.settle_raster_s
            report(f"Waiting {settle:.1f}s for {layer.value} to render")
            await self._sleep(settle)

            report(f"Capturing {field_id} / {layer.value}")
            image = await self.capturer.capture(
                self.map_handle.viewport_region(),
                hide_markers=(settings.capture_hide_marker,),
            )
            return CaptureResult(field_id=field_id, layer=layer, image=image)

        except Exception as e:
            logger.exception(f"Capture failed for {field_id}/{layer.value}")
            return CaptureResult(field_id=field_id, layer=layer, error=str(e))

        finally:
            try:
                await self.map_handle.apply_state(snapshot)
            except Exception:
                logger.exception(f"Could not restore map state after {field_id}/{layer.value}")
