"""
Application service: Cache-first raster layers with quality gating and fallback.

Per field and layer the cache keeps:
- dated entries, addressable by date-window key, that passed the quality gate
- a "last good" pointer used when a newer request is rejected or fails
- the raster currently displayed, with the key it was requested for and
  the key actually shown
"""
from collections import OrderedDict
from typing import Awaitable, Callable, Optional, Sequence
import asyncio
import logging

from blockmap.config import settings
from blockmap.domain.models import (
    DateWindow,
    DeltaRaster,
    DisplayedRaster,
    FieldRef,
    LatLng,
    LayerKind,
    RasterRecord,
    ScalarOverlay,
)
from blockmap.infrastructure.imagery_client import ImageryAPIError, ImageryClient
from blockmap.services.domain.raster_analysis import compute_delta, validate_raster

logger = logging.getLogger(__name__)

CacheKey = tuple[str, LayerKind, str]
SlotKey = tuple[str, LayerKind]


class RasterLayerCache:
    """
    Fetch orchestration, validity gating and fallback for raster layers.

    Stale arrivals are detected per field and layer: a fetch whose key no
    longer matches the most recent request for that slot is cached (if it
    passes the gate) but does not replace what is displayed.
    """

    def __init__(
        self,
        imagery_client: ImageryClient,
        max_entries: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the cache.

        Args:
            imagery_client: Raster fetch collaborator
            max_entries: LRU bound on dated entries, None for unbounded
            sleep: Coroutine used for the pause between batch fetches
        """
        self.imagery_client = imagery_client
        self.max_entries = max_entries if max_entries is not None else settings.raster_cache_max_entries
        self._sleep = sleep

        self._entries: "OrderedDict[CacheKey, RasterRecord]" = OrderedDict()
        self._last_good: dict[SlotKey, tuple[str, RasterRecord]] = {}
        self._displayed: dict[SlotKey, DisplayedRaster] = {}
        self._intent: dict[SlotKey, str] = {}
        self._scalars: dict[tuple[str, LayerKind], ScalarOverlay] = {}

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------
    # Addressable cache
    # ------------------------------------------------------------

    def get(self, field_id: str, layer: LayerKind, date_key: str) -> Optional[RasterRecord]:
        key = (field_id, layer, date_key)
        record = self._entries.get(key)
        if record is not None:
            self._entries.move_to_end(key)
        return record

    def put(self, field_id: str, layer: LayerKind, date_key: str, record: RasterRecord) -> None:
        """
        Store a raster that passed the quality gate.

        Also moves the field's last-good pointer to it.
        """
        key = (field_id, layer, date_key)
        self._entries[key] = record
        self._entries.move_to_end(key)
        self._last_good[(field_id, layer)] = (date_key, record)

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted raster {evicted}")

    def last_good(self, field_id: str, layer: LayerKind) -> Optional[RasterRecord]:
        entry = self._last_good.get((field_id, layer))
        return entry[1] if entry else None

    def displayed(self, field_id: str, layer: LayerKind) -> Optional[DisplayedRaster]:
        return self._displayed.get((field_id, layer))

    def clear_dated(self) -> None:
        """Drop every dated entry; last-good pointers survive."""
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Cleared {count} dated raster entries")

    # ------------------------------------------------------------
    # Fetch with gate and fallback
    # ------------------------------------------------------------

    async def request(
        self,
        field_id: str,
        boundary: Sequence[LatLng],
        layer: LayerKind,
        window: DateWindow,
    ) -> Optional[DisplayedRaster]:
        """
        Resolve the raster a field should display for a date window.

        Cache hit: shown directly. Miss: fetched, gated and cached on pass.
        On rejection or fetch failure the field's last-good raster is shown
        instead; with no last-good the previous display is left in place.

        Args:
            field_id: Field identifier
            boundary: Field ring, sent to the imagery service
            layer: Raster layer
            window: Requested date window

        Returns:
            What the field displays after the request, or None

        Raises:
            ValueError: If the layer is derived rather than fetched
        """
        if layer.is_derived:
            raise ValueError(f"Layer '{layer.value}' is derived and cannot be fetched")
        slot = (field_id, layer)
        date_key = window.key
        self._intent[slot] = date_key

        cached = self.get(field_id, layer, date_key)
        if cached is not None:
            logger.debug(f"Raster cache hit for {field_id}/{layer.value} {date_key}")
            return self._show(slot, cached, date_key, date_key)

        record: Optional[RasterRecord] = None
        try:
            record = await self.imagery_client.fetch_raster(field_id, boundary, layer, window)
        except ImageryAPIError as e:
            logger.error(f"Raster fetch failed for {field_id}/{layer.value} {date_key}: {e.message}")
        except ValueError as e:
            # Malformed payloads fail pydantic validation
            logger.error(f"Unreadable raster for {field_id}/{layer.value} {date_key}: {str(e)}")

        accepted = False
        if record is not None:
            result = validate_raster(record)
            if result.ok:
                record.stats = result.stats
                self.put(field_id, layer, date_key, record)
                accepted = True
            else:
                logger.info(f"Raster rejected for {field_id}/{layer.value} {date_key}: {result.reason}")

        if self._intent.get(slot) != date_key:
            logger.debug(f"Discarding stale raster for {field_id}/{layer.value} {date_key}")
            return self._displayed.get(slot)

        if accepted:
            return self._show(slot, record, date_key, date_key)
        return self._fall_back(slot, date_key)

    def _show(
        self,
        slot: SlotKey,
        record: RasterRecord,
        requested_key: str,
        actual_key: str,
    ) -> DisplayedRaster:
        shown = DisplayedRaster(
            record=record,
            requested_key=requested_key,
            actual_key=actual_key,
            substituted=requested_key != actual_key,
        )
        self._displayed[slot] = shown
        return shown

    def _fall_back(self, slot: SlotKey, requested_key: str) -> Optional[DisplayedRaster]:
        last = self._last_good.get(slot)
        if last is not None:
            actual_key, record = last
            logger.warning(
                f"Showing last good raster for {slot[0]}/{slot[1].value}: "
                f"requested {requested_key}, showing {actual_key} "
                f"(acquired {record.acquisition_date})"
            )
            return self._show(slot, record, requested_key, actual_key)

        logger.warning(f"No last good raster for {slot[0]}/{slot[1].value}; keeping current display")
        return self._displayed.get(slot)

    async def prefetch(
        self,
        fields: Sequence[FieldRef],
        layer: LayerKind,
        window: DateWindow,
    ) -> dict[str, Optional[DisplayedRaster]]:
        """
        Request a layer for several fields, one at a time.

        Fields without a boundary are skipped. A pause separates requests to
        respect upstream rate limits.

        Returns:
            Displayed raster per field id
        """
        results: dict[str, Optional[DisplayedRaster]] = {}
        eligible = [f for f in fields if f.boundary is not None and len(f.boundary.vertices) >= 3]

        for i, field_ref in enumerate(eligible):
            if i > 0:
                await self._sleep(settings.fetch_inter_request_delay_s)
            results[field_ref.id] = await self.request(
                field_ref.id, field_ref.boundary.vertices, layer, window
            )

        logger.info(f"Prefetched {layer.value} for {len(results)} fields over {window.key}")
        return results

    # ------------------------------------------------------------
    # Delta and scalar overlays
    # ------------------------------------------------------------

    def delta(
        self,
        field_id: str,
        baseline_key: str,
        current_key: str,
        layer: LayerKind = LayerKind.NDVI,
    ) -> Optional[DeltaRaster]:
        """
        Change between two cached rasters of a field.

        Returns:
            DeltaRaster, or None if either raster is missing or the grids differ
        """
        baseline = self.get(field_id, layer, baseline_key)
        current = self.get(field_id, layer, current_key)
        if baseline is None or current is None:
            return None
        return compute_delta(baseline, current)

    def put_scalar(self, overlay: ScalarOverlay) -> None:
        self._scalars[(overlay.field_id, overlay.layer)] = overlay

    def get_scalar(self, field_id: str, layer: LayerKind) -> Optional[ScalarOverlay]:
        return self._scalars.get((field_id, layer))

    async def request_scalar(
        self,
        field_id: str,
        layer: LayerKind,
        window: DateWindow,
    ) -> Optional[ScalarOverlay]:
        """Fetch a scalar overlay, keeping the previous value on failure."""
        if not layer.is_scalar:
            raise ValueError(f"Layer '{layer.value}' is not a scalar overlay")
        try:
            overlay = await self.imagery_client.fetch_scalar(field_id, layer, window)
        except ImageryAPIError as e:
            logger.error(f"Scalar fetch failed for {field_id}/{layer.value}: {e.message}")
            return self.get_scalar(field_id, layer)
        except ValueError as e:
            logger.error(f"Unreadable scalar for {field_id}/{layer.value}: {str(e)}")
            return self.get_scalar(field_id, layer)
        self.put_scalar(overlay)
        return overlay
