"""
Unit tests for the raster layer cache.

Tests cover:
- Cache hits and misses
- Quality gate and last-good fallback
- Stale responses
- Eviction and clearing
- Sequential prefetch, deltas and scalar overlays
- Transport failures and malformed payloads from the imagery service
"""
import asyncio
from datetime import date
from unittest.mock import AsyncMock

import httpx
import numpy as np
import pytest
import respx
from tenacity import wait_none

from blockmap.config import settings
from blockmap.domain.models import (
    Boundary,
    DateWindow,
    FieldRef,
    LayerKind,
    ScalarOverlay,
)
from blockmap.infrastructure.imagery_client import ImageryAPIError, ImageryClient
from blockmap.services.application.raster_cache import RasterLayerCache

from helpers import make_raster


# ============================================================
# Fetch and Fallback Tests
# ============================================================

class TestRequest:
    """Tests for cache-first raster requests."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, mock_imagery_client, square_ring, window, good_raster):
        mock_imagery_client.fetch_raster.return_value = good_raster
        cache = RasterLayerCache(mock_imagery_client)

        shown = await cache.request("f1", square_ring, LayerKind.NDVI, window)

        assert shown.record is good_raster
        assert not shown.substituted
        assert shown.requested_key == shown.actual_key == window.key
        assert cache.get("f1", LayerKind.NDVI, window.key) is good_raster
        assert good_raster.stats is not None

    @pytest.mark.asyncio
    async def test_hit_skips_fetch(self, mock_imagery_client, square_ring, window, good_raster):
        mock_imagery_client.fetch_raster.return_value = good_raster
        cache = RasterLayerCache(mock_imagery_client)

        await cache.request("f1", square_ring, LayerKind.NDVI, window)
        shown = await cache.request("f1", square_ring, LayerKind.NDVI, window)

        assert shown.record is good_raster
        assert mock_imagery_client.fetch_raster.call_count == 1

    @pytest.mark.asyncio
    async def test_cloudy_raster_falls_back_to_last_good(
        self, mock_imagery_client, square_ring, window, other_window, good_raster, cloudy_ndvi
    ):
        """A rejected raster is not cached; the last good one is shown instead."""
        mock_imagery_client.fetch_raster.side_effect = [good_raster, cloudy_ndvi]
        cache = RasterLayerCache(mock_imagery_client)

        await cache.request("f1", square_ring, LayerKind.NDVI, window)
        shown = await cache.request("f1", square_ring, LayerKind.NDVI, other_window)

        assert shown.record is good_raster
        assert shown.substituted
        assert shown.requested_key == other_window.key
        assert shown.actual_key == window.key
        assert shown.actual_date == date(2024, 7, 6)
        assert cache.get("f1", LayerKind.NDVI, other_window.key) is None

    @pytest.mark.asyncio
    async def test_rejection_without_last_good(self, mock_imagery_client, square_ring, window, cloudy_ndvi):
        """With nothing good to show the field shows nothing."""
        mock_imagery_client.fetch_raster.return_value = cloudy_ndvi
        cache = RasterLayerCache(mock_imagery_client)

        shown = await cache.request("f1", square_ring, LayerKind.NDVI, window)

        assert shown is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_fetch_error_falls_back(
        self, mock_imagery_client, square_ring, window, other_window, good_raster
    ):
        """Imagery errors are logged and treated like a rejection."""
        mock_imagery_client.fetch_raster.side_effect = [
            good_raster,
            ImageryAPIError("upstream down", status_code=503),
        ]
        cache = RasterLayerCache(mock_imagery_client)

        await cache.request("f1", square_ring, LayerKind.NDVI, window)
        shown = await cache.request("f1", square_ring, LayerKind.NDVI, other_window)

        assert shown.record is good_raster
        assert shown.substituted

    @pytest.mark.asyncio
    async def test_last_good_is_per_field(self, mock_imagery_client, square_ring, window, good_raster, cloudy_ndvi):
        """Another field's good raster is never used as a fallback."""
        mock_imagery_client.fetch_raster.side_effect = [good_raster, cloudy_ndvi]
        cache = RasterLayerCache(mock_imagery_client)

        await cache.request("f1", square_ring, LayerKind.NDVI, window)
        shown = await cache.request("f2", square_ring, LayerKind.NDVI, window)

        assert shown is None
        assert cache.last_good("f2", LayerKind.NDVI) is None


# ============================================================
# Stale Response Tests
# ============================================================

class TestStaleResponses:
    """Tests for responses that arrive after a newer request."""

    @pytest.mark.asyncio
    async def test_slow_older_response_does_not_replace_newer(
        self, mock_imagery_client, square_ring, window, other_window
    ):
        older = make_raster(np.full((2, 2), 0.4), acquisition_date=date(2024, 7, 3))
        newer = make_raster(np.full((2, 2), 0.7), acquisition_date=date(2024, 7, 20))
        release_older = asyncio.Event()

        async def fetch(field_id, boundary, layer, requested):
            if requested == window:
                await release_older.wait()
                return older
            return newer

        mock_imagery_client.fetch_raster.side_effect = fetch
        cache = RasterLayerCache(mock_imagery_client)

        slow = asyncio.create_task(cache.request("f1", square_ring, LayerKind.NDVI, window))
        await asyncio.sleep(0)
        shown_new = await cache.request("f1", square_ring, LayerKind.NDVI, other_window)
        release_older.set()
        shown_after_stale = await slow

        assert shown_new.record is newer
        assert shown_after_stale.record is newer
        assert cache.displayed("f1", LayerKind.NDVI).record is newer
        # Still cached for when the slider returns to it
        assert cache.get("f1", LayerKind.NDVI, window.key) is older


# ============================================================
# Cache Management Tests
# ============================================================

class TestCacheManagement:
    """Tests for clearing and eviction."""

    def test_clear_dated_keeps_last_good(self, mock_imagery_client, window, good_raster):
        cache = RasterLayerCache(mock_imagery_client)
        cache.put("f1", LayerKind.NDVI, window.key, good_raster)

        cache.clear_dated()

        assert len(cache) == 0
        assert cache.get("f1", LayerKind.NDVI, window.key) is None
        assert cache.last_good("f1", LayerKind.NDVI) is good_raster

    def test_lru_eviction(self, mock_imagery_client, good_raster):
        """The least recently used entry goes first."""
        cache = RasterLayerCache(mock_imagery_client, max_entries=2)
        cache.put("f1", LayerKind.NDVI, "a", good_raster)
        cache.put("f1", LayerKind.NDVI, "b", good_raster)
        cache.get("f1", LayerKind.NDVI, "a")

        cache.put("f1", LayerKind.NDVI, "c", good_raster)

        assert len(cache) == 2
        assert cache.get("f1", LayerKind.NDVI, "a") is good_raster
        assert cache.get("f1", LayerKind.NDVI, "b") is None

    def test_unbounded_by_default(self, mock_imagery_client, good_raster):
        cache = RasterLayerCache(mock_imagery_client)
        for i in range(50):
            cache.put("f1", LayerKind.NDVI, str(i), good_raster)

        assert len(cache) == 50


# ============================================================
# Prefetch Tests
# ============================================================

class TestPrefetch:
    """Tests for sequential multi-field fetches."""

    @pytest.mark.asyncio
    async def test_prefetch_skips_fields_without_boundary(
        self, mock_imagery_client, square_ring, window, good_raster
    ):
        mock_imagery_client.fetch_raster.return_value = good_raster
        sleep = AsyncMock()
        cache = RasterLayerCache(mock_imagery_client, sleep=sleep)
        fields = [
            FieldRef(id="f1", name="North", boundary=Boundary(vertices=square_ring)),
            FieldRef(id="f2", name="Unmapped"),
            FieldRef(id="f3", name="South", boundary=Boundary(vertices=square_ring)),
        ]

        results = await cache.prefetch(fields, LayerKind.NDVI, window)

        assert set(results) == {"f1", "f3"}
        assert mock_imagery_client.fetch_raster.call_count == 2
        # One pause between the two fetches
        sleep.assert_awaited_once()


# ============================================================
# Delta and Scalar Tests
# ============================================================

class TestDeltaAndScalars:
    """Tests for derived layers."""

    def test_delta_between_cached_windows(self, mock_imagery_client, window, other_window):
        cache = RasterLayerCache(mock_imagery_client)
        cache.put("f1", LayerKind.NDVI, window.key, make_raster(np.full((2, 2), 0.5)))
        cache.put("f1", LayerKind.NDVI, other_window.key, make_raster(np.full((2, 2), 0.6)))

        delta = cache.delta("f1", window.key, other_window.key)

        assert delta.values == pytest.approx(np.full((2, 2), 0.1), abs=1e-6)

    def test_delta_needs_both_rasters(self, mock_imagery_client, window, other_window):
        cache = RasterLayerCache(mock_imagery_client)
        cache.put("f1", LayerKind.NDVI, window.key, make_raster(np.full((2, 2), 0.5)))

        assert cache.delta("f1", window.key, other_window.key) is None

    @pytest.mark.asyncio
    async def test_scalar_keeps_previous_on_error(self, mock_imagery_client, window):
        previous = ScalarOverlay(field_id="f1", layer=LayerKind.ET, value=4.2, unit="mm")
        mock_imagery_client.fetch_scalar.side_effect = ImageryAPIError("timeout", status_code=503)
        cache = RasterLayerCache(mock_imagery_client)
        cache.put_scalar(previous)

        result = await cache.request_scalar("f1", LayerKind.ET, window)

        assert result is previous

    @pytest.mark.asyncio
    async def test_scalar_fetch_is_stored(self, mock_imagery_client, window):
        overlay = ScalarOverlay(field_id="f1", layer=LayerKind.WATER_BALANCE, value=-12.0, unit="mm")
        mock_imagery_client.fetch_scalar.return_value = overlay
        cache = RasterLayerCache(mock_imagery_client)

        await cache.request_scalar("f1", LayerKind.WATER_BALANCE, DateWindow(start=date(2024, 7, 1), end=date(2024, 7, 1)))

        assert cache.get_scalar("f1", LayerKind.WATER_BALANCE) is overlay

    @pytest.mark.asyncio
    async def test_scalar_request_for_raster_layer(self, mock_imagery_client, window):
        cache = RasterLayerCache(mock_imagery_client)

        with pytest.raises(ValueError, match="not a scalar"):
            await cache.request_scalar("f1", LayerKind.NDVI, window)

        mock_imagery_client.fetch_scalar.assert_not_called()

    @pytest.mark.asyncio
    async def test_delta_layer_is_never_fetched(self, mock_imagery_client, square_ring, window):
        cache = RasterLayerCache(mock_imagery_client)

        with pytest.raises(ValueError, match="derived"):
            await cache.request("f1", square_ring, LayerKind.NDVI_DELTA, window)

        mock_imagery_client.fetch_raster.assert_not_called()


# ============================================================
# Upstream Failure Tests
# ============================================================

@pytest.fixture
def no_retry_wait(monkeypatch):
    """Skip the exponential backoff between retries."""
    monkeypatch.setattr(ImageryClient._send.retry, "wait", wait_none())


class TestUpstreamFailures:
    """A misbehaving imagery service never escapes the cache as an exception."""

    BASE_URL = "https://imagery.test"

    @pytest.mark.asyncio
    @respx.mock
    async def test_undecodable_body(self, no_retry_wait, square_ring, window):
        client = ImageryClient(base_url=self.BASE_URL)
        route = respx.post(f"{self.BASE_URL}/process").mock(
            side_effect=httpx.DecodingError("bad gzip")
        )
        cache = RasterLayerCache(client)

        shown = await cache.request("f1", square_ring, LayerKind.NDVI, window)

        assert shown is None
        assert route.call_count == settings.max_retry_attempts
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_payload(self, square_ring, window):
        client = ImageryClient(base_url=self.BASE_URL)
        respx.post(f"{self.BASE_URL}/process").mock(
            return_value=httpx.Response(200, json=[1, 2])
        )
        cache = RasterLayerCache(client)

        shown = await cache.request("f1", square_ring, LayerKind.NDVI, window)

        assert shown is None
        assert len(cache) == 0
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_payload_falls_back(self, square_ring, window, other_window, good_raster):
        client = ImageryClient(base_url=self.BASE_URL)
        respx.post(f"{self.BASE_URL}/process").mock(
            return_value=httpx.Response(200, json=[1, 2])
        )
        cache = RasterLayerCache(client)
        cache.put("f1", LayerKind.NDVI, window.key, good_raster)

        shown = await cache.request("f1", square_ring, LayerKind.NDVI, other_window)

        assert shown.record is good_raster
        assert shown.substituted is True
        assert shown.actual_key == window.key
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_scalar_keeps_previous(self, window):
        client = ImageryClient(base_url=self.BASE_URL)
        respx.get(f"{self.BASE_URL}/fields/f1/scalars/et").mock(
            return_value=httpx.Response(200, json="5.1")
        )
        cache = RasterLayerCache(client)
        previous = ScalarOverlay(field_id="f1", layer=LayerKind.ET, value=4.0, unit="mm")
        cache.put_scalar(previous)

        result = await cache.request_scalar("f1", LayerKind.ET, window)

        assert result is previous
        await client.close()
