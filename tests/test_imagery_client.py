"""
Unit tests for the imagery client.

Tests cover:
- Raster and scalar responses
- Retry logic on 5xx errors
- No retry on 4xx errors
- Transport errors and malformed payloads
- Async context manager
"""
import json
from datetime import date

import httpx
import numpy as np
import pytest
import respx
from pydantic import ValidationError
from tenacity import wait_none
from unittest.mock import AsyncMock

from blockmap.domain.models import DateWindow, LayerKind
from blockmap.infrastructure.imagery_client import (
    ImageryAPIError,
    ImageryClient,
    RasterResponse,
    get_imagery_client,
)


RASTER_PAYLOAD = {
    "width": 2,
    "height": 2,
    "bbox": [-98.88, 30.267, -98.879, 30.268],
    "values": [0.5, 0.6, None, 0.7],
    "meanValue": 0.6,
    "acquisitionDate": "2024-07-06",
    "sceneId": "S2A_20240706",
}


@pytest.fixture
def no_retry_wait(monkeypatch):
    """Skip the exponential backoff between retries."""
    monkeypatch.setattr(ImageryClient._send.retry, "wait", wait_none())


# ============================================================
# Client Initialization Tests
# ============================================================

class TestClientInitialization:
    """Tests for client initialization."""

    def test_client_initialization(self):
        client = ImageryClient(base_url="https://imagery.test", api_key="secret")

        assert client.base_url == "https://imagery.test"
        assert client.client.headers["Authorization"] == "Bearer secret"

    def test_singleton_pattern(self):
        """get_imagery_client should return the same instance."""
        import blockmap.infrastructure.imagery_client as module
        module._imagery_client = None

        assert get_imagery_client() is get_imagery_client()

    @pytest.mark.asyncio
    async def test_context_manager_exit_closes_client(self):
        client = ImageryClient()
        client.close = AsyncMock()

        async with client as ctx_client:
            assert ctx_client is client

        client.close.assert_called_once()


# ============================================================
# Raster Response Tests
# ============================================================

class TestFetchRaster:
    """Tests for raster fetches."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_raster(self, square_ring, window):
        client = ImageryClient()
        route = respx.post(f"{client.base_url}/process").mock(
            return_value=httpx.Response(200, json=RASTER_PAYLOAD)
        )

        record = await client.fetch_raster("f1", square_ring, LayerKind.NDVI, window)

        assert record.values.shape == (2, 2)
        assert np.isnan(record.values[1, 0])
        assert record.mean_value == 0.6
        assert record.acquisition_date == date(2024, 7, 6)
        assert record.scene_id == "S2A_20240706"
        assert record.window == window

        body = json.loads(route.calls.last.request.content)
        assert body["fieldId"] == "f1"
        assert body["layer"] == "ndvi"
        assert body["timeRange"]["from"] == "2024-07-01T00:00:00Z"
        assert body["geometry"]["coordinates"][0][0] == body["geometry"]["coordinates"][0][-1]
        await client.close()

    def test_size_mismatch_drops_values(self):
        """A payload that does not fill the grid carries no values."""
        client = ImageryClient()
        response = RasterResponse(**{**RASTER_PAYLOAD, "values": [0.5, 0.6]})

        record = client.to_record(response, LayerKind.NDVI)

        assert record.values is None
        assert record.width == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_scalar(self):
        client = ImageryClient()
        respx.get(f"{client.base_url}/fields/f1/scalars/et").mock(
            return_value=httpx.Response(200, json={"value": 5.1, "unit": "mm", "date": "2024-07-10"})
        )

        overlay = await client.fetch_scalar(
            "f1", LayerKind.ET, DateWindow(start=date(2024, 7, 1), end=date(2024, 7, 14))
        )

        assert overlay.value == 5.1
        assert overlay.as_of == date(2024, 7, 10)
        await client.close()


# ============================================================
# Error Handling Tests
# ============================================================

class TestErrorHandling:
    """Tests for error handling."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_4xx_error_no_retry(self):
        """4xx errors should not trigger retry."""
        client = ImageryClient()
        respx.get(f"{client.base_url}/test").mock(
            return_value=httpx.Response(404, text="Not Found")
        )

        with pytest.raises(ImageryAPIError, match="404") as exc_info:
            await client._make_request("GET", "/test")

        assert exc_info.value.status_code == 404
        assert respx.calls.call_count == 1
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_error_triggers_retry(self, no_retry_wait):
        """5xx errors should trigger retry."""
        client = ImageryClient()
        route = respx.get(f"{client.base_url}/test")
        route.side_effect = [
            httpx.Response(500, text="Internal Server Error"),
            httpx.Response(200, json={"result": "success"}),
        ]

        result = await client._make_request("GET", "/test")

        assert result == {"result": "success"}
        assert respx.calls.call_count == 2
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_5xx_exhausted_becomes_bad_gateway(self, no_retry_wait):
        client = ImageryClient()
        respx.get(f"{client.base_url}/test").mock(
            return_value=httpx.Response(503, text="Unavailable")
        )

        with pytest.raises(ImageryAPIError) as exc_info:
            await client._make_request("GET", "/test")

        assert exc_info.value.status_code == 502
        assert respx.calls.call_count == 3
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_connection_error(self, no_retry_wait):
        client = ImageryClient()
        respx.get(f"{client.base_url}/test").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(ImageryAPIError) as exc_info:
            await client._make_request("GET", "/test")

        assert exc_info.value.status_code == 503
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_decoding_error_is_wrapped(self, no_retry_wait):
        """Any httpx request error surfaces as an ImageryAPIError."""
        client = ImageryClient()
        respx.get(f"{client.base_url}/test").mock(side_effect=httpx.DecodingError("bad gzip"))

        with pytest.raises(ImageryAPIError, match="bad gzip") as exc_info:
            await client._make_request("GET", "/test")

        assert exc_info.value.status_code == 503
        await client.close()

    @pytest.mark.asyncio
    @respx.mock
    async def test_non_object_raster_payload(self, square_ring, window):
        client = ImageryClient()
        respx.post(f"{client.base_url}/process").mock(
            return_value=httpx.Response(200, json=[1, 2])
        )

        with pytest.raises(ValidationError):
            await client.fetch_raster("f1", square_ring, LayerKind.NDVI, window)
        await client.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
