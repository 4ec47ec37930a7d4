"""
Infrastructure layer: Raster imagery client with retry logic.
"""
from datetime import date
from typing import Any, Dict, List, Optional, Sequence
import logging

import httpx
import numpy as np
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from blockmap.config import settings
from blockmap.domain.models import (
    DateWindow,
    LatLng,
    LayerKind,
    RasterRecord,
    ScalarOverlay,
)
from blockmap.infrastructure.api_constants import APIConstants, ImageryAPIEndpoints
from blockmap.utils.geojson import ring_to_geojson

logger = logging.getLogger(__name__)


class RasterResponse(BaseModel):
    """Response from the process endpoint."""
    width: int
    height: int
    bbox: List[float] = Field(description="[min_lng, min_lat, max_lng, max_lat]")
    values: Optional[List[Optional[float]]] = Field(
        default=None,
        description="Row-major pixel values, null for no data"
    )
    mean_value: Optional[float] = Field(default=None, alias="meanValue")
    acquisition_date: Optional[date] = Field(default=None, alias="acquisitionDate")
    scene_id: Optional[str] = Field(default=None, alias="sceneId")

    class Config:
        populate_by_name = True


class ScalarResponse(BaseModel):
    """Response from the field scalar endpoint."""
    value: float
    unit: str = "mm"
    as_of: Optional[date] = Field(default=None, alias="date")

    class Config:
        populate_by_name = True


class ImageryAPIError(Exception):
    """Raised when the imagery service cannot deliver a raster."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ImageryClient:
    """
    Client for the raster imagery service.
    Implements retry logic with exponential backoff.
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None):
        """Initialize the API client with configuration."""
        self.base_url = base_url or settings.imagery_api_base_url
        self.api_key = api_key if api_key is not None else settings.imagery_api_key
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "accept": APIConstants.CONTENT_TYPE_JSON,
            },
            timeout=APIConstants.LONG_TIMEOUT,
        )

    async def __aenter__(self) -> "ImageryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    @retry(
        stop=stop_after_attempt(settings.max_retry_attempts),
        wait=wait_exponential(
            multiplier=settings.retry_backoff_multiplier,
            min=settings.retry_min_wait,
            max=settings.retry_max_wait,
        ),
        retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.RequestError)),
        reraise=True,
    )
    async def _send(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        response = await self.client.request(method, endpoint, **kwargs)
        if response.status_code >= 500:
            # Server errors are retried
            response.raise_for_status()
        if response.status_code >= 400:
            raise ImageryAPIError(
                f"Imagery request failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )
        return response.json()

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API endpoint path
            **kwargs: Additional arguments for the request

        Returns:
            Response data as dictionary

        Raises:
            ImageryAPIError: If the request fails after retries
        """
        try:
            return await self._send(method, endpoint, **kwargs)
        except httpx.HTTPStatusError as e:
            raise ImageryAPIError(
                f"Imagery request failed: {e.response.status_code} - {e.response.text}",
                status_code=502,
            )
        except httpx.RequestError as e:
            raise ImageryAPIError(f"Imagery request error: {str(e)}", status_code=503)

    async def fetch_raster(
        self,
        field_id: str,
        boundary: Sequence[LatLng],
        layer: LayerKind,
        window: DateWindow,
    ) -> RasterRecord:
        """
        Fetch a raster layer for a field over a date window.

        Args:
            field_id: Field identifier
            boundary: Unclosed field ring
            layer: Raster layer to render
            window: Acquisition window

        Returns:
            RasterRecord (not yet quality gated)

        Raises:
            ImageryAPIError: If the request fails
        """
        logger.info(f"Fetching {layer.value} for field {field_id} over {window.key}")

        body = {
            "fieldId": field_id,
            "layer": layer.value,
            "geometry": ring_to_geojson(boundary),
            "timeRange": {
                "from": f"{window.start.isoformat()}T00:00:00Z",
                "to": f"{window.end.isoformat()}T23:59:59Z",
            },
            "source": APIConstants.DATA_SOURCE,
            "maxCloudCoverage": APIConstants.MAX_CLOUD_COVERAGE,
            "width": APIConstants.RASTER_WIDTH,
            "height": APIConstants.RASTER_HEIGHT,
        }
        data = await self._make_request("POST", ImageryAPIEndpoints.PROCESS, json=body)
        response = RasterResponse.model_validate(data)
        return self.to_record(response, layer, window)

    async def fetch_scalar(self, field_id: str, layer: LayerKind, window: DateWindow) -> ScalarOverlay:
        """
        Fetch a single-value overlay (water balance, ET) for a field.

        Raises:
            ImageryAPIError: If the request fails
        """
        data = await self._make_request(
            "GET",
            ImageryAPIEndpoints.get_field_scalar(field_id, layer),
            params={"from": window.start.isoformat(), "to": window.end.isoformat()},
        )
        response = ScalarResponse.model_validate(data)
        return ScalarOverlay(
            field_id=field_id,
            layer=layer,
            value=response.value,
            unit=response.unit,
            as_of=response.as_of,
        )

    def to_record(
        self,
        response: RasterResponse,
        layer: LayerKind,
        window: Optional[DateWindow] = None,
    ) -> RasterRecord:
        """
        Convert a service response to a RasterRecord.

        Args:
            response: Parsed service response
            layer: Layer the raster belongs to
            window: Window it was requested for

        Returns:
            RasterRecord with values shaped (height, width), or no values
            when the payload does not match the declared size
        """
        values = None
        if response.values is not None:
            flat = np.array(
                [np.nan if v is None else v for v in response.values],
                dtype=np.float32,
            )
            if flat.size == response.width * response.height:
                values = flat.reshape(response.height, response.width)
            else:
                logger.warning(
                    f"Raster payload has {flat.size} values for a "
                    f"{response.width}x{response.height} grid; discarding values"
                )

        return RasterRecord(
            width=response.width,
            height=response.height,
            bbox=tuple(response.bbox),
            values=values,
            mean_value=response.mean_value,
            acquisition_date=response.acquisition_date,
            scene_id=response.scene_id,
            layer=layer,
            window=window,
        )


# Singleton instance
_imagery_client: Optional[ImageryClient] = None


def get_imagery_client() -> ImageryClient:
    """
    Get or create the singleton imagery client instance.

    Returns:
        ImageryClient instance
    """
    global _imagery_client
    if _imagery_client is None:
        _imagery_client = ImageryClient()
    return _imagery_client
