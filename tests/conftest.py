"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Sample block rings
- Sample rasters
- Fake map widget and screen capturer
- Mock imagery client
- FastAPI test client
"""
from datetime import date
from unittest.mock import AsyncMock

import numpy as np
import pytest
from fastapi.testclient import TestClient

from blockmap.main import app
from blockmap.domain.models import DateWindow, LatLng, RasterRecord
from blockmap.infrastructure.imagery_client import ImageryClient

from helpers import FakeCapturer, FakeMap, cloudy_raster, make_raster


# ============================================================
# Sample Geometry Fixtures
# ============================================================

@pytest.fixture
def square_ring() -> list[LatLng]:
    """Roughly 320 x 360 ft block in the Texas Hill Country."""
    return [
        LatLng(30.2670, -98.8800),
        LatLng(30.2670, -98.8790),
        LatLng(30.2680, -98.8790),
        LatLng(30.2680, -98.8800),
    ]


@pytest.fixture
def unit_square_ring() -> list[LatLng]:
    """One degree square; large enough to reason about in degrees."""
    return [
        LatLng(0.0, 0.0),
        LatLng(0.0, 1.0),
        LatLng(1.0, 1.0),
        LatLng(1.0, 0.0),
    ]


@pytest.fixture
def u_shaped_ring() -> list[LatLng]:
    """Concave block: a U opening to the north."""
    return [
        LatLng(0.0, 0.0),
        LatLng(0.0, 3.0),
        LatLng(3.0, 3.0),
        LatLng(3.0, 2.0),
        LatLng(1.0, 2.0),
        LatLng(1.0, 1.0),
        LatLng(3.0, 1.0),
        LatLng(3.0, 0.0),
    ]


@pytest.fixture
def square_geojson(square_ring) -> dict:
    """GeoJSON Polygon of square_ring."""
    coords = [[p.lng, p.lat] for p in square_ring]
    coords.append(coords[0])
    return {"type": "Polygon", "coordinates": [coords]}


@pytest.fixture
def window() -> DateWindow:
    return DateWindow(start=date(2024, 7, 1), end=date(2024, 7, 14))


@pytest.fixture
def other_window() -> DateWindow:
    return DateWindow(start=date(2024, 7, 15), end=date(2024, 7, 28))


# ============================================================
# Sample Raster Fixtures
# ============================================================

@pytest.fixture
def good_raster() -> RasterRecord:
    """Cloud-free NDVI raster."""
    return make_raster(
        np.full((4, 4), 0.65),
        acquisition_date=date(2024, 7, 6),
        scene_id="S2A_20240706",
    )


@pytest.fixture
def cloudy_ndvi() -> RasterRecord:
    """NDVI raster with only 40% valid pixels."""
    return cloudy_raster(0.4)


# ============================================================
# Mock Collaborator Fixtures
# ============================================================

@pytest.fixture
def mock_imagery_client() -> AsyncMock:
    """Create a mock imagery client."""
    return AsyncMock(spec=ImageryClient)


@pytest.fixture
def fake_map() -> FakeMap:
    return FakeMap()


@pytest.fixture
def fake_capturer(fake_map) -> FakeCapturer:
    return FakeCapturer(fake_map)


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    return TestClient(app)
