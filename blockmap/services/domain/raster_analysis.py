"""
Domain service: Raster quality gating, statistics, deltas and vigor zones.

Every freshly fetched raster passes validate_raster() before it may be
cached. Rejection is a policy outcome, not an error: callers fall back to
the field's last good raster.
"""
from dataclasses import dataclass
from typing import Optional
import logging
import math

import numpy as np

from blockmap.config import settings
from blockmap.domain.models import DeltaRaster, RasterRecord, RasterStats, VigorZone
from blockmap.utils.spatial_helpers import bbox_polygon_coords

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VigorBand:
    level: str
    low: float
    high: float
    rate: float
    color: str


VIGOR_BANDS = (
    VigorBand("low", -1.0, 0.3, 1.4, "#ef4444"),
    VigorBand("medium-low", 0.3, 0.45, 1.2, "#f97316"),
    VigorBand("medium", 0.45, 0.6, 1.0, "#eab308"),
    VigorBand("medium-high", 0.6, 0.75, 0.9, "#84cc16"),
    VigorBand("high", 0.75, 1.0, 0.8, "#22c55e"),
)


@dataclass(frozen=True)
class ValidityResult:
    """Outcome of the quality gate."""
    ok: bool
    reason: Optional[str] = None
    stats: Optional[RasterStats] = None


def calculate_raster_stats(values: np.ndarray, diverging: bool = False) -> RasterStats:
    """
    Summary statistics over the finite pixels of a raster.

    Args:
        values: Pixel values, NaN for no data
        diverging: Whether values are signed changes around zero

    Returns:
        RasterStats; all zeros when no pixel is finite
    """
    flat = np.asarray(values, dtype=np.float64).ravel()
    finite = flat[np.isfinite(flat)]

    if finite.size == 0:
        return RasterStats(
            mean=0.0, min=0.0, max=0.0, std=0.0,
            valid_count=0, total_count=int(flat.size), diverging=diverging,
        )

    return RasterStats(
        mean=float(finite.mean()),
        min=float(finite.min()),
        max=float(finite.max()),
        std=float(finite.std()),
        valid_count=int(finite.size),
        total_count=int(flat.size),
        diverging=diverging,
    )


def validate_raster(
    record: Optional[RasterRecord],
    min_valid_percent: Optional[float] = None,
    mean_epsilon: Optional[float] = None,
) -> ValidityResult:
    """
    Decide whether a fetched raster is fit to display and cache.

    Rejects when:
    - the raster or its values are absent
    - the reported mean is missing, NaN, or within epsilon of zero
    - fewer than min_valid_percent of the pixels are finite (clouds)

    Args:
        record: Fetched raster
        min_valid_percent: Override of settings.min_valid_pixel_percent
        mean_epsilon: Override of settings.mean_zero_epsilon

    Returns:
        ValidityResult
    """
    min_valid = settings.min_valid_pixel_percent if min_valid_percent is None else min_valid_percent
    epsilon = settings.mean_zero_epsilon if mean_epsilon is None else mean_epsilon

    if record is None or record.values is None or np.asarray(record.values).size == 0:
        return ValidityResult(ok=False, reason="no raster data")

    stats = calculate_raster_stats(record.values)
    mean = record.mean_value

    if mean is None or math.isnan(mean):
        return ValidityResult(ok=False, reason="mean value missing", stats=stats)
    if abs(mean) <= epsilon:
        return ValidityResult(ok=False, reason=f"mean value {mean:.3f} is effectively zero", stats=stats)
    if stats.valid_percent < min_valid:
        return ValidityResult(
            ok=False,
            reason=f"only {stats.valid_percent:.1f}% valid pixels (too cloudy)",
            stats=stats,
        )
    return ValidityResult(ok=True, stats=stats)


def compute_delta(baseline: RasterRecord, current: RasterRecord) -> Optional[DeltaRaster]:
    """
    Pixel-wise change from a baseline raster to a current one.

    Args:
        baseline: Earlier raster
        current: Later raster

    Returns:
        DeltaRaster with diverging stats, or None when the grids differ
    """
    if baseline.values is None or current.values is None:
        return None
    if (
        baseline.width != current.width
        or baseline.height != current.height
        or not np.allclose(baseline.bbox, current.bbox)
    ):
        logger.debug(
            f"Delta skipped: grids differ ({baseline.width}x{baseline.height} "
            f"vs {current.width}x{current.height})"
        )
        return None

    base = np.asarray(baseline.values, dtype=np.float32)
    cur = np.asarray(current.values, dtype=np.float32)
    if base.shape != cur.shape:
        return None

    values = cur - base
    return DeltaRaster(
        width=current.width,
        height=current.height,
        bbox=current.bbox,
        values=values,
        stats=calculate_raster_stats(values, diverging=True),
        baseline_date=baseline.acquisition_date,
        current_date=current.acquisition_date,
    )


def classify_vigor_zones(record: RasterRecord) -> list[VigorZone]:
    """
    Bucket NDVI pixels into vigor zones.

    Each zone gets the share of valid pixels it holds and the bounding box,
    in geographic coordinates, of the pixels that fall in it.

    Args:
        record: NDVI raster

    Returns:
        Zones holding at least one pixel, lowest vigor first
    """
    if record.values is None:
        return []

    grid = np.asarray(record.values, dtype=np.float64).reshape(record.height, record.width)
    finite = np.isfinite(grid)
    total = int(finite.sum())
    if total == 0:
        return []

    min_lng, min_lat, max_lng, max_lat = record.bbox
    pixel_w = (max_lng - min_lng) / record.width
    pixel_h = (max_lat - min_lat) / record.height

    zones = []
    for band in VIGOR_BANDS:
        if band is VIGOR_BANDS[-1]:
            mask = finite & (grid >= band.low) & (grid <= band.high)
        else:
            mask = finite & (grid >= band.low) & (grid < band.high)
        count = int(mask.sum())
        if count == 0:
            continue

        rows, cols = np.nonzero(mask)
        # Row 0 is the northern edge of the raster
        zone_bbox = (
            min_lng + cols.min() * pixel_w,
            max_lat - (rows.max() + 1) * pixel_h,
            min_lng + (cols.max() + 1) * pixel_w,
            max_lat - rows.min() * pixel_h,
        )
        zones.append(VigorZone(
            level=band.level,
            ndvi_range=(band.low, band.high),
            recommended_rate=band.rate,
            color=band.color,
            pixel_count=count,
            percent_of_field=round(count / total * 100, 1),
            polygon={"type": "Polygon", "coordinates": [bbox_polygon_coords(zone_bbox)]},
            mean_ndvi=float(grid[mask].mean()),
        ))

    return zones
