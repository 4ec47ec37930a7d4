"""
Spatial helper functions.

Provides utilities for:
- Bounding boxes of rings
- Midpoints
- Ring validity checks
"""
from typing import Sequence
import logging

from shapely.geometry import LinearRing, Polygon

from blockmap.domain.models import BBox, LatLng

logger = logging.getLogger(__name__)


def ring_bbox(ring: Sequence[LatLng]) -> BBox:
    """
    Calculate the planar bounding box of a ring.

    Args:
        ring: List of (lat, lng) vertices

    Returns:
        (min_lng, min_lat, max_lng, max_lat)
    """
    lngs = [p.lng for p in ring]
    lats = [p.lat for p in ring]
    return (min(lngs), min(lats), max(lngs), max(lats))


def bbox_center(bbox: BBox) -> LatLng:
    """Center of a bounding box."""
    min_lng, min_lat, max_lng, max_lat = bbox
    return LatLng((min_lat + max_lat) / 2, (min_lng + max_lng) / 2)


def calculate_midpoint(point1: LatLng, point2: LatLng) -> LatLng:
    """
    Calculate the midpoint between two points.

    Args:
        point1: First point
        point2: Second point

    Returns:
        Midpoint
    """
    return LatLng((point1.lat + point2.lat) / 2, (point1.lng + point2.lng) / 2)


def ring_edges(ring: Sequence[LatLng]) -> list[tuple[LatLng, LatLng]]:
    """Edges of the implicitly closed ring, last vertex back to the first."""
    n = len(ring)
    if n < 2:
        return []
    return [(ring[i], ring[(i + 1) % n]) for i in range(n)]


def is_simple_ring(ring: Sequence[LatLng]) -> bool:
    """
    Check that a ring does not self-intersect.

    Args:
        ring: Unclosed list of vertices

    Returns:
        True if the ring has at least 3 vertices and is simple
    """
    if len(ring) < 3:
        return False
    coords = [(p.lng, p.lat) for p in ring]
    linear_ring = LinearRing(coords)
    if not linear_ring.is_simple:
        logger.debug("Ring self-intersects")
        return False
    return Polygon(coords).area > 0


def bbox_polygon_coords(bbox: BBox) -> list[list[float]]:
    """Closed [lng, lat] ring covering a bounding box."""
    min_lng, min_lat, max_lng, max_lat = bbox
    return [
        [min_lng, min_lat],
        [max_lng, min_lat],
        [max_lng, max_lat],
        [min_lng, max_lat],
        [min_lng, min_lat],
    ]
