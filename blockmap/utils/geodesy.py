"""
Geodetic math on block boundaries.

Areas and distances are geodesic (pyproj.Geod). Point-in-polygon and
segment intersection treat (lng, lat) as planar coordinates, which is an
accepted approximation at vineyard-block scale; they live here so a true
spherical test can replace them without touching callers.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Sequence
import math

from pyproj import Geod

from blockmap.config import settings
from blockmap.domain.models import LatLng


SQUARE_METERS_PER_ACRE = 4046.86
FEET_PER_METER = 3.28084
MEAN_EARTH_RADIUS_M = 6371008.8

# Approximate feet per degree used for row layout
FEET_PER_DEGREE_LAT = 364000.0
FEET_PER_DEGREE_LNG = 300000.0

INTERSECTION_EPSILON = 1e-12


@dataclass(frozen=True)
class SegmentProjection:
    """Closest point on a segment and the distance to it."""
    distance_ft: float
    closest: LatLng
    t: float


@lru_cache(maxsize=4)
def get_geod(ellipsoid: Optional[str] = None) -> Geod:
    """
    Get the geodesic engine for the configured ellipsoid.

    Args:
        ellipsoid: pyproj ellipsoid name, or "sphere" for a mean-radius sphere

    Returns:
        Geod instance
    """
    name = ellipsoid or settings.geod_ellipsoid
    if name.lower() == "sphere":
        return Geod(a=MEAN_EARTH_RADIUS_M, f=0.0)
    return Geod(ellps=name)


def area_acres(ring: Sequence[LatLng]) -> float:
    """
    Calculate the area enclosed by a ring in acres.

    Args:
        ring: Unclosed list of (lat, lng) vertices

    Returns:
        Area in acres, 0 for fewer than 3 vertices
    """
    if len(ring) < 3:
        return 0.0

    lats = [p.lat for p in ring]
    lngs = [p.lng for p in ring]
    area_m2, _ = get_geod().polygon_area_perimeter(lngs, lats)

    # Sign only encodes winding order
    return abs(area_m2) / SQUARE_METERS_PER_ACRE


def perimeter_ft(ring: Sequence[LatLng]) -> float:
    """Perimeter of the closed ring in feet."""
    if len(ring) < 2:
        return 0.0
    total = 0.0
    for i, point in enumerate(ring):
        total += distance_ft(point, ring[(i + 1) % len(ring)])
    return total


def distance_ft(p1: LatLng, p2: LatLng) -> float:
    """
    Geodesic distance between two points.

    Args:
        p1: First point
        p2: Second point

    Returns:
        Distance in feet
    """
    if p1 == p2:
        return 0.0
    _, _, meters = get_geod().inv(p1.lng, p1.lat, p2.lng, p2.lat)
    return meters * FEET_PER_METER


def feet_per_degree(lat: Optional[float] = None) -> tuple[float, float]:
    """
    Feet per degree of latitude and longitude.

    Uses fixed block-scale approximations. The latitude argument is the hook
    for a latitude-dependent longitude factor.

    Returns:
        (feet per degree latitude, feet per degree longitude)
    """
    return FEET_PER_DEGREE_LAT, FEET_PER_DEGREE_LNG


def ring_centroid(ring: Sequence[LatLng]) -> Optional[LatLng]:
    """Vertex average of a ring, used to center the map on a block."""
    if not ring:
        return None
    lat = sum(p.lat for p in ring) / len(ring)
    lng = sum(p.lng for p in ring) / len(ring)
    return LatLng(lat, lng)


def project_onto_segment(point: LatLng, a: LatLng, b: LatLng) -> SegmentProjection:
    """
    Project a point onto the segment a-b.

    The projection parameter is computed in a local equirectangular frame
    (longitude scaled by the cosine of the reference latitude) and clamped
    to [0, 1].

    Args:
        point: Point to project
        a: Segment start
        b: Segment end

    Returns:
        SegmentProjection with distance in feet, closest point and t
    """
    if a == b:
        return SegmentProjection(distance_ft(point, a), a, 0.0)

    scale = math.cos(math.radians((a.lat + b.lat) / 2))
    ax, ay = a.lng * scale, a.lat
    bx, by = b.lng * scale, b.lat
    px, py = point.lng * scale, point.lat

    dx, dy = bx - ax, by - ay
    t = ((px - ax) * dx + (py - ay) * dy) / (dx * dx + dy * dy)
    t = max(0.0, min(1.0, t))

    closest = LatLng(a.lat + t * (b.lat - a.lat), a.lng + t * (b.lng - a.lng))
    return SegmentProjection(distance_ft(point, closest), closest, t)


def point_in_polygon(point: LatLng, ring: Sequence[LatLng]) -> bool:
    """
    Even-odd ray casting test, planar in (lng, lat).

    Args:
        point: Point to test
        ring: Unclosed list of vertices

    Returns:
        True if the point is inside the ring
    """
    inside = False
    n = len(ring)
    if n < 3:
        return False

    j = n - 1
    for i in range(n):
        xi, yi = ring[i].lng, ring[i].lat
        xj, yj = ring[j].lng, ring[j].lat
        if (yi > point.lat) != (yj > point.lat):
            x_cross = (xj - xi) * (point.lat - yi) / (yj - yi) + xi
            if point.lng < x_cross:
                inside = not inside
        j = i
    return inside


def segment_intersection(
    p1: LatLng,
    p2: LatLng,
    p3: LatLng,
    p4: LatLng,
) -> Optional[LatLng]:
    """
    Intersection of segments p1-p2 and p3-p4, planar in (lng, lat).

    Returns:
        The intersection point when it lies within both segments,
        None otherwise (including parallel segments)
    """
    x1, y1 = p1.lng, p1.lat
    x2, y2 = p2.lng, p2.lat
    x3, y3 = p3.lng, p3.lat
    x4, y4 = p4.lng, p4.lat

    det = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if abs(det) < INTERSECTION_EPSILON:
        return None

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / det
    u = -((x1 - x2) * (y1 - y3) - (y1 - y2) * (x1 - x3)) / det

    if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
        return LatLng(y1 + t * (y2 - y1), x1 + t * (x2 - x1))
    return None
