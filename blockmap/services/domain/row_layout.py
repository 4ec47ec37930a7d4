"""
Domain service: Vine row layout generation.

Rows are parallel lines at a fixed spacing and bearing, clipped to the
block boundary. They are a rendering aid only: they carry no identity and
are rebuilt wholesale whenever the boundary, spacing or orientation change.
"""
from typing import Optional, Sequence
import logging
import math

from blockmap.domain.models import Boundary, LatLng, RowLine, Segment
from blockmap.utils.geodesy import (
    distance_ft,
    feet_per_degree,
    point_in_polygon,
    segment_intersection,
)
from blockmap.utils.spatial_helpers import (
    bbox_center,
    calculate_midpoint,
    ring_bbox,
    ring_edges,
)

logger = logging.getLogger(__name__)

_SAME_POINT_TOLERANCE = 1e-12


def _same_point(p: LatLng, q: LatLng) -> bool:
    return (
        math.isclose(p.lat, q.lat, abs_tol=_SAME_POINT_TOLERANCE)
        and math.isclose(p.lng, q.lng, abs_tol=_SAME_POINT_TOLERANCE)
    )


def clip_line_to_polygon(
    start: LatLng,
    end: LatLng,
    ring: Sequence[LatLng],
) -> list[Segment]:
    """
    Clip the segment start-end to the inside of a ring.

    The line is cut at every boundary crossing; pieces whose midpoint lies
    inside the ring are kept.

    Args:
        start: Line start
        end: Line end
        ring: Unclosed boundary vertices

    Returns:
        Disjoint (start, end) pieces ordered from the line start
    """
    if len(ring) < 3:
        return []

    hits = []
    for a, b in ring_edges(ring):
        point = segment_intersection(start, end, a, b)
        if point is not None:
            hits.append(point)

    hits.sort(key=lambda p: (p.lng - start.lng) ** 2 + (p.lat - start.lat) ** 2)
    points = [start, *hits, end]

    segments: list[Segment] = []
    for p, q in zip(points, points[1:]):
        if _same_point(p, q):
            continue
        if not point_in_polygon(calculate_midpoint(p, q), ring):
            continue
        # Pieces meeting at a vertex crossing are one row segment
        if segments and _same_point(segments[-1][1], p):
            segments[-1] = (segments[-1][0], q)
        else:
            segments.append((p, q))

    return segments


def generate_row_lines(
    ring: Sequence[LatLng],
    row_spacing_ft: Optional[float],
    orientation_deg: float,
) -> list[RowLine]:
    """
    Generate vine rows covering a block.

    Args:
        ring: Unclosed boundary vertices
        row_spacing_ft: Distance between rows in feet
        orientation_deg: Row bearing, degrees clockwise from north

    Returns:
        Row lines clipped to the boundary
    """
    if len(ring) < 3 or not row_spacing_ft or row_spacing_ft <= 0:
        return []

    bbox = ring_bbox(ring)
    center = bbox_center(bbox)
    ft_per_deg_lat, ft_per_deg_lng = feet_per_degree(center.lat)

    min_lng, min_lat, max_lng, max_lat = bbox
    width_ft = (max_lng - min_lng) * ft_per_deg_lng
    height_ft = (max_lat - min_lat) * ft_per_deg_lat
    diagonal_ft = math.hypot(width_ft, height_ft)
    if diagonal_ft == 0:
        return []

    # Enough offsets to cover the box at any rotation
    row_count = math.ceil(diagonal_ft / row_spacing_ft)
    half = math.ceil(row_count / 2)

    theta = math.radians(orientation_deg % 360)
    # (east, north) unit vectors in feet
    along = (math.sin(theta), math.cos(theta))
    across = (math.cos(theta), -math.sin(theta))

    def to_latlng(east_ft: float, north_ft: float) -> LatLng:
        return LatLng(
            center.lat + north_ft / ft_per_deg_lat,
            center.lng + east_ft / ft_per_deg_lng,
        )

    rows = []
    for i in range(-half, half + 1):
        offset = i * row_spacing_ft
        ox, oy = across[0] * offset, across[1] * offset
        start = to_latlng(ox - along[0] * diagonal_ft, oy - along[1] * diagonal_ft)
        end = to_latlng(ox + along[0] * diagonal_ft, oy + along[1] * diagonal_ft)

        segments = clip_line_to_polygon(start, end, ring)
        if segments:
            rows.append(RowLine(segments=tuple(segments)))

    logger.debug(
        f"Generated {len(rows)} rows from {2 * half + 1} candidates "
        f"(spacing={row_spacing_ft}ft, orientation={orientation_deg}°)"
    )
    return rows


def total_row_length_ft(rows: Sequence[RowLine]) -> float:
    """Summed geodesic length of every row segment."""
    return sum(
        distance_ft(a, b)
        for row in rows
        for a, b in row.segments
    )


def vine_count(rows: Sequence[RowLine], vine_spacing_ft: Optional[float]) -> int:
    """
    Estimate how many vines the rows hold.

    Args:
        rows: Generated row lines
        vine_spacing_ft: In-row distance between vines

    Returns:
        Vine count, 0 when the spacing is missing
    """
    if not vine_spacing_ft or vine_spacing_ft <= 0:
        return 0
    return sum(
        math.floor(distance_ft(a, b) / vine_spacing_ft)
        for row in rows
        for a, b in row.segments
    )


class RowLayoutGenerator:
    """
    Keeps the row overlay of one block in sync with its inputs.

    Callers may invoke compute() on every state change; rows are rebuilt only
    when the ring, spacing or orientation differ from the previous call.
    """

    def __init__(self):
        self._key: Optional[tuple] = None
        self._rows: list[RowLine] = []

    def compute(self, boundary: Boundary) -> list[RowLine]:
        """
        Rows for a boundary.

        Args:
            boundary: Block boundary with spacing and orientation

        Returns:
            Row lines clipped to the boundary
        """
        key = (
            tuple(boundary.vertices),
            boundary.row_spacing_ft,
            boundary.row_orientation_deg,
        )
        if key != self._key:
            self._rows = generate_row_lines(
                boundary.vertices,
                boundary.row_spacing_ft,
                boundary.row_orientation_deg,
            )
            self._key = key
        return list(self._rows)

    def invalidate(self) -> None:
        self._key = None
        self._rows = []
