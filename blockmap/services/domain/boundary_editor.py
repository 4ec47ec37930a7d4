"""
Domain service: Interactive boundary drawing and editing.

A BoundaryEditSession owns a working copy of a ring while the user draws
or edits it. Impossible intents (closing or shrinking below three vertices,
editing outside the editing state) are refused silently; the owner only
ever sees the ring handed over on commit.
"""
from enum import Enum
from typing import Callable, Optional, Sequence
import logging

from blockmap.config import settings
from blockmap.domain.models import CommittedBoundary, LatLng
from blockmap.utils.geodesy import (
    SegmentProjection,
    area_acres,
    distance_ft,
    project_onto_segment,
)
from blockmap.utils.geojson import ring_to_geojson
from blockmap.utils.spatial_helpers import (
    calculate_midpoint,
    is_simple_ring,
    ring_edges,
)

logger = logging.getLogger(__name__)

MIN_VERTICES = 3


class EditState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    CLOSED = "closed"
    EDITING = "editing"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class EditMode(str, Enum):
    """When a closed ring is committed."""
    IMMEDIATE = "immediate"
    STAGED = "staged"


class BoundaryEditSession:
    """
    State machine for drawing a new boundary or editing an existing one.

    IDLE -> DRAWING -> CLOSED -> EDITING, ending in COMMITTED or CANCELLED.
    In IMMEDIATE mode closing the ring commits it straight away; in STAGED
    mode closing stops at CLOSED and the ring is committed by save().
    """

    def __init__(
        self,
        mode: EditMode = EditMode.STAGED,
        on_commit: Optional[Callable[[CommittedBoundary], None]] = None,
        closing_tolerance_ft: Optional[float] = None,
        edge_tolerance_ft: Optional[float] = None,
    ):
        """
        Initialize an empty session.

        Args:
            mode: Commit trigger
            on_commit: Receives the committed ring
            closing_tolerance_ft: Override of settings.closing_tolerance_ft
            edge_tolerance_ft: Override of settings.edge_hit_tolerance_ft
        """
        self.mode = mode
        self.on_commit = on_commit
        self.closing_tolerance_ft = (
            closing_tolerance_ft if closing_tolerance_ft is not None else settings.closing_tolerance_ft
        )
        self.edge_tolerance_ft = (
            edge_tolerance_ft if edge_tolerance_ft is not None else settings.edge_hit_tolerance_ft
        )

        self.state = EditState.IDLE
        self.vertices: list[LatLng] = []
        self.near_first_vertex = False
        self.editing_existing = False
        self.committed: Optional[CommittedBoundary] = None

    @classmethod
    def for_existing(
        cls,
        vertices: Sequence[LatLng],
        mode: EditMode = EditMode.STAGED,
        **kwargs,
    ) -> "BoundaryEditSession":
        """
        Open a session on a copy of an existing boundary.

        Args:
            vertices: Current ring of the field
            mode: Commit trigger
            **kwargs: Forwarded to the constructor

        Returns:
            Session in the CLOSED state
        """
        session = cls(mode=mode, **kwargs)
        session.vertices = [LatLng(*p) for p in vertices]
        session.editing_existing = True
        session.state = EditState.CLOSED if len(session.vertices) >= MIN_VERTICES else EditState.DRAWING
        return session

    @property
    def is_closed(self) -> bool:
        return self.state in (EditState.CLOSED, EditState.EDITING)

    @property
    def is_finished(self) -> bool:
        return self.state in (EditState.COMMITTED, EditState.CANCELLED)

    @property
    def acres(self) -> float:
        return area_acres(self.vertices)

    # ------------------------------------------------------------
    # Drawing
    # ------------------------------------------------------------

    def start_drawing(self) -> None:
        if self.state != EditState.IDLE:
            logger.debug(f"start_drawing ignored in state {self.state.value}")
            return
        self.vertices = []
        self.state = EditState.DRAWING

    def click(self, point: LatLng) -> EditState:
        """
        Handle a map click.

        Args:
            point: Clicked coordinate

        Returns:
            State after the click
        """
        if self.state == EditState.DRAWING:
            if self._within_closing_tolerance(point):
                self.close()
            else:
                self.vertices.append(point)
                self.near_first_vertex = False
        elif self.state == EditState.EDITING:
            edge_index = self._hit_test_midpoint(point)
            if edge_index is not None:
                self.insert_at_midpoint(edge_index)
        return self.state

    def pointer_move(self, point: LatLng) -> bool:
        """
        Update the about-to-close indicator.

        Args:
            point: Pointer coordinate

        Returns:
            Whether a click here would close the ring
        """
        if self.state == EditState.DRAWING:
            self.near_first_vertex = self._within_closing_tolerance(point)
        else:
            self.near_first_vertex = False
        return self.near_first_vertex

    def close(self) -> EditState:
        """Close the ring being drawn; a no-op below three vertices."""
        if self.state != EditState.DRAWING or len(self.vertices) < MIN_VERTICES:
            logger.debug(f"close ignored ({len(self.vertices)} vertices, state {self.state.value})")
            return self.state

        self.near_first_vertex = False
        if self.mode == EditMode.IMMEDIATE:
            self._commit()
        else:
            self.state = EditState.CLOSED
        return self.state

    def undo_last_vertex(self) -> None:
        if self.state == EditState.DRAWING and self.vertices:
            self.vertices.pop()
            self.near_first_vertex = False

    def _within_closing_tolerance(self, point: LatLng) -> bool:
        if len(self.vertices) < MIN_VERTICES:
            return False
        return distance_ft(point, self.vertices[0]) < self.closing_tolerance_ft

    # ------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------

    def enable_editing(self) -> None:
        if self.state == EditState.CLOSED:
            self.state = EditState.EDITING

    def disable_editing(self) -> None:
        if self.state == EditState.EDITING:
            self.state = EditState.CLOSED

    def drag_vertex(self, index: int, point: LatLng) -> None:
        """Move a vertex in place; count and order never change."""
        if self.state != EditState.EDITING or not 0 <= index < len(self.vertices):
            return
        self.vertices[index] = point

    def delete_vertex(self, index: int) -> bool:
        """
        Remove a vertex.

        Returns:
            True if removed, False when refused
        """
        if self.state != EditState.EDITING or not 0 <= index < len(self.vertices):
            return False
        if len(self.vertices) - 1 < MIN_VERTICES:
            logger.debug("Vertex delete refused: ring would drop below 3 vertices")
            return False
        del self.vertices[index]
        return True

    def insert_at_midpoint(self, edge_index: int) -> bool:
        """
        Insert a vertex halfway along an edge.

        Args:
            edge_index: Edge from vertex edge_index to the next vertex

        Returns:
            True if inserted
        """
        if self.state != EditState.EDITING or not 0 <= edge_index < len(self.vertices):
            return False
        a = self.vertices[edge_index]
        b = self.vertices[(edge_index + 1) % len(self.vertices)]
        self.vertices.insert(edge_index + 1, calculate_midpoint(a, b))
        return True

    def insert_at_edge(self, point: LatLng) -> bool:
        """
        Insert a vertex where a right-click lands on an edge.

        The vertex goes at the projection of the point onto the closest edge,
        provided that edge is within the edge tolerance.

        Args:
            point: Right-clicked coordinate

        Returns:
            True if inserted
        """
        if self.state != EditState.EDITING:
            return False
        hit = self.hit_test_edge(point)
        if hit is None:
            return False
        edge_index, projection = hit
        self.vertices.insert(edge_index + 1, projection.closest)
        return True

    def hit_test_edge(self, point: LatLng) -> Optional[tuple[int, SegmentProjection]]:
        """
        Find the edge closest to a point.

        Returns:
            (edge index, projection) when within tolerance, otherwise None
        """
        best: Optional[tuple[int, SegmentProjection]] = None
        for i, (a, b) in enumerate(ring_edges(self.vertices)):
            projection = project_onto_segment(point, a, b)
            if best is None or projection.distance_ft < best[1].distance_ft:
                best = (i, projection)

        if best is None or best[1].distance_ft > self.edge_tolerance_ft:
            return None
        return best

    def hit_test_vertex(self, point: LatLng, tolerance_ft: Optional[float] = None) -> Optional[int]:
        """Index of the vertex nearest to a point, if within tolerance."""
        tolerance = tolerance_ft if tolerance_ft is not None else self.edge_tolerance_ft
        best_index = None
        best_distance = tolerance
        for i, vertex in enumerate(self.vertices):
            d = distance_ft(point, vertex)
            if d <= best_distance:
                best_index, best_distance = i, d
        return best_index

    def _hit_test_midpoint(self, point: LatLng) -> Optional[int]:
        for i, (a, b) in enumerate(ring_edges(self.vertices)):
            if distance_ft(point, calculate_midpoint(a, b)) <= self.edge_tolerance_ft:
                return i
        return None

    # ------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------

    def save(self) -> Optional[CommittedBoundary]:
        """
        Commit the working ring.

        Returns:
            The committed boundary, or None when the ring cannot be saved
        """
        if self.state == EditState.DRAWING and len(self.vertices) >= MIN_VERTICES:
            return self._commit()
        if self.state not in (EditState.CLOSED, EditState.EDITING):
            logger.debug(f"save ignored in state {self.state.value}")
            return None
        return self._commit()

    def cancel(self) -> None:
        if self.is_finished:
            return
        self.vertices = []
        self.near_first_vertex = False
        self.state = EditState.CANCELLED
        logger.info("Boundary edit cancelled")

    def _commit(self) -> Optional[CommittedBoundary]:
        if not is_simple_ring(self.vertices):
            logger.warning("Boundary not committed: ring self-intersects or has no area")
            return None

        acres = round(area_acres(self.vertices), 2)
        self.committed = CommittedBoundary(
            vertices=tuple(self.vertices),
            geojson=ring_to_geojson(self.vertices),
            acres=acres,
        )
        self.state = EditState.COMMITTED
        logger.info(f"Boundary committed: {len(self.vertices)} vertices, {acres} acres")

        if self.on_commit is not None:
            self.on_commit(self.committed)
        return self.committed
