"""
Application service: Vegetation-index timeline cursor.

The slider position follows the pointer synchronously; the fetch behind it
is debounced while the pointer moves and committed at once on release.
"""
from calendar import monthrange
from datetime import date, timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from blockmap.config import settings
from blockmap.domain.models import DateWindow
from blockmap.services.application.raster_cache import RasterLayerCache

logger = logging.getLogger(__name__)

CommitHandler = Callable[[int, DateWindow], Awaitable[None]]


class TimelineScope(str, Enum):
    SINGLE_FIELD = "single_field"
    ALL_FIELDS = "all_fields"


def default_growing_season_window(today: Optional[date] = None) -> DateWindow:
    """
    Peak growing season window (June 1 to September 30).

    Before June the previous year's season is used.

    Args:
        today: Reference date, defaults to today

    Returns:
        DateWindow
    """
    today = today or date.today()
    year = today.year - 1 if today.month < 6 else today.year
    return DateWindow(start=date(year, 6, 1), end=date(year, 9, 30))


def candidate_windows(
    year: int,
    window_days: Optional[int] = None,
    start_month: Optional[int] = None,
    end_month: Optional[int] = None,
    today: Optional[date] = None,
) -> list[DateWindow]:
    """
    Consecutive date windows across a year's growing season.

    Windows starting after today are left out; the last window is clipped to
    the end of the season.

    Returns:
        Windows in chronological order
    """
    window_days = window_days or settings.timeline_window_days
    start_month = start_month or settings.growing_season_start_month
    end_month = end_month or settings.growing_season_end_month
    today = today or date.today()

    season_start = date(year, start_month, 1)
    season_end = date(year, end_month, monthrange(year, end_month)[1])

    windows = []
    start = season_start
    while start <= season_end and start <= today:
        end = min(start + timedelta(days=window_days - 1), season_end)
        windows.append(DateWindow(start=start, end=end))
        start = end + timedelta(days=1)
    return windows


class Timeline:
    """
    Slider over the date candidates of one year.

    Attributes:
        position: Index shown by the slider, updated on every move
        committed_index: Last index whose data was requested
    """

    def __init__(
        self,
        cache: RasterLayerCache,
        on_commit: CommitHandler,
        year: Optional[int] = None,
        scope: TimelineScope = TimelineScope.SINGLE_FIELD,
        debounce_ms: Optional[int] = None,
        today: Optional[date] = None,
    ):
        self.cache = cache
        self.on_commit = on_commit
        self.today = today or date.today()
        self.year = year or self.today.year
        self.scope = scope
        self.debounce_s = (debounce_ms if debounce_ms is not None else settings.timeline_debounce_ms) / 1000

        self.candidates: list[DateWindow] = []
        self.position = 0
        self.committed_index: Optional[int] = None
        self._pending: Optional[asyncio.Task] = None
        self._rebuild()

    @property
    def current_window(self) -> Optional[DateWindow]:
        if not self.candidates:
            return None
        return self.candidates[self.position]

    def is_current(self, index: int) -> bool:
        """Whether a result for index still matches the slider."""
        return index == self.position

    def move(self, index: int) -> None:
        """
        Pointer moved over the slider.

        Updates the position now and schedules a fetch once the pointer has
        been still for the debounce period.
        """
        if not self.candidates:
            return
        self.position = self._clamp(index)
        self._cancel_pending()
        self._pending = asyncio.get_running_loop().create_task(self._debounced(self.position))

    async def release(self, index: Optional[int] = None) -> None:
        """Pointer released: fetch the released position immediately."""
        if not self.candidates:
            return
        if index is not None:
            self.position = self._clamp(index)
        self._cancel_pending()
        await self._commit(self.position)

    def set_scope(self, scope: TimelineScope) -> None:
        if scope == self.scope:
            return
        self.scope = scope
        self._invalidate()

    def set_year(self, year: int) -> None:
        if year == self.year:
            return
        self.year = year
        self._invalidate()

    async def _debounced(self, index: int) -> None:
        await asyncio.sleep(self.debounce_s)
        # Past the quiet period the fetch is no longer cancellable
        self._pending = None
        try:
            await self._commit(index)
        except Exception:
            logger.exception(f"Timeline commit failed for window {index}")

    async def _commit(self, index: int) -> None:
        self.committed_index = index
        window = self.candidates[index]
        logger.info(f"Timeline committed to {window.key} ({self.scope.value})")
        await self.on_commit(index, window)

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def _invalidate(self) -> None:
        self._cancel_pending()
        self.cache.clear_dated()
        self._rebuild()

    def _rebuild(self) -> None:
        self.candidates = candidate_windows(self.year, today=self.today)
        self.position = max(0, len(self.candidates) - 1)
        self.committed_index = None
        logger.debug(f"Timeline has {len(self.candidates)} windows for {self.year}")

    def _clamp(self, index: int) -> int:
        return max(0, min(index, len(self.candidates) - 1))
