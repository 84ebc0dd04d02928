"""
Windowed Fetcher Module
Fetches time-filtered list endpoints that cap each response at a fixed limit.
A full page means the window may be truncated, so it is bisected and both halves are fetched.
"""
import logging
from typing import Any, Callable, List, Optional

from ledger_models import SyncWindow
from sync_errors import WindowSplitExhausted

logger = logging.getLogger(__name__)

PageBuilder = Callable[[SyncWindow, int], List[Any]]


class WindowedFetcher:
    """Recursive window splitting for capped list endpoints."""

    def __init__(self, limit: int = 1000, max_depth: int = 20):
        self.limit = limit
        self.max_depth = max_depth

    def fetch(self, window: SyncWindow, page_builder: PageBuilder, limit: Optional[int] = None,
              context: str = "", time_key: Optional[Callable[[Any], Any]] = None, depth: int = 0) -> List[Any]:
        """Return every item in [start_ms, end_ms], each exactly once.

        Sub-windows [start, mid] and [mid+1, end] never overlap and are fetched
        left first, so the result stays in time order. ``time_key`` orders the
        items of an unsplit page ascending.
        """
        limit = limit or self.limit
        items = page_builder(window, limit)
        if len(items) < limit:
            if time_key is not None:
                return sorted(items, key=time_key)
            return list(items)

        if depth >= self.max_depth:
            raise WindowSplitExhausted(context, window.start_ms, window.end_ms, "window split depth exceeded")
        mid = window.midpoint
        if window.start_ms >= window.end_ms:
            raise WindowSplitExhausted(context, window.start_ms, window.end_ms, "window split precision exhausted")

        logger.debug(f"{context}: {len(items)} items hit the limit, splitting [{window.start_ms}, {window.end_ms}] at {mid} (depth {depth + 1})")
        left = self.fetch(SyncWindow(window.start_ms, mid), page_builder, limit, context, time_key, depth + 1)
        right = self.fetch(SyncWindow(mid + 1, window.end_ms), page_builder, limit, context, time_key, depth + 1)
        return left + right
