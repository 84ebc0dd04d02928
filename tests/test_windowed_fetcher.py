import pytest

from ledger_models import SyncWindow
from sync_errors import WindowSplitExhausted
from windowed_fetcher import WindowedFetcher


class Endpoint:
    """Capped endpoint over integer timestamps; returns newest items first."""

    def __init__(self, timestamps):
        self.timestamps = timestamps
        self.windows = []

    def __call__(self, window, limit):
        self.windows.append((window.start_ms, window.end_ms))
        inside = sorted((t for t in self.timestamps if window.start_ms <= t <= window.end_ms), reverse=True)
        return inside[:limit]


def test_unsplit_page_is_returned_in_time_order():
    endpoint = Endpoint([30, 10, 20])
    items = WindowedFetcher(limit=5).fetch(SyncWindow(0, 100), endpoint, time_key=lambda t: t)
    assert items == [10, 20, 30]
    assert endpoint.windows == [(0, 100)]


def test_full_page_is_bisected_without_gaps_or_overlap():
    timestamps = list(range(0, 100, 3))
    endpoint = Endpoint(timestamps)
    items = WindowedFetcher(limit=4).fetch(SyncWindow(0, 99), endpoint, time_key=lambda t: t)
    assert items == sorted(timestamps)
    assert len(items) == len(set(items))


def test_sub_windows_are_disjoint_halves():
    endpoint = Endpoint([0, 1, 2, 9, 10])
    WindowedFetcher(limit=2).fetch(SyncWindow(0, 10), endpoint)
    assert endpoint.windows[1] == (0, 5)
    assert (6, 10) in endpoint.windows


def test_split_depth_is_bounded():
    endpoint = Endpoint(list(range(1000)))
    with pytest.raises(WindowSplitExhausted) as excinfo:
        WindowedFetcher(limit=10, max_depth=2).fetch(SyncWindow(0, 999), endpoint, context="trades BTC-EUR")
    assert excinfo.value.reason == "window split depth exceeded"
    assert "trades BTC-EUR" in str(excinfo.value)


def test_single_millisecond_with_full_page_cannot_be_split():
    endpoint = Endpoint([5, 5, 5])
    with pytest.raises(WindowSplitExhausted) as excinfo:
        WindowedFetcher(limit=3).fetch(SyncWindow(5, 5), endpoint)
    assert excinfo.value.reason == "window split precision exhausted"


def test_two_unit_window_splits_into_single_units():
    endpoint = Endpoint([4, 5])
    items = WindowedFetcher(limit=2).fetch(SyncWindow(4, 5), endpoint, time_key=lambda t: t)
    assert items == [4, 5]
    assert endpoint.windows == [(4, 5), (4, 4), (5, 5)]
