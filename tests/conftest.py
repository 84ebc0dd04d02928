import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ledger_models import (AccountEvent, BalanceSnapshot, EventPage, RecordKind, TradeRecord,
                           TransferRecord)
from rate_limiter import RateLimiter
from sync_errors import SchemaError


class FakeClock:
    """Manual clock; sleeping advances it instead of blocking."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeBitvavoClient:
    """In-memory stand-in for BitvavoClient with the same fetch methods.

    Window filtering and the ``limit`` cap behave like the real endpoints, and every
    call consumes the shared limiter budget.
    """

    def __init__(self, rate_limiter: RateLimiter, balances=None, events=None, deposits=None,
                 withdrawals=None, trades=None, markets=None, prices=None):
        self.rate_limiter = rate_limiter
        self.balances = balances or []
        self.events = [AccountEvent.from_api(e) for e in (events or [])]
        self.deposits = [TransferRecord.from_api(d, RecordKind.DEPOSIT, "deposits") for d in (deposits or [])]
        self.withdrawals = [TransferRecord.from_api(w, RecordKind.WITHDRAWAL, "withdrawals") for w in (withdrawals or [])]
        self.trades = {m: [TradeRecord.from_api(t, m) for t in items] for m, items in (trades or {}).items()}
        self.markets = set(markets or [])
        self.prices = prices or {}
        self.page_size = None
        self.calls = []
        self.fail_on = {}

    def _call(self, name):
        self.rate_limiter.consume_budget(name)
        self.calls.append(name)
        if name in self.fail_on:
            raise self.fail_on[name]

    def fetch_balances(self):
        self._call("balance")
        return BalanceSnapshot.from_api(self.balances)

    def fetch_event_page(self, page, page_size):
        self._call("history")
        self.page_size = page_size
        total_pages = max(1, -(-len(self.events) // page_size))
        start = (page - 1) * page_size
        return EventPage(items=self.events[start:start + page_size], current_page=page, total_pages=total_pages)

    @staticmethod
    def _window(records, window, limit):
        inside = [r for r in records if window.start_ms <= r.timestamp_ms <= window.end_ms]
        # newest first, like the real endpoints
        inside.sort(key=lambda r: r.timestamp_ms, reverse=True)
        return inside[:limit]

    def fetch_deposits(self, window, limit):
        self._call("deposits")
        return self._window(self.deposits, window, limit)

    def fetch_withdrawals(self, window, limit):
        self._call("withdrawals")
        return self._window(self.withdrawals, window, limit)

    def fetch_trades(self, market, window, limit):
        self._call(f"trades {market}")
        return self._window(self.trades.get(market, []), window, limit)

    def fetch_tradable_markets(self):
        self._call("markets")
        return set(self.markets)

    def fetch_price(self, market):
        self._call(f"price {market}")
        if market not in self.prices:
            raise SchemaError(f"Missing or malformed price for {market}")
        return self.prices[market]


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        if text is not None:
            self.text = text
        else:
            self.text = "" if payload is None else "json"

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    """Returns queued responses in order and records each request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def request(self, method, url, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "headers": headers or {}, "timeout": timeout})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock, sleep=clock.sleep)
