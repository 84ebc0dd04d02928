"""
Cash Sync Module
Drives one refresh of the EUR cash ledger: balance first, then either the incremental history path
or the full backfill path (deposits, withdrawals, trades) followed by opening reconciliation.
"""
import time
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from rate_limiter import RateLimiter
from reconciler import Reconciler
from windowed_fetcher import WindowedFetcher
from market_discovery import MarketDiscovery
from normalizer import Deduplicator, EventNormalizer
from sync_errors import BitvavoSyncError, SchemaError
from ledger_models import AccountEvent, BalanceSnapshot, SyncMode, SyncResult, SyncWindow

logger = logging.getLogger(__name__)

DEFAULT_BUDGETS = {"incremental": 120, "full": 260, "portfolio": 180}


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING_BALANCE = "fetching_balance"
    INCREMENTAL_HISTORY = "incremental_history"
    FULL_BACKFILL = "full_backfill"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


class SyncOrchestrator:
    """Runs the cash ledger state machine for one refresh at a time."""

    def __init__(self, client, rate_limiter: RateLimiter, *,
                 normalizer: Optional[EventNormalizer] = None,
                 windowed_fetcher: Optional[WindowedFetcher] = None,
                 market_discovery: Optional[MarketDiscovery] = None,
                 reconciler: Optional[Reconciler] = None,
                 budgets: Optional[Dict[str, int]] = None,
                 history_page_size: int = 100,
                 history_max_pages: int = 1000,
                 discovery_history_pages: int = 2,
                 force_full_sync: bool = False,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.rate_limiter = rate_limiter
        self.normalizer = normalizer or EventNormalizer()
        self.windowed_fetcher = windowed_fetcher or WindowedFetcher()
        self.market_discovery = market_discovery or MarketDiscovery()
        self.reconciler = reconciler or Reconciler(clock=clock)
        self.budgets = dict(DEFAULT_BUDGETS, **(budgets or {}))
        self.history_page_size = history_page_size
        self.history_max_pages = history_max_pages
        self.discovery_history_pages = discovery_history_pages
        self.force_full_sync = force_full_sync
        self._clock = clock
        self.state = SyncState.IDLE
        self.failure_reason: Optional[str] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], client, rate_limiter: RateLimiter, **kwargs) -> "SyncOrchestrator":
        sync_config = config.get("sync", {})
        bitvavo_config = config.get("apis", {}).get("bitvavo", {})
        return cls(
            client,
            rate_limiter,
            windowed_fetcher=WindowedFetcher(
                limit=sync_config.get("backfill_limit", 1000),
                max_depth=sync_config.get("max_window_split_depth", 20),
            ),
            market_discovery=MarketDiscovery(
                priority_markets=sync_config.get("priority_backfill_markets", ["BTC-EUR", "ETH-EUR", "SOL-EUR"]),
                max_markets=sync_config.get("max_backfill_markets", 12),
            ),
            reconciler=Reconciler(tolerance=sync_config.get("reconciliation_tolerance", "0.01"),
                                  clock=kwargs.get("clock", time.time)),
            budgets=bitvavo_config.get("request_budgets"),
            history_page_size=sync_config.get("account_history_page_size", 100),
            history_max_pages=sync_config.get("account_history_max_pages", 1000),
            discovery_history_pages=sync_config.get("market_discovery_history_pages", 2),
            force_full_sync=sync_config.get("force_full_sync", False),
            **kwargs
        )

    def _transition(self, state: SyncState):
        logger.debug(f"Cash sync state: {self.state.value} -> {state.value}")
        self.state = state

    def select_mode(self, since: Optional[int]) -> SyncMode:
        if since is not None and not self.force_full_sync:
            return SyncMode.INCREMENTAL
        return SyncMode.FULL

    def synchronize(self, since: Optional[int] = None) -> SyncResult:
        """Reconstruct the EUR cash ledger. Raises BitvavoSyncError; never returns a partial ledger."""
        self.state = SyncState.IDLE
        self.failure_reason = None
        mode = self.select_mode(since)
        if since is not None and mode == SyncMode.FULL:
            logger.info("Forced full sync enabled: ignoring incremental boundary.")
        self.rate_limiter.reset(self.budgets.get(mode.value))
        logger.info(f"Starting {mode.value} cash sync" + (f" since {since}" if mode == SyncMode.INCREMENTAL else ""))

        try:
            self._transition(SyncState.FETCHING_BALANCE)
            balances = self.client.fetch_balances()
            eur_balance = balances.eur_total()
            logger.info(f"Authoritative EUR balance: {eur_balance}")

            if mode == SyncMode.INCREMENTAL:
                self._transition(SyncState.INCREMENTAL_HISTORY)
                ledger = self._incremental_history(since)
                transactions = ledger.transactions()
            else:
                self._transition(SyncState.FULL_BACKFILL)
                ledger = self._full_backfill(balances)
                self._transition(SyncState.RECONCILING)
                transactions = self.reconciler.reconcile(ledger.transactions(), ledger.sum_of_deltas,
                                                         eur_balance, ledger.oldest_booking_date)
        except BitvavoSyncError as e:
            self.failure_reason = str(e)
            logger.error(f"Cash sync failed during {self.state.value}: {e}")
            self._transition(SyncState.FAILED)
            raise

        self._transition(SyncState.DONE)
        logger.info(f"Cash sync finished: {len(transactions)} transactions, {self.rate_limiter.request_count} requests, stats {ledger.stats()}")
        return SyncResult(balance=eur_balance, transactions=transactions, mode=mode,
                          request_count=self.rate_limiter.request_count)

    # ---------------------------------------------------------------------
    # Account history
    # ---------------------------------------------------------------------

    def fetch_event_history(self, max_pages: Optional[int] = None) -> List[AccountEvent]:
        """Page /v2/account/history. Without max_pages, running past history_max_pages is an error."""
        strict = max_pages is None
        page_limit = self.history_max_pages if strict else max_pages
        events: List[AccountEvent] = []
        page = 1
        while page <= page_limit:
            result = self.client.fetch_event_page(page, self.history_page_size)
            events.extend(result.items)
            if result.current_page >= result.total_pages:
                return events
            page += 1
        if strict:
            raise SchemaError("Pagination safety limit exceeded for /v2/account/history")
        return events

    def _incremental_history(self, since: int) -> Deduplicator:
        events = self.fetch_event_history()
        logger.info(f"Fetched {len(events)} account history items.")
        ledger = Deduplicator()
        for event in events:
            # strictly after the boundary; an event at exactly `since` was already booked
            if event.executed_at_ts is None or event.executed_at_ts <= since:
                continue
            ledger.add(self.normalizer.normalize_event(event))
        return ledger

    # ---------------------------------------------------------------------
    # Full backfill
    # ---------------------------------------------------------------------

    def _full_backfill(self, balances: BalanceSnapshot) -> Deduplicator:
        window = SyncWindow(0, int(self._clock() * 1000))
        ledger = Deduplicator()
        by_timestamp = lambda record: record.timestamp_ms or 0

        deposits = self.windowed_fetcher.fetch(window, self.client.fetch_deposits, context="depositHistory", time_key=by_timestamp)
        logger.info(f"Fetched {len(deposits)} deposit records.")
        for record in deposits:
            ledger.add(self.normalizer.normalize_transfer(record))

        withdrawals = self.windowed_fetcher.fetch(window, self.client.fetch_withdrawals, context="withdrawalHistory", time_key=by_timestamp)
        logger.info(f"Fetched {len(withdrawals)} withdrawal records.")
        for record in withdrawals:
            ledger.add(self.normalizer.normalize_transfer(record))

        recent_history = self.fetch_event_history(max_pages=self.discovery_history_pages)
        candidates = self.market_discovery.candidates(balances, recent_history)
        if not candidates:
            logger.info("No candidate EUR markets found; skipping trade backfill.")
            return ledger

        available = self.client.fetch_tradable_markets()
        markets = self.market_discovery.select(available, candidates)
        logger.info(f"Backfilling trades for {len(markets)} markets: {markets}")
        for market in markets:
            trades = self.windowed_fetcher.fetch(
                window,
                lambda w, limit, market=market: self.client.fetch_trades(market, w, limit),
                context=f"trades {market}",
                time_key=by_timestamp,
            )
            logger.debug(f"Fetched {len(trades)} trades for {market}.")
            for trade in trades:
                ledger.add(self.normalizer.normalize_trade(trade))
        return ledger
