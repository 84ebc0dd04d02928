"""
Bitvavo Ledger Tracker Module
Host side of the cash sync: wires config, client, orchestrator and storage together,
persists refresh results, and prints/exports the ledger and portfolio.
"""
import json
import time
import logging
import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pandas as pd

from config import ConfigManager
from database import DatabaseManager
from exporters import EXPORTERS
from rate_limiter import RateLimiter
from bitvavo_client import BitvavoClient
from cash_sync import SyncOrchestrator
from portfolio_valuation import PortfolioValuer
from sync_errors import BitvavoSyncError
from ledger_models import PortfolioPosition, SyncMode, SyncResult, decimal_text
from normalizer import format_eur, format_number

logger = logging.getLogger(__name__)


class BitvavoLedgerTracker:
    """Main class for the Bitvavo EUR cash ledger."""

    def __init__(self, config_path: Optional[str] = None, session=None, clock=time.time):
        """Initialize the tracker."""
        self.config_manager = ConfigManager(config_path)
        self.config = self.config_manager.config
        self.db_manager = DatabaseManager(self.config)
        self._clock = clock
        self.rate_limiter = RateLimiter.from_config(self.config)
        self.client = BitvavoClient.from_config(self.config, self.rate_limiter, session=session)
        self.orchestrator = SyncOrchestrator.from_config(self.config, self.client, self.rate_limiter, clock=clock)
        self.valuer = PortfolioValuer(self.client, self.rate_limiter,
                                      budget=self.config_manager.get("apis.bitvavo.request_budgets.portfolio", 180))
        self.overlap_seconds = int(self.config_manager.get("sync.incremental_overlap_minutes", 60)) * 60
        if not self.client.api_key or not self.client.api_secret:
            logger.warning("Bitvavo API key/secret not configured. Signed endpoints will fail.")
        logger.info("Ledger tracker initialized.")

    def refresh_cash_account(self, force_full: bool = False) -> Optional[SyncResult]:
        """Run one refresh and persist it. Returns None when the sync failed; nothing is stored then."""
        since = None if force_full else self.db_manager.get_sync_boundary()
        started_at = self._clock()
        try:
            result = self.orchestrator.synchronize(since)
        except BitvavoSyncError as e:
            logger.error(f"Cash account refresh failed, nothing persisted: {e}")
            return None

        self.db_manager.bulk_upsert_transactions(result.transactions, result.mode.value)
        self.db_manager.set_sync_boundary(self._next_boundary(result.mode, since, started_at))
        self.db_manager.save_balance_snapshot(datetime.datetime.now(datetime.timezone.utc), result.balance,
                                              result.mode.value, len(result.transactions))
        logger.info(f"Cash account refreshed ({result.mode.value}): {len(result.transactions)} transactions, "
                    f"balance EUR {result.balance}, {result.request_count} requests.")
        return result

    def _next_boundary(self, mode: SyncMode, since: Optional[int], started_at: float) -> int:
        """Boundary for the next incremental pass.

        Full backfill books transfers and trades under their own identities, which never match the
        account history identities, so no overlap is allowed across a full result. After an incremental
        pass the overlap is re-read under the same history identities and upserts in place, but it must
        not reach back before the boundary that pass started from.
        """
        if mode == SyncMode.FULL or since is None:
            return int(started_at)
        return max(since, int(started_at) - self.overlap_seconds)

    def value_portfolio(self) -> Optional[List[PortfolioPosition]]:
        """Current non-EUR holdings valued in EUR, or None when the pass was aborted."""
        try:
            return self.valuer.value_portfolio(self.valuer.fetch_balances())
        except BitvavoSyncError as e:
            logger.error(f"Portfolio valuation failed: {e}")
            return None

    @staticmethod
    def positions_to_dataframe(positions: List[PortfolioPosition]) -> pd.DataFrame:
        return pd.DataFrame(
            [{"symbol": p.symbol, "quantity": decimal_text(p.quantity),
              "unit_price_eur": decimal_text(p.unit_price_eur) if p.unit_price_eur is not None else None,
              "total_eur": decimal_text(p.total_eur) if p.total_eur is not None else None} for p in positions],
            columns=["symbol", "quantity", "unit_price_eur", "total_eur"],
        )

    def ledger_summary(self, ledger_df: pd.DataFrame) -> Dict[str, Any]:
        total = sum((Decimal(v) for v in ledger_df["amount_eur"]), Decimal("0")) if not ledger_df.empty else Decimal("0")
        return {
            "Transactions": len(ledger_df),
            "Sum of deltas (EUR)": format_eur(total),
            "Incremental boundary": self.db_manager.get_sync_boundary(),
            "Generated": datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        }

    def print_cash_summary(self, result: Optional[SyncResult] = None, limit: int = 20):
        """Print the latest refresh result and the most recent persisted transactions."""
        ledger_df = self.db_manager.get_all_transactions()
        print("\n" + "="*80)
        print("💶 BITVAVO EUR CASH LEDGER")
        print("="*80)
        if result is not None:
            print(f"Sync mode:             {result.mode.value}")
            print(f"Authoritative balance: {format_eur(result.balance)} EUR")
            print(f"Sum of deltas:         {format_eur(result.sum_of_deltas())} EUR")
            print(f"Requests issued:       {result.request_count}")
            print("-" * 80)
        if ledger_df.empty:
            print("No transactions stored yet.")
            print("="*80)
            return
        print(f"{'Date':<20} {'Title':<30} {'Amount (EUR)':>15}")
        print("-" * 80)
        for _, row in ledger_df.tail(limit).iterrows():
            print(f"{row['booking_time'].strftime('%Y-%m-%d %H:%M'):<20} {str(row['title'])[:30]:<30} {format_eur(Decimal(row['amount_eur'])):>15}")
        print("="*80)

    def print_portfolio_summary(self, positions: Optional[List[PortfolioPosition]]):
        """Print a summary of the valued holdings to the console."""
        print("\n" + "="*80)
        print("📊 BITVAVO PORTFOLIO")
        print("="*80)
        if positions is None:
            print("❌ Could not value portfolio, check logs.")
            print("="*80)
            return
        if not positions:
            print("No non-EUR holdings.")
            print("="*80)
            return
        print(f"{'Asset':<10} {'Quantity':<20} {'Price (EUR)':<18} {'Value (EUR)':<18}")
        print("-" * 80)
        total = Decimal("0")
        for p in positions:
            price = format_number(p.unit_price_eur) if p.unit_price_eur is not None else "n/a"
            value = format_eur(p.total_eur) if p.total_eur is not None else "n/a"
            if p.total_eur is not None:
                total += p.total_eur
            print(f"{p.symbol:<10} {format_number(p.quantity):<20} {price:<18} {value:<18}")
        print("-" * 80)
        print(f"Total valued holdings: {format_eur(total)} EUR")
        print("="*80)

    def export_ledger(self, fmt: str = "all", include_portfolio: bool = False) -> List[Any]:
        """Export the persisted ledger; fmt is one of excel, html, csv or all."""
        ledger_df = self.db_manager.get_all_transactions()
        portfolio_df = None
        if include_portfolio:
            positions = self.value_portfolio()
            if positions is not None:
                portfolio_df = self.positions_to_dataframe(positions)
        summary = self.ledger_summary(ledger_df)
        formats = list(EXPORTERS) if fmt == "all" else [fmt]
        written = []
        for name in formats:
            path = EXPORTERS[name](self.config).export(ledger_df, summary, portfolio_df)
            if path is not None:
                written.append(path)
        self.db_manager.backup_database()
        return written

    def reset_sync_boundary(self):
        self.db_manager.clear_sync_boundary()

    def print_configuration(self):
        """Print the current configuration (excluding sensitive data)."""
        print("\n" + "="*50 + "\n⚙️ Current Configuration\n" + "="*50)
        safe_config = self.config.copy()
        if "api_keys" in safe_config: safe_config["api_keys"] = {k: '********' for k in safe_config["api_keys"]}
        print(json.dumps(safe_config, indent=2) + "\n" + "="*50)

    def test_connections(self):
        """Test the public and the signed Bitvavo endpoints."""
        self.rate_limiter.reset(None)
        try: markets = self.client.fetch_tradable_markets(); print(f"✅ Bitvavo Public API: SUCCESS ({len(markets)} markets)")
        except BitvavoSyncError as e: print(f"❌ Bitvavo Public API: FAILED ({e})")
        if self.client.api_key and self.client.api_secret:
            try: balances = self.client.fetch_balances(); print(f"✅ Bitvavo Signed API: SUCCESS (EUR balance: {format_eur(balances.eur_total())})")
            except BitvavoSyncError as e: print(f"❌ Bitvavo Signed API: FAILED ({e})")
        else: print("⚠️ Bitvavo Signed API: SKIPPED (No API keys)")
        print("-" * 30)
