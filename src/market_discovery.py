"""
Market Discovery Module
Infers which EUR markets are worth querying for trade backfill instead of querying every market.
"""
import logging
from typing import Iterable, List, Optional, Sequence, Set

from ledger_models import SETTLEMENT_CURRENCY, AccountEvent, BalanceSnapshot, upper_text

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY_MARKETS = ("BTC-EUR", "ETH-EUR", "SOL-EUR")


class MarketDiscovery:
    """Builds and ranks the candidate <ASSET>-EUR markets for a full sync."""

    def __init__(self, priority_markets: Sequence[str] = DEFAULT_PRIORITY_MARKETS, max_markets: int = 12):
        self.priority_markets = [upper_text(m) for m in priority_markets]
        self.max_markets = max_markets
        self.suffix = f"-{SETTLEMENT_CURRENCY}"

    def _market_for(self, currency: str) -> Optional[str]:
        currency = upper_text(currency)
        if not currency or currency == SETTLEMENT_CURRENCY:
            return None
        return f"{currency}{self.suffix}"

    def candidates(self, balances: BalanceSnapshot, recent_history: Iterable[AccountEvent]) -> Set[str]:
        """Markets for every non-EUR holding plus every non-EUR currency seen in recent history."""
        found: Set[str] = set()
        for holding in balances.non_eur_holdings():
            market = self._market_for(holding.symbol)
            if market:
                found.add(market)

        for event in recent_history:
            if event.market and event.market.endswith(self.suffix):
                found.add(event.market)
            for currency in event.currencies():
                market = self._market_for(currency)
                if market:
                    found.add(market)

        logger.debug(f"Market discovery found {len(found)} candidate markets: {sorted(found)}")
        return found

    def select(self, available: Iterable[str], candidates: Iterable[str],
               priority_list: Optional[Sequence[str]] = None, cap: Optional[int] = None) -> List[str]:
        """Intersect candidates with tradable markets, pin priority markets first, then cap.

        Remaining candidates follow in lexicographic order; a cap of 0 or less means no cap.
        """
        available_set = {upper_text(m) for m in available}
        candidate_set = {upper_text(m) for m in candidates if upper_text(m)}
        priority = self.priority_markets if priority_list is None else [upper_text(m) for m in priority_list]
        cap = self.max_markets if cap is None else cap

        selected: List[str] = []
        for market in priority:
            if market and market in candidate_set and market in available_set and market not in selected:
                selected.append(market)

        remaining = sorted(m for m in candidate_set if m in available_set and m not in selected)
        selected.extend(remaining)

        if cap > 0 and len(selected) > cap:
            logger.info(f"Limiting trade backfill to {cap} of {len(selected)} markets; dropped: {selected[cap:]}")
            selected = selected[:cap]
        return selected
