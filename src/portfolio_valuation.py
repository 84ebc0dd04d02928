"""
Portfolio Valuation Module
Values current non-EUR holdings at live Bitvavo EUR prices.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from rate_limiter import RateLimiter
from sync_errors import SchemaError, TransportError
from ledger_models import SETTLEMENT_CURRENCY, BalanceSnapshot, PortfolioPosition

logger = logging.getLogger(__name__)


class PortfolioValuer:
    """Maps balances to positions; prices are memoized for one valuation pass only."""

    def __init__(self, client, rate_limiter: RateLimiter, budget: Optional[int] = 180):
        self.client = client
        self.rate_limiter = rate_limiter
        self.budget = budget

    def _eur_price(self, symbol: str, price_cache: Dict[str, Optional[Decimal]]) -> Optional[Decimal]:
        if symbol == SETTLEMENT_CURRENCY:
            return Decimal("1")
        market = f"{symbol}-{SETTLEMENT_CURRENCY}"
        if market in price_cache:
            return price_cache[market]
        try:
            price = self.client.fetch_price(market)
        except (TransportError, SchemaError) as e:
            logger.warning(f"Could not fetch EUR price for {market}: {e}. Position stays unvalued.")
            price = None
        price_cache[market] = price
        return price

    def fetch_balances(self) -> BalanceSnapshot:
        """Fresh balances under the portfolio request budget."""
        self.rate_limiter.reset(self.budget)
        return self.client.fetch_balances()

    def value_portfolio(self, balances: BalanceSnapshot) -> List[PortfolioPosition]:
        """One position per non-EUR holding, in balance order; unpriced holdings keep only the quantity."""
        price_cache: Dict[str, Optional[Decimal]] = {}
        positions = []
        for holding in balances.non_eur_holdings():
            price = self._eur_price(holding.symbol, price_cache)
            if price is None:
                positions.append(PortfolioPosition(symbol=holding.symbol, quantity=holding.quantity))
            else:
                positions.append(PortfolioPosition(symbol=holding.symbol, quantity=holding.quantity,
                                                   unit_price_eur=price, total_eur=holding.quantity * price))
        valued = sum(1 for p in positions if p.total_eur is not None)
        logger.info(f"Valued {valued} of {len(positions)} holdings in EUR.")
        return positions
