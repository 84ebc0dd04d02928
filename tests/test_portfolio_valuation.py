from decimal import Decimal

import pytest

from conftest import FakeBitvavoClient
from portfolio_valuation import PortfolioValuer
from sync_errors import BudgetExhausted


def make_valuer(limiter):
    client = FakeBitvavoClient(
        limiter,
        balances=[{"symbol": "EUR", "available": "10", "inOrder": "0"},
                  {"symbol": "BTC", "available": "0.4", "inOrder": "0.1"},
                  {"symbol": "ETH", "available": "2", "inOrder": "0"},
                  {"symbol": "XRP", "available": "0", "inOrder": "0"}],
        prices={"BTC-EUR": Decimal("50000")},
    )
    return PortfolioValuer(client, limiter, budget=180), client


def test_holdings_are_valued_at_eur_prices(limiter):
    valuer, client = make_valuer(limiter)
    positions = valuer.value_portfolio(valuer.fetch_balances())

    assert [p.symbol for p in positions] == ["BTC", "ETH"]
    btc, eth = positions
    assert btc.quantity == Decimal("0.5")
    assert btc.unit_price_eur == Decimal("50000")
    assert btc.total_eur == Decimal("25000")
    assert eth.quantity == Decimal("2")
    assert eth.unit_price_eur is None and eth.total_eur is None


def test_fetch_balances_uses_the_portfolio_budget(limiter):
    valuer, _ = make_valuer(limiter)
    valuer.fetch_balances()
    assert limiter.budget_remaining == 179
    assert limiter.request_count == 1


def test_prices_are_not_reused_across_passes(limiter):
    valuer, client = make_valuer(limiter)
    balances = valuer.fetch_balances()
    valuer.value_portfolio(balances)
    valuer.value_portfolio(balances)
    assert client.calls.count("price BTC-EUR") == 2
    assert client.calls.count("price ETH-EUR") == 2


def test_budget_exhaustion_stops_the_pass(limiter):
    valuer, client = make_valuer(limiter)
    valuer.budget = 2
    with pytest.raises(BudgetExhausted):
        valuer.value_portfolio(valuer.fetch_balances())
    assert client.calls == ["balance", "price BTC-EUR"]
