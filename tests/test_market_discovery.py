from ledger_models import AccountEvent, BalanceSnapshot
from market_discovery import MarketDiscovery


def test_priority_markets_are_pinned_before_the_cap():
    discovery = MarketDiscovery()
    selected = discovery.select(
        available={"BTC-EUR", "ETH-EUR", "SOL-EUR", "ADA-EUR", "DOGE-EUR"},
        candidates={"DOGE-EUR", "BTC-EUR", "ADA-EUR", "ETH-EUR"},
        priority_list=["BTC-EUR", "ETH-EUR", "SOL-EUR"],
        cap=3,
    )
    assert selected == ["BTC-EUR", "ETH-EUR", "ADA-EUR"]


def test_candidates_not_listed_by_the_exchange_are_dropped():
    selected = MarketDiscovery().select(available={"BTC-EUR"}, candidates={"BTC-EUR", "FOO-EUR"}, cap=12)
    assert selected == ["BTC-EUR"]


def test_non_positive_cap_means_unlimited():
    candidates = {f"A{i:02d}-EUR" for i in range(20)}
    selected = MarketDiscovery(priority_markets=[]).select(candidates, candidates, cap=0)
    assert selected == sorted(candidates)


def test_candidates_from_holdings_and_recent_history():
    balances = BalanceSnapshot.from_api([
        {"symbol": "EUR", "available": "10", "inOrder": "0"},
        {"symbol": "BTC", "available": "0.1", "inOrder": "0"},
        {"symbol": "XRP", "available": "0", "inOrder": "0"},
    ])
    history = [
        AccountEvent.from_api({"executedAt": "2024-01-01T00:00:00Z", "type": "buy", "sentCurrency": "EUR",
                               "sentAmount": "10", "receivedCurrency": "ADA", "receivedAmount": "20"}),
        AccountEvent.from_api({"executedAt": "2024-01-02T00:00:00Z", "type": "sell", "market": "sol-eur"}),
    ]
    assert MarketDiscovery().candidates(balances, history) == {"BTC-EUR", "ADA-EUR", "SOL-EUR"}
