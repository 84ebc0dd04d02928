import logging
from decimal import Decimal

import pytest

from ledger_models import AccountEvent, RecordKind, TradeRecord, TransferRecord
from normalizer import Deduplicator, EventNormalizer, format_eur, format_number

TS = 1_700_000_000_000


@pytest.fixture
def normalizer():
    return EventNormalizer()


def event(**fields):
    raw = {"executedAt": "2024-02-01T12:00:00.000Z"}
    raw.update(fields)
    return AccountEvent.from_api(raw)


def test_buy_event_debits_sent_amount_and_eur_fee(normalizer):
    tx = normalizer.normalize(event(transactionId="abc", type="buy", sentCurrency="EUR", sentAmount="425",
                                    receivedCurrency="BTC", receivedAmount="0.005", feesCurrency="EUR",
                                    feesAmount="1.25", priceCurrency="EUR", priceAmount="85000"))
    assert tx.identity == "bitvavo:txid:abc"
    assert tx.amount_eur == Decimal("-426.25")
    assert tx.booking_date == 1706788800
    assert tx.title == "Buy BTC"
    assert tx.detail == "0.005 BTC (price: 85,000 EUR, fee: 1.25 EUR)"


def test_sell_event_credits_received_amount(normalizer):
    tx = normalizer.normalize(event(transactionId="s1", type="sell", sentCurrency="ETH", sentAmount="0.5",
                                    receivedCurrency="EUR", receivedAmount="1500", feesCurrency="EUR",
                                    feesAmount="3"))
    assert tx.amount_eur == Decimal("1497")
    assert tx.title == "Sell ETH"


def test_non_eur_fee_does_not_touch_cash(normalizer):
    tx = normalizer.normalize(event(transactionId="b2", type="buy", sentCurrency="EUR", sentAmount="100",
                                    receivedCurrency="BTC", receivedAmount="0.001", feesCurrency="BTC",
                                    feesAmount="0.00001"))
    assert tx.amount_eur == Decimal("-100")


def test_event_without_eur_leg_is_discarded(normalizer):
    assert normalizer.normalize(event(type="staking", receivedCurrency="ETH", receivedAmount="0.01")) is None


def test_event_with_zero_eur_delta_is_discarded(normalizer):
    assert normalizer.normalize(event(type="deposit", receivedCurrency="EUR", receivedAmount="0")) is None


def test_event_with_unparseable_time_is_discarded(normalizer):
    assert normalizer.normalize(event(executedAt="yesterday", type="deposit", receivedCurrency="EUR",
                                      receivedAmount="10")) is None


def test_composite_identity_is_stable_without_transaction_id(normalizer):
    raw = dict(type="deposit", receivedCurrency="EUR", receivedAmount="250.00")
    first = normalizer.normalize(event(**raw))
    second = normalizer.normalize(event(**raw))
    assert first.identity == second.identity
    assert first.identity.startswith("bitvavo:2024-02-01T12:00:00.000Z|DEPOSIT|")
    assert first.title == "Deposit"
    assert first.detail == "250.00 EUR"


def test_completed_eur_deposit_nets_the_fee(normalizer):
    record = TransferRecord.from_api({"timestamp": TS, "symbol": "EUR", "amount": "500.00", "fee": "0",
                                      "status": "completed"}, RecordKind.DEPOSIT, "deposits")
    tx = normalizer.normalize(record)
    assert tx.identity == f"dep:{TS}:500.00:EUR"
    assert tx.booking_date == TS // 1000
    assert tx.amount_eur == Decimal("500.00")


def test_withdrawal_debits_amount_plus_fee(normalizer):
    record = TransferRecord.from_api({"timestamp": TS, "symbol": "EUR", "amount": "100", "fee": "1.5",
                                      "status": "completed", "address": "NL00BANK0123456789"},
                                     RecordKind.WITHDRAWAL, "withdrawals")
    tx = normalizer.normalize(record)
    assert tx.amount_eur == Decimal("-101.5")
    assert tx.identity == f"wd:{TS}:100:EUR:NL00BANK0123456789"
    assert tx.title == "Withdrawal"


@pytest.mark.parametrize("fields", [
    {"symbol": "BTC", "status": "completed"},
    {"symbol": "EUR", "status": "awaiting_processing"},
])
def test_non_eur_or_pending_transfers_are_ignored(normalizer, fields):
    raw = {"timestamp": TS, "amount": "10", "fee": "0"}
    raw.update(fields)
    assert normalizer.normalize(TransferRecord.from_api(raw, RecordKind.DEPOSIT, "deposits")) is None


def test_settled_buy_trade(normalizer):
    trade = TradeRecord.from_api({"id": "t-1", "timestamp": TS, "side": "buy", "amount": "0.005",
                                  "price": "85000", "fee": "1.25", "feeCurrency": "EUR", "settled": True}, "BTC-EUR")
    tx = normalizer.normalize(trade)
    assert tx.identity == "trade:BTC-EUR:t-1"
    assert tx.amount_eur == Decimal("-426.25")
    assert tx.detail == "0.005 BTC (price: 85,000 EUR, fee: 1.25 EUR)"


def test_sell_trade_with_non_eur_fee(normalizer):
    trade = TradeRecord.from_api({"id": "t-2", "timestamp": TS, "side": "sell", "amount": "2",
                                  "price": "10", "fee": "0.01", "feeCurrency": "SOL", "settled": True}, "SOL-EUR")
    assert normalizer.normalize(trade).amount_eur == Decimal("20")


@pytest.mark.parametrize("fields", [
    {"settled": False},
    {"side": "hold"},
    {"amount": "0"},
    {"price": "-1"},
    {"id": ""},
])
def test_unusable_trades_are_ignored(normalizer, fields):
    raw = {"id": "t-3", "timestamp": TS, "side": "buy", "amount": "1", "price": "1", "fee": "0",
           "feeCurrency": "EUR", "settled": True}
    raw.update(fields)
    assert normalizer.normalize(TradeRecord.from_api(raw, "ADA-EUR")) is None


def test_unknown_record_type_is_rejected(normalizer):
    with pytest.raises(TypeError):
        normalizer.normalize({"type": "deposit"})


def test_deduplicator_keeps_first_occurrence_and_sums_once(normalizer):
    record = TransferRecord.from_api({"timestamp": TS, "symbol": "EUR", "amount": "50", "fee": "0",
                                      "status": "completed"}, RecordKind.DEPOSIT, "deposits")
    ledger = Deduplicator()
    assert ledger.add(normalizer.normalize(record)) is True
    assert ledger.add(normalizer.normalize(record)) is False
    assert ledger.add(None) is False
    assert len(ledger) == 1
    assert ledger.sum_of_deltas == Decimal("50")
    assert ledger.stats() == {"kept": 1, "duplicates": 1}


def test_deduplicator_orders_by_booking_date_then_identity(normalizer):
    ledger = Deduplicator()
    for ts, amount in [(TS + 5000, "1"), (TS, "3"), (TS, "2")]:
        ledger.add(normalizer.normalize(TransferRecord.from_api(
            {"timestamp": ts, "symbol": "EUR", "amount": amount, "fee": "0", "status": "completed"},
            RecordKind.DEPOSIT, "deposits")))
    assert [tx.amount_eur for tx in ledger.transactions()] == [Decimal("2"), Decimal("3"), Decimal("1")]
    assert ledger.oldest_booking_date == TS // 1000


def test_display_number_formatting():
    assert format_number(Decimal("85000")) == "85,000"
    assert format_number(Decimal("0.00500")) == "0.005"
    assert format_eur(Decimal("1234.565")) == "1,234.57"


def test_malformed_fields_are_logged_before_the_record_is_dropped(normalizer, caplog):
    caplog.set_level(logging.DEBUG, logger="ledger_models")
    record = TransferRecord.from_api({"timestamp": TS, "symbol": "EUR", "amount": "12,50", "fee": "0",
                                      "status": "completed"}, RecordKind.DEPOSIT, "/v2/depositHistory[3]")
    assert normalizer.normalize(record) is None
    assert "/v2/depositHistory[3].amount: malformed value '12,50'" in caplog.text
