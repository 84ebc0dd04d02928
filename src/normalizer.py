"""
Event Normalizer Module
Converts Bitvavo records (account history events, deposits, withdrawals, trades) into signed EUR
cash transactions with a stable identity, and drops repeated identities within one pass.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Set, Tuple, Union

from ledger_models import (SETTLEMENT_CURRENCY, ZERO, AccountEvent, NormalizedTransaction, RecordKind,
                           TradeRecord, TransferRecord, decimal_text)

logger = logging.getLogger(__name__)

RawRecord = Union[AccountEvent, TransferRecord, TradeRecord]

CENT = Decimal("0.01")


# ---------------------------------------------------------------------------
# Display text
# ---------------------------------------------------------------------------

def format_number(value: Optional[Decimal], max_decimals: Optional[int] = None) -> str:
    """Group thousands and drop trailing zeros: Decimal('85000') -> '85,000', 0.00500 -> '0.005'."""
    if value is None:
        return "0"
    if max_decimals is not None:
        value = value.quantize(Decimal(1).scaleb(-max_decimals), rounding=ROUND_HALF_UP)
    text = format(value, ",f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def format_eur(value: Optional[Decimal]) -> str:
    """Two-decimal EUR text with thousands separators."""
    return format((value or ZERO).quantize(CENT, rounding=ROUND_HALF_UP), ",f")


def trade_display(side: str, base: str, quantity: Optional[Decimal], price: Optional[Decimal],
                  quote_amount: Optional[Decimal], fee_eur: Decimal) -> Tuple[str, str]:
    base = base or "ASSET"
    title = f"{'Buy' if side == 'buy' else 'Sell'} {base}"
    if price is not None and price > 0:
        price_text = format_number(price)
    elif quantity and quote_amount is not None:
        price_text = format_number(quote_amount / quantity, max_decimals=8)
    else:
        price_text = "0"
    detail = f"{format_number(quantity)} {base} (price: {price_text} EUR, fee: {format_eur(fee_eur)} EUR)"
    return title, detail


# ---------------------------------------------------------------------------
# Identity rules
# ---------------------------------------------------------------------------

def event_identity(event: AccountEvent) -> str:
    """Provider transactionId when present, else a composite of the immutable economic fields."""
    if event.transaction_id:
        return f"bitvavo:txid:{event.transaction_id}"
    return "bitvavo:" + "|".join([
        event.executed_at,
        event.type,
        event.sent_currency,
        decimal_text(event.sent_amount),
        event.received_currency,
        decimal_text(event.received_amount),
    ])


def transfer_identity(record: TransferRecord) -> str:
    if record.kind == RecordKind.DEPOSIT:
        return f"dep:{record.timestamp_ms}:{decimal_text(record.amount)}:{record.symbol}"
    # several withdrawals can share timestamp and amount, the destination tells them apart
    target = record.tx_id or record.address
    return f"wd:{record.timestamp_ms}:{decimal_text(record.amount)}:{record.symbol}:{target}"


def trade_identity(trade: TradeRecord) -> str:
    return f"trade:{trade.market}:{trade.trade_id}"


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------

class EventNormalizer:
    """Maps one raw record to a NormalizedTransaction, or None when it has no EUR cash effect."""

    def normalize(self, record: RawRecord) -> Optional[NormalizedTransaction]:
        if isinstance(record, AccountEvent):
            return self.normalize_event(record)
        if isinstance(record, TransferRecord):
            return self.normalize_transfer(record)
        if isinstance(record, TradeRecord):
            return self.normalize_trade(record)
        raise TypeError(f"Unsupported record type: {type(record).__name__}")

    def normalize_event(self, event: AccountEvent) -> Optional[NormalizedTransaction]:
        if event.executed_at_ts is None:
            return None
        touches_eur = False
        delta = ZERO
        if event.received_currency == SETTLEMENT_CURRENCY:
            touches_eur = True
            delta += event.received_amount or ZERO
        if event.sent_currency == SETTLEMENT_CURRENCY:
            touches_eur = True
            delta -= event.sent_amount or ZERO
        fee_eur = ZERO
        if event.fees_currency == SETTLEMENT_CURRENCY:
            touches_eur = True
            fee_eur = event.fees_amount or ZERO
            delta -= fee_eur
        if not touches_eur or delta == 0:
            return None

        title, detail = self._event_display(event, fee_eur)
        return NormalizedTransaction(event_identity(event), event.executed_at_ts, delta, title, detail)

    def _event_display(self, event: AccountEvent, fee_eur: Decimal) -> Tuple[str, str]:
        price = event.price_amount if event.price_currency == SETTLEMENT_CURRENCY else None
        if event.type == "BUY":
            return trade_display("buy", event.received_currency, event.received_amount, price, event.sent_amount, fee_eur)
        if event.type == "SELL":
            return trade_display("sell", event.sent_currency, event.sent_amount, price, event.received_amount, fee_eur)
        if event.type == "DEPOSIT":
            amount = event.received_amount if event.received_amount is not None else event.sent_amount
            return "Deposit", f"{format_eur(amount)} EUR"
        if event.type == "WITHDRAWAL":
            amount = event.sent_amount if event.sent_amount is not None else event.received_amount
            return "Withdrawal", f"{format_eur(amount)} EUR"
        if event.received_currency == SETTLEMENT_CURRENCY:
            return "Deposit", f"{format_eur(event.received_amount)} EUR"
        if event.sent_currency == SETTLEMENT_CURRENCY:
            return "Withdrawal", f"{format_eur(event.sent_amount)} EUR"
        return "Transaction", f"{format_eur(fee_eur)} EUR"

    def normalize_transfer(self, record: TransferRecord) -> Optional[NormalizedTransaction]:
        if record.symbol != SETTLEMENT_CURRENCY or not record.is_completed:
            return None
        if record.timestamp_ms is None or record.amount is None:
            return None
        fee = record.fee or ZERO
        if record.kind == RecordKind.DEPOSIT:
            delta = record.amount - fee
            title = "Deposit"
        else:
            delta = -(record.amount + fee)
            title = "Withdrawal"
        if delta == 0:
            return None
        return NormalizedTransaction(transfer_identity(record), record.timestamp_ms // 1000, delta, title,
                                     f"{format_eur(record.amount)} EUR")

    def normalize_trade(self, trade: TradeRecord) -> Optional[NormalizedTransaction]:
        if not trade.settled or trade.timestamp_ms is None or not trade.trade_id:
            return None
        if trade.side not in ("buy", "sell"):
            return None
        if trade.amount is None or trade.price is None or trade.amount <= 0 or trade.price <= 0:
            return None

        notional = trade.amount * trade.price
        fee_eur = (trade.fee or ZERO) if trade.fee_currency == SETTLEMENT_CURRENCY else ZERO
        delta = -(notional + fee_eur) if trade.side == "buy" else notional - fee_eur
        if delta == 0:
            return None
        title, detail = trade_display(trade.side, trade.base_symbol, trade.amount, trade.price, notional, fee_eur)
        return NormalizedTransaction(trade_identity(trade), trade.timestamp_ms // 1000, delta, title, detail)


# ---------------------------------------------------------------------------
# Deduplicator
# ---------------------------------------------------------------------------

class Deduplicator:
    """Collects transactions for one pass; a repeated identity is dropped and not summed again."""

    def __init__(self):
        self._seen: Set[str] = set()
        self._transactions: List[NormalizedTransaction] = []
        self.sum_of_deltas = ZERO
        self.oldest_booking_date: Optional[int] = None
        self.duplicates = 0

    def __len__(self) -> int:
        return len(self._transactions)

    def add(self, tx: Optional[NormalizedTransaction]) -> bool:
        if tx is None or not tx.identity:
            return False
        if tx.identity in self._seen:
            self.duplicates += 1
            return False
        self._seen.add(tx.identity)
        self._transactions.append(tx)
        self.sum_of_deltas += tx.amount_eur
        if self.oldest_booking_date is None or tx.booking_date < self.oldest_booking_date:
            self.oldest_booking_date = tx.booking_date
        return True

    def transactions(self) -> List[NormalizedTransaction]:
        """Transactions ordered by booking date, then identity."""
        return sorted(self._transactions, key=NormalizedTransaction.sort_key)

    def stats(self) -> Dict[str, int]:
        return {"kept": len(self._transactions), "duplicates": self.duplicates}
