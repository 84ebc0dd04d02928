"""
Ledger Models Module
Typed records for Bitvavo balances, history items, and the reconstructed EUR cash ledger.
Raw API payloads are parsed here, at the boundary, so the rest of the sync never sees untyped dicts.
"""
import math
import logging
from enum import Enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import pandas as pd

from sync_errors import SchemaError

logger = logging.getLogger(__name__)

SETTLEMENT_CURRENCY = "EUR"
ZERO = Decimal("0")


def to_decimal(value: Any) -> Optional[Decimal]:
    """Parse an API amount (usually a string) into a Decimal, None when missing or malformed."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def to_int(value: Any) -> Optional[int]:
    """Parse an integer field such as a millisecond timestamp."""
    number = to_decimal(value)
    if number is None:
        return None
    return int(number)


def decimal_text(value: Optional[Decimal]) -> str:
    """Plain (non-scientific) text for a Decimal, empty string for None."""
    if value is None:
        return ""
    return format(value, "f")


def iso_to_unix_seconds(value: Any) -> Optional[int]:
    """Convert an ISO-8601 UTC timestamp like 2024-02-01T12:34:56.789Z to epoch seconds."""
    if not isinstance(value, str) or not value:
        return None
    ts = pd.to_datetime(value, utc=True, errors='coerce')
    if pd.isna(ts):
        return None
    return math.floor(ts.timestamp())


def upper_text(value: Any) -> str:
    return str(value or "").strip().upper()


def _log_malformed(context: str, key: str, value: Any):
    logger.debug(f"{context}.{key}: malformed value {value!r} treated as missing")


def field_decimal(item: Dict[str, Any], key: str, context: str) -> Optional[Decimal]:
    """to_decimal on item[key], with a debug line when a present value does not parse."""
    value = item.get(key)
    number = to_decimal(value)
    if number is None and value not in (None, ""):
        _log_malformed(context, key, value)
    return number


def field_int(item: Dict[str, Any], key: str, context: str) -> Optional[int]:
    value = item.get(key)
    number = to_int(value)
    if number is None and value not in (None, ""):
        _log_malformed(context, key, value)
    return number


def _require_object(item: Any, context: str) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise SchemaError(f"{context}: expected an object, got {type(item).__name__}")
    return item


def require_list(payload: Any, context: str) -> List[Any]:
    """Ensure a list endpoint returned a JSON array."""
    if not isinstance(payload, list):
        raise SchemaError(f"Unexpected response type for {context}: {type(payload).__name__}")
    return payload


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AssetBalance:
    symbol: str
    available: Decimal
    in_order: Decimal

    @property
    def quantity(self) -> Decimal:
        return self.available + self.in_order


@dataclass(frozen=True)
class BalanceSnapshot:
    """Current balances keyed by asset symbol, in API order."""
    balances: Dict[str, AssetBalance] = field(default_factory=dict)

    @classmethod
    def from_api(cls, payload: Any) -> "BalanceSnapshot":
        entries = require_list(payload, "/v2/balance")
        balances: Dict[str, AssetBalance] = {}
        for idx, raw in enumerate(entries):
            item = _require_object(raw, f"/v2/balance[{idx}]")
            symbol = upper_text(item.get('symbol'))
            if not symbol:
                raise SchemaError(f"/v2/balance[{idx}]: missing required symbol")
            balances[symbol] = AssetBalance(
                symbol=symbol,
                available=field_decimal(item, 'available', f"/v2/balance[{idx}]") or ZERO,
                in_order=field_decimal(item, 'inOrder', f"/v2/balance[{idx}]") or ZERO,
            )
        return cls(balances=balances)

    def quantity(self, symbol: str) -> Decimal:
        balance = self.balances.get(symbol.upper())
        return balance.quantity if balance else ZERO

    def eur_total(self) -> Decimal:
        """Authoritative EUR cash balance (available + in order)."""
        return self.quantity(SETTLEMENT_CURRENCY)

    def non_eur_holdings(self) -> List[AssetBalance]:
        return [b for b in self.balances.values() if b.symbol != SETTLEMENT_CURRENCY and b.quantity > 0]


# ---------------------------------------------------------------------------
# Raw provider records (tagged union)
# ---------------------------------------------------------------------------

class RecordKind(str, Enum):
    EVENT = "event"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    TRADE = "trade"


@dataclass(frozen=True)
class AccountEvent:
    """One item of /v2/account/history."""
    transaction_id: str
    executed_at: str
    executed_at_ts: Optional[int]
    type: str
    sent_currency: str
    sent_amount: Optional[Decimal]
    received_currency: str
    received_amount: Optional[Decimal]
    fees_currency: str
    fees_amount: Optional[Decimal]
    price_currency: str
    price_amount: Optional[Decimal]
    market: str = ""
    kind: RecordKind = RecordKind.EVENT

    @classmethod
    def from_api(cls, raw: Any, context: str = "/v2/account/history.items") -> "AccountEvent":
        item = _require_object(raw, context)
        executed_at = str(item.get('executedAt') or "")
        executed_at_ts = iso_to_unix_seconds(executed_at)
        if executed_at_ts is None and executed_at:
            _log_malformed(context, 'executedAt', executed_at)
        return cls(
            transaction_id=str(item.get('transactionId') or ""),
            executed_at=executed_at,
            executed_at_ts=executed_at_ts,
            type=upper_text(item.get('type')),
            sent_currency=upper_text(item.get('sentCurrency')),
            sent_amount=field_decimal(item, 'sentAmount', context),
            received_currency=upper_text(item.get('receivedCurrency')),
            received_amount=field_decimal(item, 'receivedAmount', context),
            fees_currency=upper_text(item.get('feesCurrency')),
            fees_amount=field_decimal(item, 'feesAmount', context),
            price_currency=upper_text(item.get('priceCurrency')),
            price_amount=field_decimal(item, 'priceAmount', context),
            market=upper_text(item.get('market')),
        )

    def currencies(self) -> List[str]:
        return [c for c in (self.sent_currency, self.received_currency) if c]


@dataclass(frozen=True)
class TransferRecord:
    """One deposit or withdrawal from the transfer history endpoints."""
    kind: RecordKind
    symbol: str
    amount: Optional[Decimal]
    fee: Optional[Decimal]
    status: str
    timestamp_ms: Optional[int]
    tx_id: str = ""
    address: str = ""

    @classmethod
    def from_api(cls, raw: Any, kind: RecordKind, context: str) -> "TransferRecord":
        item = _require_object(raw, context)
        return cls(
            kind=kind,
            symbol=upper_text(item.get('symbol')),
            amount=field_decimal(item, 'amount', context),
            fee=field_decimal(item, 'fee', context),
            status=str(item.get('status') or ""),
            timestamp_ms=field_int(item, 'timestamp', context),
            tx_id=str(item.get('txId') or ""),
            address=str(item.get('address') or ""),
        )

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True)
class TradeRecord:
    """One fill from /v2/trades."""
    market: str
    trade_id: str
    timestamp_ms: Optional[int]
    side: str
    amount: Optional[Decimal]
    price: Optional[Decimal]
    fee: Optional[Decimal]
    fee_currency: str
    settled: bool
    kind: RecordKind = RecordKind.TRADE

    @classmethod
    def from_api(cls, raw: Any, market: str, context: str = "/v2/trades") -> "TradeRecord":
        item = _require_object(raw, context)
        settled = item.get('settled')
        return cls(
            market=upper_text(item.get('market')) or market.upper(),
            trade_id=str(item.get('id') or ""),
            timestamp_ms=field_int(item, 'timestamp', context),
            side=str(item.get('side') or "").lower(),
            amount=field_decimal(item, 'amount', context),
            price=field_decimal(item, 'price', context),
            fee=field_decimal(item, 'fee', context),
            fee_currency=upper_text(item.get('feeCurrency')),
            settled=settled is True or settled == "true",
        )

    @property
    def base_symbol(self) -> str:
        suffix = f"-{SETTLEMENT_CURRENCY}"
        if self.market.endswith(suffix) and len(self.market) > len(suffix):
            return self.market[:-len(suffix)]
        return self.market


@dataclass(frozen=True)
class EventPage:
    items: List[AccountEvent]
    current_page: int
    total_pages: int


# ---------------------------------------------------------------------------
# Ledger output
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyncWindow:
    """Inclusive [start_ms, end_ms] range for a time-filtered list endpoint."""
    start_ms: int
    end_ms: int

    @property
    def midpoint(self) -> int:
        return (self.start_ms + self.end_ms) // 2


@dataclass(frozen=True)
class NormalizedTransaction:
    identity: str
    booking_date: int
    amount_eur: Decimal
    title: str
    detail: str

    def sort_key(self):
        return (self.booking_date, self.identity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identity": self.identity,
            "booking_date": self.booking_date,
            "amount_eur": self.amount_eur,
            "title": self.title,
            "detail": self.detail,
        }


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


@dataclass(frozen=True)
class SyncResult:
    balance: Decimal
    transactions: List[NormalizedTransaction]
    mode: SyncMode
    request_count: int = 0

    def sum_of_deltas(self) -> Decimal:
        return sum((tx.amount_eur for tx in self.transactions), ZERO)


@dataclass(frozen=True)
class PortfolioPosition:
    symbol: str
    quantity: Decimal
    unit_price_eur: Optional[Decimal] = None
    total_eur: Optional[Decimal] = None
