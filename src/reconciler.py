"""
Reconciler Module
Closes the gap between the reconstructed EUR deltas and Bitvavo's authoritative EUR balance
with one synthetic opening adjustment. Used for full synchronization only.
"""
import time
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional, Sequence

from ledger_models import NormalizedTransaction

logger = logging.getLogger(__name__)

OPENING_RECONCILE_PREFIX = "bitvavo:opening-reconcile"
OPENING_RECONCILE_TITLE = "Opening balance adjustment"


class Reconciler:
    """Adds an opening adjustment when the residual reaches the tolerance (one cent by default)."""

    def __init__(self, tolerance: Decimal = Decimal("0.01"), clock: Callable[[], float] = time.time):
        self.tolerance = Decimal(str(tolerance))
        self._clock = clock

    def adjustment_for(self, residual: Decimal, booking_date: int) -> NormalizedTransaction:
        residual_text = format(residual.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP), "f")
        return NormalizedTransaction(
            identity=f"{OPENING_RECONCILE_PREFIX}:{booking_date}:{residual_text}",
            booking_date=booking_date,
            amount_eur=residual,
            title=OPENING_RECONCILE_TITLE,
            detail=OPENING_RECONCILE_TITLE,
        )

    def reconcile(self, transactions: Sequence[NormalizedTransaction], sum_of_deltas: Decimal,
                  authoritative_balance: Decimal, oldest_booking_date: Optional[int]) -> List[NormalizedTransaction]:
        """Return the transactions, plus an opening adjustment if the residual is at least the tolerance."""
        residual = authoritative_balance - sum_of_deltas
        result = list(transactions)
        if abs(residual) < self.tolerance:
            logger.info(f"Ledger reconciled: reconstructed sum {sum_of_deltas} matches balance {authoritative_balance}.")
            return result

        booking_date = oldest_booking_date if oldest_booking_date is not None else int(self._clock())
        adjustment = self.adjustment_for(residual, booking_date)
        logger.info(f"Adding opening adjustment of {residual} EUR at {booking_date} (balance {authoritative_balance}, reconstructed {sum_of_deltas}).")
        result.append(adjustment)
        result.sort(key=NormalizedTransaction.sort_key)
        return result
