"""
Rate Limiter Module
Request throttling, per-refresh request budgets, and bounded retry/backoff for Bitvavo rate limits.
One instance is owned by the tracker and reset at the start of every refresh mode.
"""
import re
import time
import logging
from typing import Any, Callable, Dict, Optional, TypeVar

from sync_errors import BudgetExhausted, RateLimited, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BAN_EXPIRY_PATTERN = re.compile(r"expires at (\d+)")


class RateLimiter:
    """Paces outbound requests and enforces the active request budget."""

    def __init__(self, min_interval_ms: int = 350, max_retries: int = 2, retry_base_delay_ms: int = 800,
                 max_wait_ms: int = 15000, clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.min_interval_ms = min_interval_ms
        self.max_retries = max_retries
        self.retry_base_delay_ms = retry_base_delay_ms
        self.max_wait_ms = max_wait_ms
        self._clock = clock
        self._sleep = sleep
        self.budget_remaining: Optional[int] = None
        self.request_count = 0
        self._last_request_ms: Optional[float] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], **kwargs) -> "RateLimiter":
        """Build a limiter from the ``apis.bitvavo`` config section."""
        bitvavo_config = config.get("apis", {}).get("bitvavo", {})
        return cls(
            min_interval_ms=bitvavo_config.get("request_min_interval_ms", 350),
            max_retries=bitvavo_config.get("max_http_retries", 2),
            retry_base_delay_ms=bitvavo_config.get("retry_base_delay_ms", 800),
            max_wait_ms=bitvavo_config.get("max_auto_wait_on_429_ms", 15000),
            **kwargs
        )

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def reset(self, budget: Optional[int]):
        """Start a new refresh with a fresh budget; None means unlimited."""
        self.budget_remaining = budget
        self.request_count = 0
        self._last_request_ms = None
        logger.debug(f"Request state reset (budget: {budget if budget is not None else 'unlimited'})")

    def acquire(self):
        """Block until at least min_interval_ms has passed since the previous request."""
        if self.min_interval_ms <= 0:
            return
        if self._last_request_ms is not None:
            missing_ms = self.min_interval_ms - (self._now_ms() - self._last_request_ms)
            if missing_ms > 0:
                self._sleep(missing_ms / 1000.0)
        self._last_request_ms = self._now_ms()

    def consume_budget(self, label: str):
        """Count one logical request against the budget, raising BudgetExhausted when none is left."""
        if self.budget_remaining is None:
            self.request_count += 1
            return
        if self.budget_remaining <= 0:
            logger.error(f"Request budget exhausted at {label} after {self.request_count} requests.")
            raise BudgetExhausted(label, self.request_count)
        self.budget_remaining -= 1
        self.request_count += 1

    def compute_wait_ms(self, error: TransportError, attempt: int) -> int:
        """Wait before the next attempt: server ban/reset expiry if known, else exponential backoff."""
        expiry_ms = error.reset_at_ms
        if expiry_ms is None:
            match = BAN_EXPIRY_PATTERN.search(str(error))
            if match:
                expiry_ms = int(match.group(1))
        if expiry_ms is not None:
            return int(max(0.0, expiry_ms - self._now_ms())) + 1000
        return int(self.retry_base_delay_ms * (2 ** attempt))

    def execute_with_retry(self, request: Callable[[], T], label: str = "") -> T:
        """Run ``request`` behind the throttle, retrying only rate-limit responses."""
        attempt = 0
        while True:
            self.acquire()
            try:
                return request()
            except TransportError as e:
                if not e.is_rate_limit:
                    raise
                if attempt >= self.max_retries:
                    raise RateLimited(
                        f"Bitvavo rate limit still active for {label} after {self.max_retries} retries. Please try again later.",
                        label=label
                    ) from e
                wait_ms = self.compute_wait_ms(e, attempt)
                if wait_ms > self.max_wait_ms:
                    raise RateLimited(
                        f"Bitvavo rate limit active; automatic wait too long ({wait_ms}ms) for {label}. Please try again later.",
                        label=label, wait_ms=wait_ms
                    ) from e
                logger.warning(f"Rate limited on {label}. Waiting {wait_ms}ms before retry {attempt + 1}/{self.max_retries}...")
                self._sleep(wait_ms / 1000.0)
                attempt += 1
