"""
Bitvavo Client Module
Read-only REST client for the Bitvavo v2 API: signing, transport, and parsing into typed records.
Every call goes through the shared RateLimiter (budget first, then throttle and retry).
"""
import hmac
import time
import hashlib
import logging
from decimal import Decimal
from urllib.parse import urlencode
from typing import Any, Dict, List, Optional, Set

import requests

from rate_limiter import RateLimiter
from sync_errors import SchemaError, TransportError
from ledger_models import (AccountEvent, BalanceSnapshot, EventPage, RecordKind, SyncWindow,
                           TradeRecord, TransferRecord, require_list, to_decimal, to_int)

logger = logging.getLogger(__name__)

BASE_URL = "https://api.bitvavo.com"


def sign_request(secret: str, timestamp_ms: int, method: str, path: str, body: str = "") -> str:
    """hex(HMAC_SHA256(secret, timestamp + method + path + body))"""
    payload = f"{timestamp_ms}{method}{path}{body}"
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


class BitvavoClient:
    """Bitvavo v2 REST client limited to the read-only endpoints the ledger sync needs."""

    def __init__(self, api_key: str, api_secret: str, rate_limiter: RateLimiter, *,
                 base_url: str = BASE_URL, timeout: float = 30.0, access_window_ms: int = 10000,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key or ""
        self.api_secret = api_secret or ""
        self.rate_limiter = rate_limiter
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout)
        self.access_window_ms = int(access_window_ms)
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config: Dict[str, Any], rate_limiter: RateLimiter,
                    session: Optional[requests.Session] = None) -> "BitvavoClient":
        api_keys = config.get("api_keys", {})
        bitvavo_config = config.get("apis", {}).get("bitvavo", {})
        return cls(
            api_keys.get("bitvavo_key", ""),
            api_keys.get("bitvavo_secret", ""),
            rate_limiter,
            base_url=bitvavo_config.get("base_url", BASE_URL),
            timeout=bitvavo_config.get("timeout", 30),
            access_window_ms=bitvavo_config.get("access_window_ms", 10000),
            session=session,
        )

    # ---------------------------------------------------------------------
    # Transport
    # ---------------------------------------------------------------------

    def _headers(self, method: str, path: str, signed: bool) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if signed:
            if not self.api_key or not self.api_secret:
                raise TransportError("Bitvavo signed request requires api key and secret")
            timestamp_ms = int(time.time() * 1000)
            headers.update({
                "Bitvavo-Access-Key": self.api_key,
                "Bitvavo-Access-Timestamp": str(timestamp_ms),
                "Bitvavo-Access-Signature": sign_request(self.api_secret, timestamp_ms, method, path),
                "Bitvavo-Access-Window": str(self.access_window_ms),
            })
        return headers

    def _send(self, method: str, path: str, signed: bool) -> Any:
        """Issue one HTTP request and decode the JSON body. No retries here."""
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(method, path, signed), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Network error on {method} {path}: {e}") from e

        reset_at_ms = to_int(response.headers.get("Bitvavo-Ratelimit-ResetAt")) if response.headers else None
        try:
            payload = response.json() if response.text else {}
        except ValueError:
            payload = None

        if isinstance(payload, dict) and payload.get("errorCode") is not None:
            error_code = to_int(payload.get("errorCode"))
            message = payload.get("error") or str(payload.get("errorCode"))
            raise TransportError(f"Bitvavo API error on {path}: {message}", status_code=response.status_code,
                                 error_code=error_code, reset_at_ms=reset_at_ms)

        if response.status_code >= 400:
            raise TransportError(f"Bitvavo HTTP {response.status_code} on {method} {path}: {response.text[:500]}",
                                 status_code=response.status_code, reset_at_ms=reset_at_ms)

        if payload is None:
            raise SchemaError(f"Unexpected JSON response for {path}")
        return payload

    def _private_get(self, path: str) -> Any:
        self.rate_limiter.consume_budget(path)
        logger.debug(f"GET {path} (signed)")
        return self.rate_limiter.execute_with_retry(lambda: self._send("GET", path, signed=True), label=path)

    def _public_get(self, path: str) -> Any:
        self.rate_limiter.consume_budget(path)
        logger.debug(f"GET {path}")
        return self.rate_limiter.execute_with_retry(lambda: self._send("GET", path, signed=False), label=path)

    # ---------------------------------------------------------------------
    # API Methods
    # ---------------------------------------------------------------------

    def fetch_balances(self) -> BalanceSnapshot:
        return BalanceSnapshot.from_api(self._private_get("/v2/balance"))

    def fetch_event_page(self, page: int, page_size: int) -> EventPage:
        """Fetch one page of the generic account history feed."""
        path = f"/v2/account/history?{urlencode({'page': page, 'maxItems': page_size})}"
        res = self._private_get(path)
        if not isinstance(res, dict):
            raise SchemaError("Unexpected response type for /v2/account/history")
        items = res.get("items")
        if not isinstance(items, list):
            raise SchemaError("Missing items in /v2/account/history response")
        events = [AccountEvent.from_api(item, f"/v2/account/history.items[{idx}]") for idx, item in enumerate(items)]
        total_pages = to_int(res.get("totalPages")) or 1
        current_page = to_int(res.get("currentPage")) or page
        return EventPage(items=events, current_page=current_page, total_pages=total_pages)

    def _fetch_transfers(self, endpoint: str, kind: RecordKind, window: SyncWindow, limit: int) -> List[TransferRecord]:
        path = f"{endpoint}?{urlencode({'start': window.start_ms, 'end': window.end_ms, 'limit': limit})}"
        items = require_list(self._private_get(path), endpoint)
        return [TransferRecord.from_api(item, kind, f"{endpoint}[{idx}]") for idx, item in enumerate(items)]

    def fetch_deposits(self, window: SyncWindow, limit: int) -> List[TransferRecord]:
        return self._fetch_transfers("/v2/depositHistory", RecordKind.DEPOSIT, window, limit)

    def fetch_withdrawals(self, window: SyncWindow, limit: int) -> List[TransferRecord]:
        return self._fetch_transfers("/v2/withdrawalHistory", RecordKind.WITHDRAWAL, window, limit)

    def fetch_trades(self, market: str, window: SyncWindow, limit: int) -> List[TradeRecord]:
        params = {'market': market, 'start': window.start_ms, 'end': window.end_ms, 'limit': limit}
        path = f"/v2/trades?{urlencode(params)}"
        items = require_list(self._private_get(path), f"/v2/trades {market}")
        return [TradeRecord.from_api(item, market, f"/v2/trades[{idx}]") for idx, item in enumerate(items)]

    def fetch_tradable_markets(self) -> Set[str]:
        """All market symbols Bitvavo publishes (e.g. BTC-EUR)."""
        items = require_list(self._public_get("/v2/markets"), "/v2/markets")
        markets = set()
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("market"), str) and item["market"]:
                markets.add(item["market"].upper())
        return markets

    def fetch_price(self, market: str) -> Decimal:
        res = self._public_get(f"/v2/ticker/price?{urlencode({'market': market})}")
        if not isinstance(res, dict):
            raise SchemaError(f"Unexpected response type for ticker {market}")
        price = to_decimal(res.get("price"))
        if price is None:
            raise SchemaError(f"Missing or malformed price for {market}")
        return price
