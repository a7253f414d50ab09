"""Yahoo Finance chart endpoint client.

One ``fetch`` issues a single GET against the v8 chart endpoint and maps the
``meta`` block of the first result onto a :class:`QuoteValue`. Transport and
status failures raise :class:`FetchError`; individual fields that are missing
or malformed simply come back as ``None``.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from .clients import FetchError, QuoteEndpoint, QuoteValue

DEFAULT_ENDPOINT = QuoteEndpoint(name="yahoo", rest_url="https://query1.finance.yahoo.com")
DEFAULT_USER_AGENT = "Mozilla/5.0 (quotecache)"


class YahooFinanceClient:
    """Fetch quotes for ticker symbols from the Yahoo Finance chart API."""

    def __init__(
        self,
        endpoint: Optional[QuoteEndpoint] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.endpoint = endpoint or DEFAULT_ENDPOINT
        self.timeout = timeout
        self.session = session or requests.Session()
        self.user_agent = user_agent
        self.logger = logger or logging.getLogger(__name__)
        self._closed = False
        self._close_lock = threading.Lock()

    def fetch(self, identifier: str) -> QuoteValue:
        """Return the latest price and previous close for ``identifier``."""

        if self._closed:
            raise FetchError(identifier, "client is closed")

        payload = self._rest_get(identifier, f"/v8/finance/chart/{identifier}")
        meta = self._extract_meta(identifier, payload)
        start, end = self._trading_period(meta)

        value = QuoteValue(
            primary_value=self._safe_float(meta.get("regularMarketPrice")),
            reference_value=self._safe_float(
                meta.get("chartPreviousClose") if meta.get("chartPreviousClose") is not None else meta.get("previousClose")
            ),
            currency=meta.get("currency") if isinstance(meta.get("currency"), str) else None,
            trading_period_start=start,
            trading_period_end=end,
        )
        self.logger.debug(
            "Fetched %s: price=%s previous_close=%s", identifier, value.primary_value, value.reference_value
        )
        return value

    def close(self) -> None:
        """Close the HTTP session. Later calls are no-ops."""

        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.session.close()
        self.logger.info("Closed %s quote client", self.endpoint.name)

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Parsing helpers --------------------------------------------------
    def _extract_meta(self, identifier: str, payload: Any) -> Dict[str, Any]:
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise FetchError(identifier, "invalid response structure")

        results = chart.get("result")
        if not results or not isinstance(results, list) or not isinstance(results[0], dict):
            error = chart.get("error")
            if isinstance(error, dict) and error.get("description"):
                raise FetchError(identifier, error["description"])
            raise FetchError(identifier, "invalid response structure")

        meta = results[0].get("meta")
        return meta if isinstance(meta, dict) else {}

    def _trading_period(self, meta: Dict[str, Any]) -> tuple[Optional[datetime], Optional[datetime]]:
        period = meta.get("currentTradingPeriod")
        regular = period.get("regular") if isinstance(period, dict) else None
        if not isinstance(regular, dict):
            return None, None
        return self._parse_epoch(regular.get("start")), self._parse_epoch(regular.get("end"))

    def _parse_epoch(self, value: Any) -> Optional[datetime]:
        seconds = self._safe_float(value)
        if seconds is None:
            return None
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    def _safe_float(self, value: Any) -> Optional[float]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    # --- REST helpers -----------------------------------------------------
    def _rest_get(self, identifier: str, path: str) -> Any:
        url = f"{self.endpoint.rest_url}{path}"
        try:
            response = self.session.get(
                url,
                params={"interval": "1d", "range": "1d"},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise FetchError(identifier, exc) from exc

        if response.status_code != 200:
            raise FetchError(identifier, f"HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(identifier, f"malformed JSON payload: {exc}") from exc

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.user_agent}


__all__ = ["YahooFinanceClient", "DEFAULT_ENDPOINT"]
