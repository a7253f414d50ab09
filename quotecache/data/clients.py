"""Quote source interfaces and the records kept in the quote cache."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Protocol


@dataclass(frozen=True)
class QuoteEndpoint:
    """Connection details for a remote quote source.

    Attributes:
        name: Human readable source identifier.
        rest_url: Base REST endpoint for HTTP requests.
    """

    name: str
    rest_url: str


@dataclass(frozen=True)
class QuoteValue:
    """Parsed result of a single remote lookup.

    Every field may be legitimately absent when the source omits it.
    """

    primary_value: Optional[float] = None
    reference_value: Optional[float] = None
    currency: Optional[str] = None
    trading_period_start: Optional[datetime] = None
    trading_period_end: Optional[datetime] = None


@dataclass(frozen=True)
class QuoteRecord:
    """Last known quote for one identifier.

    ``primary_value`` is the current price and ``reference_value`` the
    previous close. ``last_updated`` is the time of the last successful fetch,
    or of registration for a placeholder.
    """

    identifier: str
    primary_value: Optional[float]
    reference_value: Optional[float]
    last_updated: datetime
    currency: Optional[str] = None
    trading_period_start: Optional[datetime] = None
    trading_period_end: Optional[datetime] = None

    @classmethod
    def placeholder(cls, identifier: str, now: datetime) -> "QuoteRecord":
        return cls(identifier=identifier, primary_value=None, reference_value=None, last_updated=now)

    @classmethod
    def from_value(cls, identifier: str, value: QuoteValue, now: datetime) -> "QuoteRecord":
        return cls(
            identifier=identifier,
            primary_value=value.primary_value,
            reference_value=value.reference_value,
            last_updated=now,
            currency=value.currency,
            trading_period_start=value.trading_period_start,
            trading_period_end=value.trading_period_end,
        )

    @property
    def is_placeholder(self) -> bool:
        return self.primary_value is None and self.reference_value is None

    @property
    def display_value(self) -> Optional[float]:
        """Current price, falling back to the previous close."""

        return self.primary_value if self.primary_value is not None else self.reference_value

    @property
    def change(self) -> Optional[float]:
        if self.primary_value is None or self.reference_value is None:
            return None
        return self.primary_value - self.reference_value

    @property
    def change_percent(self) -> Optional[float]:
        change = self.change
        if change is None or not self.reference_value:
            return None
        return change / self.reference_value * 100.0

    def is_market_open(self, at: datetime) -> Optional[bool]:
        """Whether ``at`` falls inside the regular trading session, if known."""

        if self.trading_period_start is None or self.trading_period_end is None:
            return None
        return self.trading_period_start <= at < self.trading_period_end

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable representation of the record."""

        return {
            "identifier": self.identifier,
            "primary_value": self.primary_value,
            "reference_value": self.reference_value,
            "last_updated": self.last_updated.isoformat(),
            "currency": self.currency,
            "trading_period_start": _isoformat(self.trading_period_start),
            "trading_period_end": _isoformat(self.trading_period_end),
            "change": self.change,
            "change_percent": self.change_percent,
        }


class FetchError(Exception):
    """A remote lookup failed (network, non-success status, malformed payload)."""

    def __init__(self, identifier: str, cause: Any) -> None:
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"Failed to fetch {identifier}: {cause}")


class QuoteFetcher(Protocol):
    """Protocol describing required quote source behavior."""

    def fetch(self, identifier: str) -> QuoteValue:
        """Perform one remote lookup, raising ``FetchError`` on failure."""

    def close(self) -> None:
        """Release underlying connections. Safe to call more than once."""


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


__all__ = ["QuoteEndpoint", "QuoteValue", "QuoteRecord", "FetchError", "QuoteFetcher"]
