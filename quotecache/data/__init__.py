"""Quote sources and the polling cache built on top of them."""

from .clients import FetchError, QuoteEndpoint, QuoteFetcher, QuoteRecord, QuoteValue
from .polling import (
    CallbackError,
    FetchOutcome,
    InvalidArgumentError,
    PollingCacheService,
    PollState,
    ServiceStoppedError,
)
from .yahoo_client import YahooFinanceClient

__all__ = [
    "QuoteEndpoint",
    "QuoteFetcher",
    "QuoteValue",
    "QuoteRecord",
    "FetchError",
    "FetchOutcome",
    "PollingCacheService",
    "PollState",
    "InvalidArgumentError",
    "ServiceStoppedError",
    "CallbackError",
    "YahooFinanceClient",
]
