"""Local quote cache refreshed in the background from a remote quote source."""

from quotecache.data import (
    FetchError,
    PollingCacheService,
    PollState,
    QuoteFetcher,
    QuoteRecord,
    QuoteValue,
)

__all__ = [
    "FetchError",
    "PollingCacheService",
    "PollState",
    "QuoteFetcher",
    "QuoteRecord",
    "QuoteValue",
]

__version__ = "0.1.0"
