"""Data ingestion layer - TonAPI trace streaming and payload extraction."""

from gift_listing_tracker.ingestor.models import (
    Listing,
    TraceNotification,
    TraceParseError,
)
from gift_listing_tracker.ingestor.tonapi_client import (
    TonApiClient,
    TonApiError,
    TonApiNotFoundError,
    TonApiTransientError,
)

__all__ = [
    "Listing",
    "TraceNotification",
    "TraceParseError",
    "TonApiClient",
    "TonApiError",
    "TonApiNotFoundError",
    "TonApiTransientError",
]
