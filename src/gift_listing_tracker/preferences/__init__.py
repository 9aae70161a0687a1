"""User notification preferences - backend client and matching."""

from gift_listing_tracker.preferences.backend_client import BackendClient, BackendClientError
from gift_listing_tracker.preferences.matcher import matches
from gift_listing_tracker.preferences.models import Filters

__all__ = [
    "BackendClient",
    "BackendClientError",
    "Filters",
    "matches",
]
