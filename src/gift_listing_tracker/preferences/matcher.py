"""Listing-versus-preferences matching."""

from __future__ import annotations

import math

from gift_listing_tracker.ingestor.models import Listing
from gift_listing_tracker.preferences.models import LISTING_TAB, Filters


def matches(listing: Listing, filters: Filters | None) -> bool:
    """Whether ``listing`` should be alerted under ``filters``.

    No filters means everything matches. All checks are conjunctive.
    """
    if filters is None:
        return True

    if filters.tab != LISTING_TAB:
        return False

    price = listing.price_ton
    if price is None or not math.isfinite(price):
        return False
    if filters.min_ton is not None and price < filters.min_ton:
        return False
    if filters.max_ton is not None and price > filters.max_ton:
        return False

    if filters.models:
        if not listing.model:
            return False
        accepted = {m.lower() for m in filters.models}
        if listing.model.lower() not in accepted:
            return False

    return True
