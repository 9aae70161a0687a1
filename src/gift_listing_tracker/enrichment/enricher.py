"""NFT metadata enrichment and recent-sales sampling.

Both lookups sit behind read-through TTL caches owned by the caller. Upstream
failures degrade to "no data" and are never cached; a successful lookup that
finds no model is cached as a negative entry.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from gift_listing_tracker.cache import TTLCache
from gift_listing_tracker.ingestor.extract import (
    NFT_ADDRESS_KEYS,
    PURCHASE_ACTION_MARKER,
    SALE_PRICE_KEYS,
    extract_nft_details,
    find_first_address,
    find_first_amount,
    get_action_type,
    iter_actions,
)
from gift_listing_tracker.ingestor.models import Listing
from gift_listing_tracker.ingestor.tonapi_client import TonApiClient, TonApiError

logger = logging.getLogger(__name__)

RECENT_SALES_MAX = 3
ACCOUNT_EVENTS_LIMIT = 50


class NftEnricher:
    """Attach NFT metadata to listings and sample recent sale prices per model.

    Args:
        client: TonAPI REST client.
        model_cache: NFT address -> resolved model (None when the item has none).
        sales_cache: lower-cased model -> up to ``RECENT_SALES_MAX`` prices.
        market_accounts: Marketplace accounts scanned for purchases, in order.
    """

    def __init__(
        self,
        client: TonApiClient,
        model_cache: TTLCache[str, str | None],
        sales_cache: TTLCache[str, tuple[float, ...]],
        market_accounts: Sequence[str] = (),
    ) -> None:
        self._client = client
        self._model_cache = model_cache
        self._sales_cache = sales_cache
        self._market_accounts = tuple(market_accounts)

    async def enrich(self, listing: Listing) -> Listing:
        """Return ``listing`` with NFT item details merged in.

        On lookup failure the input listing is returned unchanged.
        """
        try:
            item = await self._client.get_nft_item(listing.nft_address)
        except TonApiError as e:
            logger.warning("NFT lookup failed for %s: %s", listing.nft_address, e)
            return listing

        details = extract_nft_details(item)
        self._model_cache.set(listing.nft_address, details.get("model"))
        return listing.merged(**details)

    async def get_model(self, nft_address: str) -> str | None:
        cached = self._model_cache.get(nft_address)
        if cached is not None:
            return cached.value

        try:
            item = await self._client.get_nft_item(nft_address)
        except TonApiError as e:
            logger.debug("Model lookup failed for %s: %s", nft_address, e)
            return None

        model = extract_nft_details(item).get("model")
        self._model_cache.set(nft_address, model)
        return model

    async def recent_sales(self, model: str) -> tuple[float, ...]:
        """Up to ``RECENT_SALES_MAX`` recent sale prices for ``model``.

        Markets are scanned in configured order, then events, then actions, and
        scanning stops as soon as the cap is reached.
        """
        wanted = model.strip().lower()
        if not wanted:
            return ()

        cached = self._sales_cache.get(wanted)
        if cached is not None:
            return cached.value

        prices: list[float] = []
        complete = True

        for account_id in self._market_accounts:
            if len(prices) >= RECENT_SALES_MAX:
                break
            try:
                page = await self._client.get_account_events(account_id, limit=ACCOUNT_EVENTS_LIMIT)
            except TonApiError as e:
                logger.warning("Account events lookup failed for %s: %s", account_id, e)
                complete = False
                continue

            events = page.get("events")
            if not isinstance(events, list):
                continue

            for event in events:
                if len(prices) >= RECENT_SALES_MAX:
                    break
                await self._collect_sales(event, wanted, prices)

        result = tuple(prices[:RECENT_SALES_MAX])
        if complete or len(result) >= RECENT_SALES_MAX:
            self._sales_cache.set(wanted, result)
        return result

    async def _collect_sales(self, event: object, wanted: str, prices: list[float]) -> None:
        for action in iter_actions(event):
            if len(prices) >= RECENT_SALES_MAX:
                return
            action_type = (get_action_type(action) or "").lower()
            if PURCHASE_ACTION_MARKER not in action_type:
                continue

            nft_address = find_first_address(action, NFT_ADDRESS_KEYS)
            if not nft_address:
                continue

            found = await self.get_model(nft_address)
            if not found or found.lower() != wanted:
                continue

            price = find_first_amount(action, SALE_PRICE_KEYS)
            if price is None or not math.isfinite(price) or price <= 0:
                continue
            prices.append(price)
