"""Async TonAPI REST client.

Only the three read-only lookups the pipeline needs: an event by trace hash,
an NFT item by address, and an account's recent events.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DEFAULT_REST_URL = "https://tonapi.io"
DEFAULT_ACCOUNT_EVENTS_LIMIT = 50


class TonApiError(Exception):
    """Base exception for TonAPI client errors."""


class TonApiNotFoundError(TonApiError):
    """Raised when the requested resource does not exist (404)."""


class TonApiTransientError(TonApiError):
    """Raised for network failures and non-success responses other than 404."""


class TonApiClient:
    """Thin async wrapper over the TonAPI v2 REST endpoints.

    Every method returns the decoded JSON object or raises ``TonApiError``;
    callers decide whether a failure means "no data" or something worse.

    Example:
        ```python
        async with TonApiClient(token="...") as tonapi:
            event = await tonapi.get_event(trace_hash)
        ```
    """

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_REST_URL,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers)

    async def __aenter__(self) -> TonApiClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise TonApiTransientError(f"GET {path} failed: {e}") from e

        if response.status_code == 404:
            raise TonApiNotFoundError(f"GET {path} returned 404")
        if not response.is_success:
            raise TonApiTransientError(f"GET {path} returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise TonApiTransientError(f"GET {path} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise TonApiTransientError(f"GET {path} returned a non-object body")
        return data

    async def get_event(self, trace_or_tx_hash: str) -> dict[str, Any]:
        """Fetch a decoded event (with its actions) by trace or transaction hash."""
        return await self._get_json(f"/v2/events/{quote(trace_or_tx_hash, safe='')}")

    async def get_nft_item(self, nft_address: str) -> dict[str, Any]:
        """Fetch NFT item metadata by address."""
        return await self._get_json(f"/v2/nfts/{quote(nft_address, safe='')}")

    async def get_account_events(
        self,
        account_id: str,
        limit: int = DEFAULT_ACCOUNT_EVENTS_LIMIT,
    ) -> dict[str, Any]:
        """Fetch the most recent events for an account."""
        return await self._get_json(
            f"/v2/accounts/{quote(account_id, safe='')}/events",
            params={"limit": limit},
        )
