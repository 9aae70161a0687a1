"""Client for the preference-store backend.

The backend is an optional collaborator. Reads fail open (no filters means
alert on everything) and the seen-model signal is best-effort.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from gift_listing_tracker.preferences.models import Filters

logger = logging.getLogger(__name__)

DEFAULT_FILTERS_LEASE_SECONDS = 1.0


class BackendClientError(Exception):
    """Raised when the preference backend cannot be reached or answers badly."""


class BackendClient:
    """Async HTTP client for ``/api/filters`` and ``/api/models/seen``.

    ``get_filters`` keeps its last answer for ``filters_lease_seconds`` so a
    burst of events shares one snapshot. A failed fetch is leased too, as
    "no filters".
    """

    def __init__(
        self,
        *,
        base_url: str,
        user_key: str = "default",
        token: str | None = None,
        filters_lease_seconds: float = DEFAULT_FILTERS_LEASE_SECONDS,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"), headers=headers)
        self._user_key = user_key
        self._lease = filters_lease_seconds
        self._clock = clock

        self._filters: Filters | None = None
        self._filters_at: float | None = None

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_filters(self) -> Filters | None:
        """Fetch the user's filters, bypassing the lease.

        Raises:
            BackendClientError: On transport errors, non-success status or a bad body.
        """
        try:
            response = await self._client.get("/api/filters", params={"userKey": self._user_key})
        except httpx.HTTPError as e:
            raise BackendClientError(f"GET /api/filters failed: {e}") from e

        if not response.is_success:
            raise BackendClientError(
                f"GET /api/filters returned {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
        except ValueError as e:
            raise BackendClientError("GET /api/filters returned invalid JSON") from e

        raw = data.get("filters") if isinstance(data, dict) else None
        if not isinstance(raw, dict):
            return None
        return Filters.from_dict(raw)

    async def get_filters(self) -> Filters | None:
        """Leased filters snapshot; None on failure or when the user has none."""
        now = self._clock()
        if self._filters_at is not None and now - self._filters_at < self._lease:
            return self._filters

        try:
            filters = await self.fetch_filters()
        except BackendClientError as e:
            logger.warning("Filters fetch failed, alerting without filters: %s", e)
            filters = None

        self._filters = filters
        self._filters_at = now
        return filters

    async def post_seen_model(self, model: str) -> None:
        """Report that ``model`` was seen on a listing.

        Raises:
            BackendClientError: On transport errors or non-success status.
        """
        m = model.strip()
        if not m:
            return
        try:
            response = await self._client.post("/api/models/seen", json={"model": m})
        except httpx.HTTPError as e:
            raise BackendClientError(f"POST /api/models/seen failed: {e}") from e
        if not response.is_success:
            raise BackendClientError(
                f"POST /api/models/seen returned {response.status_code}: {response.text[:200]}"
            )
