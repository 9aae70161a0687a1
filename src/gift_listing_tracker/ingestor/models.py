"""Data models for the ingestor module."""

import dataclasses
from dataclasses import dataclass
from typing import Any


class TraceParseError(ValueError):
    """Raised when a stream frame is not a usable trace notification."""


@dataclass(frozen=True)
class TraceNotification:
    """A ``trace`` notification from the TonAPI websocket feed."""

    hash: str
    accounts: tuple[str, ...]

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> "TraceNotification":
        """Create a TraceNotification from a decoded JSON-RPC frame.

        Raises:
            TraceParseError: If the frame lacks a string hash or an accounts list.
        """
        params = data.get("params")
        if not isinstance(params, dict):
            raise TraceParseError("trace frame has no params object")
        trace_hash = params.get("hash")
        accounts = params.get("accounts")
        if not isinstance(trace_hash, str) or not trace_hash:
            raise TraceParseError("trace frame has no hash")
        if not isinstance(accounts, list):
            raise TraceParseError("trace frame has no accounts list")
        return cls(
            hash=trace_hash,
            accounts=tuple(str(a) for a in accounts),
        )


@dataclass(frozen=True)
class Listing:
    """A candidate marketplace offer recovered from one event action.

    ``price_ton`` is already normalized to TON. Enrichment never mutates a
    listing; it produces a new one through ``merged``.
    """

    nft_address: str
    market_label: str
    price_ton: float | None = None
    market_account: str | None = None
    model: str | None = None
    background: str | None = None
    number: str | None = None
    collection_address: str | None = None
    image_url: str | None = None

    def merged(self, **fields: str | None) -> "Listing":
        """Return a copy with every non-empty field in ``fields`` overlaid."""
        updates = {k: v for k, v in fields.items() if v}
        if not updates:
            return self
        return dataclasses.replace(self, **updates)

    @property
    def title(self) -> str:
        """Model plus serial number, or the raw NFT address."""
        if self.model:
            return f"{self.model} #{self.number}" if self.number else self.model
        return self.nft_address
