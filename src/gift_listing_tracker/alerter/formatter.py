"""Alert message formatter for Telegram.

This module turns enriched listings into MarkdownV2 captions plus the routing
metadata the dispatcher needs (buy link, photo, button text).
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Literal

from gift_listing_tracker.alerter.models import FormattedAlert
from gift_listing_tracker.ingestor.extract import is_ton_address
from gift_listing_tracker.ingestor.models import Listing

MarketKind = Literal["getgems", "mrkt", "fragment", "unknown"]

# Marketplace URLs
GETGEMS_NFT_URL = "https://getgems.io/nft/{nft}"
MRKT_ITEM_URL = "https://mrkt.com/item/{nft}"
TONVIEWER_NFT_URL = "https://tonviewer.com/{nft}?section=nft"

MARKET_DISPLAY_NAMES: dict[MarketKind, str] = {
    "getgems": "GetGems",
    "mrkt": "MRKT",
    "fragment": "Fragment",
}
GENERIC_MARKET_NAME = "Market"

HEADER = "*✅ LISTING*"
BUY_BUTTON_TEXT = "Open market"
LOW_BUDGET_BUY_BUTTON_TEXT = "Open market (low budget)"
RECENT_SALES_MAX = 3

_MARKDOWN_V2_RE = re.compile(r"([_\-*\[\]()~`>#+=|{}.!\\])")
_MARKDOWN_V2_URL_RE = re.compile(r"([)\\])")


def escape_markdown_v2(text: str) -> str:
    """Escape Telegram MarkdownV2 reserved characters in free text."""
    return _MARKDOWN_V2_RE.sub(r"\\\1", text)


def escape_markdown_v2_url(url: str) -> str:
    """Escape a URL for use inside a MarkdownV2 ``(...)`` link target."""
    return _MARKDOWN_V2_URL_RE.sub(r"\\\1", url)


def normalize_market_label(label: str) -> MarketKind:
    lowered = label.lower()
    if "getgems" in lowered:
        return "getgems"
    if "mrkt" in lowered:
        return "mrkt"
    if "fragment" in lowered:
        return "fragment"
    return "unknown"


def display_market_name(label: str) -> str:
    """Human market name: configured labels verbatim, raw accounts generic."""
    if label and not is_ton_address(label):
        return label
    return MARKET_DISPLAY_NAMES.get(normalize_market_label(label), GENERIC_MARKET_NAME)


def buy_url_for(listing: Listing, fragment_template: str | None = None) -> str:
    """Marketplace link for a listing, derived only from its label and NFT address."""
    nft = listing.nft_address
    kind = normalize_market_label(listing.market_label)
    if kind == "getgems":
        return GETGEMS_NFT_URL.format(nft=nft)
    if kind == "mrkt":
        return MRKT_ITEM_URL.format(nft=nft)
    if kind == "fragment" and fragment_template:
        return fragment_template.replace("{nft}", nft)
    return TONVIEWER_NFT_URL.format(nft=nft)


def format_ton(amount: float) -> str:
    """Bold, escaped ``12.50 TON``."""
    return f"*{escape_markdown_v2(f'{amount:.2f}')} TON*"


class AlertFormatter:
    """Formats enriched listings into Telegram alerts.

    Args:
        low_budget_max_ton: Known prices at or below this are flagged low-budget.
        floor_ton: Static gift floor line, omitted unless positive.
        floor_model_ton: Static model floor line, omitted unless positive.
        fragment_buy_url_template: ``{nft}`` template for Fragment buy links.
    """

    def __init__(
        self,
        *,
        low_budget_max_ton: float = 10.0,
        floor_ton: float | None = None,
        floor_model_ton: float | None = None,
        fragment_buy_url_template: str | None = None,
    ) -> None:
        self.low_budget_max_ton = low_budget_max_ton
        self.floor_ton = floor_ton
        self.floor_model_ton = floor_model_ton
        self.fragment_buy_url_template = fragment_buy_url_template or None

    def buy_url(self, listing: Listing) -> str:
        return buy_url_for(listing, self.fragment_buy_url_template)

    def format(
        self,
        listing: Listing,
        recent_sales: Sequence[float] = (),
        buy_url: str | None = None,
    ) -> FormattedAlert:
        """Format a listing into an alert.

        Args:
            listing: The enriched listing.
            recent_sales: Recent sale prices for the listing's model.
            buy_url: Override for the computed marketplace link.

        Returns:
            FormattedAlert with the escaped caption and routing metadata.
        """
        url = buy_url or self.buy_url(listing)
        is_low_budget = listing.price_ton is not None and listing.price_ton <= self.low_budget_max_ton

        return FormattedAlert(
            caption=self._build_caption(listing, url, recent_sales),
            buy_url=url,
            buy_button_text=LOW_BUDGET_BUY_BUTTON_TEXT if is_low_budget else BUY_BUTTON_TEXT,
            nft_address=listing.nft_address,
            photo_url=listing.image_url,
            is_low_budget=is_low_budget,
        )

    def _build_caption(self, listing: Listing, url: str, recent_sales: Sequence[float]) -> str:
        lines = [
            HEADER,
            f"[{escape_markdown_v2(listing.title)}]({escape_markdown_v2_url(url)})",
        ]

        if listing.model:
            lines.append(f"Model: *{escape_markdown_v2(listing.model)}*")
        if listing.background:
            lines.append(f"Background: *{escape_markdown_v2(listing.background)}*")
        lines.append(f"Market: {escape_markdown_v2(display_market_name(listing.market_label))}")

        if self.floor_ton is not None and self.floor_ton > 0:
            lines.append(f"Gift floor: {format_ton(self.floor_ton)}")
        if self.floor_model_ton is not None and self.floor_model_ton > 0:
            lines.append(f"Model floor: {format_ton(self.floor_model_ton)}")

        sales = list(recent_sales)[:RECENT_SALES_MAX]
        if sales:
            lines.append(f"Recent sales: {' / '.join(format_ton(p) for p in sales)}")

        if listing.price_ton is not None:
            lines.append(f"Price: {format_ton(listing.price_ton)}")
        else:
            lines.append("Price: *unknown*")

        return "\n".join(lines)
