"""Data models for the alerter module."""

from dataclasses import dataclass


@dataclass(frozen=True)
class FormattedAlert:
    """A ready-to-send Telegram alert.

    Attributes:
        caption: MarkdownV2 body, already escaped.
        buy_url: Marketplace link for the buy button.
        buy_button_text: Label of the buy button.
        photo_url: Item image; when None the alert goes out as plain text.
        is_low_budget: Price is known and at or below the low-budget threshold.
        nft_address: The listed item, for logging.
    """

    caption: str
    buy_url: str
    buy_button_text: str
    nft_address: str
    photo_url: str | None = None
    is_low_budget: bool = False
