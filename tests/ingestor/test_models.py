"""Tests for ingestor data models."""

import pytest

from gift_listing_tracker.ingestor.models import Listing, TraceNotification, TraceParseError

NFT = "0:" + "b" * 64


class TestTraceNotification:
    """Tests for TraceNotification model."""

    def test_from_websocket_message(self) -> None:
        """Test parsing a trace frame."""
        data = {
            "jsonrpc": "2.0",
            "method": "trace",
            "params": {"hash": "abc123", "accounts": ["0:aa", "0:bb"]},
        }
        notification = TraceNotification.from_websocket_message(data)

        assert notification.hash == "abc123"
        assert notification.accounts == ("0:aa", "0:bb")

    @pytest.mark.parametrize(
        "params",
        [
            None,
            "not-a-dict",
            {"accounts": []},
            {"hash": "", "accounts": []},
            {"hash": 42, "accounts": []},
            {"hash": "abc"},
            {"hash": "abc", "accounts": "0:aa"},
        ],
    )
    def test_malformed_params(self, params: object) -> None:
        """Test that frames without a hash or accounts list are rejected."""
        with pytest.raises(TraceParseError):
            TraceNotification.from_websocket_message({"method": "trace", "params": params})


class TestListing:
    """Tests for Listing model."""

    def test_frozen(self) -> None:
        """Test that Listing is immutable."""
        listing = Listing(nft_address=NFT, market_label="GetGems")
        with pytest.raises(AttributeError):
            listing.price_ton = 1.0  # type: ignore[misc]

    def test_merged_returns_new_instance(self) -> None:
        """Test that merging overlays non-empty fields on a copy."""
        listing = Listing(nft_address=NFT, market_label="GetGems", price_ton=5.0, model="Old")
        merged = listing.merged(model="Plush Pepe", background="", number=None, image_url="https://x/img.png")

        assert merged is not listing
        assert listing.model == "Old"
        assert merged.model == "Plush Pepe"
        assert merged.background is None
        assert merged.image_url == "https://x/img.png"
        assert merged.price_ton == 5.0

    def test_merged_without_updates(self) -> None:
        """Test that merging nothing returns the same listing."""
        listing = Listing(nft_address=NFT, market_label="GetGems")
        assert listing.merged(model=None) is listing

    def test_title(self) -> None:
        """Test title fallbacks."""
        assert Listing(nft_address=NFT, market_label="m", model="Pepe", number="7").title == "Pepe #7"
        assert Listing(nft_address=NFT, market_label="m", model="Pepe").title == "Pepe"
        assert Listing(nft_address=NFT, market_label="m", number="7").title == NFT
