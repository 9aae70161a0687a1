"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from gift_listing_tracker.config import (
    AlertSettings,
    BackendSettings,
    CacheSettings,
    Settings,
    StreamSettings,
    TelegramSettings,
    TestAlertSettings,
    TonApiSettings,
    WatchSettings,
    clear_settings_cache,
)

MARKET_ACCOUNT = "0:" + "a" * 64
OTHER_MARKET_ACCOUNT = "0:" + "d" * 64
NFT_ADDRESS = "0:" + "b" * 64
SELLER_ADDRESS = "0:" + "e" * 64
GIFTS_COLLECTION = "EQ" + "c" * 46


def make_listing_action(
    *,
    nft: str = NFT_ADDRESS,
    destination: str = MARKET_ACCOUNT,
    price: Any = "5000000000",
    action_type: str = "NftItemTransfer",
) -> dict[str, Any]:
    """A TonAPI-shaped NFT transfer action into a marketplace account."""
    return {
        "type": action_type,
        "status": "ok",
        action_type: {
            "sender": {"address": SELLER_ADDRESS, "is_scam": False},
            "recipient": {"address": destination, "name": "market"},
            "nft": nft,
            "price": {"value": price, "token_name": "TON"},
        },
    }


def make_nft_item(
    *,
    address: str = NFT_ADDRESS,
    model: str | None = "Plush Pepe",
    background: str | None = "Onyx Black",
    index: int = 42,
    collection: str = GIFTS_COLLECTION,
) -> dict[str, Any]:
    """A TonAPI-shaped NFT item."""
    attributes = []
    if model:
        attributes.append({"trait_type": "Model", "value": model})
    if background:
        attributes.append({"trait_type": "Backdrop", "value": background})
    metadata: dict[str, Any] = {
        "image": "ipfs://bafyimage",
        "attributes": attributes,
    }
    if model:
        metadata["name"] = model
    return {
        "address": address,
        "index": index,
        "collection": {"address": collection, "name": "Gifts"},
        "metadata": metadata,
        "previews": [{"resolution": "100x100", "url": "https://cache.example/100.png"}],
    }


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Settings with one labelled market, the gifts collection and no backend."""
    return Settings(
        _env_file=None,
        tonapi=TonApiSettings(_env_file=None, TONAPI_TOKEN="tonapi-secret"),
        watch=WatchSettings(
            _env_file=None,
            WATCH_ACCOUNTS=f"{MARKET_ACCOUNT},{GIFTS_COLLECTION}",
            MARKET_LABELS=f"{MARKET_ACCOUNT}=GetGems",
            GIFTS_COLLECTION=GIFTS_COLLECTION,
        ),
        alert=AlertSettings(_env_file=None),
        telegram=TelegramSettings(_env_file=None, BOT_TOKEN="123:abc", ALERT_CHAT_ID="-100"),
        backend=BackendSettings(_env_file=None, BACKEND_URL=""),
        cache=CacheSettings(_env_file=None),
        stream=StreamSettings(_env_file=None, SHUTDOWN_GRACE_SECONDS=5.0),
        test_overrides=TestAlertSettings(_env_file=None, TEST_NFT_ADDRESS=NFT_ADDRESS),
    )


@pytest.fixture
def listing_event() -> dict[str, Any]:
    """An event with one qualifying listing action."""
    return {
        "event_id": "trace-1",
        "timestamp": 1_700_000_000,
        "actions": [make_listing_action()],
    }
