"""Schema-free field extraction from TonAPI event and NFT payloads.

TonAPI action payloads differ per action type and change over time, so the
extractors below do not rely on fixed paths. Each one walks the JSON tree
depth-first, checks the candidate keys on the current mapping (in priority
order) before descending, and visits mapping values and list items in their
natural order. None of them raise on malformed input: a miss is ``None``.
"""

from __future__ import annotations

import math
from collections.abc import Collection, Iterable, Mapping, Sequence
from typing import Any

from gift_listing_tracker.ingestor.models import Listing

# Amounts above this are assumed to be nanotons. A human-scaled amount larger
# than this gets mis-scaled; TonAPI payloads carry no unit tag to tell them apart.
NANO_THRESHOLD = 1_000_000
NANO_PER_TON = 1e9

RAW_ADDRESS_PREFIXES = ("0:", "-1:")
FRIENDLY_ADDRESS_PREFIXES = ("EQ", "UQ", "kQ")
ADDRESS_WRAPPER_KEYS = ("address", "account_id", "owner")

IPFS_SCHEME = "ipfs://"
IPFS_GATEWAY = "https://cloudflare-ipfs.com/ipfs/"

ACTION_TYPE_KEYS = ("type", "action_type", "kind")
DESTINATION_KEYS = ("destination", "recipient", "to", "receiver")
NFT_ADDRESS_KEYS = ("nft_address", "nft", "nft_item", "item", "address")
LISTING_PRICE_KEYS = ("price", "amount", "value", "ton", "ton_amount")
SALE_PRICE_KEYS = ("amount", "price", "ton", "ton_amount", "value")
PURCHASE_ACTION_MARKER = "purchase"
IMAGE_KEYS = ("image", "image_url", "imageUrl")
BACKGROUND_TRAITS = ("background", "backdrop")


def _children(node: Any) -> Iterable[Any]:
    if isinstance(node, Mapping):
        return node.values()
    if isinstance(node, Sequence) and not isinstance(node, (str, bytes)):
        return node
    return ()


def is_ton_address(value: Any) -> bool:
    """Whether ``value`` looks like a TON address (raw or user-friendly form)."""
    if not isinstance(value, str):
        return False
    return value.startswith(RAW_ADDRESS_PREFIXES) or value.startswith(FRIENDLY_ADDRESS_PREFIXES)


def extract_address(node: Any) -> str | None:
    """Return ``node`` if it is an address, or the address held by a wrapper object."""
    if isinstance(node, str):
        return node if is_ton_address(node) else None
    if isinstance(node, Mapping):
        for key in ADDRESS_WRAPPER_KEYS:
            if is_ton_address(node.get(key)):
                return node[key]
    return None


def find_first_address(node: Any, keys: Sequence[str]) -> str | None:
    if not node:
        return None
    if isinstance(node, Mapping):
        for key in keys:
            if key in node:
                addr = extract_address(node[key])
                if addr:
                    return addr
    for child in _children(node):
        found = find_first_address(child, keys)
        if found:
            return found
    return None


def to_ton(value: Any) -> float | None:
    """Normalize a raw amount to TON.

    Numbers and numeric strings above ``NANO_THRESHOLD`` are treated as
    nanotons; anything at or below it is returned unchanged, so normalizing an
    already-normalized amount is a no-op. Objects with a nested ``value`` are
    unwrapped.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    elif isinstance(value, Mapping):
        inner = value.get("value")
        if isinstance(inner, (str, int, float)) and not isinstance(inner, bool):
            return to_ton(inner)
        return None
    else:
        return None

    if not math.isfinite(num):
        return None
    if num > NANO_THRESHOLD:
        return num / NANO_PER_TON
    return num


def find_first_amount(node: Any, keys: Sequence[str]) -> float | None:
    if not node:
        return None
    if isinstance(node, Mapping):
        for key in keys:
            if key in node:
                ton = to_ton(node[key])
                if ton is not None:
                    return ton
    for child in _children(node):
        found = find_first_amount(child, keys)
        if found is not None:
            return found
    return None


def find_first_string(node: Any, keys: Sequence[str]) -> str | None:
    if not node:
        return None
    if isinstance(node, Mapping):
        for key in keys:
            value = node.get(key)
            if isinstance(value, str) and value:
                return value
    for child in _children(node):
        found = find_first_string(child, keys)
        if found:
            return found
    return None


def find_all_strings(node: Any, key: str) -> list[str]:
    """Collect every string stored under ``key`` anywhere in the tree."""
    out: list[str] = []
    _collect_strings(node, key, out)
    return out


def _collect_strings(node: Any, key: str, out: list[str]) -> None:
    if isinstance(node, Mapping):
        for k, v in node.items():
            if k == key and isinstance(v, str):
                out.append(v)
            _collect_strings(v, key, out)
    else:
        for child in _children(node):
            _collect_strings(child, key, out)


def get_action_type(action: Mapping[str, Any]) -> str | None:
    for key in ACTION_TYPE_KEYS:
        value = action.get(key)
        if isinstance(value, str):
            return value
    return None


def normalize_image_url(url: str) -> str:
    """Rewrite ``ipfs://`` URIs to an HTTP gateway; other URLs pass through."""
    u = url.strip()
    if u.lower().startswith(IPFS_SCHEME):
        cid = u[len(IPFS_SCHEME) :]
        if cid.lower().startswith("ipfs/"):
            cid = cid[len("ipfs/") :]
        return f"{IPFS_GATEWAY}{cid}"
    return u


def iter_actions(event: Any) -> Iterable[Mapping[str, Any]]:
    if not isinstance(event, Mapping):
        return ()
    actions = event.get("actions")
    if not isinstance(actions, list):
        return ()
    return (a for a in actions if isinstance(a, Mapping))


def parse_listings(
    event: Any,
    markets: Collection[str],
    labels: Mapping[str, str] | None = None,
) -> list[Listing]:
    """Recover candidate listings from an event's actions.

    An action qualifies when its type mentions ``nft`` and its destination is
    one of ``markets``.
    """
    labels = labels or {}
    out: list[Listing] = []

    for action in iter_actions(event):
        action_type = (get_action_type(action) or "").lower()
        if "nft" not in action_type:
            continue

        destination = find_first_address(action, DESTINATION_KEYS)
        if not destination or destination not in markets:
            continue

        nft_address = find_first_address(action, NFT_ADDRESS_KEYS)
        if not nft_address:
            continue

        out.append(
            Listing(
                nft_address=nft_address,
                price_ton=find_first_amount(action, LISTING_PRICE_KEYS),
                market_account=destination,
                market_label=labels.get(destination, destination),
            )
        )

    return out


def extract_nft_details(item: Any) -> dict[str, str]:
    """Pull model, background, serial, collection and image from a TonAPI NFT item."""
    res: dict[str, str] = {}
    if not isinstance(item, Mapping):
        return res

    collection = item.get("collection")
    if isinstance(collection, Mapping) and isinstance(collection.get("address"), str):
        res["collection_address"] = collection["address"]

    for key in ("index", "item_index"):
        value = item.get(key)
        if isinstance(value, int) and not isinstance(value, bool):
            res["number"] = str(value)
        elif key == "item_index" and isinstance(value, str) and value:
            res["number"] = value

    metadata = item.get("metadata")
    if metadata is None:
        metadata = item.get("content")
    if isinstance(metadata, Mapping):
        name = metadata.get("name")
        if isinstance(name, str) and name:
            res["model"] = name

        image = find_first_string(metadata, IMAGE_KEYS)
        if image:
            res["image_url"] = normalize_image_url(image)

        attributes = metadata.get("attributes")
        if isinstance(attributes, list):
            for attr in attributes:
                if not isinstance(attr, Mapping):
                    continue
                trait = next(
                    (attr[k] for k in ("trait_type", "key", "type") if attr.get(k) is not None),
                    None,
                )
                value = next((attr[k] for k in ("value", "val") if attr.get(k) is not None), None)
                if not isinstance(trait, str) or not isinstance(value, str):
                    continue
                t = trait.lower()
                if "model" not in res and "model" in t:
                    res["model"] = value
                if "background" not in res and any(b in t for b in BACKGROUND_TRAITS):
                    res["background"] = value

    if "model" not in res:
        models = find_all_strings(item, "model")
        if models:
            res["model"] = models[0]

    if "image_url" not in res:
        previews = item.get("previews")
        if isinstance(previews, list) and previews:
            last = previews[-1]
            if isinstance(last, Mapping):
                url = last.get("url")
                if isinstance(url, str) and url:
                    res["image_url"] = normalize_image_url(url)

    return res
