"""Data models for user notification preferences."""

import math
from dataclasses import dataclass
from typing import Any, Literal

FilterTab = Literal["listing", "sale", "rent"]

LISTING_TAB: FilterTab = "listing"


def _optional_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, str)):
        try:
            num = float(value)
        except ValueError:
            return None
        return num if math.isfinite(num) else None
    return None


@dataclass(frozen=True)
class Filters:
    """A user's listing-alert preferences.

    ``min_ton``/``max_ton`` of None mean unbounded on that side. An empty
    ``models`` tuple accepts any model. The range is not validated here: an
    inverted range simply matches nothing.
    """

    tab: str = LISTING_TAB
    min_ton: float | None = None
    max_ton: float | None = None
    models: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Filters":
        """Create Filters from the backend's JSON (``tab``, ``minTon``, ``maxTon``, ``models``).

        Malformed bounds and models fall back to their defaults. ``tab`` is kept
        verbatim, and a missing or non-string tab becomes ``""``, so anything
        but an explicit listing mode never matches.
        """
        tab = data.get("tab")
        raw_models = data.get("models")
        models: tuple[str, ...] = ()
        if isinstance(raw_models, list):
            models = tuple(m.strip() for m in raw_models if isinstance(m, str) and m.strip())

        return cls(
            tab=tab if isinstance(tab, str) else "",
            min_ton=_optional_float(data.get("minTon")),
            max_ton=_optional_float(data.get("maxTon")),
            models=models,
        )
