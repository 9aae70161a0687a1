"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Gift Listing Tracker application, loading and validating environment
variables at startup.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _split_csv(v: object, name: str) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        return tuple(p.strip() for p in v.split(",") if p.strip())
    if isinstance(v, (list, tuple)):
        return tuple(str(x).strip() for x in v if str(x).strip())
    raise TypeError(f"Invalid {name} type")


class TonApiSettings(BaseSettings):
    """TonAPI streaming and REST settings."""

    model_config = SettingsConfigDict(env_prefix="TONAPI_", extra="ignore")

    ws_url: str = Field(
        default="wss://tonapi.io/v2/websocket",
        alias="TONAPI_WS_URL",
        description="WebSocket URL for the trace subscription feed",
    )
    rest_url: str = Field(
        default="https://tonapi.io",
        alias="TONAPI_REST_URL",
        description="TonAPI REST base URL",
    )
    token: SecretStr | None = Field(
        default=None,
        alias="TONAPI_TOKEN",
        description="TonAPI bearer token",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        v = v.strip()
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("TONAPI_WS_URL must start with ws:// or wss://")
        return v

    @field_validator("rest_url")
    @classmethod
    def validate_rest_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("TONAPI_REST_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")

    @field_validator("token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class WatchSettings(BaseSettings):
    """Which marketplace accounts to watch and how to label them."""

    model_config = SettingsConfigDict(extra="ignore")

    watch_accounts: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(),
        alias="WATCH_ACCOUNTS",
        description="Marketplace accounts to subscribe to (comma-separated)",
    )
    market_labels: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        alias="MARKET_LABELS",
        description="Display labels per account as comma-separated id=label pairs",
    )
    gifts_collection: str = Field(
        default="",
        alias="GIFTS_COLLECTION",
        description="Only alert on items of this collection (empty = any)",
    )

    @field_validator("watch_accounts", mode="before")
    @classmethod
    def _parse_watch_accounts(cls, v: object) -> tuple[str, ...]:
        return _split_csv(v, "WATCH_ACCOUNTS")

    @field_validator("market_labels", mode="before")
    @classmethod
    def _parse_market_labels(cls, v: object) -> dict[str, str]:
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        labels: dict[str, str] = {}
        for pair in _split_csv(v, "MARKET_LABELS"):
            idx = pair.find("=")
            if idx <= 0:
                continue
            key = pair[:idx].strip()
            value = pair[idx + 1 :].strip()
            if key and value:
                labels[key] = value
        return labels

    @field_validator("gifts_collection")
    @classmethod
    def _strip_collection(cls, v: str) -> str:
        return v.strip()

    @property
    def market_accounts(self) -> tuple[str, ...]:
        """Watch accounts that are marketplaces (the collection itself excluded)."""
        seen: dict[str, None] = {}
        for account in self.watch_accounts:
            if account and account != self.gifts_collection:
                seen.setdefault(account, None)
        return tuple(seen)

    def label_for(self, account_id: str) -> str:
        return self.market_labels.get(account_id, account_id)


class AlertSettings(BaseSettings):
    """Alert content settings."""

    model_config = SettingsConfigDict(extra="ignore")

    low_budget_max_ton: float = Field(
        default=10.0,
        alias="LOW_BUDGET_MAX_TON",
        ge=0.0,
        description="Listings at or below this price are flagged low-budget",
    )
    floor_ton: float | None = Field(
        default=None,
        alias="FLOOR_TON",
        description="Static gift floor price shown in alerts",
    )
    floor_model_ton: float | None = Field(
        default=None,
        alias="FLOOR_MODEL_TON",
        description="Static model floor price shown in alerts",
    )
    fragment_buy_url_template: str = Field(
        default="",
        alias="FRAGMENT_BUY_URL_TEMPLATE",
        description="Buy URL template for Fragment listings, {nft} is substituted",
    )

    @field_validator("floor_ton", "floor_model_ton", mode="before")
    @classmethod
    def _blank_floor_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("fragment_buy_url_template")
    @classmethod
    def _strip_template(cls, v: str) -> str:
        return v.strip()


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(extra="ignore")

    bot_token: SecretStr | None = Field(
        default=None,
        alias="BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="ALERT_CHAT_ID",
        description="Telegram chat ID for alerts",
    )
    miniapp_url: str = Field(
        default="http://localhost:3000",
        alias="MINIAPP_URL",
        description="Companion mini-app URL for the alert button",
    )

    @field_validator("bot_token", "chat_id", mode="before")
    @classmethod
    def _blank_is_none(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("miniapp_url")
    @classmethod
    def _strip_miniapp_url(cls, v: str) -> str:
        return v.strip()

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are configured."""
        return self.bot_token is not None and self.chat_id is not None


class BackendSettings(BaseSettings):
    """Preference-store backend settings."""

    model_config = SettingsConfigDict(env_prefix="BACKEND_", extra="ignore")

    url: str = Field(
        default="http://localhost:8080",
        alias="BACKEND_URL",
        description="Preference backend base URL (empty disables it)",
    )
    token: SecretStr | None = Field(
        default=None,
        alias="BACKEND_TOKEN",
        description="Preference backend bearer token",
    )
    user_key: str = Field(
        default="default",
        alias="FILTER_USER_KEY",
        description="User key whose filters govern alerts",
    )
    filters_lease_seconds: float = Field(
        default=1.0,
        alias="FILTERS_LEASE_SECONDS",
        ge=0.0,
        le=60.0,
        description="How long a fetched filters snapshot is reused",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("BACKEND_URL must be an HTTP(S) endpoint")
        return v

    @field_validator("token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v

    @field_validator("user_key")
    @classmethod
    def _strip_user_key(cls, v: str) -> str:
        return v.strip() or "default"

    @property
    def enabled(self) -> bool:
        return bool(self.url)


class CacheSettings(BaseSettings):
    """Dedup and enrichment cache bounds."""

    model_config = SettingsConfigDict(extra="ignore")

    seen_ttl_seconds: float = Field(
        default=600.0,
        alias="SEEN_TTL_SECONDS",
        gt=0.0,
        description="How long a processed event hash suppresses duplicates",
    )
    seen_max_entries: int = Field(
        default=10_000,
        alias="SEEN_MAX_ENTRIES",
        ge=1,
        le=10_000_000,
        description="Maximum remembered event hashes",
    )
    nft_model_cache_ttl_seconds: float = Field(
        default=600.0,
        alias="NFT_MODEL_CACHE_TTL_SECONDS",
        gt=0.0,
        description="TTL for resolved (or missing) NFT models",
    )
    recent_sales_cache_ttl_seconds: float = Field(
        default=180.0,
        alias="RECENT_SALES_CACHE_TTL_SECONDS",
        gt=0.0,
        description="TTL for per-model recent sale samples",
    )


class StreamSettings(BaseSettings):
    """Stream listener and shutdown behaviour."""

    model_config = SettingsConfigDict(extra="ignore")

    reconnect_delay_seconds: float = Field(
        default=1.0,
        alias="RECONNECT_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Fixed delay before reconnecting the trace stream",
    )
    shutdown_grace_seconds: float = Field(
        default=5.0,
        alias="SHUTDOWN_GRACE_SECONDS",
        ge=0.0,
        le=300.0,
        description="How long stop() waits for in-flight events",
    )


class TestAlertSettings(BaseSettings):
    """One-shot test alert overrides."""

    __test__ = False

    model_config = SettingsConfigDict(env_prefix="TEST_", extra="ignore")

    enabled: bool = Field(
        default=False,
        alias="TEST_ALERT",
        description="Send a single test alert and exit",
    )
    nft_address: str = Field(
        default="",
        alias="TEST_NFT_ADDRESS",
        description="NFT address used for the test alert",
    )
    price_ton: float = Field(
        default=5.0,
        alias="TEST_PRICE_TON",
        description="Price shown in the test alert",
    )
    market_label: str = Field(
        default="Fragment",
        alias="TEST_MARKET_LABEL",
        description="Market label used for the test alert",
    )
    buy_url: str = Field(
        default="",
        alias="TEST_BUY_URL",
        description="Buy URL override for the test alert",
    )

    @field_validator("enabled", mode="before")
    @classmethod
    def _parse_enabled(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip() == "1" or v.strip().lower() == "true"
        return v

    @field_validator("nft_address", "market_label", "buy_url")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from gift_listing_tracker.config import get_settings

        settings = get_settings()
        print(settings.tonapi.ws_url)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    tonapi: TonApiSettings = Field(
        default_factory=lambda: TonApiSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    watch: WatchSettings = Field(
        default_factory=lambda: WatchSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alert: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    backend: BackendSettings = Field(
        default_factory=lambda: BackendSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    cache: CacheSettings = Field(
        default_factory=lambda: CacheSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    stream: StreamSettings = Field(
        default_factory=lambda: StreamSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    test_overrides: TestAlertSettings = Field(
        default_factory=lambda: TestAlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "tonapi": {
                "ws_url": self.tonapi.ws_url,
                "rest_url": self.tonapi.rest_url,
                "token": "(set)" if self.tonapi.token else "(not set)",
            },
            "watch": {
                "watch_accounts": str(len(self.watch.watch_accounts)),
                "market_labels": str(len(self.watch.market_labels)),
                "gifts_collection": self.watch.gifts_collection or "(not set)",
            },
            "backend": {
                "url": self.backend.url or "(disabled)",
                "token": "(set)" if self.backend.token else "(not set)",
                "user_key": self.backend.user_key,
            },
            "telegram": {
                "bot_token": "(set)" if self.telegram.bot_token else "(not set)",
                "chat_id": self.telegram.chat_id or "(not set)",
                "miniapp_url": self.telegram.miniapp_url,
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "test-alert"]) -> None:
        """Validate command-specific requirements.

        A missing secret or target is fatal: the application must refuse to run.
        """
        if not self.telegram.bot_token:
            raise ValueError("BOT_TOKEN is required")
        if not self.telegram.chat_id:
            raise ValueError("ALERT_CHAT_ID is required")

        if command == "test-alert" and not self.test_overrides.nft_address:
            raise ValueError("TEST_NFT_ADDRESS is required when TEST_ALERT=1")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
