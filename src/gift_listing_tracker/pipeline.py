"""Main pipeline orchestrator for the Gift Listing Tracker.

This module provides the Pipeline class that wires together the trace stream,
enrichment, preference matching and alerting, and manages the event flow
from ingestion to Telegram.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from telegram import Bot

from gift_listing_tracker.alerter.dispatcher import AlertDispatcher, AlertDispatchError
from gift_listing_tracker.alerter.formatter import AlertFormatter
from gift_listing_tracker.alerter.models import FormattedAlert
from gift_listing_tracker.cache import SeenEventCache, TTLCache
from gift_listing_tracker.config import Settings, get_settings
from gift_listing_tracker.enrichment.enricher import NftEnricher
from gift_listing_tracker.ingestor.extract import parse_listings
from gift_listing_tracker.ingestor.models import Listing, TraceNotification
from gift_listing_tracker.ingestor.tonapi_client import TonApiClient, TonApiError
from gift_listing_tracker.ingestor.websocket import TraceStreamHandler
from gift_listing_tracker.preferences.backend_client import BackendClient, BackendClientError
from gift_listing_tracker.preferences.matcher import matches
from gift_listing_tracker.preferences.models import Filters

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    traces_received: int = 0
    duplicates_dropped: int = 0
    events_dropped: int = 0
    listings_found: int = 0
    listings_matched: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_trace_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the Gift Listing Tracker.

    Pipeline flow:
        Trace Stream → Dedup → Event Fetch → Extraction → Enrichment →
        Filters → Format → Telegram

    Every trace is handled in its own task, so distinct events run
    concurrently. Listings inside one event are handled one after another.

    Example:
        ```python
        from gift_listing_tracker.config import get_settings
        from gift_listing_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alerts instead of sending them. Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        cache = self._settings.cache
        self._seen = SeenEventCache(
            ttl_seconds=cache.seen_ttl_seconds,
            max_entries=cache.seen_max_entries,
        )
        self._model_cache: TTLCache[str, str | None] = TTLCache(
            ttl_seconds=cache.nft_model_cache_ttl_seconds,
        )
        self._sales_cache: TTLCache[str, tuple[float, ...]] = TTLCache(
            ttl_seconds=cache.recent_sales_cache_ttl_seconds,
        )

        # Components (initialized in start())
        self._tonapi: TonApiClient | None = None
        self._backend: BackendClient | None = None
        self._enricher: NftEnricher | None = None
        self._formatter: AlertFormatter | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._trace_stream: TraceStreamHandler | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self._background: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and begins consuming the trace stream.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Closes the trace stream, gives in-flight events a short grace period
        and cancels whatever is still running.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._wait_for_inflight(self._settings.stream.shutdown_grace_seconds)
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self, *, with_stream: bool = True) -> None:
        """Initialize all pipeline components.

        Args:
            with_stream: Also build the trace stream handler. One-shot callers
                such as send_test_alert() skip it.

        Raises:
            ValueError: If Telegram credentials are missing.
        """
        s = self._settings
        s.validate_requirements(command="run")

        tonapi_token = s.tonapi.token.get_secret_value() if s.tonapi.token else None
        self._tonapi = TonApiClient(base_url=s.tonapi.rest_url, token=tonapi_token)

        if s.backend.enabled:
            self._backend = BackendClient(
                base_url=s.backend.url,
                user_key=s.backend.user_key,
                token=s.backend.token.get_secret_value() if s.backend.token else None,
                filters_lease_seconds=s.backend.filters_lease_seconds,
            )
        else:
            logger.info("BACKEND_URL not set; alerting without user filters")

        self._enricher = NftEnricher(
            self._tonapi,
            self._model_cache,
            self._sales_cache,
            market_accounts=s.watch.market_accounts,
        )
        self._formatter = AlertFormatter(
            low_budget_max_ton=s.alert.low_budget_max_ton,
            floor_ton=s.alert.floor_ton,
            floor_model_ton=s.alert.floor_model_ton,
            fragment_buy_url_template=s.alert.fragment_buy_url_template,
        )

        # validate_requirements() guarantees both are set
        if not self._dry_run and s.telegram.bot_token and s.telegram.chat_id:
            self._dispatcher = AlertDispatcher(
                Bot(token=s.telegram.bot_token.get_secret_value()),
                chat_id=s.telegram.chat_id,
                miniapp_url=s.telegram.miniapp_url,
            )
            await self._dispatcher.initialize()

        if with_stream:
            if not s.watch.watch_accounts:
                logger.warning("WATCH_ACCOUNTS is empty; no listings will be detected")

            self._trace_stream = TraceStreamHandler(
                host=s.tonapi.ws_url,
                token=tonapi_token,
                accounts=s.watch.watch_accounts,
                on_trace=self._on_trace,
                reconnect_delay=s.stream.reconnect_delay_seconds,
            )
        logger.debug("Components initialized: %s", s.redacted_summary())

    async def _start_background_services(self) -> None:
        """Start the trace stream task."""
        if self._trace_stream:
            self._stream_task = asyncio.create_task(self._trace_stream.start())

    async def _stop_background_services(self) -> None:
        """Stop the trace stream."""
        if self._trace_stream:
            logger.debug("Stopping trace stream...")
            await self._trace_stream.stop()

        if self._stream_task:
            self._stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stream_task
            self._stream_task = None

    async def _wait_for_inflight(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for in-flight work, then cancel the rest."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        # finishing events may spawn seen-model reports, so drain until quiet
        while pending := self._inflight | self._background:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.wait(pending, timeout=remaining)

        still_running = self._inflight | self._background
        if still_running:
            logger.warning("Cancelling %d in-flight task(s) on shutdown", len(still_running))
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._dispatcher:
            await self._dispatcher.shutdown()
            self._dispatcher = None

        if self._backend:
            await self._backend.close()
            self._backend = None

        if self._tonapi:
            await self._tonapi.close()
            self._tonapi = None

        logger.debug("Resources cleaned up")

    def _spawn(self, coro: Coroutine[Any, Any, None], bucket: set[asyncio.Task[None]]) -> None:
        task = asyncio.create_task(coro)
        bucket.add(task)
        task.add_done_callback(bucket.discard)

    async def _on_trace(self, notification: TraceNotification) -> None:
        """Dedup gate for the trace stream.

        The check-and-mark runs before any await, so two deliveries of one
        hash can never both pass.
        """
        self._stats.traces_received += 1
        self._stats.last_trace_time = datetime.now(UTC)

        if self._seen.mark_and_check(notification.hash):
            self._stats.duplicates_dropped += 1
            logger.debug("Dropping duplicate trace %s", notification.hash)
            return

        self._spawn(self._process_trace(notification.hash), self._inflight)

    async def _process_trace(self, trace_hash: str) -> None:
        """Run one event through extraction, enrichment, filters and dispatch."""
        if not self._tonapi:
            return

        try:
            event = await self._tonapi.get_event(trace_hash)
        except TonApiError as e:
            self._stats.events_dropped += 1
            logger.warning("Dropping trace %s: event fetch failed: %s", trace_hash, e)
            return

        watch = self._settings.watch
        listings = parse_listings(event, set(watch.market_accounts), watch.market_labels)
        if not listings:
            logger.debug("No listings in trace %s", trace_hash)
            return
        self._stats.listings_found += len(listings)

        filters = await self._backend.get_filters() if self._backend else None

        for listing in listings:
            try:
                await self._process_listing(listing, filters)
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Error processing listing %s: %s", listing.nft_address, e)

    async def _process_listing(self, listing: Listing, filters: Filters | None) -> None:
        if not self._enricher or not self._formatter:
            return

        listing = await self._enricher.enrich(listing)

        collection = self._settings.watch.gifts_collection
        if collection and listing.collection_address and listing.collection_address != collection:
            logger.debug(
                "Skipping %s: collection %s is not watched",
                listing.nft_address,
                listing.collection_address,
            )
            return

        if listing.model:
            self._report_seen_model(listing.model)

        if not matches(listing, filters):
            logger.debug("Listing %s does not match filters", listing.nft_address)
            return
        self._stats.listings_matched += 1

        recent_sales = await self._enricher.recent_sales(listing.model) if listing.model else ()
        alert = self._formatter.format(listing, recent_sales=recent_sales)
        await self._dispatch(alert)

    def _report_seen_model(self, model: str) -> None:
        if self._backend:
            self._spawn(self._post_seen_model(model), self._background)

    async def _post_seen_model(self, model: str) -> None:
        if not self._backend:
            return
        try:
            await self._backend.post_seen_model(model)
        except BackendClientError as e:
            logger.debug("Seen-model report failed for %r: %s", model, e)

    async def _dispatch(self, alert: FormattedAlert) -> None:
        if self._dry_run or not self._dispatcher:
            logger.info("[DRY RUN] Would send alert: nft=%s, low_budget=%s", alert.nft_address, alert.is_low_budget)
            return

        try:
            await self._dispatcher.send(alert)
        except AlertDispatchError as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Alert dispatch failed: %s", e)
            return

        self._stats.alerts_sent += 1

    async def send_test_alert(self) -> FormattedAlert:
        """Send one alert built from the ``TEST_*`` settings.

        Components are created for the call and released afterwards when the
        pipeline is not running. Delivery errors propagate.

        Raises:
            ValueError: If TEST_NFT_ADDRESS is not set.
            AlertDispatchError: If the alert could not be delivered.
        """
        test = self._settings.test_overrides
        if not test.nft_address:
            raise ValueError("TEST_NFT_ADDRESS is required when TEST_ALERT=1")

        owns_components = self._enricher is None
        try:
            if owns_components:
                await self._initialize_components(with_stream=False)
            if self._enricher is None or self._formatter is None:
                raise RuntimeError("Pipeline components are not initialized")
            listing = await self._enricher.enrich(
                Listing(
                    nft_address=test.nft_address,
                    price_ton=test.price_ton,
                    market_label=test.market_label or "Fragment",
                )
            )
            alert = self._formatter.format(listing, buy_url=test.buy_url or None)
            if self._dry_run or not self._dispatcher:
                logger.info("[DRY RUN] Would send test alert for %s", alert.nft_address)
            else:
                await self._dispatcher.send(alert)
                logger.info("Test alert sent for %s", alert.nft_address)
            return alert
        finally:
            if owns_components:
                await self._cleanup()
                self._enricher = None
                self._formatter = None
                self._trace_stream = None

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
