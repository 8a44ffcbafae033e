"""
Sync service - the periodic fetch, reconcile, dispatch, delete loop.

Each tick runs one pass against the alert store:

1. Fetch one page of alert records (bounded by the fetch timeout)
2. Reconcile duplicates into alerts to notify and records to delete
3. Start delivery to every channel (not awaited)
4. Delete the superseded records

Passes never overlap. A failing pass is logged and the next tick starts
fresh; nothing short of stop() ends the loop. Because deletion does not
wait for delivery, a delete failure after dispatch means the same alerts
are sent again on a later pass.
"""

import asyncio
import enum
import time
from dataclasses import dataclass, field

import structlog

from src.alerts.channels import build_channels
from src.alerts.dispatcher import NotificationDispatcher
from src.alerts.errors import StoreError
from src.alerts.reconciler import reconcile
from src.alerts.store import AlertStore
from src.config.settings import Settings, get_settings
from src.observability.logging import bind_context, clear_context
from src.observability.metrics import MetricsCollector, get_metrics

logger = structlog.get_logger(__name__)

# Seconds to wait for in-flight deliveries on shutdown
DRAIN_TIMEOUT_SECONDS = 30.0


class CycleState(enum.Enum):
    """Sync loop states."""
    IDLE = "idle"
    PROCESSING = "processing"


@dataclass
class PassReport:
    """What one sync pass did."""

    fetched: int = 0
    notified: int = 0
    deleted: int = 0
    pending: int = 0
    tasks: list[asyncio.Task] = field(default_factory=list, repr=False)


class SyncService:
    """
    Service that keeps the alert store and notification channels in sync.

    Usage:
        service = SyncService.from_settings(get_settings())
        await service.start()  # Runs until stopped
    """

    def __init__(
        self,
        store: AlertStore,
        dispatcher: NotificationDispatcher,
        interval: float | None = None,
        fetch_timeout: float | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize sync service.

        Args:
            store: Alert store collaborator
            dispatcher: Channel fan-out
            interval: Seconds between passes (default from settings)
            fetch_timeout: Seconds allowed for fetch and decode (default from settings)
            metrics: Metrics collector (default global)
        """
        if interval is None or fetch_timeout is None:
            settings = get_settings()
            if interval is None:
                interval = settings.sync_interval_seconds
            if fetch_timeout is None:
                fetch_timeout = settings.fetch_timeout_seconds

        self._store = store
        self._dispatcher = dispatcher
        self._interval = interval
        self._fetch_timeout = fetch_timeout
        self._metrics = metrics or get_metrics()

        self._state = CycleState.IDLE
        self._running = False
        self._stop_event = asyncio.Event()
        self._passes = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        metrics: MetricsCollector | None = None,
    ) -> "SyncService":
        """
        Build the service and its collaborators from configuration.

        Raises:
            UnsupportedChannelError: If a notifier type is unknown
        """
        metrics = metrics or get_metrics()
        channels = build_channels(settings.notifiers)
        dispatcher = NotificationDispatcher(channels, metrics=metrics)

        logger.info(
            "Sync service configured",
            index=settings.alerts_index,
            interval_seconds=settings.sync_interval_seconds,
            channels=[f"{c.channel_type}/{c.name}" for c in channels],
        )

        return cls(
            store=AlertStore.from_settings(settings),
            dispatcher=dispatcher,
            interval=settings.sync_interval_seconds,
            fetch_timeout=settings.fetch_timeout_seconds,
            metrics=metrics,
        )

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._running

    @property
    def passes(self) -> int:
        """Number of passes started so far."""
        return self._passes

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def store(self) -> AlertStore:
        return self._store

    async def start(self) -> None:
        """
        Start the sync loop.

        Runs until stop() is called. The first pass runs one interval
        after start.
        """
        self._running = True
        self._stop_event.clear()

        logger.info("Starting sync service", interval_seconds=self._interval)

        await self._store.connect()

        try:
            while self._running:
                if not await self._wait_for_tick():
                    break
                await self._tick()
        except asyncio.CancelledError:
            logger.info("Sync service cancelled")
        finally:
            await self._cleanup()

    async def stop(self) -> None:
        """Stop the sync loop after the current pass."""
        logger.info("Stopping sync service")
        self._running = False
        self._stop_event.set()

    async def _wait_for_tick(self) -> bool:
        """Stay idle for one interval. Returns False if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
        except asyncio.TimeoutError:
            return True
        return False

    async def _tick(self) -> None:
        """Run one pass, logging and counting any failure."""
        self._passes += 1
        bind_context(sync_pass=self._passes)
        self._state = CycleState.PROCESSING
        start_time = time.monotonic()

        logger.info("Started new iteration")

        try:
            report = await self.run_once()
        except Exception as e:
            elapsed = time.monotonic() - start_time
            self._metrics.record_pass(success=False, latency=elapsed)
            logger.error(
                "Sync pass failed",
                error=str(e),
                error_type=type(e).__name__,
                elapsed_seconds=round(elapsed, 2),
            )
        else:
            elapsed = time.monotonic() - start_time
            self._metrics.record_pass(success=True, latency=elapsed)
            logger.info(
                "Sync pass completed",
                fetched=report.fetched,
                notified=report.notified,
                deleted=report.deleted,
                pending=report.pending,
                elapsed_seconds=round(elapsed, 2),
            )
        finally:
            self._state = CycleState.IDLE
            clear_context()

    async def run_once(self) -> PassReport:
        """
        Run one fetch, reconcile, dispatch, delete pass.

        The store must already be connected.

        Returns:
            PassReport with counts and the spawned delivery tasks

        Raises:
            StoreError: If the fetch times out or the store rejects a request
            AlertDecodeError: If the fetched batch cannot be decoded
        """
        try:
            records = await asyncio.wait_for(
                self._store.fetch(), timeout=self._fetch_timeout,
            )
        except asyncio.TimeoutError:
            raise StoreError(
                f"fetch timed out after {self._fetch_timeout}s", "search",
            ) from None

        result = reconcile(records)
        self._metrics.record_reconciliation(
            fetched=len(records),
            notified=len(result.to_notify),
            pending=len(result.pending),
        )

        report = PassReport(
            fetched=len(records),
            notified=len(result.to_notify),
            pending=len(result.pending),
        )

        if result.to_notify:
            report.tasks = self._dispatcher.dispatch(result.to_notify)

        if result.to_delete:
            await self._store.delete(result.to_delete)
            self._metrics.record_deleted(len(result.to_delete))
            report.deleted = len(result.to_delete)

        return report

    async def _cleanup(self) -> None:
        """Wait for deliveries and release the store client."""
        await self._dispatcher.drain(timeout=DRAIN_TIMEOUT_SECONDS)
        await self._store.close()
        self._running = False
        logger.info("Sync service cleaned up")
