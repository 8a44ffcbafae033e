"""Notification dispatcher fanning alert batches out to channels.

Each dispatch spawns one task per channel and returns immediately; the sync
pass does not wait for deliveries before purging records. Channel failures
are isolated from each other and only surface through the per-channel
outcome board and the ``notify_fail`` gauge (last attempt wins).
"""

import asyncio
import logging
import threading
from collections.abc import Sequence

from src.alerts.channels import NotificationChannel
from src.alerts.errors import DeliveryError
from src.alerts.schemas import AlertRecord
from src.observability.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)

ChannelKey = tuple[str, str]


class NotificationDispatcher:
    """Orchestrates alert delivery across notification channels."""

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._channels = list(channels)
        self._metrics = metrics or get_metrics()

        # (channel_type, name) -> last delivery succeeded; read by the metrics thread
        self._outcomes: dict[ChannelKey, bool] = {}
        self._outcomes_lock = threading.Lock()

        # Strong references so in-flight deliveries are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels

    @property
    def in_flight(self) -> int:
        """Number of channel deliveries still running."""
        return len(self._tasks)

    def outcomes(self) -> dict[ChannelKey, bool]:
        """Snapshot of the last delivery outcome per (type, name)."""
        with self._outcomes_lock:
            return dict(self._outcomes)

    def dispatch(self, alerts: Sequence[AlertRecord]) -> list[asyncio.Task]:
        """Start delivering ``alerts`` to every channel without waiting.

        Must be called from a running event loop.

        Args:
            alerts: Alerts to deliver; every channel gets the full batch.

        Returns:
            The spawned delivery tasks, one per channel.
        """
        if not alerts:
            return []

        batch = tuple(alerts)
        tasks = []
        for channel in self._channels:
            task = asyncio.create_task(
                self._deliver(channel, batch),
                name=f"notify_{channel.channel_type}_{channel.name}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)

        logger.debug(
            "Dispatched %d alerts to %d channels", len(batch), len(tasks),
        )
        return tasks

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight deliveries, e.g. before shutdown."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        if not_done:
            logger.warning(
                "%d channel deliveries still running after drain timeout",
                len(not_done),
            )

    async def _deliver(
        self,
        channel: NotificationChannel,
        alerts: tuple[AlertRecord, ...],
    ) -> bool:
        """Run one channel's delivery and record its outcome."""
        try:
            await channel.notify(alerts)
        except DeliveryError as e:
            logger.error(
                "Channel %s/%s failed to deliver %d alerts: %s",
                channel.channel_type, channel.name, len(alerts), e,
            )
            self._record(channel, success=False)
            return False
        except Exception:
            logger.exception(
                "Unexpected error delivering %d alerts to %s/%s",
                len(alerts), channel.channel_type, channel.name,
            )
            self._record(channel, success=False)
            return False

        logger.debug(
            "Delivered %d alerts to %s/%s",
            len(alerts), channel.channel_type, channel.name,
        )
        self._record(channel, success=True)
        return True

    def _record(self, channel: NotificationChannel, success: bool) -> None:
        key = (channel.channel_type, channel.name)
        with self._outcomes_lock:
            self._outcomes[key] = success
        self._metrics.set_notify_failure(
            channel.channel_type, channel.name, failed=not success,
        )
