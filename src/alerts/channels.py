"""Notification channel implementations for alert delivery.

Provides an ABC for notification channels plus the webhook implementation
and a factory that builds channels from notifier configuration. A channel
delivers a whole alert batch or nothing: every attempt resends the full
batch, and exhausting the configured attempts raises DeliveryError.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx

from src.alerts.errors import DeliveryError, UnsupportedChannelError
from src.alerts.schemas import AlertRecord
from src.config.settings import NotifierConfig

logger = logging.getLogger(__name__)

# Pause between delivery attempts, in seconds
RETRY_DELAY_SECONDS = 1.0


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def channel_type(self) -> str:
        """Channel implementation (e.g. 'webhook'), used as a metrics label."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Configured name of this channel instance."""

    @abstractmethod
    async def notify(self, alerts: Sequence[AlertRecord]) -> None:
        """Deliver a batch of alerts through this channel.

        Args:
            alerts: Alerts to deliver as one unit.

        Raises:
            DeliveryError: If no attempt succeeded.
        """


class WebhookChannel(NotificationChannel):
    """Delivers an alert batch as one JSON POST to an HTTP endpoint.

    Creates a new ``httpx.AsyncClient`` per batch, shared by its attempts.
    Only ``success_status`` counts as delivered; any other status, transport
    error, bad URL or unserializable payload is logged and retried after a
    fixed pause, up to ``retries`` attempts in total.
    """

    def __init__(
        self,
        name: str,
        endpoint: str,
        headers: dict[str, str] | None = None,
        retries: int = 3,
        retry_delay: float = RETRY_DELAY_SECONDS,
        timeout: float | None = None,
        success_status: int = 200,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self._name = name
        self._endpoint = endpoint
        self._headers = headers or {}
        self._retries = retries
        self._retry_delay = retry_delay
        self._timeout = timeout
        self._success_status = success_status
        self._transport = transport

    @property
    def channel_type(self) -> str:
        return "webhook"

    @property
    def name(self) -> str:
        return self._name

    @property
    def endpoint(self) -> str:
        return self._endpoint

    @property
    def retries(self) -> int:
        return self._retries

    def _build_payload(self, alerts: Sequence[AlertRecord]) -> dict[str, Any]:
        return {"alerts": [alert.to_dict() for alert in alerts]}

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)
        return headers

    async def notify(self, alerts: Sequence[AlertRecord]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            for attempt in range(1, self._retries + 1):
                if await self._attempt(client, alerts, attempt):
                    if attempt > 1:
                        logger.info(
                            "Webhook %s delivered %d alerts on attempt %d",
                            self._name, len(alerts), attempt,
                        )
                    return

                if attempt < self._retries:
                    await asyncio.sleep(self._retry_delay)

        logger.error(
            "Webhook %s gave up after %d attempts (url: %s)",
            self._name, self._retries, self._endpoint,
        )
        raise DeliveryError(self._name, self._endpoint, attempts=self._retries)

    async def _attempt(
        self,
        client: httpx.AsyncClient,
        alerts: Sequence[AlertRecord],
        attempt: int,
    ) -> bool:
        """Make one delivery attempt. Returns True on the success status."""
        try:
            body = json.dumps(self._build_payload(alerts))
        except (TypeError, ValueError) as e:
            logger.error(
                "Webhook %s could not serialize %d alerts (attempt %d): %s",
                self._name, len(alerts), attempt, e,
            )
            return False

        try:
            request = client.build_request(
                "POST",
                self._endpoint,
                content=body,
                headers=self._build_headers(),
            )
        except (httpx.InvalidURL, UnicodeEncodeError, TypeError, ValueError) as e:
            logger.error(
                "Webhook %s could not build request for %s (attempt %d): %s",
                self._name, self._endpoint, attempt, e,
            )
            return False

        try:
            resp = await client.send(request)
        except httpx.HTTPError as e:
            logger.error(
                "Webhook %s request to %s failed (attempt %d): %s",
                self._name, self._endpoint, attempt, e,
            )
            return False

        if resp.status_code != self._success_status:
            logger.error(
                "Webhook %s returned %d code (attempt %d)",
                self._name, resp.status_code, attempt,
            )
            return False

        return True


def build_channel(config: NotifierConfig) -> NotificationChannel:
    """Create a channel from its notifier configuration.

    Raises:
        UnsupportedChannelError: If the notifier type is unknown.
    """
    if config.type == "webhook":
        return WebhookChannel(
            name=config.name,
            endpoint=config.endpoint or "",
            headers=dict(config.headers),
            retries=config.retries,
        )
    raise UnsupportedChannelError(config.type)


def build_channels(configs: Sequence[NotifierConfig]) -> list[NotificationChannel]:
    """Create every configured channel, failing on the first unsupported type."""
    return [build_channel(config) for config in configs]
