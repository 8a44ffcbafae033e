"""
Alert store access over the Elasticsearch REST API.

Provides the two store collaborators of a sync pass: a single-page search
that returns decoded AlertRecords, and a delete-by-ids request scoped to
the same index. Uses one pooled httpx client for the agent's lifetime.
"""

import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any

import httpx

from src.alerts.errors import AlertDecodeError, StoreError
from src.alerts.schemas import AlertRecord, parse_hits
from src.config.settings import Settings

logger = logging.getLogger(__name__)

# Upper bound on hits per search; anything beyond is not seen this pass
MAX_FETCH_SIZE = 10_000


def _status(resp: httpx.Response) -> str:
    return f"{resp.status_code} {resp.reason_phrase}".strip()


class AlertStore:
    """
    Async client for the alerts index.

    Usage:
        store = AlertStore(host="http://localhost:9200", index="alerts")
        await store.connect()

        records = await store.fetch()
        await store.delete(["doc-1", "doc-2"])

        await store.close()
    """

    def __init__(
        self,
        host: str,
        index: str,
        username: str | None = None,
        password: str | None = None,
        fetch_size: int = MAX_FETCH_SIZE,
        request_timeout: float | None = 60.0,
    ):
        """
        Initialize the store client.

        Args:
            host: Base URL of the cluster
            index: Alerts index name
            username: Basic auth user (optional)
            password: Basic auth password (optional)
            fetch_size: Hits requested per search
            request_timeout: Per-request timeout in seconds
        """
        self._host = host.rstrip("/")
        self._index = index
        self._auth = (username, password or "") if username else None
        self._fetch_size = min(fetch_size, MAX_FETCH_SIZE)
        self._request_timeout = request_timeout

        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertStore":
        return cls(
            host=settings.es_host,
            index=settings.alerts_index,
            username=settings.es_username,
            password=settings.es_password,
            fetch_size=settings.fetch_size,
        )

    @property
    def index(self) -> str:
        return self._index

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._host,
            auth=self._auth,
            timeout=self._request_timeout,
        )
        logger.info(f"Alert store client ready ({self._host}, index: {self._index})")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Alert store client closed")

    async def __aenter__(self) -> "AlertStore":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        """Get HTTP client, raising if not connected."""
        if self._client is None:
            raise RuntimeError("Alert store not connected. Call connect() first.")
        return self._client

    def search_payload(self) -> dict[str, Any]:
        return {"_source": True, "size": self._fetch_size}

    @staticmethod
    def delete_payload(record_ids: Sequence[str]) -> dict[str, Any]:
        return {"query": {"ids": {"values": list(record_ids)}}}

    async def fetch(self) -> list[AlertRecord]:
        """
        Fetch one page of alert records.

        Returns:
            Decoded records in store order

        Raises:
            StoreError: On transport failure or a non-2xx status
            AlertDecodeError: If the body or any hit cannot be decoded
        """
        resp = await self._post(
            f"/{self._index}/_search",
            self.search_payload(),
            operation="search",
            params={"error_trace": "true"},
        )

        try:
            body = resp.json()
        except ValueError as e:
            raise AlertDecodeError(f"search response is not JSON: {e}") from e

        if not isinstance(body, dict):
            raise AlertDecodeError(
                f"search response must be an object, got {type(body).__name__}"
            )
        envelope = body.get("hits") or {}
        if not isinstance(envelope, dict):
            raise AlertDecodeError(
                f"search hits envelope must be an object, got {type(envelope).__name__}"
            )
        hits = envelope.get("hits") or []
        if not isinstance(hits, list):
            raise AlertDecodeError(f"search hits must be a list, got {type(hits).__name__}")

        records = parse_hits(hits)
        logger.debug(f"Fetched {len(records)} alert records from {self._index}")
        return records

    async def delete(self, record_ids: Sequence[str]) -> None:
        """
        Delete records by id.

        Args:
            record_ids: Store ids to delete

        Raises:
            StoreError: On transport failure or a non-2xx status
        """
        if not record_ids:
            return
        await self._post(
            f"/{self._index}/_delete_by_query",
            self.delete_payload(record_ids),
            operation="delete",
        )
        logger.debug(f"Deleted {len(record_ids)} alert records from {self._index}")

    async def health_check(self) -> bool:
        """Check that the cluster answers."""
        try:
            resp = await self.client.get("/")
        except httpx.HTTPError as e:
            logger.warning(f"Alert store health check failed: {e}")
            return False
        return resp.is_success

    async def _post(
        self,
        path: str,
        payload: dict[str, Any],
        operation: str,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self.client.post(path, json=payload, params=params)
        except httpx.HTTPError as e:
            raise StoreError(str(e) or type(e).__name__, operation) from e

        if resp.is_error:
            raise StoreError(_status(resp), operation)
        return resp
