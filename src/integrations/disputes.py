"""Dispute feed collaborator, polled once per order per sweep."""

from typing import Protocol

import httpx
import structlog
from pydantic import ValidationError

from src.domains.monitoring.models import DisputeEvent

logger = structlog.get_logger()


class DisputeFeed(Protocol):
    async def fetch_dispute(self, order_id: str) -> DisputeEvent | None: ...


class NoDisputeFeed:
    """Used when disputes only arrive through the chargeback webhook."""

    async def fetch_dispute(self, order_id: str) -> DisputeEvent | None:
        return None


class HttpDisputeFeed:
    """GET {base_url}/disputes/{order_id}; 404 means no dispute on file."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def fetch_dispute(self, order_id: str) -> DisputeEvent | None:
        response = await self._client.get(f"/disputes/{order_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        try:
            return DisputeEvent.model_validate(response.json())
        except ValidationError:
            logger.warning("dispute_payload_invalid", order_id=order_id)
            raise

    async def aclose(self) -> None:
        await self._client.aclose()
