"""Shipping and customer-communication records for evidence packages."""

from typing import Protocol

import httpx

from src.domains.evidence.models import DeliveryRecords


class DeliveryRecordSource(Protocol):
    async def fetch_records(self, order_id: str) -> DeliveryRecords: ...


class EmptyDeliveryRecordSource:
    async def fetch_records(self, order_id: str) -> DeliveryRecords:
        return DeliveryRecords()


class HttpDeliveryRecordSource:
    """GET {base_url}/orders/{order_id}/records; 404 means nothing recorded."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_seconds)

    async def fetch_records(self, order_id: str) -> DeliveryRecords:
        response = await self._client.get(f"/orders/{order_id}/records")
        if response.status_code == 404:
            return DeliveryRecords()
        response.raise_for_status()
        return DeliveryRecords.model_validate(response.json())

    async def aclose(self) -> None:
        await self._client.aclose()
