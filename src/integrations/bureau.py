"""Identity/credit bureau collaborator."""

from typing import Protocol

import httpx
import structlog
from pydantic import ValidationError

from src.domains.risk.models import BureauReport, OrderContext
from src.shared.exceptions import DetectorUnavailable

logger = structlog.get_logger()


class BureauClient(Protocol):
    async def fetch_report(self, context: OrderContext) -> BureauReport: ...


class HttpBureauClient:
    """Posts the customer identity to a bureau endpoint and parses the report."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds, headers=headers
        )

    async def fetch_report(self, context: OrderContext) -> BureauReport:
        payload = {
            "email": context.customer_email,
            "phone": context.customer_phone,
            "address": context.billing_address.model_dump() if context.billing_address else None,
        }
        try:
            response = await self._client.post("/reports", json=payload)
            response.raise_for_status()
            return BureauReport.model_validate(response.json())
        except (httpx.HTTPError, ValidationError, ValueError) as exc:
            logger.warning("bureau_lookup_failed", order_id=context.order_id, error=str(exc))
            raise DetectorUnavailable("bureau", str(exc)) from exc

    async def aclose(self) -> None:
        await self._client.aclose()
