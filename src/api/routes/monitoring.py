"""Post-auth monitoring endpoints: monitored orders, disputes, evidence packages."""

from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel

from src.api.dependencies import get_evidence_builder, get_scheduler
from src.domains.evidence.builder import EvidencePackageBuilder
from src.domains.monitoring.models import (
    DisputeEvent,
    EvidenceNote,
    MonitoredOrderFilter,
    PostAuthStatus,
)
from src.domains.monitoring.scheduler import MonitoringScheduler

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/monitoring", tags=["monitoring"])


class EvidenceNoteRequest(BaseModel):
    evidence_type: str
    description: str
    url: str | None = None


@router.get("/orders")
async def list_orders(
    merchant_id: str | None = Query(default=None),
    status: PostAuthStatus | None = Query(default=None),
    min_days: int | None = Query(default=None, ge=0),
    max_days: int | None = Query(default=None, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    scheduler: MonitoringScheduler = Depends(get_scheduler),  # noqa: B008
) -> dict:
    orders = await scheduler.get_monitored_orders(
        MonitoredOrderFilter(
            merchant_id=merchant_id,
            status=status,
            min_days=min_days,
            max_days=max_days,
            limit=limit,
            offset=offset,
        )
    )
    return {
        "items": [o.model_dump(mode="json") for o in orders],
        "total": len(orders),
        "limit": limit,
        "offset": offset,
    }


@router.post("/run-now")
async def run_now(
    merchant_id: str = Query(default="default"),
    scheduler: MonitoringScheduler = Depends(get_scheduler),  # noqa: B008
) -> dict:
    result = await scheduler.run_now(merchant_id)
    return result.model_dump(mode="json")


@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    scheduler: MonitoringScheduler = Depends(get_scheduler),  # noqa: B008
) -> dict:
    order = await scheduler.get_order(order_id)
    return order.model_dump(mode="json")


@router.post("/orders/{order_id}/chargeback")
async def file_chargeback(
    order_id: str,
    dispute: DisputeEvent,
    scheduler: MonitoringScheduler = Depends(get_scheduler),  # noqa: B008
) -> dict:
    order = await scheduler.mark_chargeback_filed(order_id, dispute)
    return order.model_dump(mode="json")


@router.post("/orders/{order_id}/evidence")
async def add_evidence(
    order_id: str,
    request: EvidenceNoteRequest,
    scheduler: MonitoringScheduler = Depends(get_scheduler),  # noqa: B008
) -> dict:
    note = EvidenceNote(
        evidence_type=request.evidence_type,
        description=request.description,
        url=request.url,
        added_at=datetime.now(UTC),
    )
    order = await scheduler.add_evidence(order_id, note)
    return order.model_dump(mode="json")


@router.get("/orders/{order_id}/evidence-package")
async def get_evidence_package(
    order_id: str,
    builder: EvidencePackageBuilder = Depends(get_evidence_builder),  # noqa: B008
) -> dict:
    package = await builder.get(order_id)
    return package.to_dict()


@router.get("/orders/{order_id}/evidence-package.csv")
async def export_evidence_package_csv(
    order_id: str,
    builder: EvidencePackageBuilder = Depends(get_evidence_builder),  # noqa: B008
) -> Response:
    package = await builder.get(order_id)
    return Response(
        content=package.to_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="evidence_{order_id}.csv"'},
    )


@router.post("/orders/{order_id}/evidence-package/retry")
async def retry_evidence_package(
    order_id: str,
    builder: EvidencePackageBuilder = Depends(get_evidence_builder),  # noqa: B008
) -> dict:
    package = await builder.retry(order_id)
    return package.to_dict()
