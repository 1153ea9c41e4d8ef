"""Pre-authorization endpoints: order scans, manual review, hand-off to monitoring."""

import structlog
from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_gate
from src.domains.risk.gate import PreAuthGate
from src.domains.risk.models import OrderContext, PreAuthOrder, ReviewAction

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/preauth", tags=["preauth"])


def _serialize_order(order: PreAuthOrder) -> dict:
    assessment = order.assessment
    return {
        "order_id": order.order_id,
        "merchant_id": order.merchant_id,
        "status": order.status.value,
        "decision": assessment.decision.value,
        "risk_level": assessment.risk_level.value,
        "composite_score": assessment.composite_score,
        "confidence": assessment.confidence,
        "reduced_confidence": assessment.reduced_confidence,
        "hard_blocks": [b.value for b in assessment.hard_blocks],
        "review_reasons": [r.value for r in assessment.review_reasons],
        "reason": assessment.reason,
        "chargeback_risk": order.chargeback_risk,
        "order_amount": order.order_amount,
        "signals": [s.model_dump(mode="json") for s in assessment.signals],
        "created_at": order.created_at.isoformat(),
        "expires_at": order.expires_at.isoformat(),
        "reviewed_by": order.reviewed_by,
        "reviewed_at": order.reviewed_at.isoformat() if order.reviewed_at else None,
        "review_notes": order.review_notes,
        "post_auth_order_id": order.post_auth_order_id,
    }


@router.post("/check")
async def check_order(
    context: OrderContext,
    gate: PreAuthGate = Depends(get_gate),  # noqa: B008
) -> dict:
    result = await gate.run_pre_auth_check(context)
    return {**_serialize_order(result.order), "created": result.created}


@router.get("/pending")
async def list_pending(
    merchant_id: str | None = Query(default=None),
    gate: PreAuthGate = Depends(get_gate),  # noqa: B008
) -> dict:
    orders = await gate.list_pending(merchant_id)
    return {"items": [_serialize_order(o) for o in orders], "total": len(orders)}


@router.post("/expire")
async def expire_stale(gate: PreAuthGate = Depends(get_gate)) -> dict:  # noqa: B008
    expired = await gate.expire_stale()
    return {"expired": [o.order_id for o in expired], "count": len(expired)}


@router.get("/{order_id}")
async def get_order(order_id: str, gate: PreAuthGate = Depends(get_gate)) -> dict:  # noqa: B008
    return _serialize_order(await gate.get(order_id))


@router.post("/{order_id}/approve")
async def approve_order(
    order_id: str,
    action: ReviewAction,
    gate: PreAuthGate = Depends(get_gate),  # noqa: B008
) -> dict:
    order = await gate.approve(order_id, action.reviewer, action.notes)
    return _serialize_order(order)


@router.post("/{order_id}/decline")
async def decline_order(
    order_id: str,
    action: ReviewAction,
    gate: PreAuthGate = Depends(get_gate),  # noqa: B008
) -> dict:
    order = await gate.decline(order_id, action.reviewer, action.notes)
    return _serialize_order(order)


@router.post("/{order_id}/move-to-monitoring")
async def move_to_monitoring(
    order_id: str,
    gate: PreAuthGate = Depends(get_gate),  # noqa: B008
) -> dict:
    post_auth = await gate.move_to_monitoring(order_id)
    return post_auth.model_dump(mode="json")
