"""Merchant policy endpoints."""

import structlog
from fastapi import APIRouter, Body, Depends

from src.api.dependencies import get_store
from src.db.store import OrderStore
from src.domains.risk.config import MerchantPolicy, load_policy

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/policies", tags=["policies"])


@router.get("")
async def list_policies(store: OrderStore = Depends(get_store)) -> dict:  # noqa: B008
    policies = await store.list_policies()
    return {"items": [p.to_dict() for p in policies], "total": len(policies)}


@router.get("/{merchant_id}")
async def get_policy(merchant_id: str, store: OrderStore = Depends(get_store)) -> dict:  # noqa: B008
    policy = await load_policy(store, merchant_id)
    return policy.to_dict()


@router.put("/{merchant_id}")
async def put_policy(
    merchant_id: str,
    body: dict = Body(...),  # noqa: B008
    store: OrderStore = Depends(get_store),  # noqa: B008
) -> dict:
    # Validation happens on construction; a bad policy never reaches the store
    policy = MerchantPolicy.from_dict({**body, "merchant_id": merchant_id})
    await store.save_policy(policy)
    logger.info("merchant_policy_saved", merchant_id=merchant_id)
    return policy.to_dict()
