"""Evidence package assembly for filed chargebacks.

Status moves generating -> completed | failed. A failed package can be
retried; a completed package is never rebuilt. Generation never touches the
PostAuthOrder itself.
"""

from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from src.db.store import OrderStore
from src.domains.monitoring.models import PostAuthOrder, PostAuthStatus
from src.domains.risk.models import PreAuthOrder
from src.integrations.delivery import DeliveryRecordSource, EmptyDeliveryRecordSource
from src.shared.exceptions import IllegalTransition, OrderNotFound
from src.shared.locks import KeyedLock

from .models import (
    ChargebackSummary,
    DeliveryRecords,
    EvidencePackage,
    EvidenceStatus,
    FraudAnalysis,
    ProductDetails,
    TransactionDetails,
)

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def assemble_package(
    package: EvidencePackage,
    order: PostAuthOrder,
    records: DeliveryRecords,
    pre_auth: PreAuthOrder | None,
    generated_at: datetime,
) -> EvidencePackage:
    """Fill every section of a package from its sources. Pure."""
    fraud_analysis = None
    if pre_auth is not None:
        assessment = pre_auth.assessment
        fraud_analysis = FraudAnalysis(
            risk_score=assessment.composite_score,
            risk_level=assessment.risk_level.value,
            decision=assessment.decision.value,
            confidence=assessment.confidence,
            signals=[
                {
                    "name": s.name.value,
                    "status": s.status.value,
                    "score": s.score,
                    "details": s.details,
                }
                for s in assessment.signals
            ],
        )

    return package.model_copy(
        update={
            "status": EvidenceStatus.COMPLETED,
            "transaction_details": TransactionDetails(
                order_id=order.order_id,
                amount=order.amount,
                date=pre_auth.created_at if pre_auth else order.created_at,
                customer_email=order.email,
                customer_ip=order.ip_address,
                card_bin=order.card_bin,
                payment_method=records.payment_method,
            ),
            "proof_of_delivery": records.tracking,
            "customer_communication": sorted(records.messages, key=lambda m: m.date),
            "product_details": records.product or ProductDetails(name=f"Order {order.order_id}"),
            "terms_acceptance": records.terms_acceptance,
            "fraud_analysis": fraud_analysis,
            "chargeback": ChargebackSummary(
                reason=order.chargeback_reason,
                amount=order.chargeback_amount,
                filed_at=order.chargeback_filed_at,
            ),
            "error": None,
            "generated_at": generated_at,
        }
    )


class EvidencePackageBuilder:
    def __init__(
        self,
        store: OrderStore,
        records: DeliveryRecordSource | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._records = records or EmptyDeliveryRecordSource()
        self._locks = locks or KeyedLock()
        self._clock = clock

    async def generate(self, order: PostAuthOrder) -> EvidencePackage:
        """Build (or finish building) the package for a disputed order."""
        if order.status != PostAuthStatus.CHARGEBACKS_FILED:
            raise IllegalTransition(
                "evidence package", order.status.value, "generating", "no chargeback filed"
            )

        async with self._locks.hold(f"evidence:{order.order_id}"):
            existing = await self._store.get_evidence_package(order.order_id)
            if existing is not None and existing.status == EvidenceStatus.COMPLETED:
                logger.info("evidence_package_already_completed", order_id=order.order_id)
                return existing

            now = self._clock()
            package = existing or EvidencePackage(
                order_id=order.order_id, merchant_id=order.merchant_id, created_at=now
            )
            package = package.model_copy(
                update={
                    "status": EvidenceStatus.GENERATING,
                    "attempts": package.attempts + 1,
                    "error": None,
                }
            )
            await self._store.save_evidence_package(package)

            try:
                records = await self._records.fetch_records(order.order_id)
                pre_auth = await self._store.get_pre_auth(order.order_id)
                package = assemble_package(package, order, records, pre_auth, self._clock())
            except Exception as exc:
                logger.exception(
                    "evidence_generation_failed",
                    order_id=order.order_id,
                    attempt=package.attempts,
                )
                package = package.model_copy(
                    update={"status": EvidenceStatus.FAILED, "error": str(exc)}
                )

            await self._store.save_evidence_package(package)

        logger.info(
            "evidence_package_generated",
            order_id=order.order_id,
            status=package.status.value,
            attempt=package.attempts,
        )
        return package

    async def retry(self, order_id: str) -> EvidencePackage:
        order = await self._store.get_post_auth(order_id)
        if order is None:
            raise OrderNotFound(order_id, "post-auth order")
        return await self.generate(order)

    async def get(self, order_id: str) -> EvidencePackage:
        package = await self._store.get_evidence_package(order_id)
        if package is None:
            raise OrderNotFound(order_id, "evidence package")
        return package
