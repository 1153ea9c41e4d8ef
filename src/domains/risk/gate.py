"""Pre-auth gate: scan an order, persist the assessment, gate fulfillment.

Pipeline per order: validate -> history -> detectors -> aggregate ->
hard blocks / review reasons -> decision -> persist -> alert.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from src.db.store import OrderStore
from src.domains.monitoring.models import PostAuthOrder
from src.shared.alerts import AlertDispatcher, AlertEvent, AlertType
from src.shared.exceptions import (
    DuplicateTransitionAttempt,
    IllegalTransition,
    InputValidationError,
    OrderNotFound,
)
from src.shared.locks import KeyedLock
from src.shared.state_machine import transition

from .aggregator import aggregate_signals
from .chargeback import estimate_chargeback_risk
from .config import MerchantPolicy, RiskConfig, default_config, load_policy
from .engine import decide, evaluate_hard_blocks, evaluate_review_reasons
from .history import HistoryComputer
from .lifecycle import DECISION_STATUS, PRE_AUTH_TRANSITIONS
from .models import (
    Decision,
    OrderContext,
    PreAuthOrder,
    PreAuthResult,
    PreAuthStatus,
    RiskAssessment,
    RiskLevel,
)
from .runner import DetectionRun, DetectorRunner

logger = structlog.get_logger()

_ENTITY = "pre-auth order"


def validate_order_context(context: OrderContext) -> None:
    """Reject structurally invalid input before any scoring happens."""
    missing: list[str] = []
    if not context.customer_email or not context.customer_email.strip():
        missing.append("customer_email")
    if context.order_amount is None:
        missing.append("order_amount")
    if not context.order_id or not context.order_id.strip():
        missing.append("order_id")
    if missing:
        raise InputValidationError(f"missing required fields: {', '.join(missing)}", missing)
    if context.order_amount <= 0:
        raise InputValidationError("order_amount must be positive", ["order_amount"])


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PreAuthGate:
    """Synchronous entry point for pre-authorization decisions.

    Scans are serialized per order id, so concurrent submissions of the same
    order produce exactly one assessment; later calls observe it. A scan the
    caller abandons still runs to completion and is persisted.
    """

    def __init__(
        self,
        store: OrderStore,
        runner: DetectorRunner | None = None,
        config: RiskConfig | None = None,
        alerts: AlertDispatcher | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or default_config
        self._runner = runner or DetectorRunner(config=self._config)
        self._alerts = alerts or AlertDispatcher()
        self._locks = locks or KeyedLock()
        self._clock = clock
        self._history = HistoryComputer()
        self._inflight: set[asyncio.Task] = set()

    async def run_pre_auth_check(
        self,
        context: OrderContext,
        policy: MerchantPolicy | None = None,
    ) -> PreAuthResult:
        validate_order_context(context)
        policy = policy or await load_policy(self._store, context.merchant_id)

        task = asyncio.create_task(self._check_once(context, policy))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _check_once(self, context: OrderContext, policy: MerchantPolicy) -> PreAuthResult:
        async with self._locks.hold(f"preauth:{context.order_id}"):
            existing = await self._store.get_pre_auth(context.order_id)
            if existing is not None:
                logger.info(
                    "preauth_existing_assessment_returned",
                    order_id=context.order_id,
                    status=existing.status.value,
                )
                return PreAuthResult(order=existing, created=False)

            now = self._clock()
            history = await self._history.compute(self._store, context, now)
            run = await self._runner.run(context, history)
            assessment = self.assess(run, policy, now)

            status = transition(
                PRE_AUTH_TRANSITIONS,
                PreAuthStatus.CREATED,
                DECISION_STATUS[assessment.decision],
                entity=_ENTITY,
            )
            order = PreAuthOrder(
                order_id=context.order_id,
                merchant_id=context.merchant_id,
                customer_email=context.customer_email.strip().lower(),
                order_amount=context.order_amount,
                context=context,
                assessment=assessment,
                status=status,
                chargeback_risk=estimate_chargeback_risk(
                    run.scan.bureau, assessment.composite_score, self._config.chargeback
                ),
                created_at=now,
                expires_at=now + timedelta(hours=policy.review_timeout_hours),
            )

            if not await self._store.insert_pre_auth(order):
                # Another process persisted this order first
                winner = await self._store.get_pre_auth(context.order_id)
                if winner is None:
                    raise OrderNotFound(context.order_id, _ENTITY)
                return PreAuthResult(order=winner, created=False)

        logger.info(
            "preauth_scan_completed",
            order_id=order.order_id,
            merchant_id=order.merchant_id,
            composite_score=assessment.composite_score,
            confidence=assessment.confidence,
            risk_level=assessment.risk_level.value,
            decision=assessment.decision.value,
            hard_blocks=[b.value for b in assessment.hard_blocks],
        )
        self._notify(order, policy)
        return PreAuthResult(order=order, created=True)

    def assess(self, run: DetectionRun, policy: MerchantPolicy, now: datetime) -> RiskAssessment:
        """Build the immutable assessment for one detection run."""
        aggregate = aggregate_signals(
            run.signals,
            self._config.aggregator,
            run.configured_count,
            high_risk_floor=policy.medium_risk_below,
        )
        hard_blocks = evaluate_hard_blocks(run.scan, policy, self._config)
        review_reasons = evaluate_review_reasons(run.scan, aggregate, policy)
        outcome = decide(aggregate.composite_score, policy, hard_blocks, review_reasons)

        if aggregate.reduced_confidence:
            logger.warning(
                "preauth_reduced_confidence",
                order_id=run.scan.context.order_id,
                available=aggregate.available_count,
                configured=aggregate.configured_count,
            )

        return RiskAssessment(
            signals=tuple(run.signals),
            composite_score=aggregate.composite_score,
            confidence=aggregate.confidence,
            reduced_confidence=aggregate.reduced_confidence,
            hard_fail_applied=aggregate.hard_fail_applied,
            risk_level=outcome.risk_level,
            decision=outcome.decision,
            hard_blocks=tuple(hard_blocks),
            review_reasons=tuple(review_reasons),
            reason="; ".join(outcome.reasons),
            created_at=now,
        )

    def _notify(self, order: PreAuthOrder, policy: MerchantPolicy) -> None:
        assessment = order.assessment
        details = {
            "composite_score": assessment.composite_score,
            "risk_level": assessment.risk_level.value,
            "decision": assessment.decision.value,
            "order_amount": order.order_amount,
            "reason": assessment.reason,
        }
        if policy.notify_on_high_risk and assessment.risk_level in (
            RiskLevel.HIGH,
            RiskLevel.CRITICAL,
        ):
            self._alerts.dispatch(
                AlertEvent(
                    alert_type=AlertType.HIGH_RISK_ORDER,
                    merchant_id=order.merchant_id,
                    order_id=order.order_id,
                    severity="critical" if assessment.risk_level == RiskLevel.CRITICAL else "high",
                    details=details,
                )
            )
        if policy.notify_on_pending_review and assessment.decision == Decision.REVIEW:
            self._alerts.dispatch(
                AlertEvent(
                    alert_type=AlertType.PENDING_REVIEW,
                    merchant_id=order.merchant_id,
                    order_id=order.order_id,
                    severity="medium",
                    details={**details, "expires_at": order.expires_at.isoformat()},
                )
            )

    # Manual review

    async def approve(self, order_id: str, reviewer: str, notes: str | None = None) -> PreAuthOrder:
        return await self._review(order_id, PreAuthStatus.MANUAL_APPROVED, reviewer, notes)

    async def decline(self, order_id: str, reviewer: str, notes: str | None = None) -> PreAuthOrder:
        return await self._review(order_id, PreAuthStatus.MANUAL_DECLINED, reviewer, notes)

    async def _review(
        self,
        order_id: str,
        target: PreAuthStatus,
        reviewer: str,
        notes: str | None,
    ) -> PreAuthOrder:
        async with self._locks.hold(f"preauth:{order_id}"):
            order = await self._require(order_id)
            now = self._clock()

            if order.status == PreAuthStatus.PENDING_REVIEW and now > order.expires_at:
                await self._store.save_pre_auth(
                    order.model_copy(update={"status": PreAuthStatus.EXPIRED})
                )
                logger.info("preauth_review_expired", order_id=order_id)
                raise IllegalTransition(
                    _ENTITY, order.status.value, target.value, "review window elapsed"
                )

            try:
                status = transition(PRE_AUTH_TRANSITIONS, order.status, target, entity=_ENTITY)
            except DuplicateTransitionAttempt:
                logger.info("duplicate_transition_ignored", order_id=order_id, status=target.value)
                return order

            updated = order.model_copy(
                update={
                    "status": status,
                    "reviewed_by": reviewer,
                    "reviewed_at": now,
                    "review_notes": notes,
                }
            )
            await self._store.save_pre_auth(updated)

        logger.info(
            "preauth_reviewed",
            order_id=order_id,
            status=status.value,
            reviewer=reviewer,
        )
        return updated

    async def expire_stale(self, now: datetime | None = None) -> list[PreAuthOrder]:
        """Expire pending reviews whose window has elapsed."""
        now = now or self._clock()
        expired: list[PreAuthOrder] = []
        for candidate in await self._store.list_pre_auth(status=PreAuthStatus.PENDING_REVIEW):
            if now <= candidate.expires_at:
                continue
            async with self._locks.hold(f"preauth:{candidate.order_id}"):
                order = await self._store.get_pre_auth(candidate.order_id)
                if order is None or order.status != PreAuthStatus.PENDING_REVIEW:
                    continue
                status = transition(
                    PRE_AUTH_TRANSITIONS, order.status, PreAuthStatus.EXPIRED, entity=_ENTITY
                )
                updated = order.model_copy(update={"status": status})
                await self._store.save_pre_auth(updated)
                expired.append(updated)

        if expired:
            logger.info("preauth_reviews_expired", count=len(expired))
        return expired

    # Hand-off to monitoring

    async def move_to_monitoring(self, order_id: str) -> PostAuthOrder:
        """Link an approved order to exactly one PostAuthOrder.

        Repeating the move returns the existing PostAuthOrder unchanged.
        """
        async with self._locks.hold(f"preauth:{order_id}"):
            order = await self._require(order_id)
            try:
                status = transition(
                    PRE_AUTH_TRANSITIONS,
                    order.status,
                    PreAuthStatus.MOVED_TO_POST_AUTH,
                    entity=_ENTITY,
                )
            except DuplicateTransitionAttempt:
                existing = await self._store.get_post_auth(order.post_auth_order_id or order_id)
                if existing is None:
                    raise OrderNotFound(order_id, "post-auth order") from None
                logger.info("duplicate_transition_ignored", order_id=order_id, status=order.status.value)
                return existing

            now = self._clock()
            post_auth, created = await self._store.create_post_auth(
                PostAuthOrder.from_pre_auth(order, order.chargeback_risk, now)
            )
            await self._store.save_pre_auth(
                order.model_copy(
                    update={
                        "status": status,
                        "moved_to_post_auth_at": now,
                        "post_auth_order_id": post_auth.order_id,
                    }
                )
            )

        logger.info(
            "preauth_moved_to_monitoring",
            order_id=order_id,
            created=created,
            chargeback_risk=post_auth.chargeback_risk,
        )
        return post_auth

    # Reads

    async def get(self, order_id: str) -> PreAuthOrder:
        return await self._require(order_id)

    async def list_pending(self, merchant_id: str | None = None) -> list[PreAuthOrder]:
        return await self._store.list_pre_auth(
            merchant_id=merchant_id, status=PreAuthStatus.PENDING_REVIEW
        )

    async def _require(self, order_id: str) -> PreAuthOrder:
        order = await self._store.get_pre_auth(order_id)
        if order is None:
            raise OrderNotFound(order_id, _ENTITY)
        return order

    async def drain(self) -> None:
        """Wait for in-flight scans, including ones whose caller went away, and their alerts."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self._alerts.drain()
