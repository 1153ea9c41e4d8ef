"""Post-auth monitoring: daily advancement of approved orders toward clearance.

Each order is advanced at most once per merchant-local calendar day. The
``(order_id, day_key)`` claim in the store is the idempotency record; the
per-order lock keeps a single writer on the record while it is advanced.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from src.db.store import OrderStore
from src.domains.evidence.builder import EvidencePackageBuilder
from src.domains.risk.config import MerchantPolicy, load_policy
from src.integrations.disputes import DisputeFeed, NoDisputeFeed
from src.shared.alerts import AlertDispatcher, AlertEvent, AlertType
from src.shared.exceptions import (
    DuplicateTransitionAttempt,
    OrderNotFound,
    SchedulerSweepFailure,
)
from src.shared.locks import KeyedLock
from src.shared.state_machine import transition

from .config import MonitoringConfig, default_config
from .models import (
    MONITORING_WINDOW_DAYS,
    DisputeEvent,
    EvidenceNote,
    MonitoredOrderFilter,
    OrderAdvance,
    PostAuthOrder,
    PostAuthStatus,
    SweepResult,
)

logger = structlog.get_logger()

_ENTITY = "post-auth order"

POST_AUTH_TRANSITIONS: dict[PostAuthStatus, frozenset[PostAuthStatus]] = {
    PostAuthStatus.UNDER_MONITORING: frozenset(
        {PostAuthStatus.CHARGEBACKS_FILED, PostAuthStatus.CLEARED}
    ),
    PostAuthStatus.CHARGEBACKS_FILED: frozenset(),
    PostAuthStatus.CLEARED: frozenset(),
}


def local_day_key(now: datetime, policy: MerchantPolicy) -> str:
    """Merchant-local calendar date as YYYY-MM-DD."""
    return now.astimezone(policy.tzinfo).date().isoformat()


def is_sweep_due(now: datetime, policy: MerchantPolicy) -> bool:
    """True once the merchant's local clock has passed the preferred check time."""
    local = now.astimezone(policy.tzinfo)
    return local.hour * 60 + local.minute >= policy.daily_check_time_minutes


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MonitoringScheduler:
    """Owns PostAuthOrder records from creation to a terminal state."""

    def __init__(
        self,
        store: OrderStore,
        disputes: DisputeFeed | None = None,
        evidence: EvidencePackageBuilder | None = None,
        alerts: AlertDispatcher | None = None,
        config: MonitoringConfig | None = None,
        locks: KeyedLock | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._disputes = disputes or NoDisputeFeed()
        self._evidence = evidence
        self._alerts = alerts or AlertDispatcher()
        self._config = config or default_config
        self._locks = locks or KeyedLock()
        self._clock = clock

    async def advance_order(self, order_id: str, day_key: str, now: datetime) -> OrderAdvance:
        """Advance one order for one local day.

        Increments the day count, then polls the dispute feed. A dispute files
        the chargeback immediately; otherwise the order clears once the count
        reaches the monitoring window. Re-running for the same day is a no-op.
        """
        async with self._locks.hold(f"postauth:{order_id}"):
            try:
                order = await self._store.get_post_auth(order_id)
            except Exception as exc:
                raise SchedulerSweepFailure(order_id, day_key, exc) from exc
            if order is None:
                raise OrderNotFound(order_id, _ENTITY)
            if order.is_terminal:
                return OrderAdvance.SKIPPED
            try:
                claimed = await self._store.claim_monitoring_day(order_id, day_key)
            except Exception as exc:
                raise SchedulerSweepFailure(order_id, day_key, exc) from exc
            if not claimed:
                logger.debug("monitoring_day_already_claimed", order_id=order_id, day_key=day_key)
                return OrderAdvance.SKIPPED

            try:
                order = order.model_copy(
                    update={
                        "days_monitored": min(order.days_monitored + 1, MONITORING_WINDOW_DAYS),
                        "last_day_key": day_key,
                        "last_checked_at": now,
                    }
                )
                dispute = await asyncio.wait_for(
                    self._disputes.fetch_dispute(order_id),
                    timeout=self._config.dispute_timeout_seconds,
                )
                if dispute is not None:
                    order = self._file_chargeback(order, dispute, now)
                    outcome = OrderAdvance.DISPUTED
                elif order.days_monitored >= MONITORING_WINDOW_DAYS:
                    order = order.model_copy(
                        update={
                            "status": transition(
                                POST_AUTH_TRANSITIONS,
                                order.status,
                                PostAuthStatus.CLEARED,
                                entity=_ENTITY,
                            ),
                            "cleared_at": now,
                        }
                    )
                    outcome = OrderAdvance.CLEARED
                else:
                    outcome = OrderAdvance.ADVANCED
                await self._store.save_post_auth(order)
            except Exception as exc:
                await self._release_day(order_id, day_key)
                raise SchedulerSweepFailure(order_id, day_key, exc) from exc

        if outcome == OrderAdvance.CLEARED:
            logger.info("postauth_order_cleared", order_id=order_id, days=order.days_monitored)
        elif outcome == OrderAdvance.DISPUTED:
            await self._after_dispute(order)
        return outcome

    async def _release_day(self, order_id: str, day_key: str) -> None:
        try:
            await self._store.release_monitoring_day(order_id, day_key)
        except Exception:
            # The claim stays; the order is retried on its next local day
            logger.exception("monitoring_day_release_failed", order_id=order_id, day_key=day_key)

    def _file_chargeback(
        self, order: PostAuthOrder, dispute: DisputeEvent, now: datetime
    ) -> PostAuthOrder:
        status = transition(
            POST_AUTH_TRANSITIONS, order.status, PostAuthStatus.CHARGEBACKS_FILED, entity=_ENTITY
        )
        return order.model_copy(
            update={
                "status": status,
                "chargeback_filed_at": dispute.filed_at,
                "chargeback_reason": dispute.reason,
                "chargeback_amount": dispute.amount,
                "last_checked_at": now,
            }
        )

    async def _after_dispute(self, order: PostAuthOrder) -> None:
        logger.warning(
            "postauth_chargeback_filed",
            order_id=order.order_id,
            merchant_id=order.merchant_id,
            days_monitored=order.days_monitored,
            reason=order.chargeback_reason,
            amount=order.chargeback_amount,
        )
        self._alerts.dispatch(
            AlertEvent(
                alert_type=AlertType.CHARGEBACK_FILED,
                merchant_id=order.merchant_id,
                order_id=order.order_id,
                severity="high",
                details={
                    "reason": order.chargeback_reason,
                    "amount": order.chargeback_amount,
                    "days_monitored": order.days_monitored,
                    "pre_auth_score": order.pre_auth_score,
                },
            )
        )
        if self._evidence is None:
            return
        # The dispute stays filed whatever happens to its evidence package
        try:
            await self._evidence.generate(order)
        except Exception:
            logger.exception("evidence_generation_error", order_id=order.order_id)

    async def run_sweep(self, policy: MerchantPolicy, now: datetime | None = None) -> SweepResult:
        """Advance every monitored order of one merchant for today's local day."""
        now = now or self._clock()
        day_key = local_day_key(now, policy)
        order_ids = await self._monitored_order_ids(policy.merchant_id)
        semaphore = asyncio.Semaphore(self._config.max_concurrent_orders)

        async def advance(order_id: str) -> OrderAdvance | None:
            async with semaphore:
                try:
                    return await self.advance_order(order_id, day_key, now)
                except (SchedulerSweepFailure, OrderNotFound) as exc:
                    logger.error(
                        "monitoring_order_failed",
                        order_id=order_id,
                        day_key=day_key,
                        error=str(exc),
                    )
                    return None
                except Exception:
                    logger.exception("monitoring_order_error", order_id=order_id, day_key=day_key)
                    return None

        outcomes = await asyncio.gather(*(advance(order_id) for order_id in order_ids))

        result = SweepResult(merchant_id=policy.merchant_id, day_key=day_key)
        for order_id, outcome in zip(order_ids, outcomes, strict=True):
            result.processed += 1
            if outcome is None:
                result.failed += 1
                result.failed_order_ids.append(order_id)
            elif outcome == OrderAdvance.SKIPPED:
                result.skipped += 1
            else:
                result.advanced += 1
                if outcome == OrderAdvance.CLEARED:
                    result.cleared += 1
                elif outcome == OrderAdvance.DISPUTED:
                    result.disputed += 1

        logger.info(
            "monitoring_sweep_finished",
            merchant_id=policy.merchant_id,
            day_key=day_key,
            processed=result.processed,
            advanced=result.advanced,
            cleared=result.cleared,
            disputed=result.disputed,
            failed=result.failed,
        )
        return result

    async def _monitored_order_ids(self, merchant_id: str) -> list[str]:
        order_ids: list[str] = []
        offset = 0
        while True:
            page = await self._store.list_post_auth(
                MonitoredOrderFilter(
                    merchant_id=merchant_id,
                    status=PostAuthStatus.UNDER_MONITORING,
                    limit=self._config.page_size,
                    offset=offset,
                )
            )
            order_ids.extend(o.order_id for o in page)
            if len(page) < self._config.page_size:
                return order_ids
            offset += len(page)

    async def scheduled_tick(self, now: datetime | None = None) -> list[SweepResult]:
        """Run the daily sweep for every merchant whose local check time has come.

        A merchant sweeps at most once per local day, on the first tick at or
        after its preferred time.
        """
        now = now or self._clock()
        due: list[MerchantPolicy] = []
        for merchant_id in await self._store.monitored_merchant_ids():
            try:
                policy = await load_policy(self._store, merchant_id)
                if not is_sweep_due(now, policy):
                    continue
                if not await self._store.claim_sweep_day(merchant_id, local_day_key(now, policy)):
                    continue
            except Exception:
                logger.exception("monitoring_merchant_skipped", merchant_id=merchant_id)
                continue
            due.append(policy)

        if not due:
            return []

        semaphore = asyncio.Semaphore(self._config.max_concurrent_merchants)

        async def sweep(policy: MerchantPolicy) -> SweepResult | None:
            async with semaphore:
                try:
                    return await self.run_sweep(policy, now)
                except Exception:
                    logger.exception("monitoring_sweep_error", merchant_id=policy.merchant_id)
                    await self._release_sweep(policy, now)
                    return None

        results = await asyncio.gather(*(sweep(p) for p in due))
        return [r for r in results if r is not None]

    async def _release_sweep(self, policy: MerchantPolicy, now: datetime) -> None:
        try:
            await self._store.release_sweep_day(policy.merchant_id, local_day_key(now, policy))
        except Exception:
            logger.exception("sweep_day_release_failed", merchant_id=policy.merchant_id)

    async def run_now(self, merchant_id: str, now: datetime | None = None) -> SweepResult:
        """Sweep one merchant immediately. Orders already advanced today are skipped."""
        policy = await load_policy(self._store, merchant_id)
        return await self.run_sweep(policy, now)

    async def mark_chargeback_filed(self, order_id: str, dispute: DisputeEvent) -> PostAuthOrder:
        """Record a dispute reported outside the sweep (e.g. processor webhook)."""
        async with self._locks.hold(f"postauth:{order_id}"):
            order = await self._store.get_post_auth(order_id)
            if order is None:
                raise OrderNotFound(order_id, _ENTITY)
            try:
                order = self._file_chargeback(order, dispute, self._clock())
            except DuplicateTransitionAttempt:
                logger.info("duplicate_transition_ignored", order_id=order_id)
                return order
            await self._store.save_post_auth(order)

        await self._after_dispute(order)
        return order

    async def add_evidence(self, order_id: str, note: EvidenceNote) -> PostAuthOrder:
        async with self._locks.hold(f"postauth:{order_id}"):
            order = await self._store.get_post_auth(order_id)
            if order is None:
                raise OrderNotFound(order_id, _ENTITY)
            order = order.model_copy(update={"evidence": [*order.evidence, note]})
            await self._store.save_post_auth(order)
        logger.info("postauth_evidence_added", order_id=order_id, evidence_type=note.evidence_type)
        return order

    async def get_monitored_orders(self, filter: MonitoredOrderFilter) -> list[PostAuthOrder]:
        return await self._store.list_post_auth(filter)

    async def get_order(self, order_id: str) -> PostAuthOrder:
        order = await self._store.get_post_auth(order_id)
        if order is None:
            raise OrderNotFound(order_id, _ENTITY)
        return order
