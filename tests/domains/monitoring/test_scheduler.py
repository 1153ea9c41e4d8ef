"""Tests for the post-auth monitoring scheduler."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from src.db.store import InMemoryOrderStore
from src.domains.evidence.builder import EvidencePackageBuilder
from src.domains.evidence.models import EvidenceStatus
from src.domains.monitoring.models import (
    DisputeEvent,
    EvidenceNote,
    MonitoredOrderFilter,
    OrderAdvance,
    PostAuthOrder,
    PostAuthStatus,
)
from src.domains.monitoring.scheduler import MonitoringScheduler, is_sweep_due, local_day_key
from src.domains.risk.config import MerchantPolicy
from src.shared.alerts import AlertDispatcher, AlertType
from src.shared.exceptions import IllegalTransition, OrderNotFound, SchedulerSweepFailure
from tests.conftest import NOW, FakeClock

POLICY = MerchantPolicy(merchant_id="shop-1")


class StubDisputeFeed:
    def __init__(self) -> None:
        self.disputes: dict[str, DisputeEvent] = {}
        self.failing: set[str] = set()
        self.calls: list[str] = []

    async def fetch_dispute(self, order_id: str) -> DisputeEvent | None:
        self.calls.append(order_id)
        if order_id in self.failing:
            raise ConnectionError("dispute feed unreachable")
        return self.disputes.get(order_id)


class FlakyStore(InMemoryOrderStore):
    def __init__(self, failing_orders=(), failing_merchants=()) -> None:
        super().__init__()
        self.failing_orders = set(failing_orders)
        self.failing_merchants = set(failing_merchants)

    async def claim_monitoring_day(self, order_id: str, day_key: str) -> bool:
        if order_id in self.failing_orders:
            raise ConnectionError("db blip")
        return await super().claim_monitoring_day(order_id, day_key)

    async def list_post_auth(self, filter: MonitoredOrderFilter) -> list[PostAuthOrder]:
        if filter.merchant_id in self.failing_merchants:
            raise ConnectionError("replica unavailable")
        return await super().list_post_auth(filter)


def _make_post_auth(**kwargs) -> PostAuthOrder:
    defaults = {
        "order_id": "ord-1",
        "merchant_id": "shop-1",
        "amount": 120.0,
        "email": "alice@example.com",
        "pre_auth_score": 12,
        "created_at": NOW - timedelta(days=30),
    }
    defaults.update(kwargs)
    return PostAuthOrder(**defaults)


def _make_dispute(**kwargs) -> DisputeEvent:
    defaults = {"reason": "fraudulent", "amount": 120.0, "filed_at": NOW}
    defaults.update(kwargs)
    return DisputeEvent(**defaults)


async def _make_scheduler(*orders: PostAuthOrder, evidence: bool = False, emitter=None):
    store = InMemoryOrderStore()
    for order in orders:
        await store.create_post_auth(order)
    feed = StubDisputeFeed()
    alerts = AlertDispatcher(emitter or AsyncMock())
    clock = FakeClock()
    scheduler = MonitoringScheduler(
        store,
        disputes=feed,
        evidence=EvidencePackageBuilder(store, clock=clock) if evidence else None,
        alerts=alerts,
        clock=clock,
    )
    return scheduler, store, feed, alerts


class TestLocalDay:
    def test_day_key_uses_merchant_timezone(self):
        now = datetime(2026, 3, 10, 3, 0, tzinfo=UTC)
        assert local_day_key(now, POLICY) == "2026-03-10"
        pacific = MerchantPolicy(merchant_id="m", timezone="America/Los_Angeles")
        assert local_day_key(now, pacific) == "2026-03-09"

    def test_sweep_due_after_preferred_time(self):
        policy = MerchantPolicy(merchant_id="m", daily_check_time_minutes=120)
        assert not is_sweep_due(datetime(2026, 3, 10, 1, 59, tzinfo=UTC), policy)
        assert is_sweep_due(datetime(2026, 3, 10, 2, 0, tzinfo=UTC), policy)
        assert is_sweep_due(datetime(2026, 3, 10, 23, 0, tzinfo=UTC), policy)


class TestAdvanceOrder:
    @pytest.mark.asyncio
    async def test_day_119_clears_on_next_sweep(self):
        scheduler, store, _, _ = await _make_scheduler(_make_post_auth(days_monitored=119))

        result = await scheduler.run_sweep(POLICY, NOW)

        order = await store.get_post_auth("ord-1")
        assert order.days_monitored == 120
        assert order.status == PostAuthStatus.CLEARED
        assert order.cleared_at == NOW
        assert result.cleared == 1

    @pytest.mark.asyncio
    async def test_dispute_freezes_day_count(self):
        emitter = AsyncMock()
        scheduler, store, feed, alerts = await _make_scheduler(
            _make_post_auth(days_monitored=44), emitter=emitter
        )
        feed.disputes["ord-1"] = _make_dispute()

        result = await scheduler.run_sweep(POLICY, NOW)
        await alerts.drain()

        order = await store.get_post_auth("ord-1")
        assert result.disputed == 1
        assert order.status == PostAuthStatus.CHARGEBACKS_FILED
        assert order.days_monitored == 45
        assert order.chargeback_filed_at == NOW
        assert order.chargeback_reason == "fraudulent"
        emitted = emitter.emit.await_args_list[0].args[0]
        assert emitted.alert_type == AlertType.CHARGEBACK_FILED

        later = await scheduler.run_sweep(POLICY, NOW + timedelta(days=1))
        assert later.processed == 0
        assert await scheduler.advance_order("ord-1", "2026-03-12", NOW) == OrderAdvance.SKIPPED
        assert (await store.get_post_auth("ord-1")).days_monitored == 45

    @pytest.mark.asyncio
    async def test_same_day_is_idempotent(self):
        scheduler, store, feed, _ = await _make_scheduler(_make_post_auth(days_monitored=10))

        first = await scheduler.run_sweep(POLICY, NOW)
        second = await scheduler.run_sweep(POLICY, NOW + timedelta(hours=3))

        assert first.advanced == 1
        assert second.skipped == 1
        assert (await store.get_post_auth("ord-1")).days_monitored == 11
        assert feed.calls == ["ord-1"]

    @pytest.mark.asyncio
    async def test_consecutive_days_advance(self):
        scheduler, store, _, _ = await _make_scheduler(_make_post_auth())
        for day in range(3):
            await scheduler.run_sweep(POLICY, NOW + timedelta(days=day))
        order = await store.get_post_auth("ord-1")
        assert order.days_monitored == 3
        assert order.last_day_key == "2026-03-12"

    @pytest.mark.asyncio
    async def test_failure_is_isolated_and_retried(self):
        scheduler, store, feed, _ = await _make_scheduler(
            _make_post_auth(order_id="ord-1"),
            _make_post_auth(order_id="ord-2", created_at=NOW - timedelta(days=10)),
        )
        feed.failing.add("ord-1")

        result = await scheduler.run_sweep(POLICY, NOW)

        assert result.failed == 1
        assert result.failed_order_ids == ["ord-1"]
        assert result.advanced == 1
        assert (await store.get_post_auth("ord-1")).days_monitored == 0
        assert (await store.get_post_auth("ord-2")).days_monitored == 1

        feed.failing.clear()
        retry = await scheduler.run_sweep(POLICY, NOW + timedelta(hours=1))
        assert retry.advanced == 1
        assert retry.skipped == 1
        assert (await store.get_post_auth("ord-1")).days_monitored == 1

    @pytest.mark.asyncio
    async def test_store_error_on_claim_is_isolated(self):
        store = FlakyStore(failing_orders={"ord-bad"})
        await store.create_post_auth(_make_post_auth(order_id="ord-bad"))
        await store.create_post_auth(_make_post_auth(order_id="ord-good"))
        scheduler = MonitoringScheduler(store, disputes=StubDisputeFeed(), clock=FakeClock())

        result = await scheduler.run_sweep(POLICY, NOW)

        assert result.failed == 1
        assert result.failed_order_ids == ["ord-bad"]
        assert result.advanced == 1
        assert (await store.get_post_auth("ord-good")).days_monitored == 1

        with pytest.raises(SchedulerSweepFailure) as exc_info:
            await scheduler.advance_order("ord-bad", "2026-03-10", NOW)
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_advance_failure_raises_sweep_failure(self):
        scheduler, _, feed, _ = await _make_scheduler(_make_post_auth())
        feed.failing.add("ord-1")
        with pytest.raises(SchedulerSweepFailure) as exc_info:
            await scheduler.advance_order("ord-1", "2026-03-10", NOW)
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_dispute_generates_evidence_package(self):
        scheduler, store, feed, _ = await _make_scheduler(
            _make_post_auth(days_monitored=5), evidence=True
        )
        feed.disputes["ord-1"] = _make_dispute(amount=80.0)

        await scheduler.run_sweep(POLICY, NOW)

        package = await store.get_evidence_package("ord-1")
        assert package.status == EvidenceStatus.COMPLETED
        assert package.chargeback.amount == 80.0


class TestScheduledTick:
    @pytest.mark.asyncio
    async def test_sweeps_due_merchants_once_per_day(self):
        scheduler, store, _, _ = await _make_scheduler(
            _make_post_auth(order_id="ord-1", merchant_id="shop-1"),
            _make_post_auth(order_id="ord-2", merchant_id="shop-late"),
        )
        await store.save_policy(
            MerchantPolicy(merchant_id="shop-late", daily_check_time_minutes=23 * 60 + 30)
        )

        results = await scheduler.scheduled_tick(NOW)
        assert [r.merchant_id for r in results] == ["shop-1"]
        assert (await store.get_post_auth("ord-2")).days_monitored == 0

        assert await scheduler.scheduled_tick(NOW + timedelta(minutes=15)) == []

        late = await scheduler.scheduled_tick(NOW.replace(hour=23, minute=45))
        assert [r.merchant_id for r in late] == ["shop-late"]

    @pytest.mark.asyncio
    async def test_failing_merchant_does_not_block_others(self):
        store = FlakyStore(failing_merchants={"shop-bad"})
        await store.create_post_auth(_make_post_auth(order_id="ord-1", merchant_id="shop-1"))
        await store.create_post_auth(_make_post_auth(order_id="ord-2", merchant_id="shop-bad"))
        scheduler = MonitoringScheduler(store, disputes=StubDisputeFeed(), clock=FakeClock())

        results = await scheduler.scheduled_tick(NOW)

        assert [r.merchant_id for r in results] == ["shop-1"]
        assert (await store.get_post_auth("ord-1")).days_monitored == 1

        store.failing_merchants.clear()
        retry = await scheduler.scheduled_tick(NOW + timedelta(minutes=15))
        assert [r.merchant_id for r in retry] == ["shop-bad"]
        assert (await store.get_post_auth("ord-2")).days_monitored == 1

    @pytest.mark.asyncio
    async def test_run_now_sweeps_immediately(self):
        scheduler, store, _, _ = await _make_scheduler(_make_post_auth())
        result = await scheduler.run_now("shop-1", NOW)
        assert result.advanced == 1
        assert (await store.get_post_auth("ord-1")).days_monitored == 1

    @pytest.mark.asyncio
    async def test_terminal_orders_leave_the_sweep(self):
        scheduler, store, _, _ = await _make_scheduler(
            _make_post_auth(status=PostAuthStatus.CLEARED, days_monitored=120)
        )
        assert await store.monitored_merchant_ids() == []
        assert await scheduler.scheduled_tick(NOW) == []


class TestChargebacksAndEvidence:
    @pytest.mark.asyncio
    async def test_mark_chargeback_filed(self):
        scheduler, store, _, _ = await _make_scheduler(_make_post_auth(days_monitored=12))
        order = await scheduler.mark_chargeback_filed("ord-1", _make_dispute())
        assert order.status == PostAuthStatus.CHARGEBACKS_FILED
        assert order.days_monitored == 12

    @pytest.mark.asyncio
    async def test_repeated_chargeback_is_noop(self):
        scheduler, _, _, _ = await _make_scheduler(_make_post_auth())
        first = await scheduler.mark_chargeback_filed("ord-1", _make_dispute())
        second = await scheduler.mark_chargeback_filed("ord-1", _make_dispute(reason="other"))
        assert second.chargeback_reason == first.chargeback_reason == "fraudulent"

    @pytest.mark.asyncio
    async def test_cleared_order_cannot_be_disputed(self):
        scheduler, _, _, _ = await _make_scheduler(
            _make_post_auth(status=PostAuthStatus.CLEARED, days_monitored=120)
        )
        with pytest.raises(IllegalTransition):
            await scheduler.mark_chargeback_filed("ord-1", _make_dispute())

    @pytest.mark.asyncio
    async def test_unknown_order(self):
        scheduler, _, _, _ = await _make_scheduler()
        with pytest.raises(OrderNotFound):
            await scheduler.mark_chargeback_filed("missing", _make_dispute())

    @pytest.mark.asyncio
    async def test_add_evidence(self):
        scheduler, _, _, _ = await _make_scheduler(_make_post_auth())
        note = EvidenceNote(
            evidence_type="tracking", description="Delivered to front desk", added_at=NOW
        )
        order = await scheduler.add_evidence("ord-1", note)
        assert [n.evidence_type for n in order.evidence] == ["tracking"]


class TestMonitoredOrders:
    @pytest.mark.asyncio
    async def test_filters(self):
        scheduler, _, _, _ = await _make_scheduler(
            _make_post_auth(order_id="a", days_monitored=5),
            _make_post_auth(order_id="b", days_monitored=60, created_at=NOW - timedelta(days=5)),
            _make_post_auth(
                order_id="c",
                merchant_id="shop-2",
                status=PostAuthStatus.CLEARED,
                days_monitored=120,
            ),
        )

        shop_1 = await scheduler.get_monitored_orders(MonitoredOrderFilter(merchant_id="shop-1"))
        assert {o.order_id for o in shop_1} == {"a", "b"}

        late = await scheduler.get_monitored_orders(MonitoredOrderFilter(min_days=50))
        assert {o.order_id for o in late} == {"b", "c"}

        cleared = await scheduler.get_monitored_orders(
            MonitoredOrderFilter(status=PostAuthStatus.CLEARED)
        )
        assert [o.order_id for o in cleared] == ["c"]

        page = await scheduler.get_monitored_orders(MonitoredOrderFilter(limit=1, offset=1))
        assert len(page) == 1
