"""Order store: the persistent hand-off point between the gate and the scheduler.

Two implementations share one interface. InMemoryOrderStore serves tests and
single-process local runs; SqlAlchemyOrderStore persists to Postgres.
Uniqueness (one pre-auth record per order, one post-auth record per order,
one monitoring run per order and local day) is enforced by the store.
"""

import asyncio
from datetime import datetime
from typing import Protocol

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import (
    EvidencePackageDB,
    MerchantPolicyDB,
    MonitoringRunDB,
    PostAuthOrderDB,
    PreAuthOrderDB,
    SweepMarkerDB,
)
from src.domains.evidence.models import EvidencePackage
from src.domains.monitoring.models import MonitoredOrderFilter, PostAuthOrder, PostAuthStatus
from src.domains.risk.config import MerchantPolicy
from src.domains.risk.models import PreAuthOrder, PreAuthStatus

logger = structlog.get_logger()

APPROVED_HISTORY_STATUSES = frozenset(
    {PreAuthStatus.AUTO_APPROVED, PreAuthStatus.MANUAL_APPROVED, PreAuthStatus.MOVED_TO_POST_AUTH}
)


class OrderStore(Protocol):
    # Pre-auth
    async def get_pre_auth(self, order_id: str) -> PreAuthOrder | None: ...
    async def insert_pre_auth(self, order: PreAuthOrder) -> bool: ...
    async def save_pre_auth(self, order: PreAuthOrder) -> None: ...
    async def list_pre_auth(
        self, merchant_id: str | None = None, status: PreAuthStatus | None = None
    ) -> list[PreAuthOrder]: ...

    # Customer history
    async def count_orders_by_email(self, email: str, since: datetime) -> int: ...
    async def count_orders_by_device(self, fingerprint: str, since: datetime) -> int: ...
    async def distinct_emails_for_device(self, fingerprint: str) -> int: ...
    async def order_stats_for_email(self, email: str) -> tuple[int, float]: ...

    # Post-auth
    async def get_post_auth(self, order_id: str) -> PostAuthOrder | None: ...
    async def create_post_auth(self, order: PostAuthOrder) -> tuple[PostAuthOrder, bool]: ...
    async def save_post_auth(self, order: PostAuthOrder) -> None: ...
    async def list_post_auth(self, filter: MonitoredOrderFilter) -> list[PostAuthOrder]: ...
    async def monitored_merchant_ids(self) -> list[str]: ...

    # Day arena and sweep markers
    async def claim_monitoring_day(self, order_id: str, day_key: str) -> bool: ...
    async def release_monitoring_day(self, order_id: str, day_key: str) -> None: ...
    async def claim_sweep_day(self, merchant_id: str, day_key: str) -> bool: ...
    async def release_sweep_day(self, merchant_id: str, day_key: str) -> None: ...

    # Evidence
    async def get_evidence_package(self, order_id: str) -> EvidencePackage | None: ...
    async def save_evidence_package(self, package: EvidencePackage) -> None: ...

    # Merchant policies
    async def get_policy(self, merchant_id: str) -> MerchantPolicy | None: ...
    async def save_policy(self, policy: MerchantPolicy) -> None: ...
    async def list_policies(self) -> list[MerchantPolicy]: ...


class InMemoryOrderStore:
    """Dict-backed store. Records are copied on the way in and out."""

    def __init__(self) -> None:
        self._pre_auth: dict[str, PreAuthOrder] = {}
        self._post_auth: dict[str, PostAuthOrder] = {}
        self._monitoring_days: set[tuple[str, str]] = set()
        self._sweep_days: set[tuple[str, str]] = set()
        self._evidence: dict[str, EvidencePackage] = {}
        self._policies: dict[str, MerchantPolicy] = {}
        self._lock = asyncio.Lock()

    async def get_pre_auth(self, order_id: str) -> PreAuthOrder | None:
        order = self._pre_auth.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def insert_pre_auth(self, order: PreAuthOrder) -> bool:
        async with self._lock:
            if order.order_id in self._pre_auth:
                return False
            self._pre_auth[order.order_id] = order.model_copy(deep=True)
            return True

    async def save_pre_auth(self, order: PreAuthOrder) -> None:
        self._pre_auth[order.order_id] = order.model_copy(deep=True)

    async def list_pre_auth(
        self, merchant_id: str | None = None, status: PreAuthStatus | None = None
    ) -> list[PreAuthOrder]:
        orders = [
            o
            for o in self._pre_auth.values()
            if (merchant_id is None or o.merchant_id == merchant_id)
            and (status is None or o.status == status)
        ]
        return [o.model_copy(deep=True) for o in sorted(orders, key=lambda o: o.created_at)]

    async def count_orders_by_email(self, email: str, since: datetime) -> int:
        email = email.lower()
        return sum(
            1
            for o in self._pre_auth.values()
            if o.customer_email.lower() == email and o.created_at >= since
        )

    async def count_orders_by_device(self, fingerprint: str, since: datetime) -> int:
        return sum(
            1
            for o in self._pre_auth.values()
            if o.context.device_fingerprint == fingerprint and o.created_at >= since
        )

    async def distinct_emails_for_device(self, fingerprint: str) -> int:
        return len(
            {
                o.customer_email.lower()
                for o in self._pre_auth.values()
                if o.context.device_fingerprint == fingerprint
            }
        )

    async def order_stats_for_email(self, email: str) -> tuple[int, float]:
        email = email.lower()
        amounts = [
            o.order_amount
            for o in self._pre_auth.values()
            if o.customer_email.lower() == email and o.status in APPROVED_HISTORY_STATUSES
        ]
        if not amounts:
            return 0, 0.0
        return len(amounts), sum(amounts) / len(amounts)

    async def get_post_auth(self, order_id: str) -> PostAuthOrder | None:
        order = self._post_auth.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def create_post_auth(self, order: PostAuthOrder) -> tuple[PostAuthOrder, bool]:
        async with self._lock:
            existing = self._post_auth.get(order.order_id)
            if existing is not None:
                return existing.model_copy(deep=True), False
            self._post_auth[order.order_id] = order.model_copy(deep=True)
            return order, True

    async def save_post_auth(self, order: PostAuthOrder) -> None:
        self._post_auth[order.order_id] = order.model_copy(deep=True)

    async def list_post_auth(self, filter: MonitoredOrderFilter) -> list[PostAuthOrder]:
        matched = sorted(
            (o for o in self._post_auth.values() if filter.matches(o)),
            key=lambda o: o.created_at,
        )
        page = matched[filter.offset : filter.offset + filter.limit]
        return [o.model_copy(deep=True) for o in page]

    async def monitored_merchant_ids(self) -> list[str]:
        return sorted({o.merchant_id for o in self._post_auth.values() if not o.is_terminal})

    async def claim_monitoring_day(self, order_id: str, day_key: str) -> bool:
        async with self._lock:
            key = (order_id, day_key)
            if key in self._monitoring_days:
                return False
            self._monitoring_days.add(key)
            return True

    async def release_monitoring_day(self, order_id: str, day_key: str) -> None:
        self._monitoring_days.discard((order_id, day_key))

    async def claim_sweep_day(self, merchant_id: str, day_key: str) -> bool:
        async with self._lock:
            key = (merchant_id, day_key)
            if key in self._sweep_days:
                return False
            self._sweep_days.add(key)
            return True

    async def release_sweep_day(self, merchant_id: str, day_key: str) -> None:
        self._sweep_days.discard((merchant_id, day_key))

    async def get_evidence_package(self, order_id: str) -> EvidencePackage | None:
        package = self._evidence.get(order_id)
        return package.model_copy(deep=True) if package else None

    async def save_evidence_package(self, package: EvidencePackage) -> None:
        self._evidence[package.order_id] = package.model_copy(deep=True)

    async def get_policy(self, merchant_id: str) -> MerchantPolicy | None:
        return self._policies.get(merchant_id)

    async def save_policy(self, policy: MerchantPolicy) -> None:
        self._policies[policy.merchant_id] = policy

    async def list_policies(self) -> list[MerchantPolicy]:
        return list(self._policies.values())


class SqlAlchemyOrderStore:
    """Postgres-backed store. Domain records are kept as JSONB payloads with
    the columns needed for lookups and uniqueness alongside."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # Pre-auth

    async def get_pre_auth(self, order_id: str) -> PreAuthOrder | None:
        async with self._session_factory() as session:
            row = await self._pre_auth_row(session, order_id)
            return PreAuthOrder.model_validate(row.payload) if row else None

    async def insert_pre_auth(self, order: PreAuthOrder) -> bool:
        async with self._session_factory() as session:
            session.add(
                PreAuthOrderDB(
                    order_id=order.order_id,
                    merchant_id=order.merchant_id,
                    customer_email=order.customer_email.lower(),
                    device_fingerprint=order.context.device_fingerprint,
                    order_amount=order.order_amount,
                    status=order.status.value,
                    composite_score=order.assessment.composite_score,
                    decision=order.assessment.decision.value,
                    created_at=order.created_at,
                    expires_at=order.expires_at,
                    payload=order.model_dump(mode="json"),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info("preauth_insert_conflict", order_id=order.order_id)
                return False
            return True

    async def save_pre_auth(self, order: PreAuthOrder) -> None:
        async with self._session_factory() as session:
            row = await self._pre_auth_row(session, order.order_id)
            if row is None:
                raise LookupError(f"pre-auth order {order.order_id} not found")
            row.status = order.status.value
            row.payload = order.model_dump(mode="json")
            await session.commit()

    async def list_pre_auth(
        self, merchant_id: str | None = None, status: PreAuthStatus | None = None
    ) -> list[PreAuthOrder]:
        stmt = select(PreAuthOrderDB).order_by(PreAuthOrderDB.created_at)
        if merchant_id is not None:
            stmt = stmt.where(PreAuthOrderDB.merchant_id == merchant_id)
        if status is not None:
            stmt = stmt.where(PreAuthOrderDB.status == status.value)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [PreAuthOrder.model_validate(r.payload) for r in result.scalars().all()]

    async def _pre_auth_row(self, session: AsyncSession, order_id: str) -> PreAuthOrderDB | None:
        result = await session.execute(
            select(PreAuthOrderDB).where(PreAuthOrderDB.order_id == order_id)
        )
        return result.scalar_one_or_none()

    # Customer history

    async def count_orders_by_email(self, email: str, since: datetime) -> int:
        stmt = select(func.count()).where(
            PreAuthOrderDB.customer_email == email.lower(),
            PreAuthOrderDB.created_at >= since,
        )
        return await self._scalar(stmt)

    async def count_orders_by_device(self, fingerprint: str, since: datetime) -> int:
        stmt = select(func.count()).where(
            PreAuthOrderDB.device_fingerprint == fingerprint,
            PreAuthOrderDB.created_at >= since,
        )
        return await self._scalar(stmt)

    async def distinct_emails_for_device(self, fingerprint: str) -> int:
        stmt = select(func.count(distinct(PreAuthOrderDB.customer_email))).where(
            PreAuthOrderDB.device_fingerprint == fingerprint
        )
        return await self._scalar(stmt)

    async def order_stats_for_email(self, email: str) -> tuple[int, float]:
        stmt = select(
            func.count().label("cnt"),
            func.coalesce(func.avg(PreAuthOrderDB.order_amount), 0.0).label("avg"),
        ).where(
            PreAuthOrderDB.customer_email == email.lower(),
            PreAuthOrderDB.status.in_([s.value for s in APPROVED_HISTORY_STATUSES]),
        )
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).one()
            return int(row.cnt), float(row.avg)

    async def _scalar(self, stmt) -> int:
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar_one() or 0)

    # Post-auth

    async def get_post_auth(self, order_id: str) -> PostAuthOrder | None:
        async with self._session_factory() as session:
            row = await self._post_auth_row(session, order_id)
            return PostAuthOrder.model_validate(row.payload) if row else None

    async def create_post_auth(self, order: PostAuthOrder) -> tuple[PostAuthOrder, bool]:
        async with self._session_factory() as session:
            session.add(
                PostAuthOrderDB(
                    order_id=order.order_id,
                    merchant_id=order.merchant_id,
                    status=order.status.value,
                    days_monitored=order.days_monitored,
                    created_at=order.created_at,
                    payload=order.model_dump(mode="json"),
                )
            )
            try:
                await session.commit()
                return order, True
            except IntegrityError:
                await session.rollback()

        existing = await self.get_post_auth(order.order_id)
        if existing is None:
            raise LookupError(f"post-auth order {order.order_id} conflict without a record")
        return existing, False

    async def save_post_auth(self, order: PostAuthOrder) -> None:
        async with self._session_factory() as session:
            row = await self._post_auth_row(session, order.order_id)
            if row is None:
                raise LookupError(f"post-auth order {order.order_id} not found")
            row.status = order.status.value
            row.days_monitored = order.days_monitored
            row.payload = order.model_dump(mode="json")
            await session.commit()

    async def list_post_auth(self, filter: MonitoredOrderFilter) -> list[PostAuthOrder]:
        stmt = select(PostAuthOrderDB).order_by(PostAuthOrderDB.created_at)
        if filter.merchant_id is not None:
            stmt = stmt.where(PostAuthOrderDB.merchant_id == filter.merchant_id)
        if filter.status is not None:
            stmt = stmt.where(PostAuthOrderDB.status == filter.status.value)
        if filter.min_days is not None:
            stmt = stmt.where(PostAuthOrderDB.days_monitored >= filter.min_days)
        if filter.max_days is not None:
            stmt = stmt.where(PostAuthOrderDB.days_monitored <= filter.max_days)
        stmt = stmt.offset(filter.offset).limit(filter.limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [PostAuthOrder.model_validate(r.payload) for r in result.scalars().all()]

    async def monitored_merchant_ids(self) -> list[str]:
        stmt = (
            select(distinct(PostAuthOrderDB.merchant_id))
            .where(PostAuthOrderDB.status == PostAuthStatus.UNDER_MONITORING.value)
            .order_by(PostAuthOrderDB.merchant_id)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _post_auth_row(self, session: AsyncSession, order_id: str) -> PostAuthOrderDB | None:
        result = await session.execute(
            select(PostAuthOrderDB).where(PostAuthOrderDB.order_id == order_id)
        )
        return result.scalar_one_or_none()

    # Day arena and sweep markers

    async def claim_monitoring_day(self, order_id: str, day_key: str) -> bool:
        return await self._claim(MonitoringRunDB(order_id=order_id, day_key=day_key))

    async def release_monitoring_day(self, order_id: str, day_key: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MonitoringRunDB).where(
                    MonitoringRunDB.order_id == order_id, MonitoringRunDB.day_key == day_key
                )
            )
            row = result.scalar_one_or_none()
            if row is not None:
                await session.delete(row)
                await session.commit()

    async def claim_sweep_day(self, merchant_id: str, day_key: str) -> bool:
        return await self._claim(SweepMarkerDB(merchant_id=merchant_id, day_key=day_key))

    async def release_sweep_day(self, merchant_id: str, day_key: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SweepMarkerDB).where(
                    SweepMarkerDB.merchant_id == merchant_id, SweepMarkerDB.day_key == day_key
                )
            )
            row = result.scalar_one_or_none()
            if row is not None:
                await session.delete(row)
                await session.commit()

    async def _claim(self, row) -> bool:
        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    # Evidence

    async def get_evidence_package(self, order_id: str) -> EvidencePackage | None:
        async with self._session_factory() as session:
            row = await self._evidence_row(session, order_id)
            return EvidencePackage.model_validate(row.payload) if row else None

    async def save_evidence_package(self, package: EvidencePackage) -> None:
        async with self._session_factory() as session:
            row = await self._evidence_row(session, package.order_id)
            if row is None:
                session.add(
                    EvidencePackageDB(
                        package_id=package.package_id,
                        order_id=package.order_id,
                        status=package.status.value,
                        payload=package.model_dump(mode="json"),
                    )
                )
            else:
                row.status = package.status.value
                row.payload = package.model_dump(mode="json")
            await session.commit()

    async def _evidence_row(self, session: AsyncSession, order_id: str) -> EvidencePackageDB | None:
        result = await session.execute(
            select(EvidencePackageDB).where(EvidencePackageDB.order_id == order_id)
        )
        return result.scalar_one_or_none()

    # Merchant policies

    async def get_policy(self, merchant_id: str) -> MerchantPolicy | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MerchantPolicyDB).where(MerchantPolicyDB.merchant_id == merchant_id)
            )
            row = result.scalar_one_or_none()
            return MerchantPolicy.from_dict(row.settings) if row else None

    async def save_policy(self, policy: MerchantPolicy) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(MerchantPolicyDB).where(MerchantPolicyDB.merchant_id == policy.merchant_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                session.add(
                    MerchantPolicyDB(merchant_id=policy.merchant_id, settings=policy.to_dict())
                )
            else:
                row.settings = policy.to_dict()
            await session.commit()

    async def list_policies(self) -> list[MerchantPolicy]:
        async with self._session_factory() as session:
            result = await session.execute(select(MerchantPolicyDB))
            return [MerchantPolicy.from_dict(r.settings) for r in result.scalars().all()]
