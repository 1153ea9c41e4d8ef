"""Tests for the ORM models and the SQLAlchemy order store (sessions mocked)."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.db.models import (
    MonitoringRunDB,
    PostAuthOrderDB,
    PreAuthOrderDB,
    SweepMarkerDB,
)
from src.db.store import InMemoryOrderStore, SqlAlchemyOrderStore
from src.domains.risk.gate import PreAuthGate
from src.domains.risk.runner import DetectorRunner
from tests.conftest import FakeClock, make_context

pytestmark = pytest.mark.integration


def _make_session_factory(commit_error: Exception | None = None):
    session = MagicMock()
    session.commit = AsyncMock(side_effect=commit_error)
    session.rollback = AsyncMock()
    factory = MagicMock()
    factory.return_value.__aenter__.return_value = session
    factory.return_value.__aexit__.return_value = False
    return factory, session


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT", {}, Exception("duplicate key"))


class TestModels:
    def test_table_names(self):
        assert PreAuthOrderDB.__tablename__ == "preauth_orders"
        assert PostAuthOrderDB.__tablename__ == "postauth_orders"
        assert MonitoringRunDB.__tablename__ == "monitoring_runs"
        assert SweepMarkerDB.__tablename__ == "sweep_markers"

    def test_preauth_columns(self):
        columns = {c.name for c in PreAuthOrderDB.__table__.columns}
        assert {"order_id", "customer_email", "device_fingerprint", "status", "payload"} <= columns
        assert PreAuthOrderDB.__table__.c.order_id.unique

    def test_monitoring_run_unique_per_day(self):
        constraints = {c.name for c in MonitoringRunDB.__table__.constraints}
        assert "uq_monitoring_run_day" in constraints


class TestSqlAlchemyOrderStore:
    @pytest.mark.asyncio
    async def test_claim_day(self):
        factory, session = _make_session_factory()
        store = SqlAlchemyOrderStore(factory)

        assert await store.claim_monitoring_day("ord-1", "2026-03-10") is True
        added = session.add.call_args.args[0]
        assert isinstance(added, MonitoringRunDB)
        assert added.day_key == "2026-03-10"

    @pytest.mark.asyncio
    async def test_claimed_day_conflict(self):
        factory, session = _make_session_factory(commit_error=_integrity_error())
        store = SqlAlchemyOrderStore(factory)

        assert await store.claim_sweep_day("shop-1", "2026-03-10") is False
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_insert_pre_auth_conflict(self):
        gate = PreAuthGate(InMemoryOrderStore(), runner=DetectorRunner(), clock=FakeClock())
        result = await gate.run_pre_auth_check(make_context())
        await gate.drain()

        factory, session = _make_session_factory(commit_error=_integrity_error())
        store = SqlAlchemyOrderStore(factory)

        assert await store.insert_pre_auth(result.order) is False
        row = session.add.call_args.args[0]
        assert row.order_id == "ord-1"
        assert row.customer_email == "alice@example.com"
        assert row.payload["assessment"]["decision"] == "approve"
