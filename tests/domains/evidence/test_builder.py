"""Tests for evidence package generation and export."""

import csv
import io
import json
from datetime import timedelta

import pytest

from src.db.store import InMemoryOrderStore
from src.domains.evidence.builder import EvidencePackageBuilder, assemble_package
from src.domains.evidence.models import (
    CommunicationRecord,
    DeliveryRecords,
    EvidencePackage,
    EvidenceStatus,
    ProductDetails,
    ProofOfDelivery,
)
from src.domains.monitoring.models import PostAuthOrder, PostAuthStatus
from src.domains.risk.gate import PreAuthGate
from src.domains.risk.runner import DetectorRunner
from src.shared.exceptions import IllegalTransition, OrderNotFound
from tests.conftest import NOW, FakeClock, make_context


class StubRecords:
    def __init__(self, records: DeliveryRecords | None = None, fail_times: int = 0) -> None:
        self._records = records or DeliveryRecords()
        self._fail_times = fail_times
        self.calls = 0

    async def fetch_records(self, order_id: str) -> DeliveryRecords:
        self.calls += 1
        if self.calls <= self._fail_times:
            raise ConnectionError("records service down")
        return self._records


def _make_disputed(**kwargs) -> PostAuthOrder:
    defaults = {
        "order_id": "ord-1",
        "merchant_id": "shop-1",
        "amount": 120.0,
        "email": "alice@example.com",
        "ip_address": "8.8.8.8",
        "card_bin": "411111",
        "pre_auth_score": 12,
        "status": PostAuthStatus.CHARGEBACKS_FILED,
        "days_monitored": 45,
        "created_at": NOW - timedelta(days=45),
        "chargeback_filed_at": NOW,
        "chargeback_reason": "product_not_received",
        "chargeback_amount": 120.0,
    }
    defaults.update(kwargs)
    return PostAuthOrder(**defaults)


def _make_records() -> DeliveryRecords:
    return DeliveryRecords(
        tracking=ProofOfDelivery(
            tracking_number="1Z999", carrier="UPS", delivered_at=NOW - timedelta(days=40)
        ),
        messages=[
            CommunicationRecord(date=NOW - timedelta(days=38), channel="email", summary="Thanks"),
            CommunicationRecord(date=NOW - timedelta(days=44), channel="email", summary="Shipped"),
        ],
        product=ProductDetails(name="Trail Shoes", sku="TS-42"),
        payment_method="visa",
    )


class TestAssemblePackage:
    def test_sections_filled(self):
        package = EvidencePackage(order_id="ord-1", merchant_id="shop-1", created_at=NOW)
        result = assemble_package(package, _make_disputed(), _make_records(), None, NOW)

        assert result.status == EvidenceStatus.COMPLETED
        assert result.transaction_details.customer_ip == "8.8.8.8"
        assert result.transaction_details.payment_method == "visa"
        assert result.proof_of_delivery.carrier == "UPS"
        assert [m.summary for m in result.customer_communication] == ["Shipped", "Thanks"]
        assert result.chargeback.reason == "product_not_received"
        assert result.fraud_analysis is None
        assert package.status == EvidenceStatus.GENERATING

    def test_product_falls_back_to_order_reference(self):
        package = EvidencePackage(order_id="ord-1", merchant_id="shop-1", created_at=NOW)
        result = assemble_package(package, _make_disputed(), DeliveryRecords(), None, NOW)
        assert result.product_details.name == "Order ord-1"


class TestEvidencePackageBuilder:
    @pytest.mark.asyncio
    async def test_generate_completed(self):
        store = InMemoryOrderStore()
        builder = EvidencePackageBuilder(store, records=StubRecords(_make_records()), clock=FakeClock())

        package = await builder.generate(_make_disputed())

        assert package.status == EvidenceStatus.COMPLETED
        assert package.attempts == 1
        assert package.generated_at == NOW
        assert (await builder.get("ord-1")).status == EvidenceStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_includes_pre_auth_analysis(self):
        store = InMemoryOrderStore()
        gate = PreAuthGate(store, runner=DetectorRunner(), clock=FakeClock())
        await gate.run_pre_auth_check(make_context())
        await gate.drain()
        builder = EvidencePackageBuilder(store, clock=FakeClock())

        package = await builder.generate(_make_disputed())

        analysis = package.fraud_analysis
        assert analysis.decision == "approve"
        assert analysis.risk_score == 0
        assert len(analysis.signals) == 8

    @pytest.mark.asyncio
    async def test_requires_filed_chargeback(self):
        builder = EvidencePackageBuilder(InMemoryOrderStore())
        with pytest.raises(IllegalTransition):
            await builder.generate(_make_disputed(status=PostAuthStatus.UNDER_MONITORING))

    @pytest.mark.asyncio
    async def test_failure_then_retry(self):
        store = InMemoryOrderStore()
        await store.create_post_auth(_make_disputed())
        records = StubRecords(_make_records(), fail_times=1)
        builder = EvidencePackageBuilder(store, records=records, clock=FakeClock())

        failed = await builder.generate(_make_disputed())
        assert failed.status == EvidenceStatus.FAILED
        assert "records service down" in failed.error
        assert (await store.get_post_auth("ord-1")).status == PostAuthStatus.CHARGEBACKS_FILED

        retried = await builder.retry("ord-1")
        assert retried.status == EvidenceStatus.COMPLETED
        assert retried.attempts == 2
        assert retried.package_id == failed.package_id
        assert retried.error is None

    @pytest.mark.asyncio
    async def test_completed_package_is_not_rebuilt(self):
        store = InMemoryOrderStore()
        records = StubRecords(_make_records())
        builder = EvidencePackageBuilder(store, records=records, clock=FakeClock())

        first = await builder.generate(_make_disputed())
        second = await builder.generate(_make_disputed())

        assert second == first
        assert records.calls == 1

    @pytest.mark.asyncio
    async def test_missing_package(self):
        with pytest.raises(OrderNotFound):
            await EvidencePackageBuilder(InMemoryOrderStore()).get("ord-1")

    @pytest.mark.asyncio
    async def test_retry_unknown_order(self):
        with pytest.raises(OrderNotFound):
            await EvidencePackageBuilder(InMemoryOrderStore()).retry("missing")


class TestExport:
    def _completed(self) -> EvidencePackage:
        package = EvidencePackage(order_id="ord-1", merchant_id="shop-1", created_at=NOW)
        return assemble_package(package, _make_disputed(), _make_records(), None, NOW)

    def test_json_export(self):
        data = json.loads(self._completed().to_json())
        assert data["status"] == "completed"
        assert data["transaction_details"]["order_id"] == "ord-1"
        assert data["proof_of_delivery"]["tracking_number"] == "1Z999"

    def test_csv_export(self):
        rows = list(csv.DictReader(io.StringIO(self._completed().to_csv())))
        by_key = {(r["section"], r["field"]): r["value"] for r in rows}
        assert by_key[("package", "status")] == "completed"
        assert by_key[("transaction_details", "amount")] == "120.0"
        assert by_key[("proof_of_delivery", "carrier")] == "UPS"
        assert by_key[("chargeback", "reason")] == "product_not_received"
        assert ("customer_communication[1]", "summary") in by_key
