"""Unit tests for the decision engine, hard blocks and review reasons."""

import pytest

from src.domains.risk.aggregator import AggregateScore
from src.domains.risk.config import MerchantPolicy, RiskConfig
from src.domains.risk.engine import (
    classify_risk_level,
    decide,
    evaluate_hard_blocks,
    evaluate_review_reasons,
)
from src.domains.risk.models import (
    Address,
    CustomerHistory,
    Decision,
    HardBlock,
    OrderContext,
    ReviewReason,
    RiskLevel,
    ScanInput,
)

CONFIG = RiskConfig()
POLICY = MerchantPolicy()


def _make_scan(history: dict | None = None, ip_country: str | None = None, **kwargs) -> ScanInput:
    context = {
        "order_id": "ord-1",
        "customer_email": "alice@example.com",
        "order_amount": 100.0,
        "device_fingerprint": "dev-1",
    }
    context.update(kwargs)
    return ScanInput(
        context=OrderContext(**context),
        history=CustomerHistory(**(history or {"prior_order_count": 2})),
        ip_country=ip_country,
    )


def _make_aggregate(**kwargs) -> AggregateScore:
    defaults = {
        "composite_score": 10,
        "confidence": 100,
        "reduced_confidence": False,
        "hard_fail_applied": False,
        "available_count": 8,
        "configured_count": 8,
    }
    defaults.update(kwargs)
    return AggregateScore(**defaults)


class TestRiskLevel:
    @pytest.mark.parametrize(
        "score, level",
        [
            (0, RiskLevel.LOW),
            (24, RiskLevel.LOW),
            (25, RiskLevel.MEDIUM),
            (49, RiskLevel.MEDIUM),
            (50, RiskLevel.HIGH),
            (74, RiskLevel.HIGH),
            (75, RiskLevel.CRITICAL),
            (100, RiskLevel.CRITICAL),
        ],
    )
    def test_boundaries(self, score, level):
        assert classify_risk_level(score, POLICY) == level


class TestDecide:
    @pytest.mark.parametrize(
        "score, decision",
        [
            (0, Decision.APPROVE),
            (29, Decision.APPROVE),
            (30, Decision.REVIEW),
            (69, Decision.REVIEW),
            (70, Decision.DECLINE),
            (100, Decision.DECLINE),
        ],
    )
    def test_threshold_boundaries(self, score, decision):
        assert decide(score, POLICY).decision == decision

    def test_scenario_high_risk_goes_to_review(self):
        outcome = decide(65, POLICY)
        assert outcome.risk_level == RiskLevel.HIGH
        assert outcome.decision == Decision.REVIEW

    def test_scenario_all_pass_approves(self):
        outcome = decide(0, POLICY)
        assert outcome.risk_level == RiskLevel.LOW
        assert outcome.decision == Decision.APPROVE

    def test_monotonic_in_score(self):
        order = {Decision.APPROVE: 0, Decision.REVIEW: 1, Decision.DECLINE: 2}
        decisions = [order[decide(score, POLICY).decision] for score in range(101)]
        assert decisions == sorted(decisions)

    def test_hard_block_declines_any_score(self):
        outcome = decide(0, POLICY, hard_blocks=[HardBlock.DISPOSABLE_EMAIL])
        assert outcome.decision == Decision.DECLINE
        assert "disposable_email" in outcome.reasons[0]

    def test_review_reason_blocks_auto_approval_only(self):
        reasons = [ReviewReason.AMOUNT_ABOVE_REVIEW_CEILING]
        assert decide(5, POLICY, review_reasons=reasons).decision == Decision.REVIEW
        assert decide(90, POLICY, review_reasons=reasons).decision == Decision.DECLINE

    def test_custom_thresholds(self):
        policy = MerchantPolicy(approve_threshold=10, decline_threshold=40)
        assert decide(15, policy).decision == Decision.REVIEW
        assert decide(40, policy).decision == Decision.DECLINE


class TestHardBlocks:
    def test_clean_order_has_none(self):
        assert evaluate_hard_blocks(_make_scan(), POLICY, CONFIG) == []

    def test_blocked_ip_country(self):
        blocks = evaluate_hard_blocks(_make_scan(ip_country="ng"), POLICY, CONFIG)
        assert blocks == [HardBlock.BLOCKED_COUNTRY]

    def test_blocked_shipping_country(self):
        shipping = Address(line1="1 Rd", city="Lagos", postal_code="100001", country="NG")
        blocks = evaluate_hard_blocks(_make_scan(shipping_address=shipping), POLICY, CONFIG)
        assert HardBlock.BLOCKED_COUNTRY in blocks

    def test_country_block_disabled(self):
        policy = MerchantPolicy(block_high_risk_countries=False)
        assert evaluate_hard_blocks(_make_scan(ip_country="NG"), policy, CONFIG) == []

    def test_disposable_email(self):
        scan = _make_scan(customer_email="bot@tempmail.com")
        assert evaluate_hard_blocks(scan, POLICY, CONFIG) == [HardBlock.DISPOSABLE_EMAIL]

    def test_velocity_caps(self):
        scan = _make_scan({"prior_order_count": 2, "orders_by_email_1h": 3, "orders_by_device_1h": 5})
        blocks = evaluate_hard_blocks(scan, POLICY, CONFIG)
        assert HardBlock.EMAIL_VELOCITY_CAP in blocks
        assert HardBlock.DEVICE_VELOCITY_CAP in blocks

    def test_below_velocity_caps(self):
        scan = _make_scan({"prior_order_count": 2, "orders_by_email_1h": 2, "orders_by_device_1h": 4})
        assert evaluate_hard_blocks(scan, POLICY, CONFIG) == []

    def test_first_time_amount_cap(self):
        scan = _make_scan({"prior_order_count": 0}, order_amount=800.0)
        assert evaluate_hard_blocks(scan, POLICY, CONFIG) == [HardBlock.FIRST_TIME_AMOUNT_CAP]

    def test_returning_customer_not_capped(self):
        scan = _make_scan({"prior_order_count": 3}, order_amount=800.0)
        assert evaluate_hard_blocks(scan, POLICY, CONFIG) == []


class TestReviewReasons:
    def test_amount_above_ceiling(self):
        reasons = evaluate_review_reasons(_make_scan(order_amount=1500.0), _make_aggregate(), POLICY)
        assert reasons == [ReviewReason.AMOUNT_ABOVE_REVIEW_CEILING]

    def test_reduced_confidence(self):
        aggregate = _make_aggregate(reduced_confidence=True, confidence=40)
        reasons = evaluate_review_reasons(_make_scan(), aggregate, POLICY)
        assert reasons == [ReviewReason.REDUCED_CONFIDENCE]

    def test_reduced_confidence_review_disabled(self):
        policy = MerchantPolicy(review_on_low_confidence=False)
        aggregate = _make_aggregate(reduced_confidence=True, confidence=40)
        assert evaluate_review_reasons(_make_scan(), aggregate, policy) == []
