"""Decision engine: composite score + merchant policy -> risk level and decision.

Everything here is a pure function of its arguments.
"""

from dataclasses import dataclass, field

from .aggregator import AggregateScore
from .config import MerchantPolicy, RiskConfig
from .detectors import is_disposable_email
from .models import (
    CustomerHistory,
    Decision,
    HardBlock,
    ReviewReason,
    RiskLevel,
    ScanInput,
)


@dataclass(frozen=True)
class DecisionOutcome:
    risk_level: RiskLevel
    decision: Decision
    reasons: list[str] = field(default_factory=list)


def classify_risk_level(score: int, policy: MerchantPolicy) -> RiskLevel:
    if score < policy.low_risk_below:
        return RiskLevel.LOW
    if score < policy.medium_risk_below:
        return RiskLevel.MEDIUM
    if score < policy.high_risk_below:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def decide(
    score: int,
    policy: MerchantPolicy,
    hard_blocks: list[HardBlock] | tuple[HardBlock, ...] = (),
    review_reasons: list[ReviewReason] | tuple[ReviewReason, ...] = (),
) -> DecisionOutcome:
    """Map a composite score to a decision.

    Hard blocks always decline. Review reasons never decline, they only
    prevent an automatic approval.
    """
    risk_level = classify_risk_level(score, policy)

    if hard_blocks:
        return DecisionOutcome(
            risk_level=risk_level,
            decision=Decision.DECLINE,
            reasons=[f"hard block: {b.value}" for b in hard_blocks],
        )
    if score >= policy.decline_threshold:
        return DecisionOutcome(
            risk_level=risk_level,
            decision=Decision.DECLINE,
            reasons=[f"score {score} >= decline threshold {policy.decline_threshold}"],
        )
    if score < policy.approve_threshold and not review_reasons:
        return DecisionOutcome(
            risk_level=risk_level,
            decision=Decision.APPROVE,
            reasons=[f"score {score} < approve threshold {policy.approve_threshold}"],
        )

    reasons = [f"review: {r.value}" for r in review_reasons]
    if score >= policy.approve_threshold:
        reasons.insert(0, f"score {score} between approve and decline thresholds")
    return DecisionOutcome(risk_level=risk_level, decision=Decision.REVIEW, reasons=reasons)


def evaluate_hard_blocks(
    scan: ScanInput,
    policy: MerchantPolicy,
    config: RiskConfig,
) -> list[HardBlock]:
    """Policy rules that force a decline regardless of score."""
    context = scan.context
    history: CustomerHistory = scan.history
    blocks: list[HardBlock] = []

    if policy.block_high_risk_countries:
        countries = {
            c.upper()
            for c in (
                scan.ip_country,
                context.billing_address.country if context.billing_address else None,
                context.shipping_address.country if context.shipping_address else None,
            )
            if c
        }
        if countries & set(policy.blocked_countries):
            blocks.append(HardBlock.BLOCKED_COUNTRY)

    if (
        policy.block_disposable_email
        and context.customer_email
        and is_disposable_email(context.customer_email, config.contact.disposable_domains)
    ):
        blocks.append(HardBlock.DISPOSABLE_EMAIL)

    if history.orders_by_email_1h >= policy.max_orders_per_email_per_hour:
        blocks.append(HardBlock.EMAIL_VELOCITY_CAP)
    if (
        context.device_fingerprint
        and history.orders_by_device_1h >= policy.max_orders_per_device_per_hour
    ):
        blocks.append(HardBlock.DEVICE_VELOCITY_CAP)

    if (
        history.is_first_time
        and policy.first_time_max_amount is not None
        and (context.order_amount or 0.0) > policy.first_time_max_amount
    ):
        blocks.append(HardBlock.FIRST_TIME_AMOUNT_CAP)

    return blocks


def evaluate_review_reasons(
    scan: ScanInput,
    aggregate: AggregateScore,
    policy: MerchantPolicy,
) -> list[ReviewReason]:
    """Conditions that keep an order out of automatic approval."""
    reasons: list[ReviewReason] = []
    amount = scan.context.order_amount or 0.0
    if policy.review_above_amount is not None and amount > policy.review_above_amount:
        reasons.append(ReviewReason.AMOUNT_ABOVE_REVIEW_CEILING)
    if aggregate.reduced_confidence and policy.review_on_low_confidence:
        reasons.append(ReviewReason.REDUCED_CONFIDENCE)
    return reasons
