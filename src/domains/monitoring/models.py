"""Pydantic models for post-authorization chargeback monitoring."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from src.domains.risk.models import PreAuthOrder

MONITORING_WINDOW_DAYS = 120


class PostAuthStatus(StrEnum):
    UNDER_MONITORING = "under_monitoring"
    CHARGEBACKS_FILED = "chargebacks_filed"
    CLEARED = "cleared"


class DisputeEvent(BaseModel):
    reason: str
    amount: float
    filed_at: datetime
    dispute_id: str | None = None


class EvidenceNote(BaseModel):
    evidence_type: str
    description: str
    url: str | None = None
    added_at: datetime


class PostAuthOrder(BaseModel):
    order_id: str
    merchant_id: str
    amount: float
    email: str
    card_bin: str | None = None
    ip_address: str | None = None
    pre_auth_score: int
    pre_auth_assessment_id: str | None = None
    chargeback_risk: float = 0.0
    status: PostAuthStatus = PostAuthStatus.UNDER_MONITORING
    days_monitored: int = Field(default=0, ge=0, le=MONITORING_WINDOW_DAYS)
    last_day_key: str | None = None
    created_at: datetime
    last_checked_at: datetime | None = None
    chargeback_filed_at: datetime | None = None
    chargeback_reason: str | None = None
    chargeback_amount: float | None = None
    cleared_at: datetime | None = None
    evidence: list[EvidenceNote] = Field(default_factory=list)

    @classmethod
    def from_pre_auth(
        cls, order: PreAuthOrder, chargeback_risk: float, now: datetime
    ) -> "PostAuthOrder":
        context = order.context
        return cls(
            order_id=order.order_id,
            merchant_id=order.merchant_id,
            amount=order.order_amount,
            email=order.customer_email,
            card_bin=context.card_bin,
            ip_address=context.ip_address,
            pre_auth_score=order.assessment.composite_score,
            pre_auth_assessment_id=order.assessment.assessment_id,
            chargeback_risk=chargeback_risk,
            created_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status != PostAuthStatus.UNDER_MONITORING


class MonitoredOrderFilter(BaseModel):
    merchant_id: str | None = None
    status: PostAuthStatus | None = None
    min_days: int | None = None
    max_days: int | None = None
    limit: int = Field(default=100, ge=1, le=1000)
    offset: int = Field(default=0, ge=0)

    def matches(self, order: PostAuthOrder) -> bool:
        if self.merchant_id is not None and order.merchant_id != self.merchant_id:
            return False
        if self.status is not None and order.status != self.status:
            return False
        if self.min_days is not None and order.days_monitored < self.min_days:
            return False
        if self.max_days is not None and order.days_monitored > self.max_days:
            return False
        return True


class OrderAdvance(StrEnum):
    ADVANCED = "advanced"
    CLEARED = "cleared"
    DISPUTED = "disputed"
    SKIPPED = "skipped"


class SweepResult(BaseModel):
    merchant_id: str
    day_key: str
    processed: int = 0
    advanced: int = 0
    cleared: int = 0
    disputed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_order_ids: list[str] = Field(default_factory=list)
