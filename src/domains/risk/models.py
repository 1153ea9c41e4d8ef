"""Pydantic models for the pre-authorization risk domain."""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class SignalStatus(StrEnum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"
    UNAVAILABLE = "unavailable"


class DetectorKind(StrEnum):
    DEVICE_FINGERPRINT = "device_fingerprint"
    GEOLOCATION = "geolocation"
    VELOCITY = "velocity"
    EMAIL = "email"
    PHONE = "phone"
    ADDRESS = "address"
    ORDER_VALUE = "order_value"
    CHECKOUT_BEHAVIOR = "checkout_behavior"
    # Bureau-derived
    CREDIT_SCORE = "credit_score"
    PAYMENT_HISTORY = "payment_history"
    CREDIT_UTILIZATION = "credit_utilization"
    DEROGATORY_MARKS = "derogatory_marks"
    IDENTITY_VERIFICATION = "identity_verification"
    SYNTHETIC_IDENTITY = "synthetic_identity"
    CREDIT_INQUIRIES = "credit_inquiries"
    CONTACT_VELOCITY = "contact_velocity"
    ORDER_TO_CREDIT_RATIO = "order_to_credit_ratio"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Decision(StrEnum):
    APPROVE = "approve"
    REVIEW = "review"
    DECLINE = "decline"


class HardBlock(StrEnum):
    BLOCKED_COUNTRY = "blocked_country"
    DISPOSABLE_EMAIL = "disposable_email"
    EMAIL_VELOCITY_CAP = "email_velocity_cap"
    DEVICE_VELOCITY_CAP = "device_velocity_cap"
    FIRST_TIME_AMOUNT_CAP = "first_time_amount_cap"


class ReviewReason(StrEnum):
    AMOUNT_ABOVE_REVIEW_CEILING = "amount_above_review_ceiling"
    REDUCED_CONFIDENCE = "reduced_confidence"


class PreAuthStatus(StrEnum):
    CREATED = "created"
    AUTO_APPROVED = "auto_approved"
    AUTO_DECLINED = "auto_declined"
    PENDING_REVIEW = "pending_review"
    MANUAL_APPROVED = "manual_approved"
    MANUAL_DECLINED = "manual_declined"
    EXPIRED = "expired"
    MOVED_TO_POST_AUTH = "moved_to_post_auth"


class Signal(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: DetectorKind
    status: SignalStatus
    score: int = Field(ge=0, le=100)
    weight: float = Field(ge=0.0, le=1.0)
    details: str = ""
    evidence: dict = Field(default_factory=dict)

    @property
    def available(self) -> bool:
        return self.status != SignalStatus.UNAVAILABLE


class Address(BaseModel):
    line1: str
    line2: str | None = None
    city: str
    state: str | None = None
    postal_code: str
    country: str

    def normalized(self) -> str:
        parts = [self.line1, self.line2 or "", self.city, self.state or "", self.postal_code]
        return "|".join(" ".join(p.lower().split()) for p in parts)


class SessionTiming(BaseModel):
    time_to_checkout_seconds: float | None = None
    pages_viewed: int | None = None


class OrderContext(BaseModel):
    """Inbound order/customer context. Only email and amount are required."""

    order_id: str = Field(default_factory=lambda: f"ord_{uuid.uuid4().hex}")
    merchant_id: str = "default"
    customer_email: str | None = None
    customer_phone: str | None = None
    order_amount: float | None = None
    billing_address: Address | None = None
    shipping_address: Address | None = None
    ip_address: str | None = None
    device_fingerprint: str | None = None
    card_bin: str | None = None
    # Pre-enriched geo data, when the caller already resolved it
    ip_country: str | None = None
    bin_country: str | None = None
    session_timing: SessionTiming | None = None


class CustomerHistory(BaseModel):
    """Prior-order facts computed from the order store before detection."""

    orders_by_email_5m: int = 0
    orders_by_email_1h: int = 0
    orders_by_device_1h: int = 0
    distinct_emails_on_device: int = 0
    prior_order_count: int = 0
    average_order_value: float = 0.0

    @property
    def is_first_time(self) -> bool:
        return self.prior_order_count == 0


class BureauReport(BaseModel):
    credit_score: int
    on_time_payment_rate: float = 100.0
    late_payments: int = 0
    credit_utilization: float = 0.0
    derogatory_marks: int = 0
    ssn_valid: bool = True
    ssn_matches_name: bool = True
    address_verified: bool = True
    synthetic_fraud_score: float = 0.0
    recent_inquiries: int = 0
    address_changes: int = 0
    phone_changes: int = 0
    available_credit_limit: float | None = None

    @property
    def identity_verified(self) -> bool:
        return self.ssn_valid and self.ssn_matches_name and self.address_verified


class ScanInput(BaseModel):
    """Everything a detector may read. Assembled once per scan."""

    context: OrderContext
    history: CustomerHistory = Field(default_factory=CustomerHistory)
    bureau: BureauReport | None = None
    ip_country: str | None = None
    bin_country: str | None = None


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    assessment_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    signals: tuple[Signal, ...]
    composite_score: int = Field(ge=0, le=100)
    confidence: int = Field(ge=0, le=100)
    reduced_confidence: bool = False
    hard_fail_applied: bool = False
    risk_level: RiskLevel
    decision: Decision
    hard_blocks: tuple[HardBlock, ...] = ()
    review_reasons: tuple[ReviewReason, ...] = ()
    reason: str = ""
    created_at: datetime


class PreAuthOrder(BaseModel):
    order_id: str
    merchant_id: str
    customer_email: str
    order_amount: float
    context: OrderContext
    assessment: RiskAssessment
    status: PreAuthStatus
    chargeback_risk: float = 0.0
    created_at: datetime
    expires_at: datetime
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    review_notes: str | None = None
    moved_to_post_auth_at: datetime | None = None
    post_auth_order_id: str | None = None


class PreAuthResult(BaseModel):
    order: PreAuthOrder
    created: bool

    @property
    def decision(self) -> Decision:
        return self.order.assessment.decision


class ReviewAction(BaseModel):
    reviewer: str
    notes: str | None = None
