"""Risk scoring configuration and merchant policy with sensible defaults."""

import os
from dataclasses import asdict, dataclass, field, fields, replace
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.shared.exceptions import PolicyMisconfiguration

from .models import DetectorKind

DEFAULT_HIGH_RISK_COUNTRIES: tuple[str, ...] = ("NG", "GH", "RO", "ID", "PK", "BD")

DEFAULT_DISPOSABLE_DOMAINS: frozenset[str] = frozenset(
    {
        "tempmail.com",
        "guerrillamail.com",
        "10minutemail.com",
        "throwaway.email",
        "temp-mail.org",
        "mailinator.com",
        "maildrop.cc",
        "trashmail.com",
    }
)


@dataclass
class DeviceThresholds:
    missing_fingerprint_score: int = 10
    shared_device_warn_emails: int = 3
    shared_device_fail_emails: int = 5


@dataclass
class VelocityThresholds:
    burst_window_max_orders: int = 3  # per email, 5 minutes
    hourly_max_orders: int = 10  # per email, 1 hour


@dataclass
class ContactSettings:
    disposable_domains: frozenset[str] = DEFAULT_DISPOSABLE_DOMAINS
    phone_min_digits: int = 10
    phone_max_digits: int = 15


@dataclass
class OrderValueThresholds:
    first_order_fail_amount: float = 1_000.0
    first_order_warn_amount: float = 500.0
    average_ratio_fail: float = 5.0
    average_ratio_warn: float = 3.0


@dataclass
class BehaviorThresholds:
    min_checkout_seconds: float = 20.0
    min_pages_viewed: int = 2


@dataclass
class GeoSettings:
    high_risk_countries: tuple[str, ...] = DEFAULT_HIGH_RISK_COUNTRIES


DEFAULT_WEIGHTS: dict[DetectorKind, float] = {
    DetectorKind.DEVICE_FINGERPRINT: 0.25,
    DetectorKind.GEOLOCATION: 0.20,
    DetectorKind.VELOCITY: 0.20,
    DetectorKind.EMAIL: 0.15,
    DetectorKind.PHONE: 0.05,
    DetectorKind.ADDRESS: 0.10,
    DetectorKind.ORDER_VALUE: 0.05,
    DetectorKind.CHECKOUT_BEHAVIOR: 0.05,
    DetectorKind.CREDIT_SCORE: 0.15,
    DetectorKind.PAYMENT_HISTORY: 0.15,
    DetectorKind.CREDIT_UTILIZATION: 0.10,
    DetectorKind.DEROGATORY_MARKS: 0.15,
    DetectorKind.IDENTITY_VERIFICATION: 0.25,
    DetectorKind.SYNTHETIC_IDENTITY: 0.25,
    DetectorKind.CREDIT_INQUIRIES: 0.05,
    DetectorKind.CONTACT_VELOCITY: 0.10,
    DetectorKind.ORDER_TO_CREDIT_RATIO: 0.10,
}


@dataclass
class AggregatorSettings:
    min_available_fraction: float = 0.5
    hard_fail_kinds: frozenset[DetectorKind] = frozenset(
        {DetectorKind.IDENTITY_VERIFICATION, DetectorKind.SYNTHETIC_IDENTITY}
    )
    # Composite floor when a hard-fail signal fails and no merchant risk bands apply
    hard_fail_floor: int = 50
    # Optional floor for any FAIL signal; None disables it
    fail_floor: int | None = None


@dataclass
class ChargebackPenalties:
    """Additive penalties for the chargeback risk display score."""

    base: float = 5.0
    cap: float = 95.0
    credit_below_580: float = 25.0
    credit_below_650: float = 15.0
    credit_below_720: float = 5.0
    late_payments_over_5: float = 20.0
    late_payments_over_2: float = 10.0
    per_derogatory_mark: float = 15.0
    utilization_over_80: float = 15.0
    utilization_over_50: float = 8.0
    ssn_invalid: float = 30.0
    address_unverified: float = 20.0
    synthetic_over_60: float = 40.0
    synthetic_over_30: float = 15.0


@dataclass
class RiskConfig:
    device: DeviceThresholds = field(default_factory=DeviceThresholds)
    velocity: VelocityThresholds = field(default_factory=VelocityThresholds)
    contact: ContactSettings = field(default_factory=ContactSettings)
    order_value: OrderValueThresholds = field(default_factory=OrderValueThresholds)
    behavior: BehaviorThresholds = field(default_factory=BehaviorThresholds)
    geo: GeoSettings = field(default_factory=GeoSettings)
    weights: dict[DetectorKind, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    aggregator: AggregatorSettings = field(default_factory=AggregatorSettings)
    chargeback: ChargebackPenalties = field(default_factory=ChargebackPenalties)
    lookup_timeout_seconds: float = 1.0

    def weight_for(self, kind: DetectorKind, default: float) -> float:
        return self.weights.get(kind, default)

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Load config with env var overrides. Env vars use PREAUTH_ prefix."""
        config = cls()

        if v := os.getenv("PREAUTH_LOOKUP_TIMEOUT_SECONDS"):
            config.lookup_timeout_seconds = float(v)
        if v := os.getenv("PREAUTH_MIN_AVAILABLE_FRACTION"):
            config.aggregator.min_available_fraction = float(v)
        if v := os.getenv("PREAUTH_HARD_FAIL_FLOOR"):
            config.aggregator.hard_fail_floor = int(v)
        if v := os.getenv("PREAUTH_FAIL_FLOOR"):
            config.aggregator.fail_floor = int(v)
        if v := os.getenv("PREAUTH_HIGH_RISK_COUNTRIES"):
            config.geo.high_risk_countries = tuple(c.strip().upper() for c in v.split(","))
        if v := os.getenv("PREAUTH_CHARGEBACK_CAP"):
            config.chargeback.cap = float(v)

        return config


@dataclass(frozen=True)
class MerchantPolicy:
    """Per-merchant decision policy. Validated on construction, read-only after."""

    merchant_id: str = "default"
    approve_threshold: int = 30
    decline_threshold: int = 70
    # Upper bounds (exclusive) of LOW, MEDIUM and HIGH
    low_risk_below: int = 25
    medium_risk_below: int = 50
    high_risk_below: int = 75
    review_above_amount: float | None = 1_000.0
    first_time_max_amount: float | None = 500.0
    max_orders_per_email_per_hour: int = 3
    max_orders_per_device_per_hour: int = 5
    block_high_risk_countries: bool = True
    blocked_countries: tuple[str, ...] = DEFAULT_HIGH_RISK_COUNTRIES
    block_disposable_email: bool = True
    review_on_low_confidence: bool = True
    review_timeout_hours: int = 24
    timezone: str = "UTC"
    daily_check_time_minutes: int = 120
    notify_on_high_risk: bool = True
    notify_on_pending_review: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        problems: list[str] = []
        for name in ("approve_threshold", "decline_threshold"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                problems.append(f"{name} must be within 0-100, got {value}")
        if self.decline_threshold < self.approve_threshold:
            problems.append(
                f"decline_threshold ({self.decline_threshold}) is below "
                f"approve_threshold ({self.approve_threshold})"
            )
        if not 0 < self.low_risk_below < self.medium_risk_below < self.high_risk_below <= 100:
            problems.append("risk level thresholds must be ascending within 0-100")
        if self.max_orders_per_email_per_hour < 1 or self.max_orders_per_device_per_hour < 1:
            problems.append("velocity caps must be at least 1")
        if self.review_timeout_hours < 1:
            problems.append("review_timeout_hours must be at least 1")
        for name in ("review_above_amount", "first_time_max_amount"):
            value = getattr(self, name)
            if value is not None and value < 0:
                problems.append(f"{name} must not be negative")
        if not 0 <= self.daily_check_time_minutes < 24 * 60:
            problems.append("daily_check_time_minutes must be within one day")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            problems.append(f"unknown timezone {self.timezone!r}")

        if problems:
            raise PolicyMisconfiguration(
                f"invalid policy for merchant {self.merchant_id}: " + "; ".join(problems)
            )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["blocked_countries"] = list(self.blocked_countries)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MerchantPolicy":
        """Build a policy from stored settings, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        if "blocked_countries" in values:
            values["blocked_countries"] = tuple(c.upper() for c in values["blocked_countries"])
        return cls(**values)


# Module-level default instances
default_config = RiskConfig()
default_policy = MerchantPolicy()


async def load_policy(store, merchant_id: str) -> MerchantPolicy:
    """Stored policy for the merchant, or the defaults under its id."""
    policy = await store.get_policy(merchant_id)
    if policy is not None:
        return policy
    return replace(default_policy, merchant_id=merchant_id)
