"""Signal detector registry.

Exports ALL_DETECTORS (one instance per DetectorKind, in evaluation order)
and the individual detector classes for direct use.
"""

from ..models import DetectorKind
from .base import Detector
from .bureau import (
    BureauDetector,
    ContactVelocityDetector,
    CreditInquiriesDetector,
    CreditScoreDetector,
    CreditUtilizationDetector,
    DerogatoryMarksDetector,
    IdentityVerificationDetector,
    OrderToCreditRatioDetector,
    PaymentHistoryDetector,
    SyntheticIdentityDetector,
)
from .contact import (
    AddressDetector,
    EmailDetector,
    PhoneDetector,
    email_domain,
    is_disposable_email,
    is_valid_email,
)
from .network import DeviceFingerprintDetector, GeolocationDetector, VelocityDetector
from .order import CheckoutBehaviorDetector, OrderValueDetector

ALL_DETECTORS: list[Detector] = [
    # Order and session
    DeviceFingerprintDetector(),
    GeolocationDetector(),
    VelocityDetector(),
    EmailDetector(),
    PhoneDetector(),
    AddressDetector(),
    OrderValueDetector(),
    CheckoutBehaviorDetector(),
    # Bureau
    CreditScoreDetector(),
    PaymentHistoryDetector(),
    CreditUtilizationDetector(),
    DerogatoryMarksDetector(),
    IdentityVerificationDetector(),
    SyntheticIdentityDetector(),
    CreditInquiriesDetector(),
    ContactVelocityDetector(),
    OrderToCreditRatioDetector(),
]

DETECTOR_REGISTRY: dict[DetectorKind, Detector] = {d.kind: d for d in ALL_DETECTORS}

__all__ = [
    "ALL_DETECTORS",
    "DETECTOR_REGISTRY",
    "Detector",
    "BureauDetector",
    "email_domain",
    "is_disposable_email",
    "is_valid_email",
    # Order and session
    "DeviceFingerprintDetector",
    "GeolocationDetector",
    "VelocityDetector",
    "EmailDetector",
    "PhoneDetector",
    "AddressDetector",
    "OrderValueDetector",
    "CheckoutBehaviorDetector",
    # Bureau
    "CreditScoreDetector",
    "PaymentHistoryDetector",
    "CreditUtilizationDetector",
    "DerogatoryMarksDetector",
    "IdentityVerificationDetector",
    "SyntheticIdentityDetector",
    "CreditInquiriesDetector",
    "ContactVelocityDetector",
    "OrderToCreditRatioDetector",
]
