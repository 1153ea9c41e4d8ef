"""Pre-authorization risk domain: detectors, aggregation, decisions and the gate."""

from .models import (
    Decision,
    DetectorKind,
    OrderContext,
    PreAuthOrder,
    PreAuthStatus,
    RiskAssessment,
    RiskLevel,
    Signal,
    SignalStatus,
)

__all__ = [
    "Decision",
    "DetectorKind",
    "OrderContext",
    "PreAuthOrder",
    "PreAuthStatus",
    "RiskAssessment",
    "RiskLevel",
    "Signal",
    "SignalStatus",
]
