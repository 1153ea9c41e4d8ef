"""Chargeback risk estimate shown alongside monitored orders.

This is a derived display score built from additive penalties, not a
calibrated probability. Penalty weights come from ChargebackPenalties.
"""

from .config import ChargebackPenalties
from .models import BureauReport


def estimate_chargeback_risk(
    bureau: BureauReport | None,
    composite_score: int,
    penalties: ChargebackPenalties,
) -> float:
    if bureau is None:
        return round(min(float(composite_score), penalties.cap), 1)

    risk = penalties.base

    if bureau.credit_score < 580:
        risk += penalties.credit_below_580
    elif bureau.credit_score < 650:
        risk += penalties.credit_below_650
    elif bureau.credit_score < 720:
        risk += penalties.credit_below_720

    if bureau.late_payments > 5:
        risk += penalties.late_payments_over_5
    elif bureau.late_payments > 2:
        risk += penalties.late_payments_over_2

    risk += bureau.derogatory_marks * penalties.per_derogatory_mark

    if bureau.credit_utilization > 80:
        risk += penalties.utilization_over_80
    elif bureau.credit_utilization > 50:
        risk += penalties.utilization_over_50

    if not bureau.ssn_valid:
        risk += penalties.ssn_invalid
    if not bureau.address_verified:
        risk += penalties.address_unverified

    if bureau.synthetic_fraud_score > 60:
        risk += penalties.synthetic_over_60
    elif bureau.synthetic_fraud_score > 30:
        risk += penalties.synthetic_over_30

    return round(min(risk, penalties.cap), 1)
