"""Unit tests for the chargeback risk display score."""

from src.domains.risk.chargeback import estimate_chargeback_risk
from src.domains.risk.config import ChargebackPenalties
from src.domains.risk.models import BureauReport

PENALTIES = ChargebackPenalties()


def _make_report(**kwargs) -> BureauReport:
    defaults = {"credit_score": 760}
    defaults.update(kwargs)
    return BureauReport(**defaults)


class TestChargebackEstimate:
    def test_clean_report_is_base(self):
        assert estimate_chargeback_risk(_make_report(), 10, PENALTIES) == 5.0

    def test_penalties_add_up(self):
        report = _make_report(credit_score=600, late_payments=3, credit_utilization=60.0)
        # 5 + 15 + 10 + 8
        assert estimate_chargeback_risk(report, 0, PENALTIES) == 38.0

    def test_capped(self):
        report = _make_report(
            credit_score=500,
            late_payments=9,
            derogatory_marks=3,
            ssn_valid=False,
            synthetic_fraud_score=80.0,
        )
        assert estimate_chargeback_risk(report, 0, PENALTIES) == 95.0

    def test_without_bureau_uses_composite(self):
        assert estimate_chargeback_risk(None, 42, PENALTIES) == 42.0
        assert estimate_chargeback_risk(None, 100, PENALTIES) == 95.0

    def test_penalties_configurable(self):
        penalties = ChargebackPenalties(base=0.0, per_derogatory_mark=5.0)
        assert estimate_chargeback_risk(_make_report(derogatory_marks=2), 0, penalties) == 10.0
