"""Identity and credit detectors derived from the bureau report.

All of these read the same BureauReport. When the bureau lookup is not
configured they are left out of the run; when it is configured but failed
they report UNAVAILABLE.
"""

from abc import abstractmethod

from ..config import RiskConfig
from ..models import BureauReport, DetectorKind, ScanInput, Signal, SignalStatus
from .base import Detector

# (exclusive upper bound, status, score); the last band catches everything else
Band = tuple[float, SignalStatus, int]


class BureauDetector(Detector):
    requires_bureau = True

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        if scan.bureau is None:
            return self.unavailable(config, "Bureau report unavailable")
        return self._from_report(scan.bureau, scan, config)

    @abstractmethod
    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        """Score an available bureau report."""
        ...

    def _banded(
        self,
        value: float,
        bands: list[Band],
        config: RiskConfig,
        details: str,
        evidence: dict,
    ) -> Signal:
        for upper, status, score in bands:
            if value < upper:
                return self._signal(status, score, config, details, evidence)
        _, status, score = bands[-1]
        return self._signal(status, score, config, details, evidence)


class CreditScoreDetector(BureauDetector):
    kind = DetectorKind.CREDIT_SCORE
    default_weight = 0.15

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        score = report.credit_score
        evidence = {"credit_score": score}
        if score >= 720:
            return self._pass(config, f"Credit score {score}", evidence)
        if score >= 650:
            return self._warn(20, config, f"Fair credit score {score}", evidence)
        if score >= 580:
            return self._warn(50, config, f"Poor credit score {score}", evidence)
        return self._fail(80, config, f"Very poor credit score {score}", evidence)


class PaymentHistoryDetector(BureauDetector):
    kind = DetectorKind.PAYMENT_HISTORY
    default_weight = 0.15

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        rate = report.on_time_payment_rate
        evidence = {"on_time_rate": rate, "late_payments": report.late_payments}
        if rate >= 95:
            return self._pass(config, f"{rate:.0f}% payments on time", evidence)
        if rate >= 80:
            return self._warn(25, config, f"{rate:.0f}% payments on time", evidence)
        return self._fail(65, config, f"Only {rate:.0f}% payments on time", evidence)


class CreditUtilizationDetector(BureauDetector):
    kind = DetectorKind.CREDIT_UTILIZATION
    default_weight = 0.10

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        utilization = report.credit_utilization
        return self._banded(
            utilization,
            [
                (30, SignalStatus.PASS, 0),
                (70, SignalStatus.WARN, 30),
                (float("inf"), SignalStatus.FAIL, 70),
            ],
            config,
            f"Credit utilization {utilization:.0f}%",
            {"utilization": utilization},
        )


class DerogatoryMarksDetector(BureauDetector):
    kind = DetectorKind.DEROGATORY_MARKS
    default_weight = 0.15

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        marks = report.derogatory_marks
        return self._banded(
            marks,
            [
                (1, SignalStatus.PASS, 0),
                (3, SignalStatus.WARN, 40),
                (float("inf"), SignalStatus.FAIL, 85),
            ],
            config,
            f"{marks} derogatory mark(s)",
            {"derogatory_marks": marks},
        )


class IdentityVerificationDetector(BureauDetector):
    kind = DetectorKind.IDENTITY_VERIFICATION
    default_weight = 0.25

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        evidence = {
            "ssn_valid": report.ssn_valid,
            "ssn_matches_name": report.ssn_matches_name,
            "address_verified": report.address_verified,
        }
        if report.identity_verified:
            return self._pass(config, "Identity verified", evidence)
        failed = [name for name, ok in evidence.items() if not ok]
        return self._fail(90, config, f"Identity verification failed: {', '.join(failed)}", evidence)


class SyntheticIdentityDetector(BureauDetector):
    kind = DetectorKind.SYNTHETIC_IDENTITY
    default_weight = 0.25

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        value = report.synthetic_fraud_score
        return self._banded(
            value,
            [
                (30, SignalStatus.PASS, 0),
                (60, SignalStatus.WARN, 35),
                (float("inf"), SignalStatus.FAIL, 95),
            ],
            config,
            f"Synthetic identity score {value:.0f}",
            {"synthetic_fraud_score": value},
        )


class CreditInquiriesDetector(BureauDetector):
    kind = DetectorKind.CREDIT_INQUIRIES
    default_weight = 0.05

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        inquiries = report.recent_inquiries
        return self._banded(
            inquiries,
            [
                (1, SignalStatus.PASS, 0),
                (4, SignalStatus.WARN, 15),
                (float("inf"), SignalStatus.FAIL, 60),
            ],
            config,
            f"{inquiries} recent credit inquiries",
            {"recent_inquiries": inquiries},
        )


class ContactVelocityDetector(BureauDetector):
    """Recent address and phone changes on the bureau file."""

    kind = DetectorKind.CONTACT_VELOCITY
    default_weight = 0.10

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        changes = report.address_changes + report.phone_changes
        return self._banded(
            changes,
            [
                (1, SignalStatus.PASS, 0),
                (3, SignalStatus.WARN, 20),
                (float("inf"), SignalStatus.FAIL, 70),
            ],
            config,
            f"{changes} recent contact detail change(s)",
            {"address_changes": report.address_changes, "phone_changes": report.phone_changes},
        )


class OrderToCreditRatioDetector(BureauDetector):
    kind = DetectorKind.ORDER_TO_CREDIT_RATIO
    default_weight = 0.10

    def _from_report(self, report: BureauReport, scan: ScanInput, config: RiskConfig) -> Signal:
        limit = report.available_credit_limit
        if not limit:
            return self._pass(config, "No credit limit reported")
        ratio_pct = (scan.context.order_amount or 0.0) / limit * 100
        return self._banded(
            ratio_pct,
            [
                (10, SignalStatus.PASS, 0),
                (25, SignalStatus.WARN, 25),
                (float("inf"), SignalStatus.FAIL, 65),
            ],
            config,
            f"Order is {ratio_pct:.0f}% of available credit",
            {"ratio_pct": round(ratio_pct, 2), "credit_limit": limit},
        )
