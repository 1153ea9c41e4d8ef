"""Order-value and checkout-behavior detectors."""

from ..config import RiskConfig
from ..models import DetectorKind, ScanInput, Signal
from .base import Detector


class OrderValueDetector(Detector):
    """Flags large first orders and orders far above the customer's average."""

    kind = DetectorKind.ORDER_VALUE
    default_weight = 0.05

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        amount = scan.context.order_amount or 0.0
        history = scan.history
        thresholds = config.order_value

        if history.is_first_time:
            evidence = {"amount": amount, "first_order": True}
            if amount > thresholds.first_order_fail_amount:
                return self._fail(30, config, f"High-value first order: ${amount:,.2f}", evidence)
            if amount > thresholds.first_order_warn_amount:
                return self._warn(
                    15, config, f"Above-average first order: ${amount:,.2f}", evidence
                )
            return self._pass(config, "First order within normal range", evidence)

        if history.average_order_value <= 0:
            return self._pass(config, "No order average to compare against")

        ratio = amount / history.average_order_value
        evidence = {
            "amount": amount,
            "average": history.average_order_value,
            "ratio": round(ratio, 2),
        }
        if ratio > thresholds.average_ratio_fail:
            return self._fail(25, config, f"Order is {ratio:.1f}x the customer average", evidence)
        if ratio > thresholds.average_ratio_warn:
            return self._warn(15, config, f"Order is {ratio:.1f}x the customer average", evidence)
        return self._pass(config, "Order value consistent with history", evidence)


class CheckoutBehaviorDetector(Detector):
    """Flags checkouts that are too fast or skip browsing entirely."""

    kind = DetectorKind.CHECKOUT_BEHAVIOR
    default_weight = 0.05

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        timing = scan.context.session_timing
        if timing is None:
            return self._pass(config, "No session data provided")

        thresholds = config.behavior
        seconds = timing.time_to_checkout_seconds
        if seconds is not None and seconds < thresholds.min_checkout_seconds:
            return self._fail(
                25, config, f"Checkout completed in {seconds:.0f}s", {"seconds": seconds}
            )
        pages = timing.pages_viewed
        if pages is not None and pages < thresholds.min_pages_viewed:
            return self._warn(12, config, f"Only {pages} page(s) viewed", {"pages": pages})
        return self._pass(config, "Normal browsing behavior")
