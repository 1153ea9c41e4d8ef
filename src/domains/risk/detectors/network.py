"""Device, geolocation and velocity detectors."""

from ..config import RiskConfig
from ..models import DetectorKind, ScanInput, Signal
from .base import Detector


class DeviceFingerprintDetector(Detector):
    """Flags missing fingerprints and devices shared across many emails."""

    kind = DetectorKind.DEVICE_FINGERPRINT
    default_weight = 0.25

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        thresholds = config.device
        if not scan.context.device_fingerprint:
            return self._warn(
                thresholds.missing_fingerprint_score, config, "No device fingerprint supplied"
            )

        emails = scan.history.distinct_emails_on_device
        evidence = {"distinct_emails": emails}
        if emails > thresholds.shared_device_fail_emails:
            return self._fail(40, config, f"Device used by {emails} different emails", evidence)
        if emails > thresholds.shared_device_warn_emails:
            return self._warn(25, config, f"Device used by {emails} different emails", evidence)
        return self._pass(config, "Device fingerprint consistent", evidence)


class GeolocationDetector(Detector):
    """Compares the IP country with the card BIN country and the high-risk list."""

    kind = DetectorKind.GEOLOCATION
    default_weight = 0.20

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        if not scan.context.ip_address and not scan.ip_country:
            return self._pass(config, "No IP address provided")
        if not scan.ip_country:
            return self.unavailable(config, "IP geolocation unavailable")

        ip_country = scan.ip_country.upper()
        evidence = {"ip_country": ip_country, "bin_country": scan.bin_country}
        if scan.bin_country and scan.bin_country.upper() != ip_country:
            return self._fail(
                30,
                config,
                f"IP country {ip_country} does not match card country {scan.bin_country.upper()}",
                evidence,
            )
        if ip_country in config.geo.high_risk_countries:
            return self._warn(15, config, f"Order from high-risk country {ip_country}", evidence)
        return self._pass(config, "Location consistent", evidence)


class VelocityDetector(Detector):
    """Counts recent orders from the same email."""

    kind = DetectorKind.VELOCITY
    default_weight = 0.20

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        history = scan.history
        thresholds = config.velocity
        evidence = {
            "orders_5m": history.orders_by_email_5m,
            "orders_1h": history.orders_by_email_1h,
        }
        if history.orders_by_email_5m > thresholds.burst_window_max_orders:
            return self._fail(
                35,
                config,
                f"{history.orders_by_email_5m} orders in 5 minutes (bot pattern)",
                evidence,
            )
        if history.orders_by_email_1h > thresholds.hourly_max_orders:
            return self._fail(
                30, config, f"{history.orders_by_email_1h} orders in the last hour", evidence
            )
        return self._pass(config, "Normal order velocity", evidence)
