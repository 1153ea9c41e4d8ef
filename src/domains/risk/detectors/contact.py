"""Email, phone and address detectors."""

import re

from ..config import RiskConfig
from ..models import Address, DetectorKind, ScanInput, Signal
from .base import Detector

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def email_domain(email: str) -> str:
    return email.rsplit("@", 1)[-1].strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_PATTERN.match(email.strip()))


def is_disposable_email(email: str, disposable_domains: frozenset[str]) -> bool:
    return email_domain(email) in disposable_domains


class EmailDetector(Detector):
    """Fails malformed addresses and disposable-mailbox domains."""

    kind = DetectorKind.EMAIL
    default_weight = 0.15

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        email = scan.context.customer_email or ""
        if not is_valid_email(email):
            return self._fail(40, config, "Malformed email address", {"email": email})
        domain = email_domain(email)
        if domain in config.contact.disposable_domains:
            return self._fail(25, config, "Disposable email domain", {"domain": domain})
        return self._pass(config, "Email looks valid", {"domain": domain})


class PhoneDetector(Detector):
    """Checks digit length of the supplied phone number."""

    kind = DetectorKind.PHONE
    default_weight = 0.05

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        phone = scan.context.customer_phone
        if not phone:
            return self._pass(config, "No phone provided")
        digits = re.sub(r"\D", "", phone)
        if not config.contact.phone_min_digits <= len(digits) <= config.contact.phone_max_digits:
            return self._warn(
                15, config, "Invalid phone number length", {"digit_count": len(digits)}
            )
        return self._pass(config, "Phone number length valid", {"digit_count": len(digits)})


def _country(address: Address) -> str:
    return address.country.strip().upper()


class AddressDetector(Detector):
    """Compares normalized billing and shipping addresses."""

    kind = DetectorKind.ADDRESS
    default_weight = 0.10

    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        billing = scan.context.billing_address
        shipping = scan.context.shipping_address
        if billing is None or shipping is None:
            return self._pass(config, "Address comparison not applicable")

        billing_country = _country(billing)
        shipping_country = _country(shipping)
        if billing_country != shipping_country:
            return self._fail(
                25,
                config,
                "Billing and shipping in different countries",
                {"billing_country": billing_country, "shipping_country": shipping_country},
            )
        if billing.normalized() != shipping.normalized():
            return self._warn(12, config, "Billing and shipping addresses differ")
        return self._pass(config, "Billing and shipping addresses match")
