"""Abstract base class for signal detectors."""

from abc import ABC, abstractmethod

from ..config import RiskConfig
from ..models import DetectorKind, ScanInput, Signal, SignalStatus


class Detector(ABC):
    """Base class for all signal detectors.

    Detectors are pure: they read the assembled ScanInput and config and
    return exactly one Signal. External lookups happen before detection and
    arrive as plain data on the ScanInput.
    """

    kind: DetectorKind
    default_weight: float
    requires_bureau: bool = False

    @abstractmethod
    def evaluate(self, scan: ScanInput, config: RiskConfig) -> Signal:
        """Evaluate one dimension of the order and return its Signal."""
        ...

    def _signal(
        self,
        status: SignalStatus,
        score: int,
        config: RiskConfig,
        details: str = "",
        evidence: dict | None = None,
    ) -> Signal:
        return Signal(
            name=self.kind,
            status=status,
            score=score,
            weight=config.weight_for(self.kind, self.default_weight),
            details=details,
            evidence=evidence or {},
        )

    def _pass(self, config: RiskConfig, details: str = "", evidence: dict | None = None) -> Signal:
        return self._signal(SignalStatus.PASS, 0, config, details, evidence)

    def _warn(
        self, score: int, config: RiskConfig, details: str, evidence: dict | None = None
    ) -> Signal:
        return self._signal(SignalStatus.WARN, score, config, details, evidence)

    def _fail(
        self, score: int, config: RiskConfig, details: str, evidence: dict | None = None
    ) -> Signal:
        return self._signal(SignalStatus.FAIL, score, config, details, evidence)

    def unavailable(self, config: RiskConfig, details: str = "Lookup unavailable") -> Signal:
        return self._signal(SignalStatus.UNAVAILABLE, 0, config, details)
