"""Combine signals into a composite risk score and a confidence value."""

import math
from dataclasses import dataclass

from .config import AggregatorSettings
from .models import Signal, SignalStatus


@dataclass(frozen=True)
class AggregateScore:
    composite_score: int
    confidence: int
    reduced_confidence: bool
    hard_fail_applied: bool
    available_count: int
    configured_count: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))


def weighted_mean(signals: list[Signal]) -> int:
    """Weighted mean of available signal scores, rounded half-up, clamped to 0-100."""
    available = [s for s in signals if s.available]
    total_weight = sum(s.weight for s in available)
    if total_weight <= 0:
        return 0
    raw = sum(s.score * s.weight for s in available) / total_weight
    return _clamp(_round_half_up(raw))


def aggregate_signals(
    signals: list[Signal],
    settings: AggregatorSettings,
    configured_count: int | None = None,
    high_risk_floor: int | None = None,
) -> AggregateScore:
    """Aggregate detector output.

    1. Composite = weighted mean over non-UNAVAILABLE signals
    2. Any FAIL keeps the composite at or above ``fail_floor`` (if set)
    3. A FAIL from a hard-fail kind forces at least ``high_risk_floor`` (the
       merchant's HIGH boundary), or ``settings.hard_fail_floor`` when unset
    4. Confidence = available / configured, as a percentage
    """
    configured = configured_count if configured_count is not None else len(signals)
    available_count = sum(1 for s in signals if s.available)

    composite = weighted_mean(signals)
    failed = [s for s in signals if s.status == SignalStatus.FAIL]

    if failed and settings.fail_floor is not None:
        composite = max(composite, _clamp(settings.fail_floor))

    hard_fail_applied = False
    if any(s.name in settings.hard_fail_kinds for s in failed):
        floor = _clamp(
            high_risk_floor if high_risk_floor is not None else settings.hard_fail_floor
        )
        if composite < floor:
            composite = floor
            hard_fail_applied = True

    if configured <= 0:
        confidence = 0
        fraction = 0.0
    else:
        fraction = available_count / configured
        confidence = _clamp(_round_half_up(fraction * 100))

    return AggregateScore(
        composite_score=composite,
        confidence=confidence,
        reduced_confidence=fraction < settings.min_available_fraction,
        hard_fail_applied=hard_fail_applied,
        available_count=available_count,
        configured_count=configured,
    )
