"""Equilibrium detector.

Stateless and per reading: a cycle alerts if and only if the oracle flags
it optimal. There is no hysteresis or debounce, so consecutive optimal
cycles each fire. The display classification never alerts on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from oraclebot.connectors.oracle_client import ComputationResult

HEALTHY_DELTA_THRESHOLD = 0.2  # Δ as decimal (delta / 1000)


class EquilibriumStatus(Enum):
    OPTIMAL = "optimal"
    HEALTHY = "healthy"
    SUBOPTIMAL = "suboptimal"


@dataclass(frozen=True)
class Alert:
    """Critical equilibrium detected on a market."""

    market: str
    price: float
    result: ComputationResult
    label: str | None = None
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def classify(result: ComputationResult) -> EquilibriumStatus:
    if result.is_optimal:
        return EquilibriumStatus.OPTIMAL
    if result.delta_decimal > HEALTHY_DELTA_THRESHOLD:
        return EquilibriumStatus.HEALTHY
    return EquilibriumStatus.SUBOPTIMAL


def should_alert(result: ComputationResult) -> bool:
    return bool(result.is_optimal)


def detect(
    market: str,
    price: float,
    result: ComputationResult,
    label: str | None = None,
) -> Alert | None:
    """Alert for this cycle, or None when the result is not optimal."""
    if not should_alert(result):
        return None
    return Alert(market=market, price=price, result=result, label=label)
