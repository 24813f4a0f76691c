"""Running statistics over successful oracle cycles.

Means are updated incrementally, so no per-cycle history is kept.
Values are immutable: ``record`` returns the next state and the
orchestrator swaps it in, which makes a failed cycle a no-op by
construction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from oraclebot.connectors.oracle_client import ComputationResult


@dataclass(frozen=True)
class RunningStats:
    """Lifetime statistics of one monitoring run."""

    readings_count: int = 0
    mean_delta: float = 0.0
    mean_efficiency_percent: float = 0.0
    optimal_count: int = 0
    failed_cycles: int = 0
    synthetic_readings: int = 0

    @property
    def optimal_ratio(self) -> float:
        """Share of successful cycles flagged optimal (0.0 before the first)."""
        if self.readings_count == 0:
            return 0.0
        return self.optimal_count / self.readings_count

    def record(self, result: ComputationResult) -> RunningStats:
        """Fold one successful result into the running means and counters."""
        n = self.readings_count + 1
        return replace(
            self,
            readings_count=n,
            mean_delta=(self.mean_delta * (n - 1) + result.delta) / n,
            mean_efficiency_percent=(
                self.mean_efficiency_percent * (n - 1) + result.efficiency_percent
            )
            / n,
            optimal_count=self.optimal_count + (1 if result.is_optimal else 0),
        )

    def record_failure(self) -> RunningStats:
        return replace(self, failed_cycles=self.failed_cycles + 1)

    def record_synthetic(self) -> RunningStats:
        return replace(self, synthetic_readings=self.synthetic_readings + 1)

    def as_dict(self) -> dict[str, Any]:
        return {
            "readings": self.readings_count,
            "optimal": self.optimal_count,
            "optimal_pct": round(self.optimal_ratio * 100, 1),
            "mean_delta": round(self.mean_delta, 1),
            "mean_efficiency_pct": round(self.mean_efficiency_percent, 2),
            "failed_cycles": self.failed_cycles,
            "synthetic_readings": self.synthetic_readings,
        }
