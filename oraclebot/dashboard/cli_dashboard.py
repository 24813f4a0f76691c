"""Plain-text rendering of readings, alerts, and the run summary.

Uses str formatting only, no TUI library.
"""

from __future__ import annotations

from datetime import UTC, datetime

from oraclebot.connectors.oracle_client import ComputationResult
from oraclebot.core.detector import Alert, EquilibriumStatus, classify
from oraclebot.core.normalizer import MarketReading
from oraclebot.core.stats import RunningStats

STATUS_LABELS: dict[EquilibriumStatus, str] = {
    EquilibriumStatus.OPTIMAL: "OPTIMAL",
    EquilibriumStatus.HEALTHY: "Healthy",
    EquilibriumStatus.SUBOPTIMAL: "Suboptimal",
}


class CLIDashboard:
    """Formats monitor output for a terminal."""

    SEPARATOR = "=" * 70

    def format_reading(
        self,
        market: str,
        reading: MarketReading,
        result: ComputationResult,
        stats: RunningStats,
    ) -> str:
        """One status block per successful cycle."""
        ts = reading.timestamp.astimezone(UTC).isoformat(timespec="seconds")
        tag = " [SYNTHETIC]" if reading.synthetic else ""
        lines = [f"[{ts}] {market}: {self._format_price(reading.price)}{tag}"]
        if reading.label and reading.label != market:
            lines.append(f"   Question: {reading.label}")
        if reading.has_book:
            lines.append(f"   Volume: bid/yes={reading.bid_volume:.0f}, ask/no={reading.ask_volume:.0f}")
        lines.append(f"   η={result.eta:.3f}, λ={result.lambda_:.3f}")
        lines.append(f"   Δ={result.delta} ({result.delta_decimal:.3f})")
        lines.append(f"   Efficiency: {result.efficiency_percent:.2f}%")
        lines.append(f"   Status: {STATUS_LABELS[classify(result)]}")
        lines.append(
            f"   Stats: {stats.readings_count} readings, {stats.optimal_count} optimal "
            f"({stats.optimal_ratio * 100:.1f}%)"
        )
        return "\n".join(lines) + "\n"

    def format_alert(self, alert: Alert) -> str:
        """Distinct block for a critical equilibrium."""
        r = alert.result
        lines = [
            self.SEPARATOR,
            "CRITICAL EQUILIBRIUM DETECTED",
            self.SEPARATOR,
            f"Market: {alert.market}",
        ]
        if alert.label and alert.label != alert.market:
            lines.append(f"Question: {alert.label}")
        lines += [
            f"Price: {self._format_price(alert.price)}",
            f"Δ: {r.delta} ({r.delta_decimal:.3f})",
            f"Efficiency: {r.efficiency_percent:.2f}%",
            f"η: {r.eta:.3f}, λ: {r.lambda_:.3f}",
            f"Detected: {alert.detected_at.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            self.SEPARATOR,
            "MARKET IN TRUTH-FINDING EQUILIBRIUM: HIGH CONFIDENCE SIGNAL",
            self.SEPARATOR,
        ]
        return "\n".join(lines) + "\n"

    def format_summary(self, market: str, stats: RunningStats, started_at: datetime | None = None) -> str:
        """Cumulative statistics printed on shutdown."""
        lines = [
            "",
            f"Monitoring stopped: {market}",
            f"   Total readings: {stats.readings_count}",
            f"   Optimal readings: {stats.optimal_count}",
            f"   Average Δ: {stats.mean_delta:.1f}",
            f"   Average Efficiency: {stats.mean_efficiency_percent:.2f}%",
            f"   Failed cycles: {stats.failed_cycles}",
        ]
        if stats.synthetic_readings:
            lines.append(f"   Synthetic readings: {stats.synthetic_readings}")
        if started_at is not None:
            hours = (datetime.now(UTC) - started_at).total_seconds() / 3600
            lines.append(f"   Uptime: {hours:.2f} hours")
        return "\n".join(lines)

    @staticmethod
    def _format_price(price: float) -> str:
        # Outcome prices need three decimals; asset prices two
        return f"${price:.3f}" if price < 1 else f"${price:,.2f}"
