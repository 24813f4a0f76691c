"""Periodic oracle health check.

Runs the critical damping fixture (η = λ = 1/√2) against the contract on a
fixed interval and logs whether it still answers Δ ≈ 230 and optimal.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from oraclebot.connectors.transport import PollLoop, RetryPolicy, RunFlag
from oraclebot.utils.logger import get_logger

if TYPE_CHECKING:
    from oraclebot.connectors.oracle_client import HealthCheckResult, OracleClient

logger = get_logger("health")


class OracleHealthMonitor:
    """Runs ``OracleClient.health_check`` until the run flag drops."""

    def __init__(self, oracle: OracleClient, interval_s: float, is_running: RunFlag) -> None:
        self._oracle = oracle
        self._interval_s = interval_s
        self._is_running = is_running
        self._started = time.monotonic()
        self.runs = 0
        self.passed = 0
        self.last_result: HealthCheckResult | None = None

    @property
    def uptime_hours(self) -> float:
        return (time.monotonic() - self._started) / 3600

    async def check_once(self) -> HealthCheckResult:
        self.runs += 1
        result = await self._oracle.health_check()
        self.last_result = result
        if result.passed:
            self.passed += 1
        log = logger.info if result.passed else logger.warning
        log(
            "health_check_completed",
            passed=result.passed,
            run=self.runs,
            passed_runs=self.passed,
            delta=result.delta,
            error=result.error,
            uptime_hours=round(self.uptime_hours, 2),
        )
        return result

    async def run(self) -> None:
        self._started = time.monotonic()
        logger.info("health_monitor_started", interval_s=self._interval_s)

        async def tick() -> None:
            await self.check_once()

        loop = PollLoop(self._interval_s, self._is_running, RetryPolicy(delay_s=self._interval_s), name="health")
        await loop.run(tick)
        logger.info("health_monitor_stopped", runs=self.runs, passed=self.passed)
