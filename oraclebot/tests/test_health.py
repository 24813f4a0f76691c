"""Tests for the periodic oracle health monitor."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from oraclebot.connectors.oracle_client import HealthCheckResult
from oraclebot.core.health import OracleHealthMonitor


def _make_oracle(*results: HealthCheckResult) -> MagicMock:
    oracle = MagicMock()
    oracle.health_check = AsyncMock(side_effect=list(results))
    return oracle


class TestOracleHealthMonitor:
    @pytest.mark.asyncio
    async def test_counts_runs_and_passes(self) -> None:
        oracle = _make_oracle(
            HealthCheckResult(passed=True, delta=230, is_optimal=True),
            HealthCheckResult(passed=False, error="execution reverted"),
        )
        monitor = OracleHealthMonitor(oracle, 60.0, lambda: True)

        await monitor.check_once()
        result = await monitor.check_once()

        assert monitor.runs == 2
        assert monitor.passed == 1
        assert result.passed is False
        assert monitor.last_result is result

    @pytest.mark.asyncio
    async def test_run_until_flag_drops(self) -> None:
        checks = 0

        def is_running() -> bool:
            return checks < 3

        async def health_check() -> HealthCheckResult:
            nonlocal checks
            checks += 1
            return HealthCheckResult(passed=True, delta=229, is_optimal=True)

        oracle = MagicMock()
        oracle.health_check = AsyncMock(side_effect=health_check)
        monitor = OracleHealthMonitor(oracle, 0.0, is_running)

        await monitor.run()

        assert monitor.runs == 3
        assert monitor.passed == 3
        assert monitor.uptime_hours >= 0.0
