"""Monitor orchestrator: one market feed → estimator → oracle → detector.

Entry point: python -m oraclebot [SYMBOL] [--source ...] [--mode ws|rest]

Architecture:
- MonitorOrchestrator owns its MonitorState (history, stats, run flag);
  several orchestrators can coexist in one process
- Feed delivers readings in arrival order; each reading is one cycle:
  append price → estimate (η, λ) → three oracle calls → stats + detector
- A failed oracle cycle is discarded: stats untouched, no alert
- Graceful shutdown on SIGINT/SIGTERM: drop the run flag, let the
  in-flight cycle finish, close sessions, print the summary
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from oraclebot.config.settings import OracleBotConfig, get_config
from oraclebot.connectors.binance_feed import BinanceRestFeed, BinanceWSFeed
from oraclebot.connectors.oracle_client import ComputationResult, OracleClient
from oraclebot.connectors.polygon_client import PolygonRestFeed
from oraclebot.connectors.polymarket_feed import PolymarketFeed
from oraclebot.connectors.rest_feed import RestFeed
from oraclebot.connectors.transport import RetryPolicy
from oraclebot.core.detector import Alert, detect
from oraclebot.core.estimator import Parameters, estimate_parameters
from oraclebot.core.health import OracleHealthMonitor
from oraclebot.core.history import PriceHistory
from oraclebot.core.normalizer import MarketReading
from oraclebot.core.stats import RunningStats
from oraclebot.dashboard.cli_dashboard import CLIDashboard
from oraclebot.utils.logger import get_logger

logger = get_logger("orchestrator")

Feed = BinanceWSFeed | RestFeed
Sink = Callable[[str], None]

# How long shutdown waits for the feed task to exit once no cycle is in flight
SHUTDOWN_GRACE_S = 5.0

# One cycle issues at most this many oracle calls
ORACLE_CALLS_PER_CYCLE = 3


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------


@dataclass
class MonitorState:
    """Everything one monitoring run mutates."""

    history: PriceHistory = field(default_factory=PriceHistory)
    stats: RunningStats = field(default_factory=RunningStats)
    running: bool = False
    cycle_count: int = 0
    consecutive_failures: int = 0


@dataclass(frozen=True)
class CycleOutcome:
    """Result of one successful cycle."""

    reading: MarketReading
    params: Parameters
    result: ComputationResult
    alert: Alert | None = None


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MonitorOrchestrator:
    """Runs the monitoring loop for a single market.

    Lifecycle: ``__init__`` -> ``start()`` -> runs until ``request_stop()``
    or a signal, then ``stop()``.
    """

    def __init__(
        self,
        settings: OracleBotConfig | None = None,
        oracle: OracleClient | None = None,
        sink: Sink | None = None,
        feed: Feed | None = None,
    ) -> None:
        self._settings = settings or get_config()
        mon = self._settings.monitor
        self.state = MonitorState(history=PriceHistory(mon.max_history_size))
        self._oracle = oracle or self._build_oracle()
        self._sink: Sink = sink or print
        self._dashboard = CLIDashboard()
        self._feed = feed
        self._feed_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()
        self._cycle_idle = asyncio.Event()
        self._cycle_idle.set()
        self._started_at: datetime | None = None
        self._stopped = False

    @property
    def market(self) -> str:
        return self._settings.monitor.symbol

    @property
    def settings(self) -> OracleBotConfig:
        return self._settings

    def is_running(self) -> bool:
        return self.state.running

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def process_reading(self, reading: MarketReading) -> CycleOutcome | None:
        """Run one full cycle for a normalized reading.

        Returns:
            The cycle outcome, or None when the reading arrived after a stop
            request or the oracle failed (cycle discarded).
        """
        if not self.state.running:
            logger.debug("reading_ignored_after_stop", price=reading.price)
            return None

        self._cycle_idle.clear()
        try:
            return await self._run_cycle(reading)
        finally:
            self._cycle_idle.set()

    async def _run_cycle(self, reading: MarketReading) -> CycleOutcome | None:
        state = self.state
        state.cycle_count += 1
        if reading.synthetic:
            state.stats = state.stats.record_synthetic()

        state.history.append(reading.price)
        params = estimate_parameters(
            state.history.values(),
            reading,
            method=self._settings.monitor.lambda_method,
            cfg=self._settings.estimator,
        )

        result = await self._oracle.evaluate(params)
        if result is None:
            state.consecutive_failures += 1
            state.stats = state.stats.record_failure()
            logger.warning(
                "cycle_discarded",
                cycle=state.cycle_count,
                market=self.market,
                consecutive_failures=state.consecutive_failures,
            )
            return None

        state.consecutive_failures = 0
        state.stats = state.stats.record(result)
        logger.info(
            "cycle_completed",
            cycle=state.cycle_count,
            market=self.market,
            price=reading.price,
            eta=round(params.eta, 4),
            lambda_=round(params.lambda_, 4),
            lambda_method=params.lambda_method,
            delta=result.delta,
            efficiency_pct=round(result.efficiency_percent, 2),
            is_optimal=result.is_optimal,
            synthetic=reading.synthetic,
        )
        self._sink(self._dashboard.format_reading(self.market, reading, result, state.stats))

        alert = detect(self.market, reading.price, result, label=reading.label)
        if alert is not None:
            logger.warning(
                "critical_equilibrium_detected",
                market=alert.market,
                price=alert.price,
                delta=result.delta,
                efficiency_pct=round(result.efficiency_percent, 2),
            )
            self._sink(self._dashboard.format_alert(alert))

        return CycleOutcome(reading=reading, params=params, result=result, alert=alert)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Initialize clients and run the feed until stopped."""
        mon = self._settings.monitor
        logger.info(
            "monitor_starting",
            market=self.market,
            source=mon.source,
            mode=mon.mode,
            history_capacity=self.state.history.capacity,
            contract=self._settings.oracle_address,
        )
        self._started_at = datetime.now(UTC)
        self.state.running = True
        self._install_signal_handlers()

        try:
            await self._oracle.initialize()
            if self._settings.oracle.verify_contract_on_start:
                if not await self._oracle.verify_contract():
                    logger.error("oracle_contract_unverified", contract=self._settings.oracle_address)

            if self._feed is None:
                self._feed = self._build_feed()
            await self._feed.initialize()

            self._feed_task = asyncio.create_task(self._feed.run(self.process_reading), name="feed")
            self._feed_task.add_done_callback(lambda _: self._shutdown_event.set())

            # Block until shutdown
            await self._shutdown_event.wait()
            await self._drain_feed()
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Drop the run flag. The in-flight cycle still completes."""
        if self.state.running:
            logger.info("monitor_stop_requested", market=self.market)
        self.state.running = False
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Close sessions and print the cumulative summary."""
        if self._stopped:
            return
        self._stopped = True
        self.state.running = False

        if self._feed is not None:
            await self._feed.close()
        await self._oracle.close()

        logger.info(
            "monitor_stopped",
            market=self.market,
            cycles=self.state.cycle_count,
            oracle=self._oracle.stats,
            **self.state.stats.as_dict(),
        )
        self._sink(self._dashboard.format_summary(self.market, self.state.stats, self._started_at))

    async def run_healthchecks(self, interval_s: float | None = None) -> OracleHealthMonitor:
        """Run the oracle's critical damping fixture periodically until stopped."""
        if interval_s is None:
            interval_s = self._settings.health.interval_minutes * 60
        self.state.running = True
        self._install_signal_handlers()

        monitor = OracleHealthMonitor(self._oracle, interval_s, self.is_running)
        await self._oracle.initialize()
        try:
            if not await self._oracle.verify_contract():
                logger.error("oracle_contract_unverified", contract=self._settings.oracle_address)
            await monitor.run()
        finally:
            self.state.running = False
            await self._oracle.close()
        return monitor

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _build_oracle(self) -> OracleClient:
        cfg = self._settings.oracle
        return OracleClient(
            rpc_url=self._settings.rpc_url,
            contract_address=self._settings.oracle_address,
            compute_delta_signature=cfg.compute_delta_signature,
            efficiency_signature=cfg.efficiency_signature,
            is_optimal_signature=cfg.is_optimal_signature,
            timeout_s=cfg.request_timeout_s,
        )

    def _retry_policy(self, delay_s: float) -> RetryPolicy:
        mon = self._settings.monitor
        return RetryPolicy(
            delay_s=delay_s,
            backoff_factor=mon.backoff_factor,
            max_delay_s=mon.max_delay_s,
            max_consecutive_failures=mon.max_consecutive_failures,
        )

    def _build_feed(self) -> Feed:
        """Pick the feed for ``monitor.source`` / ``monitor.mode``."""
        mon = self._settings.monitor
        src = self._settings.sources
        synthetic = mon.synthetic_enabled()
        timeout_s = self._settings.oracle.request_timeout_s
        interval_s = mon.poll_interval_s()

        if mon.source == "binance" and mon.mode == "ws":
            return BinanceWSFeed(
                mon.symbol,
                self.is_running,
                base_url=src.binance_ws_url,
                policy=self._retry_policy(mon.reconnect_delay_s),
                allow_synthetic=synthetic,
            )

        if mon.mode == "ws" and mon.source != "binance":
            logger.warning("push_mode_unsupported", source=mon.source, fallback="rest")

        policy = self._retry_policy(interval_s)
        if mon.source == "binance":
            return BinanceRestFeed(
                mon.symbol,
                interval_s,
                self.is_running,
                base_url=src.binance_rest_url,
                policy=policy,
                timeout_s=timeout_s,
                allow_synthetic=synthetic,
            )
        if mon.source == "polygon":
            return PolygonRestFeed(
                mon.symbol,
                self._settings.polygon_api_key,
                interval_s,
                self.is_running,
                base_url=src.polygon_rest_url,
                policy=policy,
                timeout_s=timeout_s,
                allow_synthetic=synthetic,
            )
        return PolymarketFeed(
            mon.symbol,
            interval_s,
            self.is_running,
            clob_url=src.polymarket_clob_url,
            gamma_url=src.polymarket_gamma_url,
            policy=policy,
            timeout_s=timeout_s,
            allow_synthetic=synthetic,
        )

    def _cycle_budget_s(self) -> float:
        """Longest a started cycle can take: every oracle call hits its timeout."""
        return ORACLE_CALLS_PER_CYCLE * self._settings.oracle.request_timeout_s + SHUTDOWN_GRACE_S

    async def _drain_feed(self) -> None:
        """Let the in-flight cycle finish, then wind the feed down.

        The feed task is cancelled only when it has not exited on its own
        within ``SHUTDOWN_GRACE_S`` after the last cycle completed.
        """
        self.state.running = False
        task = self._feed_task
        if task is None:
            return
        if not task.done():
            try:
                await asyncio.wait_for(self._cycle_idle.wait(), timeout=self._cycle_budget_s())
            except TimeoutError:
                logger.error("cycle_drain_timeout", market=self.market, budget_s=self._cycle_budget_s())
            if isinstance(self._feed, BinanceWSFeed):
                await self._feed.disconnect()
            done, _ = await asyncio.wait({task}, timeout=SHUTDOWN_GRACE_S)
            if not done:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                return
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.error("feed_crashed", error=str(exc), error_type=type(exc).__name__)

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> None:
        """Install SIGINT/SIGTERM handlers to trigger graceful shutdown."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._on_signal, sig)

    def _on_signal(self, sig: signal.Signals) -> None:
        """Handle OS signal by requesting a stop."""
        logger.info("shutdown_signal_received", signal=sig.name)
        self.request_stop()
