"""Configuration management using Pydantic Settings with YAML overlay.

Loading priority: .env → config/settings.yaml → config/settings.{MODE}.yaml
Environment variables win for aliased fields (ORACLE_ADDRESS, RPC_URL, ...).
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings

from oraclebot.core.estimator import EstimatorConfig

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_CONFIG_DIR = _PROJECT_ROOT / "config"

# Default poll cadence per source family (ms)
LIVE_PRICE_INTERVAL_MS = 1000
PREDICTION_MARKET_INTERVAL_MS = 5000


# --- Nested config models ---


class OracleConfig(BaseModel):
    """Holographic Oracle contract and the JSON-RPC endpoint used to reach it."""

    compute_delta_signature: str = "computeDelta(int64,int64)"
    efficiency_signature: str = "efficiency(int64)"
    is_optimal_signature: str = "isOptimal(int64)"
    request_timeout_s: float = 30.0
    verify_contract_on_start: bool = True


class MonitorConfig(BaseModel):
    """Market feed selection and the monitoring loop."""

    source: Literal["binance", "polygon", "polymarket"] = "binance"
    symbol: str = "BTCUSDT"
    mode: Literal["ws", "rest"] = "ws"
    max_history_size: int = Field(default=1000, gt=0)
    update_interval_ms: int | None = None  # None → per-source default
    reconnect_delay_s: float = 5.0
    backoff_factor: float = 1.0  # 1.0 = flat retry
    max_delay_s: float = 300.0
    max_consecutive_failures: int | None = None  # None = never give up
    lambda_method: Literal["auto", "imbalance", "momentum"] = "auto"
    allow_synthetic: bool | None = None  # None → only for prediction markets

    def poll_interval_s(self) -> float:
        """Pull-mode interval in seconds, honouring per-source defaults."""
        if self.update_interval_ms is not None:
            return self.update_interval_ms / 1000.0
        if self.source == "polymarket":
            return PREDICTION_MARKET_INTERVAL_MS / 1000.0
        return LIVE_PRICE_INTERVAL_MS / 1000.0

    def synthetic_enabled(self) -> bool:
        """Whether unusable payloads may be replaced by a synthetic reading.

        Synthetic readings are outcome-market shaped (price in [0.1, 0.9]), so
        by default they are only substituted for prediction-market sources.
        """
        if self.allow_synthetic is not None:
            return self.allow_synthetic
        return self.source == "polymarket"


class HealthConfig(BaseModel):
    """Periodic oracle health check (critical damping fixture)."""

    interval_minutes: float = 5.0


class SourcesConfig(BaseModel):
    """Market data endpoints."""

    binance_ws_url: str = "wss://stream.binance.com:9443/ws"
    binance_rest_url: str = "https://api.binance.com"
    polygon_rest_url: str = "https://api.polygon.io"
    polymarket_clob_url: str = "https://clob.polymarket.com"
    polymarket_gamma_url: str = "https://gamma-api.polymarket.com"


# --- Main config class ---


class OracleBotConfig(BaseSettings):
    """Main configuration for the equilibrium monitor."""

    # Runtime
    mode: str = Field(default="live", alias="MODE")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Oracle endpoint
    oracle_address: str = Field(
        default="0xDfb81fDfb8DeCDc7Fb6489d0022CD23697EEa3aE", alias="ORACLE_ADDRESS"
    )
    rpc_url: str = Field(
        default="https://rpc-amoy.polygon.technology",
        validation_alias=AliasChoices("AMOY_RPC_URL", "RPC_URL"),
    )

    # External API keys
    polygon_api_key: str = Field(default="", alias="POLYGON_API_KEY")

    # Nested config (loaded from YAML)
    oracle: OracleConfig = OracleConfig()
    monitor: MonitorConfig = MonitorConfig()
    estimator: EstimatorConfig = EstimatorConfig()
    health: HealthConfig = HealthConfig()
    sources: SourcesConfig = SourcesConfig()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "populate_by_name": True,
    }


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep merge overlay into base dict. Overlay values win."""
    merged = base.copy()
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path) as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def load_config(overrides: dict[str, Any] | None = None) -> OracleBotConfig:
    """Build a fresh config from YAML files plus explicit overrides.

    Args:
        overrides: Nested dict merged last (CLI flags, tests).
    """
    mode = os.getenv("MODE", "live")

    base_yaml = _load_yaml(_CONFIG_DIR / "settings.yaml")
    mode_yaml = _load_yaml(_CONFIG_DIR / f"settings.{mode}.yaml")

    merged = _deep_merge(base_yaml, mode_yaml)
    if overrides:
        merged = _deep_merge(merged, overrides)

    # Env vars take priority via pydantic-settings
    return OracleBotConfig(**merged)


@lru_cache(maxsize=1)
def get_config() -> OracleBotConfig:
    """Load and return the singleton OracleBotConfig."""
    return load_config()
