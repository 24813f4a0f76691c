"""Shared test fixtures for the OracleBot test suite."""

from __future__ import annotations

import pytest

from oraclebot.config.settings import MonitorConfig, OracleBotConfig, OracleConfig

TEST_RPC_URL = "https://rpc.test.invalid"
TEST_CONTRACT = "0xDfb81fDfb8DeCDc7Fb6489d0022CD23697EEa3aE"


@pytest.fixture
def rpc_url() -> str:
    return TEST_RPC_URL


@pytest.fixture
def contract_address() -> str:
    return TEST_CONTRACT


@pytest.fixture
def settings() -> OracleBotConfig:
    """Config for a Binance pull feed with no contract verification."""
    return OracleBotConfig(
        rpc_url=TEST_RPC_URL,
        oracle_address=TEST_CONTRACT,
        oracle=OracleConfig(verify_contract_on_start=False),
        monitor=MonitorConfig(source="binance", symbol="BTCUSDT", mode="rest", max_history_size=50),
    )
