"""Polygon.io previous-day aggregate feed (equities and FX tickers).

Requires POLYGON_API_KEY. Endpoint: ``/v2/aggs/ticker/{symbol}/prev``.
"""

from __future__ import annotations

from oraclebot.connectors.rest_feed import RestFeed
from oraclebot.connectors.transport import RetryPolicy, RunFlag
from oraclebot.core.errors import ConnectivityError
from oraclebot.core.normalizer import MarketReading, normalize_payload, parse_polygon_aggregate
from oraclebot.utils.logger import get_logger

logger = get_logger("polygon_client")

POLYGON_REST_URL = "https://api.polygon.io"


class PolygonRestFeed(RestFeed):
    """Polls the previous-close aggregate for one ticker."""

    name = "polygon_rest"

    def __init__(
        self,
        symbol: str,
        api_key: str,
        interval_s: float,
        is_running: RunFlag,
        base_url: str = POLYGON_REST_URL,
        policy: RetryPolicy | None = None,
        timeout_s: float = 30.0,
        allow_synthetic: bool = False,
    ) -> None:
        super().__init__(interval_s, is_running, policy, timeout_s)
        self._symbol = symbol.upper()
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._allow_synthetic = allow_synthetic

    async def initialize(self) -> None:
        if not self._api_key:
            logger.warning("polygon_no_api_key", msg="POLYGON_API_KEY not set")
        await super().initialize()

    async def fetch(self) -> MarketReading | None:
        if not self._api_key:
            raise ConnectivityError("POLYGON_API_KEY not set")
        data = await self._get_json(
            f"{self._base_url}/v2/aggs/ticker/{self._symbol}/prev",
            params={"apikey": self._api_key},
        )
        return normalize_payload(
            parse_polygon_aggregate, data, label=self._symbol, allow_synthetic=self._allow_synthetic
        )
