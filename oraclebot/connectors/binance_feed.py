"""Binance market feeds for crypto pairs.

Push: ``wss://stream.binance.com:9443/ws/{symbol}@ticker`` individual
ticker stream, one connection per symbol.
Pull: ``GET /api/v3/ticker/24hr?symbol=`` on a fixed interval.

Both carry best bid/ask quantities (``B``/``A``, ``bidQty``/``askQty``),
so readings can drive the imbalance estimator.
"""

from __future__ import annotations

from oraclebot.connectors.rest_feed import ReadingHandler, RestFeed
from oraclebot.connectors.transport import ConnectionState, PushTransport, RetryPolicy, RunFlag
from oraclebot.core.normalizer import MarketReading, normalize_payload, parse_binance_ticker
from oraclebot.utils.logger import get_logger

logger = get_logger("binance_feed")

BINANCE_WS_URL = "wss://stream.binance.com:9443/ws"
BINANCE_REST_URL = "https://api.binance.com"


class BinanceWSFeed:
    """Streaming ticker for one symbol.

    Frames that are not tickers (subscription acks, pings) are skipped
    unless synthetic substitution is enabled.
    """

    def __init__(
        self,
        symbol: str,
        is_running: RunFlag,
        base_url: str = BINANCE_WS_URL,
        policy: RetryPolicy | None = None,
        allow_synthetic: bool = False,
    ) -> None:
        self._symbol = symbol.upper()
        self._allow_synthetic = allow_synthetic
        url = f"{base_url.rstrip('/')}/{symbol.lower()}@ticker"
        self._transport = PushTransport(url, is_running, policy or RetryPolicy())

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def transport(self) -> PushTransport:
        return self._transport

    @property
    def is_connected(self) -> bool:
        return self._transport.state == ConnectionState.CONNECTED

    async def initialize(self) -> None:
        logger.info("binance_ws_feed_initialized", symbol=self._symbol, url=self._transport.url)

    async def disconnect(self) -> None:
        await self._transport.disconnect()

    async def close(self) -> None:
        await self._transport.close()

    def parse_message(self, raw: str) -> MarketReading | None:
        return normalize_payload(
            parse_binance_ticker, raw, label=self._symbol, allow_synthetic=self._allow_synthetic
        )

    async def run(self, on_reading: ReadingHandler) -> None:
        async def on_message(raw: str) -> None:
            reading = self.parse_message(raw)
            if reading is not None:
                await on_reading(reading)

        await self._transport.run(on_message)


class BinanceRestFeed(RestFeed):
    """Polls the 24h ticker endpoint."""

    name = "binance_rest"

    def __init__(
        self,
        symbol: str,
        interval_s: float,
        is_running: RunFlag,
        base_url: str = BINANCE_REST_URL,
        policy: RetryPolicy | None = None,
        timeout_s: float = 30.0,
        allow_synthetic: bool = False,
    ) -> None:
        super().__init__(interval_s, is_running, policy, timeout_s)
        self._symbol = symbol.upper()
        self._base_url = base_url.rstrip("/")
        self._allow_synthetic = allow_synthetic

    async def fetch(self) -> MarketReading | None:
        data = await self._get_json(
            f"{self._base_url}/api/v3/ticker/24hr", params={"symbol": self._symbol}
        )
        return normalize_payload(
            parse_binance_ticker, data, label=self._symbol, allow_synthetic=self._allow_synthetic
        )
