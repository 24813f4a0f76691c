"""Polymarket prediction-market feed.

Resolves a market slug against several public endpoints in order and uses
the first that returns a recognizable market document:

1. CLOB   ``/markets/{slug}``
2. Gamma  ``/markets?slug={slug}``
3. CLOB   ``/markets?slug={slug}``

YES price is the tracked price; YES/NO volumes feed the imbalance
estimator and the YES−NO spread blends into λ. When every endpoint fails,
a synthetic reading stands in (if enabled) so the diagnostic loop keeps
running; it is tagged synthetic all the way to the logs.
"""

from __future__ import annotations

from typing import Any

from oraclebot.connectors.rest_feed import RestFeed
from oraclebot.connectors.transport import RetryPolicy, RunFlag
from oraclebot.core.errors import ConnectivityError
from oraclebot.core.normalizer import (
    MarketReading,
    SyntheticPayload,
    normalize,
    normalize_payload,
    parse_polymarket_market,
)
from oraclebot.utils.logger import get_logger

logger = get_logger("polymarket_feed")

CLOB_URL = "https://clob.polymarket.com"
GAMMA_URL = "https://gamma-api.polymarket.com"


def _looks_like_market(data: Any) -> bool:
    return isinstance(data, dict) and any(k in data for k in ("id", "slug", "tokens", "condition_id"))


def select_market(data: Any, slug: str) -> dict[str, Any] | None:
    """Pick the market document for ``slug`` out of a single or list response."""
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        data = data["data"]
    if isinstance(data, list):
        for market in data:
            if isinstance(market, dict) and slug in (
                market.get("slug"),
                market.get("market_slug"),
                market.get("id"),
                market.get("condition_id"),
            ):
                return market
        return None
    return data if _looks_like_market(data) else None


class PolymarketFeed(RestFeed):
    """Polls one Polymarket market by slug."""

    name = "polymarket"

    def __init__(
        self,
        slug: str,
        interval_s: float,
        is_running: RunFlag,
        clob_url: str = CLOB_URL,
        gamma_url: str = GAMMA_URL,
        policy: RetryPolicy | None = None,
        timeout_s: float = 30.0,
        allow_synthetic: bool = True,
    ) -> None:
        super().__init__(interval_s, is_running, policy, timeout_s)
        self._slug = slug
        self._clob_url = clob_url.rstrip("/")
        self._gamma_url = gamma_url.rstrip("/")
        self._allow_synthetic = allow_synthetic

    @property
    def slug(self) -> str:
        return self._slug

    def endpoints(self) -> list[tuple[str, dict[str, str] | None]]:
        return [
            (f"{self._clob_url}/markets/{self._slug}", None),
            (f"{self._gamma_url}/markets", {"slug": self._slug}),
            (f"{self._clob_url}/markets", {"slug": self._slug}),
        ]

    async def fetch_market(self) -> dict[str, Any] | None:
        """First market document any endpoint returns, else None."""
        for url, params in self.endpoints():
            try:
                data = await self._get_json(url, params)
            except ConnectivityError as e:
                logger.debug("polymarket_endpoint_failed", url=url, error=str(e))
                continue
            market = select_market(data, self._slug)
            if market is not None:
                return market
            logger.debug("polymarket_endpoint_no_match", url=url)
        return None

    async def fetch(self) -> MarketReading | None:
        market = await self.fetch_market()
        if market is None:
            if not self._allow_synthetic:
                raise ConnectivityError(f"polymarket: no endpoint returned market {self._slug!r}")
            return normalize(SyntheticPayload(reason="unreachable", label=self._slug))

        return normalize_payload(
            parse_polymarket_market,
            market,
            label=self._slug,
            allow_synthetic=self._allow_synthetic,
        )
