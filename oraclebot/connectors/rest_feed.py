"""Base class for pull-mode market feeds over HTTP."""

from __future__ import annotations

import ssl
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp
import certifi

from oraclebot.connectors.transport import PollLoop, RetryPolicy, RunFlag
from oraclebot.core.errors import ConnectivityError
from oraclebot.core.normalizer import MarketReading
from oraclebot.utils.logger import get_logger

logger = get_logger("rest_feed")

ReadingHandler = Callable[[MarketReading], Awaitable[None]]


class RestFeed:
    """Polls one market endpoint and hands each reading to the orchestrator.

    Subclasses implement ``fetch()``. Lifecycle: ``initialize()`` →
    ``run(on_reading)`` → ``close()``.
    """

    name = "rest"

    def __init__(
        self,
        interval_s: float,
        is_running: RunFlag,
        policy: RetryPolicy | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._interval_s = interval_s
        self._is_running = is_running
        self._policy = policy or RetryPolicy(delay_s=interval_s)
        self._timeout_s = timeout_s
        self._session: aiohttp.ClientSession | None = None
        self._loop: PollLoop | None = None

    async def initialize(self) -> None:
        """Create aiohttp session with certifi SSL context."""
        ssl_ctx = ssl.create_default_context(cafile=certifi.where())
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self._timeout_s),
            headers={"Accept": "application/json", "User-Agent": "OracleBot/1.0.0"},
            connector=aiohttp.TCPConnector(ssl=ssl_ctx),
        )
        logger.info("rest_feed_initialized", feed=self.name, interval_s=self._interval_s)

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def poll_loop(self) -> PollLoop | None:
        return self._loop

    async def _get_json(self, url: str, params: dict[str, str] | None = None) -> Any:
        """GET and parse JSON.

        Raises:
            ConnectivityError: Transport failure or non-200 status.
        """
        if self._session is None:
            raise RuntimeError(f"{type(self).__name__} not initialized. Call initialize() first.")
        try:
            async with self._session.get(url, params=params) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise ConnectivityError(f"{self.name} HTTP {resp.status}: {body[:200]}")
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    body = await resp.text()
                    raise ConnectivityError(f"{self.name} non-JSON response: {body[:200]}") from e
        except aiohttp.ClientError as e:
            raise ConnectivityError(f"{self.name} request failed: {e}") from e
        except TimeoutError as e:
            raise ConnectivityError(f"{self.name} request timed out") from e

    async def fetch(self) -> MarketReading | None:
        raise NotImplementedError

    async def run(self, on_reading: ReadingHandler) -> None:
        """Poll until the run flag drops; one request outstanding at a time."""

        async def tick() -> None:
            reading = await self.fetch()
            if reading is not None:
                await on_reading(reading)

        self._loop = PollLoop(self._interval_s, self._is_running, self._policy, name=self.name)
        await self._loop.run(tick)
