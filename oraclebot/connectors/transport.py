"""Transport layer: push (WebSocket stream) and pull (interval poll).

Both modes are cooperative: a shared run flag (``is_running``) is checked
before every new connection, reconnection, or poll. In-flight network
operations are never aborted by the flag; only new ones are suppressed.

Push: one stream per symbol. Each frame is handed to the handler and
awaited before the next one is read. On close while running, exactly one
resubscription is scheduled after ``RetryPolicy.delay_s``.

Pull: self-scheduling loop with at most one request outstanding. The next
call is scheduled only after the current one resolves, success or not.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

import aiohttp

from oraclebot.core.errors import ConnectivityError
from oraclebot.utils.logger import get_logger

logger = get_logger("transport")

DEFAULT_RECONNECT_DELAY_S = 5.0
WS_HEARTBEAT_S = 30

RunFlag = Callable[[], bool]
MessageHandler = Callable[[str], Awaitable[None]]
PollTick = Callable[[], Awaitable[None]]


class ConnectionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    RECONNECTING = "reconnecting"
    STOPPED = "stopped"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry schedule keyed by the consecutive-failure count.

    Defaults give the flat, uncapped retry: same delay every time, never
    give up. ``backoff_factor > 1`` grows the delay geometrically up to
    ``max_delay_s``; ``max_consecutive_failures`` sets a ceiling.
    """

    delay_s: float = DEFAULT_RECONNECT_DELAY_S
    backoff_factor: float = 1.0
    max_delay_s: float = 300.0
    max_consecutive_failures: int | None = None

    def next_delay(self, failures: int = 0) -> float:
        if failures <= 1 or self.backoff_factor <= 1.0:
            return self.delay_s
        return min(self.delay_s * self.backoff_factor ** (failures - 1), self.max_delay_s)

    def exhausted(self, failures: int) -> bool:
        return self.max_consecutive_failures is not None and failures >= self.max_consecutive_failures


async def _sleep_while_running(seconds: float, is_running: RunFlag) -> None:
    """Sleep in ≤1s slices so a dropped run flag is noticed promptly."""
    remaining = seconds
    while remaining > 0 and is_running():
        step = min(1.0, remaining)
        await asyncio.sleep(step)
        remaining -= step


# ================================================================
# Push mode
# ================================================================


class PushTransport:
    """WebSocket stream with flat reconnect.

    Lifecycle: ``run(handler)`` blocks until the run flag drops and the
    current connection ends.
    """

    def __init__(
        self,
        url: str,
        is_running: RunFlag,
        policy: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._url = url
        self._is_running = is_running
        self._policy = policy or RetryPolicy()
        self._session = session
        self._owns_session = session is None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._state = ConnectionState.DISCONNECTED
        self._failures = 0
        self.reconnect_count = 0
        self.messages_received = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def url(self) -> str:
        return self._url

    async def run(self, on_message: MessageHandler) -> None:
        """Connect, read, and resubscribe until the run flag drops."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            while self._is_running():
                try:
                    await self._connect_and_read(on_message)
                except ConnectivityError as e:
                    self._failures += 1
                    logger.warning("ws_connectivity_error", url=self._url, error=str(e))

                delay = self.handle_close()
                if delay is None:
                    break
                await _sleep_while_running(delay, self._is_running)
        finally:
            await self.close()

    def handle_close(self) -> float | None:
        """Decide what follows a closed connection.

        Returns:
            Delay before the single resubscription attempt, or None when
            the run flag is down (terminal STOPPED) or the retry ceiling
            was reached.
        """
        if not self._is_running():
            self._state = ConnectionState.STOPPED
            return None
        if self._policy.exhausted(self._failures):
            logger.error("ws_retry_ceiling_reached", url=self._url, failures=self._failures)
            self._state = ConnectionState.STOPPED
            return None

        delay = self._policy.next_delay(self._failures)
        self._state = ConnectionState.RECONNECTING
        self.reconnect_count += 1
        logger.warning("ws_reconnect_scheduled", url=self._url, delay_s=delay, attempt=self.reconnect_count)
        return delay

    async def _connect_and_read(self, on_message: MessageHandler) -> None:
        if self._session is None:
            raise RuntimeError("PushTransport session not created")

        self._state = ConnectionState.CONNECTING
        try:
            self._ws = await self._session.ws_connect(self._url, heartbeat=WS_HEARTBEAT_S)
        except (aiohttp.ClientError, OSError) as e:
            self._state = ConnectionState.DISCONNECTED
            raise ConnectivityError(f"connect failed: {e}") from e

        self._state = ConnectionState.CONNECTED
        self._failures = 0
        logger.info("ws_connected", url=self._url)

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.messages_received += 1
                    await self._dispatch(on_message, msg.data)
                    if not self._is_running():
                        break
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    # Keep reading; aiohttp closes the socket itself if it is unusable
                    logger.error("ws_error", url=self._url, error=str(self._ws.exception()))
                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.CLOSING):
                    break
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError) as e:
            raise ConnectivityError(f"read failed: {e}") from e
        finally:
            self._state = ConnectionState.DISCONNECTED
            if self._ws is not None and not self._ws.closed:
                await self._ws.close()
            logger.warning("ws_closed", url=self._url, messages=self.messages_received)

    async def _dispatch(self, on_message: MessageHandler, data: str) -> None:
        try:
            await on_message(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("ws_message_handler_error", error=str(e), error_type=type(e).__name__)

    async def disconnect(self) -> None:
        """Close the live socket so a pending read returns; the session stays open."""
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    async def close(self) -> None:
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()
        self._ws = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None
        self._state = ConnectionState.STOPPED


# ================================================================
# Pull mode
# ================================================================


class PollLoop:
    """Fixed-interval poller with one request in flight at a time."""

    def __init__(
        self,
        interval_s: float,
        is_running: RunFlag,
        policy: RetryPolicy | None = None,
        name: str = "poll",
    ) -> None:
        self._interval_s = interval_s
        self._is_running = is_running
        self._policy = policy or RetryPolicy(delay_s=interval_s)
        self._name = name
        self.consecutive_failures = 0
        self.iterations = 0

    async def run(self, tick: PollTick) -> None:
        """Call ``tick`` repeatedly until the run flag drops.

        Failures are logged and counted; they never end the loop unless a
        retry ceiling is configured.
        """
        while self._is_running():
            self.iterations += 1
            try:
                await tick()
                self.consecutive_failures = 0
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.consecutive_failures += 1
                logger.warning(
                    "poll_error",
                    loop=self._name,
                    error=str(e),
                    error_type=type(e).__name__,
                    consecutive_failures=self.consecutive_failures,
                )
                if self._policy.exhausted(self.consecutive_failures):
                    logger.error("poll_retry_ceiling_reached", loop=self._name)
                    return

            if not self._is_running():
                break
            delay = (
                self._policy.next_delay(self.consecutive_failures)
                if self.consecutive_failures
                else self._interval_s
            )
            await _sleep_while_running(delay, self._is_running)
