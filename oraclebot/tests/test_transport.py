"""Tests for push/pull transports and the retry policy.

Tests verify:
1. RetryPolicy: flat default, optional backoff, ceiling
2. PushTransport.handle_close: one resubscription iff the run flag is up
3. PushTransport.run: in-order dispatch, error frames, reconnect, ceiling
4. PollLoop: continues after failure, one tick at a time, ceiling
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from oraclebot.connectors.transport import (
    DEFAULT_RECONNECT_DELAY_S,
    ConnectionState,
    PollLoop,
    PushTransport,
    RetryPolicy,
    _sleep_while_running,
)

WS_URL = "wss://stream.test.invalid/ws/btcusdt@ticker"

# ================================================================
# Factory helpers
# ================================================================


def _text(data: str) -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data)


def _error() -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None)


class _FakeWS:
    """Minimal stand-in for ClientWebSocketResponse."""

    def __init__(self, messages: list[Any]) -> None:
        self._messages = messages
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for msg in self._messages:
            yield msg

    async def close(self) -> None:
        self.closed = True

    def exception(self) -> Exception:
        return RuntimeError("frame error")


class _IdleWS(_FakeWS):
    """Yields its frames, then blocks like a quiet stream until closed."""

    def __init__(self, messages: list[Any]) -> None:
        super().__init__(messages)
        self._closed_event = asyncio.Event()

    async def _iterate(self):
        for msg in self._messages:
            yield msg
        await self._closed_event.wait()

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()


def _make_session(*connections: Any) -> MagicMock:
    """Session whose ws_connect returns (or raises) each item in turn."""
    session = MagicMock()
    session.ws_connect = AsyncMock(side_effect=list(connections))
    return session


class _Flag:
    def __init__(self) -> None:
        self.up = True

    def __call__(self) -> bool:
        return self.up


# ================================================================
# RetryPolicy
# ================================================================


class TestRetryPolicy:
    def test_default_is_flat_and_uncapped(self) -> None:
        policy = RetryPolicy()
        assert policy.delay_s == DEFAULT_RECONNECT_DELAY_S == 5.0
        assert [policy.next_delay(n) for n in range(1, 6)] == [5.0] * 5
        assert policy.exhausted(10_000) is False

    def test_backoff_capped(self) -> None:
        policy = RetryPolicy(delay_s=1.0, backoff_factor=2.0, max_delay_s=5.0)
        assert [policy.next_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_ceiling(self) -> None:
        policy = RetryPolicy(max_consecutive_failures=3)
        assert policy.exhausted(2) is False
        assert policy.exhausted(3) is True


# ================================================================
# Push mode
# ================================================================


class TestHandleClose:
    """Close event → exactly one resubscription iff running."""

    def test_close_while_running_schedules_one_retry(self) -> None:
        transport = PushTransport(WS_URL, lambda: True)
        delay = transport.handle_close()

        assert delay == 5.0
        assert transport.reconnect_count == 1
        assert transport.state == ConnectionState.RECONNECTING

    def test_close_after_stop_schedules_nothing(self) -> None:
        transport = PushTransport(WS_URL, lambda: False)
        delay = transport.handle_close()

        assert delay is None
        assert transport.reconnect_count == 0
        assert transport.state == ConnectionState.STOPPED


class TestPushTransportRun:
    @pytest.mark.asyncio
    async def test_messages_dispatched_in_order(self) -> None:
        flag = _Flag()
        received: list[str] = []

        async def on_message(raw: str) -> None:
            received.append(raw)
            if len(received) == 2:
                flag.up = False

        ws = _FakeWS([_text("a"), _error(), _text("b")])
        session = _make_session(ws)
        transport = PushTransport(WS_URL, flag, session=session)

        await transport.run(on_message)

        assert received == ["a", "b"]
        assert transport.messages_received == 2
        assert transport.reconnect_count == 0
        assert transport.state == ConnectionState.STOPPED
        assert ws.closed
        session.close.assert_not_called()

    @pytest.mark.asyncio
    async def test_handler_error_does_not_close_stream(self) -> None:
        flag = _Flag()
        received: list[str] = []

        async def on_message(raw: str) -> None:
            received.append(raw)
            if raw == "bad":
                raise ValueError("boom")
            flag.up = False

        session = _make_session(_FakeWS([_text("bad"), _text("good")]))
        transport = PushTransport(WS_URL, flag, session=session)

        await transport.run(on_message)
        assert received == ["bad", "good"]

    @pytest.mark.asyncio
    async def test_stops_reading_once_flag_drops(self) -> None:
        flag = _Flag()
        received: list[str] = []

        async def on_message(raw: str) -> None:
            received.append(raw)
            flag.up = False

        ws = _FakeWS([_text("a"), _text("b"), _text("c")])
        transport = PushTransport(WS_URL, flag, session=_make_session(ws))

        await transport.run(on_message)

        assert received == ["a"]
        assert transport.messages_received == 1
        assert ws.closed

    @pytest.mark.asyncio
    async def test_disconnect_ends_idle_read(self) -> None:
        flag = _Flag()
        received: list[str] = []

        async def on_message(raw: str) -> None:
            received.append(raw)

        ws = _IdleWS([_text("a")])
        transport = PushTransport(WS_URL, flag, session=_make_session(ws))
        task = asyncio.create_task(transport.run(on_message))
        while not received:
            await asyncio.sleep(0)

        flag.up = False
        await transport.disconnect()
        await asyncio.wait_for(task, timeout=1.0)

        assert received == ["a"]
        assert transport.state == ConnectionState.STOPPED

    @pytest.mark.asyncio
    async def test_reconnects_after_close(self) -> None:
        flag = _Flag()
        received: list[str] = []

        async def on_message(raw: str) -> None:
            received.append(raw)
            if raw == "second":
                flag.up = False

        session = _make_session(_FakeWS([_text("first")]), _FakeWS([_text("second")]))
        transport = PushTransport(WS_URL, flag, RetryPolicy(delay_s=0.01), session=session)

        await transport.run(on_message)

        assert received == ["first", "second"]
        assert session.ws_connect.await_count == 2
        assert transport.reconnect_count == 1

    @pytest.mark.asyncio
    async def test_connect_failure_is_retried(self) -> None:
        flag = _Flag()

        async def on_message(raw: str) -> None:
            flag.up = False

        session = _make_session(aiohttp.ClientConnectionError("refused"), _FakeWS([_text("x")]))
        transport = PushTransport(WS_URL, flag, RetryPolicy(delay_s=0.01), session=session)

        await transport.run(on_message)

        assert session.ws_connect.await_count == 2
        assert transport.reconnect_count == 1

    @pytest.mark.asyncio
    async def test_retry_ceiling_stops(self) -> None:
        errors = [aiohttp.ClientConnectionError("refused") for _ in range(5)]
        session = _make_session(*errors)
        policy = RetryPolicy(delay_s=0.0, max_consecutive_failures=3)
        transport = PushTransport(WS_URL, lambda: True, policy, session=session)

        await transport.run(AsyncMock())

        assert session.ws_connect.await_count == 3
        assert transport.state == ConnectionState.STOPPED

    @pytest.mark.asyncio
    async def test_not_started_when_flag_down(self) -> None:
        session = _make_session()
        transport = PushTransport(WS_URL, lambda: False, session=session)

        await transport.run(AsyncMock())
        session.ws_connect.assert_not_called()


# ================================================================
# Pull mode
# ================================================================


class TestPollLoop:
    @pytest.mark.asyncio
    async def test_continues_after_failure(self) -> None:
        flag = _Flag()
        calls: list[int] = []

        async def tick() -> None:
            calls.append(len(calls))
            if len(calls) == 1:
                raise ConnectionError("down")
            if len(calls) == 3:
                flag.up = False

        loop = PollLoop(0.0, flag)
        await loop.run(tick)

        assert len(calls) == 3
        assert loop.iterations == 3
        assert loop.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_one_tick_outstanding(self) -> None:
        flag = _Flag()
        in_flight = 0
        peak = 0
        count = 0

        async def tick() -> None:
            nonlocal in_flight, peak, count
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            count += 1
            if count == 5:
                flag.up = False

        await PollLoop(0.0, flag).run(tick)
        assert peak == 1

    @pytest.mark.asyncio
    async def test_ceiling(self) -> None:
        tick = AsyncMock(side_effect=RuntimeError("nope"))
        loop = PollLoop(0.0, lambda: True, RetryPolicy(delay_s=0.0, max_consecutive_failures=2))

        await loop.run(tick)

        assert tick.await_count == 2
        assert loop.consecutive_failures == 2

    @pytest.mark.asyncio
    async def test_sleep_returns_when_flag_down(self) -> None:
        await asyncio.wait_for(_sleep_while_running(100.0, lambda: False), timeout=1.0)
