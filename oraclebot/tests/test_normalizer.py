"""Tests for source parsers, the RawReading dispatch, and synthetic fallback."""

from __future__ import annotations

import json
import random

import pytest

from oraclebot.core.errors import DataShapeError
from oraclebot.core.normalizer import (
    MarketReading,
    OrderbookSnapshot,
    SyntheticPayload,
    TickerPayload,
    normalize,
    normalize_payload,
    parse_binance_ticker,
    parse_polygon_aggregate,
    parse_polymarket_market,
    synthesize,
)

# ================================================================
# Sample payloads
# ================================================================

BINANCE_WS_TICKER = {
    "e": "24hrTicker",
    "s": "BTCUSDT",
    "c": "67250.10",
    "v": "18234.5",
    "B": "3.2",
    "A": "1.8",
}

BINANCE_REST_TICKER = {
    "symbol": "BTCUSDT",
    "lastPrice": "67251.00",
    "volume": "18000.0",
    "bidQty": "2.0",
    "askQty": "2.0",
}

POLYGON_PREV = {
    "ticker": "AAPL",
    "status": "OK",
    "results": [{"T": "AAPL", "c": 189.87, "v": 51234567, "o": 188.0}],
}

CLOB_MARKET = {
    "condition_id": "0xabc",
    "question": "Will it rain tomorrow?",
    "market_slug": "rain-tomorrow",
    "tokens": [
        {"outcome": "Yes", "price": 0.62, "volume24h": 120000},
        {"outcome": "No", "price": 0.38, "volume24h": 80000},
    ],
}

GAMMA_MARKET = {
    "id": "12345",
    "slug": "rain-tomorrow",
    "question": "Will it rain tomorrow?",
    "outcomes": '["Yes", "No"]',
    "outcomePrices": '["0.55", "0.45"]',
}


# ================================================================
# Parsers
# ================================================================


class TestBinanceParser:
    """WS and REST ticker shapes."""

    def test_ws_ticker_from_json_text(self) -> None:
        payload = parse_binance_ticker(json.dumps(BINANCE_WS_TICKER))
        assert payload == TickerPayload(price=67250.10, volume=18234.5, bid_qty=3.2, ask_qty=1.8, source="binance")

    def test_rest_ticker(self) -> None:
        payload = parse_binance_ticker(BINANCE_REST_TICKER)
        assert payload.price == 67251.0
        assert payload.bid_qty == 2.0

    def test_combined_stream_envelope(self) -> None:
        payload = parse_binance_ticker({"stream": "btcusdt@ticker", "data": BINANCE_WS_TICKER})
        assert payload.price == pytest.approx(67250.10)

    def test_subscription_ack_is_shape_error(self) -> None:
        with pytest.raises(DataShapeError):
            parse_binance_ticker({"result": None, "id": 1})

    def test_invalid_json(self) -> None:
        with pytest.raises(DataShapeError, match="invalid JSON"):
            parse_binance_ticker("{not json")

    def test_non_numeric_price(self) -> None:
        with pytest.raises(DataShapeError):
            parse_binance_ticker({"c": "abc"})

    def test_missing_quantities_stay_absent(self) -> None:
        payload = parse_binance_ticker({"c": "1.5"})
        assert payload.bid_qty is None
        assert payload.ask_qty is None


class TestPolygonParser:
    def test_previous_close(self) -> None:
        payload = parse_polygon_aggregate(POLYGON_PREV)
        assert payload.price == 189.87
        assert payload.volume == 51234567
        assert payload.source == "polygon"

    def test_empty_results(self) -> None:
        with pytest.raises(DataShapeError, match="no results"):
            parse_polygon_aggregate({"status": "NOT_AUTHORIZED", "results": []})


class TestPolymarketParser:
    """CLOB tokens and Gamma outcome lists."""

    def test_clob_tokens(self) -> None:
        snap = parse_polymarket_market(CLOB_MARKET)
        assert snap.yes_price == 0.62
        assert snap.no_price == 0.38
        assert snap.yes_volume == 120000
        assert snap.no_volume == 80000
        assert snap.label == "Will it rain tomorrow?"

    def test_gamma_outcomes(self) -> None:
        snap = parse_polymarket_market(GAMMA_MARKET)
        assert snap.yes_price == 0.55
        assert snap.no_price == 0.45
        assert snap.yes_volume is None

    def test_tokens_without_yes_no(self) -> None:
        market = {"tokens": [{"outcome": "Trump", "price": 0.5}, {"outcome": "Harris", "price": 0.5}]}
        with pytest.raises(DataShapeError, match="not recognized"):
            parse_polymarket_market(market)

    def test_unrecognized_document(self) -> None:
        with pytest.raises(DataShapeError):
            parse_polymarket_market({"id": "1"})


# ================================================================
# normalize
# ================================================================


class TestNormalize:
    """One dispatch over RawReading variants."""

    def test_ticker_with_book(self) -> None:
        reading = normalize(TickerPayload(price=100.0, volume=5.0, bid_qty=3.0, ask_qty=1.0))
        assert reading.price == 100.0
        assert reading.bid_volume == 3.0
        assert reading.ask_volume == 1.0
        assert reading.has_book is True
        assert reading.synthetic is False

    def test_ticker_defaults(self) -> None:
        """Absent fields → price 0.5, volumes 0, no book."""
        reading = normalize(TickerPayload(price=None))
        assert reading.price == 0.5
        assert reading.bid_volume == 0.0
        assert reading.ask_volume == 0.0
        assert reading.has_book is False

    def test_orderbook(self) -> None:
        reading = normalize(OrderbookSnapshot(yes_price=0.7, no_price=0.3, yes_volume=10.0, no_volume=20.0))
        assert reading.price == 0.7
        assert reading.bid_volume == 10.0
        assert reading.ask_volume == 20.0
        assert reading.price_spread == pytest.approx(0.4)
        assert reading.has_book is True

    def test_orderbook_defaults(self) -> None:
        reading = normalize(OrderbookSnapshot(yes_price=None, no_price=None))
        assert reading.price == 0.5
        assert reading.price_spread == 0.0
        assert reading.bid_volume == reading.ask_volume == 0.0

    def test_synthetic_is_tagged(self) -> None:
        reading = normalize(SyntheticPayload(reason="unreachable", label="m"))
        assert reading.synthetic is True
        assert reading.source == "synthetic"
        assert reading.label == "m"

    def test_unknown_variant(self) -> None:
        with pytest.raises(TypeError):
            normalize({"price": 1.0})  # type: ignore[arg-type]


class TestSynthesize:
    def test_bounds(self) -> None:
        rng = random.Random(3)
        for _ in range(500):
            reading = synthesize(rng=rng)
            assert 0.1 <= reading.price <= 0.9
            assert reading.bid_volume > 0
            assert reading.ask_volume > 0
            assert reading.synthetic

    def test_deterministic_with_seed(self) -> None:
        a = synthesize(rng=random.Random(42))
        b = synthesize(rng=random.Random(42))
        assert (a.price, a.bid_volume, a.ask_volume) == (b.price, b.bid_volume, b.ask_volume)


class TestNormalizePayload:
    """Parse + normalize with synthetic substitution."""

    def test_valid_payload(self) -> None:
        reading = normalize_payload(parse_binance_ticker, BINANCE_WS_TICKER, label="BTCUSDT")
        assert isinstance(reading, MarketReading)
        assert reading.synthetic is False
        assert reading.label == "BTCUSDT"

    def test_payload_label_wins_over_caller_label(self) -> None:
        snapshot = {
            "question": "Will it rain tomorrow?",
            "outcomes": '["Yes","No"]',
            "outcomePrices": '["0.6","0.4"]',
        }
        reading = normalize_payload(parse_polymarket_market, snapshot, label="rain-tomorrow")
        assert reading is not None
        assert reading.label == "Will it rain tomorrow?"

    def test_garbage_becomes_synthetic(self) -> None:
        reading = normalize_payload(parse_polymarket_market, {"foo": 1}, label="slug")
        assert reading is not None
        assert reading.synthetic is True
        assert reading.label == "slug"

    def test_garbage_skipped_when_synthetic_disabled(self) -> None:
        assert normalize_payload(parse_binance_ticker, {"foo": 1}, allow_synthetic=False) is None
