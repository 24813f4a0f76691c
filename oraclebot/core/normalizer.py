"""Signal normalizer: source payloads → one canonical MarketReading.

Three raw shapes reach the monitor:
- TickerPayload: live price ticker (Binance WS/REST, Polygon.io aggregates)
- OrderbookSnapshot: prediction-market YES/NO outcome prices and volumes
- SyntheticPayload: placeholder when the source is unreachable or its
  payload is not recognized

Each source parser builds its variant with explicit fields and raises
DataShapeError when the payload does not fit. ``normalize`` then resolves
the variant with one dispatch. Synthetic readings are a diagnostic
fallback and are always tagged as such.
"""

from __future__ import annotations

import json
import math
import random
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from oraclebot.core.errors import DataShapeError
from oraclebot.utils.logger import get_logger

logger = get_logger("normalizer")

DEFAULT_PRICE = 0.5
DEFAULT_VOLUME = 0.0

# Synthetic outcome market: YES price 0.5 ± 0.1, clamped
_SYNTH_PRICE_JITTER = 0.1
_SYNTH_PRICE_MIN = 0.1
_SYNTH_PRICE_MAX = 0.9
_SYNTH_VOLUME_MIN = 500_000.0
_SYNTH_VOLUME_SPAN = 1_000_000.0


# ================================================================
# Raw variants
# ================================================================


@dataclass(frozen=True)
class TickerPayload:
    """Live price ticker. Bid/ask quantities only when the feed carries them."""

    price: float | None
    volume: float | None = None
    bid_qty: float | None = None
    ask_qty: float | None = None
    label: str | None = None
    source: str = "ticker"


@dataclass(frozen=True)
class OrderbookSnapshot:
    """Binary outcome market: YES/NO prices and per-outcome volumes."""

    yes_price: float | None
    no_price: float | None
    yes_volume: float | None = None
    no_volume: float | None = None
    label: str | None = None
    source: str = "polymarket"


@dataclass(frozen=True)
class SyntheticPayload:
    """Stand-in when no usable market data is available."""

    reason: str
    label: str | None = None
    source: str = "synthetic"


RawReading = TickerPayload | OrderbookSnapshot | SyntheticPayload


@dataclass(frozen=True)
class MarketReading:
    """Normalized tick. Only ``price`` outlives the current cycle."""

    price: float
    bid_volume: float
    ask_volume: float
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    source: str = "unknown"
    synthetic: bool = False
    has_book: bool = False
    price_spread: float | None = None
    label: str | None = None


# ================================================================
# Field helpers
# ================================================================


def _to_float(value: Any, name: str) -> float | None:
    """Parse a numeric field. None/"" mean absent; garbage is a shape error."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise DataShapeError(f"{name}: expected number, got bool")
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise DataShapeError(f"{name}: not numeric ({value!r})") from e
    if not math.isfinite(result):
        raise DataShapeError(f"{name}: non-finite value {value!r}")
    return result


def _first_present(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


# ================================================================
# Source parsers
# ================================================================


def parse_binance_ticker(raw: Any) -> TickerPayload:
    """Parse a Binance ticker (WS ``@ticker`` event or REST ``/ticker/24hr``).

    WS keys: ``c`` last price, ``v`` volume, ``B``/``A`` best bid/ask qty.
    Combined-stream envelopes ``{"stream": ..., "data": {...}}`` are unwrapped.
    REST keys: ``lastPrice``, ``volume``, ``bidQty``, ``askQty``.
    """
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise DataShapeError(f"binance: invalid JSON ({e})") from e
    if not isinstance(raw, dict):
        raise DataShapeError(f"binance: expected object, got {type(raw).__name__}")

    ticker = raw.get("data", raw) if "stream" in raw else raw
    if not isinstance(ticker, dict):
        raise DataShapeError("binance: stream envelope without data object")

    if "c" in ticker:
        price = _to_float(ticker.get("c"), "c")
        volume = _to_float(ticker.get("v"), "v")
        bid = _to_float(ticker.get("B"), "B")
        ask = _to_float(ticker.get("A"), "A")
    elif "lastPrice" in ticker:
        price = _to_float(ticker.get("lastPrice"), "lastPrice")
        volume = _to_float(ticker.get("volume"), "volume")
        bid = _to_float(ticker.get("bidQty"), "bidQty")
        ask = _to_float(ticker.get("askQty"), "askQty")
    else:
        raise DataShapeError(f"binance: no price field in keys {sorted(ticker)[:8]}")

    return TickerPayload(price=price, volume=volume, bid_qty=bid, ask_qty=ask, source="binance")


def parse_polygon_aggregate(raw: Any) -> TickerPayload:
    """Parse Polygon.io ``/v2/aggs/ticker/{symbol}/prev`` (close ``c``, volume ``v``)."""
    if not isinstance(raw, dict):
        raise DataShapeError(f"polygon: expected object, got {type(raw).__name__}")
    results = raw.get("results")
    if not isinstance(results, list) or not results or not isinstance(results[0], dict):
        raise DataShapeError(f"polygon: no results (status={raw.get('status')!r})")
    bar = results[0]
    return TickerPayload(
        price=_to_float(bar.get("c"), "c"),
        volume=_to_float(bar.get("v"), "v"),
        source="polygon",
    )


def _find_outcome_token(tokens: list[Any], side: str) -> dict[str, Any] | None:
    for token in tokens:
        if not isinstance(token, dict):
            continue
        if str(token.get("side", "")).lower() == side or str(token.get("outcome", "")).lower() == side:
            return token
    return None


def _parse_json_list(value: Any) -> list[Any]:
    """Gamma encodes list fields as JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def parse_polymarket_market(raw: Any) -> OrderbookSnapshot:
    """Parse a Polymarket market document into a YES/NO snapshot.

    Accepts the CLOB shape (``tokens`` list with ``outcome``/``side``,
    ``price``/``lastPrice``, ``volume24h``/``volume``) and the Gamma shape
    (``outcomes`` + ``outcomePrices`` JSON-encoded lists).
    """
    if not isinstance(raw, dict):
        raise DataShapeError(f"polymarket: expected object, got {type(raw).__name__}")

    label = raw.get("question") or raw.get("slug")
    tokens = raw.get("tokens")

    if isinstance(tokens, list) and tokens:
        yes = _find_outcome_token(tokens, "yes")
        no = _find_outcome_token(tokens, "no")
        if yes is None or no is None:
            raise DataShapeError("polymarket: market structure not recognized (no YES/NO tokens)")
        return OrderbookSnapshot(
            yes_price=_to_float(_first_present(yes, "price", "lastPrice"), "yes.price"),
            no_price=_to_float(_first_present(no, "price", "lastPrice"), "no.price"),
            yes_volume=_to_float(_first_present(yes, "volume24h", "volume"), "yes.volume"),
            no_volume=_to_float(_first_present(no, "volume24h", "volume"), "no.volume"),
            label=label,
        )

    outcomes = [str(o).lower() for o in _parse_json_list(raw.get("outcomes"))]
    prices = _parse_json_list(raw.get("outcomePrices"))
    if prices and outcomes and len(prices) == len(outcomes) and {"yes", "no"} <= set(outcomes):
        volumes = _parse_json_list(raw.get("outcomeVolumes"))
        yes_i, no_i = outcomes.index("yes"), outcomes.index("no")
        return OrderbookSnapshot(
            yes_price=_to_float(prices[yes_i], "outcomePrices.yes"),
            no_price=_to_float(prices[no_i], "outcomePrices.no"),
            yes_volume=_to_float(volumes[yes_i], "outcomeVolumes.yes") if len(volumes) == len(outcomes) else None,
            no_volume=_to_float(volumes[no_i], "outcomeVolumes.no") if len(volumes) == len(outcomes) else None,
            label=label,
        )

    raise DataShapeError("polymarket: payload has neither tokens nor outcomePrices")


# ================================================================
# Normalization
# ================================================================


def synthesize(
    reason: str = "unavailable",
    label: str | None = None,
    rng: random.Random | None = None,
) -> MarketReading:
    """Build a pseudo-random outcome-market reading, tagged synthetic."""
    rng = rng or random.Random()
    base = DEFAULT_PRICE + (rng.random() - 0.5) * 2 * _SYNTH_PRICE_JITTER
    yes_price = max(_SYNTH_PRICE_MIN, min(_SYNTH_PRICE_MAX, base))
    no_price = 1.0 - yes_price
    yes_volume = rng.random() * _SYNTH_VOLUME_SPAN + _SYNTH_VOLUME_MIN
    no_volume = rng.random() * _SYNTH_VOLUME_SPAN + _SYNTH_VOLUME_MIN

    logger.warning("synthetic_reading", reason=reason, label=label, price=round(yes_price, 3))
    return MarketReading(
        price=yes_price,
        bid_volume=yes_volume,
        ask_volume=no_volume,
        source="synthetic",
        synthetic=True,
        has_book=True,
        price_spread=yes_price - no_price,
        label=label,
    )


def normalize(raw: RawReading, rng: random.Random | None = None) -> MarketReading:
    """Resolve any raw variant into a MarketReading.

    Absent fields take fixed defaults (price 0.5, volumes 0) instead of
    failing.

    Raises:
        TypeError: ``raw`` is not one of the RawReading variants.
    """
    if isinstance(raw, TickerPayload):
        has_book = raw.bid_qty is not None and raw.ask_qty is not None
        return MarketReading(
            price=raw.price if raw.price is not None else DEFAULT_PRICE,
            bid_volume=raw.bid_qty if raw.bid_qty is not None else DEFAULT_VOLUME,
            ask_volume=raw.ask_qty if raw.ask_qty is not None else DEFAULT_VOLUME,
            source=raw.source,
            has_book=has_book,
            label=raw.label,
        )

    if isinstance(raw, OrderbookSnapshot):
        yes_price = raw.yes_price if raw.yes_price is not None else DEFAULT_PRICE
        no_price = raw.no_price if raw.no_price is not None else DEFAULT_PRICE
        return MarketReading(
            price=yes_price,
            bid_volume=raw.yes_volume if raw.yes_volume is not None else DEFAULT_VOLUME,
            ask_volume=raw.no_volume if raw.no_volume is not None else DEFAULT_VOLUME,
            source=raw.source,
            has_book=True,
            price_spread=yes_price - no_price,
            label=raw.label,
        )

    if isinstance(raw, SyntheticPayload):
        return synthesize(raw.reason, raw.label, rng)

    raise TypeError(f"Unsupported raw reading type: {type(raw).__name__}")


def normalize_payload(
    parse: Callable[[Any], RawReading],
    payload: Any,
    label: str | None = None,
    allow_synthetic: bool = True,
    rng: random.Random | None = None,
) -> MarketReading | None:
    """Parse then normalize a source payload.

    An unrecognized payload becomes a synthetic reading, or None (skip the
    cycle) when synthetic substitution is disabled for the source.
    """
    try:
        raw = parse(payload)
    except DataShapeError as e:
        logger.warning("unrecognized_payload", error=str(e), label=label, synthetic=allow_synthetic)
        if not allow_synthetic:
            return None
        raw = SyntheticPayload(reason=f"data_shape: {e}", label=label)
    # A label parsed from the payload (market question) wins over the caller's
    if label is not None and raw.label is None:
        raw = replace(raw, label=label)
    return normalize(raw, rng)
