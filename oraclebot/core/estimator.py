"""Parameter estimator: η (damping) and λ (coupling) from market data.

η comes from return volatility: calm markets damp slowly (high η), volatile
markets get a low η. λ comes from volume imbalance between the two sides of
the book (or YES/NO outcome volumes), or from price momentum when the feed
carries no book.

Every output lands in [PARAM_MIN, PARAM_MAX], the oracle's safe input
domain. All functions are pure: the only state is the price list passed in.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from oraclebot.core.normalizer import MarketReading

NEUTRAL_PARAMETER = 0.707  # 1/√2, critical damping
PARAM_MIN = 0.1
PARAM_MAX = 0.95
PARAM_BASE = 0.3
PARAM_SPAN = 0.6
VOLATILITY_SCALE = 100.0
VOLATILITY_DAMPING = 10.0
ETA_WARMUP = 10
MOMENTUM_WINDOW = 20
MOMENTUM_GAIN = 5.0
IMBALANCE_EPSILON = 1e-10

LAMBDA_METHODS = ("auto", "imbalance", "momentum")


class EstimatorConfig(BaseModel):
    """Empirical estimator constants. Defaults are the calibrated values."""

    neutral: float = NEUTRAL_PARAMETER
    param_min: float = PARAM_MIN
    param_max: float = PARAM_MAX
    base: float = PARAM_BASE
    span: float = PARAM_SPAN
    volatility_scale: float = VOLATILITY_SCALE
    volatility_damping: float = VOLATILITY_DAMPING
    eta_warmup: int = ETA_WARMUP
    momentum_window: int = MOMENTUM_WINDOW
    momentum_gain: float = MOMENTUM_GAIN


_DEFAULTS = EstimatorConfig()


@dataclass(frozen=True)
class Parameters:
    """Control parameters for one cycle. Never persisted."""

    eta: float
    lambda_: float
    lambda_method: str = "momentum"


def clamp(value: float, cfg: EstimatorConfig = _DEFAULTS) -> float:
    """Clamp to the oracle's input domain; non-finite values become neutral."""
    if not math.isfinite(value):
        return cfg.neutral
    return max(cfg.param_min, min(cfg.param_max, value))


def simple_returns(prices: Sequence[float]) -> list[float]:
    """r_i = (p_i - p_{i-1}) / p_{i-1}, guarded against a zero previous price."""
    return [
        (prices[i] - prices[i - 1]) / (prices[i - 1] + IMBALANCE_EPSILON)
        for i in range(1, len(prices))
    ]


def return_volatility(prices: Sequence[float]) -> float:
    """Population standard deviation of simple returns. 0.0 with < 2 prices."""
    returns = simple_returns(prices)
    if not returns:
        return 0.0
    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / len(returns)
    return math.sqrt(variance)


def estimate_eta(prices: Sequence[float], cfg: EstimatorConfig = _DEFAULTS) -> float:
    """Damping rate from volatility.

    Fewer than ``eta_warmup`` prices returns the neutral 0.707. Otherwise
    ``eta = base + span / (1 + damping * min(vol * scale, 1))``, which is
    non-increasing in volatility.
    """
    if len(prices) < cfg.eta_warmup:
        return cfg.neutral

    volatility = return_volatility(prices)
    normalized_vol = min(volatility * cfg.volatility_scale, 1.0)
    eta = cfg.base + cfg.span / (1.0 + normalized_vol * cfg.volatility_damping)
    return clamp(eta, cfg)


def estimate_lambda_imbalance(
    bid_volume: float,
    ask_volume: float,
    price_spread: float | None = None,
    cfg: EstimatorConfig = _DEFAULTS,
) -> float:
    """Coupling from volume imbalance, optionally blended with a spread factor.

    Args:
        bid_volume: Bid-side (or YES outcome) volume.
        ask_volume: Ask-side (or NO outcome) volume.
        price_spread: YES − NO price. A tight spread means consensus and
            raises coupling; None skips the blend.
        cfg: Estimator constants.

    Returns:
        λ in [param_min, param_max]; neutral when both volumes are zero.
    """
    if bid_volume == 0 and ask_volume == 0:
        return cfg.neutral

    imbalance = (bid_volume - ask_volume) / (bid_volume + ask_volume + IMBALANCE_EPSILON)
    coupling = abs(imbalance)

    if price_spread is not None:
        spread_factor = max(0.0, 1.0 - abs(price_spread) * 2.0)
        coupling = (coupling + spread_factor) / 2.0

    return clamp(cfg.base + coupling * cfg.span, cfg)


def estimate_lambda_momentum(prices: Sequence[float], cfg: EstimatorConfig = _DEFAULTS) -> float:
    """Coupling from trailing price momentum (strong trend → participants aligning)."""
    window = cfg.momentum_window
    if len(prices) < window:
        return cfg.neutral

    recent = list(prices)[-window:]
    momentum = (recent[-1] - recent[0]) / (recent[0] + IMBALANCE_EPSILON)
    return clamp(cfg.base + min(abs(momentum) * cfg.momentum_gain, cfg.span), cfg)


def estimate_parameters(
    prices: Sequence[float],
    reading: MarketReading,
    method: str = "auto",
    cfg: EstimatorConfig = _DEFAULTS,
) -> Parameters:
    """Derive this cycle's (η, λ).

    ``auto`` uses the imbalance estimator when the reading carries a
    bid/ask or outcome split and falls back to momentum for plain prices.
    """
    if method not in LAMBDA_METHODS:
        raise ValueError(f"Unknown lambda method {method!r}, expected one of {LAMBDA_METHODS}")

    use_imbalance = method == "imbalance" or (method == "auto" and reading.has_book)
    if use_imbalance:
        lam = estimate_lambda_imbalance(
            reading.bid_volume, reading.ask_volume, reading.price_spread, cfg
        )
        chosen = "imbalance"
    else:
        lam = estimate_lambda_momentum(prices, cfg)
        chosen = "momentum"

    return Parameters(eta=estimate_eta(prices, cfg), lambda_=lam, lambda_method=chosen)
