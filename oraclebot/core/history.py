"""Bounded FIFO buffer of recent prices feeding the estimators."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator

DEFAULT_MAX_HISTORY = 1000


class PriceHistory:
    """Most recent prices, oldest first.

    Appending at capacity evicts the oldest sample, so ``len(history)``
    never exceeds ``capacity``.
    """

    def __init__(self, capacity: int = DEFAULT_MAX_HISTORY, prices: Iterable[float] = ()) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._prices: deque[float] = deque(prices, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._prices.maxlen  # type: ignore[return-value]

    def append(self, price: float) -> None:
        self._prices.append(float(price))

    def values(self) -> list[float]:
        """Snapshot copy, oldest first."""
        return list(self._prices)

    def __len__(self) -> int:
        return len(self._prices)

    def __iter__(self) -> Iterator[float]:
        return iter(self._prices)
