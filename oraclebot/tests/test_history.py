"""Tests for the bounded price history buffer."""

from __future__ import annotations

import pytest

from oraclebot.core.history import DEFAULT_MAX_HISTORY, PriceHistory


class TestCapacity:
    """FIFO eviction at capacity."""

    def test_default_capacity(self) -> None:
        assert PriceHistory().capacity == DEFAULT_MAX_HISTORY == 1000

    def test_overflow_by_one_evicts_oldest(self) -> None:
        """capacity + 1 appends leave exactly the last ``capacity`` values."""
        h = PriceHistory(capacity=5)
        pushed = [100.0 + i for i in range(6)]
        for p in pushed:
            h.append(p)

        assert len(h) == 5
        assert h.values() == pushed[-5:]

    def test_length_never_exceeds_capacity(self) -> None:
        h = PriceHistory(capacity=3)
        for i in range(50):
            h.append(float(i))
            assert len(h) <= 3
        assert h.values() == [47.0, 48.0, 49.0]

    def test_initial_prices_truncated(self) -> None:
        h = PriceHistory(capacity=2, prices=[1.0, 2.0, 3.0])
        assert h.values() == [2.0, 3.0]

    @pytest.mark.parametrize("capacity", [0, -1])
    def test_non_positive_capacity_rejected(self, capacity: int) -> None:
        with pytest.raises(ValueError):
            PriceHistory(capacity=capacity)


class TestAccessors:
    """Read-only views of the buffer."""

    def test_values_is_a_copy(self) -> None:
        h = PriceHistory(prices=[1.0, 2.0])
        snapshot = h.values()
        snapshot.append(99.0)
        assert h.values() == [1.0, 2.0]

    def test_iteration_oldest_first(self) -> None:
        h = PriceHistory(prices=[3.0, 1.0, 2.0])
        assert list(h) == [3.0, 1.0, 2.0]
