"""Tests for equity tracking: realized vs unrealized, floor, peak and drawdown."""

from __future__ import annotations

import math

import pytest

from src.simulation.index import SnapshotIndex
from src.simulation.models import Trade
from src.simulation.portfolio import EquityTracker


def _trade(snapshot, value: float = 1000.0, outcome: int = 0) -> Trade:
    price = snapshot.outcome_prices[outcome]
    return Trade(
        trade_id="t",
        market_id=snapshot.market_id,
        question=snapshot.question,
        strategy="s",
        outcome_index=outcome,
        entry_time=snapshot.timestamp,
        entry_price=price,
        position_size=value / price,
        entry_value=value,
    )


class TestUpdate:
    def test_unrealized_from_current_snapshot(self, make_series) -> None:
        snaps = make_series("M", [0.5, 0.6])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(10_000.0)
        trade = _trade(snaps[0])
        equity = tracker.update(snaps[1], [trade], index)
        assert trade.unrealized_pnl == pytest.approx(200.0)
        assert equity == pytest.approx(10_200.0)
        assert tracker.realized_equity == pytest.approx(10_000.0)

    def test_other_market_priced_as_of_now(self, make_snapshot) -> None:
        m_open = make_snapshot("M", 0, (0.5, 0.5))
        m_later = make_snapshot("M", 120, (0.25, 0.75))
        other = make_snapshot("X", 60)
        index = SnapshotIndex.build([m_open, other, m_later])
        tracker = EquityTracker(10_000.0)
        trade = _trade(m_open)
        # At minute 60 the latest M price is still 0.5; the later 0.25 is in the future.
        assert tracker.update(other, [trade], index) == pytest.approx(10_000.0)

    def test_no_price_counts_as_worthless(self, make_snapshot) -> None:
        ghost = make_snapshot("GHOST", 0, (0.5, 0.5))
        other = make_snapshot("X", 60)
        tracker = EquityTracker(10_000.0)
        tracker.update(other, [_trade(ghost)], SnapshotIndex.build([other]))
        assert tracker.equity == pytest.approx(9_000.0)

    def test_equity_floored_at_zero(self, make_series) -> None:
        snaps = make_series("M", [0.1, 0.0])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(1_000.0)
        tracker.record_realized(-900.0)
        tracker.update(snaps[1], [_trade(snaps[0], value=5_000.0)], index)
        assert tracker.equity == 0.0
        assert tracker.drawdown == pytest.approx(1.0)

    def test_peak_and_max_drawdown(self, make_series) -> None:
        snaps = make_series("M", [0.5, 0.75, 0.25, 0.5])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(10_000.0)
        trade = _trade(snaps[0])
        for s in snaps[1:]:
            tracker.update(s, [trade], index)
        # 10500 peak, 9500 trough
        assert tracker.peak_equity == pytest.approx(10_500.0)
        assert tracker.max_drawdown == pytest.approx(1000.0 / 10_500.0)
        assert tracker.max_drawdown_amount == pytest.approx(1000.0)
        assert tracker.drawdown == pytest.approx(500.0 / 10_500.0)

    def test_highest_price_tracked(self, make_series) -> None:
        snaps = make_series("M", [0.5, 0.8, 0.6])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(10_000.0)
        trade = _trade(snaps[0])
        for s in snaps[1:]:
            tracker.update(s, [trade], index)
        assert trade.highest_price == 0.8
        assert trade.current_price == 0.6


class TestRealized:
    def test_non_finite_realized_refused(self) -> None:
        tracker = EquityTracker(100.0)
        with pytest.raises(ValueError):
            tracker.record_realized(math.nan)
        assert tracker.realized_pnl == 0.0

    def test_realized_equity_never_negative(self) -> None:
        tracker = EquityTracker(100.0)
        tracker.record_realized(-250.0)
        assert tracker.realized_equity == 0.0

    def test_settle_drops_unrealized(self, make_series) -> None:
        snaps = make_series("M", [0.5, 0.6])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(10_000.0)
        tracker.update(snaps[1], [_trade(snaps[0])], index)
        tracker.record_realized(150.0)
        assert tracker.settle(snaps[1].timestamp) == pytest.approx(10_150.0)
        assert tracker.unrealized_pnl == 0.0


class TestSnapshots:
    def test_point_and_portfolio_snapshot(self, make_series) -> None:
        snaps = make_series("M", [0.5, 0.6])
        index = SnapshotIndex.build(snaps)
        tracker = EquityTracker(10_000.0)
        tracker.update(snaps[1], [_trade(snaps[0])], index)
        point = tracker.point(snaps[1].timestamp, positions=1)
        assert point.equity == pytest.approx(10_200.0)
        assert point.realized_equity == pytest.approx(10_000.0)
        assert point.positions == 1
        view = tracker.snapshot(positions=1)
        assert view.peak_equity == pytest.approx(10_200.0)
        assert view.open_positions == 1
        assert view.timestamp == snaps[1].timestamp

    def test_daily_pnl_resets_on_new_day(self, make_snapshot) -> None:
        day1 = make_snapshot("M", 0, (0.5, 0.5))
        day1_later = make_snapshot("M", 60, (0.6, 0.4))
        day2 = make_snapshot("M", 60 * 24, (0.7, 0.3))
        index = SnapshotIndex.build([day1, day1_later, day2])
        tracker = EquityTracker(10_000.0)
        trade = _trade(day1)
        tracker.update(day1, [trade], index)
        tracker.update(day1_later, [trade], index)
        assert tracker.daily_pnl == pytest.approx(200.0)
        tracker.update(day2, [trade], index)
        assert tracker.daily_pnl == pytest.approx(200.0)
        assert tracker.equity == pytest.approx(10_400.0)
