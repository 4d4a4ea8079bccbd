"""Tests for the per-market snapshot index and its as-of lookups."""

from __future__ import annotations

import math
from dataclasses import replace
from datetime import timedelta, timezone

import pytest

from src.simulation.index import MarketView, SnapshotIndex, validate_snapshot
from src.simulation.models import MarketSnapshot


class TestBuild:
    def test_partitions_by_market_in_time_order(self, make_snapshot) -> None:
        snaps = [
            make_snapshot("B", 30),
            make_snapshot("A", 20),
            make_snapshot("A", 0),
            make_snapshot("B", 10),
        ]
        index = SnapshotIndex.build(snaps)
        assert len(index) == 4
        assert sorted(index.market_ids) == ["A", "B"]
        assert [s.timestamp for s in index.snapshots] == sorted(s.timestamp for s in snaps)
        a = index.snapshots_for("A")
        assert [s.timestamp for s in a] == sorted(s.timestamp for s in a)

    def test_equal_timestamps_keep_input_order(self, make_snapshot) -> None:
        first = make_snapshot("A", 0, question="first")
        second = make_snapshot("B", 0, question="second")
        index = SnapshotIndex.build([first, second])
        assert index.snapshots == [first, second]

    def test_malformed_snapshots_dropped_and_counted(self, make_snapshot) -> None:
        good = make_snapshot("A", 0)
        bad = [
            make_snapshot("", 0),
            make_snapshot("A", 5, prices=(1.2, -0.2)),
            make_snapshot("A", 5, prices=(math.nan, 0.5)),
            make_snapshot("A", 5, prices=()),
            make_snapshot("A", 5, liquidity=math.inf),
            make_snapshot("A", 60 * 24 * 40, end_days=30),  # captured after end
        ]
        index = SnapshotIndex.build([good, *bad])
        assert index.snapshots == [good]
        assert index.dropped == len(bad)

    def test_missing_end_date_is_valid(self, make_snapshot) -> None:
        assert validate_snapshot(make_snapshot("A", 0, end_days=None))

    def test_mixed_naive_and_aware_timestamps(self, make_snapshot) -> None:
        naive = make_snapshot("A", 0)
        aware = MarketSnapshot(
            market_id="A",
            question="q",
            outcome_prices=(0.4, 0.6),
            liquidity=1.0,
            volume_24h=1.0,
            end_date=None,
            timestamp=(naive.timestamp + timedelta(minutes=1)).replace(tzinfo=timezone.utc),
        )
        index = SnapshotIndex.build([aware, naive])
        assert index.snapshots == [naive, aware]


class TestLookupAsOf:
    @pytest.fixture()
    def index(self, make_series) -> SnapshotIndex:
        return SnapshotIndex.build(make_series("M", [0.1, 0.2, 0.3]))

    def test_exact_timestamp(self, index: SnapshotIndex) -> None:
        t2 = index.snapshots[1].timestamp
        assert index.lookup_as_of("M", t2) is index.snapshots[1]

    def test_between_snapshots_returns_most_recent_not_after(self, index: SnapshotIndex) -> None:
        t2 = index.snapshots[1].timestamp
        assert index.lookup_as_of("M", t2 + timedelta(milliseconds=1)) is index.snapshots[1]
        assert index.lookup_as_of("M", t2 + timedelta(minutes=59)) is index.snapshots[1]

    def test_before_first_snapshot_not_found(self, index: SnapshotIndex) -> None:
        t1 = index.snapshots[0].timestamp
        assert index.lookup_as_of("M", t1 - timedelta(milliseconds=1)) is None

    def test_sub_millisecond_future_snapshot_not_visible(self, make_snapshot) -> None:
        base = make_snapshot("M", 0)
        later = replace(base, timestamp=base.timestamp + timedelta(microseconds=700))
        index = SnapshotIndex.build([later])
        assert index.lookup_as_of("M", base.timestamp + timedelta(microseconds=600)) is None
        assert index.lookup_as_of("M", base.timestamp + timedelta(microseconds=700)) is later
        assert index.lookup_as_of("M", base.timestamp + timedelta(microseconds=1_200)) is later

    def test_after_last_snapshot_returns_last(self, index: SnapshotIndex) -> None:
        t3 = index.snapshots[2].timestamp
        assert index.lookup_as_of("M", t3 + timedelta(days=10)) is index.snapshots[2]

    def test_unknown_market_not_found(self, index: SnapshotIndex) -> None:
        assert index.lookup_as_of("nope", index.snapshots[0].timestamp) is None
        assert index.lookup_latest("nope") is None

    def test_hits_and_misses_counted(self, index: SnapshotIndex) -> None:
        t1 = index.snapshots[0].timestamp
        index.lookup_as_of("M", t1)
        index.lookup_as_of("M", t1 - timedelta(hours=1))
        index.lookup_as_of("X", t1)
        assert (index.hits, index.misses) == (1, 2)

    def test_lookup_latest(self, index: SnapshotIndex) -> None:
        assert index.lookup_latest("M") is index.snapshots[-1]


class TestHistory:
    def test_prices_oldest_first_ending_at_as_of(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2, 0.3, 0.4, 0.5]))
        t4 = index.snapshots[3].timestamp
        assert index.historical_prices("M", t4, lookback=3) == [0.2, 0.3, 0.4]

    def test_lookback_truncated_at_partition_start(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2, 0.3]))
        t2 = index.snapshots[1].timestamp
        assert index.historical_prices("M", t2, lookback=10) == [0.1, 0.2]

    def test_other_outcome(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2]))
        t2 = index.snapshots[1].timestamp
        assert index.historical_prices("M", t2, outcome_index=1) == pytest.approx([0.9, 0.8])

    def test_missing_outcome_skipped(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2]))
        assert index.historical_prices("M", index.snapshots[1].timestamp, outcome_index=5) == []

    def test_before_first_is_empty(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2]))
        assert index.historical_prices("M", index.snapshots[0].timestamp - timedelta(seconds=1)) == []

    def test_liquidity(self, make_snapshot) -> None:
        index = SnapshotIndex.build(
            [make_snapshot("M", 0, liquidity=100.0), make_snapshot("M", 10, liquidity=200.0)]
        )
        assert index.historical_liquidity("M", index.snapshots[1].timestamp) == [100.0, 200.0]


class TestMarketView:
    def test_latest_snapshot_with_and_without_time(self, make_series) -> None:
        index = SnapshotIndex.build(make_series("M", [0.1, 0.2, 0.3]))
        view = MarketView(index)
        assert view.latest_snapshot("M") is index.snapshots[-1]
        assert view.latest_snapshot("M", index.snapshots[0].timestamp) is index.snapshots[0]
        assert view.historical_prices("M", index.snapshots[1].timestamp) == [0.1, 0.2]
