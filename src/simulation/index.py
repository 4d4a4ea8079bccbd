"""Per-market, time-ordered snapshot index with as-of lookups.

Snapshots are partitioned by market id. Each partition keeps its snapshots
in chronological order next to a numpy array of their epoch-microsecond
timestamps, so "most recent snapshot not after t" is a binary search over
one market's history instead of a scan over the whole dataset.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime

import numpy as np

from src.simulation.models import MarketSnapshot, is_finite_number, to_epoch_us


def validate_snapshot(snapshot: MarketSnapshot) -> bool:
    """Return False for snapshots that must never reach the simulation loop."""
    if not snapshot.market_id or not isinstance(snapshot.market_id, str):
        return False
    if not isinstance(snapshot.timestamp, datetime):
        return False
    if not snapshot.outcome_prices:
        return False
    for p in snapshot.outcome_prices:
        if not is_finite_number(p) or p < 0.0 or p > 1.0:
            return False
    if not is_finite_number(snapshot.liquidity) or not is_finite_number(snapshot.volume_24h):
        return False
    if snapshot.end_date is not None and to_epoch_us(snapshot.timestamp) > to_epoch_us(snapshot.end_date):
        return False
    return True


class _Partition:
    __slots__ = ("snapshots", "timestamps")

    def __init__(self, snapshots: list[MarketSnapshot]):
        self.snapshots = snapshots
        self.timestamps = np.fromiter(
            (to_epoch_us(s.timestamp) for s in snapshots),
            dtype=np.int64,
            count=len(snapshots),
        )

    def position_as_of(self, ts_us: int) -> int:
        """Index of the last snapshot with timestamp <= ts_us, or -1."""
        return int(np.searchsorted(self.timestamps, ts_us, side="right")) - 1


class SnapshotIndex:
    """Read-only index over one run's snapshots.

    Build once with :meth:`build`; every lookup afterwards is O(log k) in
    the number of snapshots k of the queried market.
    """

    def __init__(self) -> None:
        self.snapshots: list[MarketSnapshot] = []
        self.dropped = 0
        self.hits = 0
        self.misses = 0
        self._partitions: dict[str, _Partition] = {}

    @classmethod
    def build(cls, snapshots: Iterable[MarketSnapshot]) -> SnapshotIndex:
        """Validate, order and partition ``snapshots`` by market.

        Malformed snapshots are dropped and counted in ``dropped``. The sort
        is stable, so snapshots sharing a timestamp keep their input order.
        """
        index = cls()
        kept: list[MarketSnapshot] = []
        for snapshot in snapshots:
            if validate_snapshot(snapshot):
                kept.append(snapshot)
            else:
                index.dropped += 1
        kept.sort(key=lambda s: to_epoch_us(s.timestamp))
        index.snapshots = kept

        grouped: dict[str, list[MarketSnapshot]] = {}
        for snapshot in kept:
            grouped.setdefault(snapshot.market_id, []).append(snapshot)
        index._partitions = {mid: _Partition(group) for mid, group in grouped.items()}
        return index

    def __len__(self) -> int:
        return len(self.snapshots)

    @property
    def market_ids(self) -> list[str]:
        return list(self._partitions)

    def market_count(self) -> int:
        return len(self._partitions)

    def snapshots_for(self, market_id: str) -> list[MarketSnapshot]:
        partition = self._partitions.get(market_id)
        return list(partition.snapshots) if partition else []

    def lookup_as_of(self, market_id: str, when: datetime) -> MarketSnapshot | None:
        """Most recent snapshot of ``market_id`` with timestamp <= ``when``."""
        partition = self._partitions.get(market_id)
        if partition is None:
            self.misses += 1
            return None
        pos = partition.position_as_of(to_epoch_us(when))
        if pos < 0:
            self.misses += 1
            return None
        self.hits += 1
        return partition.snapshots[pos]

    def lookup_latest(self, market_id: str) -> MarketSnapshot | None:
        """Last snapshot ever seen for ``market_id``."""
        partition = self._partitions.get(market_id)
        if partition is None or not partition.snapshots:
            return None
        return partition.snapshots[-1]

    def _window(self, market_id: str, when: datetime, lookback: int) -> list[MarketSnapshot]:
        partition = self._partitions.get(market_id)
        if partition is None or lookback <= 0:
            return []
        pos = partition.position_as_of(to_epoch_us(when))
        if pos < 0:
            return []
        start = max(0, pos - lookback + 1)
        return partition.snapshots[start : pos + 1]

    def historical_prices(
        self,
        market_id: str,
        when: datetime,
        lookback: int = 10,
        outcome_index: int = 0,
    ) -> list[float]:
        """Up to ``lookback`` prices, oldest first, ending at the as-of snapshot."""
        prices = []
        for snapshot in self._window(market_id, when, lookback):
            price = snapshot.price(outcome_index)
            if price is not None and math.isfinite(price) and 0.0 <= price <= 1.0:
                prices.append(price)
        return prices

    def historical_liquidity(self, market_id: str, when: datetime, lookback: int = 10) -> list[float]:
        """Up to ``lookback`` liquidity readings, oldest first."""
        return [s.liquidity for s in self._window(market_id, when, lookback) if s.liquidity >= 0]


class MarketView:
    """The read-only slice of the index that strategies may query.

    ``when`` is required for history so a strategy cannot accidentally read
    past the snapshot it is deciding on.
    """

    def __init__(self, index: SnapshotIndex):
        self._index = index

    def historical_prices(
        self,
        market_id: str,
        when: datetime,
        lookback: int = 10,
        outcome_index: int = 0,
    ) -> list[float]:
        return self._index.historical_prices(market_id, when, lookback, outcome_index)

    def historical_liquidity(self, market_id: str, when: datetime, lookback: int = 10) -> list[float]:
        return self._index.historical_liquidity(market_id, when, lookback)

    def latest_snapshot(self, market_id: str, when: datetime | None = None) -> MarketSnapshot | None:
        """As-of snapshot when ``when`` is given, otherwise the last one loaded."""
        if when is None:
            return self._index.lookup_latest(market_id)
        return self._index.lookup_as_of(market_id, when)
