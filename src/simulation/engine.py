"""Simulation loop for snapshot backtesting.

Replays market snapshots in time order. For every snapshot the engine
checks exits on open trades, asks each enabled strategy whether to enter,
then re-marks equity. Whatever is still open after the last snapshot is
force-closed so the run ends fully realized.
"""

from __future__ import annotations

import time
from collections.abc import Iterable
from datetime import datetime

from src.simulation.config import BacktestConfig
from src.simulation.events import ProgressObserver, make_event, null_observer
from src.simulation.feeds.base import BaseFeed
from src.simulation.index import MarketView, SnapshotIndex
from src.simulation.logger import BacktestLogger
from src.simulation.metrics import build_result
from src.simulation.models import (
    BacktestResult,
    EquityPoint,
    EventType,
    MarketSnapshot,
    Trade,
    to_epoch_us,
)
from src.simulation.portfolio import EquityTracker
from src.simulation.strategy import Strategy, StrategyRegistry
from src.simulation.trades import TradeBook

# Number of snapshot_processed events per run.
PROGRESS_STEPS = 20


class Engine:
    """Drives one or more strategies over a snapshot history.

    Deterministic given the same snapshots, config and strategy parameters.
    Strategy instances are reset at the start of every :meth:`run`, so an
    engine can be run repeatedly without state leaking between runs.
    """

    def __init__(
        self,
        config: BacktestConfig,
        strategies: Iterable[Strategy] | None = None,
        feed: BaseFeed | None = None,
        registry: StrategyRegistry | None = None,
        observer: ProgressObserver | None = None,
        progress: bool = False,
        verbose: bool = False,
        print_live: bool = False,
    ):
        self.config = config
        self.feed = feed
        self.observer = observer or null_observer
        self.progress = progress
        self.verbose = verbose
        self.print_live = print_live
        self.strategies: dict[str, Strategy] = {}
        for strategy in strategies or []:
            self.add_strategy(strategy)
        if registry is not None:
            for name, sc in config.strategies.items():
                if sc.enabled and name not in self.strategies:
                    self.add_strategy(registry.create(name))

        self.index = SnapshotIndex()
        self._loaded = False
        self._dropped = 0
        self._out_of_window = 0
        self.logger = BacktestLogger(print_live=print_live, verbose=verbose)
        self.equity = EquityTracker(config.initial_capital)
        self.book = TradeBook(config, self.strategies, self.equity, self.logger, self.observer)

    def add_strategy(self, strategy: Strategy) -> None:
        if strategy.name in self.strategies:
            raise ValueError(f"Strategy '{strategy.name}' added twice")
        self.strategies[strategy.name] = strategy

    # -- Read-only queries for strategies and callers --

    def historical_prices(
        self,
        market_id: str,
        when: datetime,
        lookback: int = 10,
        outcome_index: int = 0,
    ) -> list[float]:
        return self.index.historical_prices(market_id, when, lookback, outcome_index)

    def historical_liquidity(self, market_id: str, when: datetime, lookback: int = 10) -> list[float]:
        return self.index.historical_liquidity(market_id, when, lookback)

    def latest_snapshot(self, market_id: str, when: datetime | None = None) -> MarketSnapshot | None:
        return MarketView(self.index).latest_snapshot(market_id, when)

    # -- Loading --

    def load(self, snapshots: Iterable[MarketSnapshot] | None = None) -> SnapshotIndex:
        """Time-filter and index ``snapshots`` (or the feed's, if omitted)."""
        if snapshots is None:
            if self.feed is None:
                raise ValueError("Engine.load() needs snapshots or a feed")
            snapshots = self.feed.snapshots(start_time=self.config.start_date, end_time=self.config.end_date)

        start_us = to_epoch_us(self.config.start_date) if self.config.start_date else None
        end_us = to_epoch_us(self.config.end_date) if self.config.end_date else None
        out_of_window = 0

        def in_window(items: Iterable[MarketSnapshot]) -> Iterable[MarketSnapshot]:
            nonlocal out_of_window
            for s in items:
                if isinstance(s.timestamp, datetime):
                    ts = to_epoch_us(s.timestamp)
                    if (start_us is not None and ts < start_us) or (end_us is not None and ts > end_us):
                        out_of_window += 1
                        continue
                yield s

        self.index = SnapshotIndex.build(in_window(snapshots))
        feed_dropped = self.feed.dropped if self.feed is not None else 0
        self._dropped = self.index.dropped + feed_dropped
        self._out_of_window = out_of_window
        self._loaded = True
        self._emit(
            EventType.DATA_LOADED,
            snapshots=len(self.index),
            markets=self.index.market_count(),
            dropped=self._dropped,
            out_of_window=out_of_window,
        )
        return self.index

    # -- Run --

    def run(self, snapshots: Iterable[MarketSnapshot] | None = None) -> BacktestResult:
        """Execute the full simulation and return its result."""
        self.config.validate()
        wall_start = time.monotonic()

        self.logger = BacktestLogger(print_live=self.print_live, verbose=self.verbose)
        self.equity = EquityTracker(self.config.initial_capital)
        self.book = TradeBook(self.config, self.strategies, self.equity, self.logger, self.observer)

        self._emit(EventType.START, strategies=list(self.strategies), initial_capital=self.config.initial_capital)
        if snapshots is not None:
            self.load(snapshots)
        elif not self._loaded:
            self.load()

        index = self.index
        index.hits = index.misses = 0
        first_ts = index.snapshots[0].timestamp if index.snapshots else None
        self.logger.start(first_ts, list(self.strategies), self.config.initial_capital)
        self.logger.data_loaded(first_ts, len(index), self._dropped, index.market_count())

        view = MarketView(index)
        for strategy in self.strategies.values():
            strategy.reset()
            strategy._market_view = view
            strategy._get_portfolio = lambda: self.equity.snapshot(self.book.open_count)
            strategy.initialize()

        enabled = [name for name in self.strategies if self.config.strategy_config(name).enabled]
        stats = {
            "total_snapshots": len(index),
            "processed_snapshots": 0,
            "dropped_snapshots": self._dropped,
            "out_of_window": self._out_of_window,
            "markets": index.market_count(),
            "candidates_found": 0,
            "filtered_snapshots": 0,
            "trades_opened": 0,
            "trades_closed": 0,
            "forced_closes": 0,
            "rejected_operations": 0,
        }
        equity_curve: list[EquityPoint] = []
        total = len(index)
        step = max(1, total // PROGRESS_STEPS)

        items: Iterable[MarketSnapshot] = index.snapshots
        bar = None
        if self.progress and total:
            from src.simulation.progress import PinnedProgress

            bar = PinnedProgress(index.snapshots, total=total, desc=", ".join(enabled) or "backtest")
            items = bar
            self.logger.write_fn = bar.write

        try:
            for i, snapshot in enumerate(items):
                self._check_exits(snapshot)

                if self.book.is_blacklisted(snapshot.market_id):
                    pass
                elif not self.config.filters.accepts(snapshot):
                    stats["filtered_snapshots"] += 1
                else:
                    stats["candidates_found"] += self._check_entries(snapshot, enabled)

                self.equity.update(snapshot, self.book.open_trades, index)
                self._record(equity_curve, snapshot.timestamp)
                stats["processed_snapshots"] = i + 1

                if bar is not None:
                    bar.set_status(equity=f"${self.equity.equity:,.0f}", positions=self.book.open_count)
                if i > 0 and i % step == 0:
                    self._report(snapshot.timestamp, i + 1, total)
        except Exception as exc:
            self._emit(EventType.ERROR, message=f"{type(exc).__name__}: {exc}", processed=stats["processed_snapshots"])
            raise

        last_ts = index.snapshots[-1].timestamp if index.snapshots else None
        if last_ts is not None:
            stats["forced_closes"] = self.book.force_close_all(last_ts, index)
            self.equity.settle(last_ts)
            self._record(equity_curve, last_ts, settle=True)

        for strategy in self.strategies.values():
            strategy.finalize()

        stats["trades_opened"] = self.book.opened
        stats["trades_closed"] = self.book.closed
        stats["rejected_operations"] = self.book.rejected
        stats["skips"] = dict(self.book.skips)
        stats["blacklisted_markets"] = sorted(self.book.blacklist)
        stats["index_hits"] = index.hits
        stats["index_misses"] = index.misses

        elapsed = time.monotonic() - wall_start
        self.logger.end(last_ts, self.equity.equity, len(self.book.trades), elapsed)

        result = build_result(
            equity_curve,
            list(self.book.trades),
            self.config.initial_capital,
            periods_per_year=self.config.periods_per_year,
            max_drawdown_fraction=self.equity.max_drawdown,
            max_drawdown_amount=self.equity.max_drawdown_amount,
            stats=stats,
            event_log=self.logger.lines,
        )
        self._emit(
            EventType.COMPLETE,
            total_trades=result.total_trades,
            final_equity=result.final_equity,
            total_pnl=result.total_pnl,
            win_rate=result.win_rate,
            elapsed=elapsed,
        )
        return result

    # -- Loop steps --

    def _check_exits(self, snapshot: MarketSnapshot) -> None:
        now = snapshot.timestamp
        for trade in self.book.open_trades:
            current = self.index.lookup_as_of(trade.market_id, now)
            if current is None or to_epoch_us(current.timestamp) <= to_epoch_us(trade.entry_time):
                continue
            price = current.price(trade.outcome_index)
            if price is None:
                continue
            trade.mark(price)
            strategy = self.strategies[trade.strategy]
            if strategy.should_close(trade, price, now, self.config):
                self.book.close(trade, price, now, self._reason_for(strategy))

    def _check_entries(self, snapshot: MarketSnapshot, enabled: list[str]) -> int:
        """Offer ``snapshot`` to each enabled strategy; returns accepted signals."""
        signals = 0
        for name in enabled:
            if self.book.open_count >= self.config.max_positions:
                break
            if self.book.open_count_for(name) >= self.config.strategy_config(name).max_positions:
                continue
            if self.book.holds(snapshot.market_id):
                break
            strategy = self.strategies[name]
            if not strategy.should_open(snapshot, self.config):
                continue
            signals += 1
            outcome = strategy.select_outcome(snapshot)
            if outcome is None:
                continue
            self.book.open(snapshot, name, outcome)
        return signals

    @staticmethod
    def _reason_for(strategy: Strategy):
        def reason(trade: Trade, price: float, when: datetime) -> str:
            return strategy.get_exit_reason(trade, price, when)

        return reason

    def _record(self, curve: list[EquityPoint], ts: datetime, settle: bool = False) -> None:
        """Append one equity sample per processed snapshot.

        The settlement sample after the forced close replaces the final
        snapshot's sample when both share a timestamp.
        """
        point = self.equity.point(ts, self.book.open_count)
        if settle and curve and to_epoch_us(curve[-1].timestamp) == to_epoch_us(ts):
            curve[-1] = point
        else:
            curve.append(point)

    def _report(self, ts: datetime, processed: int, total: int) -> None:
        self.logger.portfolio_update(
            ts,
            self.equity.equity,
            self.equity.realized_equity,
            self.book.open_count,
            self.equity.drawdown,
        )
        self._emit(
            EventType.SNAPSHOT_PROCESSED,
            progress=processed / total,
            processed=processed,
            total=total,
            equity=self.equity.equity,
            open_positions=self.book.open_count,
        )

    def _emit(self, event_type: EventType, **data) -> None:
        self.observer(make_event(event_type, **data))
