"""Trade lifecycle: opening, closing and force-closing simulated positions.

Lifecycle per trade::

    OPEN -> CLOSED   (pnl >= 0)
    OPEN -> STOPPED  (pnl <  0)

A failed open is a silent skip (counted, optionally logged), never an
exception. Opens and closes whose arithmetic would produce a non-finite or
out-of-range value are rejected before any state changes, so such values
never reach the equity tracker.
"""

from __future__ import annotations

import math
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta

from src.simulation.config import BacktestConfig
from src.simulation.events import ProgressObserver, make_event, null_observer
from src.simulation.index import SnapshotIndex
from src.simulation.logger import BacktestLogger
from src.simulation.models import EventType, MarketSnapshot, Trade, to_epoch_ms, to_epoch_us
from src.simulation.portfolio import EquityTracker
from src.simulation.strategy import Strategy

ReasonProvider = Callable[[Trade, float, datetime], str]

FORCED_CLOSE_REASON = "Forced close at end of data"

# Smallest step the index resolves; used when a forced close would not be after entry.
_MIN_HOLD = timedelta(milliseconds=1)


class TradeBook:
    """Owns every trade of a run and enforces the entry/exit preconditions."""

    def __init__(
        self,
        config: BacktestConfig,
        strategies: dict[str, Strategy],
        equity: EquityTracker,
        logger: BacktestLogger | None = None,
        observer: ProgressObserver = null_observer,
    ):
        self.config = config
        self.strategies = strategies
        self.equity = equity
        self.logger = logger or BacktestLogger()
        self.observer = observer
        self.trades: list[Trade] = []
        self.blacklist: dict[str, str] = {}
        self.skips: Counter[str] = Counter()
        self.opened = 0
        self.closed = 0
        self.rejected = 0
        self._open: dict[str, Trade] = {}
        self._open_by_market: dict[str, Trade] = {}
        self._open_by_strategy: Counter[str] = Counter()

    # -- Queries --

    @property
    def open_trades(self) -> list[Trade]:
        return list(self._open.values())

    @property
    def open_count(self) -> int:
        return len(self._open)

    def open_count_for(self, strategy: str) -> int:
        return self._open_by_strategy[strategy]

    def holds(self, market_id: str) -> bool:
        return market_id in self._open_by_market

    def is_blacklisted(self, market_id: str) -> bool:
        return market_id in self.blacklist

    # -- Open --

    def open(self, snapshot: MarketSnapshot, strategy_name: str, outcome_index: int) -> Trade | None:
        """Open a position for ``strategy_name`` on ``snapshot``, or skip.

        Returns the new trade, or None when a precondition fails.
        """
        now = snapshot.timestamp
        market_id = snapshot.market_id
        strategy = self.strategies[strategy_name]
        sc = self.config.strategy_config(strategy_name)

        reason = None
        if self.open_count >= self.config.max_positions:
            reason = "max_positions"
        elif self.open_count_for(strategy_name) >= sc.max_positions:
            reason = "strategy_max_positions"
        elif market_id in self.blacklist:
            reason = "blacklisted"
        elif market_id in self._open_by_market:
            reason = "market_held"
        elif strategy.in_cooldown(market_id, now, sc.cooldown_minutes):
            reason = "cooldown"
        if reason is not None:
            self._skip(now, strategy_name, market_id, reason)
            return None

        entry_price = snapshot.price(outcome_index)
        if entry_price is None or not math.isfinite(entry_price) or not 0.0 < entry_price < 1.0:
            self._reject(
                now,
                f"open {strategy_name} {market_id}: invalid entry price {entry_price!r} for outcome {outcome_index}",
                market_id=market_id,
                strategy=strategy_name,
                entry_price=entry_price,
                outcome_index=outcome_index,
            )
            return None

        entry_value = self.equity.realized_equity * self.config.position_fraction(strategy_name)
        position_size = entry_value / entry_price
        if not (math.isfinite(entry_value) and entry_value > 0 and math.isfinite(position_size) and position_size > 0):
            self._reject(
                now,
                f"open {strategy_name} {market_id}: invalid sizing value={entry_value!r} size={position_size!r}",
                market_id=market_id,
                strategy=strategy_name,
                entry_value=entry_value,
                position_size=position_size,
            )
            return None

        trade = Trade(
            trade_id=f"{market_id}-{to_epoch_ms(now)}-{strategy_name}",
            market_id=market_id,
            question=snapshot.question,
            strategy=strategy_name,
            outcome_index=outcome_index,
            entry_time=now,
            entry_price=entry_price,
            position_size=position_size,
            entry_value=entry_value,
            end_date=snapshot.end_date,
            stop_loss=entry_price * (1 - sc.stop_loss) if sc.stop_loss else None,
            take_profit=entry_price * (1 + sc.take_profit) if sc.take_profit else None,
            trailing_stop=sc.trailing_stop,
        )
        self.trades.append(trade)
        self._open[trade.trade_id] = trade
        self._open_by_market[market_id] = trade
        self._open_by_strategy[strategy_name] += 1
        strategy.start_cooldown(market_id, now)
        self.opened += 1

        self.logger.position_opened(now, trade, self.equity.realized_equity)
        self.observer(
            make_event(
                EventType.TRADE_OPENED,
                trade_id=trade.trade_id,
                strategy=strategy_name,
                market_id=market_id,
                question=snapshot.question[:50],
                entry_price=entry_price,
                position_size=position_size,
                entry_value=entry_value,
            )
        )
        return trade

    # -- Close --

    def close(
        self,
        trade: Trade,
        exit_price: float,
        exit_time: datetime,
        reason_provider: ReasonProvider,
    ) -> bool:
        """Close an OPEN trade. Returns False if the close was rejected."""
        if not trade.is_open or trade.trade_id not in self._open:
            raise ValueError(f"Trade {trade.trade_id} is not open")

        if not math.isfinite(exit_price) or not 0.0 <= exit_price <= 1.0:
            self._reject(
                exit_time,
                f"close {trade.trade_id}: invalid exit price {exit_price!r}",
                trade_id=trade.trade_id,
                exit_price=exit_price,
            )
            return False
        if to_epoch_us(exit_time) <= to_epoch_us(trade.entry_time):
            self._reject(
                exit_time,
                f"close {trade.trade_id}: exit time {exit_time} not after entry {trade.entry_time}",
                trade_id=trade.trade_id,
            )
            return False
        pnl = trade.position_size * exit_price - trade.entry_value
        if not math.isfinite(pnl):
            self._reject(exit_time, f"close {trade.trade_id}: non-finite pnl", trade_id=trade.trade_id)
            return False

        reason = reason_provider(trade, exit_price, exit_time)
        trade.close(exit_price, exit_time, reason)
        self.equity.record_realized(trade.pnl)

        del self._open[trade.trade_id]
        del self._open_by_market[trade.market_id]
        self._open_by_strategy[trade.strategy] -= 1
        self.closed += 1

        if exit_price < self.config.blacklist_threshold:
            self.blacklist[trade.market_id] = f"exit price {exit_price:.4f} below {self.config.blacklist_threshold}"
            self.logger.market_blacklisted(exit_time, trade.market_id, exit_price)

        self.logger.position_closed(exit_time, trade)
        self.observer(
            make_event(
                EventType.TRADE_CLOSED,
                trade_id=trade.trade_id,
                strategy=trade.strategy,
                market_id=trade.market_id,
                pnl=trade.pnl,
                pnl_percent=trade.pnl_percent,
                exit_reason=trade.exit_reason,
                entry_price=trade.entry_price,
                exit_price=exit_price,
            )
        )
        return True

    def force_close_all(self, as_of: datetime, index: SnapshotIndex) -> int:
        """Close every open trade at its market's last known price (0 if none)."""
        remaining = self.open_trades
        if remaining:
            self.logger.forced_close(as_of, len(remaining))
        for trade in remaining:
            latest = index.lookup_latest(trade.market_id)
            price = latest.price(trade.outcome_index) if latest is not None else None
            if price is None or not math.isfinite(price) or not 0.0 <= price <= 1.0:
                price = 0.0
            exit_time = as_of if to_epoch_us(as_of) > to_epoch_us(trade.entry_time) else trade.entry_time + _MIN_HOLD
            self.close(trade, price, exit_time, _forced_reason)
        return len(remaining)

    # -- Internals --

    def _skip(self, ts: datetime, strategy: str, market_id: str, reason: str) -> None:
        self.skips[reason] += 1
        self.logger.entry_skipped(ts, strategy, market_id, reason)

    def _reject(self, ts: datetime, message: str, **data: object) -> None:
        self.rejected += 1
        self.logger.rejected(ts, message)
        self.observer(make_event(EventType.ERROR, message=message, **data))


def _forced_reason(trade: Trade, price: float, when: datetime) -> str:
    return FORCED_CLOSE_REASON
