"""Data types for the snapshot backtesting engine.

All prices are floats in [0.0, 1.0], one per market outcome, interpreted as
implied probability. Timestamps are ``datetime`` objects; naive values are
treated as UTC wherever they are converted to epoch time.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_us(dt: datetime) -> int:
    """Exact epoch microseconds; naive datetimes are read as UTC.

    All time ordering (sorting, as-of lookups, exit-after-entry) compares
    these values, so no rounding can move a snapshot across a query time.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(microseconds=1)


def to_epoch_ms(dt: datetime) -> int:
    """Epoch milliseconds, floored."""
    return to_epoch_us(dt) // 1000


class TradeStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    STOPPED = "stopped"


class EventType(str, Enum):
    START = "start"
    DATA_LOADED = "data_loaded"
    SNAPSHOT_PROCESSED = "snapshot_processed"
    TRADE_OPENED = "trade_opened"
    TRADE_CLOSED = "trade_closed"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class MarketSnapshot:
    """One observation of a market at one instant. Never mutated after load."""

    market_id: str
    question: str
    outcome_prices: tuple[float, ...]
    liquidity: float
    volume_24h: float
    end_date: datetime | None
    timestamp: datetime
    is_binary: bool = True
    tags: tuple[str, ...] = ()

    def price(self, outcome_index: int) -> float | None:
        """Price of one outcome, or None if the index is out of range."""
        if 0 <= outcome_index < len(self.outcome_prices):
            return self.outcome_prices[outcome_index]
        return None

    def days_to_end(self) -> float | None:
        """Days between capture time and market end, from this snapshot's own fields."""
        if self.end_date is None:
            return None
        return (to_epoch_ms(self.end_date) - to_epoch_ms(self.timestamp)) / 86_400_000.0

    def hours_to_end(self) -> float | None:
        days = self.days_to_end()
        return None if days is None else days * 24.0


@dataclass
class Trade:
    """A simulated position against one outcome of one market.

    Open trades are marked to market by the engine (``current_price``,
    ``unrealized_pnl``, ``highest_price``). ``close()`` finalizes the trade
    exactly once.
    """

    trade_id: str
    market_id: str
    question: str
    strategy: str
    outcome_index: int
    entry_time: datetime
    entry_price: float
    position_size: float
    entry_value: float
    end_date: datetime | None = None
    outcome_name: str = ""
    stop_loss: float | None = None
    take_profit: float | None = None
    trailing_stop: float | None = None
    status: TradeStatus = TradeStatus.OPEN
    exit_time: datetime | None = None
    exit_price: float | None = None
    exit_value: float | None = None
    pnl: float = 0.0
    pnl_percent: float = 0.0
    exit_reason: str = ""
    current_price: float | None = None
    unrealized_pnl: float = 0.0
    highest_price: float = 0.0

    def __post_init__(self) -> None:
        if not self.outcome_name:
            self.outcome_name = f"Outcome {self.outcome_index + 1}"
        if self.current_price is None:
            self.current_price = self.entry_price
        self.highest_price = max(self.highest_price, self.entry_price)

    @property
    def is_open(self) -> bool:
        return self.status == TradeStatus.OPEN

    def holding_hours(self, now: datetime) -> float:
        return (to_epoch_ms(now) - to_epoch_ms(self.entry_time)) / 3_600_000.0

    def hours_to_end(self, now: datetime) -> float | None:
        if self.end_date is None:
            return None
        return (to_epoch_ms(self.end_date) - to_epoch_ms(now)) / 3_600_000.0

    def mark(self, price: float) -> None:
        """Mark the open position to ``price``."""
        self.current_price = price
        self.unrealized_pnl = self.position_size * price - self.entry_value
        if price > self.highest_price:
            self.highest_price = price

    def close(self, exit_price: float, exit_time: datetime, reason: str) -> None:
        if not self.is_open:
            raise ValueError(f"Trade {self.trade_id} is already {self.status.value}")
        exit_value = self.position_size * exit_price
        pnl = exit_value - self.entry_value
        self.exit_time = exit_time
        self.exit_price = exit_price
        self.exit_value = exit_value
        self.pnl = pnl
        self.pnl_percent = pnl / self.entry_value * 100.0
        self.status = TradeStatus.CLOSED if pnl >= 0 else TradeStatus.STOPPED
        self.exit_reason = reason
        self.current_price = exit_price
        self.unrealized_pnl = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "trade_id": self.trade_id,
            "market_id": self.market_id,
            "question": self.question,
            "strategy": self.strategy,
            "outcome_index": self.outcome_index,
            "outcome_name": self.outcome_name,
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "position_size": self.position_size,
            "entry_value": self.entry_value,
            "end_date": self.end_date,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "exit_value": self.exit_value,
            "pnl": self.pnl,
            "pnl_percent": self.pnl_percent,
            "status": self.status.value,
            "exit_reason": self.exit_reason,
            "stop_loss": self.stop_loss,
            "take_profit": self.take_profit,
        }


@dataclass(frozen=True)
class EquityPoint:
    """One sample of the equity curve, taken after a snapshot is processed."""

    timestamp: datetime
    equity: float
    positions: int
    realized_equity: float = 0.0


@dataclass(frozen=True)
class PortfolioSnapshot:
    """Point-in-time view of the run's capital, handed to strategies."""

    timestamp: datetime | None
    equity: float
    realized_equity: float
    peak_equity: float
    drawdown: float
    daily_pnl: float
    open_positions: int


@dataclass(frozen=True)
class StrategyStats:
    trades: int
    win_rate: float
    total_pnl: float
    average_pnl: float
    max_drawdown: float


@dataclass(frozen=True)
class ProgressEvent:
    """Notification delivered to the optional progress observer."""

    type: EventType
    timestamp: datetime
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BacktestResult:
    """Complete, write-once results of a backtest run.

    ``metrics`` holds the scalar summary (trade counts, win rate, best and
    worst trade, total and percent P&L, drawdown, Sharpe ratio); the raw
    trade list and equity curve are kept for external export.
    """

    metrics: dict[str, float]
    strategy_stats: dict[str, StrategyStats]
    equity_curve: list[EquityPoint]
    trades: list[Trade]
    initial_capital: float
    final_equity: float
    start_time: datetime | None
    end_time: datetime | None
    duration_days: float
    stats: dict[str, Any] = field(default_factory=dict)
    event_log: list[str] = field(default_factory=list)

    @property
    def total_trades(self) -> int:
        return int(self.metrics.get("total_trades", 0))

    @property
    def win_rate(self) -> float:
        return self.metrics.get("win_rate", 0.0)

    @property
    def total_pnl(self) -> float:
        return self.metrics.get("total_pnl", 0.0)

    @property
    def sharpe_ratio(self) -> float:
        return self.metrics.get("sharpe_ratio", 0.0)

    @property
    def max_drawdown(self) -> float:
        return self.metrics.get("max_drawdown", 0.0)

    def trades_frame(self):
        """All trades as a pandas DataFrame, one row per trade."""
        import pandas as pd

        return pd.DataFrame([t.to_dict() for t in self.trades])

    def equity_frame(self):
        """The equity curve as a pandas DataFrame indexed by timestamp."""
        import pandas as pd

        df = pd.DataFrame(
            {
                "timestamp": [p.timestamp for p in self.equity_curve],
                "equity": [p.equity for p in self.equity_curve],
                "realized_equity": [p.realized_equity for p in self.equity_curve],
                "positions": [p.positions for p in self.equity_curve],
            }
        )
        return df.set_index("timestamp")


def is_finite_number(value: object) -> bool:
    """True for int/float values that are neither NaN nor infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)
