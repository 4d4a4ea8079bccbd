"""Running capital, peak equity and drawdown for one backtest run.

Realized P&L (closed trades) and unrealized P&L (open trades marked to the
latest known price) are tracked separately. Position sizing reads
``realized_equity`` only, so paper gains are never compounded into new
positions before they are locked in. The total figure, including
unrealized P&L, drives the equity curve, peak and drawdown.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date, datetime

from src.simulation.index import SnapshotIndex
from src.simulation.models import EquityPoint, MarketSnapshot, PortfolioSnapshot, Trade


class EquityTracker:
    """Single-writer equity aggregate. Equity is floored at zero."""

    def __init__(self, initial_capital: float):
        self.initial_capital = initial_capital
        self.realized_pnl = 0.0
        self.unrealized_pnl = 0.0
        self.equity = initial_capital
        self.peak_equity = initial_capital
        self.drawdown = 0.0
        self.max_drawdown = 0.0
        self.max_drawdown_amount = 0.0
        self.last_update: datetime | None = None
        self._day: date | None = None
        self._day_start_equity = initial_capital

    @property
    def realized_equity(self) -> float:
        """Initial capital plus settled P&L, never negative."""
        return max(0.0, self.initial_capital + self.realized_pnl)

    @property
    def daily_pnl(self) -> float:
        """Change in equity since the first update of the current calendar day."""
        return self.equity - self._day_start_equity

    def record_realized(self, pnl: float) -> None:
        """Add the P&L of a trade that just closed."""
        if not math.isfinite(pnl):
            raise ValueError(f"Refusing non-finite realized P&L: {pnl}")
        self.realized_pnl += pnl

    def update(
        self,
        snapshot: MarketSnapshot,
        open_trades: Iterable[Trade],
        index: SnapshotIndex,
    ) -> float:
        """Recompute equity after ``snapshot`` has been processed.

        Each open trade is priced from ``snapshot`` if it is the trade's
        market, otherwise from the index's as-of snapshot for that market.
        A trade with no usable price counts as worthless.
        """
        now = snapshot.timestamp
        unrealized = 0.0
        for trade in open_trades:
            price: float | None = None
            if snapshot.market_id == trade.market_id:
                price = snapshot.price(trade.outcome_index)
            else:
                as_of = index.lookup_as_of(trade.market_id, now)
                if as_of is not None:
                    price = as_of.price(trade.outcome_index)

            if price is None or not math.isfinite(price) or price < 0.0 or price > 1.0:
                unrealized -= trade.entry_value
                continue

            trade.mark(price)
            unrealized += trade.unrealized_pnl

        if not math.isfinite(unrealized):
            unrealized = 0.0
        self.unrealized_pnl = unrealized

        equity = self.initial_capital + self.realized_pnl + unrealized
        if not math.isfinite(equity):
            equity = self.realized_equity
        self._set_equity(max(0.0, equity), now)
        return self.equity

    def settle(self, now: datetime) -> float:
        """Recompute equity with no open positions left (after forced closes)."""
        self.unrealized_pnl = 0.0
        self._set_equity(self.realized_equity, now)
        return self.equity

    def _set_equity(self, equity: float, now: datetime) -> None:
        today = now.date()
        if self._day != today:
            self._day = today
            self._day_start_equity = self.equity
        self.equity = equity
        self.last_update = now

        if equity > self.peak_equity:
            self.peak_equity = equity
        self.drawdown = (self.peak_equity - equity) / self.peak_equity if self.peak_equity > 0 else 0.0
        if self.drawdown > self.max_drawdown:
            self.max_drawdown = self.drawdown
        self.max_drawdown_amount = max(self.max_drawdown_amount, self.peak_equity - equity)

    def point(self, timestamp: datetime, positions: int) -> EquityPoint:
        return EquityPoint(
            timestamp=timestamp,
            equity=self.equity,
            positions=positions,
            realized_equity=self.realized_equity,
        )

    def snapshot(self, positions: int) -> PortfolioSnapshot:
        return PortfolioSnapshot(
            timestamp=self.last_update,
            equity=self.equity,
            realized_equity=self.realized_equity,
            peak_equity=self.peak_equity,
            drawdown=self.drawdown,
            daily_pnl=self.daily_pnl,
            open_positions=positions,
        )
