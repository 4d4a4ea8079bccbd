"""Event log for backtest runs.

Every line is stamped with *simulation* time and a fixed-width component
column::

    2024-01-15 10:00:00  Position    OPEN: reversal M1 outcome 0 @ 0.3100 ...

Lines are always kept in ``lines`` and, when ``print_live`` is set, echoed
through ``write_fn`` (which the progress bar replaces with its scroll-region
writer).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

from src.simulation.models import Trade

DIM = "\033[2m"
GREEN = "\033[32m"
RED = "\033[31m"
YELLOW = "\033[33m"
RESET = "\033[0m"


def _fmt_ts(ts: datetime | None) -> str:
    if ts is None:
        return " " * 19
    return ts.strftime("%Y-%m-%d %H:%M:%S")


class BacktestLogger:
    """Collects formatted event lines for one backtest run."""

    def __init__(self, print_live: bool = False, verbose: bool = False):
        self.print_live = print_live
        self.verbose = verbose
        self.lines: list[str] = []
        self.write_fn: Callable[[str], None] = print

    def _emit(self, ts: datetime | None, component: str, message: str, color: str = "") -> None:
        line = f"{_fmt_ts(ts)}  {component:<10}  {message}"
        self.lines.append(line)
        if self.print_live:
            if color:
                self.write_fn(f"{DIM}{_fmt_ts(ts)}{RESET}  {component:<10}  {color}{message}{RESET}")
            else:
                self.write_fn(line)

    # -- Run lifecycle --

    def start(self, ts: datetime | None, strategies: list[str], initial_capital: float) -> None:
        names = ", ".join(strategies) or "none"
        self._emit(ts, "Engine", f"Backtest start: strategies=[{names}] capital=${initial_capital:,.2f}")

    def data_loaded(self, ts: datetime | None, kept: int, dropped: int, markets: int) -> None:
        self._emit(ts, "Data", f"Loaded {kept:,} snapshots across {markets:,} markets ({dropped:,} dropped)")

    def end(self, ts: datetime | None, final_equity: float, total_trades: int, elapsed: float) -> None:
        self._emit(
            ts,
            "Engine",
            f"Backtest complete: equity=${final_equity:,.2f} trades={total_trades} elapsed={elapsed:.2f}s",
        )

    # -- Trades --

    def position_opened(self, ts: datetime, trade: Trade, realized_equity: float) -> None:
        self._emit(
            ts,
            "Position",
            f"OPEN: {trade.strategy} {trade.market_id} outcome {trade.outcome_index} "
            f"@ {trade.entry_price:.4f} size={trade.position_size:,.2f} "
            f"value=${trade.entry_value:,.2f} (realized equity ${realized_equity:,.2f})",
            GREEN,
        )

    def position_closed(self, ts: datetime, trade: Trade) -> None:
        color = GREEN if trade.pnl >= 0 else RED
        self._emit(
            ts,
            "Position",
            f"CLOSE: {trade.strategy} {trade.market_id} @ {trade.exit_price:.4f} "
            f"pnl=${trade.pnl:+,.2f} ({trade.pnl_percent:+.1f}%) reason={trade.exit_reason}",
            color,
        )

    def forced_close(self, ts: datetime | None, count: int) -> None:
        self._emit(ts, "Engine", f"Force-closing {count} open position(s) at end of data", YELLOW)

    def market_blacklisted(self, ts: datetime, market_id: str, price: float) -> None:
        self._emit(ts, "Risk", f"BLACKLIST: {market_id} exit price {price:.4f} below threshold", YELLOW)

    # -- Diagnostics --

    def rejected(self, ts: datetime, message: str) -> None:
        self._emit(ts, "Reject", message, RED)

    def entry_skipped(self, ts: datetime, strategy: str, market_id: str, reason: str) -> None:
        if self.verbose:
            self._emit(ts, "Skip", f"{strategy} {market_id}: {reason}")

    def portfolio_update(self, ts: datetime, equity: float, realized_equity: float, positions: int, drawdown: float) -> None:
        self._emit(
            ts,
            "Portfolio",
            f"equity=${equity:,.2f} realized=${realized_equity:,.2f} positions={positions} drawdown={drawdown:.2%}",
        )
