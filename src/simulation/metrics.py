"""Summary statistics for a finished backtest run."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np

from src.simulation.models import (
    BacktestResult,
    EquityPoint,
    StrategyStats,
    Trade,
    TradeStatus,
    to_epoch_ms,
)

HOURLY_PERIODS_PER_YEAR = 365.0 * 24.0


def period_returns(equity_curve: Sequence[EquityPoint]) -> np.ndarray:
    """Non-zero period-over-period returns of the equity curve.

    Flat periods are dropped: with snapshots from many markets interleaved,
    most samples leave equity unchanged and would otherwise swamp the
    distribution with zeros.
    """
    if len(equity_curve) < 2:
        return np.empty(0)
    equity = np.array([p.equity for p in equity_curve], dtype=float)
    prev = equity[:-1]
    curr = equity[1:]
    valid = prev > 0
    returns = np.zeros_like(curr)
    returns[valid] = (curr[valid] - prev[valid]) / prev[valid]
    returns = returns[np.isfinite(returns)]
    return returns[returns != 0.0]


def sharpe_ratio(equity_curve: Sequence[EquityPoint], periods_per_year: float = HOURLY_PERIODS_PER_YEAR) -> float:
    """Mean period return over its (population) standard deviation, annualized."""
    returns = period_returns(equity_curve)
    if returns.size == 0:
        return 0.0
    std = float(np.std(returns))
    if std <= 0 or not math.isfinite(std):
        return 0.0
    return float(np.mean(returns)) / std * math.sqrt(periods_per_year)


def max_drawdown(equity_curve: Sequence[EquityPoint], initial_capital: float | None = None) -> float:
    """Largest fractional decline from a running peak."""
    if not equity_curve:
        return 0.0
    equity = np.array([p.equity for p in equity_curve], dtype=float)
    if initial_capital is not None:
        equity = np.concatenate(([initial_capital], equity))
    peaks = np.maximum.accumulate(equity)
    with np.errstate(divide="ignore", invalid="ignore"):
        dd = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    return float(dd.max())


def _closed(trades: Sequence[Trade]) -> list[Trade]:
    return [t for t in trades if t.status != TradeStatus.OPEN]


def strategy_breakdown(trades: Sequence[Trade], initial_capital: float) -> dict[str, StrategyStats]:
    """Per-strategy trade count, win rate, total/average P&L and drawdown.

    A strategy's drawdown is measured on its own realized path: initial
    capital plus its cumulative P&L in exit order.
    """
    by_strategy: dict[str, list[Trade]] = {}
    for trade in _closed(trades):
        by_strategy.setdefault(trade.strategy, []).append(trade)

    stats: dict[str, StrategyStats] = {}
    for name, group in by_strategy.items():
        group = sorted(group, key=lambda t: to_epoch_ms(t.exit_time))
        pnls = np.array([t.pnl for t in group], dtype=float)
        path = initial_capital + np.cumsum(pnls)
        peaks = np.maximum.accumulate(np.concatenate(([initial_capital], path)))[1:]
        with np.errstate(divide="ignore", invalid="ignore"):
            dd = np.where(peaks > 0, (peaks - path) / peaks, 0.0)
        total = float(pnls.sum())
        stats[name] = StrategyStats(
            trades=len(group),
            win_rate=float((pnls > 0).sum()) / len(group),
            total_pnl=total,
            average_pnl=total / len(group),
            max_drawdown=float(max(dd.max(), 0.0)),
        )
    return stats


def compute_metrics(
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[Trade],
    initial_capital: float,
    periods_per_year: float = HOURLY_PERIODS_PER_YEAR,
    max_drawdown_fraction: float | None = None,
    max_drawdown_amount: float | None = None,
) -> dict[str, float]:
    """Reduce a run's trades and equity curve to scalar metrics.

    Trade statistics use closed trades only. Winners have ``pnl > 0`` and
    losers ``pnl < 0``; break-even trades count towards neither.
    """
    closed = _closed(trades)
    pnls = np.array([t.pnl for t in closed], dtype=float)
    wins = pnls[pnls > 0]
    losses = pnls[pnls < 0]

    total_pnl = float(pnls.sum()) if pnls.size else 0.0
    n = len(closed)
    final_equity = equity_curve[-1].equity if equity_curve else initial_capital

    if equity_curve:
        span_ms = to_epoch_ms(equity_curve[-1].timestamp) - to_epoch_ms(equity_curve[0].timestamp)
        raw_days = span_ms / 86_400_000.0
    else:
        raw_days = 0.0
    duration_days = max(1.0, raw_days)

    gross_loss = float(-losses.sum()) if losses.size else 0.0
    gross_profit = float(wins.sum()) if wins.size else 0.0
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    elif gross_profit > 0:
        profit_factor = float("inf")
    else:
        profit_factor = 0.0

    if max_drawdown_fraction is None:
        max_drawdown_fraction = max_drawdown(equity_curve, initial_capital)
    if max_drawdown_amount is None:
        max_drawdown_amount = 0.0
        if equity_curve:
            equity = np.array([initial_capital] + [p.equity for p in equity_curve], dtype=float)
            max_drawdown_amount = float((np.maximum.accumulate(equity) - equity).max())

    return {
        "total_trades": float(n),
        "winning_trades": float(wins.size),
        "losing_trades": float(losses.size),
        "win_rate": float(wins.size) / n if n else 0.0,
        "average_trade": total_pnl / n if n else 0.0,
        "best_trade": float(wins.max()) if wins.size else 0.0,
        "worst_trade": float(losses.min()) if losses.size else 0.0,
        "avg_win": float(wins.mean()) if wins.size else 0.0,
        "avg_loss": float(losses.mean()) if losses.size else 0.0,
        "profit_factor": profit_factor,
        "total_pnl": total_pnl,
        "total_pnl_percent": total_pnl / initial_capital * 100.0,
        "total_return": (final_equity - initial_capital) / initial_capital,
        "final_equity": final_equity,
        "duration_days": duration_days,
        "average_daily_pnl": total_pnl / raw_days if raw_days > 0 else 0.0,
        "max_drawdown": max_drawdown_fraction,
        "max_drawdown_percent": max_drawdown_fraction * 100.0,
        "max_drawdown_amount": max_drawdown_amount,
        "sharpe_ratio": sharpe_ratio(equity_curve, periods_per_year),
    }


def build_result(
    equity_curve: list[EquityPoint],
    trades: list[Trade],
    initial_capital: float,
    periods_per_year: float = HOURLY_PERIODS_PER_YEAR,
    max_drawdown_fraction: float | None = None,
    max_drawdown_amount: float | None = None,
    stats: dict | None = None,
    event_log: list[str] | None = None,
) -> BacktestResult:
    """Assemble the immutable result of a run."""
    metrics = compute_metrics(
        equity_curve,
        trades,
        initial_capital,
        periods_per_year=periods_per_year,
        max_drawdown_fraction=max_drawdown_fraction,
        max_drawdown_amount=max_drawdown_amount,
    )
    return BacktestResult(
        metrics=metrics,
        strategy_stats=strategy_breakdown(trades, initial_capital),
        equity_curve=equity_curve,
        trades=trades,
        initial_capital=initial_capital,
        final_equity=metrics["final_equity"],
        start_time=equity_curve[0].timestamp if equity_curve else None,
        end_time=equity_curve[-1].timestamp if equity_curve else None,
        duration_days=metrics["duration_days"],
        stats=dict(stats or {}),
        event_log=list(event_log or []),
    )
