"""Abstract Strategy base class and the strategy registry.

Users subclass Strategy and implement ``should_open()``, ``should_close()``
and ``get_exit_reason()``. The market-history view and the portfolio
accessor are injected by the Engine before the simulation starts.
"""

from __future__ import annotations

import importlib
import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from src.simulation.models import to_epoch_ms

if TYPE_CHECKING:
    from src.simulation.config import BacktestConfig
    from src.simulation.index import MarketView
    from src.simulation.models import MarketSnapshot, PortfolioSnapshot, Trade


class Strategy(ABC):
    """Base class for trading rules.

    Decisions must depend only on the arguments, the injected market view,
    and the strategy's own private state. A strategy never mutates shared
    simulation state; the engine opens and closes trades on its behalf.

    Private state (per-market cool-downs plus anything a subclass adds) is
    cleared by :meth:`reset`, which the engine calls at the start of every
    run so repeated runs on one instance stay independent.
    """

    def __init__(self, name: str, description: str = "", cooldown_minutes: float = 30.0):
        self.name = name
        self.description = description
        self.cooldown_minutes = cooldown_minutes
        self._last_entry: dict[str, datetime] = {}
        self._market_view: MarketView | None = None
        self._get_portfolio: Callable[[], PortfolioSnapshot] | None = None

    # -- Decision API --

    @abstractmethod
    def should_open(self, snapshot: MarketSnapshot, config: BacktestConfig) -> bool:
        """Whether to open a position on ``snapshot``'s market now."""
        ...

    @abstractmethod
    def should_close(
        self,
        trade: Trade,
        current_price: float,
        current_time: datetime,
        config: BacktestConfig,
    ) -> bool:
        """Whether to close ``trade`` at ``current_price``."""
        ...

    @abstractmethod
    def get_exit_reason(self, trade: Trade, current_price: float, current_time: datetime) -> str:
        """Human-readable reason, called only after ``should_close`` returned True."""
        ...

    def select_outcome(self, snapshot: MarketSnapshot) -> int | None:
        """Outcome to buy once ``should_open`` agreed. None skips the entry."""
        return 0 if snapshot.outcome_prices else None

    # -- Cool-down bookkeeping --

    def in_cooldown(self, market_id: str, now: datetime, minutes: float | None = None) -> bool:
        """Whether ``market_id`` was entered less than the cool-down ago.

        ``minutes`` overrides the strategy default (from the run config).
        """
        last = self._last_entry.get(market_id)
        if last is None:
            return False
        window = self.cooldown_minutes if minutes is None else minutes
        return to_epoch_ms(now) - to_epoch_ms(last) < window * 60_000

    def start_cooldown(self, market_id: str, now: datetime) -> None:
        self._last_entry[market_id] = now

    # -- Shared risk helpers --

    @staticmethod
    def risk_exit(trade: Trade, current_price: float) -> str | None:
        """Exit reason from the trade's configured stop-loss, take-profit or
        trailing stop, or None if none of them triggers."""
        if trade.take_profit is not None and current_price >= trade.take_profit:
            return f"Take profit at {current_price:.4f} (target {trade.take_profit:.4f})"
        if trade.stop_loss is not None and current_price <= trade.stop_loss:
            return f"Stop loss at {current_price:.4f} (limit {trade.stop_loss:.4f})"
        if trade.trailing_stop:
            floor = trade.highest_price * (1 - trade.trailing_stop)
            if current_price <= floor and trade.highest_price > trade.entry_price:
                return f"Trailing stop at {current_price:.4f} (high {trade.highest_price:.4f})"
        return None

    def risk_limits_breached(self, config: BacktestConfig) -> bool:
        """Whether the run's drawdown or today's loss exceeds the advisory limits."""
        if self._get_portfolio is None:
            return False
        snap = self.portfolio
        if config.max_drawdown and snap.drawdown >= config.max_drawdown:
            return True
        if config.daily_loss_limit and snap.daily_pnl <= -config.daily_loss_limit * config.initial_capital:
            return True
        return False

    # -- Engine-provided state --

    @property
    def history(self) -> MarketView:
        """Read-only market history (``historical_prices`` etc.)."""
        assert self._market_view is not None
        return self._market_view

    @property
    def portfolio(self) -> PortfolioSnapshot:
        """Current capital, peak and drawdown of the run."""
        assert self._get_portfolio is not None
        return self._get_portfolio()

    # -- Lifecycle hooks --

    def reset(self) -> None:
        """Clear private state. Subclasses extending this must call super()."""
        self._last_entry.clear()

    def initialize(self) -> None:  # noqa: B027
        """Called once before the simulation loop starts."""

    def finalize(self) -> None:  # noqa: B027
        """Called once after all positions are closed."""

    # -- Auto-discovery --

    @classmethod
    def load(cls, strategy_dir: Path | str | None = None) -> list[type[Strategy]]:
        """Scan directory for Strategy subclass implementations."""
        if strategy_dir is None:
            strategy_dir = Path(__file__).parent / "strategies"
        strategy_dir = Path(strategy_dir)
        if not strategy_dir.exists():
            return []

        base_module = "src.simulation.strategies"
        strategies: list[type[Strategy]] = []

        for py_file in sorted(strategy_dir.glob("**/*.py")):
            if py_file.name.startswith("_"):
                continue
            relative_path = py_file.relative_to(strategy_dir)
            module_parts = relative_path.with_suffix("").parts
            module_name = base_module + "." + ".".join(module_parts)
            try:
                module = importlib.import_module(module_name)
            except ImportError:
                continue

            for _, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, cls) and obj is not cls and not inspect.isabstract(obj):
                    if obj.__module__ == module.__name__:
                        strategies.append(obj)

        return strategies


StrategyFactory = Callable[[], Strategy]


class StrategyRegistry:
    """Maps a strategy identifier to a factory producing fresh instances."""

    def __init__(self) -> None:
        self._factories: dict[str, StrategyFactory] = {}

    def register(self, name: str, factory: StrategyFactory) -> None:
        if name in self._factories:
            raise ValueError(f"Strategy '{name}' is already registered")
        self._factories[name] = factory

    def create(self, name: str) -> Strategy:
        try:
            factory = self._factories[name]
        except KeyError:
            raise KeyError(f"Unknown strategy '{name}'. Available: {', '.join(self.names()) or 'none'}") from None
        strategy = factory()
        if strategy.name != name:
            raise ValueError(f"Factory for '{name}' produced a strategy named '{strategy.name}'")
        return strategy

    def names(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    @classmethod
    def discover(cls, strategy_dir: Path | str | None = None) -> StrategyRegistry:
        """Registry of every Strategy found by :meth:`Strategy.load`."""
        registry = cls()
        for strategy_cls in Strategy.load(strategy_dir):
            instance = strategy_cls()  # type: ignore[call-arg]
            registry.register(instance.name, strategy_cls)  # type: ignore[arg-type]
        return registry
