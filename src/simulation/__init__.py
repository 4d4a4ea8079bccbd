"""Prediction market snapshot backtesting engine.

Replays recorded market snapshots through pluggable strategies, simulating
trade entries and exits with realized-only position sizing.
"""

from src.simulation.config import BacktestConfig, SnapshotFilters, StrategyConfig
from src.simulation.engine import Engine
from src.simulation.events import EventRecorder, null_observer
from src.simulation.index import MarketView, SnapshotIndex
from src.simulation.logger import BacktestLogger
from src.simulation.models import (
    BacktestResult,
    EquityPoint,
    EventType,
    MarketSnapshot,
    PortfolioSnapshot,
    ProgressEvent,
    StrategyStats,
    Trade,
    TradeStatus,
)
from src.simulation.strategy import Strategy, StrategyRegistry

__all__ = [
    "BacktestConfig",
    "BacktestLogger",
    "BacktestResult",
    "Engine",
    "EquityPoint",
    "EventRecorder",
    "EventType",
    "MarketSnapshot",
    "MarketView",
    "PortfolioSnapshot",
    "ProgressEvent",
    "SnapshotFilters",
    "SnapshotIndex",
    "Strategy",
    "StrategyConfig",
    "StrategyRegistry",
    "StrategyStats",
    "Trade",
    "TradeStatus",
    "null_observer",
]
