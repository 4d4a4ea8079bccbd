"""Shared fixtures for simulation tests."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable

import pandas as pd
import pytest

from src.simulation.config import BacktestConfig, StrategyConfig
from src.simulation.models import MarketSnapshot, Trade
from src.simulation.strategy import Strategy

T0 = datetime(2024, 1, 15, 10, 0, 0)


def snap(
    market_id: str = "M",
    minutes: float = 0,
    prices: tuple[float, ...] = (0.5, 0.5),
    liquidity: float = 5_000.0,
    volume: float = 10_000.0,
    end_days: float | None = 30.0,
    question: str | None = None,
    tags: tuple[str, ...] = (),
) -> MarketSnapshot:
    """A snapshot ``minutes`` after T0, ending ``end_days`` after T0."""
    return MarketSnapshot(
        market_id=market_id,
        question=question if question is not None else f"Will {market_id} happen?",
        outcome_prices=tuple(prices),
        liquidity=liquidity,
        volume_24h=volume,
        end_date=T0 + timedelta(days=end_days) if end_days is not None else None,
        timestamp=T0 + timedelta(minutes=minutes),
        tags=tags,
    )


def series(market_id: str, yes_prices: list[float], step_minutes: float = 60) -> list[MarketSnapshot]:
    """Binary snapshots of one market, one every ``step_minutes``."""
    return [snap(market_id, i * step_minutes, (p, round(1 - p, 6))) for i, p in enumerate(yes_prices)]


class ScriptedStrategy(Strategy):
    """Opens when the outcome-0 price is within [open_low, open_high];
    closes at or above ``close_at`` or at or below ``stop_at``.

    Records every (trade entry time, decision time) pair seen by
    ``should_close`` so tests can check causality.
    """

    def __init__(
        self,
        name: str = "scripted",
        open_low: float = 0.0,
        open_high: float = 1.0,
        close_at: float = 2.0,
        stop_at: float = -1.0,
        markets: set[str] | None = None,
        cooldown_minutes: float = 0.0,
    ):
        super().__init__(name=name, description="test strategy", cooldown_minutes=cooldown_minutes)
        self.open_low = open_low
        self.open_high = open_high
        self.close_at = close_at
        self.stop_at = stop_at
        self.markets = markets
        self.close_checks: list[tuple[datetime, datetime, float]] = []
        self.open_checks: list[datetime] = []

    def should_open(self, snapshot: MarketSnapshot, config: BacktestConfig) -> bool:
        self.open_checks.append(snapshot.timestamp)
        if self.markets is not None and snapshot.market_id not in self.markets:
            return False
        return self.open_low <= snapshot.outcome_prices[0] <= self.open_high

    def should_close(self, trade: Trade, current_price: float, current_time: datetime, config: BacktestConfig) -> bool:
        self.close_checks.append((trade.entry_time, current_time, current_price))
        return current_price >= self.close_at or current_price <= self.stop_at

    def get_exit_reason(self, trade: Trade, current_price: float, current_time: datetime) -> str:
        if current_price >= self.close_at:
            return "target"
        return "stop"

    def reset(self) -> None:
        super().reset()
        self.close_checks = []
        self.open_checks = []


@pytest.fixture()
def t0() -> datetime:
    return T0


@pytest.fixture()
def make_snapshot() -> Callable[..., MarketSnapshot]:
    """Factory fixture: ``make_snapshot(market_id, minutes, prices, ...)``."""
    return snap


@pytest.fixture()
def make_series() -> Callable[..., list[MarketSnapshot]]:
    """Factory fixture: ``make_series(market_id, [p0, p1, ...], step_minutes=60)``."""
    return series


@pytest.fixture()
def scripted() -> Callable[..., ScriptedStrategy]:
    """Factory fixture for :class:`ScriptedStrategy`."""
    return ScriptedStrategy


@pytest.fixture()
def single_strategy_config() -> BacktestConfig:
    """Capital 10,000; one strategy with one slot and 18% sizing."""
    return BacktestConfig(
        initial_capital=10_000.0,
        max_positions=10,
        max_position_size=0.2,
        strategies={"scripted": StrategyConfig(max_positions=1, max_position_size=0.18)},
    )


# ---------------------------------------------------------------------------
# On-disk datasets
# ---------------------------------------------------------------------------


def _records() -> list[dict]:
    """Camel-case snapshot records for two markets, as the collector writes them."""
    rows = []
    for i, (mid, p) in enumerate(
        [("MKT-A", 0.20), ("MKT-B", 0.90), ("MKT-A", 0.25), ("MKT-B", 0.92), ("MKT-A", 0.40)]
    ):
        rows.append(
            {
                "marketId": mid,
                "question": f"Question {mid}",
                "outcomePrices": [p, round(1 - p, 6)],
                "liquidity": 2500.0,
                "volume24h": 12000.0,
                "endDate": "2024-02-15T00:00:00Z",
                "timestamp": f"2024-01-15T1{i}:00:00Z",
                "isBinary": True,
                "tags": ["politics"],
            }
        )
    return rows


@pytest.fixture()
def snapshot_records() -> list[dict]:
    return _records()


@pytest.fixture()
def json_dataset(tmp_path: Path) -> Path:
    """JSON file in the ``{"snapshots": [...]}`` layout, prices JSON-encoded for one row."""
    records = _records()
    records[1]["outcomePrices"] = json.dumps(records[1]["outcomePrices"])
    records.append({"marketId": "", "outcomePrices": [0.5, 0.5], "timestamp": "2024-01-15T10:00:00Z"})
    path = tmp_path / "snapshots.json"
    path.write_text(json.dumps({"snapshots": records}))
    return path


@pytest.fixture()
def parquet_dataset(tmp_path: Path) -> Path:
    """Directory holding one parquet file of snake_case snapshot rows."""
    base = pd.Timestamp("2024-01-15 10:00:00")
    rows = []
    for i, (mid, p) in enumerate(
        [("MKT-A", 0.20), ("MKT-B", 0.90), ("MKT-A", 0.25), ("MKT-B", 0.92), ("MKT-A", 0.40)]
    ):
        rows.append(
            {
                "market_id": mid,
                "question": f"Question {mid}",
                "outcome_prices": [p, round(1 - p, 6)],
                "liquidity": 2500.0,
                "volume_24h": 12000.0,
                "end_date": base + pd.Timedelta(days=31),
                "timestamp": base + pd.Timedelta(hours=i),
            }
        )
    d = tmp_path / "parquet"
    d.mkdir()
    pd.DataFrame(rows).to_parquet(d / "snapshots.parquet")
    return d
