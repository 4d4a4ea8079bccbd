"""Backtest configuration.

``BacktestConfig.from_dict`` accepts either the snake_case field names below
or the camelCase keys used by JSON request payloads (``initialCapital``,
``maxPositions``, ``startDate``...).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from src.simulation.models import MarketSnapshot


@dataclass
class StrategyConfig:
    """Per-strategy sub-configuration."""

    enabled: bool = True
    max_positions: int = 5
    max_position_size: float = 0.08
    stop_loss: float | None = None
    take_profit: float | None = None
    trailing_stop: float | None = None
    cooldown_minutes: float | None = None
    version: str | None = None


@dataclass
class SnapshotFilters:
    """Entry gate applied to each snapshot before strategies are asked to open."""

    min_volume: float = 0.0
    min_liquidity: float = 0.0
    min_days_to_end: float | None = None
    max_days_to_end: float | None = None
    tags: list[str] | None = None

    def accepts(self, snapshot: MarketSnapshot) -> bool:
        if snapshot.volume_24h < self.min_volume:
            return False
        if snapshot.liquidity < self.min_liquidity:
            return False
        if self.min_days_to_end is not None or self.max_days_to_end is not None:
            days = snapshot.days_to_end()
            if days is None:
                return False
            if self.min_days_to_end is not None and days < self.min_days_to_end:
                return False
            if self.max_days_to_end is not None and days > self.max_days_to_end:
                return False
        if self.tags:
            if not set(self.tags) & set(snapshot.tags):
                return False
        return True


@dataclass
class BacktestConfig:
    """Run-level configuration.

    ``daily_loss_limit`` and ``max_drawdown`` are advisory: the engine never
    enforces them, strategies read them together with ``Strategy.portfolio``.
    """

    initial_capital: float = 10_000.0
    max_positions: int = 10
    max_position_size: float = 0.2
    start_date: datetime | None = None
    end_date: datetime | None = None
    interval_minutes: float = 60.0
    strategies: dict[str, StrategyConfig] = field(default_factory=dict)
    daily_loss_limit: float = 0.1
    max_drawdown: float = 0.3
    filters: SnapshotFilters = field(default_factory=SnapshotFilters)
    blacklist_threshold: float = 0.01

    def strategy_config(self, name: str) -> StrategyConfig:
        """Sub-configuration for ``name``, created with defaults on first use."""
        if name not in self.strategies:
            self.strategies[name] = StrategyConfig()
        return self.strategies[name]

    def position_fraction(self, name: str) -> float:
        """Fraction of realized equity committed to one new position."""
        return min(self.strategy_config(name).max_position_size, self.max_position_size)

    @property
    def periods_per_year(self) -> float:
        return 365.0 * 24.0 * 60.0 / self.interval_minutes

    def validate(self) -> None:
        """Raise ValueError on any inconsistent setting."""
        if not self.initial_capital > 0:
            raise ValueError(f"initial_capital must be positive, got {self.initial_capital}")
        if self.max_positions < 0:
            raise ValueError(f"max_positions must be >= 0, got {self.max_positions}")
        if not 0 < self.max_position_size <= 1:
            raise ValueError(f"max_position_size must be in (0, 1], got {self.max_position_size}")
        if not self.interval_minutes > 0:
            raise ValueError(f"interval_minutes must be positive, got {self.interval_minutes}")
        if not 0 <= self.blacklist_threshold < 1:
            raise ValueError(f"blacklist_threshold must be in [0, 1), got {self.blacklist_threshold}")
        if self.start_date is not None and self.end_date is not None:
            if _as_utc(self.start_date) > _as_utc(self.end_date):
                raise ValueError("start_date is after end_date")
        for name, sc in self.strategies.items():
            if sc.max_positions < 0:
                raise ValueError(f"strategies.{name}.max_positions must be >= 0")
            if not 0 < sc.max_position_size <= 1:
                raise ValueError(f"strategies.{name}.max_position_size must be in (0, 1]")
            if sc.cooldown_minutes is not None and sc.cooldown_minutes < 0:
                raise ValueError(f"strategies.{name}.cooldown_minutes must be >= 0")
            for attr in ("stop_loss", "take_profit", "trailing_stop"):
                value = getattr(sc, attr)
                if value is not None and value < 0:
                    raise ValueError(f"strategies.{name}.{attr} must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BacktestConfig:
        """Build a config from a plain dict (e.g. parsed JSON)."""
        top = _normalize_keys(data)
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name in ("strategies", "filters") or f.name not in top:
                continue
            value = top[f.name]
            if f.name in ("start_date", "end_date"):
                value = parse_datetime(value)
            kwargs[f.name] = value

        strategies: dict[str, StrategyConfig] = {}
        for name, raw in (top.get("strategies") or {}).items():
            strategies[name] = _build(StrategyConfig, _normalize_keys(raw or {}))
        kwargs["strategies"] = strategies

        if top.get("filters") is not None:
            kwargs["filters"] = _build(SnapshotFilters, _normalize_keys(top["filters"]))

        config = cls(**kwargs)
        config.validate()
        return config


def parse_datetime(value: Any) -> datetime | None:
    """Parse ISO strings, epoch seconds/milliseconds, or datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Values this large cannot be seconds within any realistic date range.
        seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Cannot parse datetime from {value!r}")


def _as_utc(dt: datetime) -> datetime:
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _camel_to_snake(key: str) -> str:
    out = []
    for ch in key:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out)


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {_camel_to_snake(k): v for k, v in data.items()}


def _build(cls: type, values: dict[str, Any]) -> Any:
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in values.items() if k in known})
