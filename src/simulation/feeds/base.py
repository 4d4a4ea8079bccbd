"""Abstract interface for snapshot data feeds, plus record parsing."""

from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Any

from src.simulation.config import parse_datetime
from src.simulation.models import MarketSnapshot


class BaseFeed(ABC):
    """Abstract interface for a source of market snapshots.

    Implementations read a stored dataset, normalize each record into a
    MarketSnapshot and yield them. Ordering is not required: the engine's
    index sorts. Records that cannot be parsed are skipped and counted in
    ``dropped``.
    """

    def __init__(self) -> None:
        self.dropped = 0

    @abstractmethod
    def snapshots(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        market_ids: list[str] | None = None,
    ) -> Iterator[MarketSnapshot]:
        """Yield normalized snapshots, optionally filtered.

        Args:
            start_time: Only include snapshots at or after this time.
            end_time: Only include snapshots at or before this time.
            market_ids: Filter to specific markets. None means all.
        """
        ...

    @abstractmethod
    def snapshot_count(self) -> int:
        """Number of raw records in the dataset (before any filtering)."""
        ...


def _get(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return default


def parse_prices(value: Any) -> tuple[float, ...] | None:
    """Outcome prices from a list, a JSON-encoded list, or a numpy array."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if hasattr(value, "tolist"):
        value = value.tolist()
    if not isinstance(value, (list, tuple)):
        return None
    prices = []
    for p in value:
        try:
            prices.append(float(p))
        except (TypeError, ValueError):
            return None
    return tuple(prices)


def parse_tags(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return (value,)
    if hasattr(value, "tolist"):
        value = value.tolist()
    return tuple(str(v) for v in value)


def _number(value: Any) -> float:
    """Missing means zero; a present but non-finite value rejects the record."""
    if value is None:
        return 0.0
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite value: {value!r}")
    return number


def snapshot_from_record(record: Mapping[str, Any]) -> MarketSnapshot | None:
    """Build a snapshot from a camelCase or snake_case record.

    Returns None when a required field (id, timestamp, prices) is missing or
    unparsable, or when liquidity or volume is NaN or infinite. A missing
    liquidity or volume reads as 0. Range checks are left to the index.
    """
    market_id = _get(record, "marketId", "market_id", "id")
    prices = parse_prices(_get(record, "outcomePrices", "outcome_prices"))
    if market_id in (None, "") or prices is None:
        return None
    try:
        timestamp = parse_datetime(_get(record, "timestamp"))
        end_date = parse_datetime(_get(record, "endDate", "end_date"))
        liquidity = _number(_get(record, "liquidity"))
        volume = _number(_get(record, "volume24h", "volume_24h", "volume24hr"))
    except (TypeError, ValueError, OverflowError):
        return None
    if timestamp is None:
        return None

    return MarketSnapshot(
        market_id=str(market_id),
        question=str(_get(record, "question", default="")),
        outcome_prices=prices,
        liquidity=liquidity,
        volume_24h=volume,
        end_date=end_date,
        timestamp=timestamp,
        is_binary=bool(_get(record, "isBinary", "is_binary", default=len(prices) == 2)),
        tags=parse_tags(_get(record, "tags")),
    )
