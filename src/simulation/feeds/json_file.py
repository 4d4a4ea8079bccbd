"""JSON snapshot feed for datasets written by the market collector.

Accepted layouts: ``{"snapshots": [...]}`` (optionally nested under
``historicalData``) or a bare list of records. Records use camelCase keys
(``marketId``, ``outcomePrices``, ``volume24h``, ``endDate``) and
``outcomePrices`` may be a list or a JSON-encoded string.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import Any

from src.simulation.feeds.base import BaseFeed, snapshot_from_record
from src.simulation.models import MarketSnapshot, to_epoch_us


class JsonSnapshotFeed(BaseFeed):
    """Snapshots from one JSON file, or every ``*.json`` file in a directory."""

    def __init__(self, path: Path | str):
        super().__init__()
        self.path = Path(path)
        self._records: list[dict[str, Any]] | None = None

    def _files(self) -> list[Path]:
        if self.path.is_dir():
            return sorted(self.path.glob("*.json"))
        return [self.path]

    def _load(self) -> list[dict[str, Any]]:
        if self._records is None:
            records: list[dict[str, Any]] = []
            for file in self._files():
                with open(file) as f:
                    records.extend(extract_records(json.load(f)))
            self._records = records
        return self._records

    def snapshot_count(self) -> int:
        return len(self._load())

    def snapshots(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        market_ids: list[str] | None = None,
    ) -> Iterator[MarketSnapshot]:
        self.dropped = 0
        wanted = set(market_ids) if market_ids else None
        start_us = to_epoch_us(start_time) if start_time else None
        end_us = to_epoch_us(end_time) if end_time else None

        for record in self._load():
            snapshot = snapshot_from_record(record)
            if snapshot is None:
                self.dropped += 1
                continue
            if wanted is not None and snapshot.market_id not in wanted:
                continue
            ts = to_epoch_us(snapshot.timestamp)
            if (start_us is not None and ts < start_us) or (end_us is not None and ts > end_us):
                continue
            yield snapshot


def extract_records(payload: Any) -> list[dict[str, Any]]:
    """Pull the snapshot list out of any of the accepted layouts."""
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        if "historicalData" in payload:
            return extract_records(payload["historicalData"])
        if "snapshots" in payload:
            return extract_records(payload["snapshots"])
    raise ValueError("JSON dataset must be a list of snapshots or contain a 'snapshots' list")
