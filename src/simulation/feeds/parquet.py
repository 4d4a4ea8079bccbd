"""Parquet snapshot feed, queried with DuckDB."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import duckdb

from src.simulation.feeds.base import BaseFeed, snapshot_from_record
from src.simulation.models import MarketSnapshot, to_epoch_us


class ParquetSnapshotFeed(BaseFeed):
    """Snapshots stored as parquet, one row per snapshot.

    ``path`` is a single ``.parquet`` file or a directory of them. Columns
    follow the snapshot fields in snake_case (``market_id``,
    ``outcome_prices`` as a list column, ``volume_24h``, ``end_date``,
    ``timestamp``); camelCase columns are accepted too.
    """

    def __init__(self, path: Path | str, batch_size: int = 50_000):
        super().__init__()
        self.path = Path(path)
        self.batch_size = batch_size
        self._con: duckdb.DuckDBPyConnection | None = None

    @property
    def _source(self) -> str:
        if self.path.is_dir():
            return f"read_parquet('{self.path}/*.parquet')"
        return f"read_parquet('{self.path}')"

    def _get_con(self) -> duckdb.DuckDBPyConnection:
        if self._con is None:
            self._con = duckdb.connect()
        return self._con

    def _id_column(self) -> str:
        cols = [row[0] for row in self._get_con().execute(f"DESCRIBE SELECT * FROM {self._source}").fetchall()]
        for candidate in ("market_id", "marketId", "id"):
            if candidate in cols:
                return candidate
        raise ValueError(f"No market id column in {self.path} (columns: {', '.join(cols)})")

    def snapshot_count(self) -> int:
        result = self._get_con().execute(f"SELECT COUNT(*) FROM {self._source}").fetchone()
        return result[0] if result else 0

    def market_ids(self) -> list[str]:
        """Distinct market ids in the dataset."""
        id_col = self._id_column()
        rows = self._get_con().execute(f'SELECT DISTINCT "{id_col}" FROM {self._source} ORDER BY 1').fetchall()
        return [str(r[0]) for r in rows]

    def snapshots(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        market_ids: list[str] | None = None,
    ) -> Iterator[MarketSnapshot]:
        self.dropped = 0
        con = self._get_con()
        query = f"SELECT * FROM {self._source}"
        params: list[object] = []
        if market_ids:
            id_col = self._id_column()
            placeholders = ", ".join("?" for _ in market_ids)
            query += f' WHERE CAST("{id_col}" AS VARCHAR) IN ({placeholders})'
            params.extend(market_ids)

        start_us = to_epoch_us(start_time) if start_time else None
        end_us = to_epoch_us(end_time) if end_time else None

        cursor = con.execute(query, params)
        columns = [d[0] for d in cursor.description]
        while True:
            rows = cursor.fetchmany(self.batch_size)
            if not rows:
                break
            for row in rows:
                snapshot = snapshot_from_record(dict(zip(columns, row)))
                if snapshot is None:
                    self.dropped += 1
                    continue
                ts = to_epoch_us(snapshot.timestamp)
                if (start_us is not None and ts < start_us) or (end_us is not None and ts > end_us):
                    continue
                yield snapshot
