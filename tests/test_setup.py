"""First-time setup smoke tests.

These tests verify that the project is correctly installed and ready to use.
They are deliberately simple: if any of them fail, the user knows exactly
which part of the setup is broken.

Failure modes caught here:
  * Missing Python dependency  (ImportError on runtime packages)
  * Broken module structure    (ImportError on internal modules)
  * Strategy auto-discovery broken
"""

from __future__ import annotations

import importlib
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Import checks
# ---------------------------------------------------------------------------


class TestImports:
    """All public modules must be importable after a fresh `uv sync`."""

    def test_package_exports(self) -> None:
        import src.simulation as sim

        for name in sim.__all__:
            assert hasattr(sim, name), name

    def test_models_importable(self) -> None:
        from src.simulation.models import (  # noqa: F401
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

    def test_engine_importable(self) -> None:
        from src.simulation.engine import Engine  # noqa: F401

    def test_feeds_importable(self) -> None:
        from src.simulation.feeds.json_file import JsonSnapshotFeed  # noqa: F401
        from src.simulation.feeds.parquet import ParquetSnapshotFeed  # noqa: F401

    def test_metrics_importable(self) -> None:
        from src.simulation.metrics import compute_metrics  # noqa: F401

    def test_progress_importable(self) -> None:
        from src.simulation.progress import PinnedProgress  # noqa: F401

    def test_cli_importable(self) -> None:
        import main  # noqa: F401


# ---------------------------------------------------------------------------
# Runtime dependencies
# ---------------------------------------------------------------------------


class TestRuntimeDependencies:
    """All packages listed in pyproject.toml's [project.dependencies] must be importable."""

    @pytest.mark.parametrize(
        "package",
        [
            "duckdb",
            "numpy",
            "pandas",
            "pyarrow",
            "simple_term_menu",
        ],
    )
    def test_dependency_importable(self, package: str) -> None:
        try:
            importlib.import_module(package)
        except ImportError:
            pytest.fail(
                f"Required dependency '{package}' is not installed.\n"
                "Fix: uv sync"
            )


# ---------------------------------------------------------------------------
# Engine smoke test
# ---------------------------------------------------------------------------


class TestEngineSmoke:
    """Engine initializes and runs without errors with minimal valid data."""

    def test_engine_runs_to_completion(self, json_dataset: Path) -> None:
        from src.simulation.config import BacktestConfig
        from src.simulation.engine import Engine
        from src.simulation.feeds.json_file import JsonSnapshotFeed
        from src.simulation.models import BacktestResult
        from src.simulation.strategy import StrategyRegistry

        config = BacktestConfig.from_dict({"initialCapital": 1000, "strategies": {"reversal": {}, "convergence": {}}})
        engine = Engine(config, feed=JsonSnapshotFeed(json_dataset), registry=StrategyRegistry.discover())
        result = engine.run()

        assert isinstance(result, BacktestResult)
        assert result.initial_capital == 1000.0
        assert result.stats["dropped_snapshots"] == 1
        assert all(not t.is_open for t in result.trades)
        assert result.final_equity == pytest.approx(1000.0 + result.total_pnl)

    def test_strategy_autodiscovery(self) -> None:
        """Strategy.load() finds bundled strategies without errors."""
        from src.simulation.strategy import Strategy

        strategies = Strategy.load()
        assert isinstance(strategies, list)
        names = {cls().name for cls in strategies}  # type: ignore[call-arg]
        assert {"reversal", "convergence"} <= names
