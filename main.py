from __future__ import annotations

import json
import sys
from datetime import datetime
from pathlib import Path
from typing import cast

from simple_term_menu import TerminalMenu  # type: ignore[import-untyped]

from src.simulation.config import BacktestConfig
from src.simulation.engine import Engine
from src.simulation.feeds.base import BaseFeed
from src.simulation.models import BacktestResult
from src.simulation.strategy import StrategyRegistry

DIM = "\033[2m"
BOLD = "\033[1m"
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

DEFAULT_DATA = Path("data") / "snapshots"
USAGE = "  uv run main.py backtest [strategy_name|all] [--data PATH] [--config FILE] [--verbose]"


def _ts() -> str:
    """Current wall-clock timestamp for log prefixing."""
    return f"{DIM}{datetime.now().strftime('%H:%M:%S')}{RESET}"


def _snake_to_title(s: str) -> str:
    return s.replace("_", " ").title()


def _pn(value: float, fmt: str) -> str:
    """Color a numeric value green if positive, red if negative."""
    color = GREEN if value >= 0 else RED
    return f"{color}{fmt.format(value)}{RESET}"


def open_feed(path: Path) -> BaseFeed:
    """JSON or parquet feed, picked from the file suffix or directory contents."""
    from src.simulation.feeds.json_file import JsonSnapshotFeed
    from src.simulation.feeds.parquet import ParquetSnapshotFeed

    if path.is_dir():
        if any(path.glob("*.parquet")):
            return ParquetSnapshotFeed(path)
        return JsonSnapshotFeed(path)
    if path.suffix == ".parquet":
        return ParquetSnapshotFeed(path)
    return JsonSnapshotFeed(path)


def load_config(path: Path | None) -> BacktestConfig:
    if path is None:
        return BacktestConfig()
    with open(path) as f:
        return BacktestConfig.from_dict(json.load(f))


def parse_args(args: list[str]) -> tuple[str | None, dict[str, str], bool]:
    """Split ``args`` into (strategy name, --option values, verbose)."""
    name = None
    options: dict[str, str] = {}
    verbose = False
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--verbose":
            verbose = True
        elif arg in ("--data", "--config"):
            if i + 1 >= len(args):
                raise ValueError(f"{arg} needs a value")
            options[arg[2:]] = args[i + 1]
            i += 1
        elif arg.startswith("--"):
            raise ValueError(f"Unknown option {arg}")
        else:
            name = arg
        i += 1
    return name, options, verbose


def backtest(
    name: str | None = None,
    data: Path = DEFAULT_DATA,
    config_path: Path | None = None,
    verbose: bool = False,
) -> BacktestResult | None:
    """Run one strategy (or all of them) by name, or show an interactive menu."""
    registry = StrategyRegistry.discover()
    names = registry.names()
    if not names:
        print("No strategies found in src/simulation/strategies/")
        return None

    if name is None:
        options = []
        for n in names:
            options.append(f"{_snake_to_title(n)}: {registry.create(n).description}")
        options.append("All strategies")
        options.append("[Exit]")
        menu = TerminalMenu(
            options,
            title="Select a strategy to backtest:",
            cycle_cursor=True,
            clear_screen=False,
        )
        choice = cast("int | None", menu.show())
        if choice is None or choice == len(options) - 1:
            print("Exiting.")
            return None
        selected = names if choice == len(names) else [names[choice]]
    elif name == "all":
        selected = names
    elif name in registry:
        selected = [name]
    else:
        print(f"Strategy '{name}' not found. Available strategies:")
        for n in names:
            print(f"  - {n}: {registry.create(n).description}")
        sys.exit(1)

    config = load_config(config_path)
    for n in names:
        config.strategy_config(n).enabled = n in selected

    if not data.exists():
        print(f"{_ts()}  {RED}Data path {data} does not exist.{RESET}")
        sys.exit(1)
    feed = open_feed(data)

    print(f"\n{_ts()}  Running backtest: {', '.join(selected)}")
    print(f"{_ts()}  Data:             {data}")
    print(f"{_ts()}  Initial capital:  ${config.initial_capital:,.2f}")
    print(f"{_ts()}  Max positions:    {config.max_positions} (position size {config.max_position_size:.0%})\n")

    engine = Engine(
        config,
        strategies=[registry.create(n) for n in selected],
        feed=feed,
        progress=True,
        verbose=verbose,
        print_live=True,
    )
    result = engine.run()
    print_summary(result)
    write_outputs(result, "_".join(selected))
    return result


def print_summary(result: BacktestResult) -> None:
    m = result.metrics
    equity_color = GREEN if result.final_equity >= result.initial_capital else RED

    print(f"\n{_ts()}  {BOLD}Backtest Results{RESET}")
    print(f"{_ts()}  Period:           {result.start_time} -> {result.end_time} ({result.duration_days:.1f} days)")
    print(f"{_ts()}  Initial capital:  ${result.initial_capital:,.2f}")
    print(f"{_ts()}  Final equity:     {equity_color}${result.final_equity:,.2f}{RESET}")
    print(f"{_ts()}  Snapshots:        {result.stats.get('processed_snapshots', 0):,}")
    print(f"{_ts()}  Trades:           {result.total_trades}")
    print()

    print(f"{_ts()}  {BOLD}Performance:{RESET}")
    print(f"{_ts()}    Total return:   {_pn(m.get('total_return', 0), '{:.2%}')}")
    print(f"{_ts()}    Total P&L:      {_pn(m.get('total_pnl', 0), '${:,.2f}')}")
    print(f"{_ts()}    Daily P&L:      {_pn(m.get('average_daily_pnl', 0), '${:,.2f}')}")
    print(f"{_ts()}    Sharpe ratio:   {_pn(m.get('sharpe_ratio', 0), '{:.3f}')}")
    print(f"{_ts()}    Max drawdown:   {RED}{m.get('max_drawdown', 0):.2%}{RESET}")
    print()

    win_rate = m.get("win_rate", 0)
    pf = m.get("profit_factor", 0)
    print(f"{_ts()}  {BOLD}Trading:{RESET}")
    print(f"{_ts()}    Win rate:       {GREEN if win_rate >= 0.5 else RED}{win_rate:.2%}{RESET}")
    print(f"{_ts()}    Profit factor:  {GREEN if pf >= 1 else RED}{pf:.3f}{RESET}")
    print(f"{_ts()}    Best trade:     {_pn(m.get('best_trade', 0), '${:,.2f}')}")
    print(f"{_ts()}    Worst trade:    {_pn(m.get('worst_trade', 0), '${:,.2f}')}")
    print()

    if result.strategy_stats:
        print(f"{_ts()}  {BOLD}By strategy:{RESET}")
        for name, s in result.strategy_stats.items():
            print(
                f"{_ts()}    {name:<14} trades={s.trades:<5} win={s.win_rate:.1%} "
                f"pnl={_pn(s.total_pnl, '${:,.2f}')} dd={s.max_drawdown:.1%}"
            )
        print()


def write_outputs(result: BacktestResult, label: str, output_dir: Path = Path("output")) -> list[Path]:
    """Write the event log, trade list and equity curve under ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    if result.event_log:
        log_path = output_dir / f"backtest_{label}.log"
        log_path.write_text("\n".join(result.event_log) + "\n")
        written.append(log_path)
        print(f"{_ts()}  Event log: {log_path} ({len(result.event_log)} events)")
    if result.trades:
        trades_path = output_dir / f"backtest_{label}_trades.parquet"
        result.trades_frame().to_parquet(trades_path, index=False)
        written.append(trades_path)
        print(f"{_ts()}  Trades:    {trades_path}")
    if result.equity_curve:
        equity_path = output_dir / f"backtest_{label}_equity.parquet"
        result.equity_frame().to_parquet(equity_path)
        written.append(equity_path)
        print(f"{_ts()}  Equity:    {equity_path}\n")
    return written


def main():
    if len(sys.argv) < 2:
        print("\nUsage:")
        print(USAGE)
        sys.exit(0)

    command = sys.argv[1]

    if command == "backtest":
        try:
            name, options, verbose = parse_args(sys.argv[2:])
        except ValueError as exc:
            print(f"{exc}\nUsage:\n{USAGE}")
            sys.exit(1)
        data = Path(options.get("data", DEFAULT_DATA))
        config_path = Path(options["config"]) if "config" in options else None
        backtest(name, data=data, config_path=config_path, verbose=verbose)
        sys.exit(0)

    print(f"Unknown command: {command}")
    print("Usage:")
    print(USAGE)
    sys.exit(1)


if __name__ == "__main__":
    main()
