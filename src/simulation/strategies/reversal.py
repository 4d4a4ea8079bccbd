"""Reversal: buy underpriced outcomes weeks before resolution.

Thesis: outcomes trading between 5 and 55 cents with one to three months
left are frequently mispriced after a sharp sell-off. A recent upward turn
in the price history (last price above the lookback mean) strengthens the
signal; a continuing slide weakens it.

Exits:
  - price converges to 0.999 or above (take profit)
  - price falls below a holding-time dependent fraction of entry
    (60% in the first week, widening towards 90% after two months)
  - 12 hours or less to market end
  - any stop-loss / take-profit / trailing stop set in the strategy config
"""

from __future__ import annotations

from datetime import datetime

import numpy as np

from src.simulation.config import BacktestConfig
from src.simulation.models import MarketSnapshot, Trade
from src.simulation.strategy import Strategy

# (low, high, base score)
PRICE_BANDS = (
    (0.05, 0.15, 6),
    (0.15, 0.25, 7),
    (0.25, 0.35, 6),
    (0.35, 0.45, 5),
    (0.45, 0.55, 4),
)


def stop_fraction(days_held: float) -> float:
    if days_held < 7:
        return 0.60
    if days_held < 30:
        return 0.70
    if days_held < 60:
        return 0.80
    return 0.90


class ReversalStrategy(Strategy):
    def __init__(
        self,
        min_days: float = 7.0,
        max_days: float = 90.0,
        min_liquidity: float = 1_000.0,
        min_volume: float = 5_000.0,
        threshold: int = 5,
        lookback: int = 30,
        cooldown_minutes: float = 30.0,
    ):
        super().__init__(
            name="reversal",
            description=f"Buy outcomes priced 5-55% with {min_days:.0f}-{max_days:.0f} days to end.",
            cooldown_minutes=cooldown_minutes,
        )
        self.min_days = min_days
        self.max_days = max_days
        self.min_liquidity = min_liquidity
        self.min_volume = min_volume
        self.threshold = threshold
        self.lookback = lookback

    def _score(self, snapshot: MarketSnapshot, outcome_index: int) -> int | None:
        price = snapshot.outcome_prices[outcome_index]
        band = next((b for b in PRICE_BANDS if b[0] <= price <= b[1]), None)
        if band is None:
            return None
        score = band[2]
        history = self.history.historical_prices(
            snapshot.market_id, snapshot.timestamp, self.lookback, outcome_index
        )
        if len(history) >= self.lookback // 2:
            mean = float(np.mean(history))
            if price > mean * 1.05:
                score += 3
            elif price < mean * 0.9:
                score -= 4
        return score

    def _candidate(self, snapshot: MarketSnapshot) -> int | None:
        # Liquidity may be absent (0) in older datasets.
        if 0 < snapshot.liquidity < self.min_liquidity:
            return None
        if snapshot.volume_24h < self.min_volume:
            return None
        days = snapshot.days_to_end()
        if days is None or not self.min_days <= days <= self.max_days:
            return None
        for i in range(len(snapshot.outcome_prices)):
            score = self._score(snapshot, i)
            if score is not None and score >= self.threshold:
                return i
        return None

    def should_open(self, snapshot: MarketSnapshot, config: BacktestConfig) -> bool:
        if self.risk_limits_breached(config):
            return False
        return self._candidate(snapshot) is not None

    def select_outcome(self, snapshot: MarketSnapshot) -> int | None:
        return self._candidate(snapshot)

    def _exit(self, trade: Trade, current_price: float, current_time: datetime) -> str | None:
        if current_price >= 0.999:
            return "Take profit: price converged to 99.9%+"
        fraction = stop_fraction(trade.holding_hours(current_time) / 24.0)
        if current_price <= trade.entry_price * fraction:
            return f"Stop loss: price fell to {fraction:.0%} of entry"
        hours_left = trade.hours_to_end(current_time)
        if hours_left is not None and hours_left <= 12:
            return "Closing ahead of market end"
        return self.risk_exit(trade, current_price)

    def should_close(
        self,
        trade: Trade,
        current_price: float,
        current_time: datetime,
        config: BacktestConfig,
    ) -> bool:
        return self._exit(trade, current_price, current_time) is not None

    def get_exit_reason(self, trade: Trade, current_price: float, current_time: datetime) -> str:
        return self._exit(trade, current_price, current_time) or "Strategy exit"
