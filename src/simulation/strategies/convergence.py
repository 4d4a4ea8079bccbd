"""Convergence: buy near-certain outcomes in the last days before end.

Outcomes trading at 80-98 cents with 12 to 72 hours left usually settle at
1.0. Calm recent history (low volatility over the lookback) adds to the
signal; a choppy tape subtracts from it.
"""

from __future__ import annotations

from datetime import datetime

import numpy as np

from src.simulation.config import BacktestConfig
from src.simulation.models import MarketSnapshot, Trade
from src.simulation.strategy import Strategy

PRICE_BANDS = (
    (0.80, 0.85, 5),
    (0.85, 0.90, 6),
    (0.90, 0.95, 7),
    (0.95, 0.98, 6),
)


class ConvergenceStrategy(Strategy):
    def __init__(
        self,
        min_hours: float = 12.0,
        max_hours: float = 72.0,
        min_liquidity: float = 1_000.0,
        min_volume: float = 5_000.0,
        threshold: int = 6,
        lookback: int = 20,
        cooldown_minutes: float = 30.0,
    ):
        super().__init__(
            name="convergence",
            description=f"Buy outcomes priced 80-98% with {min_hours:.0f}-{max_hours:.0f}h to end.",
            cooldown_minutes=cooldown_minutes,
        )
        self.min_hours = min_hours
        self.max_hours = max_hours
        self.min_liquidity = min_liquidity
        self.min_volume = min_volume
        self.threshold = threshold
        self.lookback = lookback

    def _candidate(self, snapshot: MarketSnapshot) -> int | None:
        if 0 < snapshot.liquidity < self.min_liquidity:
            return None
        if snapshot.volume_24h < self.min_volume:
            return None
        hours = snapshot.hours_to_end()
        if hours is None or not self.min_hours <= hours <= self.max_hours:
            return None

        for i, price in enumerate(snapshot.outcome_prices):
            band = next((b for b in PRICE_BANDS if b[0] <= price <= b[1]), None)
            if band is None:
                continue
            score = band[2]
            history = self.history.historical_prices(snapshot.market_id, snapshot.timestamp, self.lookback, i)
            if len(history) >= self.lookback // 2:
                vol = float(np.std(history[-10:]))
                if vol < 0.08:
                    score += 3
                elif vol > 0.20:
                    score -= 3
            if score >= self.threshold:
                return i
        return None

    def should_open(self, snapshot: MarketSnapshot, config: BacktestConfig) -> bool:
        if self.risk_limits_breached(config):
            return False
        return self._candidate(snapshot) is not None

    def select_outcome(self, snapshot: MarketSnapshot) -> int | None:
        return self._candidate(snapshot)

    def _exit(self, trade: Trade, current_price: float, current_time: datetime) -> str | None:
        if current_price >= 1.0:
            return "Take profit: price converged to 100%"
        hours_held = trade.holding_hours(current_time)
        if hours_held < 6:
            fraction = 0.85
        elif hours_held < 12:
            fraction = 0.90
        elif hours_held < 24:
            fraction = 0.93
        else:
            fraction = 0.95
        if current_price <= trade.entry_price * fraction:
            return f"Stop loss: price fell to {fraction:.0%} of entry"
        hours_left = trade.hours_to_end(current_time)
        if hours_left is not None and hours_left <= 8:
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
