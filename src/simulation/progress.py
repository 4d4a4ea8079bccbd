"""Terminal progress bar for long snapshot replays.

The bottom terminal row is reserved (ANSI scroll region) for a status line
showing snapshots processed, throughput and the run's current equity and
open positions. Event-log lines written through :meth:`PinnedProgress.write`
scroll above it without disturbing the bar.
"""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Iterable, Iterator
from typing import Generic, TypeVar

T = TypeVar("T")

_ESC = "\033["
_CYAN = f"{_ESC}36m"
_RESET = f"{_ESC}0m"


def _term_size() -> os.terminal_size:
    try:
        return os.get_terminal_size()
    except OSError:
        return os.terminal_size((80, 24))


def fmt_elapsed(seconds: float) -> str:
    m, s = divmod(int(seconds), 60)
    h, m = divmod(m, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m:02d}:{s:02d}"


class PinnedProgress(Generic[T]):
    """Iterator wrapper drawing a pinned bar while items are consumed.

    ``set_status`` updates the trailing key/value fields (the engine feeds
    equity and open positions); the bar is redrawn at most once per
    ``refresh_interval`` seconds.
    """

    def __init__(
        self,
        iterable: Iterable[T],
        total: int,
        desc: str = "",
        unit: str = " snapshots",
        refresh_interval: float = 0.05,
        stream=None,
    ):
        self._iter = iter(iterable)
        self.total = total
        self.desc = desc
        self.unit = unit
        self.stream = stream or sys.stdout
        self.status: dict[str, str] = {}
        self._refresh_interval = refresh_interval
        self._n = 0
        self._start = time.monotonic()
        self._last_refresh = 0.0
        self._active = False

    @property
    def count(self) -> int:
        return self._n

    def _setup(self) -> None:
        rows = _term_size().lines
        out = self.stream
        out.write(f"{_ESC}{rows};1H{_ESC}2K")
        out.write(f"{_ESC}1;{rows - 1}r")
        out.write(f"{_ESC}1;1H")
        out.flush()
        self._active = True
        self._start = time.monotonic()
        self._draw()

    def _teardown(self) -> None:
        if not self._active:
            return
        rows = _term_size().lines
        self.stream.write(f"{_ESC}1;{rows}r{_ESC}{rows};1H\n")
        self.stream.flush()
        self._active = False

    def render(self, width: int) -> str:
        """The bar text for a terminal ``width`` columns wide."""
        elapsed = time.monotonic() - self._start
        rate = self._n / elapsed if elapsed > 0 else 0.0
        frac = min(1.0, self._n / self.total) if self.total else 0.0
        if rate > 0 and self._n < self.total:
            eta = fmt_elapsed((self.total - self._n) / rate)
        else:
            eta = "00:00"

        status = " ".join(f"{k}={v}" for k, v in self.status.items())
        left = f"{self.desc}: {frac:>4.0%}|"
        right = f"| {self._n:,}/{self.total:,} [{fmt_elapsed(elapsed)}<{eta}, {rate:,.0f}{self.unit}/s]"
        if status:
            right = f"{right} {status}"

        bar_width = width - len(left) - len(right)
        if bar_width <= 2:
            return f"{left}{right}"
        filled = int(bar_width * frac)
        return f"{left}{_CYAN}{'█' * filled}{'░' * (bar_width - filled)}{_RESET}{right}"

    def _draw(self) -> None:
        if not self._active:
            return
        size = _term_size()
        line = self.render(size.columns)
        self.stream.write(f"{_ESC}s{_ESC}{size.lines};1H{_ESC}2K{line}{_ESC}u")
        self.stream.flush()
        self._last_refresh = time.monotonic()

    def _maybe_draw(self) -> None:
        if time.monotonic() - self._last_refresh >= self._refresh_interval:
            self._draw()

    def write(self, msg: str) -> None:
        """Print ``msg`` in the scroll region above the bar."""
        self.stream.write(f"{msg}\n")
        self.stream.flush()

    def set_status(self, **fields: object) -> None:
        self.status = {k: str(v) for k, v in fields.items()}
        self._maybe_draw()

    def __iter__(self) -> Iterator[T]:
        self._setup()
        try:
            for item in self._iter:
                self._n += 1
                self._maybe_draw()
                yield item
        finally:
            self._draw()
            self._teardown()
