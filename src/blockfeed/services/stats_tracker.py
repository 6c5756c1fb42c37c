from __future__ import annotations

from collections import deque
from typing import Deque, Tuple

from blockfeed.core.models import NetworkStats


class RollingStatsTracker:
    """
    Smoothed throughput over the last `window_size` blocks.

    - durations: wall-clock gap between observed blocks, in ms
    - counts: total transactions per block (not only classified ones)
    """

    def __init__(self, window_size: int = 10) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be > 0")
        self.window_size = window_size
        self.reset()

    def reset(self) -> None:
        self._durations: Deque[float] = deque(maxlen=self.window_size)
        self._counts: Deque[int] = deque(maxlen=self.window_size)
        self._current_block = 0
        self._total_transactions = 0
        self._tps = 0.0

    def record_block(self, block_number: int, duration_ms: float, tx_count: int) -> NetworkStats:
        self._durations.append(max(0.0, float(duration_ms)))
        self._counts.append(int(tx_count))

        self._tps = self.compute_tps(self._durations, self._counts)
        self._current_block = max(self._current_block, int(block_number))
        self._total_transactions += max(0, int(tx_count))
        return self.stats

    @staticmethod
    def compute_tps(durations_ms, counts) -> float:
        total_secs = sum(durations_ms) / 1000
        if total_secs <= 0:
            return 0.0
        return sum(counts) / total_secs

    @property
    def stats(self) -> NetworkStats:
        return NetworkStats(
            current_block=self._current_block,
            tps=round(self._tps, 1),
            total_transactions=self._total_transactions,
        )

    @property
    def exact_tps(self) -> float:
        return self._tps

    @property
    def durations(self) -> Tuple[float, ...]:
        return tuple(self._durations)

    @property
    def counts(self) -> Tuple[int, ...]:
        return tuple(self._counts)
