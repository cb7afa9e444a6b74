"""Delay between automatic retry attempts."""
from __future__ import annotations

from dataclasses import dataclass


def backoff_seconds(attempt: int, *, base: float, cap: float) -> float:
    # attempt is 1-based: the number of attempts already made
    return min(cap, base * 2 ** max(0, attempt - 1))


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        return backoff_seconds(attempt, base=self.base_delay_seconds, cap=self.max_delay_seconds)
