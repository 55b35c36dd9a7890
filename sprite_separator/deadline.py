"""
Cooperative processing budget shared by the stages of a single call.
"""

from __future__ import annotations

import time
from typing import Callable

from sprite_separator.errors import DeadlineExceeded


class Deadline:
    """
    A wall-clock budget that long-running loops poll between work items.

    A budget of None never expires. The clock is injectable so tests can
    drive expiry without sleeping.
    """

    def __init__(self, budget: float | None = None, clock: Callable[[], float] = time.monotonic):
        self.budget = budget
        self._clock = clock
        self._start = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    @property
    def remaining(self) -> float | None:
        if self.budget is None:
            return None
        return max(0.0, self.budget - self.elapsed)

    @property
    def expired(self) -> bool:
        return self.budget is not None and self.elapsed >= self.budget

    def check(self, stage: str) -> None:
        """Raise DeadlineExceeded if the budget has run out."""
        if self.expired:
            raise DeadlineExceeded(stage, self.budget)
