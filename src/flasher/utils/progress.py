"""Monotonic progress reporting."""

from typing import Callable, Optional

ProgressCallback = Callable[[int], None]


class MonotonicProgress:
    """Forwards percentages 0-100 that never move backwards.

    One instance covers exactly one operation; lower or repeated values
    are dropped.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.value = -1

    def __call__(self, percent: float) -> None:
        current = max(0, min(100, int(percent)))
        if current <= self.value:
            return
        self.value = current
        if self.callback is not None:
            self.callback(current)

    def complete(self) -> None:
        self(100)
