from __future__ import annotations

import math
from dataclasses import dataclass

from .models import TimeWindow


def window_start_of(t_epoch: float, size_sec: float) -> float:
    # epoch-aligned: [k*size, (k+1)*size)
    return math.floor(t_epoch / size_sec) * size_sec


@dataclass(frozen=True)
class WindowAssigner:
    """
    Tumbling event-time windows with a grace period.

    A window accepts events until the watermark reaches end + grace.
    """

    size_sec: float
    grace_sec: float

    def __post_init__(self) -> None:
        if not self.size_sec > 0:
            raise ValueError(f"window size must be > 0 (got {self.size_sec!r})")
        if not self.grace_sec > 0:
            raise ValueError(f"grace period must be > 0 (got {self.grace_sec!r})")

    def assign(self, key: str, t_epoch: float) -> TimeWindow:
        start = window_start_of(t_epoch, self.size_sec)
        return TimeWindow(key=key, start_epoch=start, end_epoch=start + self.size_sec)

    def close_time(self, window: TimeWindow) -> float:
        return window.end_epoch + self.grace_sec

    def is_closed(self, window: TimeWindow, watermark: float | None) -> bool:
        if watermark is None:
            return False
        return watermark >= self.close_time(window)
