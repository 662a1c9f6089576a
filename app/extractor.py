from __future__ import annotations

import math
from typing import Optional

from domain.models import InferenceEvent
from domain.ports import Clock


class EventTimeExtractor:
    """
    Event time for windowing, taken from the event payload (added_time).

    Fallback when added_time is missing, non-finite or negative:
      1) the previous timestamp extracted on the same stream, if any;
      2) otherwise ingestion time from the clock.
    The fallback moves the event into whichever window that timestamp
    selects, so every use is counted.
    """

    def __init__(self, clock: Clock):
        self.clock = clock
        self.fallbacks = 0

    @staticmethod
    def _usable(t: Optional[float]) -> bool:
        if t is None or isinstance(t, bool):
            return False
        try:
            t = float(t)
        except (TypeError, ValueError):
            return False
        return math.isfinite(t) and t >= 0.0

    def extract(self, ev: InferenceEvent, previous_timestamp: Optional[float]) -> float:
        if self._usable(ev.added_time):
            return float(ev.added_time)  # type: ignore[arg-type]

        self.fallbacks += 1
        if previous_timestamp is not None:
            return float(previous_timestamp)
        return float(self.clock.now_epoch())
