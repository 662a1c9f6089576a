import time

from domain.ports import Clock


# epoch seconds (float); stamps results, idle timeouts and ingestion-time fallback
class SystemClock(Clock):
    def now_epoch(self) -> float:
        return time.time()
