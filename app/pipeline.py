from __future__ import annotations

import math
import threading
from typing import Optional

from domain.models import InferenceEvent, StatusReport
from domain.ports import Clock, ReportSink

from .processor import ShardedWindowProcessor


class QoePipeline:
    """
    Drives the sharded processor from the outside world.

    - submit(): entry point for decoded (key, event) records
    - timer thread: a closure tick every tick_sec, so quiet streams still
      get their windows evaluated
    - status report on a grid aligned to the whole second, every
      report_every_sec (0 disables it)
    """

    def __init__(
        self,
        processor: ShardedWindowProcessor,
        clock: Clock,
        report_sink: ReportSink,
        *,
        tick_sec: float = 1.0,
        report_every_sec: float = 10.0,
    ):
        if not tick_sec > 0:
            raise ValueError(f"tick_sec must be > 0 (got {tick_sec!r})")
        self.processor = processor
        self.clock = clock
        self.report_sink = report_sink
        self.tick_sec = float(tick_sec)
        self.report_every_sec = float(report_every_sec)

        self._stop = threading.Event()
        self._timer: Optional[threading.Thread] = None
        self._next_report = 0.0

    def start(self) -> None:
        self.processor.start()

        now = self.clock.now_epoch()
        self._next_report = math.floor(now) + 1.0 + self.report_every_sec

        self._timer = threading.Thread(target=self._run_timer, daemon=True)
        self._timer.start()

    def submit(self, key: str, ev: InferenceEvent) -> bool:
        return self.processor.submit(key, ev)

    def _run_timer(self) -> None:
        while not self._stop.wait(self.tick_sec):
            self.processor.tick()
            self.maybe_report()

    def build_report(self, stamp_epoch: float) -> StatusReport:
        enq, proc, drop = self.processor.totals()
        wt = self.processor.window_totals()
        return StatusReport(
            stamp_epoch=stamp_epoch,
            shards=self.processor.shards,
            total_enqueued=enq,
            total_processed=proc,
            total_dropped=drop,
            late_dropped=wt["late_dropped"],
            timestamp_fallbacks=wt["timestamp_fallbacks"],
            open_windows=wt["open_windows"],
            emitted=wt["emitted"],
            failed_windows=wt["failed_windows"],
            worker_errors=self.processor.errors(),
        )

    def maybe_report(self) -> None:
        if self.report_every_sec <= 0:
            return
        now = self.clock.now_epoch()
        if now < self._next_report:
            return

        # one report per call; skip grid points missed while blocked
        stamp = self._next_report
        while self._next_report <= now:
            self._next_report += self.report_every_sec
        self.report_sink.handle(self.build_report(stamp))

    def shutdown(self) -> None:
        self._stop.set()
        if self._timer is not None:
            self._timer.join(timeout=self.tick_sec + 1.0)
            self._timer = None

        self.processor.shutdown()
        self.report_sink.handle(self.build_report(self.clock.now_epoch()))
