from __future__ import annotations

import csv
import threading
import time
from pathlib import Path
from queue import Empty, Full, Queue
from typing import List, Tuple

from domain.models import WindowResult
from domain.ports import ResultSink

from .sinks import fmt_epoch

HEADER = [
    "key",
    "window_start_utc",
    "window_end_utc",
    "count",
    "avg_req_accuracy",
    "avg_req_delay",
    "avg_total_qoe",
    "avg_qoe_delay",
    "avg_qoe_acc",
    "avg_pred_acc",
    "avg_compute_time",
    "client_id",
    "service_id",
    "server_id",
    "model",
    "timestamp_ms",
]

Row = Tuple[str, WindowResult]


def result_row(key: str, r: WindowResult) -> list:
    v = r.value
    return [
        key,
        fmt_epoch(r.window.start_epoch),
        fmt_epoch(r.window.end_epoch),
        v.count,
        v.avg_req_accuracy,
        v.avg_req_delay,
        v.avg_total_qoe,
        v.avg_qoe_delay,
        v.avg_qoe_acc,
        v.avg_pred_acc,
        v.avg_compute_time,
        v.client_id,
        v.service_id,
        v.server_id,
        v.model,
        v.timestamp,
    ]


class AsyncCsvResultWriter(ResultSink):
    """
    Appends window results to a CSV file from a background thread.
    publish() never touches the file; rows are written in batches of
    flush_every_n or every flush_every_sec, whichever comes first.
    """

    def __init__(
        self,
        csv_path: str,
        *,
        queue_max: int = 20000,
        drop_on_full: bool = True,
        flush_every_n: int = 200,
        flush_every_sec: float = 2.0,
    ):
        self.path = Path(csv_path)
        self.drop_on_full = drop_on_full
        self.batch_size = flush_every_n
        self.batch_age_sec = flush_every_sec

        self._rows: Queue[Row] = Queue(maxsize=queue_max)
        self._closing = threading.Event()
        self._writer_thread = threading.Thread(target=self._run, name="csv-sink", daemon=True)

        self.total_dropped = 0
        self.total_written = 0

    def start(self) -> None:
        self._writer_thread.start()

    def stop(self) -> None:
        self._closing.set()
        self._writer_thread.join(timeout=5)

    def publish(self, key: str, result: WindowResult) -> None:
        if not self.drop_on_full:
            self._rows.put((key, result))
            return
        try:
            self._rows.put_nowait((key, result))
        except Full:
            self.total_dropped += 1

    def _write(self, batch: List[Row]) -> None:
        new_file = not self.path.exists() or self.path.stat().st_size == 0
        with self.path.open("a", newline="", encoding="utf-8") as f:
            out = csv.writer(f)
            if new_file:
                out.writerow(HEADER)
            out.writerows(result_row(key, r) for key, r in batch)
        self.total_written += len(batch)

    def _run(self) -> None:
        batch: List[Row] = []
        started = time.monotonic()

        # drain whatever is queued even after stop() was called
        while not (self._closing.is_set() and self._rows.empty()):
            try:
                batch.append(self._rows.get(timeout=0.2))
            except Empty:
                pass

            if not batch:
                started = time.monotonic()
                continue
            if len(batch) >= self.batch_size or time.monotonic() - started >= self.batch_age_sec:
                self._write(batch)
                batch = []
                started = time.monotonic()

        if batch:
            self._write(batch)
