from __future__ import annotations

import threading
from typing import Iterable, List, Tuple

from domain.models import WindowResult
from domain.ports import ResultSink


class Emitter:
    """
    Hands closed-window results to the output sinks, keyed by the request key.
    Delivery guarantees (retry, ack) belong to the sinks; a sink that raises
    is logged and counted, and the remaining sinks still get the result.
    """

    def __init__(self, sinks: Iterable[ResultSink], *, log_records: bool = True):
        self.sinks: List[ResultSink] = list(sinks)
        self.log_records = log_records

        self._lock = threading.Lock()
        self.total_emitted = 0
        self.total_sink_errors = 0

    def emit(self, key: str, result: WindowResult) -> None:
        if self.log_records:
            print(f"Outgoing record - key {key} value {result.value}", flush=True)

        for sink in self.sinks:
            try:
                sink.publish(key, result)
            except Exception as e:
                with self._lock:
                    self.total_sink_errors += 1
                print(f"[output] ERROR {type(sink).__name__} key={key}: {e!r}", flush=True)

        with self._lock:
            self.total_emitted += 1

    def totals(self) -> Tuple[int, int]:
        with self._lock:
            return self.total_emitted, self.total_sink_errors
