from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class InferenceEvent:
    client_id: str
    service_id: str
    server_id: str
    model: str

    accuracy: float = 0.0
    delay: float = 0.0
    qoe_total: float = 0.0
    qoe_delay: float = 0.0
    qoe_acc: float = 0.0
    pred_acc: float = 0.0
    compute_time: float = 0.0

    # event time (epoch seconds); None when the payload had no usable stamp
    added_time: Optional[float] = None


@dataclass
class CountSumAggregator:
    count: int = 0
    accuracy_total: float = 0.0
    delay_total: float = 0.0
    qoe_total_sum: float = 0.0
    qoe_delay_total: float = 0.0
    qoe_acc_total: float = 0.0
    pred_acc_total: float = 0.0
    compute_time_total: float = 0.0

    # passthrough: values of the most recently merged event
    client_id: str = ""
    service_id: str = ""
    server_id: str = ""
    model: str = ""

    def process(self, ev: InferenceEvent) -> CountSumAggregator:
        """
        Merge one event into the running sums.

        Identity fields are overwritten (last-write-wins), so the passthrough
        depends on merge order while the averages do not.
        """
        self.count += 1
        self.accuracy_total += ev.accuracy
        self.delay_total += ev.delay
        self.qoe_total_sum += ev.qoe_total
        self.qoe_delay_total += ev.qoe_delay
        self.qoe_acc_total += ev.qoe_acc
        self.pred_acc_total += ev.pred_acc
        self.compute_time_total += ev.compute_time

        self.client_id = ev.client_id
        self.service_id = ev.service_id
        self.server_id = ev.server_id
        self.model = ev.model
        return self


@dataclass(frozen=True)
class AverageAggregator:
    avg_req_accuracy: float
    avg_req_delay: float
    count: int
    avg_total_qoe: float
    avg_qoe_delay: float
    avg_qoe_acc: float
    avg_pred_acc: float
    avg_compute_time: float

    client_id: str
    service_id: str
    server_id: str
    model: str

    timestamp: int  # wall clock at computation, epoch ms


@dataclass(frozen=True)
class TimeWindow:
    key: str
    start_epoch: float
    end_epoch: float


@dataclass(frozen=True)
class WindowResult:
    window: TimeWindow
    value: AverageAggregator


@dataclass(frozen=True)
class StatusReport:
    stamp_epoch: float
    shards: int
    total_enqueued: int
    total_processed: int
    total_dropped: int
    late_dropped: int
    timestamp_fallbacks: int
    open_windows: int
    emitted: int
    failed_windows: int
    worker_errors: int
