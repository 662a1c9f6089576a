from __future__ import annotations

from .models import AverageAggregator, CountSumAggregator


class AccumulatorInvariantError(RuntimeError):
    """A closed window reached averaging without any merged event."""


def compute_average(acc: CountSumAggregator, now_epoch: float) -> AverageAggregator:
    count = acc.count
    if count < 1:
        # never produce NaN/inf for a window
        raise AccumulatorInvariantError(f"cannot average an accumulator with count={count}")

    n = float(count)
    return AverageAggregator(
        avg_req_accuracy=acc.accuracy_total / n,
        avg_req_delay=acc.delay_total / n,
        count=count,
        avg_total_qoe=acc.qoe_total_sum / n,
        avg_qoe_delay=acc.qoe_delay_total / n,
        avg_qoe_acc=acc.qoe_acc_total / n,
        avg_pred_acc=acc.pred_acc_total / n,
        avg_compute_time=acc.compute_time_total / n,
        client_id=acc.client_id,
        service_id=acc.service_id,
        server_id=acc.server_id,
        model=acc.model,
        timestamp=int(round(now_epoch * 1000.0)),
    )
