from __future__ import annotations
from datetime import datetime, timezone

from domain.ports import ReportSink, ResultSink
from domain.models import StatusReport, WindowResult


def fmt_epoch(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]


class PrintSink(ResultSink):
    def publish(self, key: str, result: WindowResult) -> None:
        w = result.window
        v = result.value
        print(
            f"[{fmt_epoch(w.start_epoch)} .. {fmt_epoch(w.end_epoch)}) key={key} count={v.count} "
            f"acc={v.avg_req_accuracy:.4f} delay={v.avg_req_delay:.3f} qoe={v.avg_total_qoe:.4f} "
            f"qoe_delay={v.avg_qoe_delay:.4f} qoe_acc={v.avg_qoe_acc:.4f} pred_acc={v.avg_pred_acc:.4f} "
            f"compute={v.avg_compute_time:.3f} | client={v.client_id} service={v.service_id} "
            f"server={v.server_id} model={v.model}",
            flush=True,
        )


class PrintReportSink(ReportSink):
    def handle(self, report: StatusReport) -> None:
        backlog = report.total_enqueued - report.total_processed
        print(
            f"[status {fmt_epoch(report.stamp_epoch)}] shards={report.shards} "
            f"enqueued={report.total_enqueued:,} processed={report.total_processed:,} "
            f"backlog={backlog:,} dropped={report.total_dropped:,} late={report.late_dropped:,} "
            f"ts_fallbacks={report.timestamp_fallbacks:,} open_windows={report.open_windows:,} "
            f"emitted={report.emitted:,} failed={report.failed_windows:,} "
            f"errors={report.worker_errors:,}",
            flush=True,
        )
