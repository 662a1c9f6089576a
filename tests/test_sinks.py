import csv
import json
import textwrap
import threading

import httpx
import pytest

from app.emitter import Emitter
from domain.models import AverageAggregator, TimeWindow, WindowResult
from infra.csv_sink import AsyncCsvResultWriter
from infra.http_sink import HttpResultSink
from main import main


def mk_result(key="A", start=0.0, end=10.0, count=2) -> WindowResult:
    value = AverageAggregator(
        avg_req_accuracy=0.85,
        avg_req_delay=110.0,
        count=count,
        avg_total_qoe=0.5,
        avg_qoe_delay=0.4,
        avg_qoe_acc=0.6,
        avg_pred_acc=0.7,
        avg_compute_time=3.0,
        client_id="c",
        service_id="s",
        server_id="v",
        model="m",
        timestamp=1_000,
    )
    return WindowResult(window=TimeWindow(key, start, end), value=value)


class ListSink:
    def __init__(self):
        self.items = []

    def publish(self, key, result):
        self.items.append((key, result))


def test_csv_writer_writes_header_once_and_rows(tmp_path):
    path = tmp_path / "out.csv"
    w = AsyncCsvResultWriter(str(path), flush_every_n=1, flush_every_sec=0.05)
    w.start()
    w.publish("A", mk_result("A"))
    w.publish("B", mk_result("B", 10.0, 20.0, count=5))
    w.stop()

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))

    assert rows[0][:4] == ["key", "window_start_utc", "window_end_utc", "count"]
    assert len(rows[0]) == 16
    assert [r[0] for r in rows[1:]] == ["A", "B"]
    assert rows[1][1] == "1970-01-01 00:00:00.000"
    assert rows[2][2] == "1970-01-01 00:00:20.000"
    assert rows[2][3] == "5"
    assert rows[1][-1] == "1000"
    assert w.total_written == 2


def test_csv_writer_flushes_pending_batch_on_stop(tmp_path):
    path = tmp_path / "out.csv"
    w = AsyncCsvResultWriter(str(path), flush_every_n=1000, flush_every_sec=60)
    w.start()
    for i in range(3):
        w.publish(f"k{i}", mk_result(f"k{i}"))
    w.stop()

    with open(path, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert len(rows) == 4


def test_csv_writer_drops_when_queue_full(tmp_path):
    w = AsyncCsvResultWriter(str(tmp_path / "out.csv"), queue_max=1, drop_on_full=True)

    # not started, so nothing drains the queue
    w.publish("A", mk_result())
    w.publish("A", mk_result())
    assert w.total_dropped == 1


def test_http_sink_posts_result_json():
    seen = []
    lock = threading.Lock()

    def handler(request: httpx.Request) -> httpx.Response:
        with lock:
            seen.append(json.loads(request.content))
        return httpx.Response(200)

    sink = HttpResultSink("http://sink.local/qoe", workers=1, transport=httpx.MockTransport(handler))
    sink.start()
    sink.publish("A", mk_result("A"))
    sink.stop()

    assert sink.total_sent == 1
    assert sink.total_failed == 0
    assert seen[0]["key"] == "A"
    assert seen[0]["count"] == 2
    assert seen[0]["window_end"] == 10.0


def test_http_sink_counts_failures_after_retries():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(500)

    sink = HttpResultSink(
        "http://sink.local/qoe", workers=1, max_retries=0, transport=httpx.MockTransport(handler)
    )
    sink.start()
    sink.publish("A", mk_result())
    sink.stop()

    assert calls == ["/qoe"]
    assert sink.total_sent == 0
    assert sink.total_failed == 1
    assert sink.total_published == 1


def test_http_sink_requires_start():
    sink = HttpResultSink("http://sink.local/qoe")
    with pytest.raises(RuntimeError):
        sink.publish("A", mk_result())


def test_emitter_fans_out_to_every_sink(capsys):
    a, b = ListSink(), ListSink()
    em = Emitter([a, b])
    res = mk_result("A")

    em.emit("A", res)

    assert a.items == [("A", res)]
    assert b.items == [("A", res)]
    assert em.total_emitted == 1
    assert "Outgoing record - key A" in capsys.readouterr().out


def test_emitter_quiet_when_record_logging_off(capsys):
    em = Emitter([ListSink()], log_records=False)
    em.emit("A", mk_result())
    assert "Outgoing record" not in capsys.readouterr().out


def test_main_end_to_end_writes_csv(tmp_path):
    events = tmp_path / "events.jsonl"
    out = tmp_path / "out.csv"

    lines = []
    for key in ["req-a", "req-b"]:
        for t, acc in [(1, 0.2), (3, 0.4), (30, 1.0)]:
            lines.append(json.dumps({
                "key": key,
                "value": {
                    "client_id": "c",
                    "service_id": "s",
                    "server_id": "v",
                    "model": "m",
                    "accuracy": acc,
                    "added_time": t,
                },
            }))
    lines.append("not json")
    events.write_text("\n".join(lines) + "\n", encoding="utf-8")

    cfg = tmp_path / "config.yaml"
    cfg.write_text(textwrap.dedent(f"""
        window_sec: 10
        grace_sec: 2
        shards: 2
        report_every_sec: 0
        log_records: false
        input:
          path: {events}
        output:
          console: false
          csv:
            path: {out}
            flush_every_n: 1
    """), encoding="utf-8")

    assert main([str(cfg)]) == 0

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))

    by_window = {(r["key"], r["window_start_utc"]): r for r in rows}
    assert len(by_window) == 4
    first = by_window[("req-a", "1970-01-01 00:00:00.000")]
    assert first["count"] == "2"
    assert float(first["avg_req_accuracy"]) == pytest.approx(0.3)
    assert by_window[("req-b", "1970-01-01 00:00:30.000")]["count"] == "1"


class FailingSink:
    def publish(self, key, result):
        raise ValueError("year 55840 is out of range")


def test_failing_sink_does_not_starve_the_others(capsys):
    good = ListSink()
    em = Emitter([FailingSink(), good], log_records=False)

    em.emit("A", mk_result("A"))
    em.emit("B", mk_result("B"))

    assert [k for k, _ in good.items] == ["A", "B"]
    assert em.totals() == (2, 2)
    assert "[output] ERROR FailingSink key=A" in capsys.readouterr().out
