import sys
from typing import List, Optional

from config import AppConfig, load_config
from app.emitter import Emitter
from app.pipeline import QoePipeline
from app.processor import ShardedWindowProcessor
from app.windowing import WindowPolicy
from domain.ports import ResultSink
from infra.clock import SystemClock
from infra.csv_sink import AsyncCsvResultWriter
from infra.http_sink import HttpResultSink
from infra.jsonl_source import JsonLinesSource, open_input
from infra.sinks import PrintReportSink, PrintSink


def build_sinks(cfg: AppConfig) -> List[ResultSink]:
    sinks: List[ResultSink] = []

    if cfg.output.console:
        sinks.append(PrintSink())

    if cfg.output.csv is not None:
        c = cfg.output.csv
        writer = AsyncCsvResultWriter(
            c.path,
            queue_max=c.queue_max,
            drop_on_full=c.drop_on_full,
            flush_every_n=c.flush_every_n,
            flush_every_sec=c.flush_every_sec,
        )
        writer.start()
        sinks.append(writer)
        print(f"[output] csv={c.path}")

    if cfg.output.http is not None:
        h = cfg.output.http
        http_sink = HttpResultSink(
            h.url,
            workers=h.workers,
            queue_max=h.queue_max,
            timeout_sec=h.timeout_sec,
            max_retries=h.max_retries,
            drop_on_full=h.drop_on_full,
        )
        http_sink.start()
        sinks.append(http_sink)
        print(f"[output] http={h.url} workers={h.workers}")

    return sinks


def stop_sinks(sinks: List[ResultSink]) -> None:
    for s in sinks:
        stop = getattr(s, "stop", None)
        if stop is not None:
            stop()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    config_path = argv[0] if argv else "config.yaml"

    try:
        cfg = load_config(config_path)
        policy = WindowPolicy(
            window_sec=cfg.window_sec,
            grace_sec=cfg.grace_sec,
            watermark_scope=cfg.watermark_scope,
            idle_timeout_sec=cfg.idle_timeout_sec,
        )
    except ValueError as e:
        # no undefined window semantics: refuse to start
        raise SystemExit(f"[config] {e}")

    print(
        f"[config] window={cfg.window_sec}s grace={cfg.grace_sec}s "
        f"watermark_scope={cfg.watermark_scope} idle_timeout={cfg.idle_timeout_sec} "
        f"shards={cfg.shards} queue_size={cfg.queue_size}",
        flush=True,
    )

    clock = SystemClock()
    sinks = build_sinks(cfg)
    emitter = Emitter(sinks, log_records=cfg.log_records)

    processor = ShardedWindowProcessor(
        shards=cfg.shards,
        queue_size=cfg.queue_size,
        policy=policy,
        clock=clock,
        emit=emitter.emit,
        drop_on_full=cfg.drop_on_full,
        flush_on_shutdown=cfg.flush_on_shutdown,
    )
    pipeline = QoePipeline(
        processor,
        clock,
        PrintReportSink(),
        tick_sec=cfg.tick_sec,
        report_every_sec=cfg.report_every_sec,
    )

    source = JsonLinesSource(pipeline.submit, time_unit=cfg.input.time_unit)

    pipeline.start()
    try:
        with open_input(cfg.input.path) as lines:
            source.run(lines)
    except KeyboardInterrupt:
        print("[qoe] interrupted", flush=True)
    finally:
        try:
            pipeline.shutdown()
        finally:
            stop_sinks(sinks)

    print(
        f"[input] lines={source.total_lines:,} submitted={source.total_submitted:,} "
        f"rejected={source.total_rejected:,}",
        flush=True,
    )
    emitted, sink_errors = emitter.totals()
    print(f"[output] emitted={emitted:,} sink_errors={sink_errors:,}", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
