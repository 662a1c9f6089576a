from __future__ import annotations
import threading
import zlib
from queue import Queue, Full
from typing import Dict, List, Tuple

from domain.models import InferenceEvent
from domain.ports import Clock

from .windowing import EmitFn, TumblingWindowAggregator, WindowPolicy


class _Tick:
    pass


_TICK = _Tick()


class ShardedWindowProcessor:
    """
    Key-partitioned windowed aggregation.

    Every key maps to one shard, and every shard has one thread that owns its
    TumblingWindowAggregator: events, ticks and the shutdown flush all go
    through the shard queue, so aggregate state has a single writer.
    """

    def __init__(
        self,
        shards: int,
        queue_size: int,
        policy: WindowPolicy,
        clock: Clock,
        emit: EmitFn,
        *,
        drop_on_full: bool = False,
        flush_on_shutdown: bool = True,
    ):
        if shards < 1:
            raise ValueError(f"shards must be >= 1 (got {shards})")
        self.shards = shards
        self.drop_on_full = drop_on_full
        self.flush_on_shutdown = flush_on_shutdown

        self.queues = [Queue(maxsize=queue_size) for _ in range(shards)]
        self.threads: List[threading.Thread] = []
        self._aggs = [TumblingWindowAggregator(policy, clock, emit) for _ in range(shards)]

        self._tot_lock = threading.Lock()
        self.total_enqueued = 0
        self.total_dropped = 0
        self.total_processed = 0
        self.total_errors = 0

    @staticmethod
    def _shard_of(key: str, shards: int) -> int:
        # stable across processes, unlike hash(str)
        return (zlib.crc32(key.encode("utf-8")) * 2654435761) % shards

    def start(self) -> None:
        if self.threads:
            return
        for i in range(self.shards):
            t = threading.Thread(target=self._worker, args=(i,), daemon=True)
            t.start()
            self.threads.append(t)

    def submit(self, key: str, ev: InferenceEvent) -> bool:
        q = self.queues[self._shard_of(key, self.shards)]
        if self.drop_on_full:
            try:
                q.put_nowait((key, ev))
            except Full:
                with self._tot_lock:
                    self.total_dropped += 1
                return False
        else:
            q.put((key, ev))

        with self._tot_lock:
            self.total_enqueued += 1
        return True

    def tick(self) -> None:
        for q in self.queues:
            try:
                q.put_nowait(_TICK)
            except Full:
                # a full queue is still moving; the next tick will get in
                pass

    def _worker(self, shard_idx: int) -> None:
        q = self.queues[shard_idx]
        agg = self._aggs[shard_idx]

        while True:
            item = q.get()
            try:
                if item is None:
                    if self.flush_on_shutdown:
                        self._run_guarded(shard_idx, "flush", agg.flush)
                    return
                if item is _TICK:
                    self._run_guarded(shard_idx, "tick", agg.tick)
                    continue

                key, ev = item
                self._run_guarded(shard_idx, f"key={key}", agg.process, key, ev)
                with self._tot_lock:
                    self.total_processed += 1
            finally:
                q.task_done()

    def _run_guarded(self, shard_idx: int, what: str, fn, *args) -> None:
        # one bad item must not take the shard thread down with it
        try:
            fn(*args)
        except Exception as e:
            with self._tot_lock:
                self.total_errors += 1
            print(f"[qoe] ERROR shard={shard_idx} {what}: {e!r}", flush=True)

    def totals(self) -> Tuple[int, int, int]:
        with self._tot_lock:
            return self.total_enqueued, self.total_processed, self.total_dropped

    def errors(self) -> int:
        with self._tot_lock:
            return self.total_errors

    def window_totals(self) -> Dict[str, int]:
        # counters are written by the shard threads; this is a best-effort read
        return {
            "late_dropped": sum(a.late_dropped for a in self._aggs),
            "timestamp_fallbacks": sum(a.timestamp_fallbacks for a in self._aggs),
            "open_windows": sum(a.open_windows for a in self._aggs),
            "emitted": sum(a.emitted for a in self._aggs),
            "failed_windows": sum(a.failed_windows for a in self._aggs),
        }

    def shutdown(self, timeout: float = 5.0) -> None:
        if not self.threads:
            return
        for q in self.queues:
            q.put(None)
        for t in self.threads:
            t.join(timeout=timeout)
        self.threads.clear()
