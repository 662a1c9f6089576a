from __future__ import annotations

import heapq
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from domain.models import CountSumAggregator, InferenceEvent, TimeWindow, WindowResult
from domain.ports import Clock
from domain.services import AccumulatorInvariantError, compute_average
from domain.windows import WindowAssigner

from .extractor import EventTimeExtractor

WATERMARK_SCOPES = ("key", "shard")
_SHARD_SCOPE = ""

EmitFn = Callable[[str, WindowResult], None]


@dataclass(frozen=True)
class WindowPolicy:
    window_sec: float
    grace_sec: float
    watermark_scope: str = "key"
    idle_timeout_sec: Optional[float] = None

    def __post_init__(self) -> None:
        if self.watermark_scope not in WATERMARK_SCOPES:
            raise ValueError(
                f"watermark_scope must be one of {WATERMARK_SCOPES} (got {self.watermark_scope!r})"
            )
        if self.idle_timeout_sec is not None and not self.idle_timeout_sec > 0:
            raise ValueError(f"idle_timeout_sec must be > 0 (got {self.idle_timeout_sec!r})")


class WindowState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    EMITTED = "emitted"
    REMOVED = "removed"


@dataclass
class OpenWindow:
    window: TimeWindow
    acc: CountSumAggregator = field(default_factory=CountSumAggregator)
    state: WindowState = WindowState.OPEN


@dataclass
class _Watermark:
    value: float
    advanced_at: float  # wall clock of the last advance


class TumblingWindowAggregator:
    """
    Windowed count/sum state for the keys of one shard.

    - one accumulator per open (key, window), created on the first event
    - watermark = highest event time seen, per key or per shard
    - a window closes once watermark >= end + grace; it is then averaged,
      emitted exactly once and dropped from state
    - events for an already closed window are late and are discarded

    Memory is not bounded: open windows are kept until they close, and a
    per-key watermark stays after its key's windows are emitted so later
    stragglers are still recognized as late. With high-cardinality keys
    (request or session ids) both grow with the key space.

    Not thread-safe: a single owner thread drives process/tick/flush.
    """

    def __init__(
        self,
        policy: WindowPolicy,
        clock: Clock,
        emit: EmitFn,
        *,
        extractor: Optional[EventTimeExtractor] = None,
    ):
        self.policy = policy
        self.clock = clock
        self.assigner = WindowAssigner(policy.window_sec, policy.grace_sec)
        self.extractor = extractor or EventTimeExtractor(clock)
        self._emit = emit

        self._windows: Dict[Tuple[str, float], OpenWindow] = {}
        # scope -> heap of (close_time, key, window_start)
        self._deadlines: Dict[str, List[Tuple[float, str, float]]] = {}
        self._watermarks: Dict[str, _Watermark] = {}
        self._last_ts: Optional[float] = None

        self.merged = 0
        self.late_dropped = 0
        self.emitted = 0
        self.failed_windows = 0

    # -----------------------------
    # introspection
    # -----------------------------
    @property
    def open_windows(self) -> int:
        return len(self._windows)

    @property
    def timestamp_fallbacks(self) -> int:
        return self.extractor.fallbacks

    def _scope_of(self, key: str) -> str:
        return key if self.policy.watermark_scope == "key" else _SHARD_SCOPE

    def watermark(self, key: str) -> Optional[float]:
        wm = self._watermarks.get(self._scope_of(key))
        return None if wm is None else wm.value

    def window_state(self, key: str, start_epoch: float) -> WindowState:
        ow = self._windows.get((key, start_epoch))
        return WindowState.REMOVED if ow is None else ow.state

    # -----------------------------
    # event path
    # -----------------------------
    def process(self, key: str, ev: InferenceEvent) -> None:
        t = self.extractor.extract(ev, self._last_ts)
        self._last_ts = t

        scope = self._scope_of(key)
        self._advance(scope, t)

        window = self.assigner.assign(key, t)
        if self.assigner.is_closed(window, self._watermarks[scope].value):
            self.late_dropped += 1
        else:
            ident = (key, window.start_epoch)
            ow = self._windows.get(ident)
            if ow is None:
                ow = OpenWindow(window=window)
                self._windows[ident] = ow
                heapq.heappush(
                    self._deadlines.setdefault(scope, []),
                    (self.assigner.close_time(window), key, window.start_epoch),
                )
            ow.acc.process(ev)
            self.merged += 1

        self._close_ready(scope)

    def _advance(self, scope: str, t: float) -> None:
        wm = self._watermarks.get(scope)
        if wm is None:
            self._watermarks[scope] = _Watermark(value=t, advanced_at=self.clock.now_epoch())
        elif t > wm.value:
            wm.value = t
            wm.advanced_at = self.clock.now_epoch()

    # -----------------------------
    # closing / emission
    # -----------------------------
    def tick(self) -> None:
        """
        Re-evaluate closure without new events. Idempotent: windows already
        emitted are gone from state, so nothing is emitted twice.

        With idle_timeout_sec set, a scope whose watermark has been still for
        that long moves forward by the wall-clock time elapsed.
        """
        now = self.clock.now_epoch()
        idle = self.policy.idle_timeout_sec

        for scope in list(self._deadlines):
            wm = self._watermarks.get(scope)
            if wm is None:
                continue
            if idle is not None and (now - wm.advanced_at) >= idle:
                wm.value += now - wm.advanced_at
                wm.advanced_at = now
            self._close_ready(scope)

    def flush(self) -> None:
        """Close and emit every open window (in window order), regardless of watermark."""
        for ident in sorted(self._windows, key=lambda i: (i[1], i[0])):
            self._close(ident)
        self._deadlines.clear()

    def _close_ready(self, scope: str) -> None:
        heap = self._deadlines.get(scope)
        wm = self._watermarks.get(scope)
        if not heap or wm is None:
            return

        while heap and heap[0][0] <= wm.value:
            _, key, start = heapq.heappop(heap)
            self._close((key, start))

        if not heap:
            del self._deadlines[scope]

    def _close(self, ident: Tuple[str, float]) -> None:
        ow = self._windows.get(ident)
        if ow is None or ow.state is not WindowState.OPEN:
            return
        ow.state = WindowState.CLOSED

        try:
            try:
                value = compute_average(ow.acc, self.clock.now_epoch())
            except AccumulatorInvariantError as e:
                self.failed_windows += 1
                print(
                    f"[qoe] ERROR window key={ow.window.key} "
                    f"[{ow.window.start_epoch}, {ow.window.end_epoch}) not emitted: {e}",
                    flush=True,
                )
                return

            self._emit(ow.window.key, WindowResult(window=ow.window, value=value))
            ow.state = WindowState.EMITTED
            self.emitted += 1
        finally:
            del self._windows[ident]
            ow.state = WindowState.REMOVED
