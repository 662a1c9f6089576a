from __future__ import annotations

from typing import Protocol

from .models import StatusReport, WindowResult


class Clock(Protocol):
    def now_epoch(self) -> float: ...


class ResultSink(Protocol):
    def publish(self, key: str, result: WindowResult) -> None: ...


class ReportSink(Protocol):
    def handle(self, report: StatusReport) -> None: ...
