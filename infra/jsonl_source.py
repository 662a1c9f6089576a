from __future__ import annotations

import io
import sys
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, Optional, TextIO

from domain.models import InferenceEvent

from .json_codec import decode_record

SubmitFn = Callable[[str, InferenceEvent], bool]


@contextmanager
def open_input(path: Optional[str]) -> Iterator[TextIO]:
    # undecodable bytes become U+FFFD, so the line fails JSON decode and is counted
    if not path or path == "-":
        yield io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
        return
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        yield f


class JsonLinesSource:
    """
    Reads keyed records, one JSON object per line, and submits them in
    order. Lines that do not decode are skipped and counted.
    """

    def __init__(self, submit: SubmitFn, *, time_unit: str = "s", verbose: bool = True):
        self.submit = submit
        self.time_unit = time_unit
        self.verbose = verbose

        self.total_lines = 0
        self.total_submitted = 0
        self.total_rejected = 0

    def run(self, lines: Iterable[str]) -> None:
        for line in lines:
            if not line.strip():
                continue
            self.total_lines += 1

            try:
                key, ev = decode_record(line, time_unit=self.time_unit)
            except ValueError as e:
                self.total_rejected += 1
                if self.verbose:
                    print(f"[input] skipped line {self.total_lines}: {e}", flush=True)
                continue

            if self.submit(key, ev):
                self.total_submitted += 1
