from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from app.windowing import WATERMARK_SCOPES
from infra.json_codec import TIME_UNITS


@dataclass(frozen=True)
class InputConfig:
    path: Optional[str] = None  # None/"-" = stdin
    time_unit: str = "s"


@dataclass(frozen=True)
class CsvOutputConfig:
    path: str
    queue_max: int = 20000
    drop_on_full: bool = True
    flush_every_n: int = 200
    flush_every_sec: float = 2.0


@dataclass(frozen=True)
class HttpOutputConfig:
    url: str
    workers: int = 4
    queue_max: int = 5000
    timeout_sec: float = 2.0
    max_retries: int = 3
    drop_on_full: bool = False


@dataclass(frozen=True)
class OutputConfig:
    console: bool = True
    csv: Optional[CsvOutputConfig] = None
    http: Optional[HttpOutputConfig] = None


@dataclass(frozen=True)
class AppConfig:
    window_sec: float
    grace_sec: float

    shards: int = 8
    queue_size: int = 100000
    drop_on_full: bool = False

    watermark_scope: str = "key"
    idle_timeout_sec: Optional[float] = None
    tick_sec: float = 1.0
    report_every_sec: float = 10.0
    flush_on_shutdown: bool = True
    log_records: bool = True

    input: InputConfig = InputConfig()
    output: OutputConfig = OutputConfig()


def _req(d: Mapping[str, Any], path: str) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur or cur[part] is None:
            raise ValueError(f"Invalid config: required field '{path}' is missing.")
        cur = cur[part]
    return cur


def _opt(d: Mapping[str, Any], path: str, default: Any) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, Mapping) or part not in cur or cur[part] is None:
            return default
        cur = cur[part]
    return cur


def _num(x: Any, path: str) -> float:
    if isinstance(x, bool):
        raise ValueError(f"Invalid config: '{path}' must be a number, got {x!r}.")
    try:
        v = float(x)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid config: '{path}' must be a number, got {x!r}.") from e
    if not math.isfinite(v):
        raise ValueError(f"Invalid config: '{path}' must be finite, got {x!r}.")
    return v


def _positive(x: Any, path: str) -> float:
    v = _num(x, path)
    if v <= 0:
        raise ValueError(f"Invalid config: '{path}' must be > 0, got {x!r}.")
    return v


def _int_at_least(x: Any, path: str, minimum: int) -> int:
    v = _num(x, path)
    if v != int(v) or v < minimum:
        raise ValueError(f"Invalid config: '{path}' must be an integer >= {minimum}, got {x!r}.")
    return int(v)


def _choice(x: Any, path: str, choices: tuple) -> str:
    s = str(x)
    if s not in choices:
        raise ValueError(f"Invalid config: '{path}' must be one of {list(choices)}, got {x!r}.")
    return s


def _parse_csv(data: Mapping[str, Any]) -> Optional[CsvOutputConfig]:
    raw = _opt(data, "output.csv", None)
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValueError("Invalid config: 'output.csv' must be a map.")
    if not bool(_opt(raw, "enabled", True)):
        return None
    return CsvOutputConfig(
        path=str(_req(data, "output.csv.path")),
        queue_max=_int_at_least(_opt(raw, "queue_max", 20000), "output.csv.queue_max", 1),
        drop_on_full=bool(_opt(raw, "drop_on_full", True)),
        flush_every_n=_int_at_least(_opt(raw, "flush_every_n", 200), "output.csv.flush_every_n", 1),
        flush_every_sec=_positive(_opt(raw, "flush_every_sec", 2.0), "output.csv.flush_every_sec"),
    )


def _parse_http(data: Mapping[str, Any]) -> Optional[HttpOutputConfig]:
    raw = _opt(data, "output.http", None)
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ValueError("Invalid config: 'output.http' must be a map.")
    if not bool(_opt(raw, "enabled", True)):
        return None
    return HttpOutputConfig(
        url=str(_req(data, "output.http.url")),
        workers=_int_at_least(_opt(raw, "workers", 4), "output.http.workers", 1),
        queue_max=_int_at_least(_opt(raw, "queue_max", 5000), "output.http.queue_max", 1),
        timeout_sec=_positive(_opt(raw, "timeout_sec", 2.0), "output.http.timeout_sec"),
        max_retries=_int_at_least(_opt(raw, "max_retries", 3), "output.http.max_retries", 0),
        drop_on_full=bool(_opt(raw, "drop_on_full", False)),
    )


def parse_config(data: Mapping[str, Any]) -> AppConfig:
    if not isinstance(data, Mapping):
        raise ValueError("Invalid config: top level must be a map.")

    # window semantics are undefined without these two
    window_sec = _positive(_req(data, "window_sec"), "window_sec")
    grace_sec = _positive(_req(data, "grace_sec"), "grace_sec")

    idle_raw = _opt(data, "idle_timeout_sec", None)
    idle_timeout_sec = None if idle_raw is None else _positive(idle_raw, "idle_timeout_sec")

    input_path = _opt(data, "input.path", None)
    input_cfg = InputConfig(
        path=None if input_path is None else str(input_path),
        time_unit=_choice(_opt(data, "input.time_unit", "s"), "input.time_unit", TIME_UNITS),
    )
    output_cfg = OutputConfig(
        console=bool(_opt(data, "output.console", True)),
        csv=_parse_csv(data),
        http=_parse_http(data),
    )

    report_every = _num(_opt(data, "report_every_sec", 10.0), "report_every_sec")
    if report_every < 0:
        raise ValueError(f"Invalid config: 'report_every_sec' must be >= 0, got {report_every!r}.")

    return AppConfig(
        window_sec=window_sec,
        grace_sec=grace_sec,
        shards=_int_at_least(_opt(data, "shards", 8), "shards", 1),
        queue_size=_int_at_least(_opt(data, "queue_size", 100000), "queue_size", 1),
        drop_on_full=bool(_opt(data, "drop_on_full", False)),
        watermark_scope=_choice(_opt(data, "watermark_scope", "key"), "watermark_scope", WATERMARK_SCOPES),
        idle_timeout_sec=idle_timeout_sec,
        tick_sec=_positive(_opt(data, "tick_sec", 1.0), "tick_sec"),
        report_every_sec=report_every,
        flush_on_shutdown=bool(_opt(data, "flush_on_shutdown", True)),
        log_records=bool(_opt(data, "log_records", True)),
        input=input_cfg,
        output=output_cfg,
    )


def load_config(path: str = "config.yaml") -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ValueError(f"Invalid config: file '{path}' not found.")
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return parse_config(data)
