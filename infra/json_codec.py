from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from domain.models import InferenceEvent, WindowResult

TIME_UNITS = ("s", "ms")

_IDENTITY_FIELDS = ("client_id", "service_id", "server_id", "model")
_METRIC_FIELDS = (
    "accuracy",
    "delay",
    "qoe_total",
    "qoe_delay",
    "qoe_acc",
    "pred_acc",
    "compute_time",
)


def parse_timestamp(raw: Any, time_unit: str = "s") -> Optional[float]:
    """
    added_time -> epoch seconds.

    Numbers are read in `time_unit`; strings as a number or ISO-8601 (a
    trailing Z is accepted, naive values are UTC). Anything else -> None,
    which leaves the decision to the event-time extractor.
    """
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return None
        try:
            raw = float(s)
        except ValueError:
            try:
                dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
            except ValueError:
                return None
            if dt.tzinfo is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return dt.timestamp()

    if isinstance(raw, (int, float)):
        t = float(raw)
        return t / 1000.0 if time_unit == "ms" else t
    return None


def event_from_dict(d: Mapping[str, Any], *, time_unit: str = "s") -> InferenceEvent:
    if not isinstance(d, Mapping):
        raise ValueError(f"event value must be an object, got {type(d).__name__}")

    kw: dict[str, Any] = {}
    for name in _IDENTITY_FIELDS:
        v = d.get(name)
        kw[name] = "" if v is None else str(v)

    for name in _METRIC_FIELDS:
        v = d.get(name, 0.0)
        try:
            kw[name] = float(v if v is not None else 0.0)
        except (TypeError, ValueError) as e:
            raise ValueError(f"field '{name}' is not numeric: {v!r}") from e

    kw["added_time"] = parse_timestamp(d.get("added_time"), time_unit)
    return InferenceEvent(**kw)


def decode_record(line: str, *, time_unit: str = "s") -> Tuple[str, InferenceEvent]:
    """One JSON line {"key": ..., "value": {...}} -> (key, event)."""
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ValueError(f"invalid JSON: {e}") from e

    if not isinstance(obj, Mapping):
        raise ValueError("record must be a JSON object")
    if "key" not in obj or obj["key"] is None:
        raise ValueError("record has no key")
    if "value" not in obj:
        raise ValueError("record has no value")

    return str(obj["key"]), event_from_dict(obj["value"], time_unit=time_unit)


def result_to_dict(key: str, result: WindowResult) -> dict[str, Any]:
    out: dict[str, Any] = {
        "key": key,
        "window_start": result.window.start_epoch,
        "window_end": result.window.end_epoch,
    }
    out.update(asdict(result.value))
    return out


def encode_result(key: str, result: WindowResult) -> str:
    return json.dumps(result_to_dict(key, result), separators=(",", ":"))
