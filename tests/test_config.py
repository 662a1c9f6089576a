import textwrap

import pytest

from config import load_config, parse_config
from main import main


def write_cfg(tmp_path, body: str):
    p = tmp_path / "config.yaml"
    p.write_text(textwrap.dedent(body), encoding="utf-8")
    return p


def test_minimal_config_uses_defaults(tmp_path):
    cfg = load_config(str(write_cfg(tmp_path, """
        window_sec: 10
        grace_sec: 2
    """)))

    assert cfg.window_sec == 10.0
    assert cfg.grace_sec == 2.0
    assert cfg.shards == 8
    assert cfg.watermark_scope == "key"
    assert cfg.idle_timeout_sec is None
    assert cfg.flush_on_shutdown is True
    assert cfg.input.path is None
    assert cfg.input.time_unit == "s"
    assert cfg.output.console is True
    assert cfg.output.csv is None
    assert cfg.output.http is None


def test_full_config(tmp_path):
    cfg = load_config(str(write_cfg(tmp_path, """
        window_sec: 60
        grace_sec: 5.5
        shards: 2
        watermark_scope: shard
        idle_timeout_sec: 30
        input:
          path: in.jsonl
          time_unit: ms
        output:
          console: false
          csv:
            path: out.csv
            flush_every_n: 10
          http:
            url: http://sink.local/qoe
            max_retries: 0
    """)))

    assert cfg.grace_sec == 5.5
    assert cfg.watermark_scope == "shard"
    assert cfg.idle_timeout_sec == 30.0
    assert cfg.input.path == "in.jsonl"
    assert cfg.input.time_unit == "ms"
    assert cfg.output.console is False
    assert cfg.output.csv.path == "out.csv"
    assert cfg.output.csv.flush_every_n == 10
    assert cfg.output.http.url == "http://sink.local/qoe"
    assert cfg.output.http.max_retries == 0
    assert cfg.output.http.workers == 4


def test_disabled_outputs_are_ignored():
    cfg = parse_config({
        "window_sec": 10,
        "grace_sec": 2,
        "output": {"csv": {"enabled": False}, "http": {"enabled": False}},
    })
    assert cfg.output.csv is None
    assert cfg.output.http is None


@pytest.mark.parametrize("data,field", [
    ({"grace_sec": 2}, "window_sec"),
    ({"window_sec": 10}, "grace_sec"),
    ({"window_sec": 0, "grace_sec": 2}, "window_sec"),
    ({"window_sec": 10, "grace_sec": -1}, "grace_sec"),
    ({"window_sec": "ten", "grace_sec": 2}, "window_sec"),
    ({"window_sec": True, "grace_sec": 2}, "window_sec"),
    ({"window_sec": 10, "grace_sec": 2, "shards": 0}, "shards"),
    ({"window_sec": 10, "grace_sec": 2, "watermark_scope": "global"}, "watermark_scope"),
    ({"window_sec": 10, "grace_sec": 2, "input": {"time_unit": "us"}}, "input.time_unit"),
    ({"window_sec": 10, "grace_sec": 2, "output": {"http": {"workers": 2}}}, "output.http.url"),
])
def test_invalid_config_names_the_field(data, field):
    with pytest.raises(ValueError, match=field.replace(".", r"\.")):
        parse_config(data)


def test_missing_file_is_a_config_error(tmp_path):
    with pytest.raises(ValueError):
        load_config(str(tmp_path / "nope.yaml"))


def test_main_refuses_to_start_without_grace(tmp_path):
    p = write_cfg(tmp_path, """
        window_sec: 10
    """)
    with pytest.raises(SystemExit) as exc:
        main([str(p)])
    assert "grace_sec" in str(exc.value)
