"""Tests for the command-line interface."""
from __future__ import annotations

import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from cli import build_parser, main
from persistence import JsonFileWriter


def _write_sample(directory: Path) -> None:
    w = JsonFileWriter(directory, application="shop")
    w.write({
        "_data_type": "profiler",
        "transaction_id": "abc",
        "execution_time": 0.5,
        "error_count": 1,
        "request": {"method": "GET", "uri": "/"},
    })
    w.write({"_data_type": "error", "transaction_id": "abc", "file": "a.py", "line": 3, "count": 2, "message": "m"})


def test_parser_requires_command() -> None:
    parser = build_parser()
    args = parser.parse_args(["show", "/tmp", "--type", "error"])
    assert args.type == "error"
    assert args.limit == 50


def test_show_json(tmp_path: Path, capsys) -> None:
    _write_sample(tmp_path)
    assert main(["show", str(tmp_path), "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert {r["_data_type"] for r in out} == {"profiler", "error"}


def test_show_table(tmp_path: Path, capsys) -> None:
    _write_sample(tmp_path)
    assert main(["show", str(tmp_path), "--type", "error"]) == 0
    out = capsys.readouterr().out
    assert "a.py:3" in out


def test_show_empty_directory(tmp_path: Path) -> None:
    assert main(["show", str(tmp_path)]) == 1


def test_validate_config(capsys) -> None:
    assert main(["validate-config", "--config", "/nonexistent/reqprof.yaml"]) == 0
    out = capsys.readouterr().out
    assert "collector.trace_trigger_threshold" in out
