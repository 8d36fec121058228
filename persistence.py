"""
Record writers: persist one finished record per call.
The default writes one pretty-printed JSON file per record.
"""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Callable, Protocol, Union

from errors import WriterFailure
from utils import get_logger, new_id

logger = get_logger(__name__)


class Writer(Protocol):
    def write(self, record: dict[str, Any]) -> None:
        ...


WriterLike = Union[Writer, Callable[[dict[str, Any]], None]]


def as_write_callable(writer: WriterLike) -> Callable[[dict[str, Any]], None]:
    """Accept either an object with .write() or a plain callable."""
    write = getattr(writer, "write", None)
    if callable(write):
        return write
    if callable(writer):
        return writer
    raise TypeError(f"Writer must be callable or have a write() method, got {type(writer).__name__}")


class JsonFileWriter:
    """Writes <type>-<application>-<unique>.json files into output_directory."""

    def __init__(self, output_directory: str | Path, application: str = "myApp") -> None:
        self.output_directory = Path(output_directory).expanduser()
        self.application = application

    def path_for(self, record: dict[str, Any]) -> Path:
        data_type = record.get("_data_type", "record")
        application = record.get("application") or self.application
        return self.output_directory / f"{data_type}-{application}-{new_id()}.json"

    def write(self, record: dict[str, Any]) -> None:
        path = self.path_for(record)
        try:
            self.output_directory.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(record, indent=4, default=str)
            with open(path, "w", encoding="utf-8") as f:
                f.write(payload)
        except (OSError, TypeError, ValueError) as e:
            raise WriterFailure(f"Failed to write {path}: {e}") from e
        logger.debug("Wrote %s", path)


class MemoryWriter:
    """Keeps records in memory, in emission order."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def write(self, record: dict[str, Any]) -> None:
        with self._lock:
            self.records.append(record)

    def of_type(self, data_type: str) -> list[dict[str, Any]]:
        with self._lock:
            return [r for r in self.records if r.get("_data_type") == data_type]

    def clear(self) -> None:
        with self._lock:
            self.records.clear()


def load_records(directory: str | Path, data_type: str | None = None) -> list[dict[str, Any]]:
    """Read records written by JsonFileWriter, oldest file first. Unreadable files are skipped."""
    directory = Path(directory).expanduser()
    if not directory.is_dir():
        return []
    pattern = f"{data_type}-*.json" if data_type else "*.json"
    out: list[dict[str, Any]] = []
    for path in sorted(directory.glob(pattern), key=lambda p: p.stat().st_mtime):
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load record %s: %s", path, e)
            continue
        if isinstance(data, dict) and "_data_type" in data:
            out.append(data)
    return out
