"""
Data models for reqprof: record types, deduplicated errors, user metric groups
and request metadata.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class RecordType(str, Enum):
    PROFILER = "profiler"
    TRACE = "trace"
    ERROR = "error"


@dataclass
class ErrorRecord:
    """One distinct error site. Repeats at the same (file, line) only bump count."""
    file: str
    line: int
    message: str
    severity: str | int
    backtrace: list[str] = field(default_factory=list)  # "file:line", first occurrence only
    count: int = 1

    @property
    def location(self) -> tuple[str, int]:
        return (self.file, self.line)

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity,
            "message": self.message,
            "file": self.file,
            "line": self.line,
            "backtrace": list(self.backtrace),
            "count": self.count,
        }


@dataclass
class MetricItem:
    """Count and total time (seconds) for one user metric key."""
    count: int = 0
    time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {"count": self.count, "time": self.time}


@dataclass
class MetricGroup:
    """User metrics sharing a grouping prefix."""
    time: float = 0.0
    items: dict[str, MetricItem] = field(default_factory=dict)

    def add(self, key: str, elapsed: float) -> None:
        self.time += elapsed
        item = self.items.get(key)
        if item is None:
            item = self.items[key] = MetricItem()
        item.count += 1
        item.time += elapsed

    def to_dict(self) -> dict[str, Any]:
        return {
            "time": self.time,
            "items": {k: v.to_dict() for k, v in self.items.items()},
        }


@dataclass
class RequestInfo:
    """Snapshot of the request being profiled."""
    scheme: str = "http"
    uri: str = ""
    method: str = "GET"
    host: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"scheme": self.scheme, "uri": self.uri, "method": self.method, "host": self.host}
