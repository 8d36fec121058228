"""
Shared utilities: logging, env helpers, identifiers, host name, stack frames.
"""
from __future__ import annotations

import logging
import os
import platform
import socket
import uuid
from pathlib import Path
from typing import Any, Iterable

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOGGER_NAMESPACE = "reqprof"


def setup_logging(
    level: str | int = "INFO",
    log_file: str | Path | None = None,
    format_string: str = LOG_FORMAT,
    date_format: str = LOG_DATE_FORMAT,
) -> None:
    """Configure root logger and optional file handler."""
    log_level = getattr(logging, level.upper(), logging.INFO) if isinstance(level, str) else level
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    logging.basicConfig(
        level=log_level,
        format=format_string,
        datefmt=date_format,
        handlers=handlers,
        force=True,
    )


def get_logger(name: str) -> logging.Logger:
    """Logger under the package namespace, so interceptors can skip our own records."""
    if name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def is_own_logger(name: str) -> bool:
    return name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + ".")


# -----------------------------------------------------------------------------
# Identifiers / host
# -----------------------------------------------------------------------------

def new_id() -> str:
    """Opaque collision-resistant identifier (transaction ids, trace ids, file suffixes)."""
    return uuid.uuid4().hex


def hostname() -> str:
    return platform.node() or socket.gethostname()


# -----------------------------------------------------------------------------
# Stack frames
# -----------------------------------------------------------------------------

def frame_location(frame: Any) -> tuple[str | None, int | None]:
    """(file, line) of a frame given as a mapping or a FrameSummary-like object."""
    if isinstance(frame, dict):
        return frame.get("file"), frame.get("line")
    return getattr(frame, "filename", None), getattr(frame, "lineno", None)


def reduce_backtrace(frames: Iterable[Any]) -> list[str]:
    """Keep frames that have a file and a non-zero line; render each as 'file:line'."""
    out: list[str] = []
    for frame in frames:
        file, line = frame_location(frame)
        if file and line:
            out.append(f"{file}:{line}")
    return out


# -----------------------------------------------------------------------------
# Config / env helpers
# -----------------------------------------------------------------------------

def env_bool(key: str, default: bool = False) -> bool:
    v = os.environ.get(key, "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def env_int(key: str, default: int = 0) -> int:
    try:
        return int(os.environ.get(key, default))
    except ValueError:
        return default


def env_float(key: str, default: float = 0.0) -> float:
    try:
        return float(os.environ.get(key, default))
    except ValueError:
        return default


def env_str(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


# -----------------------------------------------------------------------------
# Formatting
# -----------------------------------------------------------------------------

def format_seconds(seconds: float | None) -> str:
    """Human-readable duration (e.g. 1.25 s, 830.0 ms)."""
    if seconds is None:
        return "—"
    if seconds >= 1:
        return f"{seconds:.2f} s"
    return f"{seconds * 1000:.1f} ms"
