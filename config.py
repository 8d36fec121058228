"""
Central configuration for reqprof.
Supports defaults, optional config file (YAML), and environment overrides.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

from utils import env_bool, env_float, env_int, env_str

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------

DEFAULTS: dict[str, Any] = {
    "collector": {
        "application_name": "myApp",
        "transaction_name": "default",
        "errors_capture_backtrace": True,
        "backtrace_depth_limit": 0,
        "output_directory": tempfile.gettempdir(),
        # seconds
        "trace_trigger_threshold": 5.0,
        "interceptors": ["warnings", "excepthook"],
        "register_shutdown": True,
        "sampler": "cprofile",
    },
    "logging": {
        "level": "WARNING",
        "file": None,
    },
}

# -----------------------------------------------------------------------------
# Config file loading (optional YAML)
# -----------------------------------------------------------------------------

_config_overrides: dict[str, Any] = {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_config_file(path: str | Path | None = None) -> bool:
    """Load optional YAML config. Returns True if loaded."""
    if path is None:
        for p in (
            Path(os.getcwd()) / "reqprof.yaml",
            Path(os.getcwd()) / "reqprof.yml",
            Path.home() / ".reqprof" / "config.yaml",
        ):
            if p.exists():
                path = p
                break
    if path is None:
        return False
    path = Path(path)
    if not path.exists():
        return False
    import yaml
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        return False
    global _config_overrides
    _config_overrides = _deep_merge(_config_overrides, data)
    _apply_env()
    return True


def reset_overrides() -> None:
    """Drop file overrides and re-read the environment."""
    _config_overrides.clear()
    _apply_env()


def get(key_path: str, default: Any = None) -> Any:
    """Get config value by dot path, e.g. 'collector.trace_trigger_threshold'."""
    merged = _deep_merge(DEFAULTS, _config_overrides)
    keys = key_path.split(".")
    for k in keys:
        if isinstance(merged, dict) and k in merged:
            merged = merged[k]
        else:
            return default
    return merged


def section(name: str) -> dict[str, Any]:
    """Copy of a whole config section, e.g. section('collector')."""
    value = get(name, {})
    return dict(value) if isinstance(value, dict) else {}


# -----------------------------------------------------------------------------
# Environment overrides (take precedence over file)
# -----------------------------------------------------------------------------

_ENV_KEYS: dict[str, tuple[str, Any]] = {
    "REQPROF_OUTPUT_DIR": ("collector.output_directory", env_str),
    "REQPROF_TRACE_TRIGGER": ("collector.trace_trigger_threshold", env_float),
    "REQPROF_APP_NAME": ("collector.application_name", env_str),
    "REQPROF_BACKTRACE": ("collector.errors_capture_backtrace", env_bool),
    "REQPROF_BACKTRACE_LIMIT": ("collector.backtrace_depth_limit", env_int),
    "REQPROF_LOG_LEVEL": ("logging.level", env_str),
}


def _env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}
    for env_key, (path, reader) in _ENV_KEYS.items():
        if os.environ.get(env_key, "").strip() == "":
            continue
        out[path] = reader(env_key)
    return out


def _apply_env() -> None:
    for path, value in _env_overrides().items():
        keys = path.split(".")
        d = _config_overrides
        for k in keys[:-1]:
            if not isinstance(d.get(k), dict):
                d[k] = {}
            d = d[k]
        d[keys[-1]] = value


# Apply env on import
_apply_env()

# -----------------------------------------------------------------------------
# Convenience constants
# -----------------------------------------------------------------------------

TRACE_TRIGGER_THRESHOLD_SEC = float(get("collector.trace_trigger_threshold", 5.0))
OUTPUT_DIRECTORY = str(get("collector.output_directory", tempfile.gettempdir()))
APPLICATION_NAME = str(get("collector.application_name", "myApp"))
LOG_LEVEL = str(get("logging.level", "WARNING"))

# Separator between caller and callee in sampler edge labels
EDGE_SEPARATOR = "==>"
# Sampler wall time unit: microseconds
MICROS_PER_SECOND = 1_000_000
