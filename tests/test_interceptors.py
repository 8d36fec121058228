"""Tests for fault interceptors and the shutdown hook."""
from __future__ import annotations

import contextvars
import logging
import sys
import warnings
from pathlib import Path
from typing import Any

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from interceptors import (
    AtexitShutdown,
    ExceptHookInterceptor,
    LoggingInterceptor,
    WarningsInterceptor,
    create_interceptors,
    exception_location,
)
from utils import get_logger


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def __call__(self, severity, message, file, line, backtrace=None) -> bool:
        self.calls.append((severity, message, file, line, backtrace))
        return True


def test_warnings_interceptor_forwards_and_chains() -> None:
    rec = Recorder()
    i = WarningsInterceptor(rec)
    with warnings.catch_warnings(record=True) as seen:
        warnings.simplefilter("always")
        i.install()
        try:
            warnings.warn("careful", UserWarning)
        finally:
            i.uninstall()
        assert warnings.showwarning != i.showwarning
    [(severity, message, file, line, backtrace)] = rec.calls
    assert severity == "UserWarning"
    assert message == "careful"
    assert Path(file).name == Path(__file__).name
    assert line > 0
    assert backtrace
    assert len(seen) == 1


def test_warnings_hook_is_shared_and_restored_after_overlapping_uninstalls() -> None:
    first, second = WarningsInterceptor(Recorder()), WarningsInterceptor(Recorder())
    with warnings.catch_warnings():
        original = warnings.showwarning
        first.install()
        hook = warnings.showwarning
        second.install()
        assert warnings.showwarning == hook == WarningsInterceptor.showwarning
        first.uninstall()
        assert warnings.showwarning == hook
        second.uninstall()
        assert warnings.showwarning == original


def test_warnings_reach_only_the_interceptor_of_their_context() -> None:
    rec_a, rec_b = Recorder(), Recorder()
    a, b = WarningsInterceptor(rec_a), WarningsInterceptor(rec_b)
    ctx_a, ctx_b = contextvars.copy_context(), contextvars.copy_context()
    with warnings.catch_warnings(record=True) as seen:
        warnings.simplefilter("always")
        ctx_a.run(a.install)
        ctx_b.run(b.install)
        try:
            ctx_a.run(warnings.warn, "from a", UserWarning)
            ctx_b.run(warnings.warn, "from b", UserWarning)
            warnings.warn("from nowhere", UserWarning)
        finally:
            ctx_a.run(a.uninstall)
            ctx_b.run(b.uninstall)
    assert [c[1] for c in rec_a.calls] == ["from a"]
    assert [c[1] for c in rec_b.calls] == ["from b"]
    # every warning still reaches the previous hook
    assert len(seen) == 3


def test_uninstall_from_another_context_stops_routing() -> None:
    rec = Recorder()
    i = WarningsInterceptor(rec)
    ctx = contextvars.copy_context()
    with warnings.catch_warnings():
        warnings.simplefilter("always")
        ctx.run(i.install)
        i.uninstall()
        assert WarningsInterceptor._users == 0
        ctx.run(warnings.warn, "late", UserWarning)
    assert rec.calls == []
    assert ctx.run(WarningsInterceptor.active) is None


def test_default_filters_show_repeated_warning_once() -> None:
    rec = Recorder()
    i = WarningsInterceptor(rec)
    with warnings.catch_warnings(record=True):
        warnings.simplefilter("default")
        i.install()
        try:
            for _ in range(3):
                warnings.warn("repeated", UserWarning)
        finally:
            i.uninstall()
    assert len(rec.calls) == 1


def test_excepthook_interceptor(monkeypatch: pytest.MonkeyPatch) -> None:
    previous: list[Any] = []
    monkeypatch.setattr(sys, "excepthook", lambda *a: previous.append(a))
    rec = Recorder()
    i = ExceptHookInterceptor(rec)
    i.install()
    try:
        raise ValueError("bad value")
    except ValueError:
        sys.excepthook(*sys.exc_info())
    finally:
        i.uninstall()
    [(severity, message, file, line, backtrace)] = rec.calls
    assert severity == "ValueError"
    assert message == "bad value"
    assert Path(file).name == Path(__file__).name
    assert len(backtrace) >= 1
    assert len(previous) == 1
    assert sys.excepthook != i.excepthook


def test_logging_interceptor_captures_errors_only() -> None:
    rec = Recorder()
    i = LoggingInterceptor(rec)
    i.install()
    try:
        log = logging.getLogger("someapp.db")
        log.warning("slow query")
        log.error("connection lost to %s", "db1")
        get_logger("collector").error("own records are ignored")
        try:
            1 / 0
        except ZeroDivisionError:
            log.exception("math failed")
    finally:
        i.uninstall()
    assert [c[:2] for c in rec.calls] == [("ERROR", "connection lost to db1"), ("ERROR", "math failed")]
    assert rec.calls[0][4] is None
    assert rec.calls[1][4]
    assert i.log_handler not in logging.getLogger().handlers


def test_logging_hook_routes_by_context() -> None:
    rec_a, rec_b = Recorder(), Recorder()
    a, b = LoggingInterceptor(rec_a), LoggingInterceptor(rec_b)
    ctx_a, ctx_b = contextvars.copy_context(), contextvars.copy_context()
    log = logging.getLogger("someapp.worker")
    ctx_a.run(a.install)
    ctx_b.run(b.install)
    try:
        assert logging.getLogger().handlers.count(LoggingInterceptor.log_handler) == 1
        ctx_b.run(log.error, "b failed")
    finally:
        ctx_a.run(a.uninstall)
        ctx_b.run(b.uninstall)
    assert rec_a.calls == []
    assert [c[1] for c in rec_b.calls] == ["b failed"]
    assert LoggingInterceptor.log_handler not in logging.getLogger().handlers


def test_create_interceptors() -> None:
    rec = Recorder()
    out = create_interceptors(["warnings", "excepthook", "logging"], rec)
    assert [i.name for i in out] == ["warnings", "excepthook", "logging"]
    assert not any(i.installed for i in out)
    with pytest.raises(ValueError):
        create_interceptors(["signals"], rec)


def test_exception_location_without_traceback() -> None:
    assert exception_location(RuntimeError("x")) == ("<unknown>", 0, [])


def test_atexit_shutdown_fires_once() -> None:
    calls: list[int] = []
    hook = AtexitShutdown(lambda: calls.append(1))
    hook.install()
    hook.fire()
    hook.fire()
    hook.uninstall()
    assert calls == [1]
    assert not hook.installed


def test_atexit_shutdown_swallows_callback_failure() -> None:
    def boom() -> None:
        raise RuntimeError("flush failed")

    hook = AtexitShutdown(boom)
    hook.fire()
    assert hook.fired


def test_atexit_shutdown_uninstall_before_exit() -> None:
    hook = AtexitShutdown(lambda: None)
    hook.install()
    assert hook.installed
    hook.uninstall()
    assert not hook.installed
    assert not hook.fired
