"""
Fault interceptors and the shutdown hook.

Each kind of runtime fault has one process-wide hook, installed while at least
one interceptor of that kind is installed. The hook forwards a fault only to the
interceptor installed in the context the fault was raised in, whose handler has
the signature handler(severity, message, file, line, backtrace) -> bool. Faults
from contexts without an installed interceptor just reach the previous hook.
"""
from __future__ import annotations

import atexit
import contextvars
import logging
import sys
import threading
import traceback
import warnings
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, Callable, Sequence

from utils import get_logger, is_own_logger

logger = get_logger(__name__)

ErrorHandler = Callable[[Any, str, str, int, Sequence[Any] | None], bool]

_hook_lock = threading.Lock()


class BaseInterceptor(ABC):
    """Routes one kind of fault from the shared hook to handler.

    Subclasses declare their own _route ContextVar and _users count, and
    implement _hook_install/_hook_uninstall for the process-wide hook.
    """

    name: str = "base"
    _route: contextvars.ContextVar[BaseInterceptor | None]
    _users: int = 0

    def __init__(self, handler: ErrorHandler) -> None:
        self.handler = handler
        self.installed = False
        self._outer: BaseInterceptor | None = None

    def install(self) -> None:
        if self.installed:
            return
        cls = type(self)
        with _hook_lock:
            if cls._users == 0:
                cls._hook_install()
            cls._users += 1
        self._outer = cls._route.get()
        cls._route.set(self)
        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return
        self.installed = False
        cls = type(self)
        # may run in another context than install; that one keeps a dead route
        if cls._route.get() is self:
            cls._route.set(self._outer)
        self._outer = None
        with _hook_lock:
            cls._users -= 1
            if cls._users == 0:
                cls._hook_uninstall()

    @classmethod
    def active(cls) -> BaseInterceptor | None:
        """The installed interceptor of this kind bound to the current context."""
        target = cls._route.get()
        while target is not None and not target.installed:
            target = target._outer
        return target

    @classmethod
    @abstractmethod
    def _hook_install(cls) -> None:
        ...

    @classmethod
    @abstractmethod
    def _hook_uninstall(cls) -> None:
        ...


class WarningsInterceptor(BaseInterceptor):
    """Captures warnings (the non-fatal faults execution continues past).

    Only warnings that pass the active warning filters reach showwarning. Under
    Python's default filters a repeated warning from the same site is shown once,
    and DeprecationWarning is ignored outside __main__, so count then reflects the
    occurrences shown rather than every one raised. Install a filter such as
    warnings.simplefilter("always") to count each occurrence.
    """

    name = "warnings"
    _route: contextvars.ContextVar[BaseInterceptor | None] = contextvars.ContextVar(
        "reqprof_warnings_route", default=None
    )
    _users = 0
    _previous: Callable[..., Any] | None = None

    @classmethod
    def _hook_install(cls) -> None:
        cls._previous = warnings.showwarning
        warnings.showwarning = cls.showwarning

    @classmethod
    def _hook_uninstall(cls) -> None:
        # only restore if nobody replaced us in the meantime
        if warnings.showwarning == cls.showwarning:
            warnings.showwarning = cls._previous
        cls._previous = None

    @classmethod
    def showwarning(cls, message, category, filename, lineno, file=None, line=None) -> None:
        target = cls.active()
        if target is not None:
            # drop this frame and the warnings machinery frame
            stack = traceback.extract_stack()[:-2]
            target.handler(category.__name__, str(message), filename, lineno, stack)
        if cls._previous is not None:
            cls._previous(message, category, filename, lineno, file, line)


class ExceptHookInterceptor(BaseInterceptor):
    """Captures uncaught exceptions before the interpreter shuts down."""

    name = "excepthook"
    _route: contextvars.ContextVar[BaseInterceptor | None] = contextvars.ContextVar(
        "reqprof_excepthook_route", default=None
    )
    _users = 0
    _previous: Callable[..., Any] | None = None

    @classmethod
    def _hook_install(cls) -> None:
        cls._previous = sys.excepthook
        sys.excepthook = cls.excepthook

    @classmethod
    def _hook_uninstall(cls) -> None:
        if sys.excepthook == cls.excepthook:
            sys.excepthook = cls._previous
        cls._previous = None

    @classmethod
    def excepthook(cls, exc_type: type[BaseException], exc: BaseException, tb: TracebackType | None) -> None:
        target = cls.active()
        if target is not None:
            file, line, frames = exception_location(exc, tb)
            target.handler(exc_type.__name__, str(exc), file, line, frames)
        if cls._previous is not None:
            cls._previous(exc_type, exc, tb)


class _ForwardingHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        if is_own_logger(record.name):
            return
        target = LoggingInterceptor.active()
        if not isinstance(target, LoggingInterceptor) or record.levelno < target.level:
            return
        frames: Sequence[Any] | None = None
        if record.exc_info and record.exc_info[2] is not None:
            frames = traceback.extract_tb(record.exc_info[2])
        target.handler(record.levelname, record.getMessage(), record.pathname, record.lineno, frames)


class LoggingInterceptor(BaseInterceptor):
    """Captures log records at ERROR and above from the root logger."""

    name = "logging"
    _route: contextvars.ContextVar[BaseInterceptor | None] = contextvars.ContextVar(
        "reqprof_logging_route", default=None
    )
    _users = 0
    log_handler = _ForwardingHandler()

    def __init__(self, handler: ErrorHandler, level: int = logging.ERROR) -> None:
        super().__init__(handler)
        self.level = level

    @classmethod
    def _hook_install(cls) -> None:
        logging.getLogger().addHandler(cls.log_handler)

    @classmethod
    def _hook_uninstall(cls) -> None:
        logging.getLogger().removeHandler(cls.log_handler)


INTERCEPTORS: dict[str, type[BaseInterceptor]] = {
    WarningsInterceptor.name: WarningsInterceptor,
    ExceptHookInterceptor.name: ExceptHookInterceptor,
    LoggingInterceptor.name: LoggingInterceptor,
}


def create_interceptors(names: Sequence[str], handler: ErrorHandler) -> list[BaseInterceptor]:
    out: list[BaseInterceptor] = []
    for name in names:
        cls = INTERCEPTORS.get(name)
        if cls is None:
            raise ValueError(f"Unknown interceptor: {name!r}")
        out.append(cls(handler))
    return out


def exception_location(
    exc: BaseException, tb: TracebackType | None = None
) -> tuple[str, int, list[traceback.FrameSummary]]:
    """(file, line, frames) of the innermost frame an exception passed through."""
    frames = traceback.extract_tb(tb if tb is not None else exc.__traceback__)
    if not frames:
        return "<unknown>", 0, []
    innermost = frames[-1]
    return innermost.filename, innermost.lineno or 0, list(frames)


# -----------------------------------------------------------------------------
# Shutdown
# -----------------------------------------------------------------------------

class AtexitShutdown:
    """Runs callback once at interpreter exit, unless uninstalled first."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.installed = False
        self.fired = False

    def install(self) -> None:
        if self.installed:
            return
        atexit.register(self.fire)
        self.installed = True

    def uninstall(self) -> None:
        if not self.installed:
            return
        # atexit is already running us
        if not self.fired:
            atexit.unregister(self.fire)
        self.installed = False

    def fire(self) -> None:
        if self.fired:
            return
        self.fired = True
        try:
            self.callback()
        except Exception:
            logger.exception("Shutdown callback failed")
