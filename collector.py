"""
Per-request collector: times the request, deduplicates runtime errors, aggregates
user metrics and emits trace/profiler/error records exactly once at the end.

One collector is live per request context. It is bound in a ContextVar rather than
a process global, so concurrent requests in threads or tasks each own theirs.
"""
from __future__ import annotations

import contextlib
import contextvars
import time
import traceback
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Iterable, Iterator, Sequence

import psutil

import config
from errors import AlreadyInitialized, SamplingUnavailable
from interceptors import AtexitShutdown, BaseInterceptor, create_interceptors, exception_location
from models import ErrorRecord, MetricGroup, RecordType
from persistence import JsonFileWriter, WriterLike, as_write_callable
from request_context import current_request_info
from samplers import BaseSampler, NullSampler, Samples, create_sampler
from utils import get_logger, hostname, new_id, reduce_backtrace

logger = get_logger(__name__)

DEFAULT_GROUP = "default"

_current: contextvars.ContextVar[Collector | None] = contextvars.ContextVar("reqprof_collector", default=None)


@dataclass
class CollectorOptions:
    """Collector settings. Defaults come from config.py (file and env overrides included)."""
    application_name: str = "myApp"
    transaction_name: str = "default"
    errors_capture_backtrace: bool = True
    backtrace_depth_limit: int = 0  # 0 = unlimited
    output_directory: str = ""
    trace_trigger_threshold: float = 5.0  # seconds
    interceptors: list[str] = field(default_factory=lambda: ["warnings", "excepthook"])
    register_shutdown: bool = True
    sampler: BaseSampler | str = "cprofile"
    writer: WriterLike | None = None

    @classmethod
    def from_config(cls, overrides: dict[str, Any] | None = None) -> CollectorOptions:
        """Merge overrides over the configured defaults. Unknown keys raise TypeError."""
        known = {f.name for f in fields(cls)}
        merged = {k: v for k, v in config.section("collector").items() if k in known}
        merged.update(overrides or {})
        opts = cls(**merged)
        if not opts.output_directory:
            opts.output_directory = config.OUTPUT_DIRECTORY
        opts.trace_trigger_threshold = float(opts.trace_trigger_threshold)
        opts.backtrace_depth_limit = max(0, int(opts.backtrace_depth_limit))
        return opts


def _live() -> Collector | None:
    """The collector bound to this context, unless it was finalized elsewhere."""
    current = _current.get()
    if current is not None and current.finalized:
        # finalize ran in another thread or task and could not unbind us
        _current.set(None)
        return None
    return current


def filter_metric_samples(samples: Samples, names: Iterable[str]) -> Samples:
    """Entries whose callee (after the edge separator) is in names, wall time rescaled to seconds."""
    wanted = set(names)
    out: Samples = {}
    for label, stats in samples.items():
        parts = label.split(config.EDGE_SEPARATOR, 1)
        callee = parts[1] if len(parts) == 2 else ""
        if callee not in wanted:
            continue
        entry = dict(stats)
        if "wt" in entry:
            entry["wt"] = entry["wt"] / config.MICROS_PER_SECOND
        out[label] = entry
    return out


def process_resources() -> dict[str, Any]:
    """RSS memory and CPU time of this process, best effort."""
    try:
        proc = psutil.Process()
        mem = proc.memory_info()
        cpu = proc.cpu_times()
    except (psutil.Error, OSError) as e:
        logger.debug("Process resources unavailable: %s", e)
        return {}
    return {
        "memory_rss_mb": mem.rss / (1024 * 1024),
        "cpu_user_sec": cpu.user,
        "cpu_system_sec": cpu.system,
    }


class Collector:
    """Telemetry for a single request. Build it with Collector.create()."""

    def __init__(self, start_time: float | None = None, options: CollectorOptions | None = None) -> None:
        self.options = options or CollectorOptions.from_config()
        self.start_time: float = time.time() if start_time is None else float(start_time)
        self.transaction_id: str | None = new_id()
        self.application_name = self.options.application_name
        self.transaction_name = self.options.transaction_name
        self.trace_trigger_threshold = self.options.trace_trigger_threshold
        self.metric_names: set[str] = set()
        self.errors: dict[tuple[str, int], ErrorRecord] = {}
        self.user_metrics: dict[str, MetricGroup] = {}
        self.finalized = False

        sampler = self.options.sampler
        self.sampler: BaseSampler = create_sampler(sampler) if isinstance(sampler, str) else sampler
        if self.options.writer is not None:
            self.writer = self.options.writer
        else:
            self.writer = JsonFileWriter(self.options.output_directory, self.application_name)
        self._write = as_write_callable(self.writer)

        self.interceptors: list[BaseInterceptor] = create_interceptors(self.options.interceptors, self.handle_error)
        self.shutdown = AtexitShutdown(self.finalize)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, start_time: float | None = None, options: dict[str, Any] | None = None) -> Collector:
        """Create, start and bind the collector for this request.

        Raises AlreadyInitialized if a live collector is already bound.
        """
        if _live() is not None:
            raise AlreadyInitialized()
        collector = cls(start_time, CollectorOptions.from_config(options))
        try:
            collector._start()
        except Exception:
            collector.discard()
            raise
        _current.set(collector)
        return collector

    @classmethod
    def get_instance(cls) -> Collector:
        """The live collector, or a freshly created default one."""
        current = _live()
        if current is None:
            return cls.create()
        return current

    @classmethod
    def current(cls) -> Collector | None:
        return _live()

    @classmethod
    def clear_instance(cls) -> None:
        """Unbind the live collector without emitting anything."""
        current = _current.get()
        if current is not None:
            current.discard()
        _current.set(None)

    def _start(self) -> None:
        try:
            self.sampler.enable()
        except SamplingUnavailable as e:
            logger.info("Sampling unavailable, continuing without call graph: %s", e)
            self.sampler = NullSampler()
        for interceptor in self.interceptors:
            interceptor.install()
        if self.options.register_shutdown:
            self.shutdown.install()
        logger.debug("Collector %s started for %s", self.transaction_id, self.application_name)

    def _teardown(self) -> None:
        for interceptor in self.interceptors:
            interceptor.uninstall()
        self.shutdown.uninstall()
        if _current.get() is self:
            _current.set(None)

    def discard(self) -> None:
        """Stop collecting and unbind without emitting anything."""
        if self.finalized:
            return
        self.finalized = True
        self.sampler.discard()
        self._teardown()

    def __enter__(self) -> Collector:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc is not None and isinstance(exc, Exception):
            self.capture_exception(exc)
        self.finalize()

    # ------------------------------------------------------------------
    # Setters (chainable, ignored after finalize)
    # ------------------------------------------------------------------

    def set_transaction_id(self, transaction_id: str | None) -> Collector:
        if not self.finalized:
            self.transaction_id = transaction_id
        return self

    def set_name(self, name: str) -> Collector:
        if not self.finalized:
            self.transaction_name = name
        return self

    def set_start_time(self, start_time: float) -> Collector:
        if not self.finalized:
            self.start_time = float(start_time)
        return self

    def set_application_name(self, name: str) -> Collector:
        if not self.finalized:
            self.application_name = name
            if isinstance(self.writer, JsonFileWriter):
                self.writer.application = name
        return self

    def set_metric_filter(self, names: Iterable[str]) -> Collector:
        if not self.finalized:
            self.metric_names = set(names)
        return self

    def add_metric_name(self, name: str) -> Collector:
        if not self.finalized:
            self.metric_names.add(name)
        return self

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def elapsed(self) -> float:
        """Seconds since start_time, computed fresh on every call."""
        return time.time() - self.start_time

    def record_metric(self, key: str, elapsed: float, group: str = DEFAULT_GROUP) -> None:
        if self.finalized:
            return
        metric_group = self.user_metrics.get(group)
        if metric_group is None:
            metric_group = self.user_metrics[group] = MetricGroup()
        metric_group.add(key, elapsed)

    @contextlib.contextmanager
    def measure(self, key: str, group: str = DEFAULT_GROUP) -> Iterator[None]:
        """Time the block with perf_counter and record it as a user metric."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_metric(key, time.perf_counter() - started, group)

    def handle_error(
        self,
        severity: Any,
        message: str,
        file: str,
        line: int,
        backtrace: Sequence[Any] | None = None,
    ) -> bool:
        """Record a runtime fault. Never raises; always reports the fault as handled."""
        try:
            self._add_error(severity, message, file, line, backtrace)
        except Exception as e:
            logger.warning("Failed to record error at %s:%s: %s", file, line, e)
        return True

    def capture_exception(self, exc: BaseException) -> bool:
        file, line, frames = exception_location(exc)
        return self.handle_error(type(exc).__name__, str(exc), file, line, frames)

    def _add_error(self, severity: Any, message: str, file: str, line: int, backtrace: Sequence[Any] | None) -> None:
        if self.finalized:
            return
        key = (file, line)
        existing = self.errors.get(key)
        if existing is not None:
            existing.count += 1
            return
        self.errors[key] = ErrorRecord(
            file=file,
            line=line,
            message=str(message),
            severity=severity,
            backtrace=reduce_backtrace(self._backtrace_frames(backtrace)),
        )
        logger.debug("New error site %s:%s", file, line)

    def _backtrace_frames(self, backtrace: Sequence[Any] | None) -> list[Any]:
        if not self.options.errors_capture_backtrace:
            return []
        if backtrace is None:
            # drop handle_error, _add_error and this frame
            frames: list[Any] = traceback.extract_stack()[:-3]
        else:
            frames = list(backtrace)
        limit = self.options.backtrace_depth_limit
        if limit > 0:
            frames = frames[-limit:]
        return frames

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def should_capture_trace(self, elapsed: float) -> bool:
        return elapsed >= self.trace_trigger_threshold or bool(self.metric_names)

    def _envelope(self, data_type: RecordType) -> dict[str, Any]:
        return {
            "_data_type": data_type.value,
            "host": hostname(),
            "transaction_id": self.transaction_id,
            "application": self.application_name,
        }

    def trace_record(self, samples: Samples, trace_id: str) -> dict[str, Any]:
        record = self._envelope(RecordType.TRACE)
        record["trace_id"] = trace_id
        record["trace"] = samples
        return record

    def profiler_record(self, elapsed: float, samples: Samples, trace_id: str | None) -> dict[str, Any]:
        record = self._envelope(RecordType.PROFILER)
        record.update({
            "transaction_name": self.transaction_name,
            "time": self.start_time,
            "execution_time": elapsed,
            # full dump only when slow; a filter-only trigger keeps it out
            "profiler": samples if elapsed >= self.trace_trigger_threshold else None,
            "metrics": filter_metric_samples(samples, self.metric_names),
            "user_metrics": {k: v.to_dict() for k, v in self.user_metrics.items()},
            "request": current_request_info().to_dict(),
            "error_count": len(self.errors),
            "trace_id": trace_id,
            "resources": process_resources(),
        })
        return record

    def error_record(self, error: ErrorRecord) -> dict[str, Any]:
        record = self._envelope(RecordType.ERROR)
        record.update(error.to_dict())
        return record

    def finalize(self) -> None:
        """Emit trace (if any), profiler and error records once. Later calls do nothing."""
        if self.finalized:
            return
        # set first so faults raised while emitting cannot reach the error table
        self.finalized = True

        elapsed = self.elapsed()
        samples: Samples = {}
        if self.should_capture_trace(elapsed):
            samples = self.sampler.disable_safe()
        else:
            self.sampler.discard()
        trace_id = new_id() if samples else None

        pending: list[tuple[str, Callable[[], dict[str, Any]]]] = []
        if trace_id is not None:
            pending.append(("trace", lambda: self.trace_record(samples, trace_id)))
        pending.append(("profiler", lambda: self.profiler_record(elapsed, samples, trace_id)))
        for error in list(self.errors.values()):
            pending.append(("error", lambda error=error: self.error_record(error)))

        written = 0
        for data_type, build in pending:
            if self._emit(data_type, build):
                written += 1
        self._teardown()
        logger.info(
            "Collector %s finalized in %.3fs: %d/%d records written, %d error sites",
            self.transaction_id, elapsed, written, len(pending), len(self.errors),
        )

    def _emit(self, data_type: str, build: Callable[[], dict[str, Any]]) -> bool:
        try:
            record = build()
        except Exception:
            logger.exception("Failed to assemble %s record", data_type)
            return False
        try:
            self._write(record)
        except Exception as e:
            logger.warning("Writer rejected %s record: %s", data_type, e)
            return False
        return True
