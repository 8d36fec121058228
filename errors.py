"""
Exceptions raised by reqprof.
"""
from __future__ import annotations


class ReqprofError(Exception):
    """Base class for collector errors."""


class AlreadyInitialized(ReqprofError, RuntimeError):
    """A live collector is already bound to this request context."""

    def __init__(self, message: str = "A collector already exists for this request - use Collector.get_instance()") -> None:
        super().__init__(message)


class WriterFailure(ReqprofError, OSError):
    """A writer could not persist a record. Logged by the collector, never re-raised."""


class SamplingUnavailable(ReqprofError):
    """The sampling engine cannot run here. Treated as empty sample data."""
