"""
Base sampler interface: call-graph sampling engines implement this.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from errors import SamplingUnavailable
from utils import get_logger

logger = get_logger(__name__)

# edge label ("caller==>callee") -> {"ct": calls, "wt": wall time in microseconds, ...}
Samples = dict[str, dict[str, Any]]


class BaseSampler(ABC):
    """Abstract base for call-graph sampling engines."""

    name: str = "base"

    @abstractmethod
    def enable(self) -> None:
        """Start accumulating samples. Raise SamplingUnavailable if the engine cannot run."""
        ...

    @abstractmethod
    def disable(self) -> Samples:
        """Stop sampling and return accumulated samples ({} if never enabled)."""
        ...

    def discard(self) -> None:
        """Stop sampling without collecting. Used when the request did not need a trace."""

    def disable_safe(self) -> Samples:
        """Wrapper that treats any engine failure as empty sample data."""
        try:
            return self.disable() or {}
        except SamplingUnavailable as e:
            logger.info("Sampler %s unavailable: %s", self.name, e)
        except Exception as e:
            logger.warning("Sampler %s failed on disable: %s", self.name, e)
        return {}


class NullSampler(BaseSampler):
    """Engine used when sampling is switched off or unavailable."""

    name = "null"

    def enable(self) -> None:
        pass

    def disable(self) -> Samples:
        return {}
