"""
cProfile-backed sampler: aggregates per call edge (caller==>callee).
"""
from __future__ import annotations

import cProfile
from typing import Any

from config import EDGE_SEPARATOR, MICROS_PER_SECOND
from errors import SamplingUnavailable
from samplers.base import BaseSampler, Samples

ROOT_LABEL = "main()"


def function_label(code: Any) -> str:
    """Readable name for a profiled function: qualname for Python code, bare name for builtins."""
    if isinstance(code, str):
        # "<built-in method time.sleep>", "<method 'append' of 'list' objects>"
        label = code.strip("<>")
        for prefix in ("built-in method ", "built-in function "):
            if label.startswith(prefix):
                return label[len(prefix):]
        return label
    return getattr(code, "co_qualname", code.co_name)


def edge_label(caller: str, callee: str) -> str:
    return f"{caller}{EDGE_SEPARATOR}{callee}"


def _add(samples: Samples, key: str, calls: int, seconds: float) -> None:
    entry = samples.setdefault(key, {"ct": 0, "wt": 0})
    entry["ct"] += calls
    entry["wt"] += int(round(seconds * MICROS_PER_SECOND))


class CProfileSampler(BaseSampler):
    name = "cprofile"

    def __init__(self) -> None:
        self._profile: cProfile.Profile | None = None

    def enable(self) -> None:
        profile = cProfile.Profile()
        try:
            profile.enable()
        except ValueError as e:
            # another profiler (or sys.monitoring tool) already owns the hook
            raise SamplingUnavailable(str(e)) from e
        self._profile = profile

    def disable(self) -> Samples:
        if self._profile is None:
            return {}
        profile, self._profile = self._profile, None
        profile.disable()
        return self.aggregate(profile.getstats())

    def discard(self) -> None:
        if self._profile is not None:
            profile, self._profile = self._profile, None
            profile.disable()

    @staticmethod
    def aggregate(stats: list[Any]) -> Samples:
        """Fold lsprof entries into edge samples; functions with no profiled caller hang off main()."""
        samples: Samples = {}
        called: set[Any] = set()
        for entry in stats:
            caller = function_label(entry.code)
            for sub in entry.calls or ():
                called.add(sub.code)
                _add(samples, edge_label(caller, function_label(sub.code)), sub.callcount, sub.totaltime)
        root_time = 0.0
        for entry in stats:
            if entry.code in called:
                continue
            root_time += entry.totaltime
            _add(samples, edge_label(ROOT_LABEL, function_label(entry.code)), entry.callcount, entry.totaltime)
        if samples:
            _add(samples, ROOT_LABEL, 1, root_time)
        return samples
