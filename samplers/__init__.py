"""
Samplers package: pluggable call-graph sampling engines.
"""
from __future__ import annotations

from samplers.base import BaseSampler, NullSampler, Samples
from samplers.cprofile_sampler import CProfileSampler

__all__ = [
    "BaseSampler",
    "NullSampler",
    "Samples",
    "CProfileSampler",
    "create_sampler",
]


def create_sampler(name: str) -> BaseSampler:
    """Build a sampler by config name ('cprofile' or 'none')."""
    if name == "cprofile":
        return CProfileSampler()
    if name in ("none", "null", ""):
        return NullSampler()
    raise ValueError(f"Unknown sampler: {name!r}")
