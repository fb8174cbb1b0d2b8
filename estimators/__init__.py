"""Sampler exports with lazy loading.

Public sampler classes and containers. Uses lazy imports to avoid circular
dependencies with ``bayestrt.utils``.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "BaseSampler",
    "DrawArchive",
    "MCMCConfig",
    "ModelSpec",
    "PriorConfig",
    "SharedFactorModel",
    "StartingValues",
    "run_chain",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseSampler": ("bayestrt.estimators.base", "BaseSampler"),
    "DrawArchive": ("bayestrt.estimators.base", "DrawArchive"),
    "MCMCConfig": ("bayestrt.estimators.base", "MCMCConfig"),
    "ModelSpec": ("bayestrt.estimators.base", "ModelSpec"),
    "PriorConfig": ("bayestrt.estimators.base", "PriorConfig"),
    "StartingValues": ("bayestrt.estimators.base", "StartingValues"),
    "SharedFactorModel": ("bayestrt.estimators.shared_factor", "SharedFactorModel"),
    "run_chain": ("bayestrt.estimators.shared_factor", "run_chain"),
}


def __getattr__(name: str) -> Any:
    """Lazily import sampler classes and shared containers."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'bayestrt.estimators' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Expose lazily loaded attributes to ``dir()``."""
    return sorted(set(globals()) | set(__all__))
