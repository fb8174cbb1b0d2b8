"""bayestrt: Bayesian treatment effects with a shared latent factor.

This package estimates a probit treatment-selection equation jointly with
per-period outcome regressions linked by one latent factor per subject,
with stochastic search variable selection on covariates and loadings.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "DrawArchive",
    "MCMCConfig",
    "ModelSpec",
    "PriorConfig",
    "SharedFactorModel",
    "StartingValues",
    "coef_summary",
    "gelman_rubin",
    "inclusion_probabilities",
    "prepare_panel",
    "run_chain",
    "simulate_shared_factor_panel",
    "treatment_effects",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "DrawArchive": ("bayestrt.estimators.base", "DrawArchive"),
    "MCMCConfig": ("bayestrt.estimators.base", "MCMCConfig"),
    "ModelSpec": ("bayestrt.estimators.base", "ModelSpec"),
    "PriorConfig": ("bayestrt.estimators.base", "PriorConfig"),
    "StartingValues": ("bayestrt.estimators.base", "StartingValues"),
    "SharedFactorModel": ("bayestrt.estimators.shared_factor", "SharedFactorModel"),
    "run_chain": ("bayestrt.estimators.shared_factor", "run_chain"),
    "prepare_panel": ("bayestrt.utils.data", "prepare_panel"),
    "coef_summary": ("bayestrt.output.summary", "coef_summary"),
    "gelman_rubin": ("bayestrt.output.summary", "gelman_rubin"),
    "inclusion_probabilities": ("bayestrt.output.summary", "inclusion_probabilities"),
    "treatment_effects": ("bayestrt.output.summary", "treatment_effects"),
    "simulate_shared_factor_panel": ("bayestrt.sim.montecarlo", "simulate_shared_factor_panel"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public samplers and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'bayestrt' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
