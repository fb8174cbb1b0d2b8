# bayestrt/output/__init__.py
"""Posterior summaries of sampler output."""
from .summary import (
    coef_summary,
    gelman_rubin,
    inclusion_probabilities,
    normalize_ci_level,
    treatment_effects,
)

__all__ = [
    "coef_summary",
    "gelman_rubin",
    "inclusion_probabilities",
    "normalize_ci_level",
    "treatment_effects",
]
