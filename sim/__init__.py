"""Synthetic data for tests and demonstrations."""
from .montecarlo import simulate_shared_factor_panel

__all__ = ["simulate_shared_factor_panel"]
