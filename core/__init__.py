# bayestrt/core/__init__.py
"""Core numerical modules for bayestrt."""
from . import gibbs, linalg, panel, ssvs

__all__ = ["gibbs", "linalg", "panel", "ssvs"]
