# bayestrt/utils/__init__.py
"""Data preparation and starting values."""
from .data import parse_covars, prepare_panel
from .starting import starting_values

__all__ = [
    "parse_covars",
    "prepare_panel",
    "starting_values",
]
