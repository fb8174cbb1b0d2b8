from __future__ import annotations

import numpy as np
import pytest

from bayestrt.estimators.base import MCMCConfig
from bayestrt.sim.montecarlo import simulate_shared_factor_panel
from bayestrt.utils.data import prepare_panel

# ---------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def frames():
    base, panel, truth = simulate_shared_factor_panel(n=40, Tmax=3, seed=7)
    return base, panel, truth


@pytest.fixture
def prepared(frames):
    base, panel, _ = frames
    return prepare_panel(base, panel, x_cols=["z"], y_cols=["w"])


@pytest.fixture
def small_config():
    return MCMCConfig(burnin=20, draws=30, start_select=10, seed=11)
