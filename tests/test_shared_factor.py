import dataclasses
import logging

import numpy as np
import pytest

from bayestrt.core.panel import build_panel_index
from bayestrt.estimators.base import DrawArchive, MCMCConfig, ModelSpec, PriorConfig
from bayestrt.estimators.shared_factor import SharedFactorModel, initialize_chain, run_chain
from bayestrt.sim.montecarlo import simulate_shared_factor_panel
from bayestrt.utils.data import prepare_panel
from bayestrt.utils.starting import starting_values

ARRAY_FIELDS = [f.name for f in dataclasses.fields(DrawArchive) if f.type.startswith("NDArray")]

# ---------------------------------------------------------------------
# Initial state
# ---------------------------------------------------------------------

def test_initialize_chain(prepared, rng):
    data, model = prepared
    index = build_panel_index(data.Tvec, model.Tmax, data.indy1, data.Ti)
    start = starting_values(data)
    state = initialize_chain(data, index, model, start, rng)
    assert state.lambdax == 1.0
    assert np.all(state.lam == 0.0)
    assert state.lam.shape == (2 * model.Tmax,)
    assert (state.omega_alpha, state.omega_beta, state.omega_lambda) == (0.5, 0.5, 0.5)
    assert np.all(state.deltax == 1) and np.all(state.deltay == 1)
    assert np.all((state.xstar > 0) == (data.x == 1))
    assert np.all(state.sgma2 == start.res_var)
    assert state.Wf.shape == (data.Tn, 2 * model.Tmax)
    assert np.allclose(state.muy_fix, data.W @ start.beta)


def test_initialize_chain_warm_start(prepared, rng):
    data, model = prepared
    index = build_panel_index(data.Tvec, model.Tmax, data.indy1, data.Ti)
    start = starting_values(data, Tmax=model.Tmax, factor=True)
    state = initialize_chain(data, index, model, start, rng)
    assert np.array_equal(state.lam, start.lam)
    assert np.array_equal(state.f, start.f)
    assert state.lam is not start.lam
    assert np.allclose(state.fcontr, state.Wf @ start.lam)
    assert np.any(state.fcontr != 0.0)

    bad = dataclasses.replace(start, lam=start.lam[:-1])
    with pytest.raises(ValueError, match=r"2 \* Tmax"):
        initialize_chain(data, index, model, bad, rng)

# ---------------------------------------------------------------------
# Archive invariants
# ---------------------------------------------------------------------

@pytest.fixture
def archive(prepared, small_config):
    data, model = prepared
    return run_chain(data, model, config=small_config)


def test_archive_shapes(prepared, archive, small_config):
    data, model = prepared
    nmc = small_config.n_iter
    for name in ARRAY_FIELDS:
        assert getattr(archive, name).shape[0] == nmc, name
    assert archive.deltax.shape == (nmc, model.dx + 1)
    assert archive.beta.shape == (nmc, model.dy)
    assert archive.lam.shape == (nmc, model.Tmax, 2)
    assert archive.delta_lambda.shape == (nmc, 2 * model.Tmax)
    assert archive.sgma2.shape == (nmc, model.Tmax, 2)
    assert archive.f.shape == (nmc, data.n)
    assert archive.xstar.shape == (nmc, data.n)
    # every row written: variances are strictly positive
    assert np.all(archive.sgma2 > 0)
    assert archive.extra["etime"] >= 0.0


def test_utility_sign_every_iteration(prepared, archive):
    data, _ = prepared
    treated = data.x == 1
    assert np.all(archive.xstar[:, treated] > 0)
    assert np.all(archive.xstar[:, ~treated] < 0)


def test_fixed_indicators_stay_included(frames, small_config):
    base, panel, _ = frames
    data, model = prepare_panel(
        base, panel, x_cols=["z"], y_cols=["w"],
        covars={"y_fix": [1], "lambda_fix": [1, 0, 1, 0, 1, 0]},
    )
    archive = run_chain(data, model, config=small_config)
    dy = model.dy
    assert np.all(archive.deltax[:, model.deltax_fix == 1] == 1)
    assert np.all(archive.deltay[:, model.deltay_fix[:dy] == 1] == 1)
    assert np.all(archive.delta_lambda[:, model.deltay_fix[dy:] == 1] == 1)


def test_mixture_weights_in_unit_interval(archive, small_config):
    for name in ("omega_alpha", "omega_beta", "omega_lambda"):
        w = getattr(archive, name)
        assert np.all((w > 0) & (w < 1)), name
        # initial weight until selection starts
        assert np.all(w[: small_config.start_select] == 0.5)


def test_alpha_probit_standardization(archive):
    expected = archive.alpha / np.sqrt(archive.lambdax[:, None] ** 2 + 1.0)
    assert np.allclose(archive.alpha_probit, expected)


def test_fix_sigma_idempotent(prepared):
    data, model = prepared
    start = starting_values(data)
    cfg = MCMCConfig(burnin=10, draws=15, start_select=5, fix_sigma=True, seed=2)
    archive = run_chain(data, model, config=cfg, start=start)
    assert np.all(archive.sgma2 == start.res_var)


def test_deterministic_replay(prepared, small_config):
    data, model = prepared
    a1 = run_chain(data, model, config=small_config)
    a2 = run_chain(data, model, config=small_config)
    for name in ARRAY_FIELDS:
        assert np.array_equal(getattr(a1, name), getattr(a2, name)), name


def test_different_seeds_differ(prepared):
    data, model = prepared
    a1 = run_chain(data, model, config=MCMCConfig(burnin=5, draws=5, start_select=2, seed=1))
    a2 = run_chain(data, model, config=MCMCConfig(burnin=5, draws=5, start_select=2, seed=2))
    assert not np.array_equal(a1.xstar, a2.xstar)


def test_all_freeze_keeps_indicators_at_one(prepared):
    data, model = prepared
    start = starting_values(data)
    cfg = MCMCConfig(
        burnin=10, draws=20, start_select=5, seed=4,
        fix_sigma=True, fix_f=True, fix_alpha=True, fix_beta=True,
    )
    archive = run_chain(data, model, config=cfg, start=start)
    assert np.all(archive.deltax == 1)
    assert np.all(archive.deltay == 1)
    assert np.all(archive.delta_lambda == 1)
    assert np.all(archive.beta == start.beta)
    assert np.all(archive.alpha == start.alpha)
    assert np.all(archive.f == archive.f[0])


def test_sign_switch_flag(prepared):
    data, model = prepared
    base = dict(burnin=20, draws=20, start_select=40, fix_alpha=True, seed=6)
    on = run_chain(data, model, config=MCMCConfig(**base))
    off = run_chain(data, model, config=MCMCConfig(sign_switch=False, **base))
    assert set(np.unique(on.lambdax)) == {-1.0, 1.0}
    assert set(np.unique(on.sign)) == {-1.0, 1.0}
    # frozen selection loading: each row carries the product of the signs so far
    assert np.array_equal(on.lambdax, np.cumprod(on.sign))
    assert np.all(off.lambdax == 1.0)
    assert np.all(off.sign == 1.0)


def test_progress_logging(prepared, caplog):
    data, model = prepared
    cfg = MCMCConfig(burnin=6, draws=6, start_select=4, log_every=3, seed=0)
    with caplog.at_level(logging.DEBUG, logger="bayestrt.estimators.shared_factor"):
        run_chain(data, model, config=cfg)
    text = caplog.text
    assert "Starting selection of covariates at iteration 4" in text
    assert "End of burn-in phase at iteration 6" in text
    assert "Iteration 9 of 12 reached" in text
    assert "MCMC finished" in text
    assert "iter 3:" in text

# ---------------------------------------------------------------------
# Selection scenario
# ---------------------------------------------------------------------

def test_loading_selection_scenario():
    """Zero loading in period 1, loading 2 in period 2, both arms.

    With one non-zero period the outcomes alone identify only
    lambda_t2^2 + sigma2_t2, so the chain starts from the one-factor
    decomposition of the OLS residuals instead of zero loadings.
    """
    zero, nonzero = [], []
    for seed in (101, 202, 303):
        base, panel, _ = simulate_shared_factor_panel(
            n=20, Tmax=2, lam0=[0.0, 2.0], lam1=[0.0, 2.0], sigma2=0.05, seed=seed,
        )
        data, model = prepare_panel(
            base, panel, x_cols=["z"], y_cols=["w"], covars={"lambda_fix": [0, 0, 0, 0]},
        )
        cfg = MCMCConfig(burnin=50, draws=200, start_select=100, seed=seed)
        start = starting_values(data, Tmax=model.Tmax, factor=True)
        archive = run_chain(data, model, config=cfg, start=start)
        freq = archive.delta_lambda[cfg.start_select:].mean(axis=0)
        # columns: lambda0_t1, lambda0_t2, lambda1_t1, lambda1_t2
        zero.append(freq[[0, 2]].mean())
        nonzero.append(freq[[1, 3]].mean())
    assert np.mean(zero) < 0.2
    assert np.mean(nonzero) > 0.8

# ---------------------------------------------------------------------
# Sampler class
# ---------------------------------------------------------------------

def test_model_requires_fit(prepared):
    data, model = prepared
    sampler = SharedFactorModel(data, model)
    with pytest.raises(RuntimeError, match="not been fitted"):
        _ = sampler.results


def test_model_dimension_mismatch(prepared):
    data, model = prepared
    wrong = ModelSpec.default(dx=3, dy=model.dy, Tmax=model.Tmax)
    with pytest.raises(ValueError, match="Design widths"):
        SharedFactorModel(data, wrong)
    short = ModelSpec.default(dx=model.dx, dy=model.dy, Tmax=model.Tmax - 1)
    with pytest.raises(ValueError, match="beyond model Tmax"):
        SharedFactorModel(data, short)


def test_from_frames_fit(frames, small_config):
    base, panel, _ = frames
    sampler = SharedFactorModel.from_frames(
        base, panel, x_cols=["z"], y_cols=["w"], config=small_config,
        prior=PriorConfig(var_sel=2.0),
    )
    archive = sampler.fit()
    assert sampler.results is archive
    assert archive.model.y_names == ["_cons", "w", "treat", "treat:w"]
    assert archive.n_iter == small_config.n_iter


def test_fit_chains_sequential_and_parallel(prepared):
    data, model = prepared
    cfg = MCMCConfig(burnin=5, draws=10, start_select=3, seed=21)
    sampler = SharedFactorModel(data, model, config=cfg)
    seq = sampler.fit_chains(n_chains=2, n_jobs=1)
    assert len(seq) == 2
    assert not np.array_equal(seq[0].beta, seq[1].beta)
    assert sampler.results is seq[0]

    par = sampler.fit_chains(n_chains=2, n_jobs=2)
    for a, b in zip(seq, par):
        assert np.array_equal(a.beta, b.beta)
        assert np.array_equal(a.f, b.f)

    with pytest.raises(ValueError, match="n_chains"):
        sampler.fit_chains(n_chains=0)

# ---------------------------------------------------------------------
# Configuration containers
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    "kwargs",
    [
        {"burnin": -1},
        {"draws": 1.5},
        {"start_select": True},
        {"burnin": 0, "draws": 0},
        {"log_every": 0},
    ],
)
def test_mcmc_config_validation(kwargs):
    with pytest.raises(ValueError):
        MCMCConfig(**kwargs)


def test_prior_build(prepared):
    _, model = prepared
    prior = PriorConfig().build(model)
    assert prior.invA0.shape == (model.dx + 1,)
    assert prior.invB0.shape == (model.dyall,)
    assert prior.invB0[0] == 0.001
    assert np.allclose(prior.invA0, [0.2, 0.2, 1.0])
    assert prior.s0.shape == (model.Tmax, 2)
    with pytest.raises(ValueError, match="var_sel"):
        PriorConfig(var_sel=0.0).build(model)
    with pytest.raises(ValueError, match="non-negative"):
        PriorConfig(s0=-1.0).build(model)


def test_model_spec_validation():
    with pytest.raises(ValueError, match="deltay_fix"):
        ModelSpec(dx=2, dy=2, Tmax=2, deltax_fix=[1, 0, 1], deltay_fix=[1, 0])
    spec = ModelSpec.default(2, 3, 2)
    assert spec.deltax_fix.tolist() == [1, 0, 1]
    assert spec.deltay_fix.tolist() == [1, 0, 0, 1, 1, 1, 1]
    assert spec.lambda_names == ["lambda0_t1", "lambda0_t2", "lambda1_t1", "lambda1_t2"]


def test_archive_as_frame(archive, small_config):
    frame = archive.as_frame("beta")
    assert frame.index[0] == 1 and frame.index.name == "iteration"
    assert list(frame.columns) == archive.model.y_names
    kept = archive.as_frame("beta", discard_burnin=True)
    assert len(kept) == small_config.draws
    assert np.array_equal(kept.to_numpy(), archive.kept("beta"))
    assert list(archive.as_frame("lambdax").columns) == ["lambdax"]
    with pytest.raises(ValueError, match="Unknown archive field"):
        archive.as_frame("nope")
