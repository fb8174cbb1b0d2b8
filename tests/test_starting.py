import numpy as np
import pytest
from scipy.special import ndtri

from bayestrt.sim.montecarlo import simulate_shared_factor_panel
from bayestrt.utils.data import prepare_panel
from bayestrt.utils.starting import starting_values


def test_starting_values_ols(prepared):
    data, _ = prepared
    start = starting_values(data)
    beta_ref, *_ = np.linalg.lstsq(data.W, data.y, rcond=None)
    assert np.allclose(start.beta, beta_ref)
    resid = data.y - data.W @ beta_ref
    assert np.isclose(start.res_var, resid @ resid / (data.Tn - data.W.shape[1]))


def test_starting_values_probit_scale(prepared):
    data, _ = prepared
    start = starting_values(data)
    p = data.x.mean()
    z = ndtri(p)
    lpm, *_ = np.linalg.lstsq(data.Wx, data.x, rcond=None)
    slope = lpm[1] * np.sqrt(2 * np.pi) * np.exp(0.5 * z * z)
    assert np.isclose(start.alpha[1], slope)
    assert np.isclose(start.alpha[0], z - data.Wx[:, 1].mean() * slope)
    # probit index at the covariate mean reproduces the treated share
    assert np.isclose(start.alpha[0] + data.Wx[:, 1].mean() * start.alpha[1], z)


def test_starting_values_rank_deficient(prepared):
    data, _ = prepared
    data.W = np.column_stack([data.W, data.W[:, 1]])
    start = starting_values(data)
    assert start.beta.shape == (data.W.shape[1],)
    assert np.sum(start.beta == 0.0) >= 1
    assert start.res_var > 0


# ---------------------------------------------------------------------
# One-factor warm start
# ---------------------------------------------------------------------

@pytest.fixture
def factor_panel():
    lam0, lam1 = [0.0, 1.0, 2.0], [0.5, 1.5, 2.5]
    base, panel, truth = simulate_shared_factor_panel(
        n=300, Tmax=3, lam0=lam0, lam1=lam1, sigma2=0.1, seed=4,
    )
    data, model = prepare_panel(base, panel, x_cols=["z"], y_cols=["w"])
    return data, model, truth


def test_starting_values_one_factor_loadings(factor_panel):
    data, model, truth = factor_panel
    start = starting_values(data, Tmax=model.Tmax, factor=True)
    assert start.lam.shape == (2 * model.Tmax,)
    # within-arm factor variance is below one under selection, so the
    # loadings are recovered up to a common shrinkage
    for arm in (0, 1):
        est = start.lam[arm * model.Tmax:(arm + 1) * model.Tmax]
        assert np.corrcoef(est, truth["lam"][:, arm])[0, 1] > 0.95
        assert np.all(est <= truth["lam"][:, arm] + 0.2)
    assert start.lam[model.Tmax + 2] > 1.5


def test_starting_values_one_factor_scores(factor_panel):
    data, _, truth = factor_panel
    start = starting_values(data, factor=True)
    f_true = truth["f"][data.ids - 1]
    assert start.f.shape == (data.n,)
    for arm in (0.0, 1.0):
        sel = data.x == arm
        assert np.corrcoef(start.f[sel], f_true[sel])[0, 1] > 0.9
    # without the factor option no loadings or scores are produced
    plain = starting_values(data)
    assert plain.lam is None and plain.f is None


def test_starting_values_one_factor_single_period():
    base, panel, _ = simulate_shared_factor_panel(n=30, Tmax=1, seed=2)
    data, _ = prepare_panel(base, panel, x_cols=["z"], y_cols=["w"])
    start = starting_values(data, factor=True)
    assert np.all(start.lam == 0.0)
    assert np.all(start.f == 0.0)
    with pytest.raises(ValueError, match="below the last observed period"):
        starting_values(data, Tmax=0, factor=True)
