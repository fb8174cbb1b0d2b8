"""Starting values from ordinary least squares on the raw designs."""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
from scipy.special import ndtri

from bayestrt.core import linalg as la
from bayestrt.estimators.base import StartingValues

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from bayestrt.core.panel import PanelDataset

__all__ = ["starting_values"]


def _one_factor_start(
    data: PanelDataset, resid: NDArray[np.float64], Tmax: int,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Rank-one loadings per arm and factor scores from OLS residuals.

    For each arm the (Tmax x Tmax) covariance of the residual vectors of
    subjects observed in every period is split into its leading eigenpair and
    a noise level (mean of the remaining eigenvalues). The loadings are
    ``sqrt(ev_1 - noise) * v_1``, signed so that they sum to a non-negative
    value, and the uniquenesses ``diag(S) - lambda^2``. Factor scores are the
    posterior means of ``f_i ~ N(0, 1)`` given the subject's residuals. An arm
    with fewer than ``Tmax + 1`` complete subjects (or a single period) keeps
    zero loadings.
    """
    subj = data.subject
    period = data.Tvec - 1
    R = np.full((data.n, Tmax), np.nan)
    R[subj, period] = resid

    lam = np.zeros((2, Tmax))
    psi = np.ones((2, Tmax))
    for a in (0, 1):
        rows = R[data.x == a]
        complete = rows[~np.isnan(rows).any(axis=1)]
        if Tmax < 2 or complete.shape[0] <= Tmax:
            continue
        S = np.atleast_2d(np.cov(complete, rowvar=False))
        vals, vecs = np.linalg.eigh(S)
        noise = float(vals[:-1].mean())
        load = np.sqrt(max(float(vals[-1]) - noise, 0.0)) * vecs[:, -1]
        if load.sum() < 0:
            load = -load
        diag = np.diag(S)
        lam[a] = load
        psi[a] = np.maximum(diag - load**2, 0.01 * diag + np.finfo(float).eps)

    # stacked [lambda_0(1..Tmax), lambda_1(1..Tmax)]
    cell = data.indy1.astype(np.int64) * Tmax + period
    lam_r = lam.reshape(-1)[cell]
    psi_r = psi.reshape(-1)[cell]
    num = np.bincount(subj, weights=lam_r * resid / psi_r, minlength=data.n)
    prec = 1.0 + np.bincount(subj, weights=lam_r**2 / psi_r, minlength=data.n)
    return lam.reshape(-1), num / prec


def starting_values(
    data: PanelDataset, *, Tmax: int | None = None, factor: bool = False,
) -> StartingValues:
    """OLS-based starting coefficients and residual variance.

    ``beta`` is the least-squares fit of ``y`` on ``W`` and ``res_var`` its
    degrees-of-freedom corrected residual variance. ``alpha`` rescales the
    linear-probability fit of ``x`` on ``Wx`` to the probit scale by
    ``1 / phi(Phi^{-1}(p))`` and re-centres the intercept on ``Phi^{-1}(p)``,
    where ``p`` is the treated share. Column 0 of ``Wx`` must be the intercept.

    With ``factor=True`` the residuals are further decomposed into one factor
    per arm (see :func:`_one_factor_start`), and the result carries starting
    loadings for ``Tmax`` periods (default: the data's last period) and
    factor scores. Without them the chain starts from zero loadings and a
    random factor, which short chains may not leave.
    """
    beta, rank = la.qr_solve_stata(data.W, data.y)
    resid = data.y - data.W @ beta
    dof = max(1, data.Tn - rank)
    res_var = max(float(resid @ resid) / dof, np.finfo(float).eps)

    lpm, _ = la.qr_solve_stata(data.Wx, data.x)
    p = float(np.clip(np.mean(data.x), 0.01, 0.99))
    z = float(ndtri(p))
    scale = np.sqrt(2.0 * np.pi) * np.exp(0.5 * z * z)
    alpha = lpm * scale
    if data.Wx.shape[1] > 1:
        xbar = data.Wx[:, 1:].mean(axis=0)
        alpha[0] = z - float(xbar @ alpha[1:])
    else:
        alpha[0] = z
    if not factor:
        return StartingValues(alpha=alpha, beta=beta, res_var=res_var)
    T = data.Tmax if Tmax is None else int(Tmax)
    if T < data.Tmax:
        raise ValueError(f"Tmax={T} is below the last observed period {data.Tmax}.")
    lam, f = _one_factor_start(data, resid, T)
    return StartingValues(alpha=alpha, beta=beta, res_var=res_var, lam=lam, f=f)
