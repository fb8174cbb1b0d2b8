"""Stochastic search variable selection for conjugate Gaussian regressions.

A single regression routine parameterised by a boolean inclusion mask serves
both the treatment-selection equation (unit error variance) and the outcome
equation (per-record variances). Excluded coefficients are exactly zero; for
included ones the prior is N(0, diag(1 / inv_prior)).

For known error variances the marginal likelihood of an indicator pattern
``delta`` is, up to a constant,

    log p(y | delta) = 0.5 * sum(log inv_prior_delta) - 0.5 * log|P_delta|
                       + 0.5 * c_delta' P_delta^{-1} c_delta

with ``P_delta = X_delta' W X_delta + diag(inv_prior_delta)`` and
``c_delta = X_delta' W y``. Only the Gram matrix ``X' W X`` and ``X' W y`` of the
full design are formed; patterns are handled through index lists.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import expit

from bayestrt.core import linalg as la

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "OutcomeDraw",
    "TreatmentDraw",
    "draw_coefficients",
    "log_marginal",
    "select_outcome",
    "select_regression",
    "select_treatment",
    "sign_switch",
    "sweep_indicators",
    "update_mixture_weights",
]


def log_marginal(
    G: NDArray[np.float64],
    c: NDArray[np.float64],
    inv_prior: NDArray[np.float64],
    delta: NDArray,
) -> float:
    """Log marginal likelihood (up to a constant) of the pattern ``delta``."""
    idx = np.flatnonzero(delta)
    if idx.size == 0:
        return 0.0
    P = G[np.ix_(idx, idx)] + np.diag(inv_prior[idx])
    L = la.safe_cholesky(P)
    v = la.triangular_solve(L, c[idx])
    return float(
        0.5 * np.sum(np.log(inv_prior[idx])) - 0.5 * la.logdet_chol(L) + 0.5 * (v @ v),
    )


def draw_coefficients(
    G: NDArray[np.float64],
    c: NDArray[np.float64],
    inv_prior: NDArray[np.float64],
    delta: NDArray,
    rng: np.random.Generator,
) -> NDArray[np.float64]:
    """Draw coefficients from N(P^{-1} c, P^{-1}) on the included positions."""
    coef = np.zeros(G.shape[0], dtype=np.float64)
    idx = np.flatnonzero(delta)
    if idx.size == 0:
        return coef
    P = G[np.ix_(idx, idx)] + np.diag(inv_prior[idx])
    L = la.safe_cholesky(P)
    mean = la.chol_solve(L, c[idx])
    z = rng.standard_normal(idx.size)
    coef[idx] = mean + la.triangular_solve(L, z, trans=True)
    return coef


def sweep_indicators(  # noqa: PLR0913
    G: NDArray[np.float64],
    c: NDArray[np.float64],
    inv_prior: NDArray[np.float64],
    delta: NDArray,
    free: NDArray[np.bool_],
    omega: NDArray[np.float64],
    rng: np.random.Generator,
) -> NDArray[np.int64]:
    """One Gibbs sweep over the free indicators in random order.

    Each indicator is drawn from its full conditional given all others:
    ``P(delta_j = 1) = expit(log BF_j + logit(omega_j))`` where ``BF_j`` is the
    ratio of marginal likelihoods with ``delta_j`` set to 1 and to 0.
    """
    delta = np.asarray(delta, dtype=np.int64).copy()
    omega = np.broadcast_to(np.asarray(omega, dtype=np.float64), delta.shape)
    for j in rng.permutation(np.flatnonzero(free)):
        delta[j] = 1
        ml1 = log_marginal(G, c, inv_prior, delta)
        delta[j] = 0
        ml0 = log_marginal(G, c, inv_prior, delta)
        log_odds = ml1 - ml0 + np.log(omega[j]) - np.log1p(-omega[j])
        delta[j] = int(rng.random() < expit(log_odds))
    return delta


def select_regression(  # noqa: PLR0913
    y: NDArray[np.float64],
    X: NDArray[np.float64],
    delta: NDArray,
    fixed: NDArray,
    omega: NDArray[np.float64] | float,
    inv_prior: NDArray[np.float64],
    rng: np.random.Generator,
    *,
    weights: NDArray[np.float64] | None = None,
    select: bool = False,
    freeze: bool = False,
    current: NDArray[np.float64] | None = None,
) -> tuple[NDArray[np.int64], NDArray[np.float64]]:
    """Indicator sweep followed by the joint coefficient draw.

    Parameters
    ----------
    y, X : response and full design.
    delta : current inclusion indicators (fixed positions must be 1).
    fixed : 1 where the covariate is not subject to selection.
    omega : inclusion probability, scalar or per position.
    inv_prior : prior precisions of the coefficients.
    weights : inverse error variances per observation (None for unit variance).
    select : run the indicator sweep (selection active).
    freeze : keep ``current`` coefficients and force all indicators to one.

    Returns
    -------
    (delta, coef)
    """
    k = X.shape[1]
    if freeze:
        coef = np.zeros(k) if current is None else np.array(current, dtype=np.float64, copy=True)
        return np.ones(k, dtype=np.int64), coef
    fixed_b = np.asarray(fixed).astype(bool)
    delta = np.asarray(delta, dtype=np.int64).copy()
    delta[fixed_b] = 1
    inv_prior = np.asarray(inv_prior, dtype=np.float64)
    G = la.gram(X, weights)
    c = la.xty(X, y, weights)
    free = ~fixed_b
    if select and np.any(free):
        delta = sweep_indicators(G, c, inv_prior, delta, free, omega, rng)
    return delta, draw_coefficients(G, c, inv_prior, delta, rng)


@dataclass(frozen=True)
class TreatmentDraw:
    delta: NDArray[np.int64]
    alpha: NDArray[np.float64]
    lambdax: float

    @property
    def coef(self) -> NDArray[np.float64]:
        return np.append(self.alpha, self.lambdax)


def select_treatment(  # noqa: PLR0913
    xstar: NDArray[np.float64],
    Wx: NDArray[np.float64],
    f: NDArray[np.float64],
    delta: NDArray,
    fixed: NDArray,
    omega: float,
    invA0: NDArray[np.float64],
    rng: np.random.Generator,
    *,
    select: bool = False,
    freeze: bool = False,
    current: NDArray[np.float64] | None = None,
) -> TreatmentDraw:
    """Selection and coefficient draw for the probit treatment equation.

    The design is ``[Wx, f]``; the last coefficient is the factor loading of
    the selection equation. The latent utility has unit error variance.
    """
    X = np.column_stack([Wx, f])
    new_delta, coef = select_regression(
        xstar, X, delta, fixed, omega, invA0, rng,
        select=select, freeze=freeze, current=current,
    )
    return TreatmentDraw(delta=new_delta, alpha=coef[:-1], lambdax=float(coef[-1]))


@dataclass(frozen=True)
class OutcomeDraw:
    delta: NDArray[np.int64]
    beta: NDArray[np.float64]
    lam: NDArray[np.float64]

    @property
    def coef(self) -> NDArray[np.float64]:
        return np.concatenate([self.beta, self.lam])


def select_outcome(  # noqa: PLR0913
    y: NDArray[np.float64],
    W: NDArray[np.float64],
    Wf: NDArray[np.float64],
    var_yt: NDArray[np.float64],
    delta: NDArray,
    fixed: NDArray,
    omega_beta: float,
    omega_lambda: float,
    invB0: NDArray[np.float64],
    rng: np.random.Generator,
    *,
    select: bool = False,
    freeze: bool = False,
    current: NDArray[np.float64] | None = None,
) -> OutcomeDraw:
    """Selection and coefficient draw for the outcome equations.

    The design is ``[W, Wf]`` with the 2 * Tmax factor-loading columns last;
    observations are weighted by their inverse idiosyncratic variance.
    Covariate positions use ``omega_beta`` and loading positions ``omega_lambda``.
    """
    dy = W.shape[1]
    X = np.hstack([W, Wf])
    omega = np.concatenate([
        np.full(dy, float(omega_beta)),
        np.full(Wf.shape[1], float(omega_lambda)),
    ])
    new_delta, coef = select_regression(
        y, X, delta, fixed, omega, invB0, rng,
        weights=1.0 / np.asarray(var_yt, dtype=np.float64),
        select=select, freeze=freeze, current=current,
    )
    return OutcomeDraw(delta=new_delta, beta=coef[:dy], lam=coef[dy:])


def sign_switch(
    lam: NDArray[np.float64], lambdax: float, rng: np.random.Generator,
) -> tuple[NDArray[np.float64], float, float]:
    """Flip the sign of every factor loading with probability 1/2.

    Returns the new loadings, the new selection loading and the applied sign.
    The factor itself is left untouched; it is redrawn at the next iteration.
    """
    rs = -1.0 if rng.random() < 0.5 else 1.0
    return np.asarray(lam, dtype=np.float64) * rs, float(lambdax) * rs, rs


def _beta_update(
    delta: NDArray, fixed: NDArray, a: float, b: float, rng: np.random.Generator,
) -> float:
    free = ~np.asarray(fixed).astype(bool)
    n_free = int(free.sum())
    n_in = int(np.sum(np.asarray(delta)[free] == 1))
    return float(rng.beta(a + n_in, b + n_free - n_in))


def update_mixture_weights(  # noqa: PLR0913
    deltax: NDArray,
    fixed_x: NDArray,
    deltay: NDArray,
    fixed_y: NDArray,
    dy: int,
    prior_ab: tuple[float, float, float, float, float, float],
    rng: np.random.Generator,
) -> tuple[float, float, float]:
    """Redraw (omega_alpha, omega_beta, omega_lambda) from their Beta posteriors.

    ``prior_ab`` is ``(ax, bx, ay, by, al, bl)``; each block counts its
    included free indicators against its number of free indicators.
    """
    ax, bx, ay, by, al, bl = prior_ab
    deltay = np.asarray(deltay)
    fixed_y = np.asarray(fixed_y)
    omega_alpha = _beta_update(deltax, fixed_x, ax, bx, rng)
    omega_beta = _beta_update(deltay[:dy], fixed_y[:dy], ay, by, rng)
    omega_lambda = _beta_update(deltay[dy:], fixed_y[dy:], al, bl, rng)
    return omega_alpha, omega_beta, omega_lambda
