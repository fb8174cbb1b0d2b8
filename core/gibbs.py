"""Conditional draws for the variance, shared-factor and latent-utility steps.

All functions take an explicit ``numpy.random.Generator`` and draw from it in a
fixed order, so that a chain replays bit-identically from the same seed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from scipy.special import ndtr, ndtri

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from bayestrt.core.panel import PanelIndex

__all__ = [
    "draw_error_variance",
    "draw_shared_factor",
    "draw_utility",
    "invgamma_rvs",
    "truncnorm_sign",
]

LOGGER = logging.getLogger(__name__)

_TINY = np.finfo(np.float64).tiny


def truncnorm_sign(
    mu: NDArray[np.float64], positive: NDArray[np.bool_], rng: np.random.Generator,
) -> NDArray[np.float64]:
    """Draw N(mu, 1) truncated to (0, inf) where ``positive`` else (-inf, 0].

    Inverse-CDF sampling on the tail that contains the truncation region:
    for the negative side ``mu + Phi^{-1}(u * Phi(-mu))``, mirrored for the
    positive side. Draws are clipped away from zero so the sign always matches.
    """
    mu = np.asarray(mu, dtype=np.float64).reshape(-1)
    pos = np.asarray(positive, dtype=bool).reshape(-1)
    # reflect the positive side onto the negative one
    m = np.where(pos, -mu, mu)
    p = ndtr(-m)
    u = rng.random(mu.shape[0])
    q = np.clip(u * p, _TINY, None)
    z = m + ndtri(q)
    z = np.minimum(z, -_TINY)
    return np.where(pos, -z, z)


def invgamma_rvs(
    shape: NDArray[np.float64], scale: NDArray[np.float64], rng: np.random.Generator,
) -> NDArray[np.float64]:
    """Sample InvGamma(shape, scale) elementwise as ``scale / Gamma(shape, 1)``."""
    shape = np.asarray(shape, dtype=np.float64)
    scale = np.asarray(scale, dtype=np.float64)
    g = rng.gamma(shape=shape, scale=1.0)
    with np.errstate(divide="ignore", invalid="ignore"):
        return scale / g


def draw_error_variance(
    eps2: NDArray[np.float64],
    index: PanelIndex,
    sn: NDArray[np.float64],
    S0: NDArray[np.float64],
    sgma2: NDArray[np.float64],
    rng: np.random.Generator,
    *,
    fix_sigma: bool = False,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Draw the idiosyncratic variances of every (period, arm) cell.

    Parameters
    ----------
    eps2 : ndarray, shape (Tn,)
        Squared outcome residuals net of the fixed-covariate mean and the
        factor contribution.
    index : PanelIndex
        Record to (period, arm) mapping.
    sn : ndarray, shape (Tmax, 2)
        Posterior shapes from :func:`bayestrt.core.panel.posterior_shape`.
    S0 : ndarray, shape (Tmax, 2)
        Prior scales.
    sgma2 : ndarray, shape (Tmax, 2)
        Current variances, returned unchanged when ``fix_sigma`` is set.

    Returns
    -------
    (sgma2, var_yt)
        The new (Tmax, 2) variances and the per-record variance lookup.
    """
    current = np.asarray(sgma2, dtype=np.float64)
    if fix_sigma:
        new = current.copy()
    else:
        Tmax = index.Tmax
        ssr = np.bincount(
            index.cell, weights=np.asarray(eps2, dtype=np.float64), minlength=2 * Tmax,
        )
        # cell layout is arm-major; bring it back to (Tmax, 2)
        ssr = ssr.reshape(2, Tmax).T
        S0b = np.broadcast_to(np.asarray(S0, dtype=np.float64), current.shape)
        new = invgamma_rvs(sn, S0b + 0.5 * ssr, rng)
        # An empty cell draws from the prior; an improper prior cannot be sampled.
        bad = ~np.isfinite(new) | (new <= 0.0)
        if np.any(bad):
            LOGGER.debug(
                "Keeping current variance for %d empty cell(s) with improper prior.",
                int(bad.sum()),
            )
            new = np.where(bad, current, new)
    return new, index.scatter(new)


def draw_shared_factor(  # noqa: PLR0913
    resx: NDArray[np.float64],
    lambdax: float,
    resy: NDArray[np.float64],
    sgma2: NDArray[np.float64],
    lam: NDArray[np.float64],
    index: PanelIndex,
    f: NDArray[np.float64],
    rng: np.random.Generator,
    *,
    fix_f: bool = False,
) -> NDArray[np.float64]:
    """Draw the subject-level factor from its conjugate Normal posterior.

    With prior f_i ~ N(0, 1), selection residual ``resx_i = xstar_i - Wx_i alpha``
    and outcome residuals ``resy_it = y_it - W_it beta``::

        prec_i = 1 + lambdax^2 + sum_t lambda_{t,a}^2 / sigma2_{t,a}
        mean_i = (lambdax resx_i + sum_t lambda_{t,a} resy_it / sigma2_{t,a}) / prec_i
    """
    if fix_f:
        return np.array(f, dtype=np.float64, copy=True)
    n = int(np.asarray(resx).shape[0])
    lam_r = np.asarray(lam, dtype=np.float64).reshape(-1)[index.cell]
    inv_var = 1.0 / index.scatter(sgma2)
    prec = 1.0 + lambdax**2 + np.bincount(
        index.subject, weights=lam_r**2 * inv_var, minlength=n,
    )
    num = lambdax * np.asarray(resx, dtype=np.float64) + np.bincount(
        index.subject, weights=lam_r * np.asarray(resy, dtype=np.float64) * inv_var, minlength=n,
    )
    return num / prec + rng.standard_normal(n) / np.sqrt(prec)


def draw_utility(
    x: NDArray[np.float64], mu: NDArray[np.float64], rng: np.random.Generator,
) -> NDArray[np.float64]:
    """Probit data augmentation: N(mu, 1) truncated to the side given by x."""
    return truncnorm_sign(mu, np.asarray(x).reshape(-1) == 1, rng)
