"""Synthetic shared-factor panels.

Provides small-sample data generation for the sampler tests and the demo.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

__all__ = ["simulate_shared_factor_panel"]


def simulate_shared_factor_panel(  # noqa: PLR0913
    n: int = 200,
    Tmax: int = 3,
    *,
    alpha=(0.0, 1.0),
    beta=(1.0, 0.5, 1.0, 0.0),
    lam0=None,
    lam1=None,
    lambdax: float = 1.0,
    sigma2: float = 0.5,
    unbalanced: bool = False,
    seed: int | None = 123,
):
    """Simulate a panel from the shared-factor treatment model.

    Selection: ``x*_i = alpha_0 + alpha_1 z_i + lambdax f_i + u_i``,
    ``treat_i = 1{x*_i > 0}``. Outcome for period ``t``:
    ``y_it = b_0 + b_1 w_it + b_2 D_i + b_3 D_i w_it + lambda_{t,D_i} f_i + e_it``
    with ``e_it ~ N(0, sigma2)`` and ``f_i, u_i ~ N(0, 1)``.

    Parameters
    ----------
    alpha : sequence of 2 floats
        Selection intercept and slope on ``z``.
    beta : sequence of 4 floats
        Outcome coefficients on ``[1, w, treat, treat*w]``.
    lam0, lam1 : sequence of Tmax floats, optional
        Period loadings for the untreated and treated arm. Default to
        ``linspace(0.5, 1, Tmax)`` and that plus 0.5.
    unbalanced : bool
        When True each subject is observed for its first ``Ti`` periods only,
        with ``Ti`` uniform on ``1..Tmax``.

    Returns
    -------
    base : DataFrame
        ``id``, ``treat``, ``z``; one row per subject.
    panel : DataFrame
        ``id``, ``time``, ``y``, ``w``; one row per observed period.
    truth : dict
        Data-generating parameters and the latent ``f`` and ``xstar``.
    """
    rng = np.random.default_rng(seed)
    alpha = np.asarray(alpha, dtype=np.float64)
    beta = np.asarray(beta, dtype=np.float64)
    if alpha.shape != (2,) or beta.shape != (4,):
        raise ValueError("alpha must have 2 entries and beta 4 entries.")
    lam0 = np.linspace(0.5, 1.0, Tmax) if lam0 is None else np.asarray(lam0, dtype=np.float64)
    lam1 = lam0 + 0.5 if lam1 is None else np.asarray(lam1, dtype=np.float64)
    if lam0.shape != (Tmax,) or lam1.shape != (Tmax,):
        raise ValueError(f"lam0 and lam1 must have length Tmax={Tmax}.")

    f = rng.standard_normal(n)
    z = rng.standard_normal(n)
    xstar = alpha[0] + alpha[1] * z + lambdax * f + rng.standard_normal(n)
    treat = (xstar > 0).astype(np.int64)
    # keep both arms populated in tiny samples
    if treat.min() == treat.max():
        treat[np.argsort(xstar)[n // 2:]] = 1
        treat[np.argsort(xstar)[: n // 2]] = 0

    Ti = rng.integers(1, Tmax + 1, size=n) if unbalanced else np.full(n, Tmax)
    ids = np.repeat(np.arange(1, n + 1), Ti)
    subj = ids - 1
    time = np.concatenate([np.arange(1, t + 1) for t in Ti])
    D = treat[subj]
    w = rng.standard_normal(ids.shape[0])
    loading = np.where(D == 1, lam1[time - 1], lam0[time - 1])
    y = (
        beta[0] + beta[1] * w + beta[2] * D + beta[3] * D * w
        + loading * f[subj]
        + np.sqrt(sigma2) * rng.standard_normal(ids.shape[0])
    )

    base = pd.DataFrame({"id": np.arange(1, n + 1), "treat": treat, "z": z})
    panel = pd.DataFrame({"id": ids, "time": time, "y": y, "w": w})
    truth = {
        "alpha": alpha,
        "beta": beta,
        "lam": np.column_stack([lam0, lam1]),
        "lambdax": float(lambdax),
        "sigma2": float(sigma2),
        "f": f,
        "xstar": xstar,
    }
    return base, panel, truth
