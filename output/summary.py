"""Posterior summaries of a draw archive.

Coefficient summaries, posterior inclusion probabilities, per-period treatment
effects and the Gelman-Rubin diagnostic. All results are pandas objects; the
burn-in prefix is discarded here, never in the sampler.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from bayestrt.core.panel import PanelDataset
    from bayestrt.estimators.base import DrawArchive

__all__ = [
    "coef_summary",
    "gelman_rubin",
    "inclusion_probabilities",
    "normalize_ci_level",
    "treatment_effects",
]


def normalize_ci_level(level: float | None, *, default: float = 0.95) -> float:
    """Normalize credible level to a probability (0, 1)."""
    if level is None:
        coerced = float(default)
    else:
        coerced = float(level)
        # Accept percentage-style inputs (e.g., 90 for 90%)
        if coerced > 1.0:
            coerced /= 100.0
    if not (0.0 < coerced < 1.0):
        raise ValueError("ci_level must be in (0, 1); supply e.g. 0.95 or 95")
    return coerced


def _describe(draws: NDArray[np.float64], names: Sequence[str], ci_level: float) -> pd.DataFrame:
    draws = np.asarray(draws, dtype=np.float64).reshape(draws.shape[0], -1)
    if draws.shape[0] == 0:
        raise ValueError("No post burn-in draws to summarize.")
    tail = (1.0 - ci_level) / 2.0
    return pd.DataFrame(
        {
            "mean": draws.mean(axis=0),
            "sd": draws.std(axis=0, ddof=1) if draws.shape[0] > 1 else np.nan,
            "lower": np.quantile(draws, tail, axis=0),
            "upper": np.quantile(draws, 1.0 - tail, axis=0),
        },
        index=pd.Index(list(names), name="term"),
    )


def coef_summary(archive: DrawArchive, *, ci_level: float | None = None) -> pd.DataFrame:
    """Posterior mean, sd, equal-tailed interval and inclusion frequency.

    Rows are indexed by (equation, term) with equations ``selection``,
    ``selection_probit`` (coefficients standardized by sqrt(lambdax^2 + 1)),
    ``outcome`` and ``loading``.

    The factor and its loadings are identified only up to a joint sign, so
    each draw of ``lambdax`` and the outcome loadings is oriented to
    ``lambdax >= 0`` before summarizing.
    """
    level = normalize_ci_level(ci_level)
    b = archive.burnin
    orient = np.where(archive.lambdax[b:] < 0, -1.0, 1.0)
    parts = {
        "selection": (
            np.column_stack([archive.alpha[b:], orient * archive.lambdax[b:]]),
            [*archive.column_names("alpha"), "lambdax"],
            archive.deltax[b:],
        ),
        "selection_probit": (
            archive.alpha_probit[b:],
            archive.column_names("alpha_probit"),
            archive.deltax[b:, :-1],
        ),
        "outcome": (archive.beta[b:], archive.column_names("beta"), archive.deltay[b:]),
        # lam rows are (Tmax, 2); stack as [lambda_0(1..T), lambda_1(1..T)]
        "loading": (
            (archive.lam[b:] * orient[:, None, None]).transpose(0, 2, 1).reshape(archive.n_iter - b, -1),
            archive.column_names("delta_lambda"),
            archive.delta_lambda[b:],
        ),
    }
    frames = []
    for eq, (draws, names, delta) in parts.items():
        frame = _describe(draws, names, level)
        frame["incl_prob"] = np.asarray(delta, dtype=np.float64).mean(axis=0)
        frames.append(frame)
    return pd.concat(frames, keys=list(parts), names=["equation", "term"])


def inclusion_probabilities(archive: DrawArchive) -> pd.Series:
    """Posterior inclusion frequencies over selection-active, post burn-in rows.

    Row ``r`` (0-based) belongs to iteration ``r + 1``, which selects when
    ``r + 1 > start_select``.
    """
    first = max(int(archive.burnin), int(archive.start_select))
    if first >= archive.n_iter:
        raise ValueError(
            "No post burn-in iteration with active selection; "
            f"burnin={archive.burnin}, start_select={archive.start_select}, n_iter={archive.n_iter}.",
        )
    blocks = {
        "selection": ("deltax", archive.column_names("deltax")),
        "outcome": ("deltay", archive.column_names("deltay")),
        "loading": ("delta_lambda", archive.column_names("delta_lambda")),
    }
    pieces = []
    for eq, (field_name, names) in blocks.items():
        freq = np.asarray(getattr(archive, field_name)[first:], dtype=np.float64).mean(axis=0)
        pieces.append(pd.Series(freq, index=pd.MultiIndex.from_product([[eq], names])))
    out = pd.concat(pieces)
    out.index.names = ["equation", "term"]
    out.name = "incl_prob"
    return out


def _period_means(
    values: NDArray[np.float64], period: NDArray[np.int64], mask: NDArray[np.bool_], Tmax: int,
) -> NDArray[np.float64]:
    """Column means of ``values`` (records x k) within each period over ``mask`` rows."""
    counts = np.bincount(period[mask], minlength=Tmax).astype(np.float64)
    vals = values[mask]
    out = np.zeros((Tmax, vals.shape[1]))
    np.add.at(out, period[mask], vals)
    with np.errstate(divide="ignore", invalid="ignore"):
        return out / counts[:, None]


def treatment_effects(
    archive: DrawArchive, data: PanelDataset, *, ci_level: float | None = None,
) -> pd.DataFrame:
    """Per-period average treatment effects from the post burn-in draws.

    For record ``r`` in period ``t`` the treatment contrast is
    ``beta_D + Z_r beta_DZ`` (treatment dummy plus its interactions). Then

    - ATE_t averages the contrast over every record of period t;
    - ATT_t averages ``contrast + (lambda_{t,1} - lambda_{t,0}) f_i`` over
      the treated records of period t;
    - ATU_t does the same over the untreated records.

    The recorded loadings carry the sign flip of their iteration while the
    recorded factor does not; the loadings are multiplied by
    ``archive.sign`` before they are combined with ``f``.

    Returns a frame indexed by (effect, period) with mean, sd, lower, upper.
    """
    model = archive.model
    if model is None or model.treat_col is None:
        raise ValueError("Archive model has no treatment column; effects are undefined.")
    level = normalize_ci_level(ci_level)
    b = archive.burnin
    beta = archive.beta[b:]
    # pre-flip loadings, consistent with the recorded factor
    lam = archive.lam[b:] * archive.sign[b:, None, None]
    f = archive.f[b:]
    if beta.shape[0] == 0:
        raise ValueError("No post burn-in draws to summarize.")

    T = model.Tmax
    period = data.Tvec - 1
    treated = data.indy1
    Z = data.W[:, model.interact_base]
    subj = data.subject
    labels = data.periods if data.periods is not None else np.arange(1, T + 1)

    results = {}
    everyone = np.ones(data.Tn, dtype=bool)
    for label, mask, with_factor in (
        ("ATE", everyone, False),
        ("ATT", treated, True),
        ("ATU", ~treated, True),
    ):
        zbar = _period_means(Z, period, mask, T)  # (T, nz)
        eff = beta[:, [model.treat_col]] + beta[:, model.interact_cols] @ zbar.T  # (ndraw, T)
        if with_factor:
            counts = np.bincount(period[mask], minlength=T).astype(np.float64)
            A = np.zeros((data.n, T))
            np.add.at(A, (subj[mask], period[mask]), 1.0)
            with np.errstate(divide="ignore", invalid="ignore"):
                fbar = (f @ A) / counts[None, :]
            eff = eff + (lam[:, :, 1] - lam[:, :, 0]) * fbar
        results[label] = _describe(eff, [str(v) for v in labels], level)
    out = pd.concat(results, names=["effect", "period"])
    return out


def gelman_rubin(chains: Sequence[DrawArchive], name: str = "beta") -> pd.Series:
    """Gelman-Rubin potential scale reduction of one archive field.

    Compares the post burn-in draws of ``name`` across independent chains
    (for example from :meth:`SharedFactorModel.fit_chains`), truncated to the
    shortest chain. Entries are NaN with fewer than two chains or two kept
    draws, and for columns without within-chain variation.
    """
    if not chains:
        raise ValueError("gelman_rubin needs at least one chain.")
    names = chains[0].column_names(name)
    kept = [np.asarray(c.kept(name), dtype=np.float64).reshape(c.n_iter - c.burnin, -1) for c in chains]
    n = min(k.shape[0] for k in kept)
    rhat = np.full(len(names), np.nan)
    if len(kept) >= 2 and n >= 2:
        draws = np.stack([k[:n] for k in kept])  # (chain, draw, column)
        within = draws.var(axis=1, ddof=1).mean(axis=0)
        # between-chain variance of the means, i.e. B / n
        between = draws.mean(axis=1).var(axis=0, ddof=1)
        pooled = (n - 1) / n * within + between
        ok = within > 0
        rhat[ok] = np.sqrt(pooled[ok] / within[ok])
    return pd.Series(rhat, index=pd.Index(names, name="term"), name=f"rhat_{name}")
