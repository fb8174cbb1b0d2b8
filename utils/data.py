"""Panel preparation from a baseline frame and a panel frame.

Builds the sorted :class:`~bayestrt.core.panel.PanelDataset` and the matching
:class:`~bayestrt.estimators.base.ModelSpec` (designs, column names and
selection masks) expected by the sampler.
"""
from __future__ import annotations

import warnings
from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
import pandas as pd

from bayestrt.core.panel import PanelDataset
from bayestrt.estimators.base import ModelSpec

__all__ = ["parse_covars", "prepare_panel"]


def _require_columns(frame: pd.DataFrame, cols: Sequence[str], label: str) -> None:
    missing = [c for c in cols if c not in frame.columns]
    if missing:
        raise ValueError(f"{label} is missing required column(s): {missing}.")


def _mask(values: Any, length: int, label: str, default: int = 0) -> np.ndarray:
    if values is None:
        return np.full(length, default, dtype=np.int64)
    arr = np.asarray(values).reshape(-1)
    if arr.shape[0] != length:
        raise ValueError(f"covars['{label}'] must have length {length}, got {arr.shape[0]}.")
    if not np.all(np.isin(arr, (0, 1))):
        raise ValueError(f"covars['{label}'] must contain only 0/1 entries.")
    return arr.astype(np.int64)


def parse_covars(
    covars: Mapping[str, Any] | None, n_x: int, n_y: int, Tmax: int,
) -> dict[str, np.ndarray]:
    """Normalize the ``covars`` mapping into 0/1 masks.

    Keys: ``x_fix`` (n_x), ``y_fix`` (n_y), ``y_common`` (n_y) and
    ``lambda_fix`` (2 * Tmax, default all fixed).
    """
    covars = dict(covars or {})
    unknown = set(covars) - {"x_fix", "y_fix", "y_common", "lambda_fix"}
    if unknown:
        raise ValueError(f"Unknown covars key(s): {sorted(unknown)}.")
    return {
        "x_fix": _mask(covars.get("x_fix"), n_x, "x_fix"),
        "y_fix": _mask(covars.get("y_fix"), n_y, "y_fix"),
        "y_common": _mask(covars.get("y_common"), n_y, "y_common"),
        "lambda_fix": _mask(covars.get("lambda_fix"), 2 * Tmax, "lambda_fix", default=1),
    }


def prepare_panel(  # noqa: PLR0913, PLR0915
    base: pd.DataFrame,
    panel: pd.DataFrame,
    *,
    id_col: str = "id",
    treat_col: str = "treat",
    time_col: str = "time",
    outcome_col: str = "y",
    x_cols: Sequence[str] = (),
    y_cols: Sequence[str] = (),
    covars: Mapping[str, Any] | None = None,
    sort_data: bool = True,
    name: str = "model1",
) -> tuple[PanelDataset, ModelSpec]:
    """Validate, sort and assemble the sampler inputs.

    Parameters
    ----------
    base : DataFrame
        One row per subject: id, binary treatment and selection covariates.
    panel : DataFrame
        One row per (subject, period): id, period, outcome and outcome covariates.
    x_cols : sequence of str
        Selection-equation covariates in ``base`` (an intercept is added).
    y_cols : sequence of str
        Outcome covariates in ``panel``. Columns flagged in
        ``covars['y_common']`` get a single effect for both arms; the others
        enter as main effect plus treatment interaction.
    covars : mapping, optional
        ``x_fix``, ``y_fix``, ``y_common``, ``lambda_fix`` 0/1 masks.
    sort_data : bool
        Sort by (treatment, id, period). When False the input order must
        already satisfy it.

    Returns
    -------
    (PanelDataset, ModelSpec)
        The outcome design is ``[1, Z, D, D*Z, C]``.
    """
    base = pd.DataFrame(base).copy()
    panel = pd.DataFrame(panel).copy()
    x_cols = list(x_cols)
    y_cols = list(y_cols)
    _require_columns(base, [id_col, treat_col, *x_cols], "base")
    _require_columns(panel, [id_col, time_col, outcome_col, *y_cols], "panel")

    if base[id_col].duplicated().any():
        raise ValueError(f"base contains duplicated ids in '{id_col}'.")
    if panel.duplicated([id_col, time_col]).any():
        raise ValueError(f"panel contains duplicated ({id_col}, {time_col}) records.")
    treat = pd.to_numeric(base[treat_col], errors="coerce")
    if not treat.isin([0, 1]).all():
        raise ValueError(f"Treatment column '{treat_col}' must be binary (0/1).")
    base[treat_col] = treat.astype(np.int64)

    orphan = ~panel[id_col].isin(base[id_col])
    if orphan.any():
        warnings.warn(
            f"Dropping {int(orphan.sum())} panel record(s) without a baseline subject.",
            UserWarning,
            stacklevel=2,
        )
        panel = panel.loc[~orphan]

    levels = np.sort(panel[time_col].unique())
    Tmax = int(levels.size)
    if Tmax == 0:
        raise ValueError("panel contains no records.")
    panel["_period"] = pd.Categorical(panel[time_col], categories=levels).codes + 1
    masks = parse_covars(covars, len(x_cols), len(y_cols), Tmax)

    if sort_data:
        base = base.sort_values([treat_col, id_col], kind="mergesort")
    pos = pd.Series(np.arange(len(base)), index=base[id_col].to_numpy())
    panel["_subject"] = panel[id_col].map(pos).to_numpy()
    if sort_data:
        panel = panel.sort_values(["_subject", "_period"], kind="mergesort")
    else:
        key = panel["_subject"].to_numpy() * (Tmax + 1) + panel["_period"].to_numpy()
        if np.any(np.diff(key) <= 0) or np.any(np.diff(base[treat_col].to_numpy()) < 0):
            raise ValueError("Data are not sorted by (treatment, id, period); use sort_data=True.")

    Ti = np.bincount(panel["_subject"].to_numpy(), minlength=len(base))
    x = base[treat_col].to_numpy(dtype=np.float64)
    Wx = np.column_stack([np.ones(len(base)), base[x_cols].to_numpy(dtype=np.float64)])

    common = masks["y_common"].astype(bool)
    z_cols = [c for c, m in zip(y_cols, common) if not m]
    c_cols = [c for c, m in zip(y_cols, common) if m]
    D = np.repeat(x, Ti)
    Z = panel[z_cols].to_numpy(dtype=np.float64).reshape(len(panel), -1)
    C = panel[c_cols].to_numpy(dtype=np.float64).reshape(len(panel), -1)
    W = np.column_stack([np.ones(len(panel)), Z, D, D[:, None] * Z, C])
    y = panel[outcome_col].to_numpy(dtype=np.float64)
    if not (np.all(np.isfinite(W)) and np.all(np.isfinite(Wx)) and np.all(np.isfinite(y))):
        raise ValueError("Input contains NA/NaN/Inf.")

    nz = len(z_cols)
    y_fix = masks["y_fix"][~common]
    deltay_fix = np.concatenate([
        [1], y_fix, [0], y_fix, np.ones(len(c_cols), dtype=np.int64), masks["lambda_fix"],
    ])
    deltax_fix = np.concatenate([[1], masks["x_fix"], [1]])
    model = ModelSpec(
        dx=Wx.shape[1],
        dy=W.shape[1],
        Tmax=Tmax,
        deltax_fix=deltax_fix,
        deltay_fix=deltay_fix,
        x_names=["_cons", *x_cols],
        y_names=["_cons", *z_cols, treat_col, *[f"{treat_col}:{c}" for c in z_cols], *c_cols],
        treat_col=1 + nz,
        interact_cols=list(range(2 + nz, 2 + 2 * nz)),
        interact_base=list(range(1, 1 + nz)),
        name=name,
    )
    data = PanelDataset(
        x=x,
        Wx=Wx,
        Ti=Ti,
        Tvec=panel["_period"].to_numpy(),
        y=y,
        W=W,
        ids=base[id_col].to_numpy(),
        periods=levels,
    )
    data.validate()
    return data, model
