"""Panel representation and index structures for the shared-factor sampler.

A :class:`PanelDataset` holds the sorted subject/record arrays consumed by the
sampler. :func:`build_panel_index` derives the per-period membership matrix and
the (period, arm) cell of each record, which every Gibbs step uses to scatter
and gather period/arm specific quantities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "PanelDataset",
    "PanelIndex",
    "build_panel_index",
    "factor_design",
    "posterior_shape",
]


@dataclass
class PanelDataset:
    """Sorted panel data for ``n`` subjects and ``Tn`` outcome records.

    Records are ordered by (treatment, subject, period) so that the records of
    untreated subjects come first; subjects are ordered by (treatment, id).

    Attributes
    ----------
    x : ndarray, shape (n,)
        Observed binary treatment per subject.
    Wx : ndarray, shape (n, dx)
        Treatment-selection design (intercept first).
    Ti : ndarray, shape (n,)
        Number of observed periods per subject.
    Tvec : ndarray, shape (Tn,)
        Period label (1..Tmax) of each record.
    y : ndarray, shape (Tn,)
        Outcome of each record.
    W : ndarray, shape (Tn, dy)
        Outcome design (intercept first).
    """

    x: NDArray[np.float64]
    Wx: NDArray[np.float64]
    Ti: NDArray[np.int64]
    Tvec: NDArray[np.int64]
    y: NDArray[np.float64]
    W: NDArray[np.float64]
    ids: NDArray | None = None
    periods: NDArray | None = None
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.x = np.asarray(self.x, dtype=np.float64).reshape(-1)
        self.Wx = np.asarray(self.Wx, dtype=np.float64)
        self.Ti = np.asarray(self.Ti, dtype=np.int64).reshape(-1)
        self.Tvec = np.asarray(self.Tvec, dtype=np.int64).reshape(-1)
        self.y = np.asarray(self.y, dtype=np.float64).reshape(-1)
        self.W = np.asarray(self.W, dtype=np.float64)

    @property
    def n(self) -> int:
        return int(self.x.shape[0])

    @property
    def Tn(self) -> int:
        return int(self.y.shape[0])

    @property
    def Tmax(self) -> int:
        return int(self.Tvec.max()) if self.Tvec.size else 0

    @property
    def subject(self) -> NDArray[np.int64]:
        """Subject index (0..n-1) of each record."""
        return np.repeat(np.arange(self.n), self.Ti)

    @property
    def indy1(self) -> NDArray[np.bool_]:
        """True for records of treated subjects."""
        return np.repeat(self.x, self.Ti) == 1.0

    @property
    def indy0(self) -> NDArray[np.bool_]:
        return ~self.indy1

    def validate(self) -> None:
        """Check dimension consistency and the record ordering invariants."""
        n = self.n
        if self.Wx.ndim != 2 or self.Wx.shape[0] != n:
            raise ValueError(f"Wx must have shape (n, dx) with n={n}.")
        if self.Ti.shape[0] != n:
            raise ValueError(f"Ti length {self.Ti.shape[0]} != n {n}.")
        if not np.all(np.isin(self.x, (0.0, 1.0))):
            raise ValueError("Treatment indicator x must be binary (0/1).")
        if int(self.Ti.sum()) != self.Tn:
            raise ValueError(
                f"sum(Ti)={int(self.Ti.sum())} does not match the number of records {self.Tn}.",
            )
        if self.W.ndim != 2 or self.W.shape[0] != self.Tn:
            raise ValueError(f"W must have shape (Tn, dy) with Tn={self.Tn}.")
        if self.Tvec.shape[0] != self.Tn:
            raise ValueError(f"Tvec length {self.Tvec.shape[0]} != Tn {self.Tn}.")
        if self.Tvec.size and self.Tvec.min() < 1:
            raise ValueError("Period labels in Tvec must start at 1.")
        for name in ("Wx", "W", "y"):
            if not np.all(np.isfinite(getattr(self, name))):
                raise ValueError(f"{name} contains NA/NaN/Inf.")
        if n and np.any(np.diff(self.x) < 0):
            raise ValueError("Subjects must be sorted with untreated subjects first.")
        if int(self.indy0.sum()) + int(self.indy1.sum()) != self.Tn:  # pragma: no cover
            raise ValueError("Every record must belong to exactly one treatment arm.")


@dataclass(frozen=True)
class PanelIndex:
    """Draw-invariant index structures derived from the panel layout.

    ``cell`` maps each record to its column in the factor-loading design,
    ``arm * Tmax + (period - 1)``, which is also its position in the
    stacked loading vector ``[lambda_0(1..Tmax), lambda_1(1..Tmax)]``.
    """

    Tmax: int
    membership: NDArray[np.bool_]
    period: NDArray[np.int64]
    arm: NDArray[np.int64]
    subject: NDArray[np.int64]
    counts: NDArray[np.int64]

    @property
    def cell(self) -> NDArray[np.int64]:
        return self.arm * self.Tmax + self.period

    @property
    def n_records(self) -> int:
        return int(self.period.shape[0])

    @property
    def n_subjects(self) -> int:
        return int(self.subject.max()) + 1 if self.subject.size else 0

    def scatter(self, values: NDArray[np.float64]) -> NDArray[np.float64]:
        """Look up a (Tmax, 2) period/arm array for every record."""
        return np.asarray(values, dtype=np.float64)[self.period, self.arm]


def build_panel_index(
    Tvec: NDArray,
    Tmax: int,
    treated: NDArray,
    Ti: NDArray | None = None,
) -> PanelIndex:
    """Derive period membership and (period, arm) counts from record labels.

    Parameters
    ----------
    Tvec : array, shape (Tn,)
        Period label (1..Tmax) of each record.
    Tmax : int
        Number of periods.
    treated : array, shape (Tn,)
        Treatment-arm membership of each record (True/1 for treated).
    Ti : array, shape (n,), optional
        Records per subject; required to map records to subjects.
    """
    tvec = np.asarray(Tvec, dtype=np.int64).reshape(-1)
    arm = np.asarray(treated).reshape(-1).astype(bool).astype(np.int64)
    periods = np.arange(1, int(Tmax) + 1)
    membership = tvec[:, None] == periods[None, :]
    counts = np.zeros((int(Tmax), 2), dtype=np.int64)
    counts[:, 0] = membership[arm == 0].sum(axis=0)
    counts[:, 1] = membership[arm == 1].sum(axis=0)
    if Ti is None:
        subject = np.zeros(tvec.shape[0], dtype=np.int64)
    else:
        ti = np.asarray(Ti, dtype=np.int64).reshape(-1)
        subject = np.repeat(np.arange(ti.shape[0]), ti)
    return PanelIndex(
        Tmax=int(Tmax),
        membership=membership,
        period=tvec - 1,
        arm=arm,
        subject=subject,
        counts=counts,
    )


def posterior_shape(index: PanelIndex, s0: NDArray | float) -> NDArray[np.float64]:
    """Inverse-gamma posterior shapes ``s0[t, arm] + count(t, arm) / 2``."""
    prior = np.broadcast_to(np.asarray(s0, dtype=np.float64), index.counts.shape)
    return prior + index.counts / 2.0


def factor_design(f: NDArray[np.float64], index: PanelIndex) -> NDArray[np.float64]:
    """Block-sparse factor design ``Wf`` of shape (Tn, 2 * Tmax).

    Each record carries its subject's factor in the column of its own period
    within the block of its treatment arm, and zero elsewhere.
    """
    Wf = np.zeros((index.n_records, 2 * index.Tmax), dtype=np.float64)
    Wf[np.arange(index.n_records), index.cell] = np.asarray(f, dtype=np.float64)[index.subject]
    return Wf
