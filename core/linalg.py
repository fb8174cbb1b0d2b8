"""Linear algebra routines for the Gibbs sampler.

This module provides the Cholesky-based solvers used by the conjugate
regression updates, weighted cross-products for the outcome equation and a
pivoted-QR least-squares solver (Stata-style rank policy) for starting values.
Explicit matrix inversion is avoided.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import scipy.linalg as sla

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "chol_solve",
    "gram",
    "logdet_chol",
    "qr_solve_stata",
    "rank_from_diag",
    "safe_cholesky",
    "to_dense",
    "triangular_solve",
    "xty",
]

# Matrix type alias
Matrix = Any


def to_dense(A: Matrix) -> NDArray[np.float64]:
    """Return a float64 ndarray view/copy of ``A``."""
    return np.asarray(A, dtype=np.float64)


def _assert_all_finite_matrix(*matrices: Matrix) -> None:
    for M in matrices:
        data = np.asarray(M)
        if data.size and not np.all(np.isfinite(data)):
            raise ValueError("Input contains NA/NaN/Inf.")


def _validate_weights(weights: Sequence[float], n: int) -> NDArray[np.float64]:
    w = np.asarray(weights, dtype=np.float64).reshape(-1)
    if w.shape[0] != n:
        raise ValueError(f"weights length {w.shape[0]} != n_obs {n}.")
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise ValueError("weights must be finite and non-negative.")
    return w


def safe_cholesky(A: Matrix, *, lower: bool = True) -> NDArray[np.float64]:
    """Strict Cholesky factorization without implicit ridges.

    Raises np.linalg.LinAlgError if not positive definite.
    """
    Ad = to_dense(A)
    Ad = (Ad + Ad.T) * 0.5  # symmetrize
    try:
        return sla.cholesky(Ad, lower=lower, check_finite=False)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise np.linalg.LinAlgError(f"Cholesky factorization failed: {exc}") from exc


def chol_solve(
    L: NDArray[np.float64], B: Matrix, *, lower: bool = True,
) -> NDArray[np.float64]:
    """Solve A X = B given Cholesky factor L of A (A = L L')."""
    Bd = to_dense(B)
    X = sla.cho_solve((L, lower), Bd, check_finite=False)
    return np.asarray(X, dtype=np.float64)


def triangular_solve(
    L: NDArray[np.float64], B: Matrix, *, lower: bool = True, trans: bool = False,
) -> NDArray[np.float64]:
    """Solve L X = B (or L' X = B with ``trans=True``) for triangular L.

    With Omega = L L', ``triangular_solve(L, b)`` whitens b and
    ``triangular_solve(L, z, trans=True)`` maps standard normals z to draws
    with covariance Omega^{-1}.
    """
    Bd = to_dense(B)
    X = sla.solve_triangular(
        L, Bd, lower=lower, trans=1 if trans else 0, check_finite=False,
    )
    return np.asarray(X, dtype=np.float64)


def logdet_chol(L: NDArray[np.float64]) -> float:
    """log|A| from the Cholesky factor of A."""
    return 2.0 * float(np.sum(np.log(np.diag(L))))


def gram(X: Matrix, weights: Sequence[float] | None = None) -> NDArray[np.float64]:
    """Compute A = X' W X with W = diag(w); if weights is None, W=I.

    Avoids forming W explicitly by pre-multiplying rows by sqrt(w).
    """
    Xd = to_dense(X)
    _assert_all_finite_matrix(Xd)
    if weights is None:
        return (Xd.T @ Xd).astype(np.float64)
    sqrt_w = np.sqrt(_validate_weights(weights, Xd.shape[0])).reshape(-1, 1)
    Xw = Xd * sqrt_w
    return (Xw.T @ Xw).astype(np.float64)


def xty(X: Matrix, y: Matrix, weights: Sequence[float] | None = None) -> NDArray[np.float64]:
    """Compute b = X' W y with W = diag(w); if weights is None, W=I.

    Returns a 1-D array for 1-D ``y``.
    """
    Xd = to_dense(X)
    yd = to_dense(y)
    _assert_all_finite_matrix(Xd, yd)
    if weights is not None:
        w = _validate_weights(weights, Xd.shape[0])
        yd = yd * (w if yd.ndim == 1 else w.reshape(-1, 1))
    return (Xd.T @ yd).astype(np.float64)


def rank_from_diag(diagR: NDArray[np.float64], ncols: int) -> int:
    """Numerical rank from the diagonal of a pivoted R factor.

    Stata (Mata qrsolve) default tolerance: eta = 1e-13 * trace(|R|)/rows(R).
    """
    d = np.abs(np.asarray(diagR, dtype=np.float64)).reshape(-1)
    if d.size == 0:
        return 0
    eta = 1e-13 * (float(np.sum(d)) / float(d.size))
    return int(min(ncols, np.sum(d > eta)))


def qr_solve_stata(A: Matrix, b: Matrix) -> tuple[NDArray[np.float64], int]:
    """Least squares via pivoted QR with zero-fill for dropped columns.

    Returns ``(coef, rank)``; columns beyond the numerical rank receive a
    coefficient of exactly 0.
    """
    Ad = to_dense(A)
    bd = to_dense(b).reshape(-1)
    _assert_all_finite_matrix(Ad, bd)
    k = Ad.shape[1]
    coef = np.zeros(k, dtype=np.float64)
    if k == 0:
        return coef, 0
    Q, R, P = sla.qr(Ad, mode="economic", pivoting=True)
    r = rank_from_diag(np.diag(R), k)
    if r == 0:
        return coef, 0
    qtb = Q[:, :r].T @ bd
    coef[P[:r]] = sla.solve_triangular(R[:r, :r], qtb, lower=False, check_finite=False)
    return coef, r
