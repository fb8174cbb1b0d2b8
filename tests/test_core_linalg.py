import numpy as np
import pytest

from bayestrt.core import linalg as la

# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def data_dense(rng):
    X = rng.standard_normal((100, 5))
    y = X @ np.ones(5) + rng.standard_normal(100)
    return X, y

@pytest.fixture
def data_rank_deficient(rng):
    X = rng.standard_normal((100, 3))
    X = np.column_stack([X, X[:, 0] + X[:, 1]])  # 4th col is lin comb
    y = rng.standard_normal(100)
    return X, y

@pytest.fixture
def spd(rng):
    A = rng.standard_normal((6, 6))
    return A @ A.T + 6 * np.eye(6)

# ---------------------------------------------------------------------
# Unit Tests: Finite Checks
# ---------------------------------------------------------------------

def test_assert_all_finite_matrix():
    M = np.array([[1.0, np.nan], [2.0, 3.0]])
    with pytest.raises(ValueError, match="Input contains NA/NaN/Inf"):
        la._assert_all_finite_matrix(M)

    with pytest.raises(ValueError):
        la.gram(np.array([[1.0, 0.0], [0.0, np.inf]]))

    la._assert_all_finite_matrix(np.eye(2))

def test_validate_weights():
    with pytest.raises(ValueError, match="weights length"):
        la._validate_weights(np.ones(3), 4)
    with pytest.raises(ValueError, match="non-negative"):
        la._validate_weights(np.array([1.0, -1.0]), 2)

# ---------------------------------------------------------------------
# Unit Tests: Cholesky helpers
# ---------------------------------------------------------------------

def test_safe_cholesky_and_solves(spd, rng):
    L = la.safe_cholesky(spd)
    assert np.allclose(L @ L.T, spd)
    assert np.allclose(np.triu(L, 1), 0.0)

    b = rng.standard_normal(6)
    x = la.chol_solve(L, b)
    assert np.allclose(spd @ x, b)

    assert np.isclose(la.logdet_chol(L), np.linalg.slogdet(spd)[1])

def test_triangular_solve_whitening(spd, rng):
    L = la.safe_cholesky(spd)
    b = rng.standard_normal(6)
    v = la.triangular_solve(L, b)
    assert np.allclose(L @ v, b)
    # v'v = b' A^{-1} b
    assert np.isclose(v @ v, b @ np.linalg.solve(spd, b))

    w = la.triangular_solve(L, b, trans=True)
    assert np.allclose(L.T @ w, b)

def test_safe_cholesky_not_pd():
    A = np.array([[1.0, 2.0], [2.0, 1.0]])
    with pytest.raises(np.linalg.LinAlgError, match="Cholesky factorization failed"):
        la.safe_cholesky(A)

# ---------------------------------------------------------------------
# Unit Tests: Cross-products
# ---------------------------------------------------------------------

def test_gram_and_xty(data_dense, rng):
    X, y = data_dense
    assert np.allclose(la.gram(X), X.T @ X)
    Xty = la.xty(X, y)
    assert Xty.shape == (5,)
    assert np.allclose(Xty, X.T @ y)

    w = rng.uniform(0.1, 2.0, size=100)
    assert np.allclose(la.gram(X, w), X.T @ (w[:, None] * X))
    assert np.allclose(la.xty(X, y, w), X.T @ (w * y))

# ---------------------------------------------------------------------
# Unit Tests: Rank and QR least squares
# ---------------------------------------------------------------------

def test_rank_from_diag():
    # eta = 1e-13 * 110 / 4 ~ 2.75e-12: keeps 1e-8, drops 1e-15
    diagR = np.array([1e2, 1e1, 1e-8, 1e-15])
    assert la.rank_from_diag(diagR, 4) == 3
    assert la.rank_from_diag(np.array([]), 0) == 0

def test_qr_solve_full_rank(data_dense):
    X, y = data_dense
    coef, rank = la.qr_solve_stata(X, y)
    assert rank == 5
    assert np.allclose(coef, np.linalg.lstsq(X, y, rcond=None)[0])

def test_qr_solve_rank_deficient(data_rank_deficient):
    X, y = data_rank_deficient
    coef, rank = la.qr_solve_stata(X, y)
    assert rank == 3
    assert coef.shape == (4,)
    # one coefficient is dropped and zero-filled
    assert np.sum(coef == 0.0) >= 1
    # fitted values match the minimum-norm least-squares fit
    fitted_ref = X @ np.linalg.lstsq(X, y, rcond=None)[0]
    assert np.allclose(X @ coef, fitted_ref)
