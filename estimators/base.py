"""Configuration, prior, chain-state and draw-archive containers.

This module defines the caller configuration of a chain (:class:`MCMCConfig`),
the prior hyperparameters (:class:`PriorConfig` / :class:`Prior`), the model
specification with its selection masks (:class:`ModelSpec`), the mutable
:class:`ChainState` threaded through every Gibbs step and the preallocated
:class:`DrawArchive` returned by a chain.
"""

# bayestrt/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

if TYPE_CHECKING:  # import-only typing
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = [
    "BaseSampler",
    "ChainState",
    "DrawArchive",
    "MCMCConfig",
    "ModelSpec",
    "Prior",
    "PriorConfig",
    "StartingValues",
]


# ---------------------------------------------------------------------
# Chain configuration
# ---------------------------------------------------------------------
@dataclass
class MCMCConfig:
    """Run configuration of a single chain.

    Notes
    -----
    - Iterations are numbered 1..burnin+draws. Variable selection and the
      mixture-weight updates run at every iteration ``imc > start_select``.
    - The archive keeps every iteration, burn-in included.
    - Freeze flags are diagnostic switches and are not checked for
      consistency with each other or with ``start_select``:
        * fix_sigma: keep idiosyncratic variances at their starting value.
        * fix_f: keep the shared factor at its initial draw.
        * fix_alpha: keep treatment-equation coefficients, indicators all one.
        * fix_beta: keep outcome-equation coefficients, indicators all one.
    - ``sign_switch`` toggles the random joint sign flip of the loadings.

    Reproducibility:
        * Use `seed` to initialize RNG deterministically (np.random.Generator).
    """

    burnin: int = 1000
    draws: int = 1000
    start_select: int = 500
    fix_sigma: bool = False
    fix_f: bool = False
    fix_alpha: bool = False
    fix_beta: bool = False
    sign_switch: bool = True
    seed: int | None = None
    # Emit a DEBUG progress line every `log_every` iterations (None disables).
    log_every: int | None = None

    def __post_init__(self) -> None:
        self.validate()

    @property
    def n_iter(self) -> int:
        return int(self.burnin) + int(self.draws)

    @property
    def selects(self) -> bool:
        """True when selection activates before the chain ends."""
        return int(self.start_select) < self.n_iter

    def validate(self) -> None:
        for name in ("burnin", "draws", "start_select"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, (int, np.integer)):
                raise ValueError(f"{name} must be an integer, got {val!r}.")
            if int(val) < 0:
                raise ValueError(f"{name} must be non-negative, got {val}.")
        if self.n_iter < 1:
            raise ValueError("burnin + draws must be at least 1.")
        if self.log_every is not None and int(self.log_every) < 1:
            raise ValueError("log_every must be a positive integer or None.")

    def make_rng(self) -> np.random.Generator:
        return np.random.default_rng(self.seed)


# ---------------------------------------------------------------------
# Model specification
# ---------------------------------------------------------------------
@dataclass
class ModelSpec:
    """Dimensions and selection masks of the shared-factor model.

    ``deltax_fix`` has length ``dx + 1`` (covariates then the selection
    loading) and ``deltay_fix`` length ``dy + 2 * Tmax`` (covariates then the
    loadings ``[lambda_0(1..Tmax), lambda_1(1..Tmax)]``). A 1 marks a position
    that is never subject to selection.
    """

    dx: int
    dy: int
    Tmax: int
    deltax_fix: NDArray[np.int64]
    deltay_fix: NDArray[np.int64]
    x_names: list[str] = field(default_factory=list)
    y_names: list[str] = field(default_factory=list)
    # Positions of the treatment dummy and the treatment interactions in W.
    treat_col: int | None = None
    interact_cols: list[int] = field(default_factory=list)
    interact_base: list[int] = field(default_factory=list)
    name: str = "model1"

    def __post_init__(self) -> None:
        self.deltax_fix = np.asarray(self.deltax_fix, dtype=np.int64).reshape(-1)
        self.deltay_fix = np.asarray(self.deltay_fix, dtype=np.int64).reshape(-1)
        if not self.x_names:
            self.x_names = ["_cons"] + [f"x{j}" for j in range(1, self.dx)]
        if not self.y_names:
            self.y_names = ["_cons"] + [f"w{j}" for j in range(1, self.dy)]
        self.validate()

    @classmethod
    def default(
        cls,
        dx: int,
        dy: int,
        Tmax: int,
        *,
        x_fix: Sequence[int] | None = None,
        y_fix: Sequence[int] | None = None,
        lambda_fix: Sequence[int] | None = None,
        **kwargs: Any,
    ) -> ModelSpec:
        """Masks with intercepts and the selection loading always included.

        ``x_fix``/``y_fix`` cover the non-intercept covariates; outcome
        loadings are fixed unless ``lambda_fix`` frees them.
        """
        xf = np.zeros(dx - 1, dtype=np.int64) if x_fix is None else np.asarray(x_fix)
        yf = np.zeros(dy - 1, dtype=np.int64) if y_fix is None else np.asarray(y_fix)
        lf = np.ones(2 * Tmax, dtype=np.int64) if lambda_fix is None else np.asarray(lambda_fix)
        return cls(
            dx=dx,
            dy=dy,
            Tmax=Tmax,
            deltax_fix=np.concatenate([[1], xf, [1]]),
            deltay_fix=np.concatenate([[1], yf, lf]),
            **kwargs,
        )

    def validate(self) -> None:
        if self.dx < 1 or self.dy < 1 or self.Tmax < 1:
            raise ValueError("dx, dy and Tmax must be positive.")
        if self.deltax_fix.shape[0] != self.dx + 1:
            raise ValueError(
                f"deltax_fix must have length dx + 1 = {self.dx + 1}, got {self.deltax_fix.shape[0]}.",
            )
        dyall = self.dy + 2 * self.Tmax
        if self.deltay_fix.shape[0] != dyall:
            raise ValueError(
                f"deltay_fix must have length dy + 2*Tmax = {dyall}, got {self.deltay_fix.shape[0]}.",
            )
        for name in ("deltax_fix", "deltay_fix"):
            if not np.all(np.isin(getattr(self, name), (0, 1))):
                raise ValueError(f"{name} must contain only 0/1 entries.")
        if len(self.x_names) != self.dx or len(self.y_names) != self.dy:
            raise ValueError("x_names/y_names must match dx/dy.")

    @property
    def dyall(self) -> int:
        return self.dy + 2 * self.Tmax

    @property
    def lambda_names(self) -> list[str]:
        return [f"lambda{a}_t{t}" for a in (0, 1) for t in range(1, self.Tmax + 1)]


# ---------------------------------------------------------------------
# Prior
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class Prior:
    """Expanded prior used by the sampler."""

    invA0: NDArray[np.float64]
    invB0: NDArray[np.float64]
    s0: NDArray[np.float64]
    S0: NDArray[np.float64]
    ax: float = 1.0
    bx: float = 1.0
    ay: float = 1.0
    by: float = 1.0
    al: float = 1.0
    bl: float = 1.0

    @property
    def beta_hyper(self) -> tuple[float, float, float, float, float, float]:
        return (self.ax, self.bx, self.ay, self.by, self.al, self.bl)


@dataclass
class PriorConfig:
    """Prior hyperparameters of the shared-factor model.

    Coefficients subject to selection have slab variance ``var_sel``;
    covariates excluded from selection use ``var_fix``. The outcome intercept
    has the nearly flat precision ``intercept_precision``. Inclusion
    probabilities are Beta(a, b) per block, and the idiosyncratic variances
    InvGamma(s0, S0) per (period, arm).
    """

    var_sel: float = 5.0
    var_fix: float = 0.1
    intercept_precision: float = 0.001
    loading_precision: float = 1.0
    lambdax_precision: float = 1.0
    ax: float = 1.0
    bx: float = 1.0
    ay: float = 1.0
    by: float = 1.0
    al: float = 1.0
    bl: float = 1.0
    s0: float | NDArray[np.float64] = 0.0
    S0: float | NDArray[np.float64] = 0.0

    def validate(self) -> None:
        for name in ("var_sel", "var_fix", "intercept_precision",
                     "loading_precision", "lambdax_precision",
                     "ax", "bx", "ay", "by", "al", "bl"):
            if not float(getattr(self, name)) > 0.0:
                raise ValueError(f"{name} must be positive.")
        if np.any(np.asarray(self.s0) < 0) or np.any(np.asarray(self.S0) < 0):
            raise ValueError("s0 and S0 must be non-negative.")

    def build(self, model: ModelSpec) -> Prior:
        """Expand to precision vectors matching the model's masks."""
        self.validate()
        invA0 = np.append(np.full(model.dx, 1.0 / self.var_sel), self.lambdax_precision)
        yfix = model.deltay_fix[1:model.dy]
        invB0 = np.concatenate([
            [self.intercept_precision],
            (1.0 / self.var_sel) * (1 - yfix) + (1.0 / self.var_fix) * yfix,
            np.full(2 * model.Tmax, self.loading_precision),
        ])
        shape = (model.Tmax, 2)
        return Prior(
            invA0=invA0,
            invB0=invB0,
            s0=np.broadcast_to(np.asarray(self.s0, dtype=np.float64), shape).copy(),
            S0=np.broadcast_to(np.asarray(self.S0, dtype=np.float64), shape).copy(),
            ax=self.ax, bx=self.bx, ay=self.ay, by=self.by, al=self.al, bl=self.bl,
        )


@dataclass(frozen=True)
class StartingValues:
    """Starting coefficients (``alpha``: dx, ``beta``: dy) and residual variance.

    ``lam`` (stacked loadings, 2 * Tmax) and ``f`` (factor scores, n) are
    optional; when absent the chain starts from zero loadings and a
    standard Normal factor.
    """

    alpha: NDArray[np.float64]
    beta: NDArray[np.float64]
    res_var: float
    lam: NDArray[np.float64] | None = None
    f: NDArray[np.float64] | None = None


# ---------------------------------------------------------------------
# Chain state
# ---------------------------------------------------------------------
@dataclass
class ChainState:
    """Mutable state of one chain, owned by the orchestrator.

    ``alpha`` holds the dx selection coefficients, ``beta`` the dy outcome
    coefficients and ``lam`` the stacked loadings ``[lambda_0, lambda_1]``.
    """

    xstar: NDArray[np.float64]
    f: NDArray[np.float64]
    alpha: NDArray[np.float64]
    lambdax: float
    beta: NDArray[np.float64]
    lam: NDArray[np.float64]
    deltax: NDArray[np.int64]
    deltay: NDArray[np.int64]
    sgma2: NDArray[np.float64]
    var_yt: NDArray[np.float64]
    mu_xstar: NDArray[np.float64]
    muy_fix: NDArray[np.float64]
    fcontr: NDArray[np.float64]
    Wf: NDArray[np.float64]
    omega_alpha: float = 0.5
    omega_beta: float = 0.5
    omega_lambda: float = 0.5
    # sign applied to the loadings by the last identification step
    sign: float = 1.0


# ---------------------------------------------------------------------
# Draw archive
# ---------------------------------------------------------------------
_VECTOR_FIELDS = ("deltax", "alpha", "alpha_probit", "deltay", "beta", "delta_lambda", "f", "xstar")
_SCALAR_FIELDS = ("lambdax", "omega_alpha", "omega_beta", "omega_lambda", "sign")


@dataclass
class DrawArchive:
    """Preallocated record of every sampled quantity, one row per iteration.

    Rows cover burn-in and post-burn-in iterations alike; discarding the
    burn-in prefix is left to the consumer (see :meth:`kept`).
    """

    deltax: NDArray[np.int64]
    alpha: NDArray[np.float64]
    alpha_probit: NDArray[np.float64]
    lambdax: NDArray[np.float64]
    omega_alpha: NDArray[np.float64]
    deltay: NDArray[np.int64]
    beta: NDArray[np.float64]
    omega_beta: NDArray[np.float64]
    lam: NDArray[np.float64]
    delta_lambda: NDArray[np.int64]
    omega_lambda: NDArray[np.float64]
    sgma2: NDArray[np.float64]
    f: NDArray[np.float64]
    xstar: NDArray[np.float64]
    # +-1 per row; lam * sign gives the pre-flip loadings that match f
    sign: NDArray[np.float64]
    burnin: int = 0
    draws: int = 0
    start_select: int = 0
    model: ModelSpec | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allocate(cls, model: ModelSpec, n: int, config: MCMCConfig) -> DrawArchive:
        nmc = config.n_iter
        T = model.Tmax
        return cls(
            deltax=np.zeros((nmc, model.dx + 1), dtype=np.int64),
            alpha=np.zeros((nmc, model.dx)),
            alpha_probit=np.zeros((nmc, model.dx)),
            lambdax=np.zeros(nmc),
            omega_alpha=np.zeros(nmc),
            deltay=np.zeros((nmc, model.dy), dtype=np.int64),
            beta=np.zeros((nmc, model.dy)),
            omega_beta=np.zeros(nmc),
            lam=np.zeros((nmc, T, 2)),
            delta_lambda=np.zeros((nmc, 2 * T), dtype=np.int64),
            omega_lambda=np.zeros(nmc),
            sgma2=np.zeros((nmc, T, 2)),
            f=np.zeros((nmc, n)),
            xstar=np.zeros((nmc, n)),
            sign=np.ones(nmc),
            burnin=int(config.burnin),
            draws=int(config.draws),
            start_select=int(config.start_select),
            model=model,
        )

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return (
            f"DrawArchive(n_iter={self.n_iter}, burnin={self.burnin}, "
            f"start_select={self.start_select}, dx={self.alpha.shape[1]}, dy={self.beta.shape[1]})"
        )

    @property
    def n_iter(self) -> int:
        return int(self.lambdax.shape[0])

    def record(self, it: int, state: ChainState) -> None:
        """Write the state of (0-based) iteration ``it`` into its row."""
        dy = self.beta.shape[1]
        T = self.lam.shape[1]
        self.deltax[it] = state.deltax
        self.alpha[it] = state.alpha
        self.alpha_probit[it] = state.alpha / np.sqrt(state.lambdax**2 + 1.0)
        self.lambdax[it] = state.lambdax
        self.omega_alpha[it] = state.omega_alpha
        self.beta[it] = state.beta
        self.deltay[it] = state.deltay[:dy]
        self.omega_beta[it] = state.omega_beta
        # stacked [lambda_0, lambda_1] -> (Tmax, 2)
        self.lam[it] = np.asarray(state.lam).reshape(2, T).T
        self.delta_lambda[it] = state.deltay[dy:]
        self.omega_lambda[it] = state.omega_lambda
        self.sgma2[it] = state.sgma2
        self.f[it] = state.f
        self.xstar[it] = state.xstar
        self.sign[it] = state.sign

    def kept(self, name: str) -> NDArray:
        """Draws of ``name`` after the burn-in prefix."""
        return np.asarray(getattr(self, name))[self.burnin:]

    def column_names(self, name: str) -> list[str]:
        m = self.model
        width = np.asarray(getattr(self, name)).reshape(self.n_iter, -1).shape[1]
        if m is None:
            return [f"{name}[{j}]" for j in range(width)]
        if name in ("alpha", "alpha_probit"):
            return list(m.x_names)
        if name == "deltax":
            return [*m.x_names, "lambdax"]
        if name in ("beta", "deltay"):
            return list(m.y_names)
        if name == "delta_lambda":
            return m.lambda_names
        if name in ("lam", "sgma2"):
            # (Tmax, 2) rows flattened in C order: t1a0, t1a1, t2a0, ...
            return [f"{name}{a}_t{t}" for t in range(1, m.Tmax + 1) for a in (0, 1)]
        if name in _SCALAR_FIELDS:
            return [name]
        return [f"{name}[{j}]" for j in range(width)]

    def as_frame(self, name: str, *, discard_burnin: bool = False) -> pd.DataFrame:
        """Draws of ``name`` as a DataFrame indexed by 1-based iteration."""
        if name not in _VECTOR_FIELDS + _SCALAR_FIELDS + ("lam", "sgma2"):
            raise ValueError(f"Unknown archive field '{name}'.")
        arr = np.asarray(getattr(self, name)).reshape(self.n_iter, -1)
        index = pd.RangeIndex(1, self.n_iter + 1, name="iteration")
        frame = pd.DataFrame(arr, index=index, columns=self.column_names(name))
        return frame.iloc[self.burnin:] if discard_burnin else frame


# ---------------------------------------------------------------------
# Sampler base class
# ---------------------------------------------------------------------
class BaseSampler(ABC):
    """Abstract base class for posterior samplers."""

    def __init__(self) -> None:
        self._results: DrawArchive | None = None

    @abstractmethod
    def fit(self, *args: Any, **kwargs: Any) -> DrawArchive:
        """Run the sampler and return the draw archive."""

    @property
    def results(self) -> DrawArchive:
        if self._results is None:
            raise RuntimeError("Sampler has not been fitted yet; call fit() first.")
        return self._results
