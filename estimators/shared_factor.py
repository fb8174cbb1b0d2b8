"""Shared-factor treatment-effect model estimated by Gibbs sampling.

The model couples a probit treatment-selection equation with per-period
outcome regressions for untreated and treated units through one latent
factor per subject::

    xstar_i = Wx_i alpha + lambdax f_i + u_i,          u_i ~ N(0, 1)
    x_i     = 1[xstar_i > 0]
    y_it    = W_it beta + lambda_{t, x_i} f_i + e_it,  e_it ~ N(0, sigma2_{t, x_i})
    f_i     ~ N(0, 1)

Covariates and (optionally) loadings are subject to stochastic search
variable selection with Beta-distributed inclusion probabilities.
"""

from __future__ import annotations

import logging
import math
import os
import time
from concurrent.futures import ProcessPoolExecutor
from typing import TYPE_CHECKING, Any

import numpy as np

from bayestrt.core.gibbs import draw_error_variance, draw_shared_factor, draw_utility
from bayestrt.core.panel import build_panel_index, factor_design, posterior_shape
from bayestrt.core.ssvs import (
    select_outcome,
    select_treatment,
    sign_switch,
    update_mixture_weights,
)
from bayestrt.utils.data import prepare_panel
from bayestrt.utils.starting import starting_values

from .base import (
    BaseSampler,
    ChainState,
    DrawArchive,
    MCMCConfig,
    ModelSpec,
    Prior,
    PriorConfig,
    StartingValues,
)

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    import pandas as pd
    from numpy.typing import NDArray

    from bayestrt.core.panel import PanelDataset, PanelIndex

__all__ = [
    "SharedFactorModel",
    "gibbs_step",
    "identify",
    "initialize_chain",
    "run_chain",
]

LOGGER = logging.getLogger(__name__)


def initialize_chain(
    data: PanelDataset,
    index: PanelIndex,
    model: ModelSpec,
    start: StartingValues,
    rng: np.random.Generator,
) -> ChainState:
    """Starting state: utilities around the starting probit index, f ~ N(0, 1),
    selection loading 1, outcome loadings 0 and all indicators included.

    Loadings and factor scores carried by ``start`` replace the zero loadings
    and the Normal factor draw.
    """
    alpha = np.asarray(start.alpha, dtype=np.float64).copy()
    beta = np.asarray(start.beta, dtype=np.float64).copy()
    mu_xstar = data.Wx @ alpha
    xstar = draw_utility(data.x, mu_xstar, rng)
    if start.lam is None:
        lam = np.zeros(2 * model.Tmax)
    else:
        lam = np.asarray(start.lam, dtype=np.float64).reshape(-1).copy()
        if lam.shape[0] != 2 * model.Tmax:
            raise ValueError(f"Starting loadings must have length 2 * Tmax = {2 * model.Tmax}.")
    if start.f is None:
        f = rng.standard_normal(data.n)
    else:
        f = np.asarray(start.f, dtype=np.float64).reshape(-1).copy()
        if f.shape[0] != data.n:
            raise ValueError(f"Starting factor scores must have length n = {data.n}.")
    Wf = factor_design(f, index)
    sgma2 = np.full((model.Tmax, 2), float(start.res_var))
    return ChainState(
        xstar=xstar,
        f=f,
        alpha=alpha,
        lambdax=1.0,
        beta=beta,
        lam=lam,
        deltax=np.ones(model.dx + 1, dtype=np.int64),
        deltay=np.ones(model.dyall, dtype=np.int64),
        sgma2=sgma2,
        var_yt=index.scatter(sgma2),
        mu_xstar=mu_xstar,
        muy_fix=data.W @ beta,
        fcontr=Wf @ lam,
        Wf=Wf,
    )


def gibbs_step(  # noqa: PLR0913
    state: ChainState,
    data: PanelDataset,
    index: PanelIndex,
    model: ModelSpec,
    prior: Prior,
    sn: NDArray[np.float64],
    config: MCMCConfig,
    rng: np.random.Generator,
    *,
    select: bool,
) -> ChainState:
    """One sweep of the sampler (without identification and weight updates)."""
    # I. idiosyncratic variances
    resy = data.y - state.muy_fix
    eps2 = (resy - state.fcontr) ** 2
    state.sgma2, state.var_yt = draw_error_variance(
        eps2, index, sn, prior.S0, state.sgma2, rng, fix_sigma=config.fix_sigma,
    )

    # II. shared factor
    resx = state.xstar - state.mu_xstar
    state.f = draw_shared_factor(
        resx, state.lambdax, resy, state.sgma2, state.lam, index, state.f, rng,
        fix_f=config.fix_f,
    )
    state.Wf = factor_design(state.f, index)

    # III. latent utilities
    state.xstar = draw_utility(data.x, state.mu_xstar + state.lambdax * state.f, rng)

    # IV. treatment equation
    tdraw = select_treatment(
        state.xstar, data.Wx, state.f, state.deltax, model.deltax_fix,
        state.omega_alpha, prior.invA0, rng,
        select=select,
        freeze=config.fix_alpha,
        current=np.append(state.alpha, state.lambdax),
    )
    state.deltax, state.alpha, state.lambdax = tdraw.delta, tdraw.alpha, tdraw.lambdax
    state.mu_xstar = data.Wx @ state.alpha

    # V. outcome equations
    odraw = select_outcome(
        data.y, data.W, state.Wf, state.var_yt, state.deltay, model.deltay_fix,
        state.omega_beta, state.omega_lambda, prior.invB0, rng,
        select=select,
        freeze=config.fix_beta,
        current=np.concatenate([state.beta, state.lam]),
    )
    state.deltay, state.beta, state.lam = odraw.delta, odraw.beta, odraw.lam
    state.muy_fix = data.W @ state.beta
    state.fcontr = state.Wf @ state.lam
    return state


def identify(state: ChainState, rng: np.random.Generator) -> ChainState:
    """Random joint sign flip of the outcome and selection loadings.

    ``fcontr`` keeps the pre-flip loadings; the factor is redrawn next
    iteration under the flipped ones. The applied sign is kept in
    ``state.sign`` so that recorded loadings can be matched to the recorded
    factor.
    """
    state.lam, state.lambdax, state.sign = sign_switch(state.lam, state.lambdax, rng)
    return state


def run_chain(  # noqa: PLR0913
    data: PanelDataset,
    model: ModelSpec,
    prior: Prior | PriorConfig | None = None,
    config: MCMCConfig | None = None,
    *,
    start: StartingValues | None = None,
    rng: np.random.Generator | None = None,
) -> DrawArchive:
    """Run one chain and return its complete draw archive.

    Parameters
    ----------
    data : PanelDataset
        Sorted panel (see :func:`bayestrt.utils.data.prepare_panel`).
    model : ModelSpec
        Dimensions and selection masks.
    prior : Prior or PriorConfig, optional
        Defaults to ``PriorConfig()`` expanded for ``model``.
    config : MCMCConfig, optional
        Iteration counts, selection start and freeze flags.
    start : StartingValues, optional
        Defaults to :func:`bayestrt.utils.starting.starting_values`.
    rng : numpy.random.Generator, optional
        Defaults to ``config.make_rng()``.
    """
    config = MCMCConfig() if config is None else config
    if not isinstance(prior, Prior):
        prior = (PriorConfig() if prior is None else prior).build(model)
    rng = config.make_rng() if rng is None else rng
    start = starting_values(data) if start is None else start

    index = build_panel_index(data.Tvec, model.Tmax, data.indy1, data.Ti)
    sn = posterior_shape(index, prior.s0)
    archive = DrawArchive.allocate(model, data.n, config)
    state = initialize_chain(data, index, model, start, rng)

    nmc = config.n_iter
    halfway = config.burnin + math.ceil(config.draws / 2)
    LOGGER.info(
        "Starting MCMC for '%s': %d iterations (burn-in %d, selection after %d).",
        model.name, nmc, config.burnin, config.start_select,
    )
    t0 = time.perf_counter()
    for imc in range(1, nmc + 1):
        if imc == config.start_select:
            LOGGER.info("Starting selection of covariates at iteration %d.", imc)
        if imc == config.burnin:
            LOGGER.info("End of burn-in phase at iteration %d.", imc)
        if imc == halfway:
            LOGGER.info("Iteration %d of %d reached.", imc, nmc)

        select = imc > config.start_select
        gibbs_step(state, data, index, model, prior, sn, config, rng, select=select)
        if config.sign_switch:
            identify(state, rng)
        if select:
            state.omega_alpha, state.omega_beta, state.omega_lambda = update_mixture_weights(
                state.deltax, model.deltax_fix, state.deltay, model.deltay_fix,
                model.dy, prior.beta_hyper, rng,
            )
        archive.record(imc - 1, state)

        if config.log_every and imc % int(config.log_every) == 0:
            LOGGER.debug(
                "iter %d: lambdax=%.3f omega=(%.3f, %.3f, %.3f)",
                imc, state.lambdax, state.omega_alpha, state.omega_beta, state.omega_lambda,
            )

    archive.extra["etime"] = time.perf_counter() - t0
    LOGGER.info("MCMC finished in %.2fs.", archive.extra["etime"])
    return archive


def _chain_worker(args: tuple[Any, ...]) -> DrawArchive:
    data, model, prior, config, start, seed_seq = args
    return run_chain(
        data, model, prior, config, start=start, rng=np.random.default_rng(seed_seq),
    )


class SharedFactorModel(BaseSampler):
    """Bayesian treatment-effect model with a shared latent factor.

    Parameters
    ----------
    data : PanelDataset
        Sorted panel data.
    model : ModelSpec
        Dimensions and selection masks (see :meth:`ModelSpec.default`).
    prior : PriorConfig or Prior, optional
        Prior hyperparameters; ``PriorConfig()`` by default.
    config : MCMCConfig, optional
        Iteration counts, selection start and freeze flags.
    start : StartingValues, optional
        Starting coefficients; OLS-based by default.

    Examples
    --------
    >>> from bayestrt.sim.montecarlo import simulate_shared_factor_panel
    >>> base, panel, _ = simulate_shared_factor_panel(n=200, Tmax=3, seed=1)
    >>> model = SharedFactorModel.from_frames(
    ...     base, panel, x_cols=["z"], y_cols=["w"],
    ...     config=MCMCConfig(burnin=200, draws=500, start_select=100, seed=0),
    ... )
    >>> archive = model.fit()
    >>> archive.kept("beta").mean(axis=0)
    """

    def __init__(
        self,
        data: PanelDataset,
        model: ModelSpec,
        prior: PriorConfig | Prior | None = None,
        config: MCMCConfig | None = None,
        start: StartingValues | None = None,
    ) -> None:
        super().__init__()
        data.validate()
        if data.W.shape[1] != model.dy or data.Wx.shape[1] != model.dx:
            raise ValueError("Design widths do not match the model dimensions (dx, dy).")
        if data.Tmax > model.Tmax:
            raise ValueError(f"Data contain period {data.Tmax} beyond model Tmax={model.Tmax}.")
        self.data = data
        self.model = model
        self.prior = prior if isinstance(prior, Prior) else (prior or PriorConfig()).build(model)
        self.config = MCMCConfig() if config is None else config
        self.start = start

    @classmethod
    def from_frames(  # noqa: PLR0913
        cls,
        base: pd.DataFrame,
        panel: pd.DataFrame,
        *,
        x_cols: Sequence[str] = (),
        y_cols: Sequence[str] = (),
        covars: Mapping[str, Any] | None = None,
        prior: PriorConfig | None = None,
        config: MCMCConfig | None = None,
        **kwargs: Any,
    ) -> SharedFactorModel:
        """Build the model from a baseline frame and a panel frame.

        Remaining keyword arguments (``id_col``, ``treat_col``, ``time_col``,
        ``outcome_col``, ``sort_data``, ``name``) go to
        :func:`bayestrt.utils.data.prepare_panel`.
        """
        data, model = prepare_panel(
            base, panel, x_cols=x_cols, y_cols=y_cols, covars=covars, **kwargs,
        )
        return cls(data, model, prior=prior, config=config)

    def _starting_values(self) -> StartingValues:
        if self.start is None:
            self.start = starting_values(self.data)
        return self.start

    def fit(self, rng: np.random.Generator | None = None) -> DrawArchive:
        """Run a single chain."""
        self._results = run_chain(
            self.data, self.model, self.prior, self.config,
            start=self._starting_values(), rng=rng,
        )
        return self._results

    def fit_chains(self, n_chains: int = 4, n_jobs: int | None = 1) -> list[DrawArchive]:
        """Run independent chains seeded from ``SeedSequence(config.seed)``.

        ``n_jobs`` > 1 (or -1 for all CPUs) runs the chains in worker processes.
        """
        if int(n_chains) < 1:
            raise ValueError("n_chains must be at least 1.")
        seeds = np.random.SeedSequence(self.config.seed).spawn(int(n_chains))
        start = self._starting_values()
        tasks = [(self.data, self.model, self.prior, self.config, start, s) for s in seeds]
        if n_jobs is None or int(n_jobs) == 1:
            chains = [_chain_worker(t) for t in tasks]
        else:
            maxw = (os.cpu_count() or 1) if int(n_jobs) == -1 else int(n_jobs)
            maxw = max(1, min(maxw, len(tasks)))
            with ProcessPoolExecutor(max_workers=maxw) as ex:
                # executor.map preserves input order; module-level picklable worker
                chains = list(ex.map(_chain_worker, tasks))
        self._results = chains[0]
        return chains
