"""
Resampling around a fitted GLM.

- bootstrap(): case-resampling bootstrap of the coefficients
- simulate(): replicate responses drawn from the fitted model, optionally
  propagating coefficient uncertainty (predictive simulation)
"""

import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from patsy import build_design_matrices

from .exceptions import DataError
from .glm import GLMResult


@dataclass(eq=False)
class BootstrapResult:
    """
    Bootstrap replicates of the coefficients.

    Attributes
    ----------
    estimate : Series
        Coefficients of the original fit
    replicates : DataFrame, shape (n_boot, p)
        One row per replicate; NaN rows for replicates whose refit was
        rank-deficient, failed or did not converge
    """
    estimate: pd.Series
    replicates: pd.DataFrame

    @property
    def n_boot(self) -> int:
        return len(self.replicates)

    @property
    def n_failed(self) -> int:
        return int(self.replicates.isna().all(axis=1).sum())

    @property
    def std_errors(self) -> pd.Series:
        return self.replicates.std(ddof=1)

    @property
    def bias(self) -> pd.Series:
        return self.replicates.mean() - self.estimate

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """Percentile confidence intervals with columns 'lower' and 'upper'."""
        return pd.DataFrame({
            'lower': self.replicates.quantile(alpha / 2),
            'upper': self.replicates.quantile(1 - alpha / 2),
        })

    def __repr__(self):
        return f"BootstrapResult(n_boot={self.n_boot}, failed={self.n_failed})"


def _bootstrap_replicate(spec, data, columns, seed):
    rng = np.random.default_rng(seed)
    rows = rng.integers(0, len(data), size=len(data))
    sample = data.iloc[rows].reset_index(drop=True)
    nan = np.full(len(columns), np.nan)
    try:
        fit = spec.fit(sample)
    except (ValueError, ArithmeticError, np.linalg.LinAlgError):
        return nan
    if list(fit.column_names) != list(columns) or fit.rank < len(columns) or not fit.converged:
        return nan
    return fit.coef


def bootstrap(model: GLMResult, data: Optional[pd.DataFrame] = None,
              n_boot: int = 1000, seed=None, n_jobs: int = 1) -> BootstrapResult:
    """
    Case-resampling bootstrap of GLM coefficients.

    Parameters
    ----------
    model : GLMResult
        Fitted model; its specification is refitted on every replicate
    data : DataFrame, optional
        Data to resample (default: the model's data)
    n_boot : int
        Number of replicates
    seed : int, optional
        Seed; replicate seeds are drawn from it, so results do not depend
        on n_jobs
    n_jobs : int
        joblib workers

    Returns
    -------
    BootstrapResult
    """
    if n_boot < 2:
        raise ValueError(f"n_boot must be at least 2, got {n_boot}")
    data = model.data if data is None else data
    if len(data) < 2:
        raise DataError(f"bootstrap needs at least 2 observations, got {len(data)}")

    columns = list(model.column_names)
    seeds = np.random.default_rng(seed).integers(0, 2**31, size=n_boot, dtype=np.int64)

    # failed replicates are counted in n_failed
    with warnings.catch_warnings():
        warnings.simplefilter('ignore')
        coefs = Parallel(n_jobs=n_jobs, prefer='threads')(
            delayed(_bootstrap_replicate)(model.spec, data, columns, s) for s in seeds
        )

    replicates = pd.DataFrame(np.vstack(coefs), columns=columns)
    result = BootstrapResult(estimate=model.coefficients, replicates=replicates)
    if result.n_failed:
        warnings.warn(
            f"{result.n_failed} of {n_boot} bootstrap replicates failed to fit",
            UserWarning
        )
    return result


def simulate_coefficients(model: GLMResult, nsim: int = 1, seed=None) -> pd.DataFrame:
    """
    Draw coefficient vectors from N(β̂, vcov).

    Unlike arm::sim, the dispersion is held at its estimate rather than
    drawn from a scaled inverse χ², so Gaussian draws are slightly too
    narrow for small residual df. Aliased coefficients stay NaN.
    """
    rng = np.random.default_rng(seed)
    valid = ~np.isnan(model.coef)
    draws = np.full((nsim, model.n_coef), np.nan)
    cov = model.vcov.to_numpy()[np.ix_(valid, valid)]
    draws[:, valid] = rng.multivariate_normal(model.coef[valid], cov, size=nsim)
    return pd.DataFrame(draws, columns=list(model.column_names))


def simulate(model: GLMResult, nsim: int = 1, seed=None,
             parameter_uncertainty: bool = False) -> pd.DataFrame:
    """
    Simulate responses from a fitted GLM (like R's simulate.glm).

    Parameters
    ----------
    model : GLMResult
        Fitted model
    nsim : int
        Number of replicate response vectors
    seed : int, optional
        Random seed
    parameter_uncertainty : bool
        Draw each replicate's coefficients from N(β̂, vcov) first, so the
        replicates reflect estimation uncertainty as well as sampling noise

    Returns
    -------
    DataFrame, shape (n, nsim)
        Columns 'sim_1' ... 'sim_nsim', indexed like the model's data.
        Binomial replicates are proportions (successes / trials).
    """
    if nsim < 1:
        raise ValueError(f"nsim must be at least 1, got {nsim}")
    rng = np.random.default_rng(seed)
    family, wt = model.family, model.prior_weights

    if parameter_uncertainty:
        X = _design_matrix(model)
        betas = simulate_coefficients(model, nsim=nsim, seed=rng).to_numpy()
        etas = X @ np.nan_to_num(betas, nan=0.0).T + model.offset[:, np.newaxis]
        mus = family.linkinv(etas.ravel()).reshape(etas.shape)
    else:
        mus = np.repeat(model.fitted_values[:, np.newaxis], nsim, axis=1)

    sims = np.column_stack([
        family.simulate(mus[:, j], wt, model.dispersion, rng) for j in range(nsim)
    ])
    return pd.DataFrame(sims, index=model.data.index,
                        columns=[f'sim_{j + 1}' for j in range(nsim)])


def _design_matrix(model: GLMResult) -> np.ndarray:
    (X,) = build_design_matrices([model.design_info], model.data, NA_action='raise')
    return np.asarray(X, dtype=np.float64)


def predictive_pvalue(model: GLMResult, statistic=np.mean, nsim: int = 1000,
                      seed=None, parameter_uncertainty: bool = True) -> float:
    """
    Posterior predictive check: share of simulated datasets whose statistic
    is at least the observed one.
    """
    sims = simulate(model, nsim=nsim, seed=seed,
                    parameter_uncertainty=parameter_uncertainty)
    observed = statistic(model.y)
    simulated = np.array([statistic(sims[c].to_numpy()) for c in sims.columns])
    return float(np.mean(simulated >= observed))


__all__ = [
    "BootstrapResult",
    "bootstrap",
    "simulate",
    "simulate_coefficients",
    "predictive_pvalue",
]
