"""
Iteratively reweighted least squares.

Replicates R's glm.fit() (src/library/stats/R/glm.R) over an already built
design matrix. Each step is a weighted least squares solve delegated to the
backend.
"""

import warnings
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .families import Family, Binomial, Poisson
from ..exceptions import ConvergenceWarning


@dataclass(frozen=True)
class GLMControl:
    """
    Auxiliary IRLS settings (like R's glm.control).

    Attributes
    ----------
    epsilon : float
        Convergence tolerance on the relative change in deviance
    maxit : int
        Maximum number of IRLS iterations
    """
    epsilon: float = 1e-8
    maxit: int = 25

    def __post_init__(self):
        if not self.epsilon > 0:
            raise ValueError("value of 'epsilon' must be > 0")
        if not self.maxit > 0:
            raise ValueError("maximum number of iterations must be > 0")

    @property
    def qr_tol(self) -> float:
        """Rank tolerance handed to the QR solver."""
        return min(1e-7, self.epsilon / 1000)


@dataclass
class IRLSResult:
    """Raw IRLS output (array level, no names)."""
    coef: np.ndarray              # NaN for aliased columns
    fitted_values: np.ndarray     # μ
    linear_predictors: np.ndarray # η
    working_residuals: np.ndarray
    working_weights: np.ndarray
    prior_weights: np.ndarray
    y: np.ndarray
    offset: np.ndarray

    rank: int
    qr_R: np.ndarray
    qr_pivot: np.ndarray

    deviance: float
    null_deviance: float
    null_fitted_values: np.ndarray
    aic: float
    df_residual: int
    df_null: int

    converged: bool
    boundary: bool
    iterations: int


def _eta(X, coef, offset):
    # Aliased (NaN) coefficients contribute nothing
    return X @ np.nan_to_num(coef, nan=0.0) + offset


def fit_irls(
    X: np.ndarray,
    y: np.ndarray,
    family: Family,
    weights: Optional[np.ndarray] = None,
    offset: Optional[np.ndarray] = None,
    control: Optional[GLMControl] = None,
    backend=None,
    intercept: bool = True,
) -> IRLSResult:
    """
    Fit a generalized linear model by IRLS.

    Parameters
    ----------
    X : ndarray, shape (n, p)
        Design matrix (intercept column included when the model has one)
    y : ndarray, shape (n,)
        Response vector (proportions for the binomial family)
    family : Family
        GLM family
    weights : ndarray, shape (n,), optional
        Prior weights (number of trials for the binomial family)
    offset : ndarray, shape (n,), optional
        Offset on the linear predictor scale
    control : GLMControl, optional
        Convergence settings
    backend : BackendBase, optional
        Weighted least squares solver
    intercept : bool
        Whether X contains an intercept column (affects the null model)

    Returns
    -------
    result : IRLSResult

    Notes
    -----
    Uses R's convergence criterion:
        |dev - dev_old| / (0.1 + |dev|) < epsilon
    and halves the step towards the previous coefficients whenever the
    deviance is non-finite or η/μ leave the family's valid region.
    """
    if backend is None:
        from .._backends import get_backend
        backend = get_backend('cpu')
    if control is None:
        control = GLMControl()

    nobs, nvars = X.shape
    weights = np.ones(nobs) if weights is None else np.asarray(weights, dtype=np.float64)
    offset = np.zeros(nobs) if offset is None else np.asarray(offset, dtype=np.float64)

    if np.any(weights < 0):
        raise ValueError("negative weights not allowed")

    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        mustart = family.initialize(y, weights)
        eta = family.linkfun(mustart)
        mu = family.linkinv(eta)
        if not (family.validmu(mu) and family.valideta(eta)):
            raise FloatingPointError(
                "cannot find valid starting values: please specify some"
            )

        devold = float(np.sum(family.dev_resids(y, mu, weights)))
        boundary = conv = False
        coef = np.full(nvars, np.nan)
        coefold = None
        fit = None
        w = np.zeros(0)
        good = weights > 0
        iteration = 0

        for iteration in range(1, control.maxit + 1):
            good = weights > 0
            varmu = family.variance(mu)[good]
            if np.any(np.isnan(varmu)):
                raise FloatingPointError("NAs in V(mu)")
            if np.any(varmu == 0):
                raise FloatingPointError("0s in V(mu)")
            mu_eta_val = family.mu_eta(eta)
            if np.any(np.isnan(mu_eta_val[good])):
                raise FloatingPointError("NAs in d(mu)/d(eta)")

            good = (weights > 0) & (mu_eta_val != 0)
            if not np.any(good):
                conv = False
                w = np.zeros(0)
                warnings.warn(
                    f"no observations informative at iteration {iteration}",
                    ConvergenceWarning
                )
                break

            z = (eta - offset)[good] + (y - mu)[good] / mu_eta_val[good]
            w = np.sqrt(weights[good] * mu_eta_val[good] ** 2
                        / family.variance(mu)[good])

            fit = backend.fit_linear_model(
                X[good, :], z, weights=w ** 2, tol=control.qr_tol
            )
            start = fit.coef
            if np.any(~np.isfinite(start[~np.isnan(start)])):
                raise FloatingPointError(
                    f"non-finite coefficients at iteration {iteration}"
                )

            eta = _eta(X, start, offset)
            mu = family.linkinv(eta)
            dev = float(np.sum(family.dev_resids(y, mu, weights)))

            if not np.isfinite(dev):
                if coefold is None:
                    raise FloatingPointError(
                        "no valid set of coefficients has been found: "
                        "please supply starting values"
                    )
                ii = 1
                while not np.isfinite(dev):
                    if ii > control.maxit:
                        raise FloatingPointError("inner loop 1; cannot correct step size")
                    ii += 1
                    start = (start + coefold) / 2
                    eta = _eta(X, start, offset)
                    mu = family.linkinv(eta)
                    dev = float(np.sum(family.dev_resids(y, mu, weights)))
                boundary = True

            if not (family.valideta(eta) and family.validmu(mu)):
                if coefold is None:
                    raise FloatingPointError(
                        "no valid set of coefficients has been found: "
                        "please supply starting values"
                    )
                ii = 1
                while not (family.valideta(eta) and family.validmu(mu)):
                    if ii > control.maxit:
                        raise FloatingPointError("inner loop 2; cannot correct step size")
                    ii += 1
                    start = (start + coefold) / 2
                    eta = _eta(X, start, offset)
                    mu = family.linkinv(eta)
                boundary = True
                dev = float(np.sum(family.dev_resids(y, mu, weights)))

            coef = start
            if abs(dev - devold) / (abs(dev) + 0.1) < control.epsilon:
                conv = True
                break
            devold = dev
            coefold = coef

        if not conv:
            warnings.warn("glm.fit: algorithm did not converge", ConvergenceWarning)
        if boundary:
            warnings.warn("glm.fit: algorithm stopped at boundary value", ConvergenceWarning)

        eps = 10 * np.finfo(np.float64).eps
        if isinstance(family, Binomial):
            if np.any(mu > 1 - eps) or np.any(mu < eps):
                warnings.warn(
                    "glm.fit: fitted probabilities numerically 0 or 1 occurred",
                    UserWarning
                )
        if isinstance(family, Poisson):
            if np.any(mu < eps):
                warnings.warn("glm.fit: fitted rates numerically 0 occurred", UserWarning)

        working_residuals = (y - mu) / family.mu_eta(eta)
        working_weights = np.zeros(nobs)
        working_weights[good] = w ** 2

        dev = float(np.sum(family.dev_resids(y, mu, weights)))
        n_ok = nobs - int(np.sum(weights == 0))

        if intercept and np.any(offset != 0):
            # Null model with an offset needs its own fit
            null_fit = fit_irls(
                np.ones((nobs, 1)), y, family, weights=weights, offset=offset,
                control=control, backend=backend, intercept=True
            )
            null_deviance = null_fit.deviance
            null_mu = null_fit.fitted_values
        else:
            if intercept:
                wtdmu = np.sum(weights * y) / np.sum(weights)
            else:
                wtdmu = family.linkinv(offset)
            null_mu = np.broadcast_to(wtdmu, y.shape).astype(np.float64)
            null_deviance = float(np.sum(family.dev_resids(y, null_mu, weights)))

    rank = fit.rank if fit is not None else 0
    aic = float(family.aic(y, mu, weights, dev)) + 2 * rank

    return IRLSResult(
        coef=coef,
        fitted_values=mu,
        linear_predictors=eta,
        working_residuals=working_residuals,
        working_weights=working_weights,
        prior_weights=weights,
        y=y,
        offset=offset,
        rank=rank,
        qr_R=fit.qr_R if fit is not None else np.zeros((0, nvars)),
        qr_pivot=fit.qr_pivot if fit is not None else np.arange(1, nvars + 1),
        deviance=dev,
        null_deviance=null_deviance,
        null_fitted_values=null_mu,
        aic=aic,
        df_residual=n_ok - rank,
        df_null=n_ok - int(intercept),
        converged=conv,
        boundary=boundary,
        iterations=iteration,
    )
