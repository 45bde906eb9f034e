"""
Generalized linear model API.

Main user-facing interface for GLMs: an immutable model specification
(formula, family, weights) that can be fitted to any dataset, and the
fitted result with R-style inference, residuals and fit diagnostics.
"""

import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from patsy import PatsyError, build_design_matrices, dmatrices
from scipy import stats

from ._backends import get_backend
from ._core.families import Family, Gaussian, get_family
from ._core.irls import GLMControl, fit_irls
from ._utils import check_vector
from .exceptions import DataError


@dataclass(frozen=True)
class GLMSpec:
    """
    Model specification: everything needed to (re)fit a GLM.

    Fitting never mutates the specification, so one spec can be refitted on
    any number of subsets of a dataset.

    Parameters
    ----------
    formula : str
        patsy formula, e.g. ``'gfrac ~ height + diameter + light + time'``.
        Categorical (string) predictors are treatment-coded.
    family : Family, str or Family subclass
        GLM family (default Gaussian, as in R)
    weights : str, optional
        Column holding prior weights (number of trials for binomial)
    offset : str, optional
        Column holding an offset on the linear predictor scale
    control : GLMControl
        IRLS convergence settings
    backend : str
        Computational backend: 'auto', 'cpu'
    """
    formula: str
    family: Family = field(default_factory=Gaussian)
    weights: Optional[str] = None
    offset: Optional[str] = None
    control: GLMControl = field(default_factory=GLMControl)
    backend: str = 'auto'

    def __post_init__(self):
        if '~' not in self.formula:
            raise ValueError(f"formula must have a response: '{self.formula}'")
        object.__setattr__(self, 'family', get_family(self.family))

    # ------------------------------------------------------------------
    # Design construction

    def _design(self, data: pd.DataFrame):
        """Build response vector and design matrix from data."""
        if not isinstance(data, pd.DataFrame):
            raise DataError("data must be a pandas DataFrame")
        try:
            y_mat, X_mat = dmatrices(
                self.formula, data, NA_action='raise', return_type='matrix'
            )
        except (PatsyError, KeyError, NameError) as exc:
            raise DataError(
                f"cannot build design from formula '{self.formula}': {exc}"
            ) from exc

        if y_mat.shape[1] != 1:
            raise DataError(
                f"response must be a single numeric column, got "
                f"{y_mat.design_info.column_names}"
            )
        y = check_vector(np.asarray(y_mat)[:, 0], name='response')
        return y, np.asarray(X_mat, dtype=np.float64), X_mat.design_info

    def _column(self, data: pd.DataFrame, name: Optional[str], what: str):
        if name is None:
            return None
        if name not in data.columns:
            raise DataError(f"required {what} field '{name}' is absent")
        return check_vector(data[name].to_numpy(), name=what)

    def validate(self, data: pd.DataFrame) -> Tuple[np.ndarray, List[str]]:
        """
        Check that data can be fitted by this specification.

        Returns
        -------
        (observed, columns)
            Response values and design column names

        Raises
        ------
        DataError
            Absent or non-finite fields, negative weights, or responses
            outside the family's support
        """
        y, _, design_info = self._design(data)
        weights = self._column(data, self.weights, 'weights')
        self._column(data, self.offset, 'offset')
        if weights is None:
            weights = np.ones_like(y)
        if np.any(weights < 0):
            raise DataError("negative weights not allowed")
        with warnings.catch_warnings():
            # support check only
            warnings.simplefilter('ignore')
            self.family.initialize(y, weights)
        return y, list(design_info.column_names)

    # ------------------------------------------------------------------
    # Fitting

    def fit(self, data: pd.DataFrame) -> 'GLMResult':
        """
        Fit the model to data.

        Returns a new GLMResult on every call.
        """
        y, X, design_info = self._design(data)
        weights = self._column(data, self.weights, 'weights')
        offset = self._column(data, self.offset, 'offset')

        if weights is not None and np.any(weights < 0):
            raise DataError("negative weights not allowed")

        raw = fit_irls(
            X, y, self.family,
            weights=weights,
            offset=offset,
            control=self.control,
            backend=get_backend(self.backend),
            intercept='Intercept' in design_info.column_names,
        )

        return GLMResult(
            spec=self,
            data=data,
            column_names=tuple(design_info.column_names),
            design_info=design_info,
            **vars(raw)
        )


@dataclass(frozen=True, eq=False)
class GLMResult:
    """Results from GLM fitting."""
    spec: GLMSpec
    data: pd.DataFrame
    column_names: Tuple[str, ...]
    design_info: object

    coef: np.ndarray              # Coefficients (NaN when aliased)
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

    # ------------------------------------------------------------------
    # Coefficients and inference

    @property
    def family(self) -> Family:
        return self.spec.family

    @property
    def n_obs(self) -> int:
        """Observations with positive prior weight."""
        return int(np.sum(self.prior_weights > 0))

    @property
    def n_coef(self) -> int:
        return len(self.column_names)

    @property
    def coefficients(self) -> pd.Series:
        """Named coefficients (pandas Series)."""
        return pd.Series(self.coef, index=list(self.column_names))

    @property
    def dispersion(self) -> float:
        """Dispersion parameter (1 for binomial and Poisson)."""
        if self.family.fixed_dispersion:
            return 1.0
        if self.df_residual <= 0:
            return np.nan
        ok = self.working_weights > 0
        return float(np.sum(self.working_weights[ok] * self.working_residuals[ok] ** 2)
                     / self.df_residual)

    @property
    def vcov(self) -> pd.DataFrame:
        """Variance-covariance matrix of the coefficients."""
        p = self.n_coef
        var_beta = np.full((p, p), np.nan)
        if self.rank > 0:
            # Var(β) = φ (X'WX)⁻¹ from the last IRLS QR factor
            R = self.qr_R[:self.rank, :self.rank]
            R_inv = np.linalg.inv(R)
            unscaled = R_inv @ R_inv.T
            pivot = self.qr_pivot[:self.rank] - 1
            var_beta[np.ix_(pivot, pivot)] = unscaled * self.dispersion
        names = list(self.column_names)
        return pd.DataFrame(var_beta, index=names, columns=names)

    @property
    def std_errors(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.vcov.to_numpy())),
                         index=list(self.column_names))

    @property
    def statistics(self) -> pd.Series:
        """Wald z (fixed dispersion) or t statistics."""
        return self.coefficients / self.std_errors

    @property
    def pvalues(self) -> pd.Series:
        stat = np.abs(self.statistics.to_numpy())
        if self.family.fixed_dispersion:
            p = 2 * stats.norm.sf(stat)
        else:
            p = 2 * stats.t.sf(stat, self.df_residual)
        return pd.Series(p, index=list(self.column_names))

    def conf_int(self, alpha: float = 0.05) -> pd.DataFrame:
        """
        Wald confidence intervals for coefficients.

        Parameters
        ----------
        alpha : float
            Significance level (default: 0.05 for 95% CI)

        Returns
        -------
        DataFrame
            Confidence intervals with columns 'lower' and 'upper'
        """
        if self.family.fixed_dispersion:
            crit = stats.norm.ppf(1 - alpha / 2)
        else:
            crit = stats.t.ppf(1 - alpha / 2, self.df_residual)
        return pd.DataFrame({
            'lower': self.coefficients - crit * self.std_errors,
            'upper': self.coefficients + crit * self.std_errors,
        })

    # ------------------------------------------------------------------
    # Prediction

    def predict(self, newdata: Optional[pd.DataFrame] = None,
                type: str = 'response') -> np.ndarray:
        """
        Predict for new data.

        Parameters
        ----------
        newdata : DataFrame, optional
            Rows to predict; fitted values are returned when omitted
        type : {'response', 'link'}
            'response' back-transforms through the inverse link

        Returns
        -------
        array
            One prediction per row of newdata
        """
        if type not in ('response', 'link'):
            raise ValueError(f"type must be 'response' or 'link', got '{type}'")

        if newdata is None:
            eta = self.linear_predictors
        else:
            try:
                (X_new,) = build_design_matrices(
                    [self.design_info], newdata, NA_action='raise'
                )
            except (PatsyError, KeyError, NameError) as exc:
                raise DataError(f"cannot build design for prediction: {exc}") from exc
            X_new = np.asarray(X_new, dtype=np.float64)

            # Aliased coefficients are dropped, as R does
            valid = ~np.isnan(self.coef)
            eta = X_new[:, valid] @ self.coef[valid]
            if self.spec.offset is not None:
                eta = eta + self.spec._column(newdata, self.spec.offset, 'offset')

        if type == 'link':
            return np.asarray(eta, dtype=np.float64)
        return self.family.linkinv(np.asarray(eta, dtype=np.float64))

    # ------------------------------------------------------------------
    # Residuals and fit diagnostics

    def residuals(self, type: str = 'deviance') -> pd.Series:
        """
        Model residuals.

        Parameters
        ----------
        type : {'deviance', 'pearson', 'working', 'response'}
        """
        y, mu, wt = self.y, self.fitted_values, self.prior_weights
        if type == 'response':
            r = y - mu
        elif type == 'working':
            r = self.working_residuals
        elif type == 'pearson':
            r = (y - mu) * np.sqrt(wt) / np.sqrt(self.family.variance(mu))
        elif type == 'deviance':
            d = np.maximum(self.family.dev_resids(y, mu, wt), 0)
            r = np.sign(y - mu) * np.sqrt(d)
        else:
            raise ValueError(
                f"Unknown residual type: '{type}'\n"
                f"Valid options: 'deviance', 'pearson', 'working', 'response'"
            )
        return pd.Series(r, index=self.data.index, name=f'{type}_residuals')

    @property
    def pearson_chi2(self) -> float:
        """Sum of squared Pearson residuals."""
        return float(np.sum(self.residuals('pearson') ** 2))

    @property
    def dispersion_ratio(self) -> float:
        """Pearson χ² over residual df; values well above 1 suggest overdispersion."""
        if self.df_residual <= 0:
            return np.nan
        return self.pearson_chi2 / self.df_residual

    def _loglik(self, mu: np.ndarray, dev: float) -> float:
        # R's logLik.glm: p - aic/2, with one extra parameter for the
        # estimated dispersion
        extra = 0.0 if self.family.fixed_dispersion else 1.0
        return -self.family.aic(self.y, mu, self.prior_weights, dev) / 2 + extra

    @property
    def loglik(self) -> float:
        """Log-likelihood of the fitted model."""
        return self._loglik(self.fitted_values, self.deviance)

    @property
    def null_loglik(self) -> float:
        """Log-likelihood of the intercept-only model."""
        return self._loglik(self.null_fitted_values, self.null_deviance)

    def pseudo_r_squared(self, kind: str = 'mcfadden') -> float:
        """
        Pseudo-R² measure.

        Parameters
        ----------
        kind : {'mcfadden', 'deviance', 'cox_snell', 'nagelkerke'}
            - mcfadden: 1 - logL / logL₀
            - deviance: 1 - D / D₀ (proportion of deviance explained)
            - cox_snell: 1 - exp(2 (logL₀ - logL) / n)
            - nagelkerke: Cox-Snell rescaled to a maximum of 1
        """
        if kind == 'deviance':
            return 1 - self.deviance / self.null_deviance
        ll, ll0, n = self.loglik, self.null_loglik, self.n_obs
        if kind == 'mcfadden':
            return 1 - ll / ll0
        cox_snell = 1 - np.exp(2 * (ll0 - ll) / n)
        if kind == 'cox_snell':
            return float(cox_snell)
        if kind == 'nagelkerke':
            return float(cox_snell / (1 - np.exp(2 * ll0 / n)))
        raise ValueError(
            f"Unknown pseudo-R² kind: '{kind}'\n"
            f"Valid options: 'mcfadden', 'deviance', 'cox_snell', 'nagelkerke'"
        )

    # ------------------------------------------------------------------
    # Reporting

    def summary(self):
        """Print summary of GLM results (like R's summary.glm)."""
        fixed = self.family.fixed_dispersion
        stat_name, p_name = ('z value', 'Pr(>|z|)') if fixed else ('t value', 'Pr(>|t|)')

        print()
        print("=" * 80)
        print("GENERALIZED LINEAR MODEL RESULTS")
        print("=" * 80)
        print()
        print(f"Formula: {self.spec.formula}")
        print(f"Family: {self.family.name} (link = {self.family.link})")
        print(f"Number of observations: {self.n_obs}")
        print()

        print("Deviance Residuals:")
        resid = self.residuals('deviance').describe()
        print(f"  Min:    {resid['min']:>10.4f}")
        print(f"  1Q:     {resid['25%']:>10.4f}")
        print(f"  Median: {resid['50%']:>10.4f}")
        print(f"  3Q:     {resid['75%']:>10.4f}")
        print(f"  Max:    {resid['max']:>10.4f}")
        print()

        print("Coefficients:")
        print("-" * 80)
        print(f"{'Variable':<24} {'Estimate':>12} {'Std. Error':>12} {stat_name:>10} {p_name:>12}")
        print("-" * 80)

        se, st, pv = self.std_errors, self.statistics, self.pvalues
        for name in self.column_names:
            p = pv[name]
            if np.isnan(p):
                print(f"{name:<24} {'NA':>12} {'NA':>12} {'NA':>10} {'NA':>12} (aliased)")
                continue
            if p < 0.001:
                sig = ' ***'
            elif p < 0.01:
                sig = ' **'
            elif p < 0.05:
                sig = ' *'
            elif p < 0.1:
                sig = ' .'
            else:
                sig = ''
            p_str = f"{p:.4f}" if p >= 0.0001 else "<.0001"
            print(f"{name:<24} {self.coefficients[name]:>12.4f} {se[name]:>12.4f} "
                  f"{st[name]:>10.3f} {p_str:>12}{sig}")

        print("-" * 80)
        print("Signif. codes:  0 '***' 0.001 '**' 0.01 '*' 0.05 '.' 0.1 ' ' 1")
        print()

        dispersion = "taken to be 1" if fixed else f"{self.dispersion:.4f}"
        print(f"(Dispersion parameter for {self.family.name} family {dispersion})")
        print()
        print(f"    Null deviance: {self.null_deviance:.4f} on {self.df_null} degrees of freedom")
        print(f"Residual deviance: {self.deviance:.4f} on {self.df_residual} degrees of freedom")
        print(f"AIC: {self.aic:.4f}")
        print(f"Dispersion ratio (Pearson): {self.dispersion_ratio:.4f}")
        print(f"McFadden pseudo-R²: {self.pseudo_r_squared('mcfadden'):.4f}")
        print()
        print(f"Number of Fisher Scoring iterations: {self.iterations}"
              f"{'' if self.converged else ' (did not converge)'}")
        print("=" * 80)
        print()

    def __repr__(self):
        return (f"GLMResult(formula='{self.spec.formula}', family={self.family.name}, "
                f"n={self.n_obs}, rank={self.rank}, deviance={self.deviance:.3f})")


def glm(formula: str, data: pd.DataFrame,
        family: Union[Family, str] = 'gaussian', **kwargs) -> GLMResult:
    """
    Fit a generalized linear model (convenience function, like R's glm()).

    Parameters
    ----------
    formula : str
        patsy formula (response ~ predictors)
    data : DataFrame
        Dataset
    family : Family or str
        'gaussian', 'binomial', 'poisson' or a Family instance
    **kwargs
        weights, offset, control, backend (see GLMSpec)

    Returns
    -------
    GLMResult
        Fitted model

    Examples
    --------
    >>> model = glm('gfrac ~ height + diameter + light + time', data=lizards,
    ...             family='binomial', weights='total')
    >>> model.summary()
    >>> model.predict(lizards.iloc[:3])
    """
    return GLMSpec(formula, family=family, **kwargs).fit(data)


__all__ = ["GLMSpec", "GLMResult", "GLMControl", "glm"]
