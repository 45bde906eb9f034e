"""
Leave-one-out and K-fold cross-validation.

Every fold refits the model specification on the rows it does not hold out
and predicts the held-out rows on the response scale. The cost function is
applied per held-out row, so the error vector is always index-aligned with
the dataset, whatever the fold count.

Examples
--------
>>> from pyglmcv import glm, loo
>>> model = glm('gfrac ~ height + diameter + light + time', data=lizards,
...             family='binomial', weights='total')
>>> result = loo(model)
>>> result.estimate        # mean absolute leave-one-out error
>>> result.summary()
"""

import warnings
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from .costs import absolute_error
from .exceptions import CostFunctionError, DataError, RefitError
from .glm import GLMResult


@dataclass(frozen=True, eq=False)
class Fold:
    """One train/held-out split (row positions, not index labels)."""
    number: int
    train_index: np.ndarray
    test_index: np.ndarray


@dataclass
class _FoldOutcome:
    fold: Fold
    predictions: np.ndarray
    errors: np.ndarray
    failures: Dict[int, Exception]


@dataclass(eq=False)
class CVResult:
    """
    Cross-validation results.

    Attributes
    ----------
    errors : ndarray, shape (n,)
        Per-observation error, NaN where the observation failed
        (partial-results mode only)
    predictions : ndarray, shape (n,)
        Held-out prediction on the response scale
    observed : ndarray, shape (n,)
        Observed response
    folds : list of Fold
    failures : dict
        Row position -> RefitError or CostFunctionError
    index : pandas Index
        Index of the evaluated dataset
    """
    errors: np.ndarray
    predictions: np.ndarray
    observed: np.ndarray
    folds: List[Fold]
    failures: Dict[int, Exception] = field(default_factory=dict)
    index: Optional[pd.Index] = None

    @property
    def n_obs(self) -> int:
        return len(self.errors)

    @property
    def n_folds(self) -> int:
        return len(self.folds)

    @property
    def failed_indices(self) -> List[int]:
        return sorted(self.failures)

    @property
    def estimate(self) -> float:
        """Mean error over the observations that did not fail."""
        ok = ~np.isnan(self.errors)
        if not np.any(ok):
            return np.nan
        return float(np.mean(self.errors[ok]))

    @property
    def std_error(self) -> float:
        """Standard error of the mean error."""
        ok = ~np.isnan(self.errors)
        k = int(np.sum(ok))
        if k < 2:
            return np.nan
        return float(np.std(self.errors[ok], ddof=1) / np.sqrt(k))

    def error_histogram(self, bins=10):
        """Histogram counts and bin edges of the non-missing errors."""
        return np.histogram(self.errors[~np.isnan(self.errors)], bins=bins)

    def to_frame(self) -> pd.DataFrame:
        """Per-observation table aligned with the dataset's index."""
        fold_of = np.empty(self.n_obs, dtype=np.int64)
        for fold in self.folds:
            fold_of[fold.test_index] = fold.number
        return pd.DataFrame({
            'observed': self.observed,
            'predicted': self.predictions,
            'error': self.errors,
            'fold': fold_of,
        }, index=self.index)

    def summary(self):
        """Print cross-validation summary."""
        kind = "leave-one-out" if self.n_folds == self.n_obs else f"{self.n_folds}-fold"
        ok = self.errors[~np.isnan(self.errors)]

        print()
        print("=" * 60)
        print(f"CROSS-VALIDATION RESULTS ({kind})")
        print("=" * 60)
        print(f"Observations:     {self.n_obs}")
        print(f"Refits:           {self.n_folds}")
        print(f"Estimate:         {self.estimate:.6f}")
        print(f"Std. error:       {self.std_error:.6f}")
        if len(ok):
            print(f"Min / Max error:  {ok.min():.6f} / {ok.max():.6f}")
        if self.failures:
            print(f"Failed rows:      {self.failed_indices}")
        print("=" * 60)
        print()

    def __repr__(self):
        return (f"CVResult(n={self.n_obs}, folds={self.n_folds}, "
                f"estimate={self.estimate:.4f}, failed={len(self.failures)})")


def make_folds(n: int, n_folds: Optional[int] = None, shuffle: bool = False,
               seed=None) -> List[Fold]:
    """
    Split row positions 0..n-1 into folds.

    Parameters
    ----------
    n : int
        Number of observations (at least 2)
    n_folds : int, optional
        Number of folds K with 2 <= K <= n; None means n (leave-one-out)
    shuffle : bool
        Permute positions before cutting contiguous blocks
    seed : int or numpy Generator, optional
        Seed for the permutation

    Returns
    -------
    list of Fold
        Each position appears in exactly one test block and in the
        training block of every other fold
    """
    if n < 2:
        raise DataError(f"cross-validation needs at least 2 observations, got {n}")
    k = n if n_folds is None else int(n_folds)
    if not 2 <= k <= n:
        raise DataError(f"n_folds must be between 2 and {n}, got {n_folds}")

    positions = np.arange(n)
    if shuffle:
        positions = np.random.default_rng(seed).permutation(n)

    folds = []
    for number, block in enumerate(np.array_split(positions, k)):
        test = np.sort(block)
        train = np.setdiff1d(np.arange(n), test, assume_unique=True)
        folds.append(Fold(number=number, train_index=train, test_index=test))
    return folds


def _refit(spec, data: pd.DataFrame, fold: Fold, columns: List[str]):
    """Fit spec on the fold's training rows; RefitError unless full rank and converged."""
    first, held_out = int(fold.test_index[0]), fold.test_index
    train = data.iloc[fold.train_index].copy()

    try:
        model = spec.fit(train)
    except (ValueError, ArithmeticError, np.linalg.LinAlgError) as exc:
        raise RefitError(f"{type(exc).__name__}: {exc}", first, held_out) from exc

    fold_columns = list(model.column_names)
    if fold_columns != list(columns):
        missing = [c for c in columns if c not in fold_columns]
        raise RefitError(
            f"design columns differ from the full dataset (missing {missing})",
            first, held_out
        )
    if model.rank < len(columns):
        raise RefitError(
            f"rank-deficient fit: rank {model.rank} < {len(columns)} columns",
            first, held_out
        )
    if not model.converged:
        raise RefitError(
            f"IRLS did not converge in {model.iterations} iterations",
            first, held_out
        )
    return model


def _refit_within(spec, data, fold, columns, timeout):
    """Run _refit, raising RefitError for the fold if it outlasts timeout seconds."""
    if timeout is None:
        return _refit(spec, data, fold, columns)
    executor = ThreadPoolExecutor(max_workers=1)
    future = executor.submit(_refit, spec, data, fold, columns)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as exc:
        raise RefitError(f"refit exceeded the {timeout}s timeout",
                         int(fold.test_index[0]), fold.test_index) from exc
    finally:
        # a hung refit cannot be interrupted; its thread is abandoned
        executor.shutdown(wait=False)


def _apply_cost(cost: Callable, index: int, observed: float, predicted: float) -> float:
    try:
        value = float(cost(observed, predicted))
    except Exception as exc:
        raise CostFunctionError(f"{type(exc).__name__}: {exc}", index,
                                observed, predicted) from exc
    if not np.isfinite(value) or value < 0:
        raise CostFunctionError(f"returned {value!r}, expected a finite value >= 0",
                                index, observed, predicted)
    return value


def _evaluate_fold(spec, data, fold, columns, observed, cost, partial,
                   timeout=None) -> _FoldOutcome:
    held_out = fold.test_index
    predictions = np.full(len(held_out), np.nan)
    errors = np.full(len(held_out), np.nan)

    try:
        model = _refit_within(spec, data, fold, columns, timeout)
        try:
            predictions[:] = model.predict(data.iloc[held_out], type='response')
        except (ValueError, ArithmeticError) as exc:
            raise RefitError(f"prediction failed: {exc}", int(held_out[0]), held_out) from exc
    except RefitError as exc:
        if not partial:
            raise
        return _FoldOutcome(fold, predictions, errors, {int(i): exc for i in held_out})

    failures = {}
    for k, i in enumerate(held_out):
        try:
            errors[k] = _apply_cost(cost, int(i), observed[i], predictions[k])
        except CostFunctionError as exc:
            if not partial:
                raise
            failures[int(i)] = exc
    return _FoldOutcome(fold, predictions, errors, failures)


def cross_validate(
    model,
    data: Optional[pd.DataFrame] = None,
    cost: Callable[[float, float], float] = absolute_error,
    n_folds: Optional[int] = None,
    shuffle: bool = False,
    seed=None,
    n_jobs: int = 1,
    timeout: Optional[float] = None,
    partial: bool = False,
) -> CVResult:
    """
    Cross-validate a GLM by refitting it without each fold.

    Parameters
    ----------
    model : GLMResult or GLMSpec
        Fitted model (its specification and, by default, its data are
        reused) or a specification
    data : DataFrame, optional
        Dataset; required when model is a specification
    cost : callable
        cost(observed, predicted) -> float >= 0, applied per held-out row
        on the response scale (default: absolute error)
    n_folds : int, optional
        Number of folds; None (default) is leave-one-out
    shuffle, seed
        Randomize fold membership (K-fold only changes which rows share a fold)
    n_jobs : int
        joblib workers; folds are independent and results keep fold order
    timeout : float, optional
        Time limit in seconds for each fold's refit; a fold that exceeds
        it fails with RefitError
    partial : bool
        Record failing rows as NaN instead of raising; failures are
        excluded from the estimate and listed on the result

    Returns
    -------
    CVResult

    Raises
    ------
    DataError
        Fewer than 2 observations or a field the model needs is absent
    RefitError
        A fold's refit is rank-deficient, fails, does not converge or
        exceeds timeout
    CostFunctionError
        The cost function raises or returns a non-finite/negative value
    """
    if isinstance(model, GLMResult):
        spec = model.spec
        if data is None:
            data = model.data
    else:
        spec = model
        if data is None:
            raise DataError("data is required when cross-validating a specification")

    if not isinstance(data, pd.DataFrame):
        raise DataError("data must be a pandas DataFrame")
    n = len(data)
    folds = make_folds(n, n_folds=n_folds, shuffle=shuffle, seed=seed)
    observed, columns = spec.validate(data)

    outcomes = Parallel(n_jobs=n_jobs, prefer='threads')(
        delayed(_evaluate_fold)(spec, data, fold, columns, observed, cost, partial, timeout)
        for fold in folds
    )

    errors = np.full(n, np.nan)
    predictions = np.full(n, np.nan)
    failures = {}
    for outcome in outcomes:
        errors[outcome.fold.test_index] = outcome.errors
        predictions[outcome.fold.test_index] = outcome.predictions
        failures.update(outcome.failures)

    if failures:
        warnings.warn(
            f"{len(failures)} of {n} observations failed and are excluded "
            f"from the estimate: {sorted(failures)}",
            UserWarning
        )

    return CVResult(
        errors=errors,
        predictions=predictions,
        observed=np.asarray(observed, dtype=np.float64),
        folds=folds,
        failures=dict(sorted(failures.items())),
        index=data.index,
    )


def loo(model, data: Optional[pd.DataFrame] = None,
        cost: Callable[[float, float], float] = absolute_error, **kwargs) -> CVResult:
    """Leave-one-out cross-validation (cross_validate with one row per fold)."""
    return cross_validate(model, data=data, cost=cost, n_folds=None, **kwargs)


__all__ = ["Fold", "CVResult", "make_folds", "cross_validate", "loo"]
