"""
Exception hierarchy.

Errors raised by model fitting and cross-validation.
"""

from typing import Optional, Sequence


class PyGLMCVError(Exception):
    """Base class for all pyglmcv errors."""
    pass


class DataError(PyGLMCVError, ValueError):
    """
    Dataset cannot be used.

    Raised for too few observations, absent fields, missing values,
    responses outside the family's support and negative weights.
    """
    pass


class RefitError(PyGLMCVError):
    """
    Refitting a fold failed.

    Attributes
    ----------
    index : int
        Row position of the (first) held-out observation
    indices : tuple of int
        Row positions of every observation held out by the fold
    """

    def __init__(self, message: str, index: int,
                 indices: Optional[Sequence[int]] = None):
        self.index = int(index)
        self.indices = tuple(int(i) for i in indices) if indices is not None else (self.index,)
        super().__init__(f"fold holding out row {self.index}: {message}")


class CostFunctionError(PyGLMCVError):
    """
    Cost function failed for a held-out observation.

    Attributes
    ----------
    index : int
        Row position of the observation
    observed, predicted : float
        Arguments the cost function was called with
    """

    def __init__(self, message: str, index: int,
                 observed: float = float('nan'), predicted: float = float('nan')):
        self.index = int(index)
        self.observed = observed
        self.predicted = predicted
        super().__init__(
            f"cost function failed at row {self.index} "
            f"(observed={observed!r}, predicted={predicted!r}): {message}"
        )


class ConvergenceWarning(UserWarning):
    """IRLS did not converge or stopped at the boundary."""
    pass


__all__ = [
    "PyGLMCVError",
    "DataError",
    "RefitError",
    "CostFunctionError",
    "ConvergenceWarning",
]
