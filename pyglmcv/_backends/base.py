"""
Abstract base classes for backends.

Defines the interface all backends must implement.
"""

from abc import ABC, abstractmethod
import numpy as np
from typing import Optional
from dataclasses import dataclass


@dataclass
class LinearModelResult:
    """Weighted least squares results for one IRLS step."""
    coef: np.ndarray          # NaN for aliased columns
    residuals: np.ndarray
    fitted_values: np.ndarray
    rank: int
    df_residual: int
    qr_R: np.ndarray
    qr_pivot: np.ndarray      # 1-indexed like R
    qr_tol: float


class BackendBase(ABC):
    """Abstract base class for all backends."""

    name = "base"
    precision = "fp64"

    @abstractmethod
    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
        singular_ok: bool = True
    ) -> LinearModelResult:
        """
        Fit a weighted linear model.

        Backends implement ALL computation internally using their
        native types, only converting at entry/exit.

        Parameters
        ----------
        X : ndarray, shape (n, p)
            Full design matrix (intercept column included by the formula)
        y : ndarray, shape (n,)
            Response vector (the working response during IRLS)
        weights : ndarray, optional
            Observation weights (the working weights during IRLS)
        offset : ndarray, optional
            Offset term
        tol : float, optional
            Relative tolerance for rank determination
        singular_ok : bool
            Allow singular fits

        Returns
        -------
        LinearModelResult
            Regression results (all numpy arrays)
        """
        pass

    @abstractmethod
    def get_device_info(self) -> dict:
        """Get backend information."""
        pass


class CPUBackend(BackendBase):
    """CPU backend base class (always FP64)."""
    pass
