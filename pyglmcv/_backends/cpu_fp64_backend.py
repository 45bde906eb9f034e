"""
CPU backend using NumPy + SciPy.

Pivoted Householder QR through LAPACK, the reference solver for IRLS steps.
"""

import numpy as np
from scipy.linalg import qr, solve_triangular
from typing import Optional

from .base import CPUBackend, LinearModelResult


class CPUBackendFP64(CPUBackend):
    """
    CPU backend using NumPy + SciPy.

    Always uses FP64 precision.
    """

    def __init__(self):
        self.name = "cpu_fp64"
        self.precision = "fp64"

    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
        singular_ok: bool = True
    ) -> LinearModelResult:
        """Fit weighted linear model using NumPy/LAPACK."""
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        n, p = X.shape

        y_work = y - offset if offset is not None else y.copy()

        if weights is not None:
            good = weights > 0
            if not np.any(good):
                raise ValueError("All weights are zero")

            w_sqrt = np.sqrt(weights[good])
            X_work = X[good, :] * w_sqrt[:, np.newaxis]
            y_work = y_work[good] * w_sqrt
            n_good = int(np.sum(good))
        else:
            X_work = X
            n_good = n

        if tol is None:
            eps = np.finfo(np.float64).eps
            tol = max(n_good, p) * eps

        # QR decomposition with column pivoting
        Q, R, P = qr(X_work, mode='full', pivoting=True)

        # Rank from the diagonal of R relative to its leading entry;
        # R has min(n_good, p) diagonal entries
        R_diag = np.abs(np.diag(R))
        if R_diag.size == 0 or R_diag[0] == 0:
            rank = 0
        else:
            rank = int(np.sum(R_diag >= tol * R_diag[0]))

        if not singular_ok and rank < p:
            raise ValueError(f"Singular fit: rank {rank} < {p} columns")

        qty = Q.T @ y_work

        coef = np.full(p, np.nan, dtype=np.float64)
        if rank > 0:
            coef_active = solve_triangular(
                R[:rank, :rank],
                qty[:rank],
                lower=False
            )
            coef[P[:rank]] = coef_active

        valid_coef = ~np.isnan(coef)
        if np.any(valid_coef):
            fitted = X[:, valid_coef] @ coef[valid_coef]
        else:
            fitted = np.zeros(n, dtype=np.float64)

        residuals = (y - offset if offset is not None else y) - fitted

        if offset is not None:
            fitted = fitted + offset

        return LinearModelResult(
            coef=coef,
            residuals=residuals,
            fitted_values=fitted,
            rank=rank,
            df_residual=n_good - rank,
            qr_R=R[:min(n_good, p), :p],
            qr_pivot=P.astype(np.int64) + 1,  # 1-indexed like R
            qr_tol=tol
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        import scipy
        return {
            'backend': 'cpu',
            'precision': 'fp64',
            'library': f'NumPy {np.__version__}, SciPy {scipy.__version__}',
        }
