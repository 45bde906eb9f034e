"""
Utility functions.
"""

import numpy as np

from .exceptions import DataError


def check_vector(y, name='y', dtype=np.float64, n=None):
    """Validate vector input (optionally of length n)."""
    try:
        y = np.asarray(y, dtype=dtype)
    except (TypeError, ValueError) as exc:
        raise DataError(f"{name} must be numeric: {exc}") from exc
    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.ndim != 1:
        raise DataError(f"{name} must be 1-dimensional")
    if n is not None and len(y) != n:
        raise DataError(f"{name} has length {len(y)}, expected {n}")
    if not np.all(np.isfinite(y)):
        raise DataError(f"{name} contains NaN or Inf")
    return y
