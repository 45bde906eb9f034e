"""
Cost functions for cross-validation.

A cost function maps one held-out observation and its prediction (both on
the response scale) to a non-negative error.
"""

import numpy as np


def absolute_error(observed: float, predicted: float) -> float:
    """|r - p|, the default leave-one-out cost."""
    return float(np.abs(observed - predicted))


def squared_error(observed: float, predicted: float) -> float:
    """(r - p)²"""
    return float((observed - predicted) ** 2)


def classification_error(observed: float, predicted: float,
                         threshold: float = 0.5) -> float:
    """1 if observed and predicted fall on different sides of threshold."""
    return float((observed > threshold) != (predicted > threshold))


__all__ = ["absolute_error", "squared_error", "classification_error"]
