"""
Core algorithms (backend-agnostic).
"""

from .families import Family, Gaussian, Binomial, Poisson, get_family
from .irls import GLMControl, IRLSResult, fit_irls

__all__ = [
    "Family",
    "Gaussian",
    "Binomial",
    "Poisson",
    "get_family",
    "GLMControl",
    "IRLSResult",
    "fit_irls",
]
