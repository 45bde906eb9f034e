"""
pyglmcv: R-compatible generalized linear models with leave-one-out
cross-validation.

Copyright (C) 2024 SGCX
Licensed under GPL-3.0
"""

__version__ = "1.0.0"

# Import main user-facing API
from .glm import glm, GLMSpec, GLMResult
from ._core.irls import GLMControl
from ._core.families import Family, Gaussian, Binomial, Poisson
from .cv import cross_validate, loo, make_folds, CVResult, Fold
from .costs import absolute_error, squared_error, classification_error
from .resampling import (
    bootstrap,
    simulate,
    simulate_coefficients,
    predictive_pvalue,
    BootstrapResult,
)
from .exceptions import (
    PyGLMCVError,
    DataError,
    RefitError,
    CostFunctionError,
    ConvergenceWarning,
)

# Import backend utilities (for advanced users)
from ._backends import get_backend, list_available_backends

__all__ = [
    'glm',
    'GLMSpec',
    'GLMResult',
    'GLMControl',
    'Family',
    'Gaussian',
    'Binomial',
    'Poisson',
    'cross_validate',
    'loo',
    'make_folds',
    'CVResult',
    'Fold',
    'absolute_error',
    'squared_error',
    'classification_error',
    'bootstrap',
    'simulate',
    'simulate_coefficients',
    'predictive_pvalue',
    'BootstrapResult',
    'PyGLMCVError',
    'DataError',
    'RefitError',
    'CostFunctionError',
    'ConvergenceWarning',
    'get_backend',
    'list_available_backends',
]
