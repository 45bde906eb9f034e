"""
GLM family definitions.

Link functions, variance functions, deviance residuals, AIC and starting
values, replicating R's family objects.
"""

import warnings
from abc import ABC, abstractmethod

import numpy as np
from scipy import stats
from scipy.special import xlogy

from ..exceptions import DataError


class Family(ABC):
    """Base class for GLM families."""

    # Dispersion known a priori (binomial, Poisson) or estimated (Gaussian)
    fixed_dispersion = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Family name."""
        pass

    @property
    @abstractmethod
    def link(self) -> str:
        """Link name."""
        pass

    @abstractmethod
    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        """Link function: η = g(μ)"""
        pass

    @abstractmethod
    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        """Inverse link: μ = g⁻¹(η)"""
        pass

    @abstractmethod
    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        """Derivative: dμ/dη"""
        pass

    @abstractmethod
    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function: V(μ)"""
        pass

    @abstractmethod
    def dev_resids(self, y: np.ndarray, mu: np.ndarray,
                   wt: np.ndarray) -> np.ndarray:
        """Squared deviance residuals (unit deviances times prior weights)."""
        pass

    @abstractmethod
    def aic(self, y: np.ndarray, mu: np.ndarray, wt: np.ndarray,
            dev: float) -> float:
        """-2 log-likelihood (plus the dispersion term for Gaussian)."""
        pass

    @abstractmethod
    def initialize(self, y: np.ndarray, wt: np.ndarray) -> np.ndarray:
        """Validate the response and return starting values for μ."""
        pass

    @abstractmethod
    def simulate(self, mu: np.ndarray, wt: np.ndarray, dispersion: float,
                 rng: np.random.Generator) -> np.ndarray:
        """Draw one replicate response vector."""
        pass

    def validmu(self, mu: np.ndarray) -> bool:
        """Check if μ values are valid."""
        return True

    def valideta(self, eta: np.ndarray) -> bool:
        """Check if η values are valid."""
        return True

    def __repr__(self):
        return f"{type(self).__name__}(link='{self.link}')"

    def __eq__(self, other):
        return type(self) is type(other)

    def __hash__(self):
        return hash(type(self))


class Gaussian(Family):
    """Gaussian family with identity link."""

    fixed_dispersion = False

    @property
    def name(self) -> str:
        return "gaussian"

    @property
    def link(self) -> str:
        return "identity"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return mu

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return eta

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return np.ones_like(eta)

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return np.ones_like(mu)

    def dev_resids(self, y, mu, wt):
        return wt * (y - mu) ** 2

    def aic(self, y, mu, wt, dev):
        nobs = len(y)
        return nobs * (np.log(2 * np.pi * dev / nobs) + 1) + 2

    def initialize(self, y, wt):
        return y.astype(np.float64, copy=True)

    def simulate(self, mu, wt, dispersion, rng):
        sd = np.sqrt(dispersion / np.where(wt > 0, wt, np.inf))
        return rng.normal(mu, sd)


class Binomial(Family):
    """
    Binomial family with logit link.

    The response is a proportion in [0, 1]; prior weights are the number of
    trials. Replicates R's binomial() family, including the thresholding at
    ±30 to prevent overflow.
    """

    # Thresholds from R's family.c
    THRESH = 30.0
    MTHRESH = -30.0
    EPS = np.finfo(np.float64).eps

    @property
    def name(self) -> str:
        return "binomial"

    @property
    def link(self) -> str:
        return "logit"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        """Logit link: η = log(μ/(1-μ))"""
        return np.log(mu / (1 - mu))

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        """Inverse logit: μ = 1/(1 + exp(-η)), clamped outside [-30, 30]."""
        eta = np.asarray(eta, dtype=np.float64)
        mu = np.empty_like(eta)
        mu[eta < self.MTHRESH] = self.EPS
        mu[eta > self.THRESH] = 1 - self.EPS
        mask = (eta >= self.MTHRESH) & (eta <= self.THRESH)
        mu[mask] = 1.0 / (1.0 + np.exp(-eta[mask]))
        return mu

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        """Derivative: dμ/dη = exp(η)/(1 + exp(η))²"""
        eta = np.asarray(eta, dtype=np.float64)
        d = np.empty_like(eta)
        outside = (eta < self.MTHRESH) | (eta > self.THRESH)
        d[outside] = self.EPS
        inside = ~outside
        exp_eta = np.exp(eta[inside])
        d[inside] = exp_eta / (1.0 + exp_eta) ** 2
        return d

    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance: V(μ) = μ(1-μ)"""
        return mu * (1 - mu)

    def dev_resids(self, y, mu, wt):
        # y log(y/μ) is taken as 0 at y = 0, as in R's binomial_dev_resids
        return 2 * wt * (xlogy(y, y / mu) + xlogy(1 - y, (1 - y) / (1 - mu)))

    def aic(self, y, mu, wt, dev):
        m = wt
        ok = m > 0
        successes = np.round(m[ok] * y[ok])
        return -2 * np.sum(stats.binom.logpmf(successes, np.round(m[ok]), mu[ok]))

    def initialize(self, y, wt):
        y = np.where(wt == 0, 0.0, y)
        if np.any((y < 0) | (y > 1)):
            raise DataError("y values must be 0 <= y <= 1")
        m = wt * y
        if np.any(np.abs(m - np.round(m)) > 1e-3):
            warnings.warn("non-integer #successes in a binomial glm!", UserWarning)
        return (wt * y + 0.5) / (wt + 1)

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all((mu > 0) & (mu < 1)))

    def simulate(self, mu, wt, dispersion, rng):
        trials = np.round(wt).astype(np.int64)
        draws = rng.binomial(trials, mu)
        return np.where(trials > 0, draws / np.maximum(trials, 1), 0.0)


class Poisson(Family):
    """Poisson family with log link."""

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def link(self) -> str:
        return "log"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return np.log(mu)

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return np.maximum(np.exp(eta), np.finfo(np.float64).eps)

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return np.maximum(np.exp(eta), np.finfo(np.float64).eps)

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return mu

    def dev_resids(self, y, mu, wt):
        return 2 * wt * (xlogy(y, y / mu) - (y - mu))

    def aic(self, y, mu, wt, dev):
        return -2 * np.sum(stats.poisson.logpmf(y, mu) * wt)

    def initialize(self, y, wt):
        if np.any(y < 0):
            raise DataError("negative values not allowed for the 'Poisson' family")
        return y + 0.1

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all(mu > 0))

    def simulate(self, mu, wt, dispersion, rng):
        return rng.poisson(mu).astype(np.float64)


_FAMILIES = {
    "gaussian": Gaussian,
    "binomial": Binomial,
    "poisson": Poisson,
}


def get_family(family) -> Family:
    """Resolve a family instance, class or name."""
    if isinstance(family, Family):
        return family
    if isinstance(family, type) and issubclass(family, Family):
        return family()
    if isinstance(family, str) and family.lower() in _FAMILIES:
        return _FAMILIES[family.lower()]()
    raise ValueError(
        f"Unknown family: {family!r}\n"
        f"Valid options: {', '.join(repr(k) for k in _FAMILIES)}"
    )


__all__ = ["Family", "Gaussian", "Binomial", "Poisson", "get_family"]
