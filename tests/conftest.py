"""
Shared test fixtures.
"""

import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from pyglmcv import GLMSpec, Binomial


LIZARD_FORMULA = "gfrac ~ height + diameter + light + time + height:light"


def load_fixture(name):
    """Load a test fixture from JSON."""
    fixture_path = Path(__file__).parent / "fixtures" / f"{name}.json"
    with open(fixture_path, 'r') as f:
        return json.load(f)


@pytest.fixture
def lizards():
    """23-row proportions dataset: gfrac = grahami / (grahami + opalinus)."""
    fixture = load_fixture("lizards")
    data = pd.DataFrame(fixture["rows"], columns=fixture["columns"])
    data["total"] = data["grahami"] + data["opalinus"]
    data["gfrac"] = data["grahami"] / data["total"]
    return data


@pytest.fixture
def lizard_spec():
    """Binomial GLM with 7 coefficients, weighted by number of lizards."""
    return GLMSpec(LIZARD_FORMULA, family=Binomial(), weights="total")


@pytest.fixture
def gaussian_data():
    """Linear model data: y = 1 + 2 x1 - 1.5 x2 + noise."""
    rng = np.random.default_rng(42)
    n = 40
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    y = 1.0 + 2.0 * x1 - 1.5 * x2 + 0.3 * rng.normal(size=n)
    return pd.DataFrame({"y": y, "x1": x1, "x2": x2})
