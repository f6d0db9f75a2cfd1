"""
Shared fixtures: small synthetic frames built from a seeded generator.
"""

import logging

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from tabflow import make_classification_frame


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def cells():
    """Synthetic segmentation-quality data with an id column and a PS/WS outcome."""
    return make_classification_frame(n=400, seed=7)


@pytest.fixture
def binary_frame(rng):
    """Two informative numeric predictors, one nominal predictor and a yes/no outcome."""
    n = 200
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    logit = 2.0 * x1 - 1.0 * x2
    y = np.where(rng.random(n) < 1 / (1 + np.exp(-logit)), "yes", "no")
    return pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "group": rng.choice(["a", "b", "c"], size=n),
        "y": pd.Categorical(y, categories=["yes", "no"]),
    })


@pytest.fixture
def regression_frame(rng):
    n = 150
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    return pd.DataFrame({
        "x1": x1,
        "x2": x2,
        "target": 3.0 * x1 - 2.0 * x2 + rng.normal(scale=0.3, size=n),
    })


@pytest.fixture
def log_dir(tmp_path):
    return str(tmp_path / "logs")


@pytest.fixture(autouse=True)
def reset_tabflow_logger():
    yield
    logger = logging.getLogger("tabflow")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
