"""Shared fixtures for loopit tests.

Provides a seeded generator, a small synthetic observation table, and LOO draw
matrices with known calibration.
"""

import numpy as np
import polars as pl
import pytest

from loopit.simulate import simulate_loo_draws, simulate_observations

# ── Data fixtures ────────────────────────────────────────────────────────────


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def observations(rng: np.random.Generator) -> pl.DataFrame:
    """4 groups x 30 observations, with the true group effects attached."""
    return simulate_observations(rng, n_groups=4, n_per_group=30)


@pytest.fixture
def calibrated_draws(rng: np.random.Generator, observations: pl.DataFrame) -> np.ndarray:
    """(120, 400) predictive draws at the true scale."""
    return simulate_loo_draws(rng, observations, n_draws=400, dispersion=1.0)


@pytest.fixture
def narrow_draws(rng: np.random.Generator, observations: pl.DataFrame) -> np.ndarray:
    """(120, 400) predictive draws at 0.4x the true scale (U-shaped PIT)."""
    return simulate_loo_draws(rng, observations, n_draws=400, dispersion=0.4)
