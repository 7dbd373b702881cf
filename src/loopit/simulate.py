"""Synthetic grouped-regression data with known calibration.

Generates a varying-intercept linear dataset and LOO-style predictive draws
whose scale is deliberately wrong by a known factor, so each PIT shape
(uniform, hump, U) can be reproduced without fitting a model.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import polars as pl
from numpy.typing import NDArray

from loopit.config import DEFAULT_N_DRAWS, RANDOM_SEED
from loopit.errors import InvalidInputError

DISPERSION_SCENARIOS: dict[str, float] = {
    "calibrated": 1.0,
    "overdispersed": 1.8,
    "underdispersed": 0.55,
}

# True generative parameters
INTERCEPT = 1.5
SLOPE = -0.7
GROUP_SD = 0.8
NOISE_SD = 0.6


def simulate_observations(
    rng: np.random.Generator,
    *,
    n_groups: int = 8,
    n_per_group: int = 25,
) -> pl.DataFrame:
    """Varying-intercept regression: y = (INTERCEPT + a_g) + SLOPE * x + noise."""
    if n_groups <= 0 or n_per_group <= 0:
        msg = f"n_groups and n_per_group must be positive, got {n_groups}, {n_per_group}"
        raise InvalidInputError(msg)

    group_effects = rng.normal(0.0, GROUP_SD, n_groups)
    group_idx = np.repeat(np.arange(n_groups), n_per_group)
    covariate = rng.normal(0.0, 1.0, group_idx.size)
    mu = INTERCEPT + group_effects[group_idx] + SLOPE * covariate
    response = rng.normal(mu, NOISE_SD)

    return pl.DataFrame(
        {
            "response": response,
            "covariate": covariate,
            "group": [f"group_{g:02d}" for g in group_idx],
            "group_effect": group_effects[group_idx],
        }
    )


def simulate_loo_draws(
    rng: np.random.Generator,
    observations: pl.DataFrame,
    *,
    n_draws: int = DEFAULT_N_DRAWS,
    dispersion: float = 1.0,
    location_sd: float = 0.1,
) -> NDArray[np.float64]:
    """Predictive draws (n_obs, n_draws) around the true mean, scale * dispersion.

    ``location_sd`` jitters the mean per draw to mimic parameter uncertainty.
    """
    if n_draws <= 0:
        msg = f"n_draws must be positive, got {n_draws}"
        raise InvalidInputError(msg)
    if dispersion <= 0.0:
        msg = f"dispersion must be positive, got {dispersion}"
        raise InvalidInputError(msg)

    mu = (
        INTERCEPT
        + observations["group_effect"].to_numpy()
        + SLOPE * observations["covariate"].to_numpy()
    )
    n_obs = mu.size
    # Keep the total predictive sd at NOISE_SD * dispersion
    noise_sd = np.sqrt(max((NOISE_SD * dispersion) ** 2 - location_sd**2, 1e-12))
    loc = mu[:, np.newaxis] + rng.normal(0.0, location_sd, (n_obs, n_draws))
    return rng.normal(loc, noise_sd)


def write_demo_artifacts(
    out_dir: Path,
    scenario: str,
    *,
    seed: int = RANDOM_SEED,
    n_draws: int = DEFAULT_N_DRAWS,
    n_groups: int = 8,
    n_per_group: int = 25,
) -> tuple[Path, Path]:
    """Write ``observations_<scenario>.csv`` and ``loo_draws_<scenario>.npy``."""
    if scenario not in DISPERSION_SCENARIOS:
        msg = f"Unknown scenario '{scenario}'; choose from {sorted(DISPERSION_SCENARIOS)}"
        raise InvalidInputError(msg)

    rng = np.random.default_rng(seed)
    obs = simulate_observations(rng, n_groups=n_groups, n_per_group=n_per_group)
    draws = simulate_loo_draws(
        rng, obs, n_draws=n_draws, dispersion=DISPERSION_SCENARIOS[scenario]
    )

    out_dir.mkdir(parents=True, exist_ok=True)
    csv_path = out_dir / f"observations_{scenario}.csv"
    npy_path = out_dir / f"loo_draws_{scenario}.npy"
    obs.drop("group_effect").write_csv(csv_path)
    np.save(npy_path, draws)
    return csv_path, npy_path
