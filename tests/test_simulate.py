"""
Tests for synthetic demo data in loopit/simulate.py.

Run: uv run pytest tests/test_simulate.py -v
"""

import numpy as np
import polars as pl
import pytest

from loopit.errors import InvalidInputError
from loopit.pit import diagnose_dispersion, raw_pit_from_matrix
from loopit.simulate import (
    DISPERSION_SCENARIOS,
    NOISE_SD,
    simulate_loo_draws,
    simulate_observations,
    write_demo_artifacts,
)


class TestSimulateObservations:
    def test_shape_and_columns(self, rng):
        df = simulate_observations(rng, n_groups=3, n_per_group=7)
        assert df.height == 21
        assert df.columns == ["response", "covariate", "group", "group_effect"]

    def test_group_labels(self, rng):
        df = simulate_observations(rng, n_groups=2, n_per_group=2)
        assert df["group"].to_list() == ["group_00", "group_00", "group_01", "group_01"]

    def test_group_effect_constant_within_group(self, observations):
        per_group = observations.group_by("group").agg(pl.col("group_effect").n_unique())
        assert per_group["group_effect"].to_list() == [1] * per_group.height

    def test_reproducible(self):
        a = simulate_observations(np.random.default_rng(5))
        b = simulate_observations(np.random.default_rng(5))
        assert a.equals(b)

    def test_bad_sizes(self, rng):
        with pytest.raises(InvalidInputError):
            simulate_observations(rng, n_groups=0)


class TestSimulateLooDraws:
    def test_shape(self, rng, observations):
        assert simulate_loo_draws(rng, observations, n_draws=50).shape == (120, 50)

    def test_total_scale(self, rng, observations):
        draws = simulate_loo_draws(rng, observations, n_draws=2000, dispersion=1.5)
        assert draws.std(axis=1).mean() == pytest.approx(NOISE_SD * 1.5, rel=0.05)

    def test_calibrated_scenario_centred(self, calibrated_draws, observations):
        pit = raw_pit_from_matrix(calibrated_draws, observations["response"].to_numpy())
        assert diagnose_dispersion(pit)["pit_mean"] == pytest.approx(0.5, abs=0.1)

    def test_wide_scenario_overdispersed(self, rng):
        obs = simulate_observations(rng, n_groups=8, n_per_group=50)
        draws = simulate_loo_draws(rng, obs, n_draws=500, dispersion=2.5)
        pit = raw_pit_from_matrix(draws, obs["response"].to_numpy())
        assert diagnose_dispersion(pit)["verdict"] == "overdispersed"

    @pytest.mark.parametrize("kwargs", [{"n_draws": 0}, {"dispersion": 0.0}])
    def test_bad_arguments(self, rng, observations, kwargs):
        with pytest.raises(InvalidInputError):
            simulate_loo_draws(rng, observations, **kwargs)


class TestWriteDemoArtifacts:
    def test_files_written(self, tmp_path):
        csv_path, npy_path = write_demo_artifacts(
            tmp_path / "inputs", "underdispersed", n_draws=20, n_groups=2, n_per_group=5
        )
        assert csv_path.name == "observations_underdispersed.csv"
        assert npy_path.name == "loo_draws_underdispersed.npy"
        df = pl.read_csv(csv_path)
        assert df.columns == ["response", "covariate", "group"]
        assert np.load(npy_path).shape == (10, 20)

    def test_seeded(self, tmp_path):
        _, a = write_demo_artifacts(tmp_path / "a", "calibrated", seed=3, n_draws=10)
        _, b = write_demo_artifacts(tmp_path / "b", "calibrated", seed=3, n_draws=10)
        np.testing.assert_array_equal(np.load(a), np.load(b))

    def test_unknown_scenario(self, tmp_path):
        with pytest.raises(InvalidInputError, match="Unknown scenario"):
            write_demo_artifacts(tmp_path, "bimodal")

    def test_scenarios_cover_both_directions(self):
        assert min(DISPERSION_SCENARIOS.values()) < 1.0 < max(DISPERSION_SCENARIOS.values())
