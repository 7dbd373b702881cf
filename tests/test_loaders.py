"""
Tests for artifact loaders in loopit/loaders.py.

Covers the array-backed DrawSource (validation, read-only storage),
InferenceData conversion, observation CSV loading with column mapping, and
.npy/.npz/.nc draw artifacts.

Run: uv run pytest tests/test_loaders.py -v
"""

import arviz as az
import numpy as np
import polars as pl
import pytest
import xarray as xr

from loopit.errors import ArtifactError
from loopit.loaders import (
    ArrayDrawSource,
    load_draw_matrix,
    load_draw_source,
    load_observations,
    single_observed_var,
)

# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def obs_csv(tmp_path, observations):
    path = tmp_path / "obs.csv"
    observations.drop("group_effect").write_csv(path)
    return path


@pytest.fixture
def pp_idata() -> az.InferenceData:
    """2 chains x 5 draws x 3 observations, observed values 0, 1, 2."""
    values = np.arange(2 * 5 * 3, dtype=float).reshape(2, 5, 3)
    coords = {"chain": [0, 1], "draw": np.arange(5), "obs": np.arange(3)}
    return az.InferenceData(
        posterior_predictive=xr.Dataset({"y": (["chain", "draw", "obs"], values)}, coords=coords),
        observed_data=xr.Dataset({"y": (["obs"], [0.0, 1.0, 2.0])}, coords={"obs": np.arange(3)}),
    )


# ── ArrayDrawSource ─────────────────────────────────────────────────────────


class TestArrayDrawSource:
    """Validated, immutable (n_obs, n_draws) draw source."""

    def test_accessors(self):
        source = ArrayDrawSource(matrix=np.ones((3, 4)), observed_values=np.array([1, 2, 3]))
        assert source.n_obs == 3
        assert source.n_draws == 4
        assert source.observed(2) == 3.0
        assert source.draws(0).shape == (4,)

    def test_read_only(self):
        source = ArrayDrawSource(matrix=np.ones((2, 2)), observed_values=np.zeros(2))
        with pytest.raises(ValueError):
            source.draws(0)[0] = 5.0

    def test_copies_input(self):
        matrix = np.ones((2, 2))
        source = ArrayDrawSource(matrix=matrix, observed_values=np.zeros(2))
        matrix[0, 0] = 99.0
        assert source.draws(0)[0] == 1.0

    def test_frozen(self):
        source = ArrayDrawSource(matrix=np.ones((2, 2)), observed_values=np.zeros(2))
        with pytest.raises(AttributeError):
            source.matrix = np.zeros((2, 2))  # type: ignore[misc]

    def test_row_mismatch(self):
        with pytest.raises(ArtifactError, match="3 rows but 2"):
            ArrayDrawSource(matrix=np.ones((3, 4)), observed_values=np.zeros(2))

    def test_empty_matrix(self):
        with pytest.raises(ArtifactError, match="non-empty"):
            ArrayDrawSource(matrix=np.ones((0, 4)), observed_values=np.zeros(0))

    def test_nan_draws(self):
        matrix = np.ones((2, 2))
        matrix[1, 1] = np.nan
        with pytest.raises(ArtifactError, match="NaN"):
            ArrayDrawSource(matrix=matrix, observed_values=np.zeros(2))

    def test_nan_observed(self):
        with pytest.raises(ArtifactError, match="Observed"):
            ArrayDrawSource(matrix=np.ones((2, 2)), observed_values=np.array([0.0, np.inf]))


class TestFromInferenceData:
    """posterior_predictive stacked over (chain, draw)."""

    def test_shape(self, pp_idata):
        source = ArrayDrawSource.from_inference_data(pp_idata)
        assert source.n_obs == 3
        assert source.n_draws == 10

    def test_draws_for_observation(self, pp_idata):
        source = ArrayDrawSource.from_inference_data(pp_idata, "y")
        expected = pp_idata.posterior_predictive["y"].values[:, :, 1].ravel()
        np.testing.assert_array_equal(np.sort(source.draws(1)), np.sort(expected))

    def test_observed_values(self, pp_idata):
        source = ArrayDrawSource.from_inference_data(pp_idata)
        assert [source.observed(i) for i in range(3)] == [0.0, 1.0, 2.0]

    def test_missing_group(self):
        idata = az.InferenceData(
            observed_data=xr.Dataset({"y": (["obs"], [1.0])}, coords={"obs": [0]})
        )
        with pytest.raises(ArtifactError, match="posterior_predictive"):
            ArrayDrawSource.from_inference_data(idata)

    def test_unknown_var(self, pp_idata):
        with pytest.raises(ArtifactError, match="no variable 'z'"):
            ArrayDrawSource.from_inference_data(pp_idata, "z")

    def test_single_observed_var(self, pp_idata):
        assert single_observed_var(pp_idata) == "y"


# ── Observations ────────────────────────────────────────────────────────────


class TestLoadObservations:
    """Delimited table mapped onto response/covariate/group."""

    def test_canonical_columns(self, obs_csv):
        df = load_observations(obs_csv)
        assert df.columns == ["response", "covariate", "group"]
        assert df.height == 120
        assert df["group"].dtype == pl.Utf8

    def test_column_mapping(self, tmp_path):
        path = tmp_path / "radon.tsv"
        path.write_text("log_radon\tfloor\tcounty\n1.2\t0\tA\n0.4\t1\tB\n")
        df = load_observations(
            path,
            response_col="log_radon",
            covariate_col="floor",
            group_col="county",
            separator="\t",
        )
        assert df["response"].to_list() == [1.2, 0.4]
        assert df["group"].to_list() == ["A", "B"]

    def test_integer_group_cast_to_string(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("response,covariate,group\n1.0,0.5,3\n")
        assert load_observations(path)["group"].to_list() == ["3"]

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_observations(tmp_path / "nope.csv")

    def test_directory_is_not_a_file(self, tmp_path):
        folder = tmp_path / "obs.csv"
        folder.mkdir()
        with pytest.raises(FileNotFoundError, match="not found"):
            load_observations(folder)

    def test_missing_column(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("response,group\n1.0,A\n")
        with pytest.raises(ArtifactError, match="covariate"):
            load_observations(path)

    def test_no_rows(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("response,covariate,group\n")
        with pytest.raises(ArtifactError, match="no rows"):
            load_observations(path)

    def test_null_values(self, tmp_path):
        path = tmp_path / "obs.csv"
        path.write_text("response,covariate,group\n1.0,,A\n2.0,0.3,B\n")
        with pytest.raises(ArtifactError, match="null"):
            load_observations(path)


# ── Draw artifacts ──────────────────────────────────────────────────────────


class TestLoadDraws:
    """.npy / .npz / .nc draw artifacts."""

    def test_npy(self, tmp_path):
        path = tmp_path / "draws.npy"
        np.save(path, np.ones((4, 6)))
        assert load_draw_matrix(path).shape == (4, 6)

    def test_npz_named(self, tmp_path):
        path = tmp_path / "draws.npz"
        np.savez(path, draws=np.ones((4, 6)), other=np.zeros(2))
        assert load_draw_matrix(path).shape == (4, 6)

    def test_npz_single_member(self, tmp_path):
        path = tmp_path / "draws.npz"
        np.savez(path, np.ones((2, 3)))
        assert load_draw_matrix(path).shape == (2, 3)

    def test_npz_ambiguous(self, tmp_path):
        path = tmp_path / "draws.npz"
        np.savez(path, a=np.ones(2), b=np.ones(2))
        with pytest.raises(ArtifactError, match="'draws'"):
            load_draw_matrix(path)

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "draws.csv"
        path.write_text("1,2\n")
        with pytest.raises(ArtifactError, match="Unsupported"):
            load_draw_matrix(path)

    def test_source_from_npy(self, tmp_path, obs_csv, calibrated_draws):
        path = tmp_path / "draws.npy"
        np.save(path, calibrated_draws)
        observations = load_observations(obs_csv)
        source = load_draw_source(path, observations)
        assert source.n_obs == observations.height
        assert source.observed(0) == pytest.approx(observations["response"][0])

    def test_source_row_mismatch(self, tmp_path, obs_csv):
        path = tmp_path / "draws.npy"
        np.save(path, np.ones((5, 10)))
        with pytest.raises(ArtifactError):
            load_draw_source(path, load_observations(obs_csv))

    def test_source_from_netcdf(self, tmp_path, pp_idata):
        path = tmp_path / "fit.nc"
        pp_idata.to_netcdf(str(path))
        observations = pl.DataFrame(
            {"response": [0.0, 1.0, 2.0], "covariate": [0.0] * 3, "group": ["a"] * 3}
        )
        source = load_draw_source(path, observations)
        assert source.n_obs == 3
        assert source.n_draws == 10
