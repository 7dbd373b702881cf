"""
Tests for Phase 01 LOO-PIT computations in analysis/01_loo_pit/loo_pit_data.py.

Pure functions only: PIT frame assembly, per-group correction, reference
bands, coverage and per-group dispersion summaries.

Run: uv run pytest tests/test_loo_pit_data.py -v
"""

import sys
from pathlib import Path

import numpy as np
import polars as pl
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from analysis.loo_pit_data import (
    band_coverage,
    build_pit_frame,
    correct_by_group,
    correct_sample,
    expected_uniform_quantiles,
    reference_quantile_band,
    summarize_groups,
)

from loopit.boundary import (
    boundary_correct,
    generate_boundary_corrected_uniform_draws,
    silverman_bandwidth,
)
from loopit.errors import InvalidInputError
from loopit.pit import raw_pit_from_matrix

# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def pit_frame(observations, narrow_draws) -> pl.DataFrame:
    raw = raw_pit_from_matrix(narrow_draws, observations["response"].to_numpy())
    return build_pit_frame(observations, raw, boundary_correct(raw))


# ── build_pit_frame ─────────────────────────────────────────────────────────


class TestBuildPitFrame:
    def test_columns(self, pit_frame):
        assert pit_frame.columns == [
            "obs_idx",
            "group",
            "response",
            "covariate",
            "pit_raw",
            "pit_corrected",
        ]

    def test_obs_idx_sequential(self, pit_frame):
        assert pit_frame["obs_idx"].to_list() == list(range(120))

    def test_length_mismatch(self, observations):
        with pytest.raises(InvalidInputError, match="observation count"):
            build_pit_frame(observations, np.zeros(3), np.zeros(3))


# ── correct_by_group ────────────────────────────────────────────────────────


class TestCorrectByGroup:
    def test_adds_column_preserving_order(self, pit_frame):
        out = correct_by_group(pit_frame)
        assert "pit_group_corrected" in out.columns
        assert out["obs_idx"].to_list() == pit_frame["obs_idx"].to_list()

    def test_each_group_corrected_alone(self, pit_frame):
        out = correct_by_group(pit_frame)
        sub = out.filter(pl.col("group") == "group_02")
        np.testing.assert_allclose(
            sub["pit_group_corrected"].to_numpy(),
            boundary_correct(sub["pit_raw"].to_numpy()),
        )

    def test_fixed_bandwidth(self, pit_frame):
        out = correct_by_group(pit_frame, bandwidth=0.1)
        sub = out.filter(pl.col("group") == "group_00")
        np.testing.assert_allclose(
            sub["pit_group_corrected"].to_numpy(),
            boundary_correct(sub["pit_raw"].to_numpy(), bandwidth=0.1),
        )
        assert out["pit_group_bandwidth"].unique().to_list() == [0.1]

    def test_records_group_bandwidth(self, pit_frame):
        out = correct_by_group(pit_frame)
        for group in ("group_00", "group_01", "group_02", "group_03"):
            sub = out.filter(pl.col("group") == group)
            raw = sub["pit_raw"].to_numpy()
            assert sub["pit_group_bandwidth"].n_unique() == 1
            bw = sub["pit_group_bandwidth"][0]
            assert bw == pytest.approx(silverman_bandwidth(raw))
            np.testing.assert_allclose(
                sub["pit_group_corrected"].to_numpy(), boundary_correct(raw, bandwidth=bw)
            )


# ── correct_sample ──────────────────────────────────────────────────────────


class TestCorrectSample:
    def test_subset_corrected_as_own_sample(self, pit_frame):
        subset = pit_frame.filter(pl.col("group").is_in(["group_01", "group_03"]))
        out, bw = correct_sample(subset)
        raw = subset["pit_raw"].to_numpy()
        assert bw == pytest.approx(silverman_bandwidth(raw))
        np.testing.assert_allclose(
            out["pit_corrected"].to_numpy(), boundary_correct(raw, bandwidth=bw)
        )
        assert out["obs_idx"].to_list() == subset["obs_idx"].to_list()

    def test_subset_differs_from_full_sample_correction(self, pit_frame):
        subset = pit_frame.filter(pl.col("group") == "group_02")
        out, _ = correct_sample(subset)
        assert not np.allclose(out["pit_corrected"].to_numpy(), subset["pit_corrected"].to_numpy())

    def test_fixed_bandwidth(self, pit_frame):
        out, bw = correct_sample(pit_frame.head(40), bandwidth=0.08)
        assert bw == 0.08
        np.testing.assert_allclose(
            out["pit_corrected"].to_numpy(),
            boundary_correct(pit_frame.head(40)["pit_raw"].to_numpy(), bandwidth=0.08),
        )

    def test_empty_frame(self, pit_frame):
        with pytest.raises(InvalidInputError, match="empty"):
            correct_sample(pit_frame.head(0))


# ── Reference bands ─────────────────────────────────────────────────────────


class TestReferenceBand:
    def test_expected_quantiles(self):
        np.testing.assert_allclose(expected_uniform_quantiles(3), [0.25, 0.5, 0.75])

    def test_expected_quantiles_bad_n(self):
        with pytest.raises(InvalidInputError):
            expected_uniform_quantiles(0)

    def test_band_ordering(self):
        ref = generate_boundary_corrected_uniform_draws(0, 50, 30)
        band = reference_quantile_band(ref)
        assert np.all(band["lo"] <= band["median"])
        assert np.all(band["median"] <= band["hi"])

    def test_band_rejects_1d(self):
        with pytest.raises(InvalidInputError):
            reference_quantile_band(np.linspace(0, 1, 10))

    def test_uniform_mostly_covered(self):
        ref = generate_boundary_corrected_uniform_draws(1, 200, 60)
        band = reference_quantile_band(ref)
        fresh = generate_boundary_corrected_uniform_draws(2, 1, 60)[0]
        assert band_coverage(fresh, band) > 0.5

    def test_coverage_length_mismatch(self):
        band = reference_quantile_band(generate_boundary_corrected_uniform_draws(0, 5, 10))
        with pytest.raises(InvalidInputError, match="lengths differ"):
            band_coverage(np.full(9, 0.5), band)

    def test_coverage_outside(self):
        band = {
            "lo": np.array([0.2, 0.4]),
            "median": np.array([0.3, 0.5]),
            "hi": np.array([0.3, 0.6]),
        }
        assert band_coverage(np.array([0.9, 0.0]), band) == 0.0


# ── summarize_groups ────────────────────────────────────────────────────────


class TestSummarizeGroups:
    def test_one_row_per_group_sorted(self, pit_frame):
        out = summarize_groups(pit_frame)
        assert out["group"].to_list() == ["group_00", "group_01", "group_02", "group_03"]
        assert out["n"].sum() == 120

    def test_columns(self, pit_frame):
        assert summarize_groups(pit_frame).columns == [
            "group",
            "n",
            "pit_mean",
            "tail_share",
            "tail_pvalue",
            "ks_statistic",
            "ks_pvalue",
            "verdict",
        ]

    def test_narrow_draws_flagged(self, pit_frame):
        verdicts = summarize_groups(pit_frame)["verdict"].to_list()
        assert verdicts.count("underdispersed") >= 3
