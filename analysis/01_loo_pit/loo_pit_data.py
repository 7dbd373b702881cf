"""LOO-PIT phase computations. Pure functions, no I/O.

All functions take polars/numpy inputs and return polars/numpy results.
No file reading, no prints, fully testable with synthetic data.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import polars as pl
from numpy.typing import NDArray

from loopit.boundary import boundary_correct, silverman_bandwidth
from loopit.config import DISPERSION_ALPHA, DISPERSION_TAIL
from loopit.errors import InvalidInputError
from loopit.pit import diagnose_dispersion


def build_pit_frame(
    observations: pl.DataFrame,
    raw: NDArray[np.floating],
    corrected: NDArray[np.floating],
) -> pl.DataFrame:
    """One row per observation with raw and boundary-corrected PIT values."""
    n = observations.height
    if len(raw) != n or len(corrected) != n:
        msg = (
            f"PIT arrays must match the observation count ({n}); "
            f"got raw={len(raw)}, corrected={len(corrected)}"
        )
        raise InvalidInputError(msg)

    return pl.DataFrame(
        {
            "obs_idx": np.arange(n),
            "group": observations["group"],
            "response": observations["response"],
            "covariate": observations["covariate"],
            "pit_raw": np.asarray(raw, dtype=np.float64),
            "pit_corrected": np.asarray(corrected, dtype=np.float64),
        }
    )


def correct_sample(
    frame: pl.DataFrame,
    *,
    bandwidth: float | None = None,
) -> tuple[pl.DataFrame, float]:
    """Re-correct ``pit_corrected`` treating the frame's rows as one sample.

    Used after filtering, so the kept rows are corrected exactly like a
    reference series of the same size. Returns the frame and the bandwidth used.
    """
    if frame.height == 0:
        msg = "Cannot correct an empty PIT frame"
        raise InvalidInputError(msg)
    raw = frame["pit_raw"].to_numpy()
    bw = silverman_bandwidth(raw) if bandwidth is None else float(bandwidth)
    corrected = boundary_correct(raw, bandwidth=bw)
    return frame.with_columns(pl.Series("pit_corrected", corrected)), bw


def correct_by_group(
    frame: pl.DataFrame,
    *,
    bandwidth: float | None = None,
) -> pl.DataFrame:
    """Add ``pit_group_corrected``: each group's raw PIT corrected as its own sample.

    ``pit_group_bandwidth`` records the bandwidth each group was corrected with,
    so its reference series can be corrected the same way.
    """
    parts = []
    for (group,), sub in frame.sort("obs_idx").group_by(["group"], maintain_order=True):
        raw = sub["pit_raw"].to_numpy()
        bw = silverman_bandwidth(raw) if bandwidth is None else float(bandwidth)
        parts.append(
            sub.with_columns(
                pl.Series("pit_group_corrected", boundary_correct(raw, bandwidth=bw)),
                pl.lit(bw, dtype=pl.Float64).alias("pit_group_bandwidth"),
            )
        )
    return pl.concat(parts).sort("obs_idx")


def expected_uniform_quantiles(n: int) -> NDArray[np.float64]:
    """Plotting positions i / (n + 1) for a sorted uniform sample of size n."""
    if n <= 0:
        msg = f"n must be positive, got {n}"
        raise InvalidInputError(msg)
    return np.arange(1, n + 1) / (n + 1)


def reference_quantile_band(
    reference: NDArray[np.floating],
    *,
    lower: float = 2.5,
    upper: float = 97.5,
) -> dict[str, NDArray[np.float64]]:
    """Pointwise band over sorted reference series (n_series, n_points)."""
    ref = np.sort(np.asarray(reference, dtype=np.float64), axis=1)
    if ref.ndim != 2 or ref.shape[0] == 0:
        msg = f"reference must be (n_series, n_points), got {ref.shape}"
        raise InvalidInputError(msg)
    return {
        "lo": np.percentile(ref, lower, axis=0),
        "median": np.median(ref, axis=0),
        "hi": np.percentile(ref, upper, axis=0),
    }


def band_coverage(values: NDArray[np.floating], band: dict[str, NDArray[np.float64]]) -> float:
    """Fraction of sorted *values* that fall inside the pointwise reference band."""
    v = np.sort(np.asarray(values, dtype=np.float64))
    if v.shape != band["lo"].shape:
        msg = f"values ({v.size}) and band ({band['lo'].size}) lengths differ"
        raise InvalidInputError(msg)
    return float(np.mean((v >= band["lo"]) & (v <= band["hi"])))


def summarize_groups(
    frame: pl.DataFrame,
    *,
    tail: float = DISPERSION_TAIL,
    alpha: float = DISPERSION_ALPHA,
) -> pl.DataFrame:
    """Dispersion diagnosis of raw PIT values per group, sorted by group."""
    rows: list[dict[str, Any]] = []
    for (group,), sub in frame.group_by(["group"], maintain_order=True):
        diag = diagnose_dispersion(sub["pit_raw"].to_numpy(), tail=tail, alpha=alpha)
        rows.append(
            {
                "group": group,
                "n": diag["n"],
                "pit_mean": diag["pit_mean"],
                "tail_share": diag["tail_share"],
                "tail_pvalue": diag["tail_pvalue"],
                "ks_statistic": diag["ks_statistic"],
                "ks_pvalue": diag["ks_pvalue"],
                "verdict": diag["verdict"],
            }
        )
    return pl.DataFrame(rows).sort("group")
