"""Boundary-corrected PIT transform. Pure functions, no I/O.

PIT values live on [0, 1]. A plain Gaussian KDE leaks mass past both edges, so a
well-calibrated model looks like it has a deficit near 0 and 1 and anything
sitting exactly on an edge stays pinned there. This module uses the reflection
method: every sample x contributes kernels at x, -x and their images shifted by
multiples of 2, so each kernel folds back onto [0, 1] however wide it is. The
estimate is restricted to [0, 1] and renormalised.

Corrected values are the reflected CDF averaged under the folded kernel centred
at each raw value. That keeps every output inside [0, 1], preserves order, and
moves exact 0/1 values strictly inward. The CDF grid is refined to the bandwidth
so this holds for narrow kernels too.

The same transform is applied to the observed PIT values and to the uniform
reference series, so overlays compare like with like.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import stats

from loopit.config import GRID_LEN, MIN_BANDWIDTH, UNIFORM_SD
from loopit.errors import InvalidInputError

_CHUNK_ELEMENTS = 2_000_000  # cap on (rows x grid) kernel matrices held at once

# ── Validation ──────────────────────────────────────────────────────────────


def validate_unit_interval(values: ArrayLike) -> NDArray[np.float64]:
    """Coerce to a 1-D float array and check it is a non-empty sample of [0, 1]."""
    try:
        x = np.asarray(values, dtype=np.float64)
    except (TypeError, ValueError) as e:
        msg = f"PIT values must be numeric: {e}"
        raise InvalidInputError(msg) from e

    if x.ndim != 1:
        msg = f"PIT values must be a 1-D sequence, got shape {x.shape}"
        raise InvalidInputError(msg)
    if x.size == 0:
        msg = "PIT values must be non-empty"
        raise InvalidInputError(msg)
    if not np.all(np.isfinite(x)):
        msg = "PIT values must be finite"
        raise InvalidInputError(msg)

    outside = (x < 0.0) | (x > 1.0)
    if outside.any():
        first = int(np.flatnonzero(outside)[0])
        msg = (
            f"PIT values must lie in [0, 1]; {int(outside.sum())} do not "
            f"(first at index {first}: {x[first]!r})"
        )
        raise InvalidInputError(msg)
    return x


def _check_bandwidth(bandwidth: float) -> float:
    bw = float(bandwidth)
    if not np.isfinite(bw) or bw <= 0.0:
        msg = f"bandwidth must be a positive finite number, got {bandwidth!r}"
        raise InvalidInputError(msg)
    if bw < MIN_BANDWIDTH:
        msg = f"bandwidth must be at least {MIN_BANDWIDTH}, got {bandwidth!r}"
        raise InvalidInputError(msg)
    return bw


def _unit_grid(grid_len: int) -> NDArray[np.float64]:
    if grid_len < 2:
        msg = f"grid_len must be at least 2, got {grid_len}"
        raise InvalidInputError(msg)
    return np.linspace(0.0, 1.0, grid_len)


# ── Bandwidth ───────────────────────────────────────────────────────────────


def silverman_bandwidth(values: ArrayLike) -> float:
    """Silverman's rule of thumb: 0.9 * min(sd, IQR / 1.34) * n^(-1/5).

    Falls back to whichever spread measure is non-zero, and to the standard
    deviation of U(0, 1) when the sample has no spread at all (n = 1, ties).
    Never returns less than MIN_BANDWIDTH.
    """
    x = validate_unit_interval(values)
    n = x.size

    sd = float(np.std(x, ddof=1)) if n > 1 else 0.0
    q75, q25 = np.percentile(x, [75.0, 25.0])
    iqr_scaled = float(q75 - q25) / 1.34

    if sd > 0.0 and iqr_scaled > 0.0:
        spread = min(sd, iqr_scaled)
    else:
        spread = max(sd, iqr_scaled)
    if spread <= 0.0:
        spread = UNIFORM_SD

    return max(0.9 * spread * n**-0.2, MIN_BANDWIDTH)


# ── Reflected KDE ───────────────────────────────────────────────────────────


def _image_shifts(bandwidth: float) -> NDArray[np.float64]:
    """Shifts 2k covering every kernel image within 8 bandwidths of [0, 1]."""
    k = int(np.ceil(0.5 + 4.0 * bandwidth))
    return 2.0 * np.arange(-k, k + 1)


def _row_step(n_cols: int) -> int:
    return max(1, _CHUNK_ELEMENTS // max(n_cols, 1))


def _reflected_kernel(
    grid: NDArray[np.float64],
    centres: NDArray[np.float64],
    bandwidth: float,
) -> NDArray[np.float64]:
    """Unnormalised folded Gaussian kernels, shape (len(centres), len(grid))."""
    t = grid[np.newaxis, :]
    c = centres[:, np.newaxis]
    out = np.zeros((centres.size, grid.size))
    for shift in _image_shifts(bandwidth):
        out += stats.norm.pdf((t - c - shift) / bandwidth)
        out += stats.norm.pdf((t + c - shift) / bandwidth)
    return out


def reflected_density(
    grid: ArrayLike,
    values: ArrayLike,
    bandwidth: float,
) -> NDArray[np.float64]:
    """Reflection KDE of *values* evaluated on *grid*, integrating to 1 over [0, 1]."""
    x = validate_unit_interval(values)
    bw = _check_bandwidth(bandwidth)
    t = np.asarray(grid, dtype=np.float64)

    dens = _reflected_kernel(t, x, bw).mean(axis=0) / bw

    # Normalise against the analytic total so any grid can be used.
    total = _reflected_cdf_unnormalised(np.array([1.0]), x, bw)[0]
    return dens / total


def _reflected_cdf_unnormalised(
    t: NDArray[np.float64],
    x: NDArray[np.float64],
    bandwidth: float,
) -> NDArray[np.float64]:
    h = bandwidth
    xx = x[np.newaxis, :]
    images = [sign * xx + shift for shift in _image_shifts(h) for sign in (1.0, -1.0)]

    out = np.empty(t.size)
    step = _row_step(x.size)
    for start in range(0, t.size, step):
        tt = t[start : start + step, np.newaxis]
        mass = np.zeros((tt.shape[0], x.size))
        for y in images:
            mass += stats.norm.cdf((tt - y) / h) - stats.norm.cdf(-y / h)
        out[start : start + step] = mass.mean(axis=1)
    return out


def reflected_cdf(
    grid: ArrayLike,
    values: ArrayLike,
    bandwidth: float,
) -> NDArray[np.float64]:
    """Closed-form CDF of the reflection KDE on [0, 1], evaluated on *grid*."""
    x = validate_unit_interval(values)
    bw = _check_bandwidth(bandwidth)
    t = np.clip(np.asarray(grid, dtype=np.float64), 0.0, 1.0)

    total = _reflected_cdf_unnormalised(np.array([1.0]), x, bw)[0]
    return np.clip(_reflected_cdf_unnormalised(t, x, bw) / total, 0.0, 1.0)


def _folded_weights(
    grid: NDArray[np.float64],
    centres: NDArray[np.float64],
    bandwidth: float,
) -> NDArray[np.float64]:
    """Row-stochastic trapezoid weights of the folded kernel at each centre."""
    w = _reflected_kernel(grid, centres, bandwidth)
    w[:, 0] *= 0.5
    w[:, -1] *= 0.5
    return w / w.sum(axis=1, keepdims=True)


# ── Public Transform ────────────────────────────────────────────────────────


def boundary_correct(
    raw_values: Sequence[float] | ArrayLike,
    *,
    bandwidth: float | None = None,
    grid_len: int = GRID_LEN,
) -> NDArray[np.float64]:
    """Boundary-correct a sample of PIT values.

    Args:
        raw_values: PIT values in observation order, each in [0, 1].
        bandwidth: Fixed kernel bandwidth, at least MIN_BANDWIDTH. Defaults to
            Silverman's rule.
        grid_len: Minimum number of grid points on [0, 1] used for the CDF. The
            grid is refined to a spacing of at most bandwidth / 8.

    Returns:
        Array of the same length and order, every entry in [0, 1].

    Raises:
        InvalidInputError: Empty input, values outside [0, 1], non-finite values,
            or an invalid bandwidth / grid length.
    """
    x = validate_unit_interval(raw_values)
    bw = silverman_bandwidth(x) if bandwidth is None else _check_bandwidth(bandwidth)
    grid = _unit_grid(grid_len)
    min_len = int(np.ceil(8.0 / bw)) + 1
    if grid.size < min_len:
        grid = _unit_grid(min_len)

    cdf = reflected_cdf(grid, x, bw)
    corrected = np.empty(x.size)
    step = _row_step(grid.size)
    for start in range(0, x.size, step):
        corrected[start : start + step] = _folded_weights(grid, x[start : start + step], bw) @ cdf
    return np.clip(corrected, 0.0, 1.0)


def generate_boundary_corrected_uniform_draws(
    seed_source: np.random.Generator | int,
    n_series: int,
    n_points: int,
    *,
    bandwidth: float | None = None,
    grid_len: int = GRID_LEN,
) -> NDArray[np.float64]:
    """Sorted, boundary-corrected U(0, 1) samples for calibration reference bands.

    Returns an (n_series, n_points) array. Row order is irrelevant; within a row
    the values are ordered so they pair positionally with an x-axis index.
    """
    if n_series <= 0 or n_points <= 0:
        msg = f"n_series and n_points must be positive, got {n_series} and {n_points}"
        raise InvalidInputError(msg)

    if isinstance(seed_source, np.random.Generator):
        rng = seed_source
    else:
        rng = np.random.default_rng(seed_source)

    series = np.empty((n_series, n_points))
    for s in range(n_series):
        draw = np.sort(rng.uniform(0.0, 1.0, size=n_points))
        series[s] = boundary_correct(draw, bandwidth=bandwidth, grid_len=grid_len)
    return series
