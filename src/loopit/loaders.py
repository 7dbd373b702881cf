"""Loaders for observation tables and LOO posterior predictive draws.

The rest of the package only sees the narrow ``DrawSource`` interface
("draws for observation i", "observed value for observation i"), so the core
never depends on how a sampler serialised its output.

Supported draw artifacts:
  - ``.npy``: a (n_obs, n_draws) float array
  - ``.npz``: the same array under key ``draws`` (or as the only member)
  - ``.nc``:  ArviZ InferenceData with posterior_predictive + observed_data
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import arviz as az
import numpy as np
import polars as pl
from numpy.typing import ArrayLike, NDArray

from loopit.errors import ArtifactError


class DrawSource(Protocol):
    """Per-observation access to LOO predictive draws and observed values."""

    @property
    def n_obs(self) -> int: ...

    def draws(self, i: int) -> NDArray[np.float64]: ...

    def observed(self, i: int) -> float: ...


# ── Array-backed source ─────────────────────────────────────────────────────


def _read_only(values: ArrayLike) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class ArrayDrawSource:
    """Draw matrix (n_obs, n_draws) paired with the observed response vector."""

    matrix: NDArray[np.float64]
    observed_values: NDArray[np.float64]

    def __post_init__(self) -> None:
        matrix = _read_only(self.matrix)
        observed = _read_only(self.observed_values)

        if matrix.ndim != 2 or matrix.shape[0] == 0 or matrix.shape[1] == 0:
            msg = f"Draw matrix must be a non-empty (n_obs, n_draws) array, got {matrix.shape}"
            raise ArtifactError(msg)
        if observed.shape != (matrix.shape[0],):
            msg = (
                f"Draw matrix has {matrix.shape[0]} rows but {observed.size} observed "
                "values were supplied"
            )
            raise ArtifactError(msg)
        if not np.all(np.isfinite(matrix)):
            msg = "Draw matrix contains NaN or infinite values"
            raise ArtifactError(msg)
        if not np.all(np.isfinite(observed)):
            msg = "Observed values contain NaN or infinite values"
            raise ArtifactError(msg)

        object.__setattr__(self, "matrix", matrix)
        object.__setattr__(self, "observed_values", observed)

    @property
    def n_obs(self) -> int:
        return int(self.matrix.shape[0])

    @property
    def n_draws(self) -> int:
        return int(self.matrix.shape[1])

    def draws(self, i: int) -> NDArray[np.float64]:
        return self.matrix[i]

    def observed(self, i: int) -> float:
        return float(self.observed_values[i])

    @classmethod
    def from_inference_data(
        cls,
        idata: az.InferenceData,
        var_name: str | None = None,
    ) -> ArrayDrawSource:
        """Stack posterior_predictive[var] over (chain, draw) into an (obs, sample) matrix."""
        for group in ("posterior_predictive", "observed_data"):
            if group not in idata.groups():
                msg = f"InferenceData has no {group} group"
                raise ArtifactError(msg)

        var = var_name or single_observed_var(idata)
        if var not in idata.posterior_predictive:
            msg = f"posterior_predictive has no variable '{var}'"
            raise ArtifactError(msg)

        pp = idata.posterior_predictive[var].stack(sample=("chain", "draw"))
        obs_dims = [d for d in pp.dims if d != "sample"]
        if len(obs_dims) != 1:
            msg = f"'{var}' must have exactly one observation dimension, got {obs_dims}"
            raise ArtifactError(msg)
        matrix = pp.transpose(obs_dims[0], "sample").values
        observed = idata.observed_data[var].values.ravel()
        return cls(matrix=matrix, observed_values=observed)


def single_observed_var(idata: az.InferenceData) -> str:
    """Name of the only observed variable, or ArtifactError if ambiguous."""
    if "observed_data" not in idata.groups():
        msg = "InferenceData has no observed_data group"
        raise ArtifactError(msg)
    names = list(idata.observed_data.data_vars)
    if len(names) != 1:
        msg = f"Expected exactly one observed variable, found {names}; pass var_name"
        raise ArtifactError(msg)
    return str(names[0])


# ── File loaders ────────────────────────────────────────────────────────────


def _require_file(path: Path) -> Path:
    if not path.is_file():
        msg = f"Input artifact not found: {path}"
        raise FileNotFoundError(msg)
    return path


def load_observations(
    path: Path,
    *,
    response_col: str = "response",
    covariate_col: str = "covariate",
    group_col: str = "group",
    separator: str = ",",
) -> pl.DataFrame:
    """Read the observation table and return canonical response/covariate/group columns."""
    _require_file(path)
    df = pl.read_csv(path, separator=separator, infer_schema_length=10_000)

    rename = {response_col: "response", covariate_col: "covariate", group_col: "group"}
    missing = [col for col in rename if col not in df.columns]
    if missing:
        msg = f"{path.name} is missing column(s) {missing}; found {df.columns}"
        raise ArtifactError(msg)
    if df.height == 0:
        msg = f"{path.name} has no rows"
        raise ArtifactError(msg)

    try:
        out = df.select(
            pl.col(response_col).cast(pl.Float64).alias("response"),
            pl.col(covariate_col).cast(pl.Float64).alias("covariate"),
            pl.col(group_col).cast(pl.Utf8).alias("group"),
        )
    except pl.exceptions.InvalidOperationError as e:
        msg = f"{path.name}: response and covariate must be numeric ({e})"
        raise ArtifactError(msg) from e

    null_counts = {col: out[col].null_count() for col in out.columns}
    bad = {col: n for col, n in null_counts.items() if n > 0}
    if bad:
        msg = f"{path.name} has null values: {bad}"
        raise ArtifactError(msg)
    return out


def load_draw_matrix(path: Path) -> NDArray[np.float64]:
    """Read a (n_obs, n_draws) matrix from ``.npy`` or ``.npz``."""
    _require_file(path)
    suffix = path.suffix.lower()
    if suffix == ".npy":
        return np.load(path, allow_pickle=False)
    if suffix == ".npz":
        with np.load(path, allow_pickle=False) as archive:
            if "draws" in archive.files:
                return archive["draws"]
            if len(archive.files) == 1:
                return archive[archive.files[0]]
            msg = f"{path.name} holds {archive.files}; expected a 'draws' array"
            raise ArtifactError(msg)
    msg = f"Unsupported draw matrix format: {path.name} (expected .npy or .npz)"
    raise ArtifactError(msg)


def load_draw_source(
    draws_path: Path,
    observations: pl.DataFrame,
    var_name: str | None = None,
) -> ArrayDrawSource:
    """Build a DrawSource from a draw artifact and the observation table."""
    _require_file(draws_path)
    if draws_path.suffix.lower() == ".nc":
        source = ArrayDrawSource.from_inference_data(az.from_netcdf(str(draws_path)), var_name)
    else:
        source = ArrayDrawSource(
            matrix=load_draw_matrix(draws_path),
            observed_values=observations["response"].to_numpy(),
        )

    if source.n_obs != observations.height:
        msg = (
            f"{draws_path.name} has {source.n_obs} observations but the observation "
            f"table has {observations.height} rows"
        )
        raise ArtifactError(msg)
    return source
