"""PIT computations: raw LOO-PIT values, PSIS wrappers, dispersion diagnosis.

Raw PIT values come from exact LOO predictive draws (one refit per left-out
observation, computed upstream). The PSIS path delegates to ArviZ and only
needs a single fit with a log_likelihood group.
"""

from __future__ import annotations

from typing import Any

import arviz as az
import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy import stats

from loopit.boundary import validate_unit_interval
from loopit.config import DISPERSION_ALPHA, DISPERSION_TAIL
from loopit.errors import InvalidInputError
from loopit.loaders import DrawSource, single_observed_var

# ── Raw PIT ─────────────────────────────────────────────────────────────────


def raw_pit(source: DrawSource) -> NDArray[np.float64]:
    """Fraction of each observation's LOO draws that are <= the observed value."""
    if source.n_obs == 0:
        msg = "Draw source has no observations"
        raise InvalidInputError(msg)
    return np.array(
        [float(np.mean(source.draws(i) <= source.observed(i))) for i in range(source.n_obs)]
    )


def raw_pit_from_matrix(draws: ArrayLike, observed: ArrayLike) -> NDArray[np.float64]:
    """Vectorised raw PIT for a (n_obs, n_draws) matrix and a (n_obs,) vector."""
    d = np.asarray(draws, dtype=np.float64)
    y = np.asarray(observed, dtype=np.float64)
    if d.ndim != 2 or d.shape[1] == 0:
        msg = f"draws must be a non-empty (n_obs, n_draws) matrix, got shape {d.shape}"
        raise InvalidInputError(msg)
    if y.shape != (d.shape[0],):
        msg = f"observed must have shape ({d.shape[0]},), got {y.shape}"
        raise InvalidInputError(msg)
    if d.shape[0] == 0:
        msg = "draws must contain at least one observation"
        raise InvalidInputError(msg)
    return (d <= y[:, np.newaxis]).mean(axis=1)


# ── PSIS-LOO (ArviZ) ────────────────────────────────────────────────────────


def compute_loo_pit(idata: az.InferenceData, var_name: str | None = None) -> NDArray[np.float64]:
    """PSIS-LOO-PIT via ``az.loo_pit``.

    Requires posterior_predictive, observed_data and log_likelihood groups.
    """
    if var_name is None:
        var_name = single_observed_var(idata)
    pit = az.loo_pit(idata=idata, y=var_name)
    return np.clip(np.asarray(pit, dtype=np.float64).ravel(), 0.0, 1.0)


def compute_loo(idata: az.InferenceData) -> az.ELPDData:
    """PSIS-LOO with pointwise Pareto k values."""
    return az.loo(idata, pointwise=True)


def summarize_pareto_k(loo_result: az.ELPDData) -> dict[str, Any]:
    """Count observations in each Pareto k diagnostic category.

    Categories (Vehtari et al. 2017):
      good:       k < 0.5
      ok:         0.5 <= k < 0.7
      bad:        0.7 <= k < 1.0  (PSIS-LOO-PIT for these points is unreliable)
      very_bad:   k >= 1.0
    """
    k = np.asarray(loo_result.pareto_k.values, dtype=np.float64)
    return {
        "good": int(np.sum(k < 0.5)),
        "ok": int(np.sum((k >= 0.5) & (k < 0.7))),
        "bad": int(np.sum((k >= 0.7) & (k < 1.0))),
        "very_bad": int(np.sum(k >= 1.0)),
        "total": len(k),
        "max_k": float(np.max(k)),
        "mean_k": float(np.mean(k)),
    }


# ── Dispersion Diagnosis ────────────────────────────────────────────────────


def diagnose_dispersion(
    pit_values: ArrayLike,
    *,
    tail: float = DISPERSION_TAIL,
    alpha: float = DISPERSION_ALPHA,
) -> dict[str, Any]:
    """Classify PIT shape as calibrated, underdispersed or overdispersed.

    A U-shaped PIT histogram (too many values in the tails) means the predictive
    distribution is too narrow: the model is underdispersed. A hump means it is
    too wide: overdispersed. The tail share is tested against its expectation
    2 * tail with a two-sided binomial test; uniformity with a KS test.
    """
    if not 0.0 < tail < 0.5:
        msg = f"tail must be in (0, 0.5), got {tail}"
        raise InvalidInputError(msg)
    u = validate_unit_interval(pit_values)
    n = u.size

    n_tail = int(np.sum((u < tail) | (u > 1.0 - tail)))
    expected_share = 2.0 * tail
    tail_share = n_tail / n
    tail_test = stats.binomtest(n_tail, n, expected_share)
    ks = stats.kstest(u, "uniform")

    if tail_test.pvalue < alpha and tail_share > expected_share:
        verdict = "underdispersed"
    elif tail_test.pvalue < alpha and tail_share < expected_share:
        verdict = "overdispersed"
    else:
        verdict = "calibrated"

    return {
        "n": n,
        "pit_mean": float(u.mean()),
        "pit_sd": float(u.std(ddof=1)) if n > 1 else 0.0,
        "tail": tail,
        "tail_share": tail_share,
        "expected_tail_share": expected_share,
        "tail_pvalue": float(tail_test.pvalue),
        "ks_statistic": float(ks.statistic),
        "ks_pvalue": float(ks.pvalue),
        "verdict": verdict,
    }
