"""LOO-PIT Calibration Diagnostics (Phase 01)

Loads observations and leave-one-out posterior predictive draws, computes a PIT
value per observation, boundary-corrects it, and compares the result against
seeded uniform reference series to diagnose over-/under-dispersion.

Usage:
  uv run python analysis/01_loo_pit/loo_pit.py --observations data/radon.csv \\
      --draws data/radon_loo_draws.npy [--dataset radon] [--run-id ...]
  uv run python analysis/01_loo_pit/loo_pit.py --demo underdispersed
  uv run python analysis/01_loo_pit/loo_pit.py --observations obs.csv \\
      --draws fit.nc --method psis

Outputs (in results/<dataset>/<run_id or 01_loo_pit/<date>>/):
  - data/:   pit_values.parquet, group_summary.parquet, pit_summary.json
  - plots/:  pit_overlay.png, pit_qq.png, group_panels.png, [pareto_k.png]
  - 01_loo_pit_report.html
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import arviz as az
import matplotlib.pyplot as plt
import numpy as np
import polars as pl

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

try:
    from analysis.run_context import (
        DEFAULT_RESULTS_ROOT,
        RunContext,
        generate_run_id,
        normalize_dataset,
    )
except ModuleNotFoundError:
    from run_context import (  # type: ignore[no-redef]
        DEFAULT_RESULTS_ROOT,
        RunContext,
        generate_run_id,
        normalize_dataset,
    )

try:
    from analysis.loo_pit_data import (
        band_coverage,
        build_pit_frame,
        correct_by_group,
        correct_sample,
        expected_uniform_quantiles,
        reference_quantile_band,
        summarize_groups,
    )
except ModuleNotFoundError:
    from loo_pit_data import (  # type: ignore[no-redef]
        band_coverage,
        build_pit_frame,
        correct_by_group,
        correct_sample,
        expected_uniform_quantiles,
        reference_quantile_band,
        summarize_groups,
    )

try:
    from analysis.loo_pit_report import build_loo_pit_report
except ModuleNotFoundError:
    from loo_pit_report import build_loo_pit_report  # type: ignore[no-redef]

from loopit.boundary import (
    boundary_correct,
    generate_boundary_corrected_uniform_draws,
    reflected_cdf,
    reflected_density,
    silverman_bandwidth,
)
from loopit.config import (
    DEFAULT_N_REFERENCE,
    DEFAULT_STYLE,
    DISPERSION_ALPHA,
    DISPERSION_TAIL,
    RANDOM_SEED,
    PlotStyle,
)
from loopit.errors import ArtifactError, InvalidInputError
from loopit.loaders import load_draw_source, load_observations
from loopit.pit import (
    compute_loo,
    compute_loo_pit,
    diagnose_dispersion,
    raw_pit,
    summarize_pareto_k,
)
from loopit.simulate import DISPERSION_SCENARIOS, write_demo_artifacts

# ── Primer ──────────────────────────────────────────────────────────────────

LOO_PIT_PRIMER = """\
# LOO-PIT Calibration Diagnostics

## Purpose

Checks whether a fitted model's predictive distributions are calibrated. If the
model is right, the probability integral transform (PIT) of each held-out
observation under its leave-one-out predictive distribution is uniform on [0, 1].

## Method

1. **Raw PIT**: for observation i, the fraction of its LOO predictive draws that
   are <= the observed response (`--method exact`), or PSIS-LOO-PIT from a single
   fit via ArviZ (`--method psis`).
2. **Boundary correction**: a reflection kernel density estimate (Gaussian kernel,
   Silverman bandwidth) with mass folded back into [0, 1]. Each PIT value is
   replaced by the reflected CDF averaged under the folded kernel at that value,
   which keeps the order, stays inside [0, 1], and moves pinned 0/1 values inward.
3. **Reference series**: sorted U(0, 1) samples of the same size, corrected the
   same way, drawn from an explicit seed.
4. **Dispersion verdict**: share of PIT values in the outer 10% tails on each
   side vs its 20% expectation (binomial test) plus a KS test.

## Interpretation Guide
- **Observed density inside the reference spaghetti**: calibrated.
- **U-shape (tail excess)**: predictive too narrow, model underdispersed.
- **Hump (tail deficit)**: predictive too wide, model overdispersed.
- **Tilted (PIT mean far from 0.5)**: systematic over- or under-prediction.

## Inputs
- Observations: delimited file with response, covariate, group columns
- Draws: `.npy`/`.npz` (n_obs x n_draws LOO draws) or `.nc` InferenceData

## Outputs
| File | Description |
|------|-------------|
| `data/pit_values.parquet` | Raw, corrected and group-corrected PIT per observation |
| `data/group_summary.parquet` | Per-group dispersion diagnosis |
| `data/pit_summary.json` | Overall diagnosis, bandwidth, settings |
| `plots/pit_overlay.png` | Corrected PIT density vs uniform references |
| `plots/pit_qq.png` | Sorted corrected PIT vs uniform quantiles with band |
| `plots/group_panels.png` | Per-group density and CDF panels |
| `plots/pareto_k.png` | Pareto k diagnostics (PSIS only) |
"""

# ── Constants ───────────────────────────────────────────────────────────────

N_GROUP_REFERENCE = 30
DENSITY_GRID_LEN = 200
METHODS = ("exact", "psis")


# ── CLI ─────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LOO-PIT calibration diagnostics (Phase 01)")
    parser.add_argument("--observations", type=Path, default=None, help="Observation table")
    parser.add_argument("--draws", type=Path, default=None, help="LOO draws (.npy/.npz/.nc)")
    parser.add_argument("--dataset", default=None, help="Dataset label for output paths")
    parser.add_argument(
        "--run-id", default=None, help="Run ID for grouped pipeline output ('auto' to generate)"
    )
    parser.add_argument(
        "--demo",
        choices=sorted(DISPERSION_SCENARIOS),
        default=None,
        help="Generate synthetic artifacts with known calibration instead of loading files",
    )
    parser.add_argument("--method", choices=METHODS, default="exact")
    parser.add_argument("--var-name", default=None, help="Observed variable name (.nc input)")
    parser.add_argument(
        "--group", action="append", default=None, help="Only plot these groups (repeatable)"
    )
    parser.add_argument("--n-reference", type=int, default=DEFAULT_N_REFERENCE)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    parser.add_argument("--bandwidth", type=float, default=None, help="Fixed KDE bandwidth")
    parser.add_argument("--response-col", default="response")
    parser.add_argument("--covariate-col", default="covariate")
    parser.add_argument("--group-col", default="group")
    parser.add_argument("--separator", default=",")
    args = parser.parse_args(argv)

    if args.demo is None and (args.observations is None or args.draws is None):
        parser.error("--observations and --draws are required unless --demo is given")
    if args.method == "psis" and args.demo is not None:
        parser.error("--method psis needs an InferenceData file; not available with --demo")
    if args.method == "psis" and args.draws is not None and args.draws.suffix.lower() != ".nc":
        parser.error("--method psis requires --draws to be a NetCDF (.nc) InferenceData")
    if args.n_reference <= 0:
        parser.error("--n-reference must be positive")
    if args.dataset is None:
        args.dataset = f"demo-{args.demo}" if args.demo else args.observations.stem
    return args


# ── Helpers ─────────────────────────────────────────────────────────────────


def print_header(title: str) -> None:
    width = 80
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}")


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def _density_grid() -> np.ndarray:
    return np.linspace(0.0, 1.0, DENSITY_GRID_LEN)


# ── Plots ───────────────────────────────────────────────────────────────────


def plot_pit_overlay(
    corrected: np.ndarray,
    reference: np.ndarray,
    bandwidth: float,
    style: PlotStyle,
    plots_dir: Path,
    *,
    title: str,
) -> None:
    """Corrected PIT density over the spaghetti of corrected uniform references."""
    grid = _density_grid()
    fig, ax = plt.subplots(figsize=(8, 5))

    for series in reference:
        ax.plot(
            grid,
            reflected_density(grid, series, bandwidth),
            color=style.reference_color,
            alpha=style.reference_alpha,
            linewidth=0.8,
        )
    ax.plot(
        grid,
        reflected_density(grid, corrected, bandwidth),
        color=style.observed_color,
        linewidth=2.5,
        label="LOO-PIT (corrected)",
    )
    ax.plot([], [], color=style.reference_color, label=f"Uniform reference (n={len(reference)})")
    ax.axhline(1.0, color="black", linestyle="--", linewidth=0.8, alpha=0.5)

    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(bottom=0.0)
    ax.set_xlabel("PIT")
    ax.set_ylabel("Density")
    ax.set_title(title, fontsize=13, fontweight="bold")
    ax.legend(fontsize=9, loc="upper center")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, plots_dir / "pit_overlay.png", dpi=style.dpi)


def plot_pit_qq(
    corrected: np.ndarray,
    band: dict[str, np.ndarray],
    style: PlotStyle,
    plots_dir: Path,
) -> None:
    """Sorted corrected PIT vs expected uniform quantiles, with the reference band."""
    n = len(corrected)
    x = expected_uniform_quantiles(n)
    fig, ax = plt.subplots(figsize=(6, 6))

    ax.fill_between(
        x, band["lo"], band["hi"], color=style.band_color, alpha=0.3, label="95% reference band"
    )
    ax.plot([0, 1], [0, 1], "k--", linewidth=0.8, alpha=0.5)
    ax.plot(x, np.sort(corrected), color=style.observed_color, linewidth=1.8, label="LOO-PIT")

    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, 1.0)
    ax.set_xlabel("Uniform quantile")
    ax.set_ylabel("Sorted corrected PIT")
    ax.set_title("PIT Q-Q Plot")
    ax.legend(fontsize=9)
    fig.tight_layout()
    save_fig(fig, plots_dir / "pit_qq.png", dpi=style.dpi)


def plot_group_panels(
    frame: pl.DataFrame,
    rng: np.random.Generator,
    style: PlotStyle,
    plots_dir: Path,
) -> None:
    """Per-group panels: density vs references (top) and CDF vs identity (bottom).

    Each group's references are corrected with the bandwidth recorded for that
    group by correct_by_group.
    """
    groups = frame["group"].unique(maintain_order=True).sort().to_list()
    n_groups = len(groups)
    fig, axes = plt.subplots(
        2, n_groups, figsize=(3.2 * n_groups, 6), squeeze=False, sharey="row"
    )
    grid = _density_grid()

    for col, group in enumerate(groups):
        sub = frame.filter(pl.col("group") == group)
        corrected = sub["pit_group_corrected"].to_numpy()
        raw = sub["pit_raw"].to_numpy()
        bw = float(sub["pit_group_bandwidth"][0])
        reference = generate_boundary_corrected_uniform_draws(
            rng, N_GROUP_REFERENCE, len(corrected), bandwidth=bw
        )

        ax_d = axes[0, col]
        for series in reference:
            ax_d.plot(
                grid,
                reflected_density(grid, series, bw),
                color=style.reference_color,
                alpha=style.reference_alpha,
                linewidth=0.7,
            )
        ax_d.plot(
            grid, reflected_density(grid, corrected, bw), color=style.observed_color, linewidth=2
        )
        ax_d.set_title(f"{group} (n={len(corrected)})", fontsize=10)
        ax_d.set_xlim(0.0, 1.0)

        ax_c = axes[1, col]
        ax_c.plot([0, 1], [0, 1], "k--", linewidth=0.8, alpha=0.5)
        ax_c.step(
            np.sort(raw),
            np.arange(1, len(raw) + 1) / len(raw),
            where="post",
            color=style.band_color,
            linewidth=1,
            label="ECDF (raw)",
        )
        ax_c.plot(
            grid,
            reflected_cdf(grid, corrected, bw),
            color=style.observed_color,
            linewidth=1.8,
            label="Corrected CDF",
        )
        ax_c.set_xlim(0.0, 1.0)
        ax_c.set_ylim(0.0, 1.0)
        ax_c.set_xlabel("PIT")

    axes[0, 0].set_ylabel("Density")
    axes[1, 0].set_ylabel("CDF")
    axes[1, 0].legend(fontsize=8, loc="upper left")
    fig.suptitle("LOO-PIT by Group", fontsize=14, y=1.02)
    fig.tight_layout()
    save_fig(fig, plots_dir / "group_panels.png", dpi=style.dpi)


def plot_pareto_k(k_vals: np.ndarray, style: PlotStyle, plots_dir: Path) -> None:
    """Pareto k per observation with the 0.5 / 0.7 / 1.0 thresholds."""
    fig, ax = plt.subplots(figsize=(8, 4))
    threshold_colors = ["#4CAF50", "#FFC107", "#FF5722", "#B71C1C"]
    colors = np.select(
        [k_vals < 0.5, k_vals < 0.7, k_vals < 1.0], threshold_colors[:3], threshold_colors[3]
    )
    ax.scatter(np.arange(len(k_vals)), k_vals, c=colors, s=6, alpha=0.7)
    for t, c in zip([0.5, 0.7, 1.0], threshold_colors[1:]):
        ax.axhline(t, color=c, linestyle="--", linewidth=0.8, alpha=0.6)
    ax.set_xlabel("Observation Index")
    ax.set_ylabel("Pareto k")
    ax.set_title("PSIS Pareto k Diagnostics")
    fig.tight_layout()
    save_fig(fig, plots_dir / "pareto_k.png", dpi=style.dpi)


# ── Main ────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None, results_root: Path | None = None) -> None:
    args = parse_args(argv)
    style = DEFAULT_STYLE
    rng = np.random.default_rng(args.seed)
    if args.run_id == "auto":
        root = (results_root or DEFAULT_RESULTS_ROOT) / normalize_dataset(args.dataset)
        args.run_id = generate_run_id(args.dataset, root)

    with RunContext(
        dataset=args.dataset,
        analysis_name="01_loo_pit",
        params=vars(args),
        primer=LOO_PIT_PRIMER,
        run_id=args.run_id,
        results_root=results_root,
    ) as ctx:
        print(f"LOO-PIT Calibration Diagnostics — {ctx.dataset}")

        # ── Inputs ──
        print_header("LOADING DATA")
        if args.demo is not None:
            obs_path, draws_path = write_demo_artifacts(
                ctx.data_dir / "inputs", args.demo, seed=args.seed
            )
            print(f"  Demo scenario: {args.demo}")
        else:
            obs_path, draws_path = args.observations, args.draws

        observations = load_observations(
            obs_path,
            response_col=args.response_col,
            covariate_col=args.covariate_col,
            group_col=args.group_col,
            separator=args.separator,
        )
        print(f"  Observations: {observations.height} rows from {obs_path.name}")
        print(f"  Groups: {observations['group'].n_unique()}")

        # ── Raw PIT ──
        print_header("PIT VALUES")
        pareto_summary = None
        if args.method == "psis":
            idata = az.from_netcdf(str(draws_path))
            raw = compute_loo_pit(idata, args.var_name)
            loo_result = compute_loo(idata)
            pareto_summary = summarize_pareto_k(loo_result)
            plot_pareto_k(loo_result.pareto_k.values, style, ctx.plots_dir)
            print(
                f"  Pareto k: {pareto_summary['good']} good, {pareto_summary['ok']} ok, "
                f"{pareto_summary['bad']} bad, {pareto_summary['very_bad']} very bad"
            )
            if len(raw) != observations.height:
                msg = (
                    f"{draws_path.name} yields {len(raw)} PIT values for "
                    f"{observations.height} observations"
                )
                raise ArtifactError(msg)
        else:
            source = load_draw_source(draws_path, observations, args.var_name)
            print(f"  Draws: {source.n_obs} observations x {source.n_draws} draws")
            raw = raw_pit(source)

        n_pinned = int(np.sum((raw == 0.0) | (raw == 1.0)))
        print(f"  Raw PIT computed ({args.method}); {n_pinned} pinned at 0 or 1")

        # ── Boundary correction ──
        bandwidth = args.bandwidth if args.bandwidth is not None else silverman_bandwidth(raw)
        corrected = boundary_correct(raw, bandwidth=bandwidth)

        frame = build_pit_frame(observations, raw, corrected)
        if args.group:
            frame = frame.filter(pl.col("group").is_in(args.group))
            if frame.height == 0:
                msg = f"No observations in groups {args.group}"
                raise InvalidInputError(msg)
            # The kept rows form a new sample; correct them as one.
            frame, bandwidth = correct_sample(frame, bandwidth=args.bandwidth)
            print(f"  Filtered to groups {args.group}: {frame.height} observations")
        frame = correct_by_group(frame, bandwidth=args.bandwidth)
        print(f"  Bandwidth: {bandwidth:.4f}")

        plot_corrected = frame["pit_corrected"].to_numpy()
        reference = generate_boundary_corrected_uniform_draws(
            rng, args.n_reference, len(plot_corrected), bandwidth=bandwidth
        )
        band = reference_quantile_band(reference)
        coverage = band_coverage(plot_corrected, band)

        # ── Diagnosis ──
        print_header("DISPERSION DIAGNOSIS")
        overall = diagnose_dispersion(
            frame["pit_raw"].to_numpy(), tail=DISPERSION_TAIL, alpha=DISPERSION_ALPHA
        )
        groups_df = summarize_groups(frame, tail=DISPERSION_TAIL, alpha=DISPERSION_ALPHA)
        print(f"  Verdict: {overall['verdict']}")
        print(
            f"  Tail share: {overall['tail_share']:.3f} "
            f"(expected {overall['expected_tail_share']:.3f}, p = {overall['tail_pvalue']:.3g})"
        )
        print(f"  KS: D = {overall['ks_statistic']:.3f}, p = {overall['ks_pvalue']:.3g}")
        print(f"  Band coverage: {coverage:.1%}")
        for row in groups_df.iter_rows(named=True):
            print(f"    {row['group']}: {row['verdict']} (n={row['n']})")

        # ── Save ──
        print_header("SAVING")
        frame.write_parquet(ctx.data_dir / "pit_values.parquet")
        print("  Saved: pit_values.parquet")
        groups_df.write_parquet(ctx.data_dir / "group_summary.parquet")
        print("  Saved: group_summary.parquet")
        summary = {
            "dataset": ctx.dataset,
            "method": args.method,
            "n_obs": frame.height,
            "n_pinned": n_pinned,
            "bandwidth": bandwidth,
            "n_reference": args.n_reference,
            "seed": args.seed,
            "band_coverage": coverage,
            "diagnosis": overall,
            "pareto_k": pareto_summary,
        }
        with open(ctx.data_dir / "pit_summary.json", "w") as f:
            json.dump(summary, f, indent=2, default=str)
        print("  Saved: pit_summary.json")

        # ── Plots ──
        print_header("PLOTS")
        plot_pit_overlay(
            plot_corrected,
            reference,
            bandwidth,
            style,
            ctx.plots_dir,
            title=f"{ctx.dataset} — LOO-PIT ({overall['verdict']})",
        )
        plot_pit_qq(plot_corrected, band, style, ctx.plots_dir)
        plot_group_panels(frame, rng, style, ctx.plots_dir)

        # ── Report ──
        print_header("BUILDING REPORT")
        build_loo_pit_report(
            ctx.report,
            summary=summary,
            groups_df=groups_df,
            plots_dir=ctx.plots_dir,
        )


if __name__ == "__main__":
    main()
