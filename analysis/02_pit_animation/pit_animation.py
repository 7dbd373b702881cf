"""PIT Accumulation Animation (Phase 02)

Animates the boundary-corrected PIT density as observations are added in their
original order, over a fixed band of uniform reference densities. Useful for
seeing how many observations it takes before a miscalibration shape emerges
from noise.

Usage:
  uv run python analysis/02_pit_animation/pit_animation.py --dataset radon \\
      [--run-id ...] [--n-frames 40] [--fps 8]

Inputs:  <01_loo_pit>/data/pit_values.parquet
Outputs: plots/pit_accumulation.gif, data/frame_sizes.json
"""

import argparse
import json
import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
from matplotlib.animation import FuncAnimation, PillowWriter
from numpy.typing import NDArray

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

try:
    from analysis.run_context import RunContext, resolve_upstream_dir
except ModuleNotFoundError:
    from run_context import RunContext, resolve_upstream_dir  # type: ignore[no-redef]

from loopit.boundary import (
    boundary_correct,
    generate_boundary_corrected_uniform_draws,
    reflected_density,
    silverman_bandwidth,
)
from loopit.config import DEFAULT_STYLE, RANDOM_SEED, PlotStyle
from loopit.errors import InvalidInputError

ANIMATION_PRIMER = """\
# PIT Accumulation Animation

## Purpose

Shows the corrected LOO-PIT density as observations accumulate in their original
order. Early frames are dominated by noise; the reference band shrinks with n, so
a systematic U-shape or hump separates from the band only once enough
observations are in.

## Inputs
- `01_loo_pit/data/pit_values.parquet` (raw PIT per observation)

## Outputs
- `plots/pit_accumulation.gif`
- `data/frame_sizes.json`
"""

DEFAULT_N_FRAMES = 40
DEFAULT_FPS = 8
N_BAND_REFERENCE = 60
GRID_POINTS = 200


# ── Frame computation ───────────────────────────────────────────────────────


def frame_sizes(n_values: int, n_frames: int) -> list[int]:
    """Strictly increasing observation counts per frame, ending at *n_values*."""
    if n_values <= 0 or n_frames <= 0:
        msg = f"n_values and n_frames must be positive, got {n_values}, {n_frames}"
        raise InvalidInputError(msg)
    sizes = np.unique(np.ceil(np.arange(1, n_frames + 1) * n_values / n_frames).astype(int))
    return [int(s) for s in sizes]


def frame_band(
    rng: np.random.Generator,
    n_points: int,
    grid: NDArray[np.float64],
    *,
    n_series: int = N_BAND_REFERENCE,
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """2.5% / 97.5% pointwise density band of corrected uniform samples of size n_points."""
    reference = generate_boundary_corrected_uniform_draws(rng, n_series, n_points)
    densities = np.array(
        [reflected_density(grid, s, silverman_bandwidth(s)) for s in reference]
    )
    return np.percentile(densities, 2.5, axis=0), np.percentile(densities, 97.5, axis=0)


def build_pit_animation(
    raw_pit: NDArray[np.floating],
    rng: np.random.Generator,
    *,
    n_frames: int = DEFAULT_N_FRAMES,
    style: PlotStyle = DEFAULT_STYLE,
    fps: int = DEFAULT_FPS,
) -> tuple[FuncAnimation, list[int]]:
    """Animation of the corrected PIT density of the first k observations.

    Each frame re-corrects the prefix as its own sample, so the frame at k shows
    exactly what a k-observation analysis would show.
    """
    values = np.asarray(raw_pit, dtype=np.float64)
    sizes = frame_sizes(values.size, n_frames)
    grid = np.linspace(0.0, 1.0, GRID_POINTS)

    densities = []
    for k in sizes:
        prefix = boundary_correct(values[:k])
        densities.append(reflected_density(grid, prefix, silverman_bandwidth(prefix)))
    bands = [frame_band(rng, k, grid) for k in sizes]
    y_max = max(max(float(d.max()) for d in densities), max(float(b[1].max()) for b in bands))

    fig, ax = plt.subplots(figsize=(7, 4.5))
    band_poly = ax.fill_between(
        grid, bands[0][0], bands[0][1], color=style.reference_color, alpha=0.6
    )
    (line,) = ax.plot([], [], color=style.observed_color, linewidth=2.2)
    ax.axhline(1.0, color="black", linestyle="--", linewidth=0.8, alpha=0.5)
    title = ax.set_title("")
    ax.set_xlim(0.0, 1.0)
    ax.set_ylim(0.0, max(2.0, y_max * 1.05))
    ax.set_xlabel("PIT")
    ax.set_ylabel("Density")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)

    def update(frame: int) -> tuple:
        nonlocal band_poly
        band_poly.remove()
        band_poly = ax.fill_between(
            grid, bands[frame][0], bands[frame][1], color=style.reference_color, alpha=0.6
        )
        line.set_data(grid, densities[frame])
        title.set_text(f"LOO-PIT after {sizes[frame]} of {values.size} observations")
        return line, band_poly, title

    anim = FuncAnimation(fig, update, frames=len(sizes), interval=1000 / fps, blit=False)
    return anim, sizes


# ── CLI ─────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Animated LOO-PIT accumulation (Phase 02)")
    parser.add_argument("--dataset", required=True, help="Dataset label used by phase 01")
    parser.add_argument("--run-id", default=None, help="Run ID for grouped pipeline output")
    parser.add_argument("--pit-dir", default=None, help="Override 01_loo_pit results directory")
    parser.add_argument("--n-frames", type=int, default=DEFAULT_N_FRAMES)
    parser.add_argument("--fps", type=int, default=DEFAULT_FPS)
    parser.add_argument("--seed", type=int, default=RANDOM_SEED)
    args = parser.parse_args(argv)
    if args.n_frames <= 0 or args.fps <= 0:
        parser.error("--n-frames and --fps must be positive")
    return args


def main(argv: list[str] | None = None, results_root: Path | None = None) -> None:
    args = parse_args(argv)

    with RunContext(
        dataset=args.dataset,
        analysis_name="02_pit_animation",
        params=vars(args),
        primer=ANIMATION_PRIMER,
        run_id=args.run_id,
        results_root=results_root,
    ) as ctx:
        pit_dir = resolve_upstream_dir(
            "01_loo_pit",
            ctx.dataset_root,
            args.run_id,
            override=Path(args.pit_dir) if args.pit_dir else None,
        )
        pit_path = pit_dir / "data" / "pit_values.parquet"
        print(f"PIT Accumulation Animation: {ctx.dataset}")
        print(f"  Upstream: {pit_dir}")
        if not pit_path.exists():
            msg = f"Upstream PIT values not found: {pit_path} (run 01_loo_pit first)"
            raise FileNotFoundError(msg)

        frame = pl.read_parquet(pit_path).sort("obs_idx")
        raw = frame["pit_raw"].to_numpy()
        print(f"  Observations: {raw.size}")

        rng = np.random.default_rng(args.seed)
        anim, sizes = build_pit_animation(
            raw, rng, n_frames=args.n_frames, style=DEFAULT_STYLE, fps=args.fps
        )
        gif_path = ctx.plots_dir / "pit_accumulation.gif"
        anim.save(gif_path, writer=PillowWriter(fps=args.fps))
        plt.close("all")
        print(f"  Saved: {gif_path.name} ({len(sizes)} frames)")

        with open(ctx.data_dir / "frame_sizes.json", "w") as f:
            json.dump({"frame_sizes": sizes, "seed": args.seed}, f, indent=2)
        print("  Saved: frame_sizes.json")


if __name__ == "__main__":
    main()
