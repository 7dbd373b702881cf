"""HTML report builder for Phase 01 LOO-PIT diagnostics.

Sections: how to read, calibration summary, overlay, Q-Q, per-group panels and
table, Pareto k (PSIS runs only), methodology.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import polars as pl

try:
    from analysis.report import (
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )
except ModuleNotFoundError:
    from report import (  # type: ignore[no-redef]
        FigureSection,
        ReportBuilder,
        TableSection,
        TextSection,
        make_gt,
    )

VERDICT_TEXT = {
    "calibrated": "PIT values are consistent with a uniform distribution.",
    "underdispersed": (
        "Too many observations fall in the tails of their predictive distributions: "
        "the model's predictive intervals are too narrow."
    ),
    "overdispersed": (
        "Too few observations fall in the tails of their predictive distributions: "
        "the model's predictive intervals are too wide."
    ),
}


def build_loo_pit_report(
    report: ReportBuilder,
    *,
    summary: dict[str, Any],
    groups_df: pl.DataFrame,
    plots_dir: Path,
) -> None:
    """Build the full LOO-PIT HTML report."""
    _add_how_to_read(report)
    _add_summary(report, summary)
    _add_figure(
        report,
        plots_dir / "pit_overlay.png",
        "pit-overlay",
        "PIT Density Overlay",
        "Dark line: density of boundary-corrected LOO-PIT values. Light lines: "
        f"{summary['n_reference']} boundary-corrected uniform samples of the same size. "
        "Dashed line: the uniform density.",
    )
    _add_figure(
        report,
        plots_dir / "pit_qq.png",
        "pit-qq",
        "PIT Q-Q Plot",
        "Sorted corrected PIT values against uniform plotting positions i/(n+1). "
        f"The shaded band covers 95% of the reference samples; "
        f"{100 * summary['band_coverage']:.1f}% of points fall inside it.",
    )
    _add_figure(
        report,
        plots_dir / "group_panels.png",
        "group-panels",
        "LOO-PIT by Group",
        "Top: corrected density per group (each group corrected on its own sample). "
        "Bottom: raw ECDF and corrected CDF against the identity line.",
    )
    _add_group_table(report, groups_df)
    if summary.get("pareto_k"):
        _add_pareto_k(report, summary["pareto_k"], plots_dir)
    _add_methodology(report)

    print(f"  Report: {report.n_sections} sections added")


# ── Section Builders ────────────────────────────────────────────────────────


def _add_how_to_read(report: ReportBuilder) -> None:
    report.add(
        TextSection(
            id="how-to-read",
            title="How to Read This Report",
            html="""
<div style="background: #f0f7ff; padding: 1em; border-radius: 6px; margin-bottom: 1em;">
<p><strong>This report checks whether the model's predictive distributions have the
right width.</strong></p>

<p>For every observation we ask: where does the observed value fall inside the
distribution the model predicted for it, having never seen that observation? That
position is the PIT value. A calibrated model spreads PIT values evenly over [0, 1].</p>

<ul>
<li><strong>Flat</strong>: calibrated.</li>
<li><strong>U-shape</strong>: observations keep landing in the tails, so the model is
too confident (underdispersed).</li>
<li><strong>Hump</strong>: observations cluster in the middle, so the model is too
cautious (overdispersed).</li>
</ul>

<p>The light "spaghetti" lines show what perfectly uniform samples of the same size
look like after the same smoothing. Only departures outside that spread are
evidence of miscalibration.</p>
</div>
""",
        )
    )


def _add_summary(report: ReportBuilder, summary: dict[str, Any]) -> None:
    diag = summary["diagnosis"]
    df = pl.DataFrame(
        [
            {
                "Method": summary["method"],
                "N": summary["n_obs"],
                "Pinned 0/1": summary["n_pinned"],
                "Bandwidth": summary["bandwidth"],
                "PIT Mean": diag["pit_mean"],
                "Tail Share": diag["tail_share"],
                "Tail p": diag["tail_pvalue"],
                "KS D": diag["ks_statistic"],
                "KS p": diag["ks_pvalue"],
                "Verdict": diag["verdict"],
            }
        ]
    )
    html = make_gt(
        df,
        title="Calibration Summary",
        subtitle=f"Dataset {summary['dataset']}, seed {summary['seed']}",
        number_formats={
            "Bandwidth": ".4f",
            "PIT Mean": ".3f",
            "Tail Share": ".3f",
            "Tail p": ".3f",
            "KS D": ".3f",
            "KS p": ".3f",
        },
        source_note=(
            f"Tail share: fraction of raw PIT values below {diag['tail']} or above "
            f"{1 - diag['tail']}; expected {diag['expected_tail_share']:.2f}. "
            + VERDICT_TEXT[diag["verdict"]]
        ),
    )
    report.add(TableSection(id="summary", title="Calibration Summary", html=html))


def _add_figure(
    report: ReportBuilder,
    path: Path,
    section_id: str,
    title: str,
    caption: str,
) -> None:
    if path.exists():
        report.add(FigureSection.from_file(section_id, title, path, caption=caption))


def _add_group_table(report: ReportBuilder, groups_df: pl.DataFrame) -> None:
    if groups_df.height == 0:
        return
    html = make_gt(
        groups_df,
        title="Per-Group Dispersion",
        column_labels={
            "group": "Group",
            "n": "N",
            "pit_mean": "PIT Mean",
            "tail_share": "Tail Share",
            "tail_pvalue": "Tail p",
            "ks_statistic": "KS D",
            "ks_pvalue": "KS p",
            "verdict": "Verdict",
        },
        number_formats={
            "pit_mean": ".3f",
            "tail_share": ".3f",
            "tail_pvalue": ".3f",
            "ks_statistic": ".3f",
            "ks_pvalue": ".3f",
        },
        source_note="Small groups have little power; read verdicts alongside the panels.",
    )
    report.add(TableSection(id="group-table", title="Per-Group Dispersion", html=html))


def _add_pareto_k(report: ReportBuilder, pareto: dict[str, Any], plots_dir: Path) -> None:
    df = pl.DataFrame(
        [
            {
                "Good": pareto["good"],
                "OK": pareto["ok"],
                "Bad": pareto["bad"],
                "Very Bad": pareto["very_bad"],
                "Max k": pareto["max_k"],
            }
        ]
    )
    html = make_gt(
        df,
        title="PSIS Pareto k",
        number_formats={"Max k": ".2f"},
        source_note="PSIS-LOO-PIT values for observations with k > 0.7 are unreliable.",
    )
    report.add(TableSection(id="pareto-k-table", title="PSIS Pareto k", html=html))
    _add_figure(
        report,
        plots_dir / "pareto_k.png",
        "pareto-k",
        "Pareto k Diagnostics",
        "Green < 0.5 good, yellow 0.5-0.7 ok, orange 0.7-1.0 bad, red > 1.0 very bad.",
    )


def _add_methodology(report: ReportBuilder) -> None:
    report.add(
        TextSection(
            id="methodology",
            title="Methodology",
            html="""
<h3>LOO-PIT</h3>
<p>PIT<sub>i</sub> = P(y<sub>i</sub><sup>rep</sup> &le; y<sub>i</sub> | y<sub>-i</sub>),
estimated as the fraction of leave-one-out predictive draws at or below the observed
value, or by Pareto-smoothed importance sampling (ArviZ <code>loo_pit</code>).</p>

<h3>Boundary Correction</h3>
<p>PIT values are bounded, and an ordinary kernel density estimate loses mass past
0 and 1, which looks like a deficit at the edges even for a calibrated model. We
use the reflection method: every value contributes Gaussian kernels at x, -x and
2 - x, restricted to [0, 1]. Bandwidth follows Silverman's rule of thumb. Each PIT
value is replaced by the reflected CDF averaged under the folded kernel at that
value. Uniform reference samples receive the identical transform.</p>

<h3>Dispersion Test</h3>
<p>The share of PIT values in the outer tails is compared with its expectation by
a two-sided exact binomial test. A Kolmogorov-Smirnov test against U(0, 1) is
reported alongside.</p>

<h3>References</h3>
<ul>
<li>Gneiting, T., Balabdaoui, F., & Raftery, A. E. (2007). Probabilistic forecasts,
calibration and sharpness. <em>JRSS B</em>, 69(2), 243-268.</li>
<li>Vehtari, A., Gelman, A., & Gabry, J. (2017). Practical Bayesian model
evaluation using leave-one-out cross-validation and WAIC. <em>Statistics and
Computing</em>, 27(5), 1413-1432.</li>
</ul>
""",
        )
    )
