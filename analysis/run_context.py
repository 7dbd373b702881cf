"""Reusable run context for structured analysis output.

Every analysis phase (LOO-PIT, animation) uses RunContext to get:
  - Structured output directories: results/<dataset>/<phase>/<date>/plots/ + data/
  - Automatic console log capture (run_log.txt)
  - Run metadata (run_info.json): git hash, timestamp, parameters
  - A `latest` symlink pointing to the most recent run
  - A convenience report symlink in the dataset root (e.g. 01_loo_pit_report.html)

Run-directory mode (pipeline runs):
  When run_id is set, all phases write into a single grouped directory:
    results/<dataset>/<run_id>/<phase>/plots/ + data/
  A dataset-level `latest` symlink points to the run directory.

Legacy mode (individual phase runs):
  When run_id is None, each phase writes to its own date directory:
    results/<dataset>/<phase>/<date>/plots/ + data/
  A phase-level `latest` symlink points to the date directory.

Usage:
    with RunContext(
        dataset="radon",
        analysis_name="01_loo_pit",
        params=vars(args),
        primer=LOO_PIT_PRIMER,
    ) as ctx:
        frame.write_parquet(ctx.data_dir / "pit_values.parquet")
        save_fig(fig, ctx.plots_dir / "pit_overlay.png")
"""

from __future__ import annotations

import io
import json
import re
import subprocess
import sys
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import TextIO
from zoneinfo import ZoneInfo

_TZ = ZoneInfo("UTC")

DEFAULT_RESULTS_ROOT = Path("results")


class _TeeStream:
    """Wraps a stream to duplicate output to both the original stream and a buffer.

    All print() output goes to both the console (so the user sees progress)
    and an internal StringIO buffer (captured for run_log.txt).
    """

    def __init__(self, original: io.TextIOBase) -> None:
        self._original = original
        self._buffer = io.StringIO()

    def write(self, data: str) -> int:
        self._original.write(data)
        self._buffer.write(data)
        return len(data)

    def flush(self) -> None:
        self._original.flush()

    def getvalue(self) -> str:
        return self._buffer.getvalue()


def normalize_dataset(dataset: str) -> str:
    """Turn a dataset label into a directory-safe slug.

    Examples:
        "Radon (MN)"  -> "radon-mn"
        "demo_calibrated" -> "demo-calibrated"
        ""  -> "dataset"
    """
    slug = re.sub(r"[^a-z0-9]+", "-", dataset.lower()).strip("-")
    return slug or "dataset"


def _git_commit_hash() -> str:
    """Get the current git commit hash, or 'unknown' if not in a repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _format_elapsed(seconds: float) -> str:
    """Format elapsed seconds: "3.2s", "1m 45s", "1h 12m 5s"."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h {mins}m {secs}s"


def _next_run_label(phase_dir: Path, today: str) -> str:
    """Return a unique run label for today: "261017", then "261017.1", "261017.2"."""
    if not (phase_dir / today).exists() or (phase_dir / today).is_symlink():
        return today
    n = 1
    while (phase_dir / f"{today}.{n}").exists():
        n += 1
    return f"{today}.{n}"


def generate_run_id(dataset: str, results_root: Path | None = None) -> str:
    """Generate a run ID for grouping pipeline phases: ``{dataset}-{YYMMDD}``.

    Same-day collisions under *results_root* get .1, .2, etc. suffixes.
    """
    base = f"{normalize_dataset(dataset)}-{datetime.now(_TZ).strftime('%y%m%d')}"
    if results_root is None:
        return base
    if not (results_root / base).exists() or (results_root / base).is_symlink():
        return base
    n = 1
    while (results_root / f"{base}.{n}").exists():
        n += 1
    return f"{base}.{n}"


def resolve_upstream_dir(
    phase: str,
    results_root: Path,
    run_id: str | None = None,
    override: Path | None = None,
) -> Path:
    """Resolve the output directory for an upstream phase.

    Precedence:
      1. Explicit CLI override (e.g. --pit-dir /some/path)
      2. Run-directory path: results_root/{run_id}/{phase}
      3. Legacy phase path: results_root/{phase}/latest
      4. New-layout fallback: results_root/latest/{phase}

    The caller should verify the returned path exists before reading from it.
    """
    if override is not None:
        return override
    if run_id is not None:
        return results_root / run_id / phase
    legacy = results_root / phase / "latest"
    if legacy.exists():
        return legacy
    return results_root / "latest" / phase


def _replace_symlink(link: Path, target: Path | str) -> None:
    if link.is_symlink() or link.exists():
        link.unlink()
    link.symlink_to(target)


class RunContext:
    """Context manager that sets up structured output for an analysis run.

    Attributes:
        dataset: Normalized dataset slug.
        analysis_name: Phase name (e.g. "01_loo_pit").
        params: Script parameters recorded in run_info.json.
        run_dir: Root of this run's output.
        plots_dir: Directory for PNG/GIF output.
        data_dir: Directory for parquet/JSON output.
    """

    def __init__(
        self,
        dataset: str,
        analysis_name: str,
        params: dict | None = None,
        results_root: Path | None = None,
        primer: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.dataset = normalize_dataset(dataset)
        self.analysis_name = analysis_name
        self.params = params or {}
        self.run_id = run_id

        today = datetime.now(_TZ).strftime("%y%m%d")
        self.dataset_root = (results_root or DEFAULT_RESULTS_ROOT) / self.dataset

        if run_id is not None:
            self._phase_dir = self.dataset_root / run_id / analysis_name
            self.run_dir = self._phase_dir
            self._run_label = run_id
        else:
            self._phase_dir = self.dataset_root / analysis_name
            self._run_label = _next_run_label(self._phase_dir, today)
            self.run_dir = self._phase_dir / self._run_label

        self.plots_dir = self.run_dir / "plots"
        self.data_dir = self.run_dir / "data"

        self._today = today
        self._primer = primer
        self._tee: _TeeStream | None = None
        self._original_stdout: TextIO | None = None
        self._start_time: datetime | None = None

        self.report = self._init_report()

    def __enter__(self) -> RunContext:
        self.setup()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.finalize(failed=exc_type is not None)

    def _init_report(self) -> object:
        try:
            from analysis.report import ReportBuilder
        except ModuleNotFoundError:
            from report import ReportBuilder  # type: ignore[no-redef]
        return ReportBuilder(
            title=f"{self.analysis_name.upper()} Report",
            dataset=self.dataset,
        )

    def setup(self) -> None:
        """Create directories, write primer, and start log capture."""
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.plots_dir.mkdir(exist_ok=True)
        self.data_dir.mkdir(exist_ok=True)

        if self._primer:
            (self._phase_dir / "README.md").write_text(self._primer, encoding="utf-8")

        self._original_stdout = sys.stdout
        self._tee = _TeeStream(sys.stdout)
        sys.stdout = self._tee  # type: ignore[assignment]
        self._start_time = datetime.now(_TZ)

    def finalize(self, *, failed: bool = False) -> None:
        """Write run_info.json, run_log.txt, the report, and update latest symlinks."""
        log_text = self._tee.getvalue() if self._tee is not None else ""
        if self._original_stdout is not None:
            sys.stdout = self._original_stdout  # type: ignore[assignment]

        (self.run_dir / "run_log.txt").write_text(log_text, encoding="utf-8")

        end_time = datetime.now(_TZ)
        elapsed = (end_time - self._start_time).total_seconds() if self._start_time else 0.0
        run_info = {
            "analysis": self.analysis_name,
            "dataset": self.dataset,
            "run_date": self._today,
            "run_label": self._run_label,
            "run_id": self.run_id,
            "failed": failed,
            "timestamp_start": self._start_time.isoformat() if self._start_time else None,
            "timestamp_end": end_time.isoformat(),
            "elapsed_seconds": round(elapsed, 1),
            "elapsed_display": _format_elapsed(elapsed),
            "git_commit": _git_commit_hash(),
            "python_version": sys.version,
            "params": self.params,
        }
        with open(self.run_dir / "run_info.json", "w") as f:
            json.dump(run_info, f, indent=2, default=str)

        print(f"\n{self.analysis_name.upper()} completed in {run_info['elapsed_display']}")

        report_name = f"{self.analysis_name}_report.html"
        if not failed and self.report is not None and self.report.has_sections:
            self.report.git_hash = run_info["git_commit"]
            self.report.write(self.run_dir / report_name)
            if self.run_id is not None:
                _replace_symlink(
                    self.dataset_root / report_name,
                    Path("latest") / self.analysis_name / report_name,
                )
            else:
                _replace_symlink(
                    self.dataset_root / report_name,
                    Path(self.analysis_name) / "latest" / report_name,
                )

        # Failed runs leave `latest` alone so downstream phases never read partial output
        if not failed:
            if self.run_id is not None:
                _replace_symlink(self.dataset_root / "latest", self.run_id)
            else:
                _replace_symlink(self._phase_dir / "latest", self._run_label)
