"""Configuration constants for LOO-PIT diagnostics."""

from dataclasses import dataclass

RANDOM_SEED = 1234

GRID_LEN = 512  # evaluation points on [0, 1] for the reflected KDE
UNIFORM_SD = 12.0**-0.5  # bandwidth fallback when the sample has no spread
MIN_BANDWIDTH = 1e-4  # smallest usable bandwidth; the CDF grid is sized from it

DEFAULT_N_REFERENCE = 100  # uniform reference series per overlay
DEFAULT_N_DRAWS = 3000  # predictive draws per observation in demo artifacts

DISPERSION_TAIL = 0.1  # PIT tail width for the dispersion check (each side)
DISPERSION_ALPHA = 0.05

OBSERVATION_COLUMNS = ("response", "covariate", "group")


@dataclass(frozen=True)
class PlotStyle:
    """Colours and resolution shared by every diagnostic plot."""

    observed_color: str = "#011f4b"
    reference_color: str = "#b3cde0"
    reference_alpha: float = 0.35
    band_color: str = "#6497b1"
    dpi: int = 150


DEFAULT_STYLE = PlotStyle()
