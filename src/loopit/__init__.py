"""loopit - leave-one-out PIT calibration diagnostics for Bayesian regression models."""

__version__ = "2026.10.17"

from loopit.boundary import boundary_correct as boundary_correct
from loopit.boundary import (
    generate_boundary_corrected_uniform_draws as generate_boundary_corrected_uniform_draws,
)
from loopit.errors import ArtifactError as ArtifactError
from loopit.errors import InvalidInputError as InvalidInputError
