"""Per-pixel harmonic regression: design, solve, reconstruct, derive."""

from .basis import (
    BasisFunction,
    DesignMatrixBuilder,
    RegressorRow,
    harmonic_name,
    harmonic_regressors,
)
from .detrend import TrendDetrender
from .phase import PhaseAmplitude, PhaseAmplitudeDeriver
from .solver import (
    CoefficientRaster,
    CoefficientSet,
    FitStatus,
    LeastSquaresBackend,
    LstsqBackend,
    NormalEquationsBackend,
    PerPixelRegressionSolver,
    PixelFit,
    make_backend,
)

__all__ = [
    "BasisFunction",
    "CoefficientRaster",
    "CoefficientSet",
    "DesignMatrixBuilder",
    "FitStatus",
    "LeastSquaresBackend",
    "LstsqBackend",
    "NormalEquationsBackend",
    "PerPixelRegressionSolver",
    "PhaseAmplitude",
    "PhaseAmplitudeDeriver",
    "PixelFit",
    "RegressorRow",
    "TrendDetrender",
    "harmonic_name",
    "harmonic_regressors",
    "make_backend",
]
