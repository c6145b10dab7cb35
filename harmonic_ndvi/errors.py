"""Error kinds raised by the harmonic regression engine."""

from __future__ import annotations

__all__ = [
    "HarmonicNDVIError",
    "InvalidConfiguration",
    "MissingRequiredBand",
    "BandShapeMismatch",
    "PixelFitError",
    "InsufficientData",
    "SingularDesign",
]


class HarmonicNDVIError(Exception):
    """Base class for all engine errors."""


class InvalidConfiguration(HarmonicNDVIError, ValueError):
    """Configuration cannot be used; raised before any pixel is processed."""


class MissingRequiredBand(HarmonicNDVIError, KeyError):
    """An acquisition lacks a band the configuration requires."""

    def __init__(self, band: str, scene_id: str | None = None):
        self.band = band
        self.scene_id = scene_id
        where = f" in {scene_id}" if scene_id else ""
        super().__init__(f"required band {band!r} missing{where}")

    def __str__(self) -> str:
        return self.args[0]


class BandShapeMismatch(HarmonicNDVIError, ValueError):
    """Bands of one acquisition do not share a raster shape."""


class PixelFitError(HarmonicNDVIError):
    """A single pixel could not be solved."""


class InsufficientData(PixelFitError):
    """Fewer valid observations than regressors."""

    def __init__(self, n_obs: int, n_regressors: int):
        self.n_obs = n_obs
        self.n_regressors = n_regressors
        super().__init__(
            f"{n_obs} valid observations for {n_regressors} regressors"
        )


class SingularDesign(PixelFitError):
    """Design matrix is rank deficient."""
