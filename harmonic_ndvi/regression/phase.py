"""Phase and amplitude of the fitted harmonic terms."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from harmonic_ndvi import config
from harmonic_ndvi.regression.basis import harmonic_name
from harmonic_ndvi.regression.solver import CoefficientRaster, CoefficientSet

__all__ = [
    "PhaseAmplitude",
    "PhaseAmplitudeDeriver",
    "amplitude_from",
    "phase_from",
]


def phase_from(sin_coef, cos_coef):
    """atan2(sin, cos) rescaled from [-π, π] to [0, 1]."""
    return (np.arctan2(sin_coef, cos_coef) + np.pi) / (2.0 * np.pi)


def amplitude_from(sin_coef, cos_coef, scale: float = config.AMPLITUDE_SCALE):
    return np.hypot(sin_coef, cos_coef) * scale


@dataclass(frozen=True)
class PhaseAmplitude:
    phase: np.ndarray
    amplitude: np.ndarray
    valid: np.ndarray
    order: int = 1


class PhaseAmplitudeDeriver:
    """Convert a harmonic order's (cos, sin) coefficient pair into phase/amplitude."""

    def __init__(self, amplitude_scale: float = config.AMPLITUDE_SCALE, order: int = 1):
        self.amplitude_scale = amplitude_scale
        self.order = order
        self.cos_name = harmonic_name("cos", order)
        self.sin_name = harmonic_name("sin", order)

    def derive(self, coeffs: CoefficientRaster) -> PhaseAmplitude:
        sin_coef = coeffs[self.sin_name]
        cos_coef = coeffs[self.cos_name]
        valid = coeffs.valid
        phase = np.where(valid, phase_from(sin_coef, cos_coef), np.nan)
        amplitude = np.where(
            valid, amplitude_from(sin_coef, cos_coef, self.amplitude_scale), np.nan
        )
        return PhaseAmplitude(phase=phase, amplitude=amplitude, valid=valid, order=self.order)

    def derive_pixel(self, coeffs: CoefficientSet | None) -> tuple[float, float] | None:
        """(phase, amplitude) of one pixel, None when it has no CoefficientSet."""
        if coeffs is None:
            return None
        sin_coef = coeffs[self.sin_name]
        cos_coef = coeffs[self.cos_name]
        return (
            float(phase_from(sin_coef, cos_coef)),
            float(amplitude_from(sin_coef, cos_coef, self.amplitude_scale)),
        )
