"""Reconstruct model contributions and remove them from observations."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from harmonic_ndvi.errors import InvalidConfiguration
from harmonic_ndvi.regression.basis import DesignMatrixBuilder
from harmonic_ndvi.regression.solver import CoefficientRaster, CoefficientSet

__all__ = ["TrendDetrender"]


class TrendDetrender:
    """
    Evaluate Σ coef_i × regressor_i(t) for a fixed regressor set.

    The builder's regressor names and the coefficient names must match
    exactly; use ``CoefficientRaster.select`` to restrict a fit to a subset
    (e.g. the ``constant, t`` part of a harmonic fit) before detrending.
    """

    def __init__(self, builder: DesignMatrixBuilder):
        self.builder = builder

    def _check(self, names: Sequence[str]) -> None:
        if tuple(names) != self.builder.names:
            raise InvalidConfiguration(
                f"coefficient regressors {list(names)} do not match "
                f"{list(self.builder.names)}"
            )

    def model(self, t: float, coeffs: CoefficientRaster) -> tuple[np.ndarray, np.ndarray]:
        """
        Model value at time ``t`` for every pixel.

        Returns:
            (values, defined) with values NaN where the pixel has no fit.
        """
        self._check(coeffs.names)
        regressors = self.builder.build_matrix(np.array([t]))[0]
        values = np.tensordot(regressors, coeffs.coefficients, axes=1)
        defined = coeffs.valid
        return np.where(defined, values, np.nan), defined

    def model_series(
        self, t: np.ndarray, coeffs: CoefficientRaster
    ) -> tuple[np.ndarray, np.ndarray]:
        """``model`` for many times at once; arrays of shape (N, H, W)."""
        self._check(coeffs.names)
        X = self.builder.build_matrix(t)
        values = np.tensordot(X, coeffs.coefficients, axes=1)
        defined = np.broadcast_to(coeffs.valid, values.shape)
        return np.where(defined, values, np.nan), defined.copy()

    def fitted(self, observation, coeffs: CoefficientRaster):
        """Model-predicted values at the observation time (defined wherever fit)."""
        return self.model(observation.t, coeffs)

    def detrend(self, observation, coeffs: CoefficientRaster):
        """
        Observed minus model at the observation time.

        Masked where either the observation or the pixel's fit is invalid.
        """
        model, defined = self.model(observation.t, coeffs)
        valid = defined & observation.valid
        return np.where(valid, observation.index - model, np.nan), valid

    def detrend_series(
        self, t: np.ndarray, observed: np.ndarray, observed_valid: np.ndarray,
        coeffs: CoefficientRaster,
    ) -> tuple[np.ndarray, np.ndarray]:
        model, defined = self.model_series(t, coeffs)
        valid = defined & observed_valid
        return np.where(valid, observed - model, np.nan), valid

    def pixel_value(self, t: float, coeffs: CoefficientSet | None) -> float | None:
        """Single-pixel model value; None when the pixel has no CoefficientSet."""
        if coeffs is None:
            return None
        self._check(coeffs.names)
        regressors = self.builder.build_matrix(np.array([t]))[0]
        return float(regressors @ np.asarray(coeffs.values))
