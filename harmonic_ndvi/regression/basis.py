"""
Regressor (design matrix) construction for the per-pixel harmonic model.

Implements the expansion:
    NDVI(t) = β_0 + β_1 t + Σ_k [a_k cos(2π k f t) + b_k sin(2π k f t)]

where t is fractional years since the epoch and f the fundamental frequency
in cycles per year. Column names: ``constant``, ``t``, ``cos``/``sin`` for
k = 1 and ``cosK``/``sinK`` for k ≥ 2.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from harmonic_ndvi import config
from harmonic_ndvi.errors import InvalidConfiguration

__all__ = [
    "BasisFunction",
    "DesignMatrixBuilder",
    "RegressorRow",
    "harmonic_name",
    "harmonic_order_of",
    "harmonic_regressors",
    "parse_regressor",
]

_HARMONIC_RE = re.compile(r"^(cos|sin)([2-9]|[1-9][0-9]+)?$")


@dataclass(frozen=True)
class BasisFunction:
    """A single named regressor column."""

    name: str
    func: Callable[[np.ndarray], np.ndarray]


def harmonic_name(kind: str, order: int) -> str:
    """Column name for the ``kind`` ('cos'/'sin') term of harmonic ``order``."""
    return kind if order == 1 else f"{kind}{order}"


def harmonic_order_of(name: str) -> int | None:
    """Harmonic order of a cos/sin column name, None for other names."""
    match = _HARMONIC_RE.match(name)
    if match is None:
        return None
    return int(match.group(2) or 1)


def harmonic_regressors(order: int = config.HARMONIC_ORDER) -> list[str]:
    """
    Default regressor list for a harmonic model of the given order.

    Examples:
        1 -> [constant, t, cos, sin]
        2 -> [constant, t, cos, sin, cos2, sin2]
    """
    if order < 0:
        raise InvalidConfiguration(f"harmonic order must be >= 0, got {order}")
    names = list(config.TREND_REGRESSORS)
    for k in range(1, order + 1):
        names.extend([harmonic_name("cos", k), harmonic_name("sin", k)])
    return names


def parse_regressor(name: str, frequency: float) -> BasisFunction:
    """Resolve a regressor name to its basis function."""
    if name == config.CONSTANT_REGRESSOR:
        return BasisFunction(name, lambda t: np.ones_like(t, dtype=np.float64))
    if name == config.TIME_REGRESSOR:
        return BasisFunction(name, lambda t: np.asarray(t, dtype=np.float64))

    match = _HARMONIC_RE.match(name)
    if match is None:
        raise InvalidConfiguration(f"Unknown regressor '{name}'")
    trig = np.cos if match.group(1) == "cos" else np.sin
    omega = 2.0 * np.pi * harmonic_order_of(name) * frequency
    return BasisFunction(
        name, lambda t, w=omega, fn=trig: fn(w * np.asarray(t, dtype=np.float64))
    )


@dataclass(frozen=True)
class RegressorRow:
    """
    Regressor values for one observation.

    ``response`` and ``valid`` are the observation's index raster and validity
    mask; ``values`` has one entry per regressor name.
    """

    names: tuple[str, ...]
    values: np.ndarray
    t: float
    response: np.ndarray | None = None
    valid: np.ndarray | None = None

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.values.tolist()))


class DesignMatrixBuilder:
    """Build regressor rows for a fixed, ordered list of regressor names."""

    def __init__(
        self,
        regressors: Sequence[str],
        frequency: float = config.FUNDAMENTAL_FREQUENCY,
    ):
        names = tuple(regressors)
        if not names:
            raise InvalidConfiguration("regressor list is empty")
        if len(set(names)) != len(names):
            raise InvalidConfiguration(f"duplicate regressors in {list(names)}")
        if not np.isfinite(frequency) or frequency <= 0:
            raise InvalidConfiguration(
                f"fundamental frequency must be positive, got {frequency}"
            )
        self.names = names
        self.frequency = float(frequency)
        self._bases = [parse_regressor(name, self.frequency) for name in names]

    def __len__(self) -> int:
        return len(self.names)

    def __repr__(self) -> str:
        return f"DesignMatrixBuilder({list(self.names)}, frequency={self.frequency})"

    def __reduce__(self):
        # basis lambdas are rebuilt from names so builders can cross process pools
        return (type(self), (self.names, self.frequency))

    def build_matrix(self, t: np.ndarray) -> np.ndarray:
        """
        Build the design matrix.

        Args:
            t: Time coordinates in fractional years (shape: N)

        Returns:
            Matrix of shape (N, K) where K = len(self.names)
        """
        t = np.atleast_1d(np.asarray(t, dtype=np.float64))
        design = np.empty((t.size, len(self._bases)), dtype=np.float64)
        for k, basis in enumerate(self._bases):
            design[:, k] = basis.func(t)
        return design

    def build_row(self, t: float, response=None, valid=None) -> RegressorRow:
        values = self.build_matrix(np.array([t]))[0]
        return RegressorRow(
            names=self.names,
            values=values,
            t=float(t),
            response=response,
            valid=valid,
        )

    def rows_for(self, observations) -> list[RegressorRow]:
        """One row per observation, carrying its index raster and mask."""
        return [
            self.build_row(obs.t, response=obs.index, valid=obs.valid)
            for obs in observations
        ]
