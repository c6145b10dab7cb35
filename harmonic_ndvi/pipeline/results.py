from __future__ import annotations

from dataclasses import dataclass, field, replace

import numpy as np
import pandas as pd

from harmonic_ndvi.regression.solver import CoefficientRaster
from harmonic_ndvi.utils.grid import GridSpec, Region


@dataclass(frozen=True)
class DerivedLayer:
    """
    Per-pixel scalar raster with an explicit validity mask.

    - values: (H, W) float, NaN wherever ``valid`` is False.
    - valid: (H, W) bool; consumers must check it before reading a value.
    - grid: pixel grid the layer covers.
    """

    name: str
    values: np.ndarray
    valid: np.ndarray
    grid: GridSpec

    def clip(self, region: Region) -> DerivedLayer:
        """Invalidate pixels outside ``region``."""
        inside = self.grid.region_mask(region)
        valid = self.valid & inside
        return replace(self, values=np.where(valid, self.values, np.nan), valid=valid)

    def value_at(self, row: int, col: int) -> float | None:
        if not self.valid[row, col]:
            return None
        return float(self.values[row, col])


@dataclass(frozen=True)
class SeriesLayer:
    """Time-keyed stack of layers (detrended or fitted series)."""

    name: str
    times: pd.DatetimeIndex
    values: np.ndarray  # (N, H, W)
    valid: np.ndarray  # (N, H, W)
    grid: GridSpec

    def __len__(self) -> int:
        return len(self.times)

    def layer(self, i: int) -> DerivedLayer:
        return DerivedLayer(
            name=f"{self.name}_{self.times[i]:%Y%m%d}",
            values=self.values[i],
            valid=self.valid[i],
            grid=self.grid,
        )

    def at(self, timestamp) -> DerivedLayer:
        """Layer at an exact timestamp; KeyError if absent or not unique."""
        loc = self.times.get_loc(pd.Timestamp(timestamp))
        if not isinstance(loc, (int, np.integer)):
            raise KeyError(
                f"{self.name}: {pd.Timestamp(timestamp)} matches several layers, select by position"
            )
        return self.layer(int(loc))

    def clip(self, region: Region) -> SeriesLayer:
        inside = self.grid.region_mask(region)
        valid = self.valid & inside[None]
        return replace(self, values=np.where(valid, self.values, np.nan), valid=valid)


@dataclass()
class PipelineResults:
    """
    Outputs of one pipeline run.

    - layers: named single rasters (amplitude, phase, ndvi_mosaic, mean_ndvi, ...)
    - series: named time-keyed stacks (detrended_series, fitted_series)
    - trend / harmonic: coefficient rasters of the two regression passes
    - observations: time coordinates and index stack the passes were fitted on
    - dropped: labels of acquisitions that contributed nothing, with reasons
    - failed_tiles: (pass, row slice, col slice, error) of tiles that raised
    """

    grid: GridSpec
    layers: dict[str, DerivedLayer] = field(default_factory=dict)
    series: dict[str, SeriesLayer] = field(default_factory=dict)
    trend: CoefficientRaster | None = None
    harmonic: CoefficientRaster | None = None
    times: pd.DatetimeIndex | None = None
    t: np.ndarray | None = None
    index: np.ndarray | None = None
    index_valid: np.ndarray | None = None
    dropped: dict[str, str] = field(default_factory=dict)
    failed_tiles: list[tuple[str, slice, slice, str]] = field(default_factory=list)

    def __getitem__(self, name: str) -> DerivedLayer | SeriesLayer:
        if name in self.layers:
            return self.layers[name]
        return self.series[name]

    @property
    def n_observations(self) -> int:
        return 0 if self.t is None else int(self.t.size)

    def summary(self) -> dict[str, object]:
        info: dict[str, object] = {
            "observations": self.n_observations,
            "dropped": len(self.dropped),
            "failed_tiles": len(self.failed_tiles),
        }
        for label, raster in (("trend", self.trend), ("harmonic", self.harmonic)):
            if raster is not None:
                info[label] = raster.status_counts()
        return info
