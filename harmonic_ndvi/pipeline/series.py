"""Per-pixel time series tables behind the NDVI / detrended / fitted charts."""

from __future__ import annotations

import numpy as np
import pandas as pd

from harmonic_ndvi import config
from harmonic_ndvi.pipeline.results import PipelineResults

__all__ = ["point_series", "pixel_series"]


def pixel_series(results: PipelineResults, row: int, col: int) -> pd.DataFrame:
    """
    Observed, detrended and fitted values of one pixel.

    Columns: time, t, ndvi, detrended, fitted. Masked samples are NaN.
    """
    if results.times is None:
        raise ValueError("results carry no observation stack")

    observed = np.where(
        results.index_valid[:, row, col], results.index[:, row, col], np.nan
    )
    detrended = results.series[config.DETRENDED_LAYER]
    fitted = results.series[config.FITTED_LAYER]
    return pd.DataFrame(
        {
            "time": results.times,
            "t": results.t,
            "ndvi": observed,
            "detrended": np.where(
                detrended.valid[:, row, col], detrended.values[:, row, col], np.nan
            ),
            "fitted": np.where(
                fitted.valid[:, row, col], fitted.values[:, row, col], np.nan
            ),
        }
    )


def point_series(results: PipelineResults, lon: float, lat: float) -> pd.DataFrame:
    """``pixel_series`` for the pixel containing (lon, lat)."""
    index = results.grid.index_of(lon, lat)
    if index is None:
        raise ValueError(f"point ({lon}, {lat}) is outside the grid")
    return pixel_series(results, *index)
