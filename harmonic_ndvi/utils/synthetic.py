"""Synthetic acquisitions shared between tests and scripts."""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from harmonic_ndvi import config
from harmonic_ndvi.preprocess import Acquisition
from harmonic_ndvi.utils.dates import fractional_years
from harmonic_ndvi.utils.grid import GridSpec

__all__ = [
    "CLOUD_BIT",
    "default_grid",
    "harmonic_ndvi",
    "prepare_acquisitions",
    "raw_from_reflectance",
    "sample_times",
]

CLOUD_BIT = 1 << 3  # QA_PIXEL bit 3


def default_grid(shape: tuple[int, int] = (8, 8), pixel_size: float = 0.005) -> GridSpec:
    """Grid centred on the reference ROI point."""
    lon, lat = config.ROI_POINT
    return GridSpec(
        origin_lon=lon - shape[1] * pixel_size / 2.0,
        origin_lat=lat + shape[0] * pixel_size / 2.0,
        pixel_size=pixel_size,
        shape=shape,
    )


def sample_times(
    start: str = "2014-01-01",
    end: str = "2021-12-31",
    revisit_days: int = 16,
) -> list[pd.Timestamp]:
    """Regular revisit timestamps, Landsat style."""
    return list(pd.date_range(start, end, freq=f"{revisit_days}D"))


def harmonic_ndvi(
    t: np.ndarray | float,
    constant=0.5,
    trend=0.0,
    cos=0.1,
    sin=0.0,
    frequency: float = config.FUNDAMENTAL_FREQUENCY,
):
    """NDVI of a first-order harmonic model; coefficients may be (H, W) arrays."""
    angle = 2.0 * np.pi * frequency * t
    return constant + trend * t + cos * np.cos(angle) + sin * np.sin(angle)


def raw_from_reflectance(
    reflectance, scale: float = config.OPTICAL_SCALE, offset: float = config.OPTICAL_OFFSET
):
    """Invert ``value * scale + offset`` to get raw digital numbers."""
    return (np.asarray(reflectance, dtype=np.float64) - offset) / scale


def prepare_acquisitions(
    times: Sequence | None = None,
    shape: tuple[int, int] = (8, 8),
    *,
    constant=0.5,
    trend=0.0,
    cos=0.1,
    sin=0.0,
    red: float = 0.1,
    noise: float = 0.0,
    cloud_fraction: float = 0.0,
    epoch=config.EPOCH,
    seed: int = 42,
) -> list[Acquisition]:
    """
    Build Landsat-like acquisitions whose NDVI follows a harmonic model.

    Red reflectance is fixed and NIR chosen so that (nir - red)/(nir + red)
    equals the model NDVI (plus optional Gaussian noise). Bands are stored as
    raw digital numbers so the default optical rescale recovers reflectance.

    Args:
        times: Acquisition timestamps (default: 16-day revisit 2014-2021)
        shape: Raster shape (rows, cols)
        constant, trend, cos, sin: Model coefficients (scalars or (H, W) arrays)
        red: Red reflectance
        noise: Standard deviation of NDVI noise
        cloud_fraction: Fraction of pixels flagged cloudy per acquisition
        seed: Random seed (deterministic output)
    """
    rng = np.random.default_rng(seed)
    if times is None:
        times = sample_times()

    acquisitions = []
    for i, ts in enumerate(times):
        t = fractional_years(ts, epoch)
        ndvi = np.broadcast_to(harmonic_ndvi(t, constant, trend, cos, sin), shape).astype(
            np.float64
        )
        if noise > 0:
            ndvi = ndvi + rng.normal(0.0, noise, size=shape)
        ndvi = np.clip(ndvi, -0.95, 0.95)

        red_refl = np.full(shape, red)
        nir_refl = red_refl * (1.0 + ndvi) / (1.0 - ndvi)

        qa = np.zeros(shape, dtype=np.uint16)
        if cloud_fraction > 0:
            qa[rng.random(shape) < cloud_fraction] |= CLOUD_BIT

        acquisitions.append(
            Acquisition(
                timestamp=ts,
                bands={
                    config.RED_BAND: raw_from_reflectance(red_refl),
                    config.NIR_BAND: raw_from_reflectance(nir_refl),
                    config.QA_BAND: qa,
                    config.SATURATION_BAND: np.zeros(shape, dtype=np.uint8),
                },
                scene_id=f"SYNTH_{i:04d}",
            )
        )
    return acquisitions
