import logging

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import hsv_to_rgb

import harmonic_ndvi.config as config
from harmonic_ndvi.pipeline.results import PipelineResults


def plot_series(df: pd.DataFrame, axes=None) -> tuple[plt.Figure, np.ndarray]:
    """
    Three stacked panels for one pixel's series (see ``series.pixel_series``).

    - NDVI scatter with its least-squares linear trend line.
    - Detrended NDVI.
    - Observed NDVI against the fitted harmonic model.

    Returns (Figure, Axes array); caller decides to show/save.
    """
    if axes is None:
        fig, axes = plt.subplots(3, 1, figsize=(9, 9), sharex=True)
    else:
        fig = axes[0].figure

    observed = df.dropna(subset=["ndvi"])
    axes[0].scatter(observed["time"], observed["ndvi"], s=9, label="NDVI")
    if len(observed) >= 2:
        slope, intercept = np.polyfit(observed["t"], observed["ndvi"], 1)
        axes[0].plot(
            observed["time"],
            intercept + slope * observed["t"],
            color="#CC0000",
            lw=1,
            label="trend",
        )
    axes[0].set_ylabel("NDVI")
    axes[0].set_title("NDVI Time Series")

    axes[1].plot(df["time"], df["detrended"], marker="o", ms=3, lw=1)
    axes[1].set_ylabel("Detrended NDVI")
    axes[1].set_title("Detrended Time Series")

    axes[2].plot(df["time"], df["ndvi"], marker="o", ms=3, lw=1, label="NDVI")
    axes[2].plot(df["time"], df["fitted"], lw=1, label="fitted")
    axes[2].set_ylabel("NDVI")
    axes[2].set_title("Harmonic Model: Original and Fitted Values")

    for ax in axes:
        ax.grid(True, alpha=0.2)
    axes[0].legend(loc="best")
    axes[2].legend(loc="best")
    return fig, axes


def phase_amplitude_rgb(results: PipelineResults) -> np.ndarray:
    """
    HSV composite: hue = phase, saturation = amplitude, value = mean NDVI.

    Inputs are clipped to [0, 1]; pixels invalid in any layer are black.
    """
    phase = results.layers[config.PHASE_LAYER]
    amplitude = results.layers[config.AMPLITUDE_LAYER]
    mean = results.layers[config.MEAN_LAYER]
    valid = phase.valid & amplitude.valid & mean.valid

    hsv = np.stack(
        [
            np.where(valid, phase.values, 0.0),
            np.where(valid, amplitude.values, 0.0),
            np.where(valid, mean.values, 0.0),
        ],
        axis=-1,
    )
    return hsv_to_rgb(np.clip(hsv, 0.0, 1.0))


def plot_phase_amplitude(results: PipelineResults, ax=None) -> tuple[plt.Figure, plt.Axes]:
    """Show the HSV composite on the grid's lon/lat extent."""
    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 6))
    else:
        fig = ax.figure

    extent = results.grid.extent
    rgb = phase_amplitude_rgb(results)
    if not np.any(rgb):
        logging.warning("Phase/amplitude composite is empty")
    ax.imshow(
        rgb,
        extent=(extent.min_lon, extent.max_lon, extent.min_lat, extent.max_lat),
        origin="upper",
        interpolation="nearest",
    )
    ax.set_xlabel("Longitude (deg)")
    ax.set_ylabel("Latitude (deg)")
    ax.set_title("Phase (hue), Amplitude (sat), NDVI (val)")
    return fig, ax


def plot_layer(
    results: PipelineResults,
    name: str = config.AMPLITUDE_LAYER,
    ax=None,
    vmin: float = 0.0,
    vmax: float = 1.0,
    cmap: str = "BuGn",
) -> tuple[plt.Figure, plt.Axes]:
    """Single layer map; invalid pixels are left transparent."""
    if ax is None:
        fig, ax = plt.subplots(figsize=(7, 6))
    else:
        fig = ax.figure

    layer = results.layers[name]
    extent = results.grid.extent
    image = ax.imshow(
        np.ma.masked_array(layer.values, mask=~layer.valid),
        extent=(extent.min_lon, extent.max_lon, extent.min_lat, extent.max_lat),
        vmin=vmin,
        vmax=vmax,
        cmap=cmap,
        interpolation="nearest",
    )
    fig.colorbar(image, ax=ax, label=name)
    ax.set_title(name.replace("_", " ").title())
    return fig, ax
