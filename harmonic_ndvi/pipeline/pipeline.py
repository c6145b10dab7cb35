"""
Orchestration of one harmonic NDVI run.

filter → preprocess → stack → trend pass + harmonic pass → derived layers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np
import pandas as pd

from harmonic_ndvi import config
from harmonic_ndvi.preprocess import Acquisition, Observation, ObservationPreprocessor
from harmonic_ndvi.regression.basis import DesignMatrixBuilder
from harmonic_ndvi.regression.detrend import TrendDetrender
from harmonic_ndvi.regression.phase import PhaseAmplitudeDeriver
from harmonic_ndvi.regression.solver import (
    CoefficientRaster,
    PerPixelRegressionSolver,
    make_backend,
)
from harmonic_ndvi.settings import HarmonicConfig
from harmonic_ndvi.pipeline.parallel import fit_tiled, map_ordered
from harmonic_ndvi.pipeline.results import DerivedLayer, PipelineResults, SeriesLayer
from harmonic_ndvi.utils.dates import DateRange
from harmonic_ndvi.utils.grid import GridSpec, Region

__all__ = [
    "ObservationStack",
    "build_stack",
    "filter_acquisitions",
    "fit_pass",
    "mean_layer",
    "mosaic_layer",
    "preprocess_all",
    "run_pipeline",
]


@dataclass(frozen=True)
class ObservationStack:
    """Observations stacked along time: index/valid have shape (N, H, W)."""

    times: pd.DatetimeIndex
    t: np.ndarray
    index: np.ndarray
    valid: np.ndarray

    def __len__(self) -> int:
        return int(self.t.size)


def filter_acquisitions(
    acquisitions: Iterable[Acquisition],
    region: Region | None = None,
    date_range: DateRange | None = None,
) -> list[Acquisition]:
    """
    Keep acquisitions inside the inclusive date range whose footprint touches
    the region; acquisitions without a footprint are assumed to cover the
    grid. The result is sorted by timestamp.
    """
    kept = []
    for acq in acquisitions:
        if date_range is not None and not date_range.contains(acq.timestamp):
            continue
        if (
            region is not None
            and acq.footprint is not None
            and not acq.footprint.intersects(region)
        ):
            logging.debug("%s: footprint outside region", acq.label)
            continue
        kept.append(acq)
    kept.sort(key=lambda acq: acq.timestamp)
    return kept


def preprocess_all(
    acquisitions: Sequence[Acquisition],
    settings: HarmonicConfig,
    grid: GridSpec,
) -> tuple[list[Observation], dict[str, str]]:
    """
    Preprocess acquisitions in parallel.

    Returns:
        (observations, dropped) where dropped maps acquisition label to reason
    """
    preprocessor = ObservationPreprocessor(settings)

    def _process(acq: Acquisition) -> Observation | str:
        try:
            return preprocessor.process(acq)
        except Exception as exc:
            return f"error: {exc}"

    processed = map_ordered(
        _process, list(acquisitions), settings.max_workers, desc="preprocess"
    )

    observations: list[Observation] = []
    dropped: dict[str, str] = {}
    for acq, obs in zip(acquisitions, processed):
        if isinstance(obs, str):
            logging.warning("Dropping acquisition %s: %s", acq.label, obs)
            dropped[acq.label] = obs
        elif obs.dropped_reason is not None:
            dropped[acq.label] = obs.dropped_reason
        elif obs.index.shape != grid.shape:
            reason = f"shape {obs.index.shape} does not match grid {grid.shape}"
            logging.warning("Dropping acquisition %s: %s", acq.label, reason)
            dropped[acq.label] = reason
        else:
            observations.append(obs)
    return observations, dropped


def build_stack(observations: Sequence[Observation], shape: tuple[int, int]) -> ObservationStack:
    if not observations:
        return ObservationStack(
            times=pd.DatetimeIndex([]),
            t=np.empty(0),
            index=np.empty((0, *shape)),
            valid=np.zeros((0, *shape), dtype=bool),
        )
    return ObservationStack(
        times=pd.DatetimeIndex([obs.timestamp for obs in observations]),
        t=np.array([obs.t for obs in observations], dtype=np.float64),
        index=np.stack([obs.index for obs in observations]),
        valid=np.stack([obs.valid for obs in observations]),
    )


def fit_pass(
    stack: ObservationStack,
    regressors: Sequence[str],
    settings: HarmonicConfig,
    label: str,
) -> tuple[CoefficientRaster, list[tuple[slice, slice, str]]]:
    """Run one regression pass over the stack."""
    builder = DesignMatrixBuilder(regressors, settings.fundamental_frequency)
    solver = PerPixelRegressionSolver(builder, make_backend(settings.solver))
    coeffs, failed = fit_tiled(
        solver,
        stack.t,
        stack.index,
        stack.valid,
        tile_size=settings.tile_size,
        max_workers=settings.max_workers,
        executor=settings.executor,
        label=label,
    )
    logging.info("%s pass %s: %s", label, list(builder.names), coeffs.status_counts())
    return coeffs, failed


def mosaic_layer(
    stack: ObservationStack, grid: GridSpec, name: str = config.MOSAIC_LAYER
) -> DerivedLayer:
    """Latest valid index value per pixel (later acquisitions on top)."""
    shape = grid.shape
    if len(stack) == 0:
        return DerivedLayer(name, np.full(shape, np.nan), np.zeros(shape, dtype=bool), grid)
    valid = stack.valid.any(axis=0)
    last = len(stack) - 1 - np.argmax(stack.valid[::-1], axis=0)
    values = np.take_along_axis(stack.index, last[None], axis=0)[0]
    return DerivedLayer(name, np.where(valid, values, np.nan), valid, grid)


def mean_layer(
    stack: ObservationStack, grid: GridSpec, name: str = config.MEAN_LAYER
) -> DerivedLayer:
    """Mean of the valid index samples per pixel."""
    counts = stack.valid.sum(axis=0)
    totals = np.where(stack.valid, stack.index, 0.0).sum(axis=0)
    valid = counts > 0
    values = np.divide(totals, counts, out=np.full(grid.shape, np.nan), where=valid)
    return DerivedLayer(name, values, valid, grid)


def run_pipeline(
    acquisitions: Iterable[Acquisition],
    grid: GridSpec,
    settings: HarmonicConfig | None = None,
    region: Region | None = None,
    date_range: DateRange | None = None,
    clip: bool = False,
) -> PipelineResults:
    """
    Run the full harmonic NDVI workflow.

    Args:
        acquisitions: Raw acquisitions on ``grid``
        grid: Common pixel grid
        settings: Run configuration (validated before any work starts)
        region: Spatial filter; with ``clip`` also applied to the outputs
        date_range: Inclusive acquisition date filter
        clip: Invalidate output pixels outside ``region``

    Returns:
        PipelineResults with layers amplitude, phase, ndvi_mosaic, mean_ndvi
        and series detrended_series, fitted_series.

    Raises:
        InvalidConfiguration: before any acquisition is touched.
    """
    settings = (settings or HarmonicConfig()).validate()
    trend_builder = DesignMatrixBuilder(settings.trend_regressors, settings.fundamental_frequency)
    harmonic_builder = DesignMatrixBuilder(settings.regressors, settings.fundamental_frequency)

    selected = filter_acquisitions(acquisitions, region, date_range)
    logging.info("Selected %d acquisitions", len(selected))
    if not selected:
        logging.warning("No acquisitions left after filtering")

    observations, dropped = preprocess_all(selected, settings, grid)
    stack = build_stack(observations, grid.shape)
    logging.info(
        "Stacked %d observations (%d dropped), %d valid samples",
        len(stack),
        len(dropped),
        int(stack.valid.sum()),
    )

    results = PipelineResults(
        grid=grid,
        times=stack.times,
        t=stack.t,
        index=stack.index,
        index_valid=stack.valid,
        dropped=dropped,
    )

    # The two passes are independent of each other
    for label, regressors in (
        ("trend", trend_builder.names),
        ("harmonic", harmonic_builder.names),
    ):
        coeffs, failed = fit_pass(stack, regressors, settings, label)
        setattr(results, label, coeffs)
        results.failed_tiles.extend((label, rows, cols, err) for rows, cols, err in failed)

    detrended, detrended_valid = TrendDetrender(trend_builder).detrend_series(
        stack.t, stack.index, stack.valid, results.trend
    )
    fitted, fitted_valid = TrendDetrender(harmonic_builder).model_series(
        stack.t, results.harmonic
    )
    results.series[config.DETRENDED_LAYER] = SeriesLayer(
        config.DETRENDED_LAYER, stack.times, detrended, detrended_valid, grid
    )
    results.series[config.FITTED_LAYER] = SeriesLayer(
        config.FITTED_LAYER, stack.times, fitted, fitted_valid, grid
    )

    for order in settings.harmonic_orders:
        derived = PhaseAmplitudeDeriver(settings.amplitude_scale, order).derive(
            results.harmonic
        )
        suffix = "" if order == 1 else str(order)
        results.layers[config.AMPLITUDE_LAYER + suffix] = DerivedLayer(
            config.AMPLITUDE_LAYER + suffix, derived.amplitude, derived.valid, grid
        )
        results.layers[config.PHASE_LAYER + suffix] = DerivedLayer(
            config.PHASE_LAYER + suffix, derived.phase, derived.valid, grid
        )

    results.layers[config.MOSAIC_LAYER] = mosaic_layer(stack, grid)
    results.layers[config.MEAN_LAYER] = mean_layer(stack, grid)

    if clip and region is not None:
        results.layers = {k: v.clip(region) for k, v in results.layers.items()}
        results.series = {k: v.clip(region) for k, v in results.series.items()}

    logging.info("Run summary: %s", results.summary())
    return results
