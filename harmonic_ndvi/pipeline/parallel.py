"""
Tiled parallel fan-out of per-pixel regression.

The raster is cut into square tiles; each tile is solved by an independent
task that owns its slice of the observation stack and returns its own
CoefficientRaster. Results are pasted into disjoint slices of the output, so
no locking is needed. A tile that raises is logged and left with status
FAILED; the other tiles are unaffected.

Example:
    solver = PerPixelRegressionSolver(DesignMatrixBuilder(["constant", "t"]))
    coeffs, failed = fit_tiled(solver, t, ndvi, valid, tile_size=128, max_workers=8)
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import (
    Executor,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from typing import Callable, Iterator, Sequence, TypeVar

import numpy as np
from tqdm import tqdm

from harmonic_ndvi import config
from harmonic_ndvi.regression.solver import (
    CoefficientRaster,
    FitStatus,
    PerPixelRegressionSolver,
)

__all__ = [
    "fit_tile",
    "fit_tiled",
    "iter_tiles",
    "make_executor",
    "map_ordered",
]

T = TypeVar("T")
R = TypeVar("R")


def iter_tiles(
    shape: tuple[int, int], tile_size: int = config.TILE_SIZE
) -> Iterator[tuple[slice, slice]]:
    """Yield (row slice, col slice) pairs covering ``shape`` in row-major order."""
    height, width = shape
    for r0 in range(0, height, tile_size):
        for c0 in range(0, width, tile_size):
            yield slice(r0, min(r0 + tile_size, height)), slice(
                c0, min(c0 + tile_size, width)
            )


def make_executor(kind: str = config.EXECUTOR, max_workers: int | None = None) -> Executor:
    if max_workers is None:
        max_workers = os.cpu_count() or 4
    if kind == "process":
        return ProcessPoolExecutor(max_workers=max_workers)
    return ThreadPoolExecutor(max_workers=max_workers)


def fit_tile(
    solver: PerPixelRegressionSolver,
    t: np.ndarray,
    values: np.ndarray,
    valid: np.ndarray,
) -> CoefficientRaster:
    """
    Solve one tile.

    This function may run in a separate process, so it only takes picklable
    arguments and touches no shared state.
    """
    return solver.fit(t, values, valid)


def fit_tiled(
    solver: PerPixelRegressionSolver,
    t: np.ndarray,
    values: np.ndarray,
    valid: np.ndarray,
    tile_size: int = config.TILE_SIZE,
    max_workers: int | None = config.MAX_WORKERS,
    executor: str = config.EXECUTOR,
    label: str = "fit",
) -> tuple[CoefficientRaster, list[tuple[slice, slice, str]]]:
    """
    Fit every pixel of an (N, H, W) stack, tile by tile.

    Args:
        solver: Solver for the regressor set of this pass
        t: Time coordinates (shape: N)
        values: Index stack (shape: N × H × W)
        valid: Validity stack (shape: N × H × W)
        tile_size: Tile edge in pixels
        max_workers: Parallel workers; 1 runs inline without an executor
        executor: "thread" or "process"
        label: Progress bar / log label

    Returns:
        (coefficients, failed) where failed lists (rows, cols, error) per tile
    """
    shape = values.shape[1:]
    result = CoefficientRaster.empty(solver.names, shape, status=FitStatus.FAILED)
    tiles = list(iter_tiles(shape, tile_size))
    failed: list[tuple[slice, slice, str]] = []

    logging.debug(
        "%s: %d tiles of %d px, %d observations, regressors %s",
        label,
        len(tiles),
        tile_size,
        len(t),
        list(solver.names),
    )

    def _record_failure(rows: slice, cols: slice, exc: BaseException) -> None:
        logging.error(
            "%s: tile rows %d:%d cols %d:%d failed: %s",
            label,
            rows.start,
            rows.stop,
            cols.start,
            cols.stop,
            exc,
        )
        failed.append((rows, cols, str(exc)))

    if max_workers == 1 or len(tiles) == 1:
        for rows, cols in tqdm(tiles, desc=label, unit="tile", leave=False):
            try:
                block = fit_tile(solver, t, values[:, rows, cols], valid[:, rows, cols])
            except Exception as exc:
                _record_failure(rows, cols, exc)
                continue
            result.write(rows, cols, block)
        return result, failed

    with make_executor(executor, max_workers) as pool:
        futures = {
            pool.submit(
                fit_tile, solver, t, values[:, rows, cols], valid[:, rows, cols]
            ): (rows, cols)
            for rows, cols in tiles
        }
        for future in tqdm(
            as_completed(futures), total=len(futures), desc=label, unit="tile", leave=False
        ):
            rows, cols = futures[future]
            try:
                block = future.result()
            except Exception as exc:
                _record_failure(rows, cols, exc)
                continue
            result.write(rows, cols, block)

    return result, failed


def map_ordered(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: int | None = config.MAX_WORKERS,
    desc: str = "items",
) -> list[R]:
    """Apply ``func`` to every item on a thread pool, preserving order."""
    if max_workers == 1 or len(items) <= 1:
        return [func(item) for item in tqdm(items, desc=desc, leave=False)]
    with make_executor("thread", max_workers) as pool:
        return list(tqdm(pool.map(func, items), total=len(items), desc=desc, leave=False))
