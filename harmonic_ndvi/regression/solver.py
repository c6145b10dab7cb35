"""
Per-pixel ordinary least squares across the time dimension.

Each pixel p is solved independently from its own valid rows:

    c_p = argmin Σ_{i valid at p} (y_ip − x_i · c)²

The numeric work sits behind ``LeastSquaresBackend`` so the pipeline does not
depend on how the system is solved:

- NormalEquationsBackend: batched (XᵗX) c = Xᵗy over a whole block of pixels.
- LstsqBackend: SVD-based scipy.linalg.lstsq, one pixel at a time.

Pixels that cannot be solved carry a FitStatus and NaN coefficients; they are
never zero-filled and never raise out of the solver.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

import numpy as np
import scipy.linalg

from harmonic_ndvi import config
from harmonic_ndvi.errors import (
    InsufficientData,
    InvalidConfiguration,
    PixelFitError,
    SingularDesign,
)
from harmonic_ndvi.regression.basis import DesignMatrixBuilder, RegressorRow

__all__ = [
    "BlockFit",
    "CoefficientRaster",
    "CoefficientSet",
    "FitStatus",
    "LeastSquaresBackend",
    "LstsqBackend",
    "NormalEquationsBackend",
    "PerPixelRegressionSolver",
    "PixelFit",
    "make_backend",
]


class FitStatus(IntEnum):
    """Outcome of one pixel's solve."""

    OK = 0
    INSUFFICIENT_DATA = 1
    SINGULAR = 2
    FAILED = 3  # the tile holding the pixel raised


@dataclass(frozen=True)
class CoefficientSet:
    """Coefficients of one pixel, in regressor order, plus fit summary."""

    names: tuple[str, ...]
    values: tuple[float, ...]
    rss: float
    n_obs: int

    def __getitem__(self, name: str) -> float:
        return self.values[self.names.index(name)]

    def as_dict(self) -> dict[str, float]:
        return dict(zip(self.names, self.values))


@dataclass(frozen=True)
class PixelFit:
    """Explicit result of a single-pixel solve."""

    status: FitStatus
    coefficients: CoefficientSet | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is FitStatus.OK


@dataclass(slots=True)
class BlockFit:
    """Flat results for P pixels from one backend call."""

    coefficients: np.ndarray  # (P, K), NaN where status != OK
    rss: np.ndarray  # (P,)
    n_obs: np.ndarray  # (P,)
    status: np.ndarray  # (P,) FitStatus values


def _residual_sum_of_squares(
    X: np.ndarray, Y: np.ndarray, valid: np.ndarray, coefficients: np.ndarray
) -> np.ndarray:
    """Σ (y − X c)² over each pixel's valid rows; X (N,K), Y/valid (N,P), c (P,K)."""
    predicted = X @ coefficients.T
    residuals = np.where(valid, Y - predicted, 0.0)
    return np.sum(residuals**2, axis=0)


class LeastSquaresBackend(ABC):
    """Numeric backend: stacked regressor rows + responses → coefficients."""

    name = "base"

    def __init__(self, rcond: float = config.SINGULAR_RCOND):
        self.rcond = rcond

    @abstractmethod
    def solve_block(self, X: np.ndarray, Y: np.ndarray, valid: np.ndarray) -> BlockFit:
        """
        Solve every pixel of a block.

        Args:
            X: Design matrix shared by all pixels (shape: N × K)
            Y: Responses (shape: N × P)
            valid: Row validity per pixel (shape: N × P)
        """

    def solve(self, X: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, float]:
        """
        Solve one pixel from its valid rows only.

        Raises:
            InsufficientData: fewer rows than regressors.
            SingularDesign: XᵗX is numerically singular.
        """
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        block = self.solve_block(X, y[:, None], np.ones((y.size, 1), dtype=bool))
        status = FitStatus(int(block.status[0]))
        if status is FitStatus.INSUFFICIENT_DATA:
            raise InsufficientData(y.size, X.shape[1])
        if status is FitStatus.SINGULAR:
            raise SingularDesign("design matrix is rank deficient")
        return block.coefficients[0], float(block.rss[0])


class NormalEquationsBackend(LeastSquaresBackend):
    """Vectorised normal equations over all pixels of a block."""

    name = "normal"

    def solve_block(self, X: np.ndarray, Y: np.ndarray, valid: np.ndarray) -> BlockFit:
        X = np.asarray(X, dtype=np.float64)
        Y = np.asarray(Y, dtype=np.float64)
        valid = np.asarray(valid, dtype=bool) & np.isfinite(Y)
        n_rows, n_regressors = X.shape
        n_pixels = Y.shape[1]

        n_obs = valid.sum(axis=0)
        status = np.full(n_pixels, FitStatus.OK, dtype=np.int8)
        status[n_obs < n_regressors] = FitStatus.INSUFFICIENT_DATA
        coefficients = np.full((n_pixels, n_regressors), np.nan)
        rss = np.full(n_pixels, np.nan)

        candidates = np.flatnonzero(status == FitStatus.OK)
        if candidates.size == 0:
            return BlockFit(coefficients, rss, n_obs, status)

        weights = valid[:, candidates].astype(np.float64)
        responses = np.where(valid[:, candidates], Y[:, candidates], 0.0)
        xtx = np.einsum("np,nk,nl->pkl", weights, X, X)
        xty = np.einsum("np,nk->pk", responses, X)

        singular_values = np.linalg.svd(xtx, compute_uv=False)
        largest = singular_values[:, 0]
        rcond = np.divide(
            singular_values[:, -1],
            largest,
            out=np.zeros_like(largest),
            where=largest > 0,
        )
        singular = rcond <= self.rcond
        status[candidates[singular]] = FitStatus.SINGULAR

        keep = ~singular
        solvable = candidates[keep]
        if solvable.size:
            try:
                solved = np.linalg.solve(xtx[keep], xty[keep][..., None])[..., 0]
            except np.linalg.LinAlgError:
                solved = self._solve_each(xtx[keep], xty[keep], status, solvable)
            coefficients[solvable] = solved
            rss[solvable] = _residual_sum_of_squares(
                X, Y[:, solvable], valid[:, solvable], solved
            )

        return BlockFit(coefficients, rss, n_obs, status)

    @staticmethod
    def _solve_each(xtx, xty, status, pixels) -> np.ndarray:
        solved = np.full(xty.shape, np.nan)
        for i, pixel in enumerate(pixels):
            try:
                solved[i] = np.linalg.solve(xtx[i], xty[i])
            except np.linalg.LinAlgError:
                status[pixel] = FitStatus.SINGULAR
        return solved


class LstsqBackend(LeastSquaresBackend):
    """Per-pixel SVD least squares via scipy.linalg.lstsq."""

    name = "lstsq"

    def solve(self, X: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, float]:
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        n_rows, n_regressors = X.shape
        if n_rows < n_regressors:
            raise InsufficientData(n_rows, n_regressors)

        # XᵗX singular below rcond ⇔ X singular below sqrt(rcond)
        coefficients, _, rank, _ = scipy.linalg.lstsq(
            X, y, cond=np.sqrt(self.rcond), lapack_driver="gelsd"
        )
        if rank < n_regressors:
            raise SingularDesign(f"rank {rank} < {n_regressors} regressors")
        residuals = y - X @ coefficients
        return coefficients, float(residuals @ residuals)

    def solve_block(self, X: np.ndarray, Y: np.ndarray, valid: np.ndarray) -> BlockFit:
        X = np.asarray(X, dtype=np.float64)
        Y = np.asarray(Y, dtype=np.float64)
        valid = np.asarray(valid, dtype=bool) & np.isfinite(Y)
        n_pixels = Y.shape[1]

        n_obs = valid.sum(axis=0)
        status = np.full(n_pixels, FitStatus.OK, dtype=np.int8)
        coefficients = np.full((n_pixels, X.shape[1]), np.nan)
        rss = np.full(n_pixels, np.nan)

        for p in range(n_pixels):
            rows = valid[:, p]
            try:
                coefficients[p], rss[p] = self.solve(X[rows], Y[rows, p])
            except InsufficientData:
                status[p] = FitStatus.INSUFFICIENT_DATA
            except SingularDesign:
                status[p] = FitStatus.SINGULAR

        return BlockFit(coefficients, rss, n_obs, status)


_BACKENDS: dict[str, type[LeastSquaresBackend]] = {
    NormalEquationsBackend.name: NormalEquationsBackend,
    LstsqBackend.name: LstsqBackend,
}


def make_backend(name: str = config.SOLVER, **kwargs) -> LeastSquaresBackend:
    try:
        return _BACKENDS[name](**kwargs)
    except KeyError:
        raise InvalidConfiguration(f"Unknown solver: {name}") from None


@dataclass
class CoefficientRaster:
    """
    Per-pixel fit results on a (H, W) grid.

    - coefficients: (K, H, W), NaN where status != OK
    - rss: residual sum of squares, NaN where status != OK
    - n_obs: valid observations used per pixel
    - status: FitStatus codes
    """

    names: tuple[str, ...]
    coefficients: np.ndarray
    rss: np.ndarray
    n_obs: np.ndarray
    status: np.ndarray

    @classmethod
    def empty(
        cls,
        names: Sequence[str],
        shape: tuple[int, int],
        status: FitStatus = FitStatus.FAILED,
    ) -> CoefficientRaster:
        return cls(
            names=tuple(names),
            coefficients=np.full((len(names), *shape), np.nan),
            rss=np.full(shape, np.nan),
            n_obs=np.zeros(shape, dtype=np.int64),
            status=np.full(shape, status, dtype=np.int8),
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.rss.shape

    @property
    def valid(self) -> np.ndarray:
        return self.status == FitStatus.OK

    def __getitem__(self, name: str) -> np.ndarray:
        try:
            return self.coefficients[self.names.index(name)]
        except ValueError:
            raise KeyError(name) from None

    def select(self, names: Sequence[str]) -> CoefficientRaster:
        """Project onto a subset of regressors (rss/n_obs/status unchanged)."""
        missing = [n for n in names if n not in self.names]
        if missing:
            raise InvalidConfiguration(
                f"regressors {missing} not in coefficient set {list(self.names)}"
            )
        idx = [self.names.index(n) for n in names]
        return CoefficientRaster(
            names=tuple(names),
            coefficients=self.coefficients[idx],
            rss=self.rss,
            n_obs=self.n_obs,
            status=self.status,
        )

    def at(self, row: int, col: int) -> CoefficientSet | None:
        """CoefficientSet of one pixel, or None when it has no fit."""
        if self.status[row, col] != FitStatus.OK:
            return None
        return CoefficientSet(
            names=self.names,
            values=tuple(float(v) for v in self.coefficients[:, row, col]),
            rss=float(self.rss[row, col]),
            n_obs=int(self.n_obs[row, col]),
        )

    def write(self, rows: slice, cols: slice, block: CoefficientRaster) -> None:
        """Paste a tile's results into ``[rows, cols]``."""
        if block.names != self.names:
            raise InvalidConfiguration(
                f"tile regressors {list(block.names)} != {list(self.names)}"
            )
        self.coefficients[:, rows, cols] = block.coefficients
        self.rss[rows, cols] = block.rss
        self.n_obs[rows, cols] = block.n_obs
        self.status[rows, cols] = block.status

    def status_counts(self) -> dict[str, int]:
        codes, counts = np.unique(self.status, return_counts=True)
        return {FitStatus(int(c)).name.lower(): int(n) for c, n in zip(codes, counts)}


class PerPixelRegressionSolver:
    """Fit one regressor set independently at every pixel."""

    def __init__(
        self,
        builder: DesignMatrixBuilder,
        backend: LeastSquaresBackend | None = None,
    ):
        self.builder = builder
        self.backend = backend or NormalEquationsBackend()

    @property
    def names(self) -> tuple[str, ...]:
        return self.builder.names

    def fit(self, t: np.ndarray, Y: np.ndarray, valid: np.ndarray) -> CoefficientRaster:
        """
        Fit a stack of observations.

        Args:
            t: Time coordinates in fractional years (shape: N)
            Y: Responses (shape: N × H × W)
            valid: Validity masks (shape: N × H × W)
        """
        Y = np.asarray(Y, dtype=np.float64)
        n_rows, *shape = Y.shape
        X = self.builder.build_matrix(t)
        n_pixels = int(np.prod(shape))
        flat = self.backend.solve_block(
            X,
            Y.reshape(n_rows, n_pixels),
            np.asarray(valid, dtype=bool).reshape(n_rows, n_pixels),
        )
        return CoefficientRaster(
            names=self.names,
            coefficients=flat.coefficients.T.reshape(len(self.names), *shape),
            rss=flat.rss.reshape(shape),
            n_obs=flat.n_obs.reshape(shape),
            status=flat.status.reshape(shape),
        )

    def fit_rows(self, rows: Sequence[RegressorRow]) -> CoefficientRaster:
        """Fit from RegressorRows carrying response rasters and masks."""
        if not rows:
            raise ValueError("no regressor rows to fit")
        for row in rows:
            if row.names != self.names:
                raise InvalidConfiguration(
                    f"row regressors {list(row.names)} != {list(self.names)}"
                )
        t = np.array([row.t for row in rows])
        Y = np.stack([row.response for row in rows])
        valid = np.stack([row.valid for row in rows])
        return self.fit(t, Y, valid)

    def solve_pixel(self, X: np.ndarray, y: np.ndarray) -> PixelFit:
        """Solve one pixel's series; failures become an explicit PixelFit."""
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        keep = np.isfinite(y)
        try:
            coefficients, rss = self.backend.solve(X[keep], y[keep])
        except InsufficientData as exc:
            return PixelFit(FitStatus.INSUFFICIENT_DATA, reason=str(exc))
        except PixelFitError as exc:
            return PixelFit(FitStatus.SINGULAR, reason=str(exc))
        return PixelFit(
            FitStatus.OK,
            CoefficientSet(
                names=self.names,
                values=tuple(float(v) for v in coefficients),
                rss=rss,
                n_obs=int(keep.sum()),
            ),
        )

    def solve_series(self, t: np.ndarray, y: np.ndarray) -> PixelFit:
        """``solve_pixel`` with the design built from time coordinates."""
        return self.solve_pixel(self.builder.build_matrix(t), y)

    def __repr__(self) -> str:
        return f"PerPixelRegressionSolver({list(self.names)}, backend={self.backend.name})"
