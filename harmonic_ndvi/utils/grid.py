"""Pixel grid and rectangular region geometry."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

__all__ = ["GridSpec", "Region"]


@dataclass(frozen=True, slots=True)
class Region:
    """Axis-aligned lon/lat rectangle; a point is a zero-area rectangle."""

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    def __post_init__(self):
        if self.max_lon < self.min_lon or self.max_lat < self.min_lat:
            raise ValueError(f"degenerate region bounds: {self.bounds}")

    @classmethod
    def from_point(cls, lon: float, lat: float) -> Region:
        return cls(lon, lat, lon, lat)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def intersects(self, other: Region) -> bool:
        return not (
            other.max_lon < self.min_lon
            or other.min_lon > self.max_lon
            or other.max_lat < self.min_lat
            or other.min_lat > self.max_lat
        )


@dataclass(frozen=True, slots=True)
class GridSpec:
    """
    Regular lon/lat pixel grid.

    ``origin_lon``/``origin_lat`` give the north-west corner of pixel (0, 0);
    rows run south and columns run east.
    """

    origin_lon: float
    origin_lat: float
    pixel_size: float
    shape: tuple[int, int]

    @property
    def height(self) -> int:
        return self.shape[0]

    @property
    def width(self) -> int:
        return self.shape[1]

    @property
    def extent(self) -> Region:
        return Region(
            self.origin_lon,
            self.origin_lat - self.height * self.pixel_size,
            self.origin_lon + self.width * self.pixel_size,
            self.origin_lat,
        )

    def pixel_centers(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (lon, lat) arrays of shape ``self.shape``."""
        cols = self.origin_lon + (np.arange(self.width) + 0.5) * self.pixel_size
        rows = self.origin_lat - (np.arange(self.height) + 0.5) * self.pixel_size
        return np.meshgrid(cols, rows)

    def index_of(self, lon: float, lat: float) -> tuple[int, int] | None:
        """Row/column of the pixel containing (lon, lat), or None if outside."""
        col = int(np.floor((lon - self.origin_lon) / self.pixel_size))
        row = int(np.floor((self.origin_lat - lat) / self.pixel_size))
        if 0 <= row < self.height and 0 <= col < self.width:
            return row, col
        return None

    def region_mask(self, region: Region) -> np.ndarray:
        """Boolean mask of pixels whose footprint intersects ``region``."""
        lon, lat = self.pixel_centers()
        half = self.pixel_size / 2.0
        return (
            (lon + half >= region.min_lon)
            & (lon - half <= region.max_lon)
            & (lat + half >= region.min_lat)
            & (lat - half <= region.max_lat)
        )

    def subgrid(self, rows: slice, cols: slice) -> GridSpec:
        """Grid covering ``[rows, cols]`` of this grid."""
        r0, r1, _ = rows.indices(self.height)
        c0, c1, _ = cols.indices(self.width)
        return GridSpec(
            origin_lon=self.origin_lon + c0 * self.pixel_size,
            origin_lat=self.origin_lat - r0 * self.pixel_size,
            pixel_size=self.pixel_size,
            shape=(r1 - r0, c1 - c0),
        )

    def as_dict(self) -> dict[str, np.ndarray]:
        return {
            "grid_origin": np.array([self.origin_lon, self.origin_lat]),
            "grid_pixel_size": np.float64(self.pixel_size),
            "grid_shape": np.array(self.shape, dtype=np.int64),
        }

    @classmethod
    def from_dict(cls, data) -> GridSpec:
        origin = np.asarray(data["grid_origin"], dtype=np.float64)
        shape = np.asarray(data["grid_shape"], dtype=np.int64)
        return cls(
            origin_lon=float(origin[0]),
            origin_lat=float(origin[1]),
            pixel_size=float(data["grid_pixel_size"]),
            shape=(int(shape[0]), int(shape[1])),
        )
