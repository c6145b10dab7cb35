"""
Per-acquisition preprocessing: quality masking, band rescaling, vegetation
index and time coordinate.
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass
from typing import Mapping

import numpy as np
import pandas as pd

from harmonic_ndvi.errors import BandShapeMismatch, MissingRequiredBand
from harmonic_ndvi.settings import HarmonicConfig
from harmonic_ndvi.utils.dates import fractional_years, to_timestamp
from harmonic_ndvi.utils.grid import Region

__all__ = [
    "Acquisition",
    "Observation",
    "ObservationPreprocessor",
    "normalized_difference",
]


@dataclass(frozen=True)
class Acquisition:
    """One raw raster capture: timestamp plus 2D band arrays on a shared grid."""

    timestamp: pd.Timestamp
    bands: Mapping[str, np.ndarray]
    footprint: Region | None = None
    scene_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "timestamp", to_timestamp(self.timestamp))

    @property
    def shape(self) -> tuple[int, int] | None:
        for values in self.bands.values():
            return np.shape(values)
        return None

    @property
    def label(self) -> str:
        return self.scene_id or self.timestamp.isoformat()


@dataclass(frozen=True)
class Observation:
    """
    Masked, rescaled acquisition with its vegetation index.

    - t: fractional years since the configured epoch.
    - bands: rescaled band arrays (unmasked values).
    - index: vegetation index, NaN wherever ``valid`` is False.
    - valid: per-pixel validity (quality, saturation, finite index).
    - dropped_reason: set when the acquisition could not be used at all.
    """

    timestamp: pd.Timestamp
    t: float
    bands: Mapping[str, np.ndarray]
    index: np.ndarray
    valid: np.ndarray
    scene_id: str | None = None
    dropped_reason: str | None = None

    @property
    def is_empty(self) -> bool:
        return not bool(self.valid.any())

    @property
    def n_valid(self) -> int:
        return int(np.count_nonzero(self.valid))

    @classmethod
    def empty(
        cls,
        timestamp: pd.Timestamp,
        t: float,
        shape: tuple[int, int],
        scene_id: str | None = None,
        reason: str | None = None,
    ) -> Observation:
        return cls(
            timestamp=timestamp,
            t=t,
            bands={},
            index=np.full(shape, np.nan),
            valid=np.zeros(shape, dtype=bool),
            scene_id=scene_id,
            dropped_reason=reason,
        )


def normalized_difference(a: np.ndarray, b: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Compute (a - b) / (a + b).

    Returns:
        (index, defined) where ``defined`` is False for a zero denominator or
        non-finite inputs; ``index`` is NaN there.
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    total = a + b
    defined = np.isfinite(a) & np.isfinite(b) & (total != 0.0)
    index = np.full(total.shape, np.nan)
    np.divide(a - b, total, out=index, where=defined)
    return index, defined


class ObservationPreprocessor:
    """Turn raw acquisitions into Observations under one HarmonicConfig."""

    def __init__(self, settings: HarmonicConfig):
        self.settings = settings

    def rescale_for(self, band: str) -> tuple[float, float] | None:
        """(scale, offset) for a band; exact names win over fnmatch patterns."""
        rescale = self.settings.band_rescale
        if band in rescale:
            return rescale[band]
        for pattern, pair in rescale.items():
            if fnmatch.fnmatchcase(band, pattern):
                return pair
        return None

    def rescale(self, bands: Mapping[str, np.ndarray]) -> dict[str, np.ndarray]:
        scaled: dict[str, np.ndarray] = {}
        for name, values in bands.items():
            pair = self.rescale_for(name)
            if pair is None:
                scaled[name] = np.asarray(values)
            else:
                scale, offset = pair
                scaled[name] = np.asarray(values, dtype=np.float64) * scale + offset
        return scaled

    def quality_mask(self, acquisition: Acquisition) -> np.ndarray:
        """True where the QA bits and saturation flags mark a usable pixel."""
        s = self.settings
        qa = np.asarray(acquisition.bands[s.qa_band]).astype(np.int64)
        valid = (qa & s.cloud_mask_bits) == 0

        if s.saturation_band:
            saturation = acquisition.bands.get(s.saturation_band)
            if saturation is None:
                logging.debug(
                    "%s: no %s band, skipping saturation mask",
                    acquisition.label,
                    s.saturation_band,
                )
            else:
                valid &= np.asarray(saturation) == 0
        return valid

    def _require_bands(self, acquisition: Acquisition) -> None:
        for band in (self.settings.qa_band, *self.settings.index_bands):
            if band not in acquisition.bands:
                raise MissingRequiredBand(band, acquisition.label)

        used = [self.settings.qa_band, *self.settings.index_bands]
        if self.settings.saturation_band in acquisition.bands:
            used.append(self.settings.saturation_band)
        shapes = {band: np.shape(acquisition.bands[band]) for band in used}
        if len(set(shapes.values())) > 1:
            raise BandShapeMismatch(
                f"band shapes differ in {acquisition.label}: {shapes}"
            )

    def process(self, acquisition: Acquisition) -> Observation:
        """
        Preprocess one acquisition.

        Never raises for bad data: a missing required band or bands of
        different shapes yield a fully masked Observation with
        ``dropped_reason`` set.
        """
        t = fractional_years(acquisition.timestamp, self.settings.epoch)
        shape = acquisition.shape or (0, 0)

        try:
            self._require_bands(acquisition)
        except (MissingRequiredBand, BandShapeMismatch) as exc:
            logging.warning("Dropping acquisition: %s", exc)
            return Observation.empty(
                acquisition.timestamp,
                t,
                shape,
                scene_id=acquisition.scene_id,
                reason=str(exc),
            )

        valid = self.quality_mask(acquisition)
        bands = self.rescale(acquisition.bands)
        nir, red = self.settings.index_bands
        index, defined = normalized_difference(bands[nir], bands[red])
        valid &= defined
        index[~valid] = np.nan

        obs = Observation(
            timestamp=acquisition.timestamp,
            t=t,
            bands=bands,
            index=index,
            valid=valid,
            scene_id=acquisition.scene_id,
        )
        logging.debug(
            "%s: t=%.4f, %d/%d valid pixels",
            acquisition.label,
            t,
            obs.n_valid,
            valid.size,
        )
        return obs

    __call__ = process
