"""Run configuration for the harmonic NDVI pipeline."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from datetime import date
from pathlib import Path
from typing import Any, Mapping

import numpy as np

from harmonic_ndvi import config
from harmonic_ndvi.errors import InvalidConfiguration
from harmonic_ndvi.regression.basis import (
    harmonic_name,
    harmonic_order_of,
    harmonic_regressors,
    parse_regressor,
)
from harmonic_ndvi.utils.dates import parse_date
from harmonic_ndvi.utils.units import to_cycles_per_year

__all__ = ["HarmonicConfig", "SOLVERS", "EXECUTORS"]

SOLVERS = ("normal", "lstsq")
EXECUTORS = ("thread", "process")

# Option names accepted by HarmonicConfig.from_mapping
_OPTION_ALIASES = {
    "cloudMaskBits": "cloud_mask_bits",
    "qaBand": "qa_band",
    "saturationBand": "saturation_band",
    "bandRescale": "band_rescale",
    "indexBands": "index_bands",
    "indexName": "index_name",
    "epoch": "epoch",
    "harmonicOrder": "harmonic_order",
    "fundamentalFrequency": "fundamental_frequency",
    "amplitudeScale": "amplitude_scale",
    "regressorSet": "regressor_set",
    "trendRegressors": "trend_regressors",
    "solver": "solver",
    "tileSize": "tile_size",
    "maxWorkers": "max_workers",
    "executor": "executor",
}


@dataclass(frozen=True)
class HarmonicConfig:
    """
    Options recognised by the preprocessor, regression passes and derivations.

    ``regressor_set`` is the regressor list of the harmonic pass; when left
    as None it is derived from ``harmonic_order``. ``trend_regressors`` is the
    regressor list of the trend-only pass used for the detrended series.
    """

    cloud_mask_bits: int = config.CLOUD_MASK_BITS
    qa_band: str = config.QA_BAND
    saturation_band: str | None = config.SATURATION_BAND
    band_rescale: Mapping[str, tuple[float, float]] = field(
        default_factory=lambda: dict(config.BAND_RESCALE)
    )
    index_bands: tuple[str, str] = config.INDEX_BANDS
    index_name: str = config.INDEX_NAME
    epoch: date | None = config.EPOCH
    harmonic_order: int = config.HARMONIC_ORDER
    fundamental_frequency: float = config.FUNDAMENTAL_FREQUENCY
    amplitude_scale: float = config.AMPLITUDE_SCALE
    regressor_set: tuple[str, ...] | None = None
    trend_regressors: tuple[str, ...] = config.TREND_REGRESSORS
    solver: str = config.SOLVER
    tile_size: int = config.TILE_SIZE
    max_workers: int | None = config.MAX_WORKERS
    executor: str = config.EXECUTOR

    @property
    def regressors(self) -> tuple[str, ...]:
        """Regressor names of the harmonic pass."""
        if self.regressor_set is not None:
            return tuple(self.regressor_set)
        return tuple(harmonic_regressors(self.harmonic_order))

    @property
    def harmonic_orders(self) -> list[int]:
        """Orders with both a cos and a sin column in the harmonic pass."""
        orders = {harmonic_order_of(name) for name in self.regressors}
        orders.discard(None)
        names = set(self.regressors)
        return sorted(
            k
            for k in orders
            if {harmonic_name("cos", k), harmonic_name("sin", k)} <= names
        )

    def validate(self) -> HarmonicConfig:
        """
        Check every option; raise InvalidConfiguration on the first problem.

        Returns self so calls can be chained.
        """
        if self.epoch is None:
            raise InvalidConfiguration("epoch is unset")
        if self.cloud_mask_bits < 0:
            raise InvalidConfiguration("cloud mask bits must be non-negative")
        if len(self.index_bands) != 2 or self.index_bands[0] == self.index_bands[1]:
            raise InvalidConfiguration(
                f"index bands must be two distinct names, got {self.index_bands}"
            )
        for name, pair in self.band_rescale.items():
            if len(pair) != 2 or not all(np.isfinite(v) for v in pair):
                raise InvalidConfiguration(f"bad rescale for {name}: {pair}")
        if self.harmonic_order < 1:
            raise InvalidConfiguration(
                f"harmonic order must be a positive integer, got {self.harmonic_order}"
            )
        if not np.isfinite(self.fundamental_frequency) or self.fundamental_frequency <= 0:
            raise InvalidConfiguration(
                f"fundamental frequency must be positive, got {self.fundamental_frequency}"
            )
        if not np.isfinite(self.amplitude_scale) or self.amplitude_scale <= 0:
            raise InvalidConfiguration(
                f"amplitude scale must be positive, got {self.amplitude_scale}"
            )
        for label, names in (
            ("regressor set", self.regressors),
            ("trend regressors", tuple(self.trend_regressors)),
        ):
            if not names:
                raise InvalidConfiguration(f"{label} is empty")
            if len(set(names)) != len(names):
                raise InvalidConfiguration(f"{label} has duplicates: {list(names)}")
            for name in names:
                parse_regressor(name, self.fundamental_frequency)
        if 1 not in self.harmonic_orders:
            raise InvalidConfiguration(
                f"regressor set {list(self.regressors)} lacks the cos/sin pair"
            )
        if self.solver not in SOLVERS:
            raise InvalidConfiguration(f"Unknown solver: {self.solver}")
        if self.executor not in EXECUTORS:
            raise InvalidConfiguration(f"Unknown executor: {self.executor}")
        if self.tile_size < 1:
            raise InvalidConfiguration("tile size must be positive")
        if self.max_workers is not None and self.max_workers < 1:
            raise InvalidConfiguration("max workers must be positive")
        return self

    def with_options(self, **changes: Any) -> HarmonicConfig:
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> HarmonicConfig:
        """
        Build a config from camelCase option names (or the field names).

        Unknown keys raise InvalidConfiguration.
        """
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in options.items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                raise InvalidConfiguration(f"Unknown option: {key}")
            kwargs[name] = value

        try:
            if "band_rescale" in kwargs:
                kwargs["band_rescale"] = {
                    str(band): (float(pair[0]), float(pair[1]))
                    for band, pair in kwargs["band_rescale"].items()
                }
            if "index_bands" in kwargs:
                kwargs["index_bands"] = tuple(kwargs["index_bands"])
            if kwargs.get("epoch") is not None:
                kwargs["epoch"] = parse_date(kwargs["epoch"])
            if "fundamental_frequency" in kwargs:
                kwargs["fundamental_frequency"] = to_cycles_per_year(
                    kwargs["fundamental_frequency"]
                )
            for key in ("regressor_set", "trend_regressors"):
                if kwargs.get(key) is not None:
                    kwargs[key] = tuple(kwargs[key])
            for key in ("cloud_mask_bits", "harmonic_order", "tile_size"):
                if key in kwargs:
                    kwargs[key] = _as_int(kwargs[key])
        except (TypeError, ValueError) as exc:
            if isinstance(exc, InvalidConfiguration):
                raise
            raise InvalidConfiguration(str(exc)) from exc

        return cls(**kwargs)

    @classmethod
    def from_json(cls, path: Path) -> HarmonicConfig:
        with open(path, "r", encoding="utf-8") as handle:
            return cls.from_mapping(json.load(handle))


def _as_int(value: Any) -> int:
    """Integers, or strings such as '0b11111' / '31'. Integral floats are accepted."""
    if isinstance(value, str):
        return int(value, 0)
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError(f"expected an integer, got {value!r}")
    return int(value)
