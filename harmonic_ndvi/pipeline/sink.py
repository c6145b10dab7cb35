"""Hand output layers to an export collaborator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable

import numpy as np

from harmonic_ndvi import config
from harmonic_ndvi.pipeline.results import DerivedLayer, PipelineResults, SeriesLayer
from harmonic_ndvi.utils.grid import Region

__all__ = ["LayerSink", "MemorySink", "NpzLayerSink", "export_layers"]


class LayerSink(ABC):
    """Receiver of finished layers; storage format is the sink's business."""

    @abstractmethod
    def write(self, layer: DerivedLayer | SeriesLayer) -> None:
        ...


class MemorySink(LayerSink):
    """Keeps layers in a dict (tests, notebooks)."""

    def __init__(self):
        self.layers: dict[str, DerivedLayer | SeriesLayer] = {}

    def write(self, layer: DerivedLayer | SeriesLayer) -> None:
        self.layers[layer.name] = layer


class NpzLayerSink(LayerSink):
    """One compressed NPZ per layer: values, valid mask and grid."""

    def __init__(self, output_dir: Path = config.OUTPUT_DIR, prefix: str = ""):
        self.output_dir = Path(output_dir)
        self.prefix = prefix

    def path_for(self, name: str) -> Path:
        return self.output_dir / f"{self.prefix}{name}.npz"

    def write(self, layer: DerivedLayer | SeriesLayer) -> None:
        payload: dict[str, np.ndarray] = {
            "values": layer.values.astype(np.float32),
            "valid": layer.valid.astype(bool),
            **layer.grid.as_dict(),
        }
        if isinstance(layer, SeriesLayer):
            payload["times"] = layer.times.strftime("%Y-%m-%dT%H:%M:%S").to_numpy(
                dtype="U19"
            )

        out = self.path_for(layer.name)
        out.parent.mkdir(parents=True, exist_ok=True)
        np.savez_compressed(out, **payload)
        logging.info("Saved %s to %s", layer.name, out)


def export_layers(
    results: PipelineResults,
    sink: LayerSink,
    region: Region | None = None,
    names: Iterable[str] | None = None,
) -> list[str]:
    """
    Clip (optionally) and write named layers/series to ``sink``.

    Defaults to every layer and series in ``results``. Returns the names written.
    """
    if names is None:
        names = [*results.layers, *results.series]
    written = []
    for name in names:
        layer = results[name]
        if region is not None:
            layer = layer.clip(region)
        sink.write(layer)
        written.append(name)
    return written
