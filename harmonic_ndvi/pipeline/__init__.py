"""End-to-end orchestration, tiled fan-out, export and inspection of results."""

from .loader import load_acquisitions_npz, save_acquisitions_npz
from .pipeline import run_pipeline
from .results import DerivedLayer, PipelineResults, SeriesLayer
from .series import pixel_series, point_series
from .sink import LayerSink, MemorySink, NpzLayerSink, export_layers

__all__ = [
    "DerivedLayer",
    "LayerSink",
    "MemorySink",
    "NpzLayerSink",
    "PipelineResults",
    "SeriesLayer",
    "export_layers",
    "load_acquisitions_npz",
    "pixel_series",
    "point_series",
    "run_pipeline",
    "save_acquisitions_npz",
]
