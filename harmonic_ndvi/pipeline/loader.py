"""In-memory data source: acquisition stacks stored as NPZ."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from harmonic_ndvi.preprocess import Acquisition
from harmonic_ndvi.utils.dates import to_timestamp
from harmonic_ndvi.utils.grid import GridSpec

__all__ = ["BAND_PREFIX", "load_acquisitions_npz", "save_acquisitions_npz"]

BAND_PREFIX = "band_"


def load_acquisitions_npz(path: Path) -> tuple[list[Acquisition], GridSpec]:
    """
    Load an acquisition stack.

    Expected keys: ``timestamps`` (N ISO strings), ``band_<NAME>`` arrays of
    shape (N, H, W), optional ``scene_ids`` and the grid keys written by
    ``GridSpec.as_dict``.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Acquisition stack {path} not found")

    with np.load(path) as data:
        timestamps = [to_timestamp(str(ts)) for ts in data["timestamps"]]
        grid = GridSpec.from_dict(data)
        band_names = [k[len(BAND_PREFIX):] for k in data.files if k.startswith(BAND_PREFIX)]
        bands = {name: data[BAND_PREFIX + name] for name in band_names}
        scene_ids = (
            [str(s) for s in data["scene_ids"]] if "scene_ids" in data.files else None
        )

    acquisitions = []
    for i, ts in enumerate(timestamps):
        acquisitions.append(
            Acquisition(
                timestamp=ts,
                bands={name: stack[i] for name, stack in bands.items()},
                scene_id=scene_ids[i] if scene_ids else None,
            )
        )
    logging.info(
        "Loaded %d acquisitions with bands %s from %s", len(acquisitions), band_names, path
    )
    return acquisitions, grid


def save_acquisitions_npz(
    path: Path, acquisitions: Sequence[Acquisition], grid: GridSpec
) -> None:
    """Write acquisitions in the layout read by ``load_acquisitions_npz``."""
    if not acquisitions:
        raise ValueError("no acquisitions to save")
    band_names = sorted(set().union(*(acq.bands for acq in acquisitions)))
    payload: dict[str, np.ndarray] = {
        "timestamps": np.array([acq.timestamp.isoformat() for acq in acquisitions]),
        "scene_ids": np.array([acq.label for acq in acquisitions]),
        **grid.as_dict(),
    }
    for name in band_names:
        missing = [acq.label for acq in acquisitions if name not in acq.bands]
        if missing:
            logging.warning("Band %s missing from %d acquisitions; skipped", name, len(missing))
            continue
        payload[BAND_PREFIX + name] = np.stack([acq.bands[name] for acq in acquisitions])

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savez_compressed(path, **payload)
