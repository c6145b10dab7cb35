import numpy as np
import pytest

from harmonic_ndvi.settings import HarmonicConfig
from harmonic_ndvi.utils.synthetic import default_grid, prepare_acquisitions, sample_times


@pytest.fixture
def grid():
    return default_grid((4, 4))


@pytest.fixture
def times():
    return sample_times("2014-01-01", "2017-12-31", revisit_days=16)


@pytest.fixture
def true_coefficients():
    """Keeps NDVI well inside the clipping range for 2014-2017 (t ≈ 44-48)."""
    return {"constant": -0.1, "t": 0.015, "cos": 0.1, "sin": 0.05}


@pytest.fixture
def acquisitions(times, grid, true_coefficients):
    coefficients = dict(true_coefficients)
    coefficients["trend"] = coefficients.pop("t")
    return prepare_acquisitions(times, shape=grid.shape, **coefficients)


@pytest.fixture
def settings():
    """Inline execution keeps tests deterministic and quiet."""
    return HarmonicConfig(max_workers=1)


@pytest.fixture
def quarter_year_t():
    """Four observations a quarter year apart starting at the epoch."""
    return np.array([0.0, 0.25, 0.5, 0.75])
