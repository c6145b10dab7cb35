import logging
from datetime import date

import numpy as np
import pytest

from harmonic_ndvi import config
from harmonic_ndvi.errors import MissingRequiredBand
from harmonic_ndvi.preprocess import (
    Acquisition,
    ObservationPreprocessor,
    normalized_difference,
)
from harmonic_ndvi.settings import HarmonicConfig
from harmonic_ndvi.utils.synthetic import CLOUD_BIT, raw_from_reflectance


def _acquisition(nir, red, qa=None, saturation=None, **extra):
    nir = np.asarray(nir, dtype=float)
    bands = {
        config.NIR_BAND: raw_from_reflectance(nir),
        config.RED_BAND: raw_from_reflectance(red),
        config.QA_BAND: np.zeros(nir.shape, dtype=np.uint16) if qa is None else qa,
    }
    if saturation is not None:
        bands[config.SATURATION_BAND] = saturation
    bands.update(extra)
    return Acquisition("2016-07-02", bands, scene_id="LC08_TEST")


@pytest.fixture
def preprocessor():
    return ObservationPreprocessor(HarmonicConfig())


def test_normalized_difference():
    index, defined = normalized_difference(np.array([0.3, 0.0, np.nan]), np.array([0.1, 0.0, 0.1]))
    assert index[0] == pytest.approx(0.5)
    assert defined.tolist() == [True, False, False]
    assert np.isnan(index[1:]).all()


def test_rescale_patterns(preprocessor):
    assert preprocessor.rescale_for("SR_B7") == (config.OPTICAL_SCALE, config.OPTICAL_OFFSET)
    assert preprocessor.rescale_for("ST_B10") == (config.THERMAL_SCALE, config.THERMAL_OFFSET)
    assert preprocessor.rescale_for(config.QA_BAND) is None

    scaled = preprocessor.rescale({"SR_B4": np.array([10000.0]), "QA_PIXEL": np.array([3])})
    assert scaled["SR_B4"][0] == pytest.approx(10000 * 2.75e-5 - 0.2)
    assert scaled["QA_PIXEL"][0] == 3


def test_exact_rescale_name_wins():
    settings = HarmonicConfig(band_rescale={"SR_B*": (2.0, 0.0), "SR_B4": (1.0, 1.0)})
    preprocessor = ObservationPreprocessor(settings)
    assert preprocessor.rescale_for("SR_B4") == (1.0, 1.0)
    assert preprocessor.rescale_for("SR_B5") == (2.0, 0.0)


def test_process_computes_ndvi(preprocessor):
    obs = preprocessor.process(_acquisition(np.full((2, 2), 0.3), np.full((2, 2), 0.1)))

    assert obs.dropped_reason is None
    assert obs.valid.all()
    np.testing.assert_allclose(obs.index, 0.5, atol=1e-9)
    np.testing.assert_allclose(obs.bands[config.RED_BAND], 0.1, atol=1e-9)
    assert obs.t == pytest.approx(46 + 183 / 366)
    assert obs.scene_id == "LC08_TEST"


def test_quality_bits_mask_pixels(preprocessor):
    qa = np.zeros((2, 2), dtype=np.uint16)
    qa[0, 0] = CLOUD_BIT
    qa[0, 1] = 1 << 6  # clear-sky flag lies outside the mask bits
    obs = preprocessor.process(_acquisition(np.full((2, 2), 0.3), np.full((2, 2), 0.1), qa=qa))

    assert obs.valid.tolist() == [[False, True], [True, True]]
    assert np.isnan(obs.index[0, 0])
    assert obs.n_valid == 3


def test_saturation_masks_pixels(preprocessor):
    saturation = np.array([[0, 2], [0, 0]], dtype=np.uint8)
    obs = preprocessor.process(
        _acquisition(np.full((2, 2), 0.3), np.full((2, 2), 0.1), saturation=saturation)
    )
    assert obs.valid.tolist() == [[True, False], [True, True]]


def test_saturation_band_is_optional(preprocessor, caplog):
    with caplog.at_level(logging.DEBUG):
        obs = preprocessor.process(_acquisition(np.full((2, 2), 0.3), np.full((2, 2), 0.1)))
    assert obs.valid.all()
    assert "skipping saturation mask" in caplog.text


def test_zero_denominator_is_masked():
    # no rescale, so the zero reflectances reach the index exactly
    preprocessor = ObservationPreprocessor(HarmonicConfig(band_rescale={}))
    acq = Acquisition(
        "2016-07-02",
        {
            config.NIR_BAND: np.zeros((1, 2)),
            config.RED_BAND: np.array([[0.0, 0.1]]),
            config.QA_BAND: np.zeros((1, 2), dtype=np.uint16),
        },
    )
    obs = preprocessor.process(acq)

    assert obs.valid.tolist() == [[False, True]]
    assert np.isnan(obs.index[0, 0])
    assert obs.index[0, 1] == pytest.approx(-1.0)


def test_all_cloudy_acquisition_is_empty(preprocessor):
    qa = np.full((3, 3), CLOUD_BIT, dtype=np.uint16)
    obs = preprocessor.process(_acquisition(np.full((3, 3), 0.3), np.full((3, 3), 0.1), qa=qa))

    assert obs.is_empty
    assert obs.dropped_reason is None
    assert np.isnan(obs.index).all()


def test_missing_band_yields_dropped_observation(preprocessor, caplog):
    acq = _acquisition(np.full((2, 2), 0.3), np.full((2, 2), 0.1))
    bands = dict(acq.bands)
    del bands[config.NIR_BAND]
    broken = Acquisition(acq.timestamp, bands, scene_id="LC08_BROKEN")

    with caplog.at_level(logging.WARNING):
        obs = preprocessor(broken)

    assert obs.is_empty
    assert obs.index.shape == (2, 2)
    assert "SR_B5" in obs.dropped_reason
    assert "LC08_BROKEN" in caplog.text


def test_missing_required_band_message():
    err = MissingRequiredBand("QA_PIXEL", "LC08_X")
    assert str(err) == "required band 'QA_PIXEL' missing in LC08_X"
    assert isinstance(err, KeyError)


def test_custom_epoch_and_index_bands():
    settings = HarmonicConfig(epoch=date(2016, 1, 1), index_bands=("SR_B4", "SR_B5"))
    obs = ObservationPreprocessor(settings).process(
        _acquisition(np.full((1, 1), 0.3), np.full((1, 1), 0.1))
    )
    assert obs.t == pytest.approx(183 / 366)
    assert obs.index[0, 0] == pytest.approx(-0.5)


def test_acquisition_label_and_shape():
    acq = Acquisition("2020-03-04T05:06:07", {"SR_B4": np.zeros((2, 3))})
    assert acq.shape == (2, 3)
    assert acq.label == "2020-03-04T05:06:07"


def test_mismatched_saturation_shape_yields_dropped_observation(preprocessor):
    acq = _acquisition(
        np.full((4, 4), 0.3),
        np.full((4, 4), 0.1),
        saturation=np.zeros((2, 2), dtype=np.uint8),
    )
    obs = preprocessor.process(acq)

    assert obs.is_empty
    assert obs.index.shape == (4, 4)
    assert "band shapes differ" in obs.dropped_reason
    assert "QA_RADSAT" in obs.dropped_reason
