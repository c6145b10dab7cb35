from __future__ import annotations

from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from harmonic_ndvi import config
from harmonic_ndvi.errors import InvalidConfiguration
from harmonic_ndvi.pipeline import parallel
from harmonic_ndvi.pipeline.pipeline import (
    build_stack,
    filter_acquisitions,
    mean_layer,
    mosaic_layer,
    run_pipeline,
)
from harmonic_ndvi.preprocess import Acquisition
from harmonic_ndvi.regression.phase import amplitude_from, phase_from
from harmonic_ndvi.regression.solver import FitStatus
from harmonic_ndvi.utils.dates import DateRange
from harmonic_ndvi.utils.grid import Region
from harmonic_ndvi.utils.synthetic import CLOUD_BIT


def _all_cloudy(acq: Acquisition) -> Acquisition:
    bands = dict(acq.bands)
    bands[config.QA_BAND] = np.full(acq.shape, CLOUD_BIT, dtype=np.uint16)
    return replace(acq, bands=bands)


def _without_band(acq: Acquisition, band: str) -> Acquisition:
    bands = {k: v for k, v in acq.bands.items() if k != band}
    return replace(acq, bands=bands)


def test_run_pipeline_recovers_model(acquisitions, grid, settings, true_coefficients):
    results = run_pipeline(acquisitions, grid, settings)

    assert set(results.layers) == set(config.OUTPUT_LAYERS)
    assert set(results.series) == set(config.OUTPUT_SERIES)
    assert results.n_observations == len(acquisitions)
    assert results.harmonic.valid.all()
    assert results.trend.valid.all()

    for name, expected in true_coefficients.items():
        np.testing.assert_allclose(results.harmonic[name], expected, atol=1e-6)

    sin_coef, cos_coef = true_coefficients["sin"], true_coefficients["cos"]
    np.testing.assert_allclose(
        results["phase"].values, phase_from(sin_coef, cos_coef), atol=1e-6
    )
    np.testing.assert_allclose(
        results["amplitude"].values, amplitude_from(sin_coef, cos_coef), atol=1e-6
    )


def test_fitted_series_reproduces_observations(acquisitions, grid, settings):
    results = run_pipeline(acquisitions, grid, settings)
    fitted = results[config.FITTED_LAYER]

    assert len(fitted) == len(acquisitions)
    assert fitted.valid.all()
    np.testing.assert_allclose(fitted.values, results.index, atol=1e-6)


def test_detrended_series_removes_linear_trend(acquisitions, grid, settings):
    results = run_pipeline(acquisitions, grid, settings)
    detrended = results[config.DETRENDED_LAYER]

    assert detrended.valid.all()
    # residual of a least-squares fit with an intercept has zero mean
    np.testing.assert_allclose(detrended.values.mean(axis=0), 0.0, atol=1e-8)
    trend = results.trend
    model = trend["constant"] + trend["t"] * results.t[:, None, None]
    np.testing.assert_allclose(detrended.values + model, results.index, atol=1e-9)


def test_amplitude_scale(acquisitions, grid, settings, true_coefficients):
    results = run_pipeline(
        acquisitions, grid, settings.with_options(amplitude_scale=config.REFERENCE_AMPLITUDE_SCALE)
    )
    expected = 5.0 * np.hypot(true_coefficients["cos"], true_coefficients["sin"])
    np.testing.assert_allclose(results["amplitude"].values, expected, atol=1e-5)


def test_cloudy_acquisition_does_not_change_fit(acquisitions, grid, settings):
    cloudy = list(acquisitions)
    cloudy[5] = _all_cloudy(cloudy[5])
    removed = acquisitions[:5] + acquisitions[6:]

    with_cloudy = run_pipeline(cloudy, grid, settings)
    without = run_pipeline(removed, grid, settings)

    assert with_cloudy.n_observations == len(acquisitions)
    assert not with_cloudy[config.DETRENDED_LAYER].valid[5].any()
    assert with_cloudy[config.FITTED_LAYER].valid[5].all()
    np.testing.assert_array_equal(with_cloudy.harmonic.n_obs, len(acquisitions) - 1)
    np.testing.assert_allclose(
        with_cloudy.harmonic.coefficients, without.harmonic.coefficients, rtol=1e-7, atol=1e-8
    )
    np.testing.assert_allclose(
        with_cloudy["mean_ndvi"].values, without["mean_ndvi"].values, rtol=1e-10
    )


def test_run_is_idempotent(acquisitions, grid, settings):
    first = run_pipeline(acquisitions, grid, settings)
    second = run_pipeline(acquisitions, grid, settings)

    for name in config.OUTPUT_LAYERS:
        np.testing.assert_array_equal(first[name].values, second[name].values)
    np.testing.assert_array_equal(first.harmonic.coefficients, second.harmonic.coefficients)


def test_threaded_run_matches_inline(acquisitions, grid, settings):
    inline = run_pipeline(acquisitions, grid, settings.with_options(tile_size=2))
    threaded = run_pipeline(
        acquisitions, grid, settings.with_options(tile_size=2, max_workers=3)
    )
    np.testing.assert_allclose(
        threaded.harmonic.coefficients, inline.harmonic.coefficients, rtol=1e-12
    )


def test_missing_band_drops_acquisition(acquisitions, grid, settings):
    broken = list(acquisitions)
    broken[3] = _without_band(broken[3], config.NIR_BAND)

    results = run_pipeline(broken, grid, settings)

    assert list(results.dropped) == [broken[3].label]
    assert config.NIR_BAND in results.dropped[broken[3].label]
    assert results.n_observations == len(acquisitions) - 1
    assert results.harmonic.valid.all()


def test_mismatched_band_shape_drops_acquisition(acquisitions, grid, settings):
    broken = list(acquisitions)
    bands = dict(broken[3].bands)
    bands[config.SATURATION_BAND] = np.zeros((2, 2), dtype=np.uint8)
    broken[3] = replace(broken[3], bands=bands)

    results = run_pipeline(broken, grid, settings)

    assert list(results.dropped) == [broken[3].label]
    assert "band shapes differ" in results.dropped[broken[3].label]
    assert results.n_observations == len(acquisitions) - 1
    assert results.harmonic.valid.all()


def test_preprocess_error_drops_acquisition(acquisitions, grid, settings, monkeypatch, caplog):
    from harmonic_ndvi.preprocess import ObservationPreprocessor

    bad_label = acquisitions[5].label
    original = ObservationPreprocessor.process

    def flaky(self, acquisition):
        if acquisition.label == bad_label:
            raise RuntimeError("corrupt scene")
        return original(self, acquisition)

    monkeypatch.setattr(ObservationPreprocessor, "process", flaky)
    results = run_pipeline(acquisitions, grid, settings)

    assert results.dropped == {bad_label: "error: corrupt scene"}
    assert results.n_observations == len(acquisitions) - 1
    assert bad_label in caplog.text


def test_date_range_filter(acquisitions, grid, settings):
    window = DateRange("2015-01-01", "2015-12-31")
    results = run_pipeline(acquisitions, grid, settings, date_range=window)

    assert results.n_observations == sum(acq.timestamp.year == 2015 for acq in acquisitions)
    assert (results.times.year == 2015).all()


def test_filter_acquisitions_by_footprint_and_sorts(acquisitions, grid):
    region = grid.extent
    far = Region(0.0, 0.0, 1.0, 1.0)
    tagged = [
        replace(acq, footprint=far if i % 2 else region)
        for i, acq in enumerate(acquisitions[:6])
    ]
    tagged.append(acquisitions[6])  # no footprint: kept

    kept = filter_acquisitions(reversed(tagged), region=region)

    assert [acq.scene_id for acq in kept] == [
        "SYNTH_0000",
        "SYNTH_0002",
        "SYNTH_0004",
        "SYNTH_0006",
    ]


def test_clip_to_region(acquisitions, grid, settings):
    lon, lat = grid.pixel_centers()
    region = Region.from_point(float(lon[1, 2]), float(lat[1, 2]))

    results = run_pipeline(acquisitions, grid, settings, region=region, clip=True)

    for name in config.OUTPUT_LAYERS:
        valid = results[name].valid
        assert valid.sum() == 1 and valid[1, 2]
        assert np.isnan(results[name].values[0, 0])
    assert results[config.FITTED_LAYER].valid[:, 1, 2].all()
    assert not results[config.FITTED_LAYER].valid[:, 0, 0].any()


def test_second_harmonic_layers(acquisitions, grid, settings, true_coefficients):
    results = run_pipeline(acquisitions, grid, settings.with_options(harmonic_order=2))

    assert {"phase2", "amplitude2"} <= set(results.layers)
    np.testing.assert_allclose(results["amplitude2"].values, 0.0, atol=1e-6)
    np.testing.assert_allclose(results.harmonic["cos"], true_coefficients["cos"], atol=1e-6)


def test_invalid_configuration_raises_before_work(acquisitions, grid, settings, monkeypatch):
    def fail(*_args, **_kwargs):
        raise AssertionError("preprocessing should not start")

    monkeypatch.setattr("harmonic_ndvi.pipeline.pipeline.preprocess_all", fail)

    with pytest.raises(InvalidConfiguration):
        run_pipeline(acquisitions, grid, settings.with_options(solver="qr"))


def test_sparse_pixels_are_insufficient(acquisitions, grid, settings):
    masked = []
    for i, acq in enumerate(acquisitions):
        qa = np.array(acq.bands[config.QA_BAND])
        if i >= 3:
            qa[0, 0] = CLOUD_BIT
        masked.append(replace(acq, bands={**acq.bands, config.QA_BAND: qa}))

    results = run_pipeline(masked, grid, settings)

    assert results.harmonic.status[0, 0] == FitStatus.INSUFFICIENT_DATA
    assert results.trend.status[0, 0] == FitStatus.OK
    assert not results["phase"].valid[0, 0]
    assert np.isnan(results["amplitude"].values[0, 0])
    assert not results[config.FITTED_LAYER].valid[:, 0, 0].any()
    assert results[config.DETRENDED_LAYER].valid[:3, 0, 0].all()
    assert results["ndvi_mosaic"].valid[0, 0]
    np.testing.assert_allclose(
        results["ndvi_mosaic"].values[0, 0], results.index[2, 0, 0]
    )
    assert results["phase"].valid.sum() == grid.shape[0] * grid.shape[1] - 1


def test_failed_tile_is_scoped(acquisitions, grid, settings, monkeypatch):
    original = parallel.fit_tile
    harmonic_calls = []

    def flaky(solver, t, values, valid):
        if "cos" in solver.names:
            harmonic_calls.append(values.shape)
            if len(harmonic_calls) == 1:
                raise RuntimeError("tile exploded")
        return original(solver, t, values, valid)

    monkeypatch.setattr(parallel, "fit_tile", flaky)

    results = run_pipeline(acquisitions, grid, settings.with_options(tile_size=2))

    status = results.harmonic.status
    assert (status[:2, :2] == FitStatus.FAILED).all()
    assert (status[2:, :] == FitStatus.OK).all()
    assert (status[:2, 2:] == FitStatus.OK).all()
    assert results.trend.valid.all()

    assert len(results.failed_tiles) == 1
    label, rows, cols, err = results.failed_tiles[0]
    assert label == "harmonic"
    assert (rows, cols) == (slice(0, 2), slice(0, 2))
    assert "tile exploded" in err

    phase = results["phase"]
    assert not phase.valid[:2, :2].any()
    assert phase.valid[2:, :].all()
    assert results.summary()["failed_tiles"] == 1


def test_empty_input(grid, settings):
    results = run_pipeline([], grid, settings)

    assert results.n_observations == 0
    assert results.harmonic.status_counts() == {"insufficient_data": 16}
    assert not results["mean_ndvi"].valid.any()
    assert not results["ndvi_mosaic"].valid.any()
    assert len(results[config.FITTED_LAYER]) == 0


def test_mosaic_and_mean_layers(grid):
    index = np.array([[[0.1]], [[0.2]], [[0.9]]])
    valid = np.array([[[True]], [[True]], [[False]]])
    stack = build_stack([], (1, 1))
    stack = replace(
        stack,
        times=pd.DatetimeIndex(["2020-01-01", "2020-02-01", "2020-03-01"]),
        t=np.array([50.0, 50.1, 50.2]),
        index=index,
        valid=valid,
    )
    small = grid.subgrid(slice(0, 1), slice(0, 1))

    assert mosaic_layer(stack, small).values[0, 0] == pytest.approx(0.2)
    assert mean_layer(stack, small).values[0, 0] == pytest.approx(0.15)
