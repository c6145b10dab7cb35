import pickle

import numpy as np
import pytest

from harmonic_ndvi.errors import InvalidConfiguration
from harmonic_ndvi.regression.basis import (
    DesignMatrixBuilder,
    harmonic_order_of,
    harmonic_regressors,
    parse_regressor,
)


def test_harmonic_regressors_names():
    assert harmonic_regressors(1) == ["constant", "t", "cos", "sin"]
    assert harmonic_regressors(2) == ["constant", "t", "cos", "sin", "cos2", "sin2"]
    assert harmonic_regressors(0) == ["constant", "t"]


def test_harmonic_order_of():
    assert harmonic_order_of("cos") == 1
    assert harmonic_order_of("sin3") == 3
    assert harmonic_order_of("cos12") == 12
    assert harmonic_order_of("t") is None
    assert harmonic_order_of("cos1") is None


@pytest.mark.parametrize("name", ["tan", "cos1", "cos0", "sin-2", "", "Constant"])
def test_parse_regressor_rejects_unknown(name):
    with pytest.raises(InvalidConfiguration):
        parse_regressor(name, 1.0)


def test_build_matrix_values(quarter_year_t):
    builder = DesignMatrixBuilder(["constant", "t", "cos", "sin"])
    X = builder.build_matrix(quarter_year_t)

    expected = np.array(
        [
            [1.0, 0.0, 1.0, 0.0],
            [1.0, 0.25, 0.0, 1.0],
            [1.0, 0.5, -1.0, 0.0],
            [1.0, 0.75, 0.0, -1.0],
        ]
    )
    np.testing.assert_allclose(X, expected, atol=1e-12)


def test_second_harmonic_uses_double_frequency():
    builder = DesignMatrixBuilder(["cos2", "sin2"], frequency=1.0)
    X = builder.build_matrix(np.array([0.125]))
    np.testing.assert_allclose(X[0], [np.cos(np.pi / 2), np.sin(np.pi / 2)], atol=1e-12)


def test_frequency_scales_angle():
    builder = DesignMatrixBuilder(["cos"], frequency=2.0)
    np.testing.assert_allclose(builder.build_matrix([0.25])[:, 0], [-1.0], atol=1e-12)


def test_column_order_follows_names():
    builder = DesignMatrixBuilder(["sin", "t", "constant"])
    X = builder.build_matrix([0.25])
    np.testing.assert_allclose(X[0], [1.0, 0.25, 1.0], atol=1e-12)


def test_builder_rejects_bad_input():
    with pytest.raises(InvalidConfiguration):
        DesignMatrixBuilder([])
    with pytest.raises(InvalidConfiguration):
        DesignMatrixBuilder(["t", "t"])
    with pytest.raises(InvalidConfiguration):
        DesignMatrixBuilder(["t"], frequency=0.0)


def test_build_row():
    builder = DesignMatrixBuilder(["constant", "t", "cos", "sin"])
    response = np.full((2, 2), 0.3)
    valid = np.ones((2, 2), dtype=bool)
    row = builder.build_row(0.5, response=response, valid=valid)

    assert row.names == builder.names
    assert len(row.values) == len(builder)
    assert row.as_dict()["cos"] == pytest.approx(-1.0)
    assert row.response is response


def test_builder_pickles():
    builder = DesignMatrixBuilder(["constant", "t", "cos2", "sin2"], frequency=1.5)
    clone = pickle.loads(pickle.dumps(builder))

    assert clone.names == builder.names
    assert clone.frequency == builder.frequency
    t = np.linspace(0, 3, 11)
    np.testing.assert_allclose(clone.build_matrix(t), builder.build_matrix(t))
