import pytest

from harmonic_ndvi.utils.units import to_cycles_per_year, ureg


def test_numbers_pass_through():
    assert to_cycles_per_year(2) == 2.0
    assert to_cycles_per_year(0.5) == 0.5


def test_string_frequency():
    assert to_cycles_per_year("2 / year") == pytest.approx(2.0)


def test_day_based_frequency():
    # pint's year is 365.25 days
    assert to_cycles_per_year("1 / (182.625 day)") == pytest.approx(2.0)


def test_quantity_frequency():
    assert to_cycles_per_year(1 / (6 * ureg.month)) == pytest.approx(2.0)


def test_dimensionless_string():
    assert to_cycles_per_year("3") == pytest.approx(3.0)


def test_rejects_non_frequency():
    with pytest.raises(ValueError):
        to_cycles_per_year("3 meter")


def test_rejects_unknown_unit():
    with pytest.raises(ValueError):
        to_cycles_per_year("1 / fortnights_of_doom")
