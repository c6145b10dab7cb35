from typing import Annotated

import pint
from pint import Quantity

ureg = pint.UnitRegistry()

TimeType = Annotated[Quantity, ureg.year]
FrequencyType = Annotated[Quantity, 1 / ureg.year]
AngleType = Annotated[Quantity, ureg.radian]


def to_cycles_per_year(value: float | str | Quantity) -> float:
    """
    Convert a frequency to cycles per year.

    Plain numbers are taken as cycles per year. Strings are parsed by pint, so
    "2 / year", "1 / (182.625 day)" and "0.5 / a" are all accepted. pint's
    ``year`` is the Julian year (365.25 days).

    Raises:
        ValueError: if the value is not dimensionally a frequency.
    """
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            quantity = ureg.Quantity(value)
        except (pint.UndefinedUnitError, SyntaxError) as exc:
            raise ValueError(f"cannot parse frequency {value!r}") from exc
    else:
        quantity = value
    if quantity.dimensionless:
        return float(quantity.magnitude)
    try:
        return float(quantity.to(1 / ureg.year).magnitude)
    except pint.DimensionalityError as exc:
        raise ValueError(f"{value!r} is not a frequency") from exc


__all__ = [
    "ureg",
    "TimeType",
    "FrequencyType",
    "AngleType",
    "to_cycles_per_year",
]
