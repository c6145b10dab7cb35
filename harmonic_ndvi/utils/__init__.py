"""
Utils package for the harmonic NDVI pipeline.

This package provides utilities for:
- Calendar-aware time coordinates
- Pixel grids and regions
- Frequency units
- Synthetic acquisitions for tests and demos
"""

from .dates import DateRange, fractional_years, parse_date, to_timestamp
from .grid import GridSpec, Region
from .units import to_cycles_per_year, ureg

__all__ = [
    # Dates
    "DateRange",
    "fractional_years",
    "parse_date",
    "to_timestamp",
    # Geometry
    "GridSpec",
    "Region",
    # Units
    "to_cycles_per_year",
    "ureg",
]
