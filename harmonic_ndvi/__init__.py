"""Per-pixel harmonic regression of NDVI time series (phase, amplitude, trend)."""

__version__ = "0.1.0"
