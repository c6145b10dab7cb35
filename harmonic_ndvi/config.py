"""
Central configuration constants for the harmonic NDVI phenology pipeline.
"""

from datetime import date
from pathlib import Path

# ========== Landsat 8 Collection 2 Level 2 bands ==========
QA_BAND = "QA_PIXEL"  # per-pixel quality flags
SATURATION_BAND = "QA_RADSAT"  # radiometric saturation flags
NIR_BAND = "SR_B5"  # near infrared
RED_BAND = "SR_B4"  # red
INDEX_BANDS = (NIR_BAND, RED_BAND)  # (numerator, subtracted) band pair
INDEX_NAME = "NDVI"

# QA_PIXEL bits 0-4: fill, dilated cloud, cirrus, cloud, cloud shadow
CLOUD_MASK_BITS = 0b11111

# Band rescale as (scale, offset); keys may be fnmatch patterns
OPTICAL_SCALE = 0.0000275
OPTICAL_OFFSET = -0.2
THERMAL_SCALE = 0.00341802
THERMAL_OFFSET = 149.0
BAND_RESCALE = {
    "SR_B*": (OPTICAL_SCALE, OPTICAL_OFFSET),
    "ST_B*": (THERMAL_SCALE, THERMAL_OFFSET),
}

# ========== Time coordinate ==========
EPOCH = date(1970, 1, 1)  # t = 0

# ========== Regression ==========
CONSTANT_REGRESSOR = "constant"
TIME_REGRESSOR = "t"
TREND_REGRESSORS = (CONSTANT_REGRESSOR, TIME_REGRESSOR)
HARMONIC_ORDER = 1
FUNDAMENTAL_FREQUENCY = 1.0  # cycles per year
SINGULAR_RCOND = 1e-12  # reciprocal condition number below which XᵗX is singular
SOLVER = "normal"

# ========== Phase / amplitude ==========
AMPLITUDE_SCALE = 1.0
REFERENCE_AMPLITUDE_SCALE = 5.0  # display contrast used by the reference workflow

# ========== Parallelism ==========
TILE_SIZE = 256  # pixels per tile edge
MAX_WORKERS = None  # None -> os.cpu_count()
EXECUTOR = "thread"

# ========== Reference study area (western Tehran plain) ==========
EXPORT_REGION = (43.83, 24.7, 63.58, 39.88)  # (min_lon, min_lat, max_lon, max_lat)
ROI_POINT = (51.070, 35.647)  # (lon, lat)
START_DATE = date(2014, 1, 1)
END_DATE = date(2021, 12, 31)

# ========== Output layer names ==========
AMPLITUDE_LAYER = "amplitude"
PHASE_LAYER = "phase"
MOSAIC_LAYER = "ndvi_mosaic"
MEAN_LAYER = "mean_ndvi"
DETRENDED_LAYER = "detrended_series"
FITTED_LAYER = "fitted_series"
OUTPUT_LAYERS = [AMPLITUDE_LAYER, PHASE_LAYER, MOSAIC_LAYER, MEAN_LAYER]
OUTPUT_SERIES = [DETRENDED_LAYER, FITTED_LAYER]

# ========== Directory paths ==========
PROJECT_ROOT = Path(__file__).resolve().parent.parent  # project root directory
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = PROJECT_ROOT / "artifacts" / "layers"
