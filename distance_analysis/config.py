"""
Configuration file for the GPNP distance sampling workflow.

This module centralizes all configurable parameters including:
- File paths
- Raw survey column layout and the canonical renaming
- Survey design constants (visits, stratum, units)
- Detection function model settings

To analyse a different survey, edit the constants below and re-run
scripts 01-02.
"""

from pathlib import Path

# =====================================================================
# Project Paths
# =====================================================================

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Data directories
DATA_DIR = PROJECT_ROOT / "data"
DATA_RAW = DATA_DIR / "raw"

# Results directory
RESULTS_DIR = PROJECT_ROOT / "results"

RAW_SURVEY_FILE = DATA_RAW / "gpnp_line_transects.csv"
REPORT_FILE = RESULTS_DIR / "gpnp_density_report.txt"

# =====================================================================
# Raw Survey Layout
# =====================================================================

# Columns of the raw survey file, in file order
RAW_COLUMNS = [
    "date",             # survey date
    "transect",         # transect identifier
    "replicate",        # visit number along the transect
    "angle",            # vertical deviation of the sighting (degrees)
    "radial_distance",  # observer-to-animal distance (m)
    "group_size",       # number of individuals in the cluster
    "transect_length",  # length of one walk of the transect (km)
]

# Raw name -> name expected by the detection function fitting step.
# "distance" is derived from angle and radial_distance, not renamed.
COLUMN_MAP = {
    "transect": "Sample.Label",
    "group_size": "size",
    "transect_length": "Effort",
}

CANONICAL_COLUMNS = ["distance", "Sample.Label", "Effort", "Region.Label", "Area", "size"]

# Valid sighting angles (degrees)
ANGLE_RANGE = (0.0, 90.0)

# =====================================================================
# Survey Design
# =====================================================================

# Each transect was walked this many times
VISIT_MULTIPLIER = 8

# Single stratum covering the whole study area
REGION_LABEL = "GPNP"
REGION_AREA = 10.8  # km²

# Distances are recorded in metres, effort in km
CONVERT_UNITS = 0.001

# =====================================================================
# Detection Function Models
# =====================================================================

# Key functions to compare: 'hn' (half-normal), 'hr' (hazard-rate), 'unif'
KEY_FUNCTIONS = ["hn", "hr"]

# Adjustment series: 'cos', 'herm', 'poly' or None
ADJUSTMENT = "cos"

# Maximum number of adjustment terms tried per key function
MAX_ADJUSTMENTS = 5

# Right truncation: None (largest distance), a distance, or a percentage string like "5%"
TRUNCATION = None

# Confidence level for density and abundance intervals
CI_LEVEL = 0.95

# Number of equal-width distance bins for the chi-square goodness of fit test
GOF_BINS = 8

VALID_KEYS = ["hn", "hr", "unif"]
VALID_ADJUSTMENTS = ["cos", "herm", "poly", None]

# =====================================================================
# Validation
# =====================================================================

def validate_config():
    """Validate configuration settings."""
    for key in KEY_FUNCTIONS:
        if key not in VALID_KEYS:
            raise ValueError(f"Invalid key function: {key}. Must be one of: {VALID_KEYS}")

    if ADJUSTMENT not in VALID_ADJUSTMENTS:
        raise ValueError(
            f"Invalid ADJUSTMENT: {ADJUSTMENT}. "
            f"Must be one of: {VALID_ADJUSTMENTS}"
        )

    if VISIT_MULTIPLIER < 1:
        raise ValueError(f"VISIT_MULTIPLIER must be >= 1")

    if REGION_AREA <= 0:
        raise ValueError(f"REGION_AREA must be > 0 (got {REGION_AREA})")

    if CONVERT_UNITS <= 0:
        raise ValueError(f"CONVERT_UNITS must be > 0 (got {CONVERT_UNITS})")

    if MAX_ADJUSTMENTS < 0:
        raise ValueError(f"MAX_ADJUSTMENTS must be >= 0")

    if not 0 < CI_LEVEL < 1:
        raise ValueError(f"CI_LEVEL must be between 0 and 1 (got {CI_LEVEL})")

    if set(COLUMN_MAP) - set(RAW_COLUMNS):
        raise ValueError(f"COLUMN_MAP renames columns missing from RAW_COLUMNS")

# Run validation on import
validate_config()
