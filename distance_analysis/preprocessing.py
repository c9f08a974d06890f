"""
Survey data loading and preparation functions.

This module contains functions for:
- Loading the raw line transect survey file
- Converting sighting angles and radial distances to perpendicular distances
- Renaming and augmenting columns into the schema used for model fitting
- Validating the prepared survey table
"""

from pathlib import Path

import numpy as np
import pandas as pd

from distance_analysis import config


class SchemaError(ValueError):
    """Raised when a survey table does not have the expected columns."""


class GeometryDomainError(ValueError):
    """Raised when an angle or radial distance is outside its valid range."""


class EffortScalingError(ValueError):
    """Raised when effort is scaled by the visit count more than once."""


def _clean_name(name):
    return str(name).strip().lower()


def validate_columns(df, expected):
    """
    Check that a table has exactly the expected columns.

    Parameters
    ----------
    df : DataFrame
        Table to check
    expected : list of str
        Column names that must be present

    Raises
    ------
    SchemaError
        If any expected column is missing or any other column is present
    """
    actual = list(df.columns)
    missing = [c for c in expected if c not in actual]
    unexpected = [c for c in actual if c not in expected]

    if missing or unexpected:
        raise SchemaError(
            f"Survey table columns do not match the expected layout. "
            f"Missing: {missing}. Unexpected: {unexpected}. "
            f"Expected: {list(expected)}"
        )


def load_survey_data(path, header=True, sep=","):
    """
    Read a delimited survey file into a DataFrame.

    Parameters
    ----------
    path : str or Path
        Survey file location
    header : bool, optional
        Whether the first line holds column names. Default True.
    sep : str, optional
        Field delimiter. Default ','.

    Returns
    -------
    DataFrame
        One row per detection (or per zero-detection transect walk) with the
        columns listed in config.RAW_COLUMNS

    Notes
    -----
    With a header the column names must match config.RAW_COLUMNS (ignoring
    case and surrounding whitespace). Without one, only the column count can
    be checked and names are assigned in file order.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Survey file not found: {path}")

    expected = config.RAW_COLUMNS

    if header:
        df = pd.read_csv(path, sep=sep)
        df.columns = [_clean_name(c) for c in df.columns]
        validate_columns(df, expected)
        df = df[expected].copy()
        df["transect"] = df["transect"].astype("string")
    else:
        df = pd.read_csv(path, sep=sep, header=None)
        if df.shape[1] != len(expected):
            raise SchemaError(
                f"Survey file has {df.shape[1]} columns, expected {len(expected)}: {expected}"
            )
        df.columns = expected
        df["transect"] = df["transect"].astype("string")

    print(f"Loaded {len(df):,} rows from {path.name}")
    return df


def degrees_to_radians(angle):
    """Convert an angle (scalar or array) from degrees to radians."""
    return np.asarray(angle, dtype=float) * np.pi / 180


def perpendicular_distance(radial_distance, angle):
    """
    Project radial sighting distances onto the horizontal plane.

    Parameters
    ----------
    radial_distance : float or array-like
        Observer-to-animal distance
    angle : float or array-like
        Vertical deviation of the sighting in degrees, measured with the
        observer standing on a line perpendicular to the transect

    Returns
    -------
    float or ndarray
        radial_distance * cos(angle), in the units of radial_distance

    Raises
    ------
    GeometryDomainError
        If an angle falls outside config.ANGLE_RANGE or a radial distance is
        negative. Missing values are passed through as NaN.
    """
    radial = np.asarray(radial_distance, dtype=float)
    theta = np.asarray(angle, dtype=float)

    lo, hi = config.ANGLE_RANGE
    bad_angle = ~np.isnan(theta) & ((theta < lo) | (theta > hi))
    if bad_angle.any():
        raise GeometryDomainError(
            f"{int(bad_angle.sum())} angle(s) outside [{lo}, {hi}] degrees: "
            f"{np.unique(theta[bad_angle])[:5].tolist()}"
        )

    bad_radial = ~np.isnan(radial) & (radial < 0)
    if bad_radial.any():
        raise GeometryDomainError(
            f"{int(bad_radial.sum())} negative radial distance(s): "
            f"{np.unique(radial[bad_radial])[:5].tolist()}"
        )

    # cos(90°) is ~6e-17, not 0
    distance = np.clip(radial * np.cos(degrees_to_radians(theta)), 0, None)
    if distance.ndim == 0:
        return float(distance)
    return distance


def add_perpendicular_distance(df):
    """
    Add 'angle_rad' and 'distance' columns derived from 'angle' and 'radial_distance'.

    Returns a copy; the input table is left unchanged. A row must carry both
    an angle and a radial distance (a detection) or neither (a transect walk
    without detections).

    Raises
    ------
    SchemaError
        If a row has only one of angle and radial distance
    """
    half_recorded = df["angle"].isna() != df["radial_distance"].isna()
    if half_recorded.any():
        rows = df.index[half_recorded].tolist()
        raise SchemaError(
            f"{len(rows)} sighting(s) have only one of angle and radial_distance "
            f"(rows {rows[:5]})"
        )

    result = df.copy()
    result["angle_rad"] = degrees_to_radians(result["angle"])
    result["distance"] = perpendicular_distance(result["radial_distance"], result["angle"])
    return result


def scale_effort(df, visits):
    """
    Multiply Effort by the number of times each transect was walked.

    Parameters
    ----------
    df : DataFrame
        Table with an 'Effort' column holding single-walk transect length
    visits : int
        Number of repeated visits

    Returns
    -------
    DataFrame
        Copy with cumulative effort, marked so it cannot be scaled again

    Raises
    ------
    EffortScalingError
        If the table has already been scaled
    """
    if df.attrs.get("effort_scaled"):
        raise EffortScalingError(
            f"Effort has already been scaled by {df.attrs.get('visits')} visits"
        )
    if int(visits) != visits or visits < 1:
        raise ValueError(f"visits must be a positive integer (got {visits})")
    if "Effort" not in df.columns:
        raise SchemaError("Cannot scale effort: no 'Effort' column")

    result = df.copy()
    result["Effort"] = result["Effort"].astype(float) * int(visits)
    result.attrs["effort_scaled"] = True
    result.attrs["visits"] = int(visits)
    return result


def normalize_schema(df, visits=None, region_label=None, region_area=None):
    """
    Rename and augment raw survey columns into the model fitting schema.

    Parameters
    ----------
    df : DataFrame
        Raw survey table with a derived 'distance' column
        (see add_perpendicular_distance)
    visits : int, optional
        Visit multiplier for effort. Default config.VISIT_MULTIPLIER.
    region_label : str, optional
        Stratum label. Default config.REGION_LABEL.
    region_area : float, optional
        Stratum area. Default config.REGION_AREA.

    Returns
    -------
    DataFrame
        Columns distance, Sample.Label, Effort, Region.Label, Area and size,
        followed by the retained raw columns

    Notes
    -----
    Columns are renamed through config.COLUMN_MAP only after the raw layout
    has been verified, so a reordered or truncated file fails here instead of
    being silently mislabelled.
    """
    visits = config.VISIT_MULTIPLIER if visits is None else visits
    region_label = config.REGION_LABEL if region_label is None else region_label
    region_area = config.REGION_AREA if region_area is None else region_area

    if region_area <= 0:
        raise ValueError(f"Stratum area must be positive (got {region_area})")

    if "distance" not in df.columns:
        raise SchemaError("No 'distance' column: run add_perpendicular_distance first")
    raw_part = df.drop(columns=["distance", "angle_rad"], errors="ignore")
    validate_columns(raw_part, config.RAW_COLUMNS)

    result = df.rename(columns=config.COLUMN_MAP)
    result["Sample.Label"] = result["Sample.Label"].astype("string")
    if not (result["size"].dropna() % 1 == 0).all():
        raise ValueError("Cluster sizes must be whole numbers")
    result["size"] = result["size"].astype("Int64")
    result = scale_effort(result, visits)
    result["Region.Label"] = region_label
    result["Area"] = float(region_area)

    extras = [c for c in result.columns if c not in config.CANONICAL_COLUMNS]
    attrs = dict(result.attrs)
    result = result[config.CANONICAL_COLUMNS + extras].copy()
    result.attrs.update(attrs)
    return result


def validate_survey_table(df):
    """
    Check a prepared survey table before model fitting.

    Raises
    ------
    SchemaError
        If a canonical column is missing
    ValueError
        If effort, area, distances or cluster sizes are invalid, or a sample
        or stratum carries more than one effort or area value
    """
    missing = [c for c in config.CANONICAL_COLUMNS if c not in df.columns]
    if missing:
        raise SchemaError(f"Prepared table is missing columns: {missing}")

    if df["Sample.Label"].isna().any():
        raise ValueError("Every row must reference a transect (Sample.Label is missing)")
    if df["Region.Label"].isna().any():
        raise ValueError("Every row must reference a stratum (Region.Label is missing)")

    if not (df["Effort"] > 0).all():
        raise ValueError("Effort must be positive for every transect")
    if not (df["Area"] > 0).all():
        raise ValueError("Stratum area must be positive")

    if (df.groupby("Sample.Label")["Effort"].nunique() > 1).any():
        raise ValueError("A transect has more than one effort value")
    if (df.groupby("Region.Label")["Area"].nunique() > 1).any():
        raise ValueError("A stratum has more than one area value")

    sized_without_distance = df["distance"].isna() & df["size"].notna()
    if sized_without_distance.any():
        raise ValueError(
            f"{int(sized_without_distance.sum())} row(s) have a cluster size but no distance"
        )

    detections = df[df["distance"].notna()]
    if (detections["distance"] < 0).any():
        raise ValueError("Perpendicular distances must be non-negative")
    if detections["size"].isna().any() or (detections["size"] < 1).any():
        raise ValueError("Cluster size must be >= 1 for every detection")


def prepare_survey_data(path=None, visits=None, region_label=None, region_area=None,
                        header=True):
    """
    Load a raw survey file and prepare it for detection function fitting.

    Runs the loader, the perpendicular distance transform, the schema
    normalizer and the final validation in order.

    Parameters
    ----------
    path : str or Path, optional
        Survey file. Default config.RAW_SURVEY_FILE.
    visits, region_label, region_area : optional
        Passed to normalize_schema
    header : bool, optional
        Passed to load_survey_data

    Returns
    -------
    DataFrame
        Prepared survey table in the canonical schema
    """
    path = config.RAW_SURVEY_FILE if path is None else path

    print(f"Reading survey data from {path}...")
    raw = load_survey_data(path, header=header)

    print("Computing perpendicular distances...")
    with_distance = add_perpendicular_distance(raw)

    print("Normalizing columns...")
    prepared = normalize_schema(with_distance, visits=visits, region_label=region_label,
                                region_area=region_area)
    validate_survey_table(prepared)

    n_detections = prepared["distance"].notna().sum()
    print(f"  Detections: {n_detections:,}")
    print(f"  Transects: {prepared['Sample.Label'].nunique():,}")
    print(f"  Total effort: {prepared.groupby('Sample.Label')['Effort'].first().sum():.2f}")
    return prepared
