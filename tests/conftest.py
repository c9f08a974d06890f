import numpy as np
import pandas as pd
import pytest


@pytest.fixture
def raw_survey_df():
    """Five raw rows: four detections on two transects and one empty walk."""
    return pd.DataFrame({
        "date": ["2019-03-04", "2019-03-11", "2019-03-05", "2019-03-05", "2019-03-06"],
        "transect": ["T1", "T1", "T2", "T2", "T3"],
        "replicate": [1, 2, 1, 1, 1],
        "angle": [30.0, 0.0, 45.0, 10.0, np.nan],
        "radial_distance": [100.0, 50.0, 80.0, 20.0, np.nan],
        "group_size": [3, 1, 2, 2, np.nan],
        "transect_length": [5.0, 5.0, 4.0, 4.0, 3.0],
    })


@pytest.fixture
def survey_csv(tmp_path, raw_survey_df):
    path = tmp_path / "survey.csv"
    raw_survey_df.to_csv(path, index=False)
    return path


@pytest.fixture
def halfnormal_distances():
    """400 perpendicular distances from a half-normal with sigma = 50."""
    rng = np.random.default_rng(1)
    return np.abs(rng.normal(0, 50, 400))


@pytest.fixture
def simulated_survey(halfnormal_distances):
    """Prepared survey table over ten 4 km transects."""
    rng = np.random.default_rng(2)
    n = len(halfnormal_distances)
    return pd.DataFrame({
        "distance": halfnormal_distances,
        "Sample.Label": [f"L{i % 10 + 1}" for i in range(n)],
        "Effort": 4.0,
        "Region.Label": "GPNP",
        "Area": 10.8,
        "size": rng.integers(1, 4, n),
    })
