"""End-to-end workflow and report tests."""

import numpy as np
import pandas as pd
import pytest

from distance_analysis.analysis import goodness_of_fit, select_model, summarize_models
from distance_analysis.detection import fit_candidates
from distance_analysis.preprocessing import prepare_survey_data
from distance_analysis.reporting import format_table, save_analysis_report


@pytest.fixture
def raw_simulated_csv(tmp_path, halfnormal_distances):
    """Raw survey file whose sightings were all taken at zero angle."""
    n = len(halfnormal_distances)
    rng = np.random.default_rng(3)
    raw = pd.DataFrame({
        "date": "2019-03-04",
        "transect": [f"T{i % 8 + 1}" for i in range(n)],
        "replicate": [i % 8 + 1 for i in range(n)],
        "angle": 0.0,
        "radial_distance": halfnormal_distances,
        "group_size": rng.integers(1, 5, n),
        "transect_length": 2.5,
    })
    path = tmp_path / "simulated.csv"
    raw.to_csv(path, index=False)
    return path


def test_format_table():
    text = format_table(pd.DataFrame({"Model": ["hn"], "AIC": [12.3456789]}), digits=2)
    assert "12.35" in text
    assert "Model" in text


def test_workflow_writes_report(tmp_path, raw_simulated_csv):
    prepared = prepare_survey_data(raw_simulated_csv)
    assert prepared["Effort"].iloc[0] == 20.0

    models, failures = fit_candidates(prepared, keys=["hn", "hr"], adjustment=None)
    best, _ = select_model(models)
    comparison = summarize_models(models)
    gof = goodness_of_fit(best)
    estimates = best.estimate(prepared, convert_units=0.001)

    report = tmp_path / "out" / "report.txt"
    save_analysis_report(report, prepared, comparison, failures, best, gof, estimates,
                         region_label="GPNP")

    text = report.read_text()
    assert text.startswith("Distance Sampling Analysis for GPNP")
    assert f"Selected model: {best.label}" in text
    assert "Detections: 400" in text
    assert "Transects: 8" in text
    assert "Abundance estimates:" in text
    assert "Cramer-von Mises" in text


def test_report_lists_failed_models(tmp_path, simulated_survey):
    models, _ = fit_candidates(simulated_survey, keys=["hn"], adjustment=None)
    best, _ = select_model(models)
    failures = {"hr": "hr did not converge: maximum iterations"}

    report = tmp_path / "report.txt"
    save_analysis_report(report, simulated_survey, summarize_models(models), failures, best,
                         goodness_of_fit(best), best.estimate(simulated_survey))

    text = report.read_text()
    assert "Models that could not be fitted:" in text
    assert "hr: hr did not converge" in text
    assert "Distance Sampling Analysis for GPNP" in text
