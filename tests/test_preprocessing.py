"""Tests for survey loading, perpendicular distances and schema normalization."""

import math

import numpy as np
import pandas as pd
import pytest

from distance_analysis import config
from distance_analysis.preprocessing import (
    EffortScalingError,
    GeometryDomainError,
    SchemaError,
    add_perpendicular_distance,
    degrees_to_radians,
    load_survey_data,
    normalize_schema,
    perpendicular_distance,
    prepare_survey_data,
    scale_effort,
    validate_columns,
    validate_survey_table,
)


class TestPerpendicularDistance:
    """Tests for the angle/radial distance projection."""

    def test_thirty_degrees(self):
        assert perpendicular_distance(100, 30) == pytest.approx(86.603, abs=1e-3)

    def test_zero_angle_keeps_radial_distance(self):
        assert perpendicular_distance(42.0, 0) == pytest.approx(42.0)

    def test_degrees_to_radians(self):
        assert float(degrees_to_radians(180)) == pytest.approx(math.pi)
        assert float(degrees_to_radians(30)) == pytest.approx(math.pi / 6)

    def test_non_negative_and_decreasing_in_angle(self):
        angles = np.linspace(0, 90, 91)
        distances = perpendicular_distance(np.full(91, 50.0), angles)

        assert (distances >= 0).all()
        assert (np.diff(distances) <= 0).all()

    @pytest.mark.parametrize("angle", [-5.0, 90.5, 180.0])
    def test_out_of_range_angle_rejected(self, angle):
        with pytest.raises(GeometryDomainError):
            perpendicular_distance(100, angle)

    def test_negative_radial_distance_rejected(self):
        with pytest.raises(GeometryDomainError):
            perpendicular_distance([10.0, -1.0], [0.0, 0.0])

    def test_missing_values_pass_through(self):
        distances = perpendicular_distance([100.0, np.nan], [30.0, np.nan])
        assert distances[0] == pytest.approx(86.603, abs=1e-3)
        assert np.isnan(distances[1])

    def test_add_perpendicular_distance_leaves_input_unchanged(self, raw_survey_df):
        before = raw_survey_df.copy()
        result = add_perpendicular_distance(raw_survey_df)

        pd.testing.assert_frame_equal(raw_survey_df, before)
        assert result["angle_rad"].iloc[0] == pytest.approx(math.pi / 6)
        assert result["distance"].iloc[0] == pytest.approx(86.603, abs=1e-3)

    def test_half_recorded_sighting_rejected(self, raw_survey_df):
        raw_survey_df.loc[1, "angle"] = np.nan
        with pytest.raises(SchemaError, match="only one of angle and radial_distance"):
            add_perpendicular_distance(raw_survey_df)


class TestLoadSurveyData:
    """Tests for reading the raw survey file."""

    def test_reads_expected_columns(self, survey_csv):
        df = load_survey_data(survey_csv)

        assert list(df.columns) == config.RAW_COLUMNS
        assert len(df) == 5
        assert df["transect"].tolist() == ["T1", "T1", "T2", "T2", "T3"]

    def test_columns_matched_by_name_not_position(self, tmp_path, raw_survey_df):
        shuffled = raw_survey_df[list(reversed(config.RAW_COLUMNS))]
        path = tmp_path / "shuffled.csv"
        shuffled.to_csv(path, index=False)

        df = load_survey_data(path)

        assert list(df.columns) == config.RAW_COLUMNS
        assert df["radial_distance"].iloc[0] == 100.0

    def test_header_case_and_whitespace_ignored(self, tmp_path, raw_survey_df):
        renamed = raw_survey_df.rename(columns=lambda c: f" {c.upper()} ")
        path = tmp_path / "upper.csv"
        renamed.to_csv(path, index=False)

        df = load_survey_data(path)
        assert list(df.columns) == config.RAW_COLUMNS

    def test_unexpected_column_fails(self, tmp_path, raw_survey_df):
        path = tmp_path / "bad.csv"
        raw_survey_df.rename(columns={"angle": "bearing"}).to_csv(path, index=False)

        with pytest.raises(SchemaError, match="bearing"):
            load_survey_data(path)

    def test_headerless_file_assigned_positionally(self, tmp_path, raw_survey_df):
        path = tmp_path / "noheader.csv"
        raw_survey_df.to_csv(path, index=False, header=False)

        df = load_survey_data(path, header=False)
        assert list(df.columns) == config.RAW_COLUMNS
        assert df["angle"].iloc[2] == 45.0

    def test_headerless_file_with_wrong_width_fails(self, tmp_path, raw_survey_df):
        path = tmp_path / "narrow.csv"
        raw_survey_df.drop(columns=["date"]).to_csv(path, index=False, header=False)

        with pytest.raises(SchemaError):
            load_survey_data(path, header=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_survey_data(tmp_path / "nope.csv")


class TestNormalizeSchema:
    """Tests for renaming, effort scaling and stratum columns."""

    def test_canonical_columns_first(self, raw_survey_df):
        result = normalize_schema(add_perpendicular_distance(raw_survey_df))
        assert list(result.columns[:6]) == config.CANONICAL_COLUMNS

    def test_values_read_back_by_canonical_name(self, raw_survey_df):
        with_distance = add_perpendicular_distance(raw_survey_df)
        result = normalize_schema(with_distance)

        assert result["Sample.Label"].tolist() == raw_survey_df["transect"].tolist()
        np.testing.assert_array_equal(result["size"].to_numpy(dtype=float, na_value=np.nan),
                                      raw_survey_df["group_size"].to_numpy())
        np.testing.assert_array_equal(result["distance"].to_numpy(),
                                      with_distance["distance"].to_numpy())

    def test_effort_scaled_by_visits(self, raw_survey_df):
        result = normalize_schema(add_perpendicular_distance(raw_survey_df), visits=8)

        assert result["Effort"].iloc[0] == 40.0
        np.testing.assert_allclose(result["Effort"], raw_survey_df["transect_length"] * 8)

    def test_constant_stratum_columns(self, raw_survey_df):
        result = normalize_schema(add_perpendicular_distance(raw_survey_df))

        assert (result["Region.Label"] == "GPNP").all()
        assert (result["Area"] == 10.8).all()

    def test_second_normalization_rejected(self, raw_survey_df):
        result = normalize_schema(add_perpendicular_distance(raw_survey_df))
        with pytest.raises(SchemaError):
            normalize_schema(result)

    def test_missing_distance_column(self, raw_survey_df):
        with pytest.raises(SchemaError, match="distance"):
            normalize_schema(raw_survey_df)

    def test_non_positive_area_rejected(self, raw_survey_df):
        with pytest.raises(ValueError):
            normalize_schema(add_perpendicular_distance(raw_survey_df), region_area=0)

    def test_fractional_cluster_size_rejected(self, raw_survey_df):
        raw_survey_df.loc[0, "group_size"] = 2.5
        with pytest.raises(ValueError, match="whole numbers"):
            normalize_schema(add_perpendicular_distance(raw_survey_df))


class TestScaleEffort:

    def test_scales_once(self):
        df = pd.DataFrame({"Effort": [5.0, 2.5]})
        result = scale_effort(df, 8)

        assert result["Effort"].tolist() == [40.0, 20.0]
        assert df["Effort"].tolist() == [5.0, 2.5]

    def test_second_application_rejected(self):
        once = scale_effort(pd.DataFrame({"Effort": [5.0]}), 8)
        with pytest.raises(EffortScalingError):
            scale_effort(once, 8)

    @pytest.mark.parametrize("visits", [0, -1, 2.5])
    def test_invalid_visit_count(self, visits):
        with pytest.raises(ValueError):
            scale_effort(pd.DataFrame({"Effort": [5.0]}), visits)


class TestValidation:

    def test_validate_columns_reports_missing_and_unexpected(self):
        df = pd.DataFrame(columns=["a", "c"])
        with pytest.raises(SchemaError) as excinfo:
            validate_columns(df, ["a", "b"])
        assert "['b']" in str(excinfo.value)
        assert "['c']" in str(excinfo.value)

    def test_valid_table_passes(self, simulated_survey):
        validate_survey_table(simulated_survey)

    def test_non_positive_effort(self, simulated_survey):
        simulated_survey.loc[0, "Effort"] = 0.0
        with pytest.raises(ValueError, match="Effort"):
            validate_survey_table(simulated_survey)

    def test_inconsistent_effort_within_transect(self, simulated_survey):
        simulated_survey.loc[0, "Effort"] = 5.0
        with pytest.raises(ValueError, match="more than one effort"):
            validate_survey_table(simulated_survey)

    def test_missing_sample_label(self, simulated_survey):
        simulated_survey["Sample.Label"] = simulated_survey["Sample.Label"].astype(object)
        simulated_survey.loc[0, "Sample.Label"] = None
        with pytest.raises(ValueError, match="transect"):
            validate_survey_table(simulated_survey)

    def test_missing_canonical_column(self, simulated_survey):
        with pytest.raises(SchemaError):
            validate_survey_table(simulated_survey.drop(columns=["Area"]))

    def test_cluster_size_without_distance(self, simulated_survey):
        simulated_survey.loc[0, "distance"] = np.nan
        with pytest.raises(ValueError, match="cluster size but no distance"):
            validate_survey_table(simulated_survey)


class TestPrepareSurveyData:

    def test_end_to_end(self, survey_csv):
        prepared = prepare_survey_data(survey_csv)

        assert prepared["distance"].notna().sum() == 4
        assert prepared["Sample.Label"].nunique() == 3
        assert prepared["distance"].iloc[0] == pytest.approx(86.603, abs=1e-3)
        assert prepared["Effort"].iloc[0] == 40.0

    def test_sighting_without_angle_rejected(self, tmp_path):
        raw = pd.DataFrame({
            "date": "2019-03-04",
            "transect": ["T1", "T1", "T2"],
            "replicate": 1,
            "angle": [30.0, np.nan, 10.0],
            "radial_distance": [100.0, 50.0, 40.0],
            "group_size": [2, 3, 1],
            "transect_length": 5.0,
        })
        path = tmp_path / "survey.csv"
        raw.to_csv(path, index=False)

        with pytest.raises(ValueError, match="rows \\[1\\]"):
            prepare_survey_data(path)

    def test_bundled_survey_file(self):
        prepared = prepare_survey_data(config.RAW_SURVEY_FILE)

        assert prepared["Sample.Label"].nunique() == 6
        assert prepared["distance"].notna().sum() == 59
        assert (prepared["Region.Label"] == "GPNP").all()
