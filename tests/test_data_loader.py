"""
Test Suite for Data Loader Module
=================================

Tests for CSV loading, header normalisation and validation.
"""

import pytest
import pandas as pd

from sleep_analysis.data_loader import (
    REQUIRED_COLUMNS, load_config, load_data, normalize_column_names, validate_data
)
from sleep_analysis.exceptions import DataLoadError


class TestLoadData:
    """Tests for load_data."""

    def test_columns_normalised(self, survey_csv):
        """Test that header spaces become underscores."""
        df = load_data(str(survey_csv))

        assert 'Sleep_Duration' in df.columns
        assert 'Quality_of_Sleep' in df.columns
        assert not any(' ' in col for col in df.columns)
        assert set(REQUIRED_COLUMNS) <= set(df.columns)

    def test_none_disorder_is_a_level(self, survey_csv):
        """The literal 'None' must not be read as a missing value."""
        df = load_data(str(survey_csv))

        assert df['Sleep_Disorder'].isna().sum() == 0
        assert (df['Sleep_Disorder'] == 'None').sum() == 90

    def test_missing_file(self, tmp_path):
        """Test that a missing file raises DataLoadError."""
        with pytest.raises(DataLoadError, match="not found"):
            load_data(str(tmp_path / "nope.csv"))

    def test_empty_file(self, tmp_path):
        """Test that an empty file raises DataLoadError."""
        path = tmp_path / "empty.csv"
        path.write_text("")

        with pytest.raises(DataLoadError, match="empty"):
            load_data(str(path))

    def test_header_only(self, tmp_path):
        """Test that a header with no rows raises DataLoadError."""
        path = tmp_path / "header.csv"
        path.write_text("Person ID,Sleep Duration\n")

        with pytest.raises(DataLoadError, match="zero rows"):
            load_data(str(path))

    def test_error_stage(self, tmp_path):
        """Test that load errors are tagged with the load stage."""
        with pytest.raises(DataLoadError) as excinfo:
            load_data(str(tmp_path / "nope.csv"))
        assert excinfo.value.stage == 'load'


class TestNormalizeColumns:

    def test_spaces_and_padding(self):
        """Test normalisation of inner spaces and surrounding padding."""
        assert normalize_column_names([' Person ID', 'Quality of  Sleep ', 'Age']) == [
            'Person_ID', 'Quality_of_Sleep', 'Age'
        ]


class TestValidateData:
    """Tests for validate_data."""

    def test_valid_survey(self, survey):
        """Test that a complete survey passes validation."""
        is_valid, report = validate_data(survey)

        assert is_valid
        assert report['missing_columns'] == []

    def test_missing_required_column_strict(self, survey):
        """Test that strict validation names the missing column."""
        with pytest.raises(DataLoadError) as excinfo:
            validate_data(survey.drop(columns=['Heart_Rate']))
        assert excinfo.value.column == 'Heart_Rate'

    def test_missing_required_column_lenient(self, survey):
        """Test that lenient validation reports instead of raising."""
        is_valid, report = validate_data(survey.drop(columns=['Heart_Rate']), strict=False)

        assert not is_valid
        assert report['missing_columns'] == ['Heart_Rate']

    def test_duplicate_ids_reported(self, survey):
        """Test that duplicate Person_ID values are counted."""
        survey.loc[1, 'Person_ID'] = survey.loc[0, 'Person_ID']
        is_valid, report = validate_data(survey, strict=False)

        assert not is_valid
        assert any('Duplicate' in issue for issue in report['issues'])


class TestLoadConfig:

    def test_load_config(self, tmp_path):
        """Test loading a YAML configuration file."""
        path = tmp_path / "config.yaml"
        path.write_text("split:\n  random_state: 7\n")

        assert load_config(str(path)) == {'split': {'random_state': 7}}

    def test_missing_config(self, tmp_path):
        """Test that a missing config file raises."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))
