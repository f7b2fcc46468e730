"""
Test Suite for Evaluation Module
================================

Tests for RMSE and partition scoring.
"""

import json
import math

import pytest
import numpy as np
import pandas as pd

from sleep_analysis.evaluation import (
    calculate_metrics, evaluate_models, evaluate_subset, format_rmse_lines, rmse, save_metrics
)
from sleep_analysis.exceptions import EmptyInputError, LengthMismatchError, UnseenLevelError
from sleep_analysis.model import fit, select_model


class TestRmse:
    """Tests for rmse."""

    def test_perfect_prediction(self):
        """Test RMSE of identical sequences is zero."""
        assert rmse([1, 2, 3], [1, 2, 3]) == 0

    def test_known_value(self):
        """Test RMSE against a hand-computed value."""
        assert rmse([0, 0], [3, 4]) == pytest.approx(math.sqrt(12.5))
        assert rmse([0, 0], [3, 4]) == pytest.approx(3.5355, abs=1e-4)

    def test_symmetric(self):
        """Test that RMSE does not depend on argument order."""
        assert rmse([1.5, 2.0, 7.0], [1.0, 3.0, 4.0]) == rmse([1.0, 3.0, 4.0], [1.5, 2.0, 7.0])

    def test_accepts_series_and_arrays(self):
        """Test mixing Series and array inputs."""
        assert rmse(pd.Series([2.0, 4.0]), np.array([2.0, 2.0])) == pytest.approx(math.sqrt(2.0))

    def test_length_mismatch(self):
        """Test that unequal lengths raise LengthMismatchError."""
        with pytest.raises(LengthMismatchError):
            rmse([1, 2, 3], [1, 2])

    @pytest.mark.parametrize("observed, predicted", [([], []), ([], [1.0]), ([1.0], [])])
    def test_empty(self, observed, predicted):
        """Test that empty inputs raise EmptyInputError."""
        with pytest.raises(EmptyInputError):
            rmse(observed, predicted)

    def test_errors_are_value_errors(self):
        """Test that RMSE errors are also ValueErrors."""
        with pytest.raises(ValueError):
            rmse([1], [1, 2])


class TestCalculateMetrics:

    def test_metrics(self):
        """Test RMSE, MAE and max error on a small example."""
        metrics = calculate_metrics([1.0, 2.0, 3.0], [1.0, 2.0, 5.0])

        assert metrics['rmse'] == pytest.approx(math.sqrt(4 / 3))
        assert metrics['mae'] == pytest.approx(2 / 3)
        assert metrics['max_error'] == 2.0
        assert metrics['n_samples'] == 3


class TestEvaluateSubset:
    """Tests for evaluate_subset."""

    @pytest.fixture
    def data(self):
        rng = np.random.RandomState(3)
        n = 60
        x = rng.uniform(0, 10, n)
        group = np.array(['Normal', 'Overweight'] * (n // 2))
        y = 2 * x + (group == 'Overweight') * 1.0 + rng.normal(0, 0.2, n)
        return pd.DataFrame({'y': y, 'x': x, 'BMI_Category': group})

    @pytest.fixture
    def model(self, data):
        return fit(data, "y ~ x + BMI_Category")

    def test_scores_all_rows(self, model, data):
        """Test scoring when every row is usable."""
        metrics = evaluate_subset(model, data)

        assert metrics['n_samples'] == len(data)
        assert metrics['n_excluded'] == 0
        assert metrics['rmse'] < 0.5

    def test_unseen_rows_dropped(self, model, data):
        """Test that unseen levels and missing targets are excluded and counted."""
        held_out = data.head(10).copy()
        held_out.loc[held_out.index[:3], 'BMI_Category'] = 'Obese'
        held_out.loc[held_out.index[3], 'y'] = np.nan

        metrics = evaluate_subset(model, held_out)

        assert metrics['n_samples'] == 6
        assert metrics['n_excluded'] == 4

    def test_unseen_rows_raise(self, model, data):
        """Test that the raise policy propagates UnseenLevelError."""
        held_out = data.head(10).copy()
        held_out.loc[held_out.index[0], 'BMI_Category'] = 'Obese'

        with pytest.raises(UnseenLevelError):
            evaluate_subset(model, held_out, handle_unseen='raise')

    def test_nothing_to_score(self, model, data):
        """Test that a partition with no usable rows raises EmptyInputError."""
        held_out = data.head(2).copy()
        held_out['BMI_Category'] = 'Obese'

        with pytest.raises(EmptyInputError):
            evaluate_subset(model, held_out)


class TestEvaluateModels:

    def test_report_and_export(self, tmp_path):
        """Test result structure, printed lines and JSON export."""
        rng = np.random.RandomState(9)
        frames = []
        for _ in range(3):
            x = rng.uniform(0, 10, 40)
            z = rng.uniform(0, 10, 40)
            frames.append(pd.DataFrame({'y': x + z + 0.3 * x * z + rng.normal(0, 0.1, 40), 'x': x, 'z': z}))
        train, validation, test = frames

        selections = {'toy': select_model(train, validation, "y ~ x * z", name='toy', label='Toy model')}
        results = evaluate_models(selections, test)

        assert results['toy']['selected'] == 'interaction'
        assert set(results['toy']['validation']) == {'baseline', 'interaction'}

        lines = format_rmse_lines(results)
        assert lines[0].startswith('Toy model validation RMSE (baseline): ')
        assert lines[-1].startswith('Toy model test RMSE (interaction): ')
        float(lines[-1].rsplit(': ', 1)[1])

        path = save_metrics(results, str(tmp_path))
        with open(path) as f:
            saved = json.load(f)
        assert saved['toy']['test']['rmse'] == pytest.approx(results['toy']['test']['rmse'])
