"""
Model Evaluation Module
=======================

RMSE scoring of fitted models on held-out partitions.

Features:
    - rmse: strict root-mean-square error
    - RMSE, MAE, R² per model and partition
    - Exclusion of rows the model cannot score (unseen levels, missing values)
    - Evaluation report printing and JSON export
"""

import logging
import json
from pathlib import Path
from typing import Dict, Any, Sequence

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .exceptions import EmptyInputError, LengthMismatchError

logger = logging.getLogger(__name__)


def rmse(observed: Sequence[float], predicted: Sequence[float]) -> float:
    """
    Root-mean-square error, sqrt(mean((observed - predicted)^2)).

    Raises:
        EmptyInputError: If either sequence is empty
        LengthMismatchError: If the sequences differ in length
    """
    observed = np.asarray(observed, dtype=float).ravel()
    predicted = np.asarray(predicted, dtype=float).ravel()

    if observed.size == 0 or predicted.size == 0:
        raise EmptyInputError("RMSE needs at least one observation")
    if observed.size != predicted.size:
        raise LengthMismatchError(
            f"Observed has {observed.size} values but predicted has {predicted.size}"
        )

    return float(np.sqrt(mean_squared_error(observed, predicted)))


def calculate_metrics(y_true: Sequence[float], y_pred: Sequence[float]) -> Dict[str, Any]:
    """
    Calculate evaluation metrics for one target.

    Args:
        y_true: Ground truth values
        y_pred: Predicted values

    Returns:
        Dictionary with rmse, mae, r2 and error statistics
    """
    score = rmse(y_true, y_pred)

    y_true = np.asarray(y_true, dtype=float).ravel()
    y_pred = np.asarray(y_pred, dtype=float).ravel()
    errors = y_true - y_pred

    return {
        'rmse': score,
        'mae': float(mean_absolute_error(y_true, y_pred)),
        'r2': float(r2_score(y_true, y_pred)) if len(y_true) > 1 else float('nan'),
        'mean_error': float(np.mean(errors)),
        'max_error': float(np.max(np.abs(errors))),
        'n_samples': int(len(y_true))
    }


def evaluate_subset(model: Any, df: pd.DataFrame, handle_unseen: str = 'drop') -> Dict[str, Any]:
    """
    Score a fitted model on a partition.

    Rows the model cannot predict (a categorical level unseen during fitting,
    or a missing predictor) and rows with a missing target are excluded and
    counted.

    Args:
        model: Fitted LinearModel
        df: Partition to score
        handle_unseen: 'drop' to exclude unseen-level rows, 'raise' to
            propagate UnseenLevelError

    Returns:
        Metrics dictionary plus 'n_excluded'

    Raises:
        EmptyInputError: If no row can be scored
        UnseenLevelError: If handle_unseen is 'raise' and an unseen level occurs
    """
    if handle_unseen not in ('drop', 'raise'):
        raise ValueError(f"handle_unseen must be 'drop' or 'raise', got {handle_unseen!r}")

    target = model.formula.target

    if handle_unseen == 'raise':
        model.design_matrix(df)

    usable = model.predictable_rows(df) & df[target].notna()
    n_excluded = int((~usable).sum())
    if n_excluded:
        logger.warning(f"Excluded {n_excluded} of {len(df)} rows the model cannot score "
                       f"(unseen level or missing value)")

    subset = df[usable]
    if subset.empty:
        raise EmptyInputError(f"No rows left to score for '{model.formula}'", column=target)

    metrics = calculate_metrics(subset[target].to_numpy(), model.predict(subset))
    metrics['n_excluded'] = n_excluded

    return metrics


def evaluate_models(
    selections: Dict[str, Any],
    test: pd.DataFrame,
    handle_unseen: str = 'drop'
) -> Dict[str, Any]:
    """
    Collect validation scores of every candidate and the test score of each final model.

    Args:
        selections: Model key -> ModelSelection
        test: Test partition
        handle_unseen: Passed to evaluate_subset

    Returns:
        Model key -> {'label', 'selected', 'formula', 'validation', 'test', 'coefficients'}
    """
    logger.info("=" * 60)
    logger.info("STARTING MODEL EVALUATION")
    logger.info("=" * 60)

    results = {}
    for key, selection in selections.items():
        test_metrics = evaluate_subset(selection.final_model, test, handle_unseen=handle_unseen)
        results[key] = {
            'label': selection.label,
            'selected': selection.selected,
            'formula': str(selection.final_model.formula),
            'validation': {
                name: candidate['validation'] for name, candidate in selection.candidates.items()
            },
            'test': test_metrics,
            'coefficients': selection.final_model.coefficients().to_dict()
        }
        logger.info(f"  {selection.label} test RMSE: {test_metrics['rmse']:.6f}")

    logger.info("=" * 60)
    logger.info("EVALUATION COMPLETE")
    logger.info("=" * 60)

    return results


def format_rmse_lines(results: Dict[str, Any]) -> list:
    """One "<label>: <rmse>" line per model, candidate and partition."""
    lines = []
    for result in results.values():
        for name, metrics in result['validation'].items():
            lines.append(f"{result['label']} validation RMSE ({name}): {metrics['rmse']:.4f}")
        lines.append(f"{result['label']} test RMSE ({result['selected']}): {result['test']['rmse']:.4f}")
    return lines


def print_evaluation_report(results: Dict[str, Any]) -> None:
    """
    Print a formatted evaluation report to console.

    Args:
        results: Output of evaluate_models
    """
    print("\n" + "=" * 70)
    print("MODEL EVALUATION REPORT")
    print("=" * 70)

    for line in format_rmse_lines(results):
        print(line)

    print("-" * 70)
    print(f"{'Model':<28} {'Selected':<12} {'RMSE':<10} {'MAE':<10} {'R²':<10} {'Excluded':<8}")
    print("-" * 70)
    for result in results.values():
        test = result['test']
        print(f"{result['label']:<28} {result['selected']:<12} {test['rmse']:<10.4f} "
              f"{test['mae']:<10.4f} {test['r2']:<10.4f} {test['n_excluded']:<8}")

    print("=" * 70 + "\n")


def save_metrics(results: Dict[str, Any], output_dir: str = "reports/metrics/") -> str:
    """
    Write evaluation results to evaluation_metrics.json.

    Args:
        results: Output of evaluate_models
        output_dir: Directory for the metrics file

    Returns:
        Path of the written file
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    metrics_file = output_dir / "evaluation_metrics.json"
    with open(metrics_file, 'w') as f:
        json.dump(results, f, indent=2)
    logger.info(f"Metrics saved to {metrics_file}")

    return str(metrics_file)
