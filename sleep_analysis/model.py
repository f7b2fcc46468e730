"""
Model Training Module
=====================

Ordinary least squares regression driven by R-style model formulas.

Features:
    - Formula parsing ("y ~ a * b + c", with ":" interactions)
    - Treatment coding of categorical predictors against declared domains
    - Fail-fast handling of categorical levels not seen during fitting
    - Baseline vs interaction model selection by validation RMSE
    - Model persistence (save/load)
"""

import logging
from itertools import combinations
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Union
from datetime import datetime

import numpy as np
import pandas as pd
import joblib
from sklearn.linear_model import LinearRegression
from sklearn.preprocessing import OneHotEncoder

from .exceptions import InsufficientDataError, PipelineError, UnseenLevelError
from .preprocessing import CATEGORY_LEVELS
from .evaluation import evaluate_subset

logger = logging.getLogger(__name__)

MODEL_FORMULAS = {
    'sleep_duration': 'Sleep_Duration ~ Stress_Level * Physical_Activity_Level + BMI_Category + Age',
    'sleep_quality': 'Quality_of_Sleep ~ Age * Sleep_Duration + Heart_Rate + Blood_Pressure',
}

MODEL_LABELS = {
    'sleep_duration': 'Model A (sleep duration)',
    'sleep_quality': 'Model B (sleep quality)',
}


class Formula:
    """
    A parsed model formula: a target and an ordered list of terms.

    Each term is a tuple of factor names; single-factor tuples are main
    effects, longer tuples are interactions.
    """

    def __init__(self, target: str, terms: List[Tuple[str, ...]]):
        self.target = target
        self.terms = list(terms)

    @property
    def factors(self) -> List[str]:
        """Predictor columns in first-use order."""
        seen = []
        for term in self.terms:
            for factor in term:
                if factor not in seen:
                    seen.append(factor)
        return seen

    @property
    def columns(self) -> List[str]:
        return [self.target] + self.factors

    @property
    def has_interactions(self) -> bool:
        return any(len(term) > 1 for term in self.terms)

    def __eq__(self, other: Any) -> bool:
        return (isinstance(other, Formula)
                and self.target == other.target
                and self.terms == other.terms)

    def __str__(self) -> str:
        return f"{self.target} ~ " + " + ".join(":".join(term) for term in self.terms)

    def __repr__(self) -> str:
        return f"Formula({str(self)!r})"


def parse_formula(text: str) -> Formula:
    """
    Parse "target ~ rhs" into a Formula.

    On the right-hand side "+" separates terms, "a:b" is an interaction and
    "a*b" expands to "a + b + a:b". Duplicate terms are dropped.

    Raises:
        ValueError: If the formula is malformed
    """
    if text.count('~') != 1:
        raise ValueError(f"Formula must contain exactly one '~': {text!r}")

    lhs, rhs = (side.strip() for side in text.split('~'))
    if not lhs:
        raise ValueError(f"Formula has no target: {text!r}")

    terms: List[Tuple[str, ...]] = []
    for chunk in rhs.split('+'):
        chunk = chunk.strip()
        if not chunk:
            raise ValueError(f"Empty term in formula: {text!r}")

        if '*' in chunk:
            factors = [factor.strip() for factor in chunk.split('*')]
            expanded = [
                combo
                for order in range(1, len(factors) + 1)
                for combo in combinations(factors, order)
            ]
        else:
            expanded = [tuple(factor.strip() for factor in chunk.split(':'))]

        for term in expanded:
            if not all(term):
                raise ValueError(f"Empty factor in formula: {text!r}")
            if term not in terms:
                terms.append(term)

    return Formula(lhs, terms)


def main_effects_formula(formula: Union[str, Formula]) -> Formula:
    """The baseline specification: the same formula without interaction terms."""
    if isinstance(formula, str):
        formula = parse_formula(formula)
    return Formula(formula.target, [term for term in formula.terms if len(term) == 1])


def ordered_levels(column: str, observed: pd.Series) -> List[Any]:
    """
    Levels of a categorical column, reference level first.

    Declared levels come first in their declared order (only those actually
    observed), followed by any undeclared observed levels in sorted order.
    """
    present = set(observed.dropna().unique())
    declared = [level for level in CATEGORY_LEVELS.get(column, []) if level in present]
    extra = sorted((level for level in present if level not in declared), key=str)
    return declared + extra


class LinearModel:
    """
    Ordinary least squares model for a single formula.

    Categorical predictors are treatment-coded with a OneHotEncoder that
    drops the first level from ordered_levels (the reference) and rejects
    levels it was not fitted on.
    """

    def __init__(self, formula: Union[str, Formula], fit_intercept: bool = True):
        """
        Args:
            formula: Model formula (string or parsed)
            fit_intercept: Whether to fit an intercept
        """
        self.formula = parse_formula(formula) if isinstance(formula, str) else formula
        self.fit_intercept = fit_intercept

        self.estimator: Optional[LinearRegression] = None
        self.encoders_: Dict[str, OneHotEncoder] = {}
        self.levels_: Dict[str, List[Any]] = {}
        self.feature_names_: List[str] = []
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def _check_columns(self, data: pd.DataFrame, columns: List[str]) -> None:
        for col in columns:
            if col not in data.columns:
                raise PipelineError(
                    f"Column {col!r} required by '{self.formula}' is missing",
                    column=col,
                    stage='model'
                )

    def _fit_encoders(self, data: pd.DataFrame) -> None:
        self.encoders_ = {}
        for factor in self.formula.factors:
            if pd.api.types.is_numeric_dtype(data[factor]):
                continue
            encoder = OneHotEncoder(
                categories=[ordered_levels(factor, data[factor])],
                drop='first',
                handle_unknown='error',
                sparse_output=False
            )
            self.encoders_[factor] = encoder.fit(data[factor].to_numpy(dtype=object).reshape(-1, 1))
        self.levels_ = {factor: list(enc.categories_[0]) for factor, enc in self.encoders_.items()}

    def _encode_factor(self, data: pd.DataFrame, factor: str) -> Tuple[List[np.ndarray], List[str]]:
        values = data[factor]

        encoder = self.encoders_.get(factor)
        if encoder is None:
            return [values.astype(float).to_numpy()], [factor]

        levels = self.levels_[factor]
        names = [f"{factor}[T.{level}]" for level in levels[1:]]

        present = values.notna()
        encoded = np.full((len(values), len(names)), np.nan)
        if present.any():
            try:
                encoded[present.to_numpy()] = encoder.transform(
                    values[present].to_numpy(dtype=object).reshape(-1, 1)
                )
            except ValueError as e:
                unseen = values[present & ~values.isin(levels)]
                raise UnseenLevelError(
                    f"Level not seen while fitting '{self.formula}' ({len(unseen)} rows)",
                    column=factor,
                    value=unseen.iloc[0] if len(unseen) else None
                ) from e

        return [encoded[:, i] for i in range(len(names))], names

    def design_matrix(self, data: pd.DataFrame) -> pd.DataFrame:
        """
        Build the predictor matrix for data.

        Rows with a missing predictor hold NaN.

        Raises:
            UnseenLevelError: If a categorical value was not seen while fitting
        """
        self._check_columns(data, self.formula.factors)
        encoded = {factor: self._encode_factor(data, factor) for factor in self.formula.factors}

        features = {}
        for term in self.formula.terms:
            columns, names = encoded[term[0]]
            for factor in term[1:]:
                other_columns, other_names = encoded[factor]
                columns = [left * right for left in columns for right in other_columns]
                names = [f"{left}:{right}" for left in names for right in other_names]
            features.update(zip(names, columns))

        return pd.DataFrame(features, index=data.index)

    def fit(self, data: pd.DataFrame) -> 'LinearModel':
        """
        Fit the model on rows with no missing values in the formula's columns.

        Args:
            data: Training data

        Returns:
            Self for method chaining

        Raises:
            InsufficientDataError: If no complete rows remain
        """
        start_time = datetime.now()
        self._check_columns(data, self.formula.columns)

        complete = data.dropna(subset=self.formula.columns)
        n_dropped = len(data) - len(complete)
        if n_dropped:
            logger.warning(f"Dropped {n_dropped} rows with missing values before fitting '{self.formula}'")
        if complete.empty:
            raise InsufficientDataError(f"No complete rows to fit '{self.formula}'", stage='model')

        self._fit_encoders(complete)

        X = self.design_matrix(complete)
        y = complete[self.formula.target].astype(float).to_numpy()
        self.feature_names_ = list(X.columns)

        self.estimator = LinearRegression(fit_intercept=self.fit_intercept)
        self.estimator.fit(X.to_numpy(), y)

        self.training_info = {
            'formula': str(self.formula),
            'n_samples': int(len(complete)),
            'n_dropped': int(n_dropped),
            'n_features': len(self.feature_names_),
            'levels': {factor: list(levels) for factor, levels in self.levels_.items()},
            'training_duration_seconds': (datetime.now() - start_time).total_seconds(),
            'trained_at': datetime.now().isoformat()
        }
        self._is_fitted = True

        logger.info(f"Fitted '{self.formula}' on {len(complete)} rows "
                    f"({len(self.feature_names_)} features)")

        return self

    def predictable_rows(self, data: pd.DataFrame) -> pd.Series:
        """Mask of rows with complete predictors whose categorical levels were seen in fit."""
        self._require_fitted()
        self._check_columns(data, self.formula.factors)

        mask = data[self.formula.factors].notna().all(axis=1)
        for factor, levels in self.levels_.items():
            mask &= data[factor].isin(levels)
        return mask

    def predict(self, data: pd.DataFrame) -> np.ndarray:
        """
        Predict the target for each row of data.

        Rows with a missing predictor get NaN.

        Raises:
            UnseenLevelError: If a categorical value was not seen while fitting
        """
        self._require_fitted()

        X = self.design_matrix(data)
        complete = (X.notna().all(axis=1) & data[self.formula.factors].notna().all(axis=1)).to_numpy()

        predictions = np.full(len(data), np.nan)
        if complete.any():
            predictions[complete] = self.estimator.predict(X.to_numpy()[complete])
        return predictions

    def coefficients(self) -> pd.Series:
        """Fitted coefficients by feature name, intercept first."""
        self._require_fitted()
        values = [float(self.estimator.intercept_)] + [float(c) for c in self.estimator.coef_]
        return pd.Series(values, index=['Intercept'] + self.feature_names_, name=self.formula.target)

    def _require_fitted(self) -> None:
        if not self._is_fitted:
            raise ValueError("Model must be fitted before prediction. Call fit() first.")

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save unfitted model.")

        state = {
            'formula': str(self.formula),
            'fit_intercept': self.fit_intercept,
            'estimator': self.estimator,
            'encoders_': self.encoders_,
            'levels_': self.levels_,
            'feature_names_': self.feature_names_,
            'training_info': self.training_info,
            '_is_fitted': self._is_fitted
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'LinearModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded LinearModel instance
        """
        state = joblib.load(filepath)

        model = cls(state['formula'], fit_intercept=state['fit_intercept'])
        model.estimator = state['estimator']
        model.encoders_ = state['encoders_']
        model.levels_ = state['levels_']
        model.feature_names_ = state['feature_names_']
        model.training_info = state['training_info']
        model._is_fitted = state['_is_fitted']

        logger.info(f"Model loaded from {filepath}")
        return model

    def __repr__(self) -> str:
        status = 'fitted' if self._is_fitted else 'unfitted'
        return f"LinearModel('{self.formula}', {status})"


def fit(data: pd.DataFrame, formula: Union[str, Formula]) -> LinearModel:
    """Fit an OLS model for formula on data."""
    return LinearModel(formula).fit(data)


def predict(model: LinearModel, data: pd.DataFrame) -> np.ndarray:
    """Predictions of a fitted model for each row of data."""
    return model.predict(data)


class ModelSelection:
    """
    Outcome of comparing a baseline and an interaction specification.

    Attributes:
        name: Model key (e.g. 'sleep_duration')
        candidates: Candidate name -> {'formula', 'model', 'validation'}
        selected: Name of the winning candidate
        final_model: Winner refitted on train + validation
    """

    def __init__(
        self,
        name: str,
        candidates: Dict[str, Dict[str, Any]],
        selected: str,
        final_model: LinearModel,
        label: Optional[str] = None
    ):
        self.name = name
        self.label = label or MODEL_LABELS.get(name, name)
        self.candidates = candidates
        self.selected = selected
        self.final_model = final_model

    def validation_rmse(self) -> Dict[str, float]:
        return {key: cand['validation']['rmse'] for key, cand in self.candidates.items()}

    def __repr__(self) -> str:
        return f"ModelSelection({self.name!r}, selected={self.selected!r})"


def select_model(
    train: pd.DataFrame,
    validation: pd.DataFrame,
    formula: Union[str, Formula],
    name: str = 'model',
    refit: bool = True,
    label: Optional[str] = None,
    handle_unseen: str = 'drop'
) -> ModelSelection:
    """
    Choose between the baseline and the interaction specification of formula.

    Both candidates are fitted on train and scored by RMSE on validation; the
    lower RMSE wins and a tie goes to the baseline. The winner is then refitted
    on train + validation (or kept as fitted on train when refit is False).

    Args:
        train: Training rows
        validation: Validation rows
        formula: Formula including the interaction term
        name: Key used in reports
        refit: Refit the winner on train + validation
        label: Display label (defaults to MODEL_LABELS)
        handle_unseen: Passed to evaluate_subset when scoring validation

    Returns:
        ModelSelection
    """
    augmented = parse_formula(formula) if isinstance(formula, str) else formula
    specifications = {
        'baseline': main_effects_formula(augmented),
        'interaction': augmented
    }

    candidates = {}
    for key, spec in specifications.items():
        model = fit(train, spec)
        scores = evaluate_subset(model, validation, handle_unseen=handle_unseen)
        candidates[key] = {'formula': str(spec), 'model': model, 'validation': scores}
        logger.info(f"  {name} [{key}] validation RMSE: {scores['rmse']:.4f}")

    selected = 'baseline'
    if candidates['interaction']['validation']['rmse'] < candidates['baseline']['validation']['rmse']:
        selected = 'interaction'
    logger.info(f"  {name}: selected {selected} specification")

    if refit:
        final_model = fit(pd.concat([train, validation]), specifications[selected])
    else:
        final_model = candidates[selected]['model']

    return ModelSelection(name, candidates, selected, final_model, label=label)


def train_models(
    train: pd.DataFrame,
    validation: pd.DataFrame,
    config: Dict[str, Any],
    save_dir: Optional[str] = None,
    handle_unseen: Optional[str] = None
) -> Dict[str, ModelSelection]:
    """
    Run model selection for every configured model.

    Args:
        train: Training rows
        validation: Validation rows
        config: Configuration dictionary ('models' section)
        save_dir: Directory to save the final models (optional)
        handle_unseen: Unseen-level policy for validation scoring (defaults to
            the 'evaluation' section, then 'drop')

    Returns:
        Model key -> ModelSelection
    """
    if handle_unseen is None:
        handle_unseen = config.get('evaluation', {}).get('handle_unseen', 'drop')

    models_config = config.get('models') or {
        key: {'formula': formula} for key, formula in MODEL_FORMULAS.items()
    }

    logger.info("=" * 60)
    logger.info("STARTING MODEL TRAINING")
    logger.info("=" * 60)
    logger.info(f"Training data: {len(train)} rows, validation data: {len(validation)} rows")

    selections = {}
    for key, model_config in models_config.items():
        formula = model_config.get('formula', MODEL_FORMULAS.get(key))
        if formula is None:
            raise ValueError(f"No formula configured for model {key!r}")

        selection = select_model(
            train, validation, formula,
            name=key,
            refit=model_config.get('refit', True),
            label=model_config.get('label'),
            handle_unseen=handle_unseen
        )
        selections[key] = selection

        if save_dir:
            selection.final_model.save(str(Path(save_dir) / f"{key}.joblib"))

    logger.info("=" * 60)
    logger.info("MODEL TRAINING COMPLETE")
    logger.info("=" * 60)

    return selections


def print_model_summary(selections: Dict[str, ModelSelection]) -> None:
    """
    Print candidate scores and final coefficients for each model.

    Args:
        selections: Result of train_models
    """
    print("\n" + "=" * 50)
    print("MODEL SUMMARY")
    print("=" * 50)

    for selection in selections.values():
        print(f"\n{selection.label}")
        for key, candidate in selection.candidates.items():
            marker = '*' if key == selection.selected else ' '
            print(f" {marker} {key:<12} {candidate['formula']}")
        print(f"\nCoefficients ({selection.selected}, refitted):")
        print(selection.final_model.coefficients().round(6).to_string())

    print("=" * 50 + "\n")
