"""
Data Preprocessing Module
=========================

Type coercion, parsing and feature derivation for the sleep survey.

Every step takes a DataFrame and returns a new one; nothing is modified in
place. Steps are applied by clean_pipeline in a fixed order because later
derivations read columns produced by earlier ones.

Functions:
    - coerce_types: Numeric/categorical coercion of the raw columns
    - add_blood_pressure_features: Single-value and systolic/diastolic parsing
    - add_stress_features: Occupation mean stress and relative stress
    - add_sleep_category: Good / Average / Poor labelling
    - add_sleep_efficiency: Quality per hour with per-BMI outlier correction
    - add_age_group, add_bmi_numeric, add_zscores
    - add_occupation_group: Top-N occupations, the rest collapsed to "Other"
    - add_blood_pressure_category: Threshold labels on the single-value field
    - add_synthetic_dates: Random survey dates relative to the run date
    - clean_pipeline: All of the above, with a cleaning report
"""

import logging
import re
from typing import Dict, Any, List, Optional, Tuple

import pandas as pd
import numpy as np
from scipy import stats
from sklearn.utils import check_random_state

from .exceptions import ParseError, PipelineError

logger = logging.getLogger(__name__)

NUMERIC_COLUMNS = [
    'Person_ID',
    'Age',
    'Sleep_Duration',
    'Quality_of_Sleep',
    'Physical_Activity_Level',
    'Stress_Level',
    'Heart_Rate',
    'Daily_Steps',
]

CATEGORICAL_COLUMNS = ['Gender', 'Occupation', 'BMI_Category', 'Sleep_Disorder']

# Declared domains, in reference-level-first order. Values outside a domain
# are kept as they are.
CATEGORY_LEVELS = {
    'Gender': ['Male', 'Female'],
    'BMI_Category': ['Normal', 'Overweight', 'Obese'],
    'Sleep_Disorder': ['None', 'Insomnia', 'Sleep Apnea'],
    'Sleep_Category': ['Good', 'Average', 'Poor'],
    'Age_Group': ['Young', 'Middle', 'Senior', 'Elderly'],
    'Blood_Pressure_Category': ['Normal', 'Elevated', 'High Stage 1', 'High Stage 2'],
}

AGE_BINS = [0, 30, 45, 60, np.inf]
AGE_LABELS = CATEGORY_LEVELS['Age_Group']

BMI_NUMERIC = {'Normal': 22.0, 'Overweight': 27.0, 'Obese': 32.0}

OTHER_LABEL = 'Other'

_FIRST_INTEGER = re.compile(r'\d+')
_LEADING_INTEGER = re.compile(r'^\s*(\d+)')
_TRAILING_INTEGER = re.compile(r'(\d+)\s*$')


def _require_columns(df: pd.DataFrame, columns: List[str], step: str) -> None:
    for col in columns:
        if col not in df.columns:
            raise PipelineError(f"{step} requires column {col!r}", column=col, stage='clean')


def coerce_types(df: pd.DataFrame) -> pd.DataFrame:
    """
    Coerce numeric columns to numbers and strip categorical text.

    Raises:
        ParseError: If a numeric column holds a non-numeric value
    """
    df = df.copy()

    for col in NUMERIC_COLUMNS:
        if col not in df.columns:
            continue
        converted = pd.to_numeric(df[col], errors='coerce')
        bad = converted.isna() & df[col].notna()
        if bad.any():
            raise ParseError(
                f"Non-numeric value in numeric column ({int(bad.sum())} rows)",
                column=col,
                value=df.loc[bad, col].iloc[0]
            )
        df[col] = converted

    for col in CATEGORICAL_COLUMNS:
        if col not in df.columns:
            continue
        text = df[col].astype(str).str.strip()
        df[col] = text.where(df[col].notna(), np.nan)

    return df


def extract_first_integer(text: Any) -> float:
    """Return the first run of digits in text, or NaN if there is none."""
    if pd.isna(text):
        return np.nan
    match = _FIRST_INTEGER.search(str(text))
    return float(match.group()) if match else np.nan


def parse_blood_pressure(text: Any) -> Tuple[float, float]:
    """
    Split a "systolic/diastolic" reading into its leading and trailing integers.

    Either side is NaN when the corresponding digit group is absent.
    """
    if pd.isna(text):
        return np.nan, np.nan
    text = str(text)
    leading = _LEADING_INTEGER.search(text)
    trailing = _TRAILING_INTEGER.search(text)
    systolic = float(leading.group(1)) if leading else np.nan
    diastolic = float(trailing.group(1)) if trailing else np.nan
    return systolic, diastolic


def add_blood_pressure_features(df: pd.DataFrame, strict: bool = False) -> pd.DataFrame:
    """
    Derive Blood_Pressure, Systolic_BP and Diastolic_BP from the raw string.

    The single-value Blood_Pressure field keeps only the first integer found
    and is derived independently of the systolic/diastolic pair. The raw text
    is preserved in Blood_Pressure_Raw.

    Args:
        df: Input dataframe
        strict: Raise ParseError instead of leaving NaN for unparsable values

    Returns:
        New DataFrame with the blood pressure columns added
    """
    _require_columns(df, ['Blood_Pressure'], 'Blood pressure parsing')
    df = df.copy()

    raw = df['Blood_Pressure']
    single = raw.map(extract_first_integer).astype(float)
    parsed = [parse_blood_pressure(value) for value in raw]
    systolic = pd.Series([s for s, _ in parsed], index=raw.index, dtype=float)
    diastolic = pd.Series([d for _, d in parsed], index=raw.index, dtype=float)

    failures = single.isna() & raw.notna()
    if strict:
        composite = (systolic.isna() | diastolic.isna()) & raw.notna()
        if (failures | composite).any():
            raise ParseError(
                "Unparsable blood pressure reading",
                column='Blood_Pressure',
                value=raw[failures | composite].iloc[0]
            )
    if failures.any():
        logger.warning(f"{int(failures.sum())} blood pressure values had no digits; left missing")

    df['Blood_Pressure_Raw'] = raw
    df['Blood_Pressure'] = single
    df['Systolic_BP'] = systolic
    df['Diastolic_BP'] = diastolic

    return df


def add_stress_features(df: pd.DataFrame) -> pd.DataFrame:
    """Add occupation-level mean stress and each participant's deviation from it."""
    _require_columns(df, ['Occupation', 'Stress_Level'], 'Stress features')
    df = df.copy()

    df['Avg_Stress'] = df.groupby('Occupation', dropna=False)['Stress_Level'].transform('mean')
    df['Stress_Relative'] = df['Stress_Level'] - df['Avg_Stress']

    return df


def categorize_sleep(duration: float, quality: float) -> Optional[str]:
    """
    Label a night's sleep as Good, Poor or Average.

    Rules are checked in order and the first match wins:
        1. duration >= 7 and quality >= 7  -> Good
        2. duration < 6 or quality < 5     -> Poor
        3. otherwise                       -> Average

    Returns NaN if either input is missing.
    """
    if pd.isna(duration) or pd.isna(quality):
        return np.nan
    if duration >= 7 and quality >= 7:
        return 'Good'
    if duration < 6 or quality < 5:
        return 'Poor'
    return 'Average'


def add_sleep_category(df: pd.DataFrame) -> pd.DataFrame:
    _require_columns(df, ['Sleep_Duration', 'Quality_of_Sleep'], 'Sleep category')
    df = df.copy()
    df['Sleep_Category'] = [
        categorize_sleep(duration, quality)
        for duration, quality in zip(df['Sleep_Duration'], df['Quality_of_Sleep'])
    ]
    return df


def _group_zscore(values: pd.Series, groups: pd.Series) -> pd.Series:
    """Population z-score of values within each group (NaN for constant groups)."""
    def zscore(x: pd.Series) -> np.ndarray:
        with np.errstate(divide='ignore', invalid='ignore'):
            return stats.zscore(x.to_numpy(dtype=float), nan_policy='omit')

    return values.groupby(groups, dropna=False).transform(zscore)


def correct_outliers_by_group(
    values: pd.Series,
    groups: pd.Series,
    threshold: float = 3.0
) -> Tuple[pd.Series, pd.Series]:
    """
    Replace per-group outliers with the group median.

    A value is an outlier when the absolute z-score within its group exceeds
    threshold. Z-scores and medians are computed on the original values and
    all replacements are applied at once.

    Args:
        values: Numeric values to correct
        groups: Group label for each value (aligned on the index)
        threshold: Absolute z-score above which a value is replaced

    Returns:
        Tuple of (corrected values, boolean outlier mask)
    """
    values = values.astype(float)
    z = _group_zscore(values, groups)
    medians = values.groupby(groups, dropna=False).transform('median')

    outliers = (z.abs() > threshold).fillna(False).astype(bool)
    corrected = values.where(~outliers, medians)

    return corrected, outliers


def add_sleep_efficiency(
    df: pd.DataFrame,
    group_col: str = 'BMI_Category',
    threshold: float = 3.0
) -> pd.DataFrame:
    """
    Add Sleep_Efficiency (quality per hour slept), outlier-corrected per group.

    The boolean Sleep_Efficiency_Outlier column records which rows were replaced.
    """
    _require_columns(df, ['Sleep_Duration', 'Quality_of_Sleep', group_col], 'Sleep efficiency')
    df = df.copy()

    duration = df['Sleep_Duration'].astype(float).replace(0, np.nan)
    efficiency = df['Quality_of_Sleep'] / duration

    corrected, outliers = correct_outliers_by_group(efficiency, df[group_col], threshold)
    df['Sleep_Efficiency'] = corrected
    df['Sleep_Efficiency_Outlier'] = outliers

    return df


def add_age_group(df: pd.DataFrame) -> pd.DataFrame:
    _require_columns(df, ['Age'], 'Age group')
    df = df.copy()
    groups = pd.cut(df['Age'], bins=AGE_BINS, labels=AGE_LABELS, right=True)
    df['Age_Group'] = groups.astype(object).where(groups.notna(), np.nan)
    return df


def add_bmi_numeric(df: pd.DataFrame) -> pd.DataFrame:
    """Map BMI categories to a numeric proxy; other categories become NaN."""
    _require_columns(df, ['BMI_Category'], 'BMI numeric')
    df = df.copy()
    df['BMI_Numeric'] = df['BMI_Category'].map(BMI_NUMERIC).astype(float)
    return df


def add_zscores(
    df: pd.DataFrame,
    columns: Tuple[str, ...] = ('Sleep_Duration', 'Quality_of_Sleep')
) -> pd.DataFrame:
    """Add <column>_Z population z-scores computed over the whole table."""
    _require_columns(df, list(columns), 'Z-scores')
    df = df.copy()
    for col in columns:
        with np.errstate(divide='ignore', invalid='ignore'):
            z = stats.zscore(df[col].to_numpy(dtype=float), nan_policy='omit')
        df[f'{col}_Z'] = z
    return df


def collapse_occupations(
    occupations: pd.Series,
    top_n: int = 5,
    other_label: str = OTHER_LABEL
) -> pd.Series:
    """
    Keep the top_n most frequent occupations and map the rest to other_label.

    Occupations with equal counts are ranked by first appearance in the
    series. Missing values stay missing.
    """
    observed = occupations.dropna()
    counts = observed.value_counts()
    # sorted() is stable, so ties keep first-seen order
    ranked = sorted(pd.unique(observed), key=lambda level: -counts[level])
    keep = set(ranked[:top_n])

    return occupations.where(occupations.isin(keep) | occupations.isna(), other_label)


def add_occupation_group(df: pd.DataFrame, top_n: int = 5) -> pd.DataFrame:
    _require_columns(df, ['Occupation'], 'Occupation group')
    df = df.copy()
    df['Occupation_Group'] = collapse_occupations(df['Occupation'], top_n=top_n)
    return df


def categorize_blood_pressure(value: float) -> Optional[str]:
    """
    Label a single blood pressure value.

    <120 Normal, 120-129 Elevated, 130-139 High Stage 1, >=140 High Stage 2.
    """
    if pd.isna(value):
        return np.nan
    if value < 120:
        return 'Normal'
    if value < 130:
        return 'Elevated'
    if value < 140:
        return 'High Stage 1'
    return 'High Stage 2'


def add_blood_pressure_category(df: pd.DataFrame) -> pd.DataFrame:
    """Categorize the single-value Blood_Pressure field, not Systolic_BP."""
    _require_columns(df, ['Blood_Pressure'], 'Blood pressure category')
    df = df.copy()
    df['Blood_Pressure_Category'] = df['Blood_Pressure'].map(categorize_blood_pressure)
    return df


def add_synthetic_dates(
    df: pd.DataFrame,
    seed: Optional[int] = None,
    run_date: Optional[Any] = None
) -> pd.DataFrame:
    """
    Assign each row a date between 1 and 365 days before the run date.

    With seed=None the draw uses numpy's global random state and is not
    reproducible across runs.
    """
    df = df.copy()
    rng = check_random_state(seed)
    days_ago = rng.randint(1, 366, size=len(df))

    base = pd.Timestamp(run_date) if run_date is not None else pd.Timestamp.today()
    df['Date'] = base.normalize() - pd.to_timedelta(days_ago, unit='D')

    return df


def clean_pipeline(
    df: pd.DataFrame,
    strict_parsing: bool = False,
    outlier_threshold: float = 3.0,
    outlier_group_col: str = 'BMI_Category',
    top_occupations: int = 5,
    date_seed: Optional[int] = None,
    run_date: Optional[Any] = None
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """
    Main cleaning and feature derivation pipeline.

    Steps:
    1. Coerce column types
    2. Parse blood pressure (single value, systolic, diastolic)
    3. Occupation stress aggregates (over the whole table, before splitting)
    4. Sleep category
    5. Sleep efficiency with per-group outlier correction
    6. Age group, BMI proxy, z-scores
    7. Occupation grouping
    8. Blood pressure category
    9. Synthetic dates

    Parameters
    ----------
    df : pd.DataFrame
        Loaded survey data with normalised column names.
    strict_parsing : bool, default False
        Raise ParseError on unparsable blood pressure instead of leaving NaN.
    outlier_threshold : float, default 3.0
        Absolute z-score above which Sleep_Efficiency is replaced.
    outlier_group_col : str, default 'BMI_Category'
        Column defining the outlier correction groups.
    top_occupations : int, default 5
        Number of occupations kept as-is in Occupation_Group.
    date_seed : int, optional
        Seed for the synthetic date draw.
    run_date : date-like, optional
        Date the synthetic dates count back from (defaults to today).

    Returns
    -------
    tuple
        (enriched_df, cleaning_report)
    """
    logger.info("=" * 60)
    logger.info("Starting data cleaning pipeline")
    logger.info(f"  Input shape: {df.shape}")
    logger.info("=" * 60)

    cleaning_report = {
        'input_shape': df.shape,
        'steps': {}
    }

    logger.info("Step 1: Coercing column types...")
    df = coerce_types(df)
    cleaning_report['steps']['coerce_types'] = {
        'numeric': [col for col in NUMERIC_COLUMNS if col in df.columns],
        'categorical': [col for col in CATEGORICAL_COLUMNS if col in df.columns]
    }

    logger.info("Step 2: Parsing blood pressure...")
    df = add_blood_pressure_features(df, strict=strict_parsing)
    cleaning_report['steps']['blood_pressure'] = {
        'unparsed_single': int(df['Blood_Pressure'].isna().sum()),
        'unparsed_systolic': int(df['Systolic_BP'].isna().sum()),
        'unparsed_diastolic': int(df['Diastolic_BP'].isna().sum()),
        'single_differs_from_systolic': int(
            (df['Blood_Pressure'].fillna(-1) != df['Systolic_BP'].fillna(-1)).sum()
        )
    }

    logger.info("Step 3: Occupation stress aggregates...")
    df = add_stress_features(df)

    logger.info("Step 4: Sleep categories...")
    df = add_sleep_category(df)
    cleaning_report['steps']['sleep_category'] = (
        df['Sleep_Category'].value_counts(dropna=False).to_dict()
    )

    logger.info("Step 5: Sleep efficiency and outlier correction...")
    df = add_sleep_efficiency(df, group_col=outlier_group_col, threshold=outlier_threshold)
    outliers_by_group = (
        df.loc[df['Sleep_Efficiency_Outlier'], outlier_group_col]
        .value_counts(dropna=False).to_dict()
    )
    cleaning_report['steps']['outlier_correction'] = {
        'group_col': outlier_group_col,
        'threshold': outlier_threshold,
        'n_replaced': int(df['Sleep_Efficiency_Outlier'].sum()),
        'replaced_by_group': outliers_by_group
    }
    logger.info(f"  Replaced {cleaning_report['steps']['outlier_correction']['n_replaced']} "
                f"Sleep_Efficiency outliers (|z| > {outlier_threshold})")

    logger.info("Step 6: Age groups, BMI proxy and z-scores...")
    df = add_age_group(df)
    df = add_bmi_numeric(df)
    df = add_zscores(df)

    logger.info("Step 7: Occupation grouping...")
    df = add_occupation_group(df, top_n=top_occupations)
    collapsed = sorted(df.loc[df['Occupation_Group'] == OTHER_LABEL, 'Occupation'].dropna().unique())
    cleaning_report['steps']['occupation_group'] = {
        'top_n': top_occupations,
        'kept': [level for level in pd.unique(df['Occupation_Group'].dropna()) if level != OTHER_LABEL],
        'collapsed': list(collapsed)
    }

    logger.info("Step 8: Blood pressure categories...")
    df = add_blood_pressure_category(df)

    logger.info("Step 9: Synthetic dates...")
    df = add_synthetic_dates(df, seed=date_seed, run_date=run_date)
    cleaning_report['steps']['synthetic_dates'] = {'seeded': date_seed is not None}

    cleaning_report['output_shape'] = df.shape

    logger.info("=" * 60)
    logger.info("Cleaning pipeline complete")
    logger.info(f"  Output shape: {df.shape}")
    logger.info("=" * 60)

    return df, cleaning_report


def print_cleaning_summary(df: pd.DataFrame, report: Dict[str, Any]) -> None:
    """
    Print a summary of the derived features.

    Args:
        df: Enriched DataFrame from clean_pipeline
        report: Cleaning report from clean_pipeline
    """
    steps = report['steps']
    print("\n" + "=" * 50)
    print("CLEANING SUMMARY")
    print("=" * 50)
    print(f"Rows: {df.shape[0]}  Columns: {report['input_shape'][1]} -> {df.shape[1]}")
    print(f"Sleep categories: {steps['sleep_category']}")
    print(f"Sleep efficiency outliers replaced: {steps['outlier_correction']['n_replaced']}")
    print(f"Occupations kept: {steps['occupation_group']['kept']}")
    print(f"Occupations collapsed to '{OTHER_LABEL}': {steps['occupation_group']['collapsed']}")
    print(f"Blood pressure single value differs from systolic: "
          f"{steps['blood_pressure']['single_differs_from_systolic']} rows")
    print("=" * 50 + "\n")
