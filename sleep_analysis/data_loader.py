"""
Data Loader Module
==================

Handles CSV ingestion, column normalisation, and basic data quality checks.

Functions:
    - load_config: Load YAML configuration file
    - normalize_column_names: Replace spaces in headers with underscores
    - load_data: Load the survey CSV
    - validate_data: Check required columns and data quality constraints
    - get_data_summary: Generate basic statistics
"""

import logging
from pathlib import Path
from typing import Dict, Any, List, Tuple

import pandas as pd
import numpy as np
import yaml

from .exceptions import DataLoadError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = [
    'Person_ID',
    'Gender',
    'Age',
    'Occupation',
    'Sleep_Duration',
    'Quality_of_Sleep',
    'Physical_Activity_Level',
    'Stress_Level',
    'BMI_Category',
    'Blood_Pressure',
    'Heart_Rate',
    'Daily_Steps',
    'Sleep_Disorder',
]

# "None" is a Sleep_Disorder level, so the reader's default NA list is replaced
NA_VALUES = ['', 'NA', 'N/A', 'n/a', 'NaN', 'nan', 'NULL', 'null', '#N/A']


def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def normalize_column_names(columns: List[str]) -> List[str]:
    """Strip header names and replace inner whitespace with underscores."""
    return ['_'.join(str(col).strip().split()) for col in columns]


def load_data(file_path: str) -> pd.DataFrame:
    """
    Load the survey CSV with normalised column names.

    Column types are not validated here; coercion happens in the cleaner.

    Args:
        file_path: Path to the CSV file

    Returns:
        DataFrame containing the loaded data

    Raises:
        DataLoadError: If the file is missing, unreadable or has no rows
    """
    file_path = Path(file_path)

    if not file_path.is_file():
        raise DataLoadError(f"Data file not found: {file_path}", value=str(file_path))

    try:
        df = pd.read_csv(file_path, na_values=NA_VALUES, keep_default_na=False)
    except pd.errors.EmptyDataError as e:
        raise DataLoadError(f"Data file is empty: {file_path}", value=str(file_path)) from e
    except (pd.errors.ParserError, UnicodeDecodeError, OSError) as e:
        raise DataLoadError(f"Could not read {file_path}: {e}", value=str(file_path)) from e

    if df.empty:
        raise DataLoadError(f"Data file has zero rows: {file_path}", value=str(file_path))

    df.columns = normalize_column_names(df.columns)
    logger.info(f"Loaded data from {file_path}: {df.shape[0]} rows × {df.shape[1]} columns")

    return df


def validate_data(df: pd.DataFrame, strict: bool = True) -> Tuple[bool, Dict[str, Any]]:
    """
    Validate data quality constraints for the sleep survey.

    Checks:
        - All required columns are present
        - No missing values (reported, not fatal)
        - Participant ids are unique (reported, not fatal)

    Args:
        df: DataFrame to validate
        strict: If True, raise when required columns are missing

    Returns:
        Tuple of (is_valid, validation_report)
    """
    report = {
        "total_rows": len(df),
        "total_columns": len(df.columns),
        "column_names": list(df.columns),
        "issues": []
    }

    # Check 1: Required columns
    missing_columns = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    report["missing_columns"] = missing_columns
    if missing_columns:
        issue = f"Missing required columns: {missing_columns}"
        report["issues"].append(issue)
        logger.warning(issue)

    # Check 2: Missing values
    missing_counts = df.isnull().sum()
    total_missing = missing_counts.sum()
    if total_missing > 0:
        missing_pct = (total_missing / (df.shape[0] * df.shape[1])) * 100
        issue = f"Missing values: {total_missing} ({missing_pct:.2f}%)"
        report["issues"].append(issue)
        report["missing_by_column"] = missing_counts[missing_counts > 0].to_dict()
        logger.warning(issue)

    # Check 3: Duplicate participants
    if 'Person_ID' in df.columns:
        duplicates = int(df['Person_ID'].duplicated().sum())
        if duplicates > 0:
            issue = f"Duplicate participant ids found: {duplicates}"
            report["issues"].append(issue)
            logger.warning(issue)

    is_valid = len(report["issues"]) == 0
    report["is_valid"] = is_valid

    if strict and missing_columns:
        raise DataLoadError(
            f"Data validation failed: missing required columns {missing_columns}",
            column=missing_columns[0]
        )

    return is_valid, report


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for the dataset.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "statistics": {},
        "levels": {}
    }

    for col in df.select_dtypes(include=[np.number]).columns:
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()),
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max())
        }

    for col in df.select_dtypes(exclude=[np.number]).columns:
        summary["levels"][col] = df[col].value_counts(dropna=False).to_dict()

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        dtype = df[col].dtype
        non_null = df[col].count()
        null_pct = (1 - non_null / len(df)) * 100
        print(f"  {col}: {dtype} | {non_null} non-null ({null_pct:.1f}% missing)")

    print("\nBasic Statistics:")
    print("-" * 40)
    print(df.describe().round(4).to_string())
    print("=" * 60 + "\n")
