"""
Shared fixtures: a synthetic sleep survey with the original CSV headers.
"""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

OCCUPATIONS = [
    'Nurse', 'Doctor', 'Engineer', 'Lawyer', 'Teacher',
    'Accountant', 'Salesperson', 'Scientist'
]
OCCUPATION_WEIGHTS = [0.22, 0.2, 0.16, 0.12, 0.1, 0.09, 0.07, 0.04]


def make_survey(n_none: int = 90, n_insomnia: int = 30, n_apnea: int = 30, seed: int = 42) -> pd.DataFrame:
    """Build a survey table with the raw (space separated) column names."""
    rng = np.random.RandomState(seed)
    n = n_none + n_insomnia + n_apnea

    disorder = np.array(['None'] * n_none + ['Insomnia'] * n_insomnia + ['Sleep Apnea'] * n_apnea)
    rng.shuffle(disorder)

    duration = np.round(rng.uniform(5.5, 8.5, n), 1)
    quality = np.clip(np.round(duration + rng.normal(0, 0.8, n)), 4, 9).astype(int)
    systolic = rng.randint(115, 143, n)
    diastolic = rng.randint(75, 96, n)

    return pd.DataFrame({
        'Person ID': np.arange(1, n + 1),
        'Gender': rng.choice(['Male', 'Female'], n),
        'Age': rng.randint(27, 60, n),
        'Occupation': rng.choice(OCCUPATIONS, n, p=OCCUPATION_WEIGHTS),
        'Sleep Duration': duration,
        'Quality of Sleep': quality,
        'Physical Activity Level': rng.randint(30, 91, n),
        'Stress Level': rng.randint(3, 9, n),
        'BMI Category': rng.choice(['Normal', 'Overweight', 'Obese'], n, p=[0.5, 0.3, 0.2]),
        'Blood Pressure': [f"{s}/{d}" for s, d in zip(systolic, diastolic)],
        'Heart Rate': rng.randint(65, 86, n),
        'Daily Steps': rng.randint(3000, 10001, n),
        'Sleep Disorder': disorder,
    })


@pytest.fixture
def raw_survey():
    """Survey with raw headers, as it appears in the CSV."""
    return make_survey()


@pytest.fixture
def survey(raw_survey):
    """Survey with normalised (underscored) headers."""
    df = raw_survey.copy()
    df.columns = [col.replace(' ', '_') for col in df.columns]
    return df


@pytest.fixture
def survey_csv(tmp_path, raw_survey):
    """Path to the survey written as CSV."""
    path = tmp_path / "sleep_survey.csv"
    raw_survey.to_csv(path, index=False)
    return path
