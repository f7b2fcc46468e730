"""
Data Splitting Module
=====================

Stratified train / validation / test partitioning.

Each stratum is shuffled with a seeded RandomState and cut independently, so
every level of the stratification column keeps (to the nearest row) the
requested proportions in each partition.
"""

import logging
from typing import Dict, Any, Tuple

import numpy as np
import pandas as pd
from sklearn.utils import check_random_state

from .exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

PARTITIONS = ('train', 'validation', 'test')

# Added to products before flooring so 0.7 * 20 does not land on 13.999...
_EPS = 1e-9


class DataSplit:
    """
    Three disjoint partitions of one table plus the row-to-partition mapping.

    Attributes:
        train, validation, test: Row subsets in their original order
        stratify_col: Column the split was stratified on
        random_state: Seed used for shuffling
    """

    def __init__(
        self,
        data: pd.DataFrame,
        assignment: np.ndarray,
        stratify_col: str,
        random_state: Any
    ):
        self.stratify_col = stratify_col
        self.random_state = random_state
        self._assignment = pd.Series(assignment, index=data.index, name='Partition')
        self._labels = data[stratify_col]

        self.train = data[assignment == 'train']
        self.validation = data[assignment == 'validation']
        self.test = data[assignment == 'test']
        self._train_validation = data[assignment != 'test']

    def membership(self) -> pd.Series:
        """Partition name for each row of the input table."""
        return self._assignment.copy()

    def train_validation(self) -> pd.DataFrame:
        """Training and validation rows together, in input order."""
        return self._train_validation

    def summary(self) -> pd.DataFrame:
        """Row counts per stratum and partition."""
        table = pd.crosstab(self._labels.fillna('<missing>'), self._assignment)
        return table.reindex(columns=list(PARTITIONS), fill_value=0)

    def __len__(self) -> int:
        return len(self._assignment)

    def __repr__(self) -> str:
        return (f"DataSplit(train={len(self.train)}, validation={len(self.validation)}, "
                f"test={len(self.test)}, stratify_col={self.stratify_col!r})")


def allocate_stratum(
    n: int,
    train_frac: float,
    val_frac: float,
    test_frac: float,
    require_all_partitions: bool = True,
    label: Any = None
) -> Tuple[int, int, int]:
    """
    Row counts (train, validation, test) for a stratum of n rows.

    Training gets floor(n * train_frac); the remainder is shared between
    validation and test in proportion to their fractions, validation taking
    the floor. With require_all_partitions every partition gets at least one
    row.

    Raises:
        InsufficientDataError: If require_all_partitions and n < 3
    """
    if require_all_partitions and n < len(PARTITIONS):
        raise InsufficientDataError(
            f"Stratum has {n} rows; at least {len(PARTITIONS)} are needed to "
            f"place one row in every partition",
            value=label
        )

    n_train = int(np.floor(n * train_frac + _EPS))
    if require_all_partitions:
        n_train = min(max(n_train, 1), n - 2)

    n_heldout = n - n_train
    n_val = int(np.floor(n_heldout * val_frac / (val_frac + test_frac) + _EPS))
    if require_all_partitions:
        n_val = min(max(n_val, 1), n_heldout - 1)
    n_test = n_heldout - n_val

    return n_train, n_val, n_test


def stratified_split(
    df: pd.DataFrame,
    stratify_col: str = 'Sleep_Disorder',
    train_frac: float = 0.70,
    val_frac: float = 0.15,
    test_frac: float = 0.15,
    random_state: Any = 123,
    require_all_partitions: bool = True
) -> DataSplit:
    """
    Split a table into train, validation and test sets stratified on a column.

    Strata are processed in sorted label order (missing labels form their own
    stratum, processed last) so the same seed always gives the same split.

    Args:
        df: Enriched table
        stratify_col: Categorical column to stratify on
        train_frac: Fraction of each stratum for training
        val_frac: Fraction of each stratum for validation
        test_frac: Fraction of each stratum for testing
        random_state: Seed or RandomState for shuffling
        require_all_partitions: Every stratum must reach every partition

    Returns:
        DataSplit with the three partitions

    Raises:
        ValueError: If the fractions are not positive or do not sum to 1
        InsufficientDataError: If a stratum is too small
    """
    fractions = (train_frac, val_frac, test_frac)
    if min(fractions) <= 0 or not np.isclose(sum(fractions), 1.0):
        raise ValueError(f"Split fractions must be positive and sum to 1, got {fractions}")
    if stratify_col not in df.columns:
        raise InsufficientDataError(
            f"Stratification column {stratify_col!r} not found",
            column=stratify_col
        )

    rng = check_random_state(random_state)
    assignment = np.empty(len(df), dtype=object)
    positions = np.arange(len(df))

    labels = df[stratify_col]
    strata = pd.Series(positions, index=df.index).groupby(labels, dropna=False, sort=True)

    for label, members in strata:
        members = members.to_numpy()
        n_train, n_val, n_test = allocate_stratum(
            len(members), train_frac, val_frac, test_frac,
            require_all_partitions=require_all_partitions,
            label=label
        )
        shuffled = rng.permutation(members)
        assignment[shuffled[:n_train]] = 'train'
        assignment[shuffled[n_train:n_train + n_val]] = 'validation'
        assignment[shuffled[n_train + n_val:]] = 'test'

        logger.info(f"  Stratum {label!r}: {len(members)} rows -> "
                    f"{n_train} train / {n_val} validation / {n_test} test")

    split = DataSplit(df, assignment, stratify_col, random_state)

    logger.info(
        f"Stratified split on {stratify_col}: {len(split.train)} train, "
        f"{len(split.validation)} validation, {len(split.test)} test samples"
    )

    return split


def split_pipeline(df: pd.DataFrame, config: Dict[str, Any]) -> DataSplit:
    """Run stratified_split with the 'split' section of the configuration."""
    split_config = config.get('split', {})

    logger.info("=" * 60)
    logger.info("STARTING STRATIFIED SPLIT")
    logger.info("=" * 60)

    split = stratified_split(
        df,
        stratify_col=split_config.get('stratify_col', 'Sleep_Disorder'),
        train_frac=split_config.get('train_frac', 0.70),
        val_frac=split_config.get('val_frac', 0.15),
        test_frac=split_config.get('test_frac', 0.15),
        random_state=split_config.get('random_state', 123),
        require_all_partitions=split_config.get('require_all_partitions', True)
    )

    return split


def print_split_summary(split: DataSplit) -> None:
    """
    Print per-stratum partition counts.

    Args:
        split: Result of stratified_split
    """
    print("\n" + "=" * 50)
    print("SPLIT SUMMARY")
    print("=" * 50)
    print(f"Stratified on: {split.stratify_col} (seed {split.random_state})")
    print(f"Train: {len(split.train)}  Validation: {len(split.validation)}  Test: {len(split.test)}")
    print()
    print(split.summary().to_string())
    print("=" * 50 + "\n")
