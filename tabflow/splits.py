"""
Train/test, train/validation/test and v-fold partitions of a data frame.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype
from sklearn.model_selection import (
    KFold,
    RepeatedKFold,
    RepeatedStratifiedKFold,
    StratifiedKFold,
    train_test_split,
)

logger = logging.getLogger(__name__)

POOLED = "__pooled__"


@dataclass
class Split:
    """Positional partition of `data` into an analysis (in) and assessment (out) set."""
    data: pd.DataFrame
    in_id: np.ndarray
    out_id: np.ndarray
    id: str = "Resample1"
    id2: Optional[str] = None

    def __post_init__(self):
        self.in_id = np.sort(np.asarray(self.in_id, dtype=int))
        self.out_id = np.sort(np.asarray(self.out_id, dtype=int))
        if np.intersect1d(self.in_id, self.out_id).size:
            raise ValueError("Analysis and assessment rows must be disjoint.")

    def analysis(self) -> pd.DataFrame:
        return self.data.iloc[self.in_id]

    def assessment(self) -> pd.DataFrame:
        return self.data.iloc[self.out_id]

    @property
    def label(self) -> str:
        return f"{self.id}/{self.id2}" if self.id2 else self.id

    def __repr__(self) -> str:
        return f"<Split {self.label}: analysis={len(self.in_id)} assessment={len(self.out_id)} total={len(self.data)}>"


@dataclass
class ValidationSplit:
    """Three-way partition: training, validation and testing rows."""
    data: pd.DataFrame
    train_id: np.ndarray
    val_id: np.ndarray
    test_id: np.ndarray

    def training(self) -> pd.DataFrame:
        return self.data.iloc[np.sort(self.train_id)]

    def validation(self) -> pd.DataFrame:
        return self.data.iloc[np.sort(self.val_id)]

    def testing(self) -> pd.DataFrame:
        return self.data.iloc[np.sort(self.test_id)]

    def as_split(self) -> Split:
        """Training vs validation, for fitting on training and assessing on validation."""
        return Split(self.data, self.train_id, self.val_id, id="validation")


@dataclass
class Resamples:
    splits: List[Split]
    v: int
    repeats: int = 1
    strata: Optional[str] = None
    seed: Optional[int] = None
    extra: dict = field(default_factory=dict)

    def __iter__(self) -> Iterator[Split]:
        return iter(self.splits)

    def __len__(self) -> int:
        return len(self.splits)

    def __getitem__(self, i: int) -> Split:
        return self.splits[i]

    @property
    def ids(self) -> List[str]:
        return [s.label for s in self.splits]

    def __repr__(self) -> str:
        strata = f", strata='{self.strata}'" if self.strata else ""
        return f"<Resamples {self.v}-fold x {self.repeats}{strata}: {len(self)} splits>"


def training(split: Split) -> pd.DataFrame:
    return split.analysis()


def testing(split: Split) -> pd.DataFrame:
    return split.assessment()


def _strata_labels(data: pd.DataFrame, strata: Optional[str], breaks: int, pool: float) -> Optional[np.ndarray]:
    """
    Turns the strata column into group labels: numeric columns are binned into
    quantiles and groups smaller than `pool` of the rows are pooled.
    """
    if strata is None:
        return None
    if strata not in data.columns:
        raise ValueError(f"Strata column '{strata}' not found in data.")

    values = data[strata]
    n = len(values)
    if is_numeric_dtype(values) and not is_bool_dtype(values) and values.nunique() > breaks:
        labels = pd.qcut(values, q=breaks, labels=False, duplicates="drop").astype("string")
    else:
        labels = values.astype("string")
    labels = labels.fillna("__missing__")

    counts = labels.value_counts()
    small = counts[counts < pool * n].index
    if len(small) > 1:
        labels = labels.where(~labels.isin(small), POOLED)
        logger.info(f"Pooled {len(small)} small strata of '{strata}' into one group.")
    counts = labels.value_counts()
    if counts.min() < 2 and len(counts) > 1:
        # still too small to split: fold the smallest group into the largest
        smallest, largest = counts.idxmin(), counts.idxmax()
        labels = labels.where(labels != smallest, largest)
        logger.warning(f"Stratum '{smallest}' of '{strata}' has too few rows; merged into '{largest}'.")

    if labels.nunique() < 2:
        logger.warning(f"Strata column '{strata}' has a single group; splitting without stratification.")
        return None
    return labels.to_numpy()


def initial_split(data: pd.DataFrame, prop: float = 0.75, strata: Optional[str] = None,
                  breaks: int = 4, pool: float = 0.1, seed: Optional[int] = None) -> Split:
    """Splits rows into training (floor(n * prop) rows) and testing sets."""
    if not 0 < prop < 1:
        raise ValueError(f"prop must be in (0, 1), got {prop}")
    n = len(data)
    n_train = math.floor(n * prop)
    if n_train < 1 or n - n_train < 1:
        raise ValueError(f"Cannot split {n} rows with prop={prop}: one side would be empty.")

    labels = _strata_labels(data, strata, breaks, pool)
    in_id, out_id = train_test_split(
        np.arange(n), train_size=n_train, stratify=labels, random_state=seed
    )
    split = Split(data, in_id, out_id)
    logger.info(f"Initial split: training={len(split.in_id)}, testing={len(split.out_id)}"
                f"{f', strata={strata}' if labels is not None else ''}")
    return split


def initial_validation_split(data: pd.DataFrame, prop: Tuple[float, float] = (0.6, 0.2),
                             strata: Optional[str] = None, breaks: int = 4, pool: float = 0.1,
                             seed: Optional[int] = None) -> ValidationSplit:
    """Splits rows into training, validation and testing sets; prop gives the first two shares."""
    train_prop, val_prop = prop
    if train_prop <= 0 or val_prop <= 0 or train_prop + val_prop >= 1:
        raise ValueError(f"prop must be two positive shares summing to less than 1, got {prop}")
    n = len(data)
    n_train = math.floor(n * train_prop)
    n_val = math.floor(n * val_prop)
    if n_train < 1 or n_val < 1 or n - n_train - n_val < 1:
        raise ValueError(f"Cannot split {n} rows with prop={prop}: one side would be empty.")

    labels = _strata_labels(data, strata, breaks, pool)
    train_id, rest_id = train_test_split(
        np.arange(n), train_size=n_train, stratify=labels, random_state=seed
    )
    rest_labels = _strata_labels(data.iloc[rest_id], strata, breaks, pool) if labels is not None else None
    val_id, test_id = train_test_split(
        rest_id, train_size=n_val, stratify=rest_labels, random_state=seed
    )
    logger.info(f"Validation split: training={len(train_id)}, validation={len(val_id)}, testing={len(test_id)}")
    return ValidationSplit(data, np.sort(train_id), np.sort(val_id), np.sort(test_id))


def vfold_cv(data: pd.DataFrame, v: int = 10, repeats: int = 1, strata: Optional[str] = None,
             breaks: int = 4, pool: float = 0.1, seed: Optional[int] = None) -> Resamples:
    """V-fold cross-validation: each row is assessed exactly once per repeat."""
    n = len(data)
    if v < 2 or v > n:
        raise ValueError(f"v must be between 2 and the number of rows ({n}), got {v}")
    if repeats < 1:
        raise ValueError(f"repeats must be at least 1, got {repeats}")

    labels = _strata_labels(data, strata, breaks, pool)
    if repeats == 1:
        splitter = StratifiedKFold if labels is not None else KFold
        cv = splitter(n_splits=v, shuffle=True, random_state=seed)
    else:
        splitter = RepeatedStratifiedKFold if labels is not None else RepeatedKFold
        cv = splitter(n_splits=v, n_repeats=repeats, random_state=seed)

    width = len(str(v))
    splits = []
    y = labels if labels is not None else np.zeros(n)
    for i, (in_id, out_id) in enumerate(cv.split(np.zeros((n, 1)), y)):
        fold = f"Fold{i % v + 1:0{width}d}"
        if repeats > 1:
            splits.append(Split(data, in_id, out_id, id=f"Repeat{i // v + 1}", id2=fold))
        else:
            splits.append(Split(data, in_id, out_id, id=fold))

    logger.info(f"Created {len(splits)} resamples ({v}-fold x {repeats})")
    return Resamples(splits, v=v, repeats=repeats, strata=strata if labels is not None else None, seed=seed)
