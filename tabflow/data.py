"""
Dataset loading and synthetic example data.
"""

import logging
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

READERS = {
    ".csv": pd.read_csv,
    ".tsv": lambda path, **kw: pd.read_csv(path, sep="\t", **kw),
    ".xls": pd.read_excel,
    ".xlsx": pd.read_excel,
    ".parquet": pd.read_parquet,
    ".json": pd.read_json,
}


def read_dataset(path: Union[str, Path], **kwargs) -> pd.DataFrame:
    """Loads a tabular file, picking the pandas reader from the file suffix."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Dataset not found: {path}")
    reader = READERS.get(path.suffix.lower())
    if reader is None:
        raise ValueError(f"Unsupported file type '{path.suffix}'. Supported: {sorted(READERS)}")

    data = reader(path, **kwargs)
    logger.info(f"Loaded {len(data)} records with {len(data.columns)} columns from {path}")
    return data


def as_outcome(values: Union[pd.Series, Sequence], levels: Optional[Sequence] = None) -> pd.Series:
    """
    Coerces an outcome to a categorical Series with a fixed level order.
    Levels default to the sorted unique non-missing values; an existing
    categorical keeps its own levels, including unobserved ones.
    """
    series = values if isinstance(values, pd.Series) else pd.Series(values)
    if levels is None:
        if isinstance(series.dtype, pd.CategoricalDtype):
            return series
        levels = sorted(series.dropna().unique().tolist())
    unknown = set(series.dropna().unique()) - set(levels)
    if unknown:
        raise ValueError(f"Outcome values {sorted(map(str, unknown))} are not in levels {list(levels)}")
    return pd.Series(pd.Categorical(series, categories=list(levels)), index=series.index, name=series.name)


def make_classification_frame(n: int = 1000, n_noise: int = 2, seed: int = 42,
                              event_rate: float = 0.35) -> pd.DataFrame:
    """
    Synthetic two-class dataset shaped like an image-segmentation quality table.

    The outcome 'class' has levels 'PS' (poorly segmented, the event) and 'WS'.
    Columns are chosen to exercise common preprocessing: 'perimeter' tracks 'area'
    and 'intensity_ch3' tracks 'intensity_ch2' (high correlation), 'area' and
    'skew_ratio' are positive and right-skewed (log transforms), 'constant_flag'
    has zero variance and 'plate' is nominal.
    """
    if not 0 < event_rate < 1:
        raise ValueError(f"event_rate must be in (0, 1), got {event_rate}")
    rng = np.random.default_rng(seed)

    is_event = rng.random(n) < event_rate
    shift = is_event.astype(float)

    area = np.exp(5 + 0.5 * rng.normal(size=n) + 0.4 * shift)
    intensity_ch2 = rng.normal(size=n) - 0.7 * shift

    data = pd.DataFrame({
        "cell_id": [f"cell_{i:05d}" for i in range(n)],
        "area": area,
        "perimeter": 4 * np.sqrt(area) + rng.normal(scale=0.5, size=n),
        "intensity_ch1": rng.normal(size=n) + 1.0 * shift,
        "intensity_ch2": intensity_ch2,
        "intensity_ch3": 0.95 * intensity_ch2 + rng.normal(scale=0.1, size=n),
        "skew_ratio": rng.exponential(scale=1 + shift, size=n) + 0.01,
        "constant_flag": np.ones(n),
        "plate": rng.choice(["A", "B", "C", "D"], size=n, p=[0.4, 0.3, 0.2, 0.1]),
    })
    for i in range(n_noise):
        data[f"noise_{i + 1}"] = rng.normal(size=n)

    data["class"] = pd.Categorical(np.where(is_event, "PS", "WS"), categories=["PS", "WS"])
    return data
