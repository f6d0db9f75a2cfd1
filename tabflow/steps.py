"""
Preprocessing steps for recipes.

Each step selects its columns when it is prepped on training data, learns
whatever it needs from them and applies the same transformation to any
later data in `bake`.
"""

import logging
import math
import uuid
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from imblearn.over_sampling import ADASYN
from sklearn.feature_selection import mutual_info_classif, mutual_info_regression
from sklearn.impute import KNNImputer
from sklearn.preprocessing import MinMaxScaler, OneHotEncoder, StandardScaler

from .selectors import OUTCOME, PREDICTOR, Roles, Term, all_outcomes, is_nominal, is_numeric, resolve

logger = logging.getLogger(__name__)


class Step:
    operation = "step"
    #: role given to columns a step creates
    new_role = PREDICTOR

    def __init__(self, *terms: Term, skip: bool = False, id: Optional[str] = None):
        self.terms = terms
        self.skip = skip
        self.id = id or f"{self.operation}_{uuid.uuid4().hex[:5]}"
        self.trained = False
        self.columns: List[str] = []

    def prep(self, data: pd.DataFrame, roles: Roles) -> "Step":
        """Resolves the selected columns on `data` and learns the step's parameters."""
        self.columns = resolve(self.terms, data, roles)
        self._fit(data, roles)
        self.trained = True
        return self

    def bake(self, data: pd.DataFrame) -> pd.DataFrame:
        if not self.trained:
            raise RuntimeError(f"Step '{self.id}' has not been prepped. Call prep() first.")
        missing = [col for col in self.columns if col not in data.columns]
        if missing:
            raise ValueError(f"Step '{self.id}': columns missing from new data: {missing}")
        return self._transform(data.copy())

    def tidy(self) -> pd.DataFrame:
        terms = self.columns if self.trained else [repr(t) for t in self.terms]
        return pd.DataFrame({"terms": terms, "id": self.id})

    def _fit(self, data: pd.DataFrame, roles: Roles) -> None:
        pass

    def _transform(self, data: pd.DataFrame) -> pd.DataFrame:
        return data

    def _require(self, data: pd.DataFrame, check, kind: str) -> None:
        wrong = [col for col in self.columns if not check(data[col])]
        if wrong:
            raise ValueError(f"Step '{self.operation}' requires {kind} columns; got non-{kind}: {wrong}")

    def __repr__(self) -> str:
        state = "trained" if self.trained else "untrained"
        cols = self.columns if self.trained else list(self.terms)
        return f"<{type(self).__name__} {cols} [{state}{', skip' if self.skip else ''}]>"


class _RemovalStep(Step):
    """Base for steps that learn a set of columns to drop."""

    def __init__(self, *terms: Term, **kwargs):
        super().__init__(*terms, **kwargs)
        self.removed: List[str] = []

    def bake(self, data: pd.DataFrame) -> pd.DataFrame:
        if not self.trained:
            raise RuntimeError(f"Step '{self.id}' has not been prepped. Call prep() first.")
        return data.drop(columns=self.removed, errors="ignore")

    def tidy(self) -> pd.DataFrame:
        return pd.DataFrame({"terms": self.removed, "id": self.id})


class StepRm(_RemovalStep):
    operation = "rm"

    def _fit(self, data, roles):
        self.removed = list(self.columns)
        logger.info(f"Step rm: dropping {self.removed}")


class StepZv(_RemovalStep):
    """Removes columns with fewer than two distinct non-missing values."""
    operation = "zv"

    def _fit(self, data, roles):
        self.removed = [col for col in self.columns if data[col].nunique(dropna=True) < 2]
        logger.info(f"Step zv: removed {self.removed if self.removed else 'None'}")


class StepNzv(_RemovalStep):
    """
    Removes near-zero-variance columns: those where the most common value is
    more than `freq_cut` times as frequent as the second and the share of
    distinct values is at most `unique_cut` percent.
    """
    operation = "nzv"

    def __init__(self, *terms: Term, freq_cut: float = 95 / 5, unique_cut: float = 10, **kwargs):
        super().__init__(*terms, **kwargs)
        self.freq_cut = freq_cut
        self.unique_cut = unique_cut

    def _fit(self, data, roles):
        removed = []
        for col in self.columns:
            counts = data[col].value_counts(dropna=True)
            if len(counts) < 2:
                removed.append(col)
                continue
            freq_ratio = counts.iloc[0] / counts.iloc[1]
            pct_unique = 100 * len(counts) / len(data)
            if freq_ratio > self.freq_cut and pct_unique <= self.unique_cut:
                removed.append(col)
        self.removed = removed
        logger.info(f"Step nzv: removed {self.removed if self.removed else 'None'}")


class StepCorr(_RemovalStep):
    """
    Removes columns until no pair has an absolute correlation above `threshold`.
    For the most correlated pair, the member with the larger mean absolute
    correlation to the remaining columns is dropped (the later one on ties).
    """
    operation = "corr"

    def __init__(self, *terms: Term, threshold: float = 0.9, method: str = "pearson", **kwargs):
        super().__init__(*terms, **kwargs)
        if not 0 <= threshold <= 1:
            raise ValueError(f"threshold must be in [0, 1], got {threshold}")
        if method not in ("pearson", "spearman", "kendall"):
            raise ValueError(f"Unknown correlation method '{method}'")
        self.threshold = threshold
        self.method = method

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        if len(self.columns) < 2:
            self.removed = []
            return

        corr = data[self.columns].corr(method=self.method).abs()
        if corr.isna().to_numpy().any():
            undefined = corr.columns[corr.isna().all()].tolist()
            logger.warning(f"Step corr: correlation undefined for {undefined}; treating as 0.")
        corr = corr.fillna(0.0)
        values = corr.to_numpy(copy=True)
        np.fill_diagonal(values, 0.0)
        corr = pd.DataFrame(values, index=corr.index, columns=corr.columns)

        remaining = list(self.columns)
        removed = []
        while len(remaining) > 1:
            sub = corr.loc[remaining, remaining].to_numpy()
            if sub.max() <= self.threshold:
                break
            i, j = np.unravel_index(np.argmax(sub), sub.shape)
            first, second = sorted((i, j))
            mean_corr = sub.sum(axis=1) / (len(remaining) - 1)
            drop = remaining[first] if mean_corr[first] > mean_corr[second] else remaining[second]
            remaining.remove(drop)
            removed.append(drop)

        self.removed = removed
        logger.info(f"Step corr (threshold={self.threshold}): removed {removed if removed else 'None'}")


class StepDummy(Step):
    """
    Converts nominal columns into indicator columns named `<column>_<level>`.
    The first level is dropped unless `one_hot`; levels unseen during prep
    (and missing values) encode as all zeros.
    """
    operation = "dummy"

    def __init__(self, *terms: Term, one_hot: bool = False, **kwargs):
        super().__init__(*terms, **kwargs)
        self.one_hot = one_hot
        self.encoder: Optional[OneHotEncoder] = None
        self.feature_names: List[str] = []

    @staticmethod
    def _as_text(frame: pd.DataFrame) -> pd.DataFrame:
        return frame.apply(lambda s: s.astype(str).where(s.notna(), np.nan)).astype(object)

    def _fit(self, data, roles):
        self._require(data, is_nominal, "nominal")
        if not self.columns:
            return
        categories = []
        for col in self.columns:
            series = data[col]
            if isinstance(series.dtype, pd.CategoricalDtype):
                categories.append([str(level) for level in series.cat.categories])
            else:
                categories.append(sorted(series.dropna().astype(str).unique().tolist()))

        self.encoder = OneHotEncoder(
            categories=categories,
            sparse_output=False,
            drop=None if self.one_hot else "first",
            handle_unknown="ignore",
        )
        self.encoder.fit(self._as_text(data[self.columns]))
        self.feature_names = list(self.encoder.get_feature_names_out(self.columns))
        logger.info(f"Step dummy: encoded {len(self.columns)} columns into {len(self.feature_names)} indicators")

    def _transform(self, data):
        if self.encoder is None:
            return data
        encoded = self.encoder.transform(self._as_text(data[self.columns]))
        encoded_df = pd.DataFrame(encoded, columns=self.feature_names, index=data.index)
        return pd.concat([data.drop(columns=self.columns), encoded_df], axis=1)

    def tidy(self):
        rows = []
        if self.encoder is not None:
            for col, cats in zip(self.columns, self.encoder.categories_):
                rows.extend({"terms": col, "columns": str(level), "id": self.id} for level in cats)
        return pd.DataFrame(rows, columns=["terms", "columns", "id"])


class StepLog(Step):
    operation = "log"

    def __init__(self, *terms: Term, base: float = math.e, offset: float = 0.0, signed: bool = False, **kwargs):
        super().__init__(*terms, **kwargs)
        if base <= 0 or base == 1:
            raise ValueError(f"base must be positive and not 1, got {base}")
        self.base = base
        self.offset = offset
        self.signed = signed

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")

    def _transform(self, data):
        log_base = np.log(self.base)
        for col in self.columns:
            x = data[col].astype(float)
            with np.errstate(divide="ignore", invalid="ignore"):
                if self.signed:
                    values = np.where(np.abs(x) >= 1, np.sign(x) * np.log(np.abs(x)) / log_base, 0.0)
                    data[col] = pd.Series(values, index=data.index).where(x.notna())
                else:
                    shifted = x + self.offset
                    if (shifted <= 0).any():
                        logger.warning(f"Step log: '{col}' has {(shifted <= 0).sum()} non-positive values; "
                                       f"results will be -inf or NaN")
                    data[col] = np.log(shifted) / log_base
        return data

    def tidy(self):
        return pd.DataFrame({"terms": self.columns, "base": self.base, "id": self.id})


class StepCenter(Step):
    operation = "center"

    def __init__(self, *terms: Term, **kwargs):
        super().__init__(*terms, **kwargs)
        self.means: Dict[str, float] = {}

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        self.means = data[self.columns].mean().to_dict()

    def _transform(self, data):
        for col, mean in self.means.items():
            data[col] = data[col] - mean
        return data

    def tidy(self):
        return pd.DataFrame({"terms": list(self.means), "value": list(self.means.values()), "id": self.id})


class StepScale(Step):
    """Divides by the training standard deviation (ddof=1)."""
    operation = "scale"

    def __init__(self, *terms: Term, **kwargs):
        super().__init__(*terms, **kwargs)
        self.sds: Dict[str, float] = {}

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        sds = data[self.columns].std(ddof=1)
        zero = sds[(sds == 0) | sds.isna()].index.tolist()
        if zero:
            logger.warning(f"Step scale: zero standard deviation for {zero}; left unscaled.")
            sds[zero] = 1.0
        self.sds = sds.to_dict()

    def _transform(self, data):
        for col, sd in self.sds.items():
            data[col] = data[col] / sd
        return data

    def tidy(self):
        return pd.DataFrame({"terms": list(self.sds), "value": list(self.sds.values()), "id": self.id})


class _ScalerStep(Step):
    def __init__(self, *terms: Term, **kwargs):
        super().__init__(*terms, **kwargs)
        self.scaler = None

    def _make_scaler(self):
        raise NotImplementedError

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        if not self.columns:
            return
        constant = [col for col in self.columns if data[col].nunique(dropna=True) < 2]
        if constant:
            logger.warning(f"Step {self.operation}: constant columns {constant}; left unscaled.")
        self.scaler = self._make_scaler().fit(data[self.columns])

    def _transform(self, data):
        if self.scaler is not None:
            data[self.columns] = self.scaler.transform(data[self.columns])
        return data


class StepNormalize(_ScalerStep):
    """Centers to mean zero and scales to unit variance."""
    operation = "normalize"

    def _make_scaler(self):
        return StandardScaler()

    def tidy(self):
        if self.scaler is None:
            return super().tidy()
        return pd.DataFrame({
            "terms": self.columns * 2,
            "statistic": ["mean"] * len(self.columns) + ["sd"] * len(self.columns),
            "value": list(self.scaler.mean_) + list(self.scaler.scale_),
            "id": self.id,
        })


class StepRange(_ScalerStep):
    """Rescales to [min, max] using the training range; values outside it are clipped."""
    operation = "range"

    def __init__(self, *terms: Term, min: float = 0.0, max: float = 1.0, **kwargs):
        super().__init__(*terms, **kwargs)
        if min >= max:
            raise ValueError(f"min must be below max, got min={min}, max={max}")
        self.min = min
        self.max = max

    def _make_scaler(self):
        return MinMaxScaler(feature_range=(self.min, self.max), clip=True)


class _ImputeStep(Step):
    def __init__(self, *terms: Term, **kwargs):
        super().__init__(*terms, **kwargs)
        self.values: Dict[str, object] = {}

    def _transform(self, data):
        for col, value in self.values.items():
            if data[col].isna().any():
                data[col] = data[col].fillna(value)
        return data

    def tidy(self):
        return pd.DataFrame({"terms": list(self.values), "value": list(self.values.values()), "id": self.id})


class StepImputeMean(_ImputeStep):
    operation = "impute_mean"

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        self.values = data[self.columns].mean().dropna().to_dict()


class StepImputeMedian(_ImputeStep):
    operation = "impute_median"

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        self.values = data[self.columns].median().dropna().to_dict()


class StepImputeMode(_ImputeStep):
    operation = "impute_mode"

    def _fit(self, data, roles):
        values = {}
        for col in self.columns:
            counts = data[col].value_counts(dropna=True)
            if counts.empty:
                logger.warning(f"Step impute_mode: '{col}' has no observed values; left as is.")
                continue
            values[col] = counts.idxmax()
        self.values = values


class StepImputeKnn(Step):
    """Imputes numeric columns from the `neighbors` nearest training rows."""
    operation = "impute_knn"

    def __init__(self, *terms: Term, neighbors: int = 5, **kwargs):
        super().__init__(*terms, **kwargs)
        self.neighbors = neighbors
        self.imputer: Optional[KNNImputer] = None

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        if self.columns:
            self.imputer = KNNImputer(n_neighbors=self.neighbors, keep_empty_features=True)
            self.imputer.fit(data[self.columns])

    def _transform(self, data):
        if self.imputer is not None:
            data[self.columns] = self.imputer.transform(data[self.columns])
        return data


class StepOther(Step):
    """
    Pools infrequent levels of nominal columns into `other`. A threshold
    below 1 is a proportion of rows, otherwise a minimum count. Levels
    first seen at bake time are pooled too.
    """
    operation = "other"

    def __init__(self, *terms: Term, threshold: float = 0.05, other: str = "other", **kwargs):
        super().__init__(*terms, **kwargs)
        if threshold <= 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        self.threshold = threshold
        self.other = other
        self.retained: Dict[str, List[str]] = {}

    def _fit(self, data, roles):
        self._require(data, is_nominal, "nominal")
        for col in self.columns:
            counts = data[col].astype(object).value_counts(dropna=True)
            if self.other in counts.index:
                raise ValueError(f"Step other: level '{self.other}' already exists in '{col}'")
            limit = self.threshold * counts.sum() if self.threshold < 1 else self.threshold
            kept = counts[counts >= limit].index.tolist()
            self.retained[col] = kept
            pooled = len(counts) - len(kept)
            if pooled:
                logger.info(f"Step other: pooling {pooled} rare levels of '{col}' into '{self.other}'")

    def _transform(self, data):
        for col, kept in self.retained.items():
            values = data[col].astype(object)
            pooled = values.where(values.isin(kept) | values.isna(), self.other)
            if isinstance(data[col].dtype, pd.CategoricalDtype):
                pooled = pd.Categorical(pooled, categories=kept + [self.other])
            data[col] = pooled
        return data

    def tidy(self):
        rows = [{"terms": col, "retained": level, "id": self.id}
                for col, kept in self.retained.items() for level in kept]
        return pd.DataFrame(rows, columns=["terms", "retained", "id"])


class StepSelectMutualInfo(_RemovalStep):
    """Keeps the `top_n` selected columns with the highest mutual information with the outcome."""
    operation = "select_mutual_info"

    def __init__(self, *terms: Term, top_n: int = 15, seed: Optional[int] = None, **kwargs):
        super().__init__(*terms, **kwargs)
        if top_n < 1:
            raise ValueError(f"top_n must be at least 1, got {top_n}")
        self.top_n = top_n
        self.seed = seed
        self.scores: Dict[str, float] = {}

    def _fit(self, data, roles):
        self._require(data, is_numeric, "numeric")
        outcome = _single_outcome(roles, data, self.operation)
        X = data[self.columns]
        if X.isna().any().any():
            raise ValueError("Step select_mutual_info: selected columns contain missing values.")
        if not self.columns:
            return
        y = data[outcome]
        if is_nominal(y):
            scores = mutual_info_classif(X, y.astype(str), random_state=self.seed)
        else:
            scores = mutual_info_regression(X, y, random_state=self.seed)
        ranked = pd.Series(scores, index=self.columns).sort_values(ascending=False, kind="stable")
        self.scores = ranked.to_dict()
        keep = ranked.head(self.top_n).index
        self.removed = [col for col in self.columns if col not in keep]
        logger.info(f"Step select_mutual_info: kept {list(keep)}")

    def tidy(self):
        return pd.DataFrame({"terms": list(self.scores), "score": list(self.scores.values()),
                             "removed": [col in self.removed for col in self.scores], "id": self.id})


class StepAdasyn(Step):
    """
    Oversamples minority outcome classes with ADASYN until each has at least
    `over_ratio` times the majority count. Runs only while prepping (skip=True)
    so new data is never resampled. Predictors must be numeric and complete;
    columns without the predictor role are left missing on synthetic rows.
    """
    operation = "adasyn"

    def __init__(self, *terms: Term, over_ratio: float = 1.0, neighbors: int = 5,
                 seed: Optional[int] = None, skip: bool = True, **kwargs):
        super().__init__(*(terms or (all_outcomes(),)), skip=skip, **kwargs)
        if not 0 < over_ratio <= 1:
            raise ValueError(f"over_ratio must be in (0, 1], got {over_ratio}")
        self.over_ratio = over_ratio
        self.neighbors = neighbors
        self.seed = seed
        self.predictors: List[str] = []

    def _fit(self, data, roles):
        if len(self.columns) != 1:
            raise ValueError(f"Step adasyn needs exactly one outcome column, got {self.columns}")
        self._require(data, is_nominal, "nominal")
        self.predictors = [col for col in data.columns if roles.get(col) == PREDICTOR]

    def _transform(self, data):
        outcome = self.columns[0]
        X = data[self.predictors]
        wrong = [col for col in self.predictors if not is_numeric(X[col])]
        if wrong:
            raise ValueError(f"Step adasyn requires numeric predictors; got non-numeric: {wrong}")
        if X.isna().any().any():
            raise ValueError("Step adasyn: predictors contain missing values; impute them first.")

        y = data[outcome]
        counts = y.value_counts()
        counts = counts[counts > 0]
        target = math.floor(self.over_ratio * counts.max())
        strategy = {str(level): target for level, count in counts.items() if count < target}
        if not strategy:
            logger.info("Step adasyn: classes already balanced; nothing to generate.")
            return data

        sampler = ADASYN(sampling_strategy=strategy, n_neighbors=self.neighbors, random_state=self.seed)
        X_res, y_res = sampler.fit_resample(X, y.astype(str).to_numpy(dtype=object))
        n_new = len(X_res) - len(X)

        synthetic = pd.DataFrame(np.asarray(X_res)[len(X):], columns=self.predictors)
        synthetic[outcome] = np.asarray(y_res)[len(X):]
        result = pd.concat([data, synthetic], axis=0, ignore_index=True)[list(data.columns)]

        if isinstance(y.dtype, pd.CategoricalDtype):
            levels = list(y.cat.categories)
            by_text = {str(level): level for level in levels}
            result[outcome] = pd.Categorical(result[outcome].map(lambda v: by_text.get(str(v), v)), categories=levels)
        logger.info(f"Step adasyn: generated {n_new} synthetic rows. Original size: {len(X)}, New size: {len(result)}")
        return result


def _single_outcome(roles: Roles, data: pd.DataFrame, operation: str) -> str:
    outcomes = [col for col, role in roles.items() if role == OUTCOME and col in data.columns]
    if len(outcomes) != 1:
        raise ValueError(f"Step {operation} needs exactly one outcome column, found {outcomes}")
    return outcomes[0]
