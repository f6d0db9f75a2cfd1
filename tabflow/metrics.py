"""
Performance metrics for class predictions, class probabilities and
numeric predictions.

Every metric is called as ``metric(data, truth, estimate)`` (or with one
probability column per outcome level for probability metrics) and returns a
one-row frame with ``metric``, ``estimator`` and ``estimate`` columns.
``metric.vec(...)`` returns the bare number. For two-level outcomes the
event (positive class) is the first level unless ``event_level="second"``.
"""

import logging
import warnings
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.exceptions import UndefinedMetricWarning
from sklearn.metrics import (
    average_precision_score,
    balanced_accuracy_score,
    cohen_kappa_score,
    confusion_matrix,
    f1_score,
    log_loss,
    matthews_corrcoef,
    mean_absolute_error,
    mean_squared_error,
    precision_score,
    recall_score,
    roc_auc_score,
)
from sklearn.metrics import roc_curve as sk_roc_curve
from sklearn.preprocessing import label_binarize

from .data import as_outcome

logger = logging.getLogger(__name__)

EVENT_LEVELS = ("first", "second")


def _event_index(levels: Sequence, event_level: str) -> int:
    if event_level not in EVENT_LEVELS:
        raise ValueError(f"event_level must be one of {EVENT_LEVELS}, got '{event_level}'")
    return 0 if event_level == "first" else 1


def _observed_levels(series: pd.Series) -> List:
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    return sorted(series.dropna().unique().tolist())


def _joint_levels(truth: pd.Series, estimate: pd.Series) -> List:
    """
    Levels shared by truth and estimate. A categorical side sets the order
    (truth first); levels only the other side has are appended.
    """
    first, second = truth, estimate
    if not isinstance(truth.dtype, pd.CategoricalDtype) and isinstance(estimate.dtype, pd.CategoricalDtype):
        first, second = estimate, truth
    levels = _observed_levels(first)
    levels.extend(lvl for lvl in _observed_levels(second) if lvl not in levels)
    return levels


def _class_codes(truth, estimate) -> Tuple[np.ndarray, np.ndarray, List]:
    """Integer codes of truth and estimate on their joint levels, with incomplete rows dropped."""
    truth = pd.Series(truth).reset_index(drop=True)
    estimate = pd.Series(estimate).reset_index(drop=True)
    levels = _joint_levels(truth, estimate)
    t = as_outcome(truth, levels=levels).cat.codes.to_numpy()
    p = as_outcome(estimate, levels=levels).cat.codes.to_numpy()
    keep = (t >= 0) & (p >= 0)
    return t[keep], p[keep], levels


def _prob_matrix(truth, probs: Sequence, event_level: str) -> Tuple[np.ndarray, np.ndarray, List]:
    """
    Truth codes and an (n, k) probability matrix. A single probability
    column for a two-level outcome is the event's probability.
    """
    truth = as_outcome(pd.Series(truth).reset_index(drop=True))
    levels = list(truth.cat.categories)
    P = np.column_stack([np.asarray(p, dtype=float) for p in probs])
    if P.shape[1] == 1:
        if len(levels) != 2:
            raise ValueError(f"A single probability column only works for two levels; outcome has {len(levels)}")
        event = _event_index(levels, event_level)
        P = np.column_stack([P[:, 0], 1 - P[:, 0]]) if event == 0 else np.column_stack([1 - P[:, 0], P[:, 0]])
    elif P.shape[1] != len(levels):
        raise ValueError(f"Expected {len(levels)} probability columns (one per level), got {P.shape[1]}")
    t = truth.cat.codes.to_numpy()
    keep = (t >= 0) & ~np.isnan(P).any(axis=1)
    return t[keep], P[keep], levels


def _undefined(name: str, reason: str) -> float:
    logger.warning(f"{name} is undefined: {reason}. Returning NaN.")
    return float("nan")


class Metric:
    def __init__(self, name: str, kind: str, fn: Callable, direction: str = "maximize"):
        self.name = name
        self.kind = kind
        self.fn = fn
        self.direction = direction

    def vec(self, truth, *estimate, event_level: str = "first") -> float:
        return self._compute(truth, estimate, event_level)[1]

    def _compute(self, truth, estimate: Sequence, event_level: str) -> Tuple[str, float]:
        if self.kind == "numeric":
            t = np.asarray(truth, dtype=float)
            p = np.asarray(estimate[0], dtype=float)
            keep = ~(np.isnan(t) | np.isnan(p))
            return "standard", float(self.fn(t[keep], p[keep]))
        if self.kind == "class":
            if len(estimate) != 1:
                raise ValueError(f"{self.name} takes one class-prediction column")
            t, p, levels = _class_codes(truth, estimate[0])
        else:
            t, p, levels = _prob_matrix(truth, estimate, event_level)
        if len(t) == 0:
            return "binary" if len(levels) == 2 else "macro", _undefined(self.name, "no complete rows")
        return self.fn(t, p, levels, _event_index(levels, event_level))

    def __call__(self, data: pd.DataFrame, truth: str, *estimate: str, event_level: str = "first") -> pd.DataFrame:
        missing = [col for col in (truth, *estimate) if col not in data.columns]
        if missing:
            raise ValueError(f"Columns not found in data: {missing}")
        estimator, value = self._compute(data[truth], [data[col] for col in estimate], event_level)
        return pd.DataFrame({"metric": [self.name], "estimator": [estimator], "estimate": [value]})

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.kind}, {self.direction})>"


# ----------------------------------------------------------------------
# class metrics
# ----------------------------------------------------------------------
def _averaged(score_fn, t, p, levels, event, **extra):
    labels = list(range(len(levels)))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UndefinedMetricWarning)
        if len(levels) == 2:
            return "binary", float(score_fn(t, p, labels=labels, pos_label=event, average="binary", **extra))
        return "macro", float(score_fn(t, p, labels=labels, average="macro", **extra))


def _accuracy(t, p, levels, event):
    return "multiclass" if len(levels) > 2 else "binary", float(np.mean(t == p))


def _spec(t, p, levels, event):
    cm = confusion_matrix(t, p, labels=list(range(len(levels))))
    total = cm.sum()
    specs = []
    for i in range(len(levels)):
        fp = cm[:, i].sum() - cm[i, i]
        tn = total - cm[i, :].sum() - cm[:, i].sum() + cm[i, i]
        specs.append(tn / (tn + fp) if tn + fp else np.nan)
    if len(levels) == 2:
        # specificity of the event is the recall of the other level
        return "binary", float(specs[event])
    return "macro", float(np.nanmean(specs)) if not np.all(np.isnan(specs)) else float("nan")


def _bal_accuracy(t, p, levels, event):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        value = balanced_accuracy_score(t, p)
    return "binary" if len(levels) == 2 else "macro", float(value)


def _kap(t, p, levels, event):
    return "multiclass" if len(levels) > 2 else "binary", float(
        cohen_kappa_score(t, p, labels=list(range(len(levels)))))


def _mcc(t, p, levels, event):
    return "multiclass" if len(levels) > 2 else "binary", float(matthews_corrcoef(t, p))


# ----------------------------------------------------------------------
# probability metrics
# ----------------------------------------------------------------------
def _roc_auc(t, P, levels, event):
    if len(np.unique(t)) < 2:
        return ("binary" if len(levels) == 2 else "hand_till"), _undefined("roc_auc", "only one class present")
    if len(levels) == 2:
        return "binary", float(roc_auc_score(t == event, P[:, event]))
    present = np.unique(t)
    if len(present) < len(levels):
        return "hand_till", _undefined("roc_auc", "not every level is present in truth")
    return "hand_till", float(roc_auc_score(t, P, multi_class="ovo", average="macro", labels=list(range(len(levels)))))


def _pr_auc(t, P, levels, event):
    if len(levels) == 2:
        if not (t == event).any():
            return "binary", _undefined("pr_auc", "no events in truth")
        return "binary", float(average_precision_score(t == event, P[:, event]))
    Y = label_binarize(t, classes=list(range(len(levels))))
    return "macro", float(average_precision_score(Y, P, average="macro"))


def _mn_log_loss(t, P, levels, event):
    return "binary" if len(levels) == 2 else "multiclass", float(log_loss(t, P, labels=list(range(len(levels)))))


# ----------------------------------------------------------------------
# numeric metrics
# ----------------------------------------------------------------------
def _rmse(t, p):
    return np.sqrt(mean_squared_error(t, p))


def _rsq(t, p):
    """Squared Pearson correlation between truth and estimate."""
    if len(t) < 2 or np.std(t) == 0 or np.std(p) == 0:
        return _undefined("rsq", "zero variance")
    return np.corrcoef(t, p)[0, 1] ** 2


accuracy = Metric("accuracy", "class", _accuracy)
bal_accuracy = Metric("bal_accuracy", "class", _bal_accuracy)
kap = Metric("kap", "class", _kap)
sens = Metric("sens", "class", partial(_averaged, recall_score, zero_division=np.nan))
recall = Metric("recall", "class", partial(_averaged, recall_score, zero_division=np.nan))
spec = Metric("spec", "class", _spec)
precision = Metric("precision", "class", partial(_averaged, precision_score, zero_division=np.nan))
f_meas = Metric("f_meas", "class", partial(_averaged, f1_score, zero_division=np.nan))
mcc = Metric("mcc", "class", _mcc)

roc_auc = Metric("roc_auc", "prob", _roc_auc)
pr_auc = Metric("pr_auc", "prob", _pr_auc)
mn_log_loss = Metric("mn_log_loss", "prob", _mn_log_loss, direction="minimize")

rmse = Metric("rmse", "numeric", _rmse, direction="minimize")
mae = Metric("mae", "numeric", mean_absolute_error, direction="minimize")
rsq = Metric("rsq", "numeric", _rsq)

METRICS: Dict[str, Metric] = {m.name: m for m in (
    accuracy, bal_accuracy, kap, sens, recall, spec, precision, f_meas, mcc,
    roc_auc, pr_auc, mn_log_loss, rmse, mae, rsq,
)}


def get_metric(name: str) -> Metric:
    if name not in METRICS:
        raise ValueError(f"Unknown metric '{name}'. Options: {sorted(METRICS)}")
    return METRICS[name]


class MetricSet:
    """Several metrics evaluated together on one prediction table."""

    def __init__(self, *metrics: Metric):
        if not metrics:
            raise ValueError("metric_set needs at least one metric")
        metrics = tuple(get_metric(m) if isinstance(m, str) else m for m in metrics)
        kinds = {m.kind for m in metrics}
        if "numeric" in kinds and len(kinds) > 1:
            raise ValueError("Numeric metrics cannot be mixed with class or probability metrics")
        self.metrics = metrics

    @property
    def names(self) -> List[str]:
        return [m.name for m in self.metrics]

    @property
    def mode(self) -> str:
        return "regression" if self.metrics[0].kind == "numeric" else "classification"

    def direction(self, name: str) -> str:
        for metric in self.metrics:
            if metric.name == name:
                return metric.direction
        return get_metric(name).direction

    def __call__(self, data: pd.DataFrame, truth: str, estimate: Optional[str] = None,
                 probs: Sequence[str] = (), event_level: str = "first") -> pd.DataFrame:
        results = []
        for metric in self.metrics:
            if metric.kind == "prob":
                if not probs:
                    raise ValueError(f"{metric.name} needs probability columns")
                results.append(metric(data, truth, *probs, event_level=event_level))
            else:
                if estimate is None:
                    raise ValueError(f"{metric.name} needs an estimate column")
                results.append(metric(data, truth, estimate, event_level=event_level))
        return pd.concat(results, ignore_index=True)

    def __repr__(self) -> str:
        return f"<MetricSet {self.names}>"


def metric_set(*metrics) -> MetricSet:
    return MetricSet(*metrics)


def default_metrics(mode: str) -> MetricSet:
    if mode == "regression":
        return MetricSet(rmse, rsq)
    return MetricSet(accuracy, roc_auc)


def roc_curve(data: pd.DataFrame, truth: str, *probs: str, event_level: str = "first") -> pd.DataFrame:
    """
    ROC curve points ordered by increasing threshold. For more than two
    levels, one-vs-all curves are stacked with a 'level' column.
    """
    t, P, levels = _prob_matrix(data[truth], [data[col] for col in probs], event_level)

    def curve(positive: np.ndarray, score: np.ndarray) -> pd.DataFrame:
        fpr, tpr, thresholds = sk_roc_curve(positive, score, drop_intermediate=False)
        frame = pd.DataFrame({"threshold": thresholds, "specificity": 1 - fpr, "sensitivity": tpr})
        return frame.iloc[::-1].reset_index(drop=True)

    if len(levels) == 2:
        event = _event_index(levels, event_level)
        return curve(t == event, P[:, event])
    frames = []
    for i, level in enumerate(levels):
        part = curve(t == i, P[:, i])
        part.insert(0, "level", level)
        frames.append(part)
    return pd.concat(frames, ignore_index=True)


class ConfusionMatrix:
    """Cross-tabulation of predicted (rows) against true (columns) classes."""

    def __init__(self, truth: pd.Series, estimate: pd.Series):
        truth, estimate = truth.reset_index(drop=True), estimate.reset_index(drop=True)
        self.levels = _joint_levels(truth, estimate)
        self.truth = as_outcome(truth, levels=self.levels)
        self.estimate = as_outcome(estimate, levels=self.levels).rename("Prediction")
        self.table = pd.crosstab(self.estimate, self.truth.rename("Truth"), dropna=False)
        self.table = self.table.reindex(index=self.levels, columns=self.levels, fill_value=0)

    def summary(self, event_level: str = "first") -> pd.DataFrame:
        class_metrics = [m for m in METRICS.values() if m.kind == "class"]
        rows = []
        for metric in class_metrics:
            estimator, value = metric._compute(self.truth, [self.estimate], event_level)
            rows.append({"metric": metric.name, "estimator": estimator, "estimate": value})
        return pd.DataFrame(rows, columns=["metric", "estimator", "estimate"])

    def __repr__(self) -> str:
        return f"{self.table}"


def conf_mat(data: pd.DataFrame, truth: str, estimate: str) -> ConfusionMatrix:
    missing = [col for col in (truth, estimate) if col not in data.columns]
    if missing:
        raise ValueError(f"Columns not found in data: {missing}")
    return ConfusionMatrix(data[truth], data[estimate])
