"""
Resampling driver: fit a workflow on each analysis set, score it on the
matching assessment set and collect the results.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pandas as pd
from joblib import Parallel, delayed

from .data import as_outcome
from .metrics import MetricSet, default_metrics
from .models import prob_columns
from .splits import Resamples, Split
from .workflow import Workflow

logger = logging.getLogger(__name__)


@dataclass
class ControlResamples:
    save_pred: bool = False
    n_jobs: int = 1
    verbose: bool = False
    event_level: str = "first"


def _predictions(fitted: Workflow, data: pd.DataFrame, rows) -> pd.DataFrame:
    """Assessment-set predictions joined to the observed outcome, keyed by row position."""
    outcome = fitted.outcome_name()
    augmented = fitted.augment(data)
    pred_cols = list(augmented.columns[len(data.columns):])
    preds = augmented[[outcome] + pred_cols].reset_index(drop=True)
    model_fit = fitted.extract_fit()
    if model_fit.mode == "classification":
        preds[outcome] = as_outcome(preds[outcome], levels=model_fit.levels)
    preds.insert(0, "row", list(rows))
    return preds


def _score(fitted: Workflow, preds: pd.DataFrame, metrics: MetricSet, event_level: str) -> pd.DataFrame:
    outcome = fitted.outcome_name()
    model_fit = fitted.extract_fit()
    if model_fit.mode == "regression":
        return metrics(preds, outcome, estimate="pred")
    probs = [col for col in prob_columns(model_fit.levels) if col in preds.columns]
    return metrics(preds, outcome, estimate="pred_class", probs=probs, event_level=event_level)


def _check_mode(workflow: Workflow, metrics: MetricSet) -> None:
    if workflow.spec is None:
        raise ValueError("Workflow has no model; call add_model() first.")
    if workflow.spec.mode != metrics.mode:
        raise ValueError(f"Metrics {metrics.names} are for {metrics.mode}, "
                         f"but the model mode is '{workflow.spec.mode}'")


def _fit_split(workflow: Workflow, split: Split, metrics: MetricSet, control: ControlResamples) -> Dict[str, Any]:
    record: Dict[str, Any] = {"id": split.id, "id2": split.id2, "metrics": None, "predictions": None, "note": None}
    try:
        fitted = workflow.fit(split.analysis())
        preds = _predictions(fitted, split.assessment(), split.out_id)
        record["metrics"] = _score(fitted, preds, metrics, control.event_level)
        if control.save_pred:
            record["predictions"] = preds
        if control.verbose:
            logger.info(f"{split.label}: {record['metrics'].set_index('metric')['estimate'].round(4).to_dict()}")
    except Exception as e:
        logger.error(f"{split.label}: fit/evaluate failed: {e}", exc_info=True)
        record["note"] = f"{type(e).__name__}: {e}"
    return record


def _id_columns(record: Dict[str, Any]) -> Dict[str, Any]:
    cols = {"id": record["id"]}
    if record["id2"] is not None:
        cols["id2"] = record["id2"]
    return cols


class ResampleResults:
    def __init__(self, records: List[Dict[str, Any]], metrics: MetricSet, workflow: Workflow,
                 resamples: Optional[Resamples] = None):
        self.records = records
        self.metrics = metrics
        self.workflow = workflow
        self.resamples = resamples

    @property
    def notes(self) -> pd.DataFrame:
        rows = [{**_id_columns(r), "note": r["note"]} for r in self.records if r["note"]]
        return pd.DataFrame(rows, columns=["id", "note"] if not rows else list(rows[0]))

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        """
        Per-resample estimates, or (summarize=True) their mean, count and
        standard error per metric.
        """
        frames = []
        for record in self.records:
            if record["metrics"] is None:
                continue
            frame = record["metrics"].copy()
            for i, (key, value) in enumerate(_id_columns(record).items()):
                frame.insert(i, key, value)
            frames.append(frame)
        if not frames:
            return pd.DataFrame(columns=["metric", "estimator", "mean", "n", "std_err"])
        long = pd.concat(frames, ignore_index=True)
        if not summarize:
            return long

        summary = (long.groupby(["metric", "estimator"], sort=False)["estimate"]
                   .agg(mean="mean", n="count", std="std").reset_index())
        summary["std_err"] = summary["std"] / summary["n"].map(math.sqrt)
        return summary.drop(columns="std")

    def collect_predictions(self) -> pd.DataFrame:
        frames = []
        for record in self.records:
            if record["predictions"] is None:
                continue
            frame = record["predictions"].copy()
            for i, (key, value) in enumerate(_id_columns(record).items()):
                frame.insert(i, key, value)
            frames.append(frame)
        if not frames:
            raise ValueError("No predictions were saved; use ControlResamples(save_pred=True).")
        return pd.concat(frames, ignore_index=True)

    def __repr__(self) -> str:
        failed = sum(1 for r in self.records if r["note"])
        return f"<ResampleResults {len(self.records)} resamples, {failed} failed, metrics={self.metrics.names}>"


def fit_resamples(workflow: Workflow, resamples: Resamples, metrics: Optional[MetricSet] = None,
                  control: Optional[ControlResamples] = None) -> ResampleResults:
    """
    Fits `workflow` on every analysis set and scores it on the assessment set.
    Failed resamples are logged and kept as notes; if all of them fail a
    RuntimeError is raised.
    """
    control = control or ControlResamples()
    if workflow.spec is None:
        raise ValueError("Workflow has no model; call add_model() first.")
    metrics = metrics or default_metrics(workflow.spec.mode)
    _check_mode(workflow, metrics)

    logger.info(f"Fitting {len(resamples)} resamples with metrics {metrics.names}")
    if control.n_jobs != 1:
        records = Parallel(n_jobs=control.n_jobs)(
            delayed(_fit_split)(workflow, split, metrics, control) for split in resamples
        )
        for record in records:
            if record["note"]:
                label = " / ".join(str(v) for v in _id_columns(record).values())
                logger.error(f"{label}: fit/evaluate failed in worker: {record['note']}")
    else:
        records = [_fit_split(workflow, split, metrics, control) for split in resamples]

    failed = [r for r in records if r["note"]]
    if failed and len(failed) == len(records):
        raise RuntimeError(f"All {len(records)} resamples failed. First error: {failed[0]['note']}")
    if failed:
        logger.warning(f"{len(failed)} of {len(records)} resamples failed; see .notes")
    return ResampleResults(records, metrics, workflow, resamples)


class LastFit:
    """A workflow fit on the training set and evaluated once on the test set."""

    def __init__(self, workflow: Workflow, metrics: pd.DataFrame, predictions: pd.DataFrame, split: Split):
        self.workflow = workflow
        self.metrics = metrics
        self.predictions = predictions
        self.split = split

    def collect_metrics(self) -> pd.DataFrame:
        return self.metrics.copy()

    def collect_predictions(self) -> pd.DataFrame:
        return self.predictions.copy()

    def extract_workflow(self) -> Workflow:
        return self.workflow

    def __repr__(self) -> str:
        return f"<LastFit {self.metrics.set_index('metric')['estimate'].round(4).to_dict()}>"


def last_fit(workflow: Workflow, split: Split, metrics: Optional[MetricSet] = None,
             event_level: str = "first") -> LastFit:
    """Fits on the training portion of `split` and evaluates on its testing portion."""
    if workflow.spec is None:
        raise ValueError("Workflow has no model; call add_model() first.")
    metrics = metrics or default_metrics(workflow.spec.mode)
    _check_mode(workflow, metrics)

    fitted = workflow.fit(split.analysis())
    preds = _predictions(fitted, split.assessment(), split.out_id)
    scores = _score(fitted, preds, metrics, event_level)
    logger.info(f"Last fit test metrics: {scores.set_index('metric')['estimate'].round(4).to_dict()}")
    return LastFit(fitted, scores, preds, split)
