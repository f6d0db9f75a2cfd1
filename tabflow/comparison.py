"""
Comparing several workflows on the same resamples.
"""

import logging
from typing import Dict, Optional

import pandas as pd

from .metrics import MetricSet, default_metrics
from .models import ModelSpec
from .recipe import Recipe
from .resampling import ControlResamples, ResampleResults, fit_resamples
from .splits import Resamples
from .workflow import Workflow

logger = logging.getLogger(__name__)


def workflow_set(preproc: Dict[str, Recipe], models: Dict[str, ModelSpec], cross: bool = True) -> Dict[str, Workflow]:
    """
    Workflows named '<preprocessor>_<model>'. With cross=False the two dicts
    are paired in order and must have the same length.
    """
    if cross:
        pairs = [(p, m) for p in preproc for m in models]
    else:
        if len(preproc) != len(models):
            raise ValueError("With cross=False, preproc and models must have the same length")
        pairs = list(zip(preproc, models))

    workflows = {}
    for pre_name, model_name in pairs:
        pre = preproc[pre_name]
        wf = Workflow(formula=pre) if isinstance(pre, str) else Workflow(pre)
        workflows[f"{pre_name}_{model_name}"] = wf.add_model(models[model_name])
    return workflows


class ComparisonResults:
    def __init__(self, results: Dict[str, ResampleResults], metrics: MetricSet):
        self.results = results
        self.metrics = metrics

    def collect_metrics(self, summarize: bool = True) -> pd.DataFrame:
        frames = []
        for wflow_id, result in self.results.items():
            frame = result.collect_metrics(summarize=summarize)
            frame.insert(0, "wflow_id", wflow_id)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    def rank_results(self, metric: Optional[str] = None) -> pd.DataFrame:
        """Summarized metrics of every workflow, ranked by `metric` (default: the first metric)."""
        metric = metric or self.metrics.names[0]
        if metric not in self.metrics.names:
            raise ValueError(f"Metric '{metric}' was not computed. Options: {self.metrics.names}")
        ascending = self.metrics.direction(metric) == "minimize"

        summary = self.collect_metrics()
        scores = summary[summary["metric"] == metric].set_index("wflow_id")["mean"]
        order = scores.sort_values(ascending=ascending, kind="stable", na_position="last")
        ranks = {wflow_id: i for i, wflow_id in enumerate(order.index, start=1)}

        summary["rank"] = summary["wflow_id"].map(ranks)
        return summary.sort_values(["rank", "metric"], kind="stable").reset_index(drop=True)

    def best(self, metric: Optional[str] = None) -> str:
        ranked = self.rank_results(metric)
        return ranked.loc[0, "wflow_id"]

    def __getitem__(self, wflow_id: str) -> ResampleResults:
        return self.results[wflow_id]

    def __repr__(self) -> str:
        return f"<ComparisonResults {list(self.results)} metrics={self.metrics.names}>"


def compare_models(workflows: Dict[str, Workflow], resamples: Resamples, metrics: Optional[MetricSet] = None,
                   control: Optional[ControlResamples] = None) -> ComparisonResults:
    """Resamples every workflow on the same folds. All workflows must share a mode."""
    if not workflows:
        raise ValueError("compare_models needs at least one workflow")
    modes = {wf.spec.mode for wf in workflows.values() if wf.spec is not None}
    if len(modes) != 1:
        raise ValueError(f"Workflows must share a single mode, got {sorted(modes)}")
    metrics = metrics or default_metrics(modes.pop())

    results = {}
    for wflow_id, wf in workflows.items():
        logger.info(f"Resampling workflow '{wflow_id}'")
        results[wflow_id] = fit_resamples(wf, resamples, metrics=metrics, control=control)
    comparison = ComparisonResults(results, metrics)

    ranked = comparison.rank_results()
    top = ranked[ranked["metric"] == metrics.names[0]][["wflow_id", "mean"]].round(4).values.tolist()
    logger.info(f"Ranking by {metrics.names[0]}: {top}")
    return comparison
