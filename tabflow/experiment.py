"""
End-to-end experiment runner.

Loads a dataset, splits it, compares candidate workflows with v-fold
cross-validation, refits the best one on the full training set and
evaluates it once on the test set. The stages run as nodes of a LangGraph
StateGraph; a stage that fails records the error in the state and the
graph ends early.
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pandas as pd
from langgraph.graph import END, StateGraph
from typing_extensions import TypedDict

from .comparison import ComparisonResults, compare_models, workflow_set
from .config import PipelineConfig
from .data import as_outcome, make_classification_frame, read_dataset
from .logging_config import setup_logging
from .metrics import MetricSet
from .models import ModelSpec, logistic_reg, nearest_neighbor, rand_forest
from .persistence import ModelRepository
from .recipe import Recipe
from .resampling import ControlResamples, LastFit, last_fit
from .selectors import all_nominal_predictors, all_numeric_predictors, all_predictors, is_nominal
from .splits import Resamples, Split, initial_split, training, vfold_cv
from .workflow import Workflow

logger = logging.getLogger(__name__)

ACTIONS_FILE = "experiment_actions.txt"


class ExperimentState(TypedDict):
    """State passed between the experiment stages"""
    data: Optional[pd.DataFrame]
    split: Optional[Split]
    folds: Optional[Resamples]
    workflows: Dict[str, Workflow]
    comparison: Optional[ComparisonResults]
    best_id: Optional[str]
    final: Optional[LastFit]
    metrics: Dict[str, Any]
    logs: List[str]
    current_step: str
    error: Optional[str]
    config: Dict[str, Any]


def default_recipe(data: pd.DataFrame, outcome: str, id_cols: Sequence[str] = (),
                   log_cols: Sequence[str] = ()) -> Recipe:
    """
    Dummy-encode nominal predictors, drop zero-variance columns, filter highly
    correlated numeric predictors and center what is left. `log_cols` are
    log-transformed first; `id_cols` are kept out of the predictors.
    """
    rec = Recipe(data, outcome=outcome)
    if id_cols:
        rec = rec.update_role(*id_cols, new_role="id")
    if log_cols:
        rec = rec.step_log(*log_cols)
    return (rec.step_dummy(all_nominal_predictors())
            .step_zv(all_predictors())
            .step_corr(all_numeric_predictors(), threshold=0.9)
            .step_center(all_numeric_predictors()))


def default_models(mode: str, config: PipelineConfig) -> Dict[str, ModelSpec]:
    engine_args = {"num_threads": config.n_jobs, "seed": config.seed}
    if mode == "classification":
        return {
            "logistic_reg": logistic_reg(),
            "rand_forest": rand_forest(trees=1000).set_engine("sklearn", **engine_args).set_mode(mode),
        }
    return {
        "rand_forest": rand_forest(trees=1000).set_engine("sklearn", **engine_args).set_mode(mode),
        "nearest_neighbor": nearest_neighbor(neighbors=5).set_mode(mode),
    }


class Experiment:
    def __init__(self, source: Union[pd.DataFrame, str, Path], outcome: str, strata: Optional[str] = None,
                 recipe_fn: Optional[Callable[[pd.DataFrame, str], Recipe]] = None,
                 models: Optional[Dict[str, ModelSpec]] = None, metrics: Optional[MetricSet] = None,
                 config: Optional[PipelineConfig] = None, id_cols: Sequence[str] = (),
                 log_cols: Sequence[str] = (), model_dir: Optional[str] = None):
        self.source = source
        self.outcome = outcome
        self.strata = strata
        self.recipe_fn = recipe_fn
        self.models = models
        self.metrics = metrics
        self.config = config or PipelineConfig()
        self.id_cols = list(id_cols)
        self.log_cols = list(log_cols)
        self.model_dir = model_dir
        self.graph = self._build_graph()

    def _log_action(self, stage: str, task: str, outcome: str, state: ExperimentState) -> ExperimentState:
        """Record a stage action in the actions file and the state"""
        log_entry = f"{datetime.now().isoformat()} | {stage} | {task} | {outcome}"

        if self.config.log_dir:
            log_file = Path(self.config.log_dir) / ACTIONS_FILE
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a") as f:
                f.write(f"{log_entry}\n")

        logger.info(f"Stage: {stage} | Task: {task} | Outcome: {outcome}")
        state["logs"].append(log_entry)
        return state

    def _fail(self, stage: str, task: str, e: Exception, state: ExperimentState) -> ExperimentState:
        error_msg = f"{stage}: {type(e).__name__}: {e}"
        logger.error(error_msg, exc_info=True)
        state["error"] = error_msg
        return self._log_action(stage, task, f"Error: {e}", state)

    def _mode(self, data: pd.DataFrame) -> str:
        if self.models:
            return next(iter(self.models.values())).mode
        return "classification" if is_nominal(data[self.outcome]) else "regression"

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------
    def data_loading_stage(self, state: ExperimentState) -> ExperimentState:
        stage = "DataLoading"
        if state.get("error"):
            logger.warning(f"{stage}: Skipping due to pre-existing error: {state['error']}")
            return state
        try:
            if isinstance(self.source, pd.DataFrame):
                data = self.source.copy()
            else:
                data = read_dataset(self.source)
            if self.outcome not in data.columns:
                raise ValueError(f"Outcome column '{self.outcome}' not found. Columns: {list(data.columns)}")

            missing = int(data[self.outcome].isna().sum())
            if missing:
                logger.warning(f"{stage}: Dropping {missing} rows with a missing outcome")
                data = data[data[self.outcome].notna()].reset_index(drop=True)
            if self._mode(data) == "classification":
                data[self.outcome] = as_outcome(data[self.outcome])

            state["data"] = data
            state["current_step"] = "data_loaded"
            state = self._log_action(stage, "Load data", f"{data.shape[0]} rows, {data.shape[1]} columns", state)
        except Exception as e:
            state = self._fail(stage, "Load data", e, state)
        return state

    def splitting_stage(self, state: ExperimentState) -> ExperimentState:
        stage = "Splitting"
        if state.get("error"):
            logger.warning(f"{stage}: Skipping due to pre-existing error: {state['error']}")
            return state
        try:
            cfg = self.config
            split = initial_split(state["data"], prop=cfg.prop, strata=self.strata, seed=cfg.seed)
            folds = vfold_cv(training(split), v=cfg.folds, repeats=cfg.repeats, strata=self.strata, seed=cfg.seed)
            state["split"] = split
            state["folds"] = folds
            state["current_step"] = "data_split"
            state = self._log_action(stage, "Split data",
                                     f"train={len(split.in_id)}, test={len(split.out_id)}, resamples={len(folds)}",
                                     state)
        except Exception as e:
            state = self._fail(stage, "Split data", e, state)
        return state

    def resampling_stage(self, state: ExperimentState) -> ExperimentState:
        stage = "Resampling"
        if state.get("error"):
            logger.warning(f"{stage}: Skipping due to pre-existing error: {state['error']}")
            return state
        try:
            train = training(state["split"])
            if self.recipe_fn is not None:
                rec = self.recipe_fn(train, self.outcome)
            else:
                rec = default_recipe(train, self.outcome, self.id_cols, self.log_cols)
            models = self.models or default_models(self._mode(train), self.config)

            workflows = workflow_set({"base": rec}, models)
            control = ControlResamples(event_level=self.config.event_level)
            comparison = compare_models(workflows, state["folds"], metrics=self.metrics, control=control)

            summary = comparison.collect_metrics()
            state["workflows"] = workflows
            state["comparison"] = comparison
            state["metrics"]["resampling"] = {
                wflow_id: dict(zip(part["metric"], part["mean"]))
                for wflow_id, part in summary.groupby("wflow_id", sort=False)
            }
            state["current_step"] = "resampled"
            state = self._log_action(stage, "Compare workflows", f"{len(workflows)} workflows resampled", state)
        except Exception as e:
            state = self._fail(stage, "Compare workflows", e, state)
        return state

    def _rank_metric(self, comparison: ComparisonResults) -> str:
        names = comparison.metrics.names
        preferred = "roc_auc" if comparison.metrics.mode == "classification" else "rmse"
        return preferred if preferred in names else names[0]

    def final_fit_stage(self, state: ExperimentState) -> ExperimentState:
        stage = "FinalFit"
        if state.get("error"):
            logger.warning(f"{stage}: Skipping due to pre-existing error: {state['error']}")
            return state
        try:
            comparison = state["comparison"]
            rank_metric = self._rank_metric(comparison)
            best_id = comparison.best(rank_metric)
            final = last_fit(state["workflows"][best_id], state["split"], metrics=comparison.metrics,
                             event_level=self.config.event_level)

            state["best_id"] = best_id
            state["final"] = final
            state["metrics"]["test"] = dict(zip(final.metrics["metric"], final.metrics["estimate"]))
            state["current_step"] = "final_fit"
            state = self._log_action(stage, "Last fit", f"Best workflow by {rank_metric}: {best_id}", state)
        except Exception as e:
            state = self._fail(stage, "Last fit", e, state)
        return state

    def reporting_stage(self, state: ExperimentState) -> ExperimentState:
        stage = "Reporting"
        if state.get("error"):
            logger.warning(f"{stage}: Skipping due to pre-existing error: {state['error']}")
            return state
        try:
            for wflow_id, scores in state["metrics"]["resampling"].items():
                logger.info(f"{stage}: {wflow_id} resampled: {scores}")
            logger.info(f"{stage}: {state['best_id']} test: {state['metrics']['test']}")

            if self.model_dir:
                path = ModelRepository(self.model_dir).save(state["best_id"], state["final"].extract_workflow())
                state["metrics"]["model_path"] = path
            state["current_step"] = "completed"
            state = self._log_action(stage, "Report", "Completed successfully", state)
        except Exception as e:
            state = self._fail(stage, "Report", e, state)
        return state

    # ------------------------------------------------------------------
    # graph
    # ------------------------------------------------------------------
    @staticmethod
    def _route(state: ExperimentState) -> str:
        return "end" if state.get("error") else "continue"

    def _build_graph(self):
        """Build the LangGraph workflow"""
        graph = StateGraph(ExperimentState)

        stages = [
            ("data_loading", self.data_loading_stage),
            ("splitting", self.splitting_stage),
            ("resampling", self.resampling_stage),
            ("final_fit", self.final_fit_stage),
            ("reporting", self.reporting_stage),
        ]
        for name, node in stages:
            graph.add_node(name, node)
        for (name, _), (next_name, _) in zip(stages, stages[1:]):
            graph.add_conditional_edges(name, self._route, {"continue": next_name, "end": END})
        graph.add_edge("reporting", END)

        graph.set_entry_point("data_loading")
        return graph.compile()

    def run(self) -> ExperimentState:
        """Run every stage and return the final state."""
        logger.info(f"Starting experiment for outcome '{self.outcome}'")

        initial_state = ExperimentState(
            data=None,
            split=None,
            folds=None,
            workflows={},
            comparison=None,
            best_id=None,
            final=None,
            metrics={},
            logs=[],
            current_step="initialized",
            error=None,
            config=self.config.to_dict(),
        )
        final_state = self.graph.invoke(initial_state)

        if final_state.get("error"):
            logger.error(f"Experiment failed: {final_state['error']}")
        else:
            logger.info("Experiment completed successfully")
            logger.info(f"Test metrics: {final_state['metrics'].get('test')}")
        return final_state


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="tabflow",
                                     description="Compare models with cross-validation and evaluate the best one.")
    parser.add_argument("path", nargs="?", help="Dataset file (.csv, .tsv, .xls, .xlsx, .parquet, .json)")
    parser.add_argument("--outcome", help="Outcome column")
    parser.add_argument("--strata", help="Column used to stratify the splits")
    parser.add_argument("--folds", type=int, help="Number of cross-validation folds")
    parser.add_argument("--repeats", type=int, help="Number of cross-validation repeats")
    parser.add_argument("--seed", type=int, help="Random seed")
    parser.add_argument("--n-jobs", type=int, dest="n_jobs", help="Threads for model engines")
    parser.add_argument("--log-dir", dest="log_dir", help="Directory for log files")
    parser.add_argument("--log-cols", dest="log_cols", nargs="+", default=[], help="Columns to log-transform")
    parser.add_argument("--id-cols", dest="id_cols", nargs="+", default=[], help="Identifier columns, not predictors")
    parser.add_argument("--model-dir", dest="model_dir", help="Save the best fitted workflow here")
    parser.add_argument("--demo", action="store_true", help="Run on a synthetic two-class dataset")
    args = parser.parse_args(argv)
    if not args.demo and (args.path is None or args.outcome is None):
        parser.error("a dataset path and --outcome are required unless --demo is given")
    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command line entry point"""
    args = _parse_args(argv)
    try:
        config = PipelineConfig.from_env(seed=args.seed, folds=args.folds, repeats=args.repeats,
                                         n_jobs=args.n_jobs, log_dir=args.log_dir)
    except ValueError as e:
        print(f"Error: {e}")
        return 2
    setup_logging(config.log_level, config.log_dir)

    if args.demo:
        source = make_classification_frame(seed=config.seed)
        outcome = args.outcome or "class"
        strata = args.strata or outcome
        id_cols = args.id_cols or ["cell_id"]
        log_cols = args.log_cols or ["area", "skew_ratio"]
    else:
        if not Path(args.path).exists():
            print(f"Error: {args.path} not found.")
            return 1
        source, outcome, strata = args.path, args.outcome, args.strata
        id_cols, log_cols = args.id_cols, args.log_cols

    experiment = Experiment(source, outcome, strata=strata, config=config, id_cols=id_cols,
                            log_cols=log_cols, model_dir=args.model_dir)
    result = experiment.run()

    print("\n" + "=" * 50)
    print("TABFLOW EXPERIMENT SUMMARY")
    print("=" * 50)

    if result.get("error"):
        print(f"❌ Experiment failed: {result['error']}")
    else:
        print("✅ Experiment completed successfully!")

        print(f"\n📊 Resampled performance ({config.folds}-fold CV):")
        for wflow_id, scores in result["metrics"]["resampling"].items():
            formatted = ", ".join(f"{name}: {value:.4f}" for name, value in scores.items())
            print(f"   {wflow_id} - {formatted}")

        print(f"\n🏆 Best workflow: {result['best_id']}")
        formatted = ", ".join(f"{name}: {value:.4f}" for name, value in result["metrics"]["test"].items())
        print(f"   Test - {formatted}")
        if "model_path" in result["metrics"]:
            print(f"\n💾 Saved to: {result['metrics']['model_path']}")

    if config.log_dir:
        print(f"\n📝 Detailed logs saved to: {Path(config.log_dir) / ACTIONS_FILE}")
    print("=" * 50)
    return 1 if result.get("error") else 0
