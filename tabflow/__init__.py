"""
tabflow: splits, preprocessing recipes, model specs, workflows, metrics and
resampling for tabular supervised learning.
"""

from .comparison import ComparisonResults, compare_models, workflow_set
from .config import PipelineConfig
from .data import as_outcome, make_classification_frame, read_dataset
from .experiment import Experiment, default_models, default_recipe
from .logging_config import setup_logging
from .metrics import (ConfusionMatrix, Metric, MetricSet, accuracy, bal_accuracy, conf_mat, default_metrics,
                      f_meas, get_metric, kap, mae, mcc, metric_set, mn_log_loss, pr_auc, precision, recall,
                      rmse, roc_auc, roc_curve, rsq, sens, spec)
from .models import ModelFit, ModelSpec, logistic_reg, nearest_neighbor, rand_forest, register_engine
from .persistence import ModelRepository
from .plots import plot_conf_mat, plot_metric_comparison, plot_roc_curve
from .recipe import Recipe, recipe
from .resampling import ControlResamples, LastFit, ResampleResults, fit_resamples, last_fit
from .selectors import (all_nominal, all_nominal_predictors, all_numeric, all_numeric_predictors, all_outcomes,
                        all_predictors, contains, ends_with, has_role, has_type, matches, one_of, starts_with)
from .splits import (Resamples, Split, ValidationSplit, initial_split, initial_validation_split, testing,
                     training, vfold_cv)
from .workflow import Workflow, workflow

__version__ = "0.1.0"

__all__ = [
    "ComparisonResults", "compare_models", "workflow_set",
    "PipelineConfig",
    "as_outcome", "make_classification_frame", "read_dataset",
    "Experiment", "default_models", "default_recipe",
    "setup_logging",
    "ConfusionMatrix", "Metric", "MetricSet", "accuracy", "bal_accuracy", "conf_mat", "default_metrics",
    "f_meas", "get_metric", "kap", "mae", "mcc", "metric_set", "mn_log_loss", "pr_auc", "precision", "recall",
    "rmse", "roc_auc", "roc_curve", "rsq", "sens", "spec",
    "ModelFit", "ModelSpec", "logistic_reg", "nearest_neighbor", "rand_forest", "register_engine",
    "ModelRepository",
    "plot_conf_mat", "plot_metric_comparison", "plot_roc_curve",
    "Recipe", "recipe",
    "ControlResamples", "LastFit", "ResampleResults", "fit_resamples", "last_fit",
    "all_nominal", "all_nominal_predictors", "all_numeric", "all_numeric_predictors", "all_outcomes",
    "all_predictors", "contains", "ends_with", "has_role", "has_type", "matches", "one_of", "starts_with",
    "Resamples", "Split", "ValidationSplit", "initial_split", "initial_validation_split", "testing",
    "training", "vfold_cv",
    "Workflow", "workflow",
]
