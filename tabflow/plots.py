"""
Plot helpers for ROC curves, confusion matrices and resampled metric
comparisons. Each returns the matplotlib Axes it drew on.
"""

from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

from .metrics import ConfusionMatrix


def _axes(ax, figsize):
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)
    return ax


def plot_roc_curve(curve: pd.DataFrame, ax: Optional[plt.Axes] = None,
                   title: str = "Receiver Operating Characteristic (ROC) Curve") -> plt.Axes:
    """Plots the output of roc_curve(); one line per level for multiclass curves."""
    ax = _axes(ax, (8, 6))
    groups = curve.groupby("level", sort=False) if "level" in curve.columns else [(None, curve)]
    for level, part in groups:
        ax.plot(1 - part["specificity"], part["sensitivity"], lw=2,
                label=f"{level}" if level is not None else "ROC curve")
    ax.plot([0, 1], [0, 1], color="navy", lw=2, linestyle="--")
    ax.set_xlim([0.0, 1.0])
    ax.set_ylim([0.0, 1.05])
    ax.set_xlabel("1 - Specificity")
    ax.set_ylabel("Sensitivity")
    ax.set_title(title)
    ax.legend(loc="lower right")
    return ax


def plot_conf_mat(cm: ConfusionMatrix, ax: Optional[plt.Axes] = None, title: str = "Confusion Matrix") -> plt.Axes:
    ax = _axes(ax, (8, 6))
    sns.heatmap(cm.table, annot=True, fmt="d", cmap="Blues", ax=ax)
    ax.set_title(title)
    ax.set_ylabel("Predicted Label")
    ax.set_xlabel("True Label")
    return ax


def plot_metric_comparison(results: pd.DataFrame, metric: str, ax: Optional[plt.Axes] = None) -> plt.Axes:
    """
    Bar chart of a summarized metric per workflow with one standard error
    as the error bar. `results` is ComparisonResults.collect_metrics().
    """
    subset = results[results["metric"] == metric]
    if subset.empty:
        raise ValueError(f"Metric '{metric}' not found in results")
    ax = _axes(ax, (10, 6))
    ax.bar(subset["wflow_id"], subset["mean"], yerr=subset["std_err"].fillna(0), capsize=4, edgecolor="black")
    ax.set_title(f"Resampled {metric} by workflow")
    ax.set_ylabel(metric)
    ax.set_xlabel("Workflow")
    ax.grid(True, axis="y", alpha=0.3)
    plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    return ax
