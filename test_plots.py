import matplotlib.pyplot as plt
import pytest

from tabflow import (Recipe, Workflow, all_nominal_predictors, compare_models, conf_mat, logistic_reg,
                     plot_conf_mat, plot_metric_comparison, plot_roc_curve, roc_curve, vfold_cv, workflow_set)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def augmented(binary_frame):
    rec = Recipe(binary_frame, outcome="y").step_dummy(all_nominal_predictors())
    return Workflow(rec, logistic_reg()).fit(binary_frame).augment(binary_frame)


def test_plot_roc_curve(augmented):
    ax = plot_roc_curve(roc_curve(augmented, "y", "pred_yes", "pred_no"))
    assert ax.get_xlabel() == "1 - Specificity"
    assert len(ax.get_lines()) == 2


def test_plot_conf_mat_on_given_axes(augmented):
    _, ax = plt.subplots()
    assert plot_conf_mat(conf_mat(augmented, "y", "pred_class"), ax=ax, title="Test") is ax
    assert ax.get_title() == "Test"


def test_plot_metric_comparison(binary_frame):
    workflows = workflow_set({"form": "y ~ x1 + x2"}, {"lr": logistic_reg()})
    summary = compare_models(workflows, vfold_cv(binary_frame, v=3, seed=0)).collect_metrics()
    ax = plot_metric_comparison(summary, "roc_auc")
    assert len(ax.patches) == 1
    with pytest.raises(ValueError, match="not found"):
        plot_metric_comparison(summary, "rmse")
