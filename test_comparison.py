import pytest

from tabflow import (Recipe, Workflow, all_nominal_predictors, compare_models, logistic_reg, metric_set,
                     mn_log_loss, nearest_neighbor, rand_forest, roc_auc, vfold_cv, workflow_set)


@pytest.fixture
def preprocessors(binary_frame):
    return {
        "dummy": Recipe(binary_frame, outcome="y").step_dummy(all_nominal_predictors()),
        "numeric": "y ~ x1 + x2",
    }


@pytest.fixture
def models():
    return {
        "lr": logistic_reg(),
        "knn": nearest_neighbor(neighbors=15).set_mode("classification"),
    }


def test_workflow_set_crosses_names(preprocessors, models):
    workflows = workflow_set(preprocessors, models)
    assert list(workflows) == ["dummy_lr", "dummy_knn", "numeric_lr", "numeric_knn"]
    assert workflows["numeric_knn"].formula == "y ~ x1 + x2"
    assert workflows["dummy_lr"].preprocessor is preprocessors["dummy"]


def test_workflow_set_pairs_without_cross(preprocessors, models):
    workflows = workflow_set(preprocessors, models, cross=False)
    assert list(workflows) == ["dummy_lr", "numeric_knn"]
    with pytest.raises(ValueError):
        workflow_set(preprocessors, {"lr": logistic_reg()}, cross=False)


def test_compare_models_ranks_by_metric_direction(binary_frame, preprocessors, models):
    folds = vfold_cv(binary_frame, v=4, strata="y", seed=3)
    comparison = compare_models(workflow_set(preprocessors, models), folds,
                                metrics=metric_set(roc_auc, mn_log_loss))

    summary = comparison.collect_metrics()
    assert summary.columns.tolist()[0] == "wflow_id"
    assert len(summary) == 8
    assert (summary["n"] == 4).all()

    auc = summary[summary["metric"] == "roc_auc"].set_index("wflow_id")["mean"]
    assert comparison.best() == auc.idxmax()

    ranked = comparison.rank_results("mn_log_loss")
    log_loss = ranked[ranked["metric"] == "mn_log_loss"]
    assert log_loss["rank"].tolist() == [1, 2, 3, 4]
    assert log_loss["mean"].is_monotonic_increasing
    assert comparison.best("mn_log_loss") == log_loss.iloc[0]["wflow_id"]

    assert comparison["dummy_lr"].collect_metrics()["n"].tolist() == [4, 4]
    with pytest.raises(ValueError):
        comparison.rank_results("accuracy")


def test_compare_models_requires_one_mode(binary_frame, regression_frame):
    folds = vfold_cv(binary_frame, v=3, seed=1)
    mixed = {
        "clf": Workflow(formula="y ~ x1", spec=logistic_reg()),
        "reg": Workflow(formula="y ~ x1", spec=rand_forest().set_mode("regression")),
    }
    with pytest.raises(ValueError, match="single mode"):
        compare_models(mixed, folds)
    with pytest.raises(ValueError):
        compare_models({}, folds)
