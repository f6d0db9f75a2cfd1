import logging
import math

import pandas as pd
import pytest

from tabflow import (ControlResamples, Recipe, Workflow, accuracy, all_nominal_predictors, fit_resamples,
                     initial_split, last_fit, logistic_reg, metric_set, mn_log_loss, rmse, roc_auc, testing,
                     vfold_cv)
from tabflow.steps import Step


class FlaggedRowStep(Step):
    """Fails to prep whenever the flagged row is part of the training data."""
    operation = "flagged_row"

    def _fit(self, data, roles):
        if data["flag"].max() == 1:
            raise ValueError("flagged row in training data")


@pytest.fixture
def lr_workflow(binary_frame):
    rec = Recipe(binary_frame, outcome="y").step_dummy(all_nominal_predictors())
    return Workflow(rec, logistic_reg())


@pytest.fixture
def folds(binary_frame):
    return vfold_cv(binary_frame, v=5, strata="y", seed=11)


def test_fit_resamples_summarizes_each_metric(lr_workflow, folds):
    results = fit_resamples(lr_workflow, folds)
    summary = results.collect_metrics()
    assert summary["metric"].tolist() == ["accuracy", "roc_auc"]
    assert summary["n"].tolist() == [5, 5]
    assert summary["mean"].between(0.5, 1.0).all()
    assert (summary["std_err"] >= 0).all()
    assert results.notes.empty

    long = results.collect_metrics(summarize=False)
    assert len(long) == 10
    assert long.columns.tolist() == ["id", "metric", "estimator", "estimate"]
    acc = long[long["metric"] == "accuracy"]["estimate"]
    assert summary.loc[0, "mean"] == pytest.approx(acc.mean())
    assert summary.loc[0, "std_err"] == pytest.approx(acc.std() / math.sqrt(5))


def test_saved_predictions_cover_every_row_once(binary_frame, lr_workflow, folds):
    results = fit_resamples(lr_workflow, folds, control=ControlResamples(save_pred=True))
    preds = results.collect_predictions()
    assert preds.columns.tolist() == ["id", "row", "y", "pred_class", "pred_yes", "pred_no"]
    assert sorted(preds["row"]) == list(range(len(binary_frame)))
    assert preds["id"].nunique() == 5


def test_predictions_require_save_pred(lr_workflow, folds):
    results = fit_resamples(lr_workflow, folds)
    with pytest.raises(ValueError, match="save_pred"):
        results.collect_predictions()


def test_repeated_folds_carry_both_ids(lr_workflow, binary_frame):
    folds = vfold_cv(binary_frame, v=3, repeats=2, seed=2)
    results = fit_resamples(lr_workflow, folds, metrics=metric_set(accuracy))
    long = results.collect_metrics(summarize=False)
    assert long.columns.tolist()[:2] == ["id", "id2"]
    assert set(long["id"]) == {"Repeat1", "Repeat2"}
    assert results.collect_metrics().loc[0, "n"] == 6


def test_failed_resamples_become_notes(binary_frame):
    data = binary_frame.assign(flag=0)
    data.loc[17, "flag"] = 1
    rec = Recipe(data, outcome="y").step_dummy(all_nominal_predictors()).add_step(FlaggedRowStep("flag"))
    folds = vfold_cv(data, v=5, seed=5)

    results = fit_resamples(Workflow(rec, logistic_reg()), folds)
    assert len(results.notes) == 4
    assert results.notes["note"].str.startswith("ValueError").all()
    assert results.collect_metrics()["n"].tolist() == [1, 1]
    assert "4 failed" in repr(results)


def test_all_resamples_failing_raises(binary_frame, folds):
    # nominal predictor left unencoded
    wf = Workflow(Recipe(binary_frame, outcome="y"), logistic_reg())
    with pytest.raises(RuntimeError, match="All 5 resamples failed"):
        fit_resamples(wf, folds)


def test_folds_missing_a_class_keep_the_model_levels(rng):
    y = ["common"] * 60
    for i in (5, 20, 35, 50):
        y[i] = "rare"
    data = pd.DataFrame({"x": rng.normal(size=60), "y": y})

    results = fit_resamples(Workflow(Recipe(data, outcome="y"), logistic_reg()), vfold_cv(data, v=10, seed=3),
                            control=ControlResamples(save_pred=True))
    assert results.notes.empty
    summary = results.collect_metrics().set_index("metric")
    assert summary.loc["accuracy", "n"] == 10
    assert list(results.collect_predictions()["y"].cat.categories) == ["common", "rare"]


def test_parallel_failures_are_logged_by_the_caller(binary_frame, folds, caplog):
    wf = Workflow(Recipe(binary_frame, outcome="y"), logistic_reg())
    with caplog.at_level(logging.ERROR, logger="tabflow"):
        with pytest.raises(RuntimeError):
            fit_resamples(wf, folds, control=ControlResamples(n_jobs=2))
    worker_errors = [r for r in caplog.records if "failed in worker" in r.getMessage()]
    assert len(worker_errors) == 5
    assert worker_errors[0].name == "tabflow.resampling"


def test_metric_mode_must_match_model(lr_workflow, folds):
    with pytest.raises(ValueError, match="regression"):
        fit_resamples(lr_workflow, folds, metrics=metric_set(rmse))
    with pytest.raises(ValueError, match="add_model"):
        fit_resamples(Workflow(formula="y ~ x1"), folds)


def test_parallel_matches_sequential(lr_workflow, folds):
    metrics = metric_set(accuracy, mn_log_loss)
    sequential = fit_resamples(lr_workflow, folds, metrics=metrics).collect_metrics()
    parallel = fit_resamples(lr_workflow, folds, metrics=metrics,
                             control=ControlResamples(n_jobs=2)).collect_metrics()
    pd.testing.assert_frame_equal(sequential, parallel)


def test_last_fit_scores_the_test_set(binary_frame, lr_workflow):
    split = initial_split(binary_frame, strata="y", seed=1)
    final = last_fit(lr_workflow, split, metrics=metric_set(accuracy, roc_auc))

    assert final.collect_metrics()["metric"].tolist() == ["accuracy", "roc_auc"]
    preds = final.collect_predictions()
    assert len(preds) == len(testing(split))
    assert preds["row"].tolist() == list(split.out_id)
    assert final.extract_workflow().is_trained
    assert not lr_workflow.is_trained
