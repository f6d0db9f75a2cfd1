import os
from pathlib import Path

import pytest

from tabflow import (Experiment, PipelineConfig, Recipe, all_numeric_predictors, default_models, default_recipe,
                     logistic_reg, make_classification_frame, nearest_neighbor)
from tabflow.experiment import ACTIONS_FILE, main


@pytest.fixture
def config(log_dir):
    return PipelineConfig(folds=3, seed=5, log_dir=log_dir)


@pytest.fixture
def small_models():
    return {
        "lr": logistic_reg(),
        "knn": nearest_neighbor(neighbors=11).set_mode("classification"),
    }


def test_default_recipe_steps(cells):
    rec = default_recipe(cells, "class", id_cols=["cell_id"], log_cols=["area"])
    assert rec.tidy()["operation"].tolist() == ["log", "dummy", "zv", "corr", "center"]
    assert rec.roles["cell_id"] == "id"


def test_default_models_follow_mode():
    config = PipelineConfig(n_jobs=2, seed=9)
    clf = default_models("classification", config)
    assert list(clf) == ["logistic_reg", "rand_forest"]
    assert clf["rand_forest"].engine_args == {"num_threads": 2, "seed": 9}
    assert list(default_models("regression", config)) == ["rand_forest", "nearest_neighbor"]


def test_experiment_runs_every_stage(cells, config, small_models, tmp_path):
    experiment = Experiment(cells, "class", strata="class", models=small_models, config=config,
                            id_cols=["cell_id"], log_cols=["area", "skew_ratio"],
                            model_dir=str(tmp_path / "models"))
    state = experiment.run()

    assert state["error"] is None
    assert state["current_step"] == "completed"
    assert set(state["metrics"]["resampling"]) == {"base_lr", "base_knn"}
    assert state["best_id"] in state["metrics"]["resampling"]
    assert list(state["metrics"]["test"]) == ["accuracy", "roc_auc"]
    assert len(state["folds"]) == 3
    assert os.path.exists(state["metrics"]["model_path"])

    assert len(state["logs"]) == 5
    lines = (Path(config.log_dir) / ACTIONS_FILE).read_text().splitlines()
    assert [line.split(" | ")[1] for line in lines] == [
        "DataLoading", "Splitting", "Resampling", "FinalFit", "Reporting"]


def test_regression_experiment_with_custom_recipe(regression_frame, config):
    def numeric_recipe(data, outcome):
        return Recipe(data, outcome=outcome).step_center(all_numeric_predictors())

    experiment = Experiment(regression_frame, "target", recipe_fn=numeric_recipe,
                            models={"knn": nearest_neighbor(neighbors=5).set_mode("regression")}, config=config)
    state = experiment.run()
    assert state["error"] is None
    assert state["best_id"] == "base_knn"
    assert list(state["metrics"]["test"]) == ["rmse", "rsq"]


def test_missing_outcome_stops_the_graph(cells, config):
    state = Experiment(cells, "nope", config=config).run()
    assert state["error"].startswith("DataLoading: ValueError")
    assert state["current_step"] == "initialized"
    assert state["split"] is None
    assert len(state["logs"]) == 1


def test_missing_outcome_values_are_dropped(config, small_models):
    data = make_classification_frame(n=200, seed=8).drop(columns="cell_id")
    data.loc[:9, "class"] = None
    state = Experiment(data, "class", models=small_models, config=config).run()
    assert state["error"] is None
    assert len(state["data"]) == 190


def test_main_on_a_csv_file(tmp_path, log_dir, capsys):
    path = tmp_path / "cells.csv"
    make_classification_frame(n=300, seed=4).to_csv(path, index=False)

    code = main([str(path), "--outcome", "class", "--strata", "class", "--folds", "3",
                 "--log-dir", log_dir, "--id-cols", "cell_id"])
    out = capsys.readouterr().out
    assert code == 0
    assert "✅ Experiment completed successfully!" in out
    assert "base_logistic_reg" in out
    assert (Path(log_dir) / ACTIONS_FILE).exists()


def test_main_errors(tmp_path, log_dir, monkeypatch, capsys):
    assert main([str(tmp_path / "missing.csv"), "--outcome", "y", "--log-dir", log_dir]) == 1
    monkeypatch.setenv("TABFLOW_FOLDS", "ten")
    assert main(["--demo", "--log-dir", log_dir]) == 2
    assert "TABFLOW_FOLDS" in capsys.readouterr().out
    with pytest.raises(SystemExit):
        main(["data.csv"])


def test_main_rejects_unknown_log_level(log_dir, monkeypatch, capsys):
    monkeypatch.setenv("TABFLOW_LOG_LEVEL", "LOUD")
    assert main(["--demo", "--log-dir", log_dir]) == 2
    assert "log_level" in capsys.readouterr().out
