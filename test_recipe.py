import pickle

import pandas as pd
import pytest

from tabflow import Recipe, all_nominal_predictors, all_numeric_predictors, all_predictors, initial_split, recipe, \
    testing, training
from tabflow.recipe import parse_formula


def test_parse_formula():
    columns = ["y", "a", "b", "c"]
    assert parse_formula("y ~ .", columns) == (["y"], ["a", "b", "c"])
    assert parse_formula("y ~ a + c", columns) == (["y"], ["a", "c"])
    for bad in ("y", "~ a", "y ~ ", "y ~ . + a", "y ~ missing"):
        with pytest.raises(ValueError):
            parse_formula(bad, columns)


def test_roles_from_formula_and_outcome(binary_frame):
    rec = recipe(binary_frame, formula="y ~ x1 + group")
    assert rec.roles == {"x1": "predictor", "group": "predictor", "y": "outcome"}
    assert list(rec.template.columns) == ["x1", "group", "y"]

    rec = Recipe(binary_frame, outcome="y")
    assert rec.outcome_names() == ["y"]
    assert rec.predictor_names() == ["x1", "x2", "group"]
    with pytest.raises(ValueError):
        Recipe(binary_frame)
    with pytest.raises(ValueError):
        Recipe(binary_frame, outcome="nope")


def test_steps_are_added_immutably(binary_frame):
    base = Recipe(binary_frame, outcome="y")
    extended = base.step_dummy(all_nominal_predictors()).step_center(all_numeric_predictors())
    assert len(base.steps) == 0
    assert len(extended.steps) == 2
    assert extended.tidy()["operation"].tolist() == ["dummy", "center"]


def test_prep_returns_trained_copy(binary_frame):
    rec = Recipe(binary_frame, outcome="y").step_dummy(all_nominal_predictors())
    prepped = rec.prep()
    assert prepped.trained and not rec.trained
    assert not rec.steps[0].trained
    assert prepped.predictor_names() == ["x1", "x2", "group_b", "group_c"]
    with pytest.raises(RuntimeError):
        prepped.step_zv(all_predictors())
    with pytest.raises(RuntimeError):
        prepped.prep()


def test_bake_applies_training_statistics(cells):
    split = initial_split(cells, strata="class", seed=4)
    rec = (Recipe(training(split), outcome="class")
           .update_role("cell_id", new_role="id")
           .step_log("area", "skew_ratio")
           .step_dummy(all_nominal_predictors())
           .step_zv(all_predictors())
           .step_corr(all_numeric_predictors(), threshold=0.9)
           .step_center(all_numeric_predictors()))
    prepped = rec.prep()
    train = prepped.juice()
    test = prepped.bake(testing(split))

    assert list(train.columns) == list(test.columns)
    assert "constant_flag" not in train.columns
    assert not {"intensity_ch2", "intensity_ch3"} <= set(train.columns)
    assert "cell_id" in train.columns
    assert "cell_id" not in prepped.predictor_names()
    assert {"plate_B", "plate_C", "plate_D"} <= set(train.columns)
    assert abs(train["intensity_ch1"].mean()) < 1e-9
    assert len(test) == len(testing(split))


def test_bake_without_outcome_and_missing_predictors(binary_frame):
    prepped = Recipe(binary_frame, outcome="y").step_center("x1").prep()
    baked = prepped.bake(binary_frame.drop(columns="y"))
    assert "y" not in baked.columns
    with pytest.raises(ValueError, match="missing"):
        prepped.bake(binary_frame.drop(columns="x1"))
    with pytest.raises(RuntimeError):
        Recipe(binary_frame, outcome="y").bake(binary_frame)


def test_skip_steps_are_not_baked(rng):
    n = 100
    data = pd.DataFrame({
        "x": rng.normal(size=n),
        "y": pd.Categorical(["a"] * 80 + ["b"] * 20),
    })
    prepped = Recipe(data, outcome="y").step_adasyn(seed=3).prep()
    assert len(prepped.juice()) > n
    assert len(prepped.bake(data)) == n


def test_summary_and_tidy(binary_frame):
    prepped = Recipe(binary_frame, outcome="y").step_dummy("group").prep()
    summary = prepped.summary().set_index("variable")
    assert summary.loc["group_b", "source"] == "derived"
    assert summary.loc["x1", "type"] == "numeric"
    assert summary.loc["y", "role"] == "outcome"
    assert prepped.tidy(1)["terms"].unique().tolist() == ["group"]
    with pytest.raises(ValueError):
        prepped.tidy(5)


def test_prepped_recipe_pickles(binary_frame):
    prepped = Recipe(binary_frame, outcome="y").step_dummy(all_nominal_predictors()).prep()
    restored = pickle.loads(pickle.dumps(prepped))
    pd.testing.assert_frame_equal(restored.bake(binary_frame), prepped.bake(binary_frame))
