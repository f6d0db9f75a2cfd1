import pickle

import pandas as pd
import pytest

from tabflow import (all_nominal, all_nominal_predictors, all_numeric, all_numeric_predictors, all_outcomes,
                     all_predictors, contains, ends_with, has_role, has_type, matches, one_of, starts_with)
from tabflow.selectors import as_selector, resolve


@pytest.fixture
def frame():
    return pd.DataFrame({
        "id": ["r1", "r2"],
        "x_num": [1.0, 2.0],
        "x_cat": ["a", "b"],
        "flag": [True, False],
        "y": pd.Categorical(["u", "v"]),
    })


@pytest.fixture
def roles():
    return {"id": "id", "x_num": "predictor", "x_cat": "predictor", "flag": "predictor", "y": "outcome"}


def test_role_selectors(frame, roles):
    assert all_predictors().select(frame, roles) == ["x_num", "x_cat", "flag"]
    assert all_outcomes().select(frame, roles) == ["y"]
    assert has_role("id").select(frame, roles) == ["id"]


def test_type_selectors(frame, roles):
    assert all_numeric().select(frame, roles) == ["x_num"]
    assert all_nominal().select(frame, roles) == ["id", "x_cat", "flag", "y"]
    assert all_numeric_predictors().select(frame, roles) == ["x_num"]
    assert all_nominal_predictors().select(frame, roles) == ["x_cat", "flag"]
    assert has_type("numeric").select(frame, roles) == ["x_num"]
    with pytest.raises(ValueError):
        has_type("date")


def test_name_selectors(frame, roles):
    assert starts_with("x_").select(frame, roles) == ["x_num", "x_cat"]
    assert ends_with("_cat").select(frame, roles) == ["x_cat"]
    assert contains("la").select(frame, roles) == ["flag"]
    assert matches(r"^x_(num|cat)$").select(frame, roles) == ["x_num", "x_cat"]
    assert one_of("y", "id").select(frame, roles) == ["id", "y"]


def test_unknown_names_raise(frame, roles):
    with pytest.raises(ValueError, match="not found"):
        one_of("missing").select(frame, roles)
    with pytest.raises(TypeError):
        as_selector(3)


def test_combinations(frame, roles):
    assert (all_predictors() - all_numeric()).select(frame, roles) == ["x_cat", "flag"]
    assert (all_predictors() & starts_with("x_")).select(frame, roles) == ["x_num", "x_cat"]
    assert (all_outcomes() | "id").select(frame, roles) == ["id", "y"]
    assert ("id" | all_outcomes()).select(frame, roles) == ["id", "y"]
    assert ("flag" - all_numeric()).select(frame, roles) == ["flag"]


def test_combinations_keep_unknown_name_checks(frame, roles):
    for selector in (one_of("nope") | all_numeric(), all_numeric() - "nope", "nope" | all_outcomes(),
                     all_predictors() & one_of("x_num", "nope")):
        with pytest.raises(ValueError, match="nope"):
            selector.select(frame, roles)


def test_resolve_is_a_union_in_frame_order(frame, roles):
    assert resolve(["y", all_numeric_predictors(), "x_num"], frame, roles) == ["x_num", "y"]


def test_selectors_pickle(frame, roles):
    selector = (all_predictors() - matches("^flag$")) | "id"
    restored = pickle.loads(pickle.dumps(selector))
    assert restored.select(frame, roles) == selector.select(frame, roles)
