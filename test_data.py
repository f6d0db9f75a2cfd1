import numpy as np
import pandas as pd
import pytest

from tabflow import as_outcome, make_classification_frame, read_dataset


def test_classification_frame_shape_and_outcome():
    data = make_classification_frame(n=300, n_noise=3, seed=1)
    assert len(data) == 300
    assert {"cell_id", "area", "perimeter", "plate", "constant_flag", "noise_3", "class"} <= set(data.columns)
    assert list(data["class"].cat.categories) == ["PS", "WS"]
    assert data["constant_flag"].nunique() == 1
    assert data["cell_id"].is_unique


def test_classification_frame_has_correlated_and_skewed_columns():
    data = make_classification_frame(n=1000, seed=3)
    assert data["area"].corr(data["perimeter"]) > 0.9
    assert data["intensity_ch2"].corr(data["intensity_ch3"]) > 0.9
    assert (data["skew_ratio"] > 0).all()
    assert data["area"].skew() > 0


def test_classification_frame_is_reproducible():
    pd.testing.assert_frame_equal(make_classification_frame(n=50, seed=9), make_classification_frame(n=50, seed=9))


def test_classification_frame_event_rate_is_validated():
    with pytest.raises(ValueError):
        make_classification_frame(event_rate=1.2)


def test_read_dataset_by_suffix(tmp_path):
    frame = pd.DataFrame({"a": [1, 2, 3], "b": ["x", "y", "z"]})
    frame.to_csv(tmp_path / "data.csv", index=False)
    frame.to_csv(tmp_path / "data.tsv", sep="\t", index=False)

    pd.testing.assert_frame_equal(read_dataset(tmp_path / "data.csv"), frame)
    pd.testing.assert_frame_equal(read_dataset(str(tmp_path / "data.tsv")), frame)


def test_read_dataset_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset(tmp_path / "missing.csv")
    (tmp_path / "notes.txt").write_text("hello")
    with pytest.raises(ValueError, match="Unsupported"):
        read_dataset(tmp_path / "notes.txt")


def test_as_outcome_sorts_levels_by_default():
    out = as_outcome(pd.Series(["b", "a", "b", None]))
    assert list(out.cat.categories) == ["a", "b"]
    assert out.isna().sum() == 1


def test_as_outcome_keeps_categorical_levels_and_explicit_levels():
    series = pd.Series(pd.Categorical(["WS", "PS"], categories=["WS", "PS", "unused"]))
    assert list(as_outcome(series).cat.categories) == ["WS", "PS", "unused"]
    assert list(as_outcome(np.array([1, 0, 1]), levels=[1, 0]).cat.categories) == [1, 0]


def test_as_outcome_rejects_unknown_values():
    with pytest.raises(ValueError):
        as_outcome(["a", "c"], levels=["a", "b"])
