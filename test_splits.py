import numpy as np
import pandas as pd
import pytest

from tabflow import Split, initial_split, initial_validation_split, testing, training, vfold_cv
from tabflow.splits import POOLED, _strata_labels


def test_initial_split_sizes_and_disjointness(cells):
    split = initial_split(cells, prop=0.75, seed=1)
    assert len(split.in_id) == 300
    assert len(split.out_id) == 100
    assert not set(split.in_id) & set(split.out_id)
    assert sorted(np.concatenate([split.in_id, split.out_id]).tolist()) == list(range(len(cells)))
    assert len(training(split)) == 300
    assert len(testing(split)) == 100


def test_initial_split_is_reproducible(cells):
    a = initial_split(cells, seed=11)
    b = initial_split(cells, seed=11)
    np.testing.assert_array_equal(a.in_id, b.in_id)


def test_stratified_split_keeps_class_balance(cells):
    split = initial_split(cells, prop=0.75, strata="class", seed=3)
    overall = (cells["class"] == "PS").mean()
    assert abs((training(split)["class"] == "PS").mean() - overall) < 0.03
    assert abs((testing(split)["class"] == "PS").mean() - overall) < 0.05


def test_numeric_strata_are_binned(cells):
    split = initial_split(cells, strata="area", seed=3)
    assert len(split.in_id) == 300


def test_initial_split_errors(cells):
    with pytest.raises(ValueError):
        initial_split(cells, prop=1.0)
    with pytest.raises(ValueError, match="Strata column"):
        initial_split(cells, strata="nope")
    with pytest.raises(ValueError):
        initial_split(cells.head(1), prop=0.5)


def test_split_rejects_overlap(cells):
    with pytest.raises(ValueError):
        Split(cells, [0, 1, 2], [2, 3])


def test_validation_split_sizes(cells):
    vsplit = initial_validation_split(cells, prop=(0.6, 0.2), strata="class", seed=5)
    assert len(vsplit.training()) == 240
    assert len(vsplit.validation()) == 80
    assert len(vsplit.testing()) == 80
    all_ids = np.concatenate([vsplit.train_id, vsplit.val_id, vsplit.test_id])
    assert len(set(all_ids.tolist())) == len(cells)

    as_split = vsplit.as_split()
    assert len(as_split.analysis()) == 240
    assert len(as_split.assessment()) == 80


def test_validation_split_rejects_bad_proportions(cells):
    with pytest.raises(ValueError):
        initial_validation_split(cells, prop=(0.7, 0.3))


def test_vfold_assesses_every_row_once(cells):
    folds = vfold_cv(cells, v=5, strata="class", seed=2)
    assert len(folds) == 5
    assert folds.ids == ["Fold1", "Fold2", "Fold3", "Fold4", "Fold5"]
    assessed = np.concatenate([s.out_id for s in folds])
    assert sorted(assessed.tolist()) == list(range(len(cells)))
    for split in folds:
        assert len(split.in_id) + len(split.out_id) == len(cells)


def test_vfold_ids_are_zero_padded():
    data = pd.DataFrame({"x": range(30)})
    folds = vfold_cv(data, v=10, seed=1)
    assert folds.ids[0] == "Fold01"
    assert folds.ids[-1] == "Fold10"


def test_repeated_vfold(cells):
    folds = vfold_cv(cells, v=4, repeats=2, seed=2)
    assert len(folds) == 8
    assert folds[0].id == "Repeat1"
    assert folds[0].id2 == "Fold1"
    assert folds.ids[-1] == "Repeat2/Fold4"


def test_vfold_errors(cells):
    with pytest.raises(ValueError):
        vfold_cv(cells.head(3), v=5)
    with pytest.raises(ValueError):
        vfold_cv(cells, v=5, repeats=0)


def test_small_strata_are_pooled():
    data = pd.DataFrame({"g": ["a"] * 50 + ["b"] * 45 + ["c"] * 3 + ["d"] * 2})
    labels = _strata_labels(data, "g", breaks=4, pool=0.1)
    assert set(labels) == {"a", "b", POOLED}


def test_single_stratum_disables_stratification():
    data = pd.DataFrame({"g": ["a"] * 20})
    assert _strata_labels(data, "g", breaks=4, pool=0.1) is None
