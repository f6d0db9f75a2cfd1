# %% [markdown]
# # Problem: **Is a cell poorly segmented?**

# %% [markdown]
# This walkthrough uses `tabflow` end to end on a two-class segmentation-quality table: split the data, declare
# the preprocessing as a recipe, fit a logistic regression and a random forest, evaluate both on the test set,
# and finally compare them with 10-fold cross-validation instead of a single test-set number.

# %% [markdown]
# # Setup

# %%
import matplotlib.pyplot as plt
import pandas as pd

from tabflow import (ControlResamples, Recipe, Workflow, accuracy, all_nominal_predictors, all_numeric_predictors,
                     all_predictors, compare_models, conf_mat, fit_resamples, initial_split, logistic_reg,
                     make_classification_frame, metric_set, plot_conf_mat, plot_metric_comparison, plot_roc_curve,
                     rand_forest, roc_auc, roc_curve, sens, spec, setup_logging, testing, training, vfold_cv,
                     workflow_set)

SEED = 42
setup_logging(log_dir=None)

# %%
# Show all columns
pd.set_option('display.max_columns', None)

# %% [markdown]
# # Data Loading and Initial Exploration

# %%
cells = make_classification_frame(n=2000, seed=SEED)
cells.head()

# %% [markdown]
# `class` is the outcome: `PS` (poorly segmented) is the event we care about and `WS` (well segmented) the rest.
# `cell_id` only identifies a row and must never be used as a predictor.

# %%
cells.shape

# %%
cells["class"].value_counts(normalize=True)

# %% [markdown]
# The classes are imbalanced (roughly 35% `PS`), so the split should be stratified to keep that ratio in both
# partitions.

# %%
cells.describe()

# %% [markdown]
# `area` and `skew_ratio` are strictly positive and right-skewed, which makes them candidates for a log
# transform. `constant_flag` never changes, so it carries no information.

# %%
fig, axes = plt.subplots(1, 2, figsize=(12, 4))
cells["area"].plot.hist(bins=40, ax=axes[0], title="area")
cells["skew_ratio"].plot.hist(bins=40, ax=axes[1], title="skew_ratio")
plt.show()

# %%
cells[["area", "perimeter", "intensity_ch1", "intensity_ch2", "intensity_ch3"]].corr().round(2)

# %% [markdown]
# `perimeter` follows `area` and `intensity_ch3` follows `intensity_ch2` almost exactly. Keeping both members of
# such pairs adds little for the random forest and makes the logistic regression coefficients unstable.

# %% [markdown]
# # Data Split

# %%
cell_split = initial_split(cells, prop=0.75, strata="class", seed=SEED)
cell_train = training(cell_split)
cell_test = testing(cell_split)
cell_split

# %%
pd.DataFrame({
    "train": cell_train["class"].value_counts(normalize=True),
    "test": cell_test["class"].value_counts(normalize=True),
}).round(3)

# %% [markdown]
# # Preprocessing Recipe
# The recipe is declared on the training set only. Every statistic it needs (dummy levels, which correlated
# columns to drop, column means for centering) is learned when it is prepped and reused unchanged on the test set.

# %%
cell_rec = (Recipe(cell_train, outcome="class")
            .update_role("cell_id", new_role="id")
            .step_log("area", "skew_ratio")
            .step_dummy(all_nominal_predictors())
            .step_zv(all_predictors())
            .step_corr(all_numeric_predictors(), threshold=0.9)
            .step_center(all_numeric_predictors()))
cell_rec

# %%
cell_rec_prepped = cell_rec.prep()
cell_rec_prepped.tidy()

# %%
# Columns removed by the correlation filter
cell_rec_prepped.tidy(4)

# %%
cell_rec_prepped.summary()

# %%
cell_rec_prepped.bake(cell_test).head()

# %% [markdown]
# # Models

# %% [markdown]
# ## Logistic Regression

# %%
lr_mod = logistic_reg()
lr_wflow = Workflow(cell_rec, lr_mod)
lr_fit = lr_wflow.fit(cell_train)
lr_fit.extract_fit().tidy()

# %% [markdown]
# ## Random Forest
# Trees do not need centered or decorrelated inputs, so the forest gets a lighter recipe: only the id role and the
# dummy encoding.

# %%
rf_rec = (Recipe(cell_train, outcome="class")
          .update_role("cell_id", new_role="id")
          .step_dummy(all_nominal_predictors()))
rf_mod = rand_forest(trees=1000).set_engine("sklearn", num_threads=4, seed=SEED).set_mode("classification")
rf_fit = Workflow(rf_rec, rf_mod).fit(cell_train)
rf_fit.extract_fit().tidy().head(10)

# %% [markdown]
# # Predictions on the Test Set

# %%
lr_test = lr_fit.augment(cell_test)
rf_test = rf_fit.augment(cell_test)
rf_test[["cell_id", "class", "pred_class", "pred_PS", "pred_WS"]].head()

# %% [markdown]
# # Evaluation

# %%
cls_metrics = metric_set(accuracy, roc_auc, sens, spec)

results = pd.concat({
    "logistic_reg": cls_metrics(lr_test, "class", estimate="pred_class", probs=["pred_PS", "pred_WS"]),
    "rand_forest": cls_metrics(rf_test, "class", estimate="pred_class", probs=["pred_PS", "pred_WS"]),
}, names=["model"]).reset_index(level=0)
results.pivot(index="metric", columns="model", values="estimate").round(4)

# %%
fig, axes = plt.subplots(1, 2, figsize=(14, 6))
plot_roc_curve(roc_curve(lr_test, "class", "pred_PS", "pred_WS"), ax=axes[0], title="Logistic Regression")
plot_roc_curve(roc_curve(rf_test, "class", "pred_PS", "pred_WS"), ax=axes[1], title="Random Forest")
plt.tight_layout()
plt.show()

# %%
rf_cm = conf_mat(rf_test, "class", "pred_class")
plot_conf_mat(rf_cm, title="Random Forest")
plt.show()
rf_cm.summary()

# %% [markdown]
# A single test set gives one number per metric with no idea of how much it would move on a different sample.
# Resampling the training set answers that without touching the test set again.

# %% [markdown]
# # 10-Fold Cross-Validation

# %%
cell_folds = vfold_cv(cell_train, v=10, strata="class", seed=SEED)
cell_folds

# %%
rf_res = fit_resamples(Workflow(rf_rec, rf_mod), cell_folds, metrics=cls_metrics,
                       control=ControlResamples(save_pred=True))
rf_res.collect_metrics()

# %%
rf_res.collect_metrics(summarize=False).query("metric == 'roc_auc'")

# %%
rf_res.collect_predictions().head()

# %% [markdown]
# # Model Comparison
# Both preprocessing variants crossed with both models, all evaluated on the same ten folds.

# %%
wflows = workflow_set({"full": cell_rec, "light": rf_rec}, {"lr": lr_mod, "rf": rf_mod})
comparison = compare_models(wflows, cell_folds, metrics=cls_metrics)
comparison.rank_results("roc_auc")

# %%
plot_metric_comparison(comparison.collect_metrics(), "roc_auc")
plt.show()

# %%
best_id = comparison.best("roc_auc")
print(f"Best workflow by resampled ROC AUC: {best_id}")
