"""
Workflows bundle a preprocessor (recipe or formula) with a model spec so
both are fit together and applied together at prediction time.
"""

import copy
import logging
from typing import Optional

import pandas as pd

from .models import ModelFit, ModelSpec
from .recipe import Recipe

logger = logging.getLogger(__name__)


class Workflow:
    def __init__(self, preprocessor: Optional[Recipe] = None, spec: Optional[ModelSpec] = None,
                 formula: Optional[str] = None):
        if preprocessor is not None and formula is not None:
            raise ValueError("A workflow takes either a recipe or a formula, not both.")
        self.preprocessor = preprocessor
        self.formula = formula
        self.spec = spec
        self.fitted_recipe: Optional[Recipe] = None
        self.fit_: Optional[ModelFit] = None

    # ------------------------------------------------------------------
    # composition
    # ------------------------------------------------------------------
    def _copy(self) -> "Workflow":
        new = copy.copy(self)
        new.fitted_recipe = None
        new.fit_ = None
        return new

    def add_recipe(self, recipe: Recipe) -> "Workflow":
        if self.preprocessor is not None or self.formula is not None:
            raise ValueError("Workflow already has a preprocessor; use remove_recipe() first.")
        if recipe.trained:
            raise ValueError("Add an untrained recipe; the workflow preps it when fitting.")
        new = self._copy()
        new.preprocessor = recipe
        return new

    def add_formula(self, formula: str) -> "Workflow":
        if self.preprocessor is not None or self.formula is not None:
            raise ValueError("Workflow already has a preprocessor; use remove_recipe() first.")
        new = self._copy()
        new.formula = formula
        return new

    def remove_recipe(self) -> "Workflow":
        new = self._copy()
        new.preprocessor = None
        new.formula = None
        return new

    def add_model(self, spec: ModelSpec) -> "Workflow":
        if self.spec is not None:
            raise ValueError("Workflow already has a model; use update_model() instead.")
        new = self._copy()
        new.spec = spec
        return new

    def update_model(self, spec: ModelSpec) -> "Workflow":
        new = self._copy()
        new.spec = spec
        return new

    # ------------------------------------------------------------------
    # fitting / predicting
    # ------------------------------------------------------------------
    @property
    def is_trained(self) -> bool:
        return self.fit_ is not None

    def _recipe_for(self, data: pd.DataFrame) -> Recipe:
        if self.preprocessor is not None:
            return self.preprocessor
        if self.formula is not None:
            return Recipe(data, formula=self.formula)
        raise ValueError("Workflow has no preprocessor; add a recipe or a formula.")

    def fit(self, data: pd.DataFrame) -> "Workflow":
        """Preps the recipe on `data`, fits the model on the processed data and returns a trained copy."""
        if self.spec is None:
            raise ValueError("Workflow has no model; call add_model() first.")
        prepped = self._recipe_for(data).prep(data)
        processed = prepped.juice()

        outcomes = prepped.outcome_names()
        if len(outcomes) != 1:
            raise ValueError(f"Workflow needs exactly one outcome, got {outcomes}")
        predictors = prepped.predictor_names()
        if not predictors:
            raise ValueError("No predictors left after preprocessing.")

        trained = self._copy()
        trained.fitted_recipe = prepped
        trained.fit_ = self.spec.fit_xy(processed[predictors], processed[outcomes[0]])
        return trained

    def _check_trained(self) -> None:
        if not self.is_trained:
            raise RuntimeError("Workflow has not been fit. Call fit() first.")

    def predict(self, new_data: pd.DataFrame, type: Optional[str] = None) -> pd.DataFrame:
        self._check_trained()
        baked = self.fitted_recipe.bake(new_data)
        return self.fit_.predict(baked, type=type)

    def augment(self, new_data: pd.DataFrame) -> pd.DataFrame:
        """new_data with prediction columns appended (class and probabilities for classifiers)."""
        self._check_trained()
        baked = self.fitted_recipe.bake(new_data)
        if self.fit_.mode == "classification":
            parts = [self.fit_.predict(baked, type="class")]
            if hasattr(self.fit_.estimator, "predict_proba"):
                parts.append(self.fit_.predict(baked, type="prob"))
        else:
            parts = [self.fit_.predict(baked, type="numeric")]
        return pd.concat([new_data] + parts, axis=1)

    # ------------------------------------------------------------------
    # extraction
    # ------------------------------------------------------------------
    def extract_recipe(self) -> Recipe:
        self._check_trained()
        return self.fitted_recipe

    def extract_fit(self) -> ModelFit:
        self._check_trained()
        return self.fit_

    def extract_estimator(self):
        return self.extract_fit().estimator

    def outcome_name(self) -> str:
        self._check_trained()
        return self.fitted_recipe.outcome_names()[0]

    def __repr__(self) -> str:
        pre = "formula: " + self.formula if self.formula else ("recipe" if self.preprocessor else "none")
        n_steps = len(self.preprocessor.steps) if self.preprocessor else 0
        return (f"<Workflow preprocessor={pre}{f' ({n_steps} steps)' if n_steps else ''} "
                f"model={self.spec!r} {'trained' if self.is_trained else 'untrained'}>")


def workflow(preprocessor: Optional[Recipe] = None, spec: Optional[ModelSpec] = None) -> Workflow:
    return Workflow(preprocessor, spec)
