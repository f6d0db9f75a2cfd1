"""
Recipes: an ordered, declarative list of preprocessing steps bound to
column roles, prepped once on training data and baked on any data.
"""

import copy
import logging
import re
from typing import List, Optional, Tuple

import pandas as pd

from . import steps as S
from .selectors import OUTCOME, PREDICTOR, Roles, Term, is_nominal, is_numeric

logger = logging.getLogger(__name__)


def parse_formula(formula: str, columns: List[str]) -> Tuple[List[str], List[str]]:
    """
    Parses 'outcome ~ a + b' or 'outcome ~ .' into (outcomes, predictors).
    Several outcomes may be joined with '+' on the left-hand side.
    """
    if formula.count("~") != 1:
        raise ValueError(f"Invalid formula '{formula}': expected exactly one '~'")
    lhs, rhs = (part.strip() for part in formula.split("~"))
    outcomes = [term.strip() for term in lhs.split("+") if term.strip()]
    if not outcomes:
        raise ValueError(f"Invalid formula '{formula}': no outcome on the left-hand side")

    terms = [term.strip() for term in re.split(r"\+", rhs) if term.strip()]
    if not terms:
        raise ValueError(f"Invalid formula '{formula}': no predictors on the right-hand side")
    if terms == ["."]:
        predictors = [col for col in columns if col not in outcomes]
    elif "." in terms:
        raise ValueError(f"Invalid formula '{formula}': '.' cannot be combined with other terms")
    else:
        predictors = terms

    missing = [col for col in outcomes + predictors if col not in columns]
    if missing:
        raise ValueError(f"Formula '{formula}' references columns not in data: {missing}")
    return outcomes, predictors


class Recipe:
    def __init__(self, data: pd.DataFrame, formula: Optional[str] = None, outcome: Optional[str] = None):
        if formula is None and outcome is None:
            raise ValueError("Recipe needs a formula or an outcome column.")
        columns = list(data.columns)
        if formula is not None:
            outcomes, predictors = parse_formula(formula, columns)
        else:
            if outcome not in columns:
                raise ValueError(f"Outcome column '{outcome}' not found in data.")
            outcomes = [outcome]
            predictors = [col for col in columns if col != outcome]

        self.formula = formula
        self.template = data[[col for col in columns if col in outcomes or col in predictors]]
        self.roles: Roles = {col: OUTCOME if col in outcomes else PREDICTOR for col in self.template.columns}
        self.steps: List[S.Step] = []
        self.trained = False
        self.retained: Optional[pd.DataFrame] = None
        self.term_info: Roles = {}

    # ------------------------------------------------------------------
    # building
    # ------------------------------------------------------------------
    def _copy(self) -> "Recipe":
        new = copy.copy(self)
        new.steps = list(self.steps)
        new.roles = dict(self.roles)
        return new

    def add_step(self, step: S.Step) -> "Recipe":
        if self.trained:
            raise RuntimeError("Cannot add steps to a prepped recipe.")
        if not isinstance(step, S.Step):
            raise TypeError(f"Expected a Step, got {type(step).__name__}")
        new = self._copy()
        new.steps.append(step)
        return new

    def update_role(self, *columns: str, new_role: str = PREDICTOR) -> "Recipe":
        missing = [col for col in columns if col not in self.roles]
        if missing:
            raise ValueError(f"Cannot update role of unknown columns: {missing}")
        new = self._copy()
        for col in columns:
            new.roles[col] = new_role
        return new

    def step_dummy(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepDummy(*terms, **kwargs))

    def step_corr(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepCorr(*terms, **kwargs))

    def step_log(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepLog(*terms, **kwargs))

    def step_center(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepCenter(*terms, **kwargs))

    def step_scale(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepScale(*terms, **kwargs))

    def step_normalize(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepNormalize(*terms, **kwargs))

    def step_range(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepRange(*terms, **kwargs))

    def step_zv(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepZv(*terms, **kwargs))

    def step_nzv(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepNzv(*terms, **kwargs))

    def step_impute_mean(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepImputeMean(*terms, **kwargs))

    def step_impute_median(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepImputeMedian(*terms, **kwargs))

    def step_impute_mode(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepImputeMode(*terms, **kwargs))

    def step_impute_knn(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepImputeKnn(*terms, **kwargs))

    def step_other(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepOther(*terms, **kwargs))

    def step_rm(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepRm(*terms, **kwargs))

    def step_select_mutual_info(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepSelectMutualInfo(*terms, **kwargs))

    def step_adasyn(self, *terms: Term, **kwargs) -> "Recipe":
        return self.add_step(S.StepAdasyn(*terms, **kwargs))

    # ------------------------------------------------------------------
    # training / applying
    # ------------------------------------------------------------------
    def prep(self, training: Optional[pd.DataFrame] = None, retain: bool = True) -> "Recipe":
        """
        Trains every step in order, each on the output of the steps before it.
        Returns a trained copy; the recipe itself is left untouched.
        """
        if self.trained:
            raise RuntimeError("Recipe is already prepped.")
        data = self.template if training is None else training
        missing = [col for col in self.roles if col not in data.columns]
        if missing:
            raise ValueError(f"Training data is missing recipe columns: {missing}")

        trained = self._copy()
        trained.steps = [copy.deepcopy(step) for step in self.steps]
        current = data[list(self.roles)].copy()
        roles = dict(self.roles)

        for step in trained.steps:
            before = set(current.columns)
            step.prep(current, roles)
            current = step.bake(current)
            roles = {col: roles.get(col, step.new_role) for col in current.columns}
            added = [col for col in current.columns if col not in before]
            dropped = [col for col in before if col not in current.columns]
            logger.debug(f"Prepped {step.id}: +{len(added)} / -{len(dropped)} columns")

        trained.trained = True
        trained.term_info = roles
        trained.retained = current if retain else None
        logger.info(f"Recipe prepped on {len(data)} rows: {len(trained.steps)} steps, "
                    f"{sum(r == PREDICTOR for r in roles.values())} predictors")
        return trained

    def bake(self, new_data: Optional[pd.DataFrame] = None) -> pd.DataFrame:
        """
        Applies the trained steps to `new_data`. Without new data, returns the
        processed training set kept by prep(retain=True). Steps marked skip
        are not applied to new data.
        """
        if not self.trained:
            raise RuntimeError("Recipe has not been prepped. Call prep() first.")
        if new_data is None:
            if self.retained is None:
                raise RuntimeError("Training data was not retained; pass new_data or prep with retain=True.")
            return self.retained.copy()

        required = [col for col, role in self.roles.items() if role != OUTCOME]
        missing = [col for col in required if col not in new_data.columns]
        if missing:
            raise ValueError(f"New data is missing required columns: {missing}")

        current = new_data[[col for col in self.roles if col in new_data.columns]].copy()
        for step in self.steps:
            if step.skip:
                continue
            current = step.bake(current)
        return current

    def juice(self) -> pd.DataFrame:
        return self.bake(None)

    # ------------------------------------------------------------------
    # inspection
    # ------------------------------------------------------------------
    def predictor_names(self) -> List[str]:
        roles = self.term_info if self.trained else self.roles
        return [col for col, role in roles.items() if role == PREDICTOR]

    def outcome_names(self) -> List[str]:
        roles = self.term_info if self.trained else self.roles
        return [col for col, role in roles.items() if role == OUTCOME]

    def summary(self) -> pd.DataFrame:
        """One row per variable: its type, role and whether it was created by a step."""
        if self.trained and self.retained is not None:
            frame, roles = self.retained, self.term_info
        else:
            frame, roles = self.template, (self.term_info if self.trained else self.roles)
        rows = []
        for col, role in roles.items():
            if col in frame.columns:
                kind = "numeric" if is_numeric(frame[col]) else "nominal" if is_nominal(frame[col]) else "other"
            else:
                kind = "unknown"
            rows.append({"variable": col, "type": kind, "role": role,
                         "source": "original" if col in self.template.columns else "derived"})
        return pd.DataFrame(rows, columns=["variable", "type", "role", "source"])

    def tidy(self, number: Optional[int] = None) -> pd.DataFrame:
        """Without `number`, one row per step; with it, the details of that step (1-based)."""
        if number is not None:
            if not 1 <= number <= len(self.steps):
                raise ValueError(f"number must be between 1 and {len(self.steps)}, got {number}")
            return self.steps[number - 1].tidy()
        return pd.DataFrame(
            [{"number": i, "operation": step.operation, "trained": step.trained,
              "skip": step.skip, "id": step.id} for i, step in enumerate(self.steps, start=1)],
            columns=["number", "operation", "trained", "skip", "id"],
        )

    def __repr__(self) -> str:
        n_pred = sum(r == PREDICTOR for r in self.roles.values())
        n_out = sum(r == OUTCOME for r in self.roles.values())
        lines = [f"Recipe ({'trained' if self.trained else 'untrained'}): {n_out} outcome(s), {n_pred} predictor(s)"]
        lines.extend(f"  {i}. {step!r}" for i, step in enumerate(self.steps, start=1))
        return "\n".join(lines)


def recipe(data: pd.DataFrame, formula: Optional[str] = None, outcome: Optional[str] = None) -> Recipe:
    return Recipe(data, formula=formula, outcome=outcome)

