"""
Model specifications: a model family plus a fitting engine, translated
into a scikit-learn estimator only when the model is fit.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator
from sklearn.ensemble import (
    ExtraTreesClassifier,
    ExtraTreesRegressor,
    RandomForestClassifier,
    RandomForestRegressor,
)
from sklearn.linear_model import LogisticRegression
from sklearn.neighbors import KNeighborsClassifier, KNeighborsRegressor

from .data import as_outcome
from .recipe import parse_formula
from .selectors import is_numeric

logger = logging.getLogger(__name__)

MODES = ("classification", "regression")

# engine argument names shared by every engine
ENGINE_ARG_ALIASES = {"num_threads": "n_jobs", "seed": "random_state"}


@dataclass
class Engine:
    modes: Tuple[str, ...]
    build: Callable[["ModelSpec"], BaseEstimator]


@dataclass
class ModelSpec:
    model_type: str
    args: Dict[str, Any] = field(default_factory=dict)
    mode: str = "unknown"
    engine: Optional[str] = None
    engine_args: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.model_type not in ENGINES:
            raise ValueError(f"Unknown model type '{self.model_type}'. Options: {sorted(ENGINES)}")
        if self.engine is None:
            self.engine = DEFAULT_ENGINES[self.model_type]
        self._check_engine(self.engine)
        if self.mode != "unknown":
            self._check_mode(self.mode)

    def _check_engine(self, engine: str) -> None:
        engines = ENGINES[self.model_type]
        if engine not in engines:
            raise ValueError(f"Engine '{engine}' is not available for {self.model_type}. Options: {sorted(engines)}")

    def _check_mode(self, mode: str) -> None:
        modes = ENGINES[self.model_type][self.engine].modes
        if mode not in modes:
            raise ValueError(f"Mode '{mode}' is not supported by {self.model_type} ({self.engine}). Options: {modes}")

    def set_engine(self, engine: str, **engine_args) -> "ModelSpec":
        self._check_engine(engine)
        new = replace(self, engine=engine, engine_args=dict(engine_args))
        if new.mode != "unknown":
            new._check_mode(new.mode)
        return new

    def set_mode(self, mode: str) -> "ModelSpec":
        if mode not in MODES:
            raise ValueError(f"Unknown mode '{mode}'. Options: {MODES}")
        self._check_mode(mode)
        return replace(self, mode=mode)

    def set_args(self, **args) -> "ModelSpec":
        return replace(self, args={**self.args, **args})

    def engine_params(self) -> Dict[str, Any]:
        return {ENGINE_ARG_ALIASES.get(k, k): v for k, v in self.engine_args.items()}

    def translate(self) -> BaseEstimator:
        """Builds the (unfitted) scikit-learn estimator for this spec."""
        if self.mode == "unknown":
            raise ValueError(f"Set the mode of the {self.model_type} spec before fitting (set_mode).")
        return ENGINES[self.model_type][self.engine].build(self)

    def fit_xy(self, x: pd.DataFrame, y: pd.Series) -> "ModelFit":
        """Fits on a numeric predictor frame and an outcome series."""
        non_numeric = [col for col in x.columns if not is_numeric(x[col])]
        if non_numeric:
            raise ValueError(f"Predictors must be numeric; encode these first (e.g. step_dummy): {non_numeric}")
        if len(x) != len(y):
            raise ValueError(f"x has {len(x)} rows but y has {len(y)}")

        missing_y = y.isna().to_numpy()
        if missing_y.any():
            logger.warning(f"Dropping {missing_y.sum()} rows with a missing outcome")
            x, y = x.loc[~missing_y], y.loc[~missing_y]

        estimator = self.translate()
        mtry = self.args.get("mtry")
        if mtry is not None and mtry > x.shape[1]:
            logger.warning(f"mtry={mtry} exceeds the {x.shape[1]} predictors; using {x.shape[1]}")
            estimator.set_params(max_features=x.shape[1])

        levels: Optional[List[Any]] = None
        if self.mode == "classification":
            y = as_outcome(y)
            levels = list(y.cat.categories)
            target = y.cat.codes.to_numpy()
        else:
            target = y.to_numpy(dtype=float)

        start = time.perf_counter()
        estimator.fit(x, target)
        elapsed = time.perf_counter() - start
        logger.info(f"Trained {self.model_type} ({self.engine}) on {len(x)} samples with "
                    f"{x.shape[1]} features in {elapsed:.2f}s")
        return ModelFit(self, estimator, list(x.columns), y.name, levels, elapsed)

    def fit(self, formula: str, data: pd.DataFrame) -> "ModelFit":
        outcomes, predictors = parse_formula(formula, list(data.columns))
        if len(outcomes) != 1:
            raise ValueError(f"Model formulas need exactly one outcome, got {outcomes}")
        return self.fit_xy(data[predictors], data[outcomes[0]])

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v}" for k, v in self.args.items() if v is not None)
        eng = ", ".join(f"{k}={v}" for k, v in self.engine_args.items())
        return (f"<{self.model_type}({args}) mode={self.mode} engine={self.engine}"
                f"{f' [{eng}]' if eng else ''}>")


class ModelFit:
    """A fitted model together with the spec, predictor names and outcome levels it was fit with."""

    def __init__(self, spec: ModelSpec, estimator: BaseEstimator, predictors: List[str],
                 outcome: Optional[str], levels: Optional[List[Any]], elapsed: float = 0.0):
        self.spec = spec
        self.estimator = estimator
        self.predictors = predictors
        self.outcome = outcome
        self.levels = levels
        self.elapsed = elapsed

    @property
    def mode(self) -> str:
        return self.spec.mode

    def _matrix(self, new_data: pd.DataFrame) -> pd.DataFrame:
        missing = [col for col in self.predictors if col not in new_data.columns]
        if missing:
            raise ValueError(f"New data is missing predictors: {missing}")
        return new_data[self.predictors]

    def predict(self, new_data: pd.DataFrame, type: Optional[str] = None) -> pd.DataFrame:
        """
        Predictions aligned with new_data's index.
        type='class' -> 'pred_class'; 'prob' -> one 'pred_<level>' column per level;
        'numeric' -> 'pred'.
        """
        type = type or ("class" if self.mode == "classification" else "numeric")
        X = self._matrix(new_data)

        if type == "numeric":
            if self.mode != "regression":
                raise ValueError("type='numeric' is only available for regression models")
            return pd.DataFrame({"pred": self.estimator.predict(X)}, index=new_data.index)

        if self.mode != "classification":
            raise ValueError(f"type='{type}' is only available for classification models")
        if type == "class":
            codes = np.asarray(self.estimator.predict(X), dtype=int)
            return pd.DataFrame({"pred_class": pd.Categorical.from_codes(codes, categories=self.levels)},
                                index=new_data.index)
        if type == "prob":
            if not hasattr(self.estimator, "predict_proba"):
                raise ValueError(f"{self.spec.model_type} ({self.spec.engine}) does not produce probabilities")
            proba = self.estimator.predict_proba(X)
            probs = np.zeros((len(X), len(self.levels)))
            probs[:, np.asarray(self.estimator.classes_, dtype=int)] = proba
            return pd.DataFrame(probs, columns=prob_columns(self.levels), index=new_data.index)
        raise ValueError(f"Unknown prediction type '{type}'. Options: class, prob, numeric")

    def tidy(self) -> pd.DataFrame:
        """Coefficients for linear models, impurity importances for tree ensembles."""
        est = self.estimator
        if hasattr(est, "coef_"):
            rows = []
            classes = [self.levels[int(c)] for c in est.classes_]
            # binary fits have one row of coefficients, for the second level
            targets = classes[1:] if est.coef_.shape[0] == 1 else classes
            for target, coefs, intercept in zip(targets, est.coef_, est.intercept_):
                rows.append({"class": target, "term": "(Intercept)", "estimate": float(intercept)})
                rows.extend({"class": target, "term": term, "estimate": float(value)}
                            for term, value in zip(self.predictors, coefs))
            return pd.DataFrame(rows, columns=["class", "term", "estimate"])
        if hasattr(est, "feature_importances_"):
            return (pd.DataFrame({"term": self.predictors, "importance": est.feature_importances_})
                    .sort_values("importance", ascending=False, ignore_index=True))
        return pd.DataFrame({"term": self.predictors})

    def __repr__(self) -> str:
        return f"<ModelFit {self.spec!r} predictors={len(self.predictors)} time={self.elapsed:.2f}s>"


def prob_columns(levels: List[Any]) -> List[str]:
    return [f"pred_{level}" for level in levels]


# ----------------------------------------------------------------------
# engines
# ----------------------------------------------------------------------
def _logistic_params(spec: ModelSpec, solver: str) -> Dict[str, Any]:
    penalty = spec.args.get("penalty")
    mixture = spec.args.get("mixture")
    params: Dict[str, Any] = {"max_iter": 1000}

    if penalty is None or penalty == 0:
        if solver == "liblinear":
            # liblinear always regularizes; fall back to C=1 with an l2 penalty
            params.update(penalty="l2", C=1.0)
        else:
            params["penalty"] = None
    else:
        if penalty < 0:
            raise ValueError(f"penalty must be non-negative, got {penalty}")
        params["C"] = 1.0 / penalty
        if mixture is None or mixture == 0:
            params["penalty"] = "l2"
        elif mixture == 1:
            params["penalty"] = "l1"
        elif 0 < mixture < 1:
            if solver == "liblinear":
                raise ValueError("The liblinear engine does not support elastic-net mixtures")
            params.update(penalty="elasticnet", l1_ratio=mixture)
        else:
            raise ValueError(f"mixture must be in [0, 1], got {mixture}")

    if solver != "liblinear":
        solver = "saga" if params["penalty"] in ("l1", "elasticnet") else "lbfgs"
    params["solver"] = solver
    return params


def _logistic_sklearn(spec: ModelSpec) -> BaseEstimator:
    return LogisticRegression(**{**_logistic_params(spec, "lbfgs"), **spec.engine_params()})


def _logistic_liblinear(spec: ModelSpec) -> BaseEstimator:
    return LogisticRegression(**{**_logistic_params(spec, "liblinear"), **spec.engine_params()})


def _forest_params(spec: ModelSpec) -> Dict[str, Any]:
    params: Dict[str, Any] = {"n_estimators": spec.args.get("trees") or 500}
    if spec.args.get("min_n") is not None:
        params["min_samples_split"] = max(2, int(spec.args["min_n"]))
    if spec.args.get("mtry") is not None:
        params["max_features"] = int(spec.args["mtry"])
    return params


def _forest(classifier, regressor):
    def build(spec: ModelSpec) -> BaseEstimator:
        cls = classifier if spec.mode == "classification" else regressor
        return cls(**{**_forest_params(spec), **spec.engine_params()})
    return build


def _knn(spec: ModelSpec) -> BaseEstimator:
    params = {
        "n_neighbors": spec.args.get("neighbors") or 5,
        "weights": spec.args.get("weight_func") or "uniform",
    }
    cls = KNeighborsClassifier if spec.mode == "classification" else KNeighborsRegressor
    return cls(**{**params, **spec.engine_params()})


ENGINES: Dict[str, Dict[str, Engine]] = {
    "logistic_reg": {
        "sklearn": Engine(("classification",), _logistic_sklearn),
        "liblinear": Engine(("classification",), _logistic_liblinear),
    },
    "rand_forest": {
        "sklearn": Engine(MODES, _forest(RandomForestClassifier, RandomForestRegressor)),
        "extra_trees": Engine(MODES, _forest(ExtraTreesClassifier, ExtraTreesRegressor)),
    },
    "nearest_neighbor": {
        "sklearn": Engine(MODES, _knn),
    },
}

DEFAULT_ENGINES = {"logistic_reg": "sklearn", "rand_forest": "sklearn", "nearest_neighbor": "sklearn"}


def register_engine(model_type: str, name: str, modes: Tuple[str, ...],
                    build: Callable[[ModelSpec], BaseEstimator]) -> None:
    """Adds an engine for a model type; `build` maps a spec to an unfitted estimator."""
    if model_type not in ENGINES:
        ENGINES[model_type] = {}
        DEFAULT_ENGINES[model_type] = name
    if name in ENGINES[model_type]:
        raise ValueError(f"Engine '{name}' already registered for {model_type}.")
    ENGINES[model_type][name] = Engine(tuple(modes), build)


# ----------------------------------------------------------------------
# spec constructors
# ----------------------------------------------------------------------
def logistic_reg(penalty: Optional[float] = None, mixture: Optional[float] = None,
                 mode: str = "classification", engine: str = "sklearn") -> ModelSpec:
    return ModelSpec("logistic_reg", {"penalty": penalty, "mixture": mixture}, mode=mode, engine=engine)


def rand_forest(mtry: Optional[int] = None, trees: Optional[int] = None, min_n: Optional[int] = None,
                mode: str = "unknown", engine: str = "sklearn") -> ModelSpec:
    return ModelSpec("rand_forest", {"mtry": mtry, "trees": trees, "min_n": min_n}, mode=mode, engine=engine)


def nearest_neighbor(neighbors: Optional[int] = None, weight_func: Optional[str] = None,
                     mode: str = "unknown", engine: str = "sklearn") -> ModelSpec:
    return ModelSpec("nearest_neighbor", {"neighbors": neighbors, "weight_func": weight_func},
                     mode=mode, engine=engine)
