"""
Column selectors used by recipe steps.

A selector is resolved against a data frame and the recipe's role map
({column: role}) and returns column names in frame order. Selectors
combine with | (union), & (intersection) and - (difference).

Predicates are partials of module-level functions so recipes (and the
workflows holding them) can be pickled.
"""

import re
from functools import partial
from typing import Callable, Dict, Iterable, List, Sequence, Union

import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

Roles = Dict[str, str]

PREDICTOR = "predictor"
OUTCOME = "outcome"


def is_nominal(series: pd.Series) -> bool:
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or is_bool_dtype(series)
        or series.dtype == object
        or pd.api.types.is_string_dtype(series)
    )


def is_numeric(series: pd.Series) -> bool:
    return is_numeric_dtype(series) and not is_bool_dtype(series)


Predicate = Callable[[str, pd.Series, Roles], bool]


def _either(a: Predicate, b: Predicate, c, s, r) -> bool:
    return a(c, s, r) or b(c, s, r)


def _both(a: Predicate, b: Predicate, c, s, r) -> bool:
    return a(c, s, r) and b(c, s, r)


def _but_not(a: Predicate, b: Predicate, c, s, r) -> bool:
    return a(c, s, r) and not b(c, s, r)


class Selector:
    def __init__(self, predicate: Predicate, label: str, required: Sequence[str] = ()):
        self.predicate = predicate
        self.label = label
        #: explicit column names that must exist, carried through | & and -
        self.required = tuple(required)

    def select(self, data: pd.DataFrame, roles: Roles) -> List[str]:
        missing = [name for name in self.required if name not in data.columns]
        if missing:
            raise ValueError(f"Columns not found in data: {missing}")
        return [col for col in data.columns if self.predicate(col, data[col], roles)]

    def _combine(self, other: "Term", combinator, op: str) -> "Selector":
        other = as_selector(other)
        return Selector(partial(combinator, self.predicate, other.predicate), f"{self.label} {op} {other.label}",
                        self.required + other.required)

    def __or__(self, other: "Term") -> "Selector":
        return self._combine(other, _either, "|")

    def __ror__(self, other: "Term") -> "Selector":
        return as_selector(other)._combine(self, _either, "|")

    def __and__(self, other: "Term") -> "Selector":
        return self._combine(other, _both, "&")

    def __rand__(self, other: "Term") -> "Selector":
        return as_selector(other)._combine(self, _both, "&")

    def __sub__(self, other: "Term") -> "Selector":
        return self._combine(other, _but_not, "-")

    def __rsub__(self, other: "Term") -> "Selector":
        return as_selector(other)._combine(self, _but_not, "-")

    def __repr__(self) -> str:
        return self.label


Term = Union[str, Selector]


def _in_names(names, c, s, r) -> bool:
    return c in names


class _Names(Selector):
    """Explicit column names; every name must exist in the frame."""

    def __init__(self, names: Sequence[str]):
        self.names = list(names)
        super().__init__(partial(_in_names, tuple(self.names)), ", ".join(self.names), required=self.names)


def as_selector(term: Term) -> Selector:
    if isinstance(term, Selector):
        return term
    if isinstance(term, str):
        return _Names([term])
    raise TypeError(f"Expected a column name or Selector, got {type(term).__name__}")


def resolve(terms: Iterable[Term], data: pd.DataFrame, roles: Roles) -> List[str]:
    """Union of all terms, in frame column order."""
    chosen = set()
    for term in terms:
        chosen.update(as_selector(term).select(data, roles))
    return [col for col in data.columns if col in chosen]


def _role_is(role, c, s, r) -> bool:
    return r.get(c) == role


def _type_is(check, c, s, r) -> bool:
    return check(s)


def _role_and_type(role, check, c, s, r) -> bool:
    return r.get(c) == role and check(s)


def _name_test(test, text, c, s, r) -> bool:
    return test(str(c), text)


def _starts(name: str, prefix: str) -> bool:
    return name.startswith(prefix)


def _ends(name: str, suffix: str) -> bool:
    return name.endswith(suffix)


def _contains(name: str, text: str) -> bool:
    return text in name


def _search(name: str, regex) -> bool:
    return regex.search(name) is not None


def has_role(role: str) -> Selector:
    return Selector(partial(_role_is, role), f"has_role('{role}')")


def has_type(kind: str) -> Selector:
    checks = {"numeric": is_numeric, "nominal": is_nominal}
    if kind not in checks:
        raise ValueError(f"Unknown column type '{kind}'. Options: {sorted(checks)}")
    return Selector(partial(_type_is, checks[kind]), f"has_type('{kind}')")


def all_predictors() -> Selector:
    return Selector(partial(_role_is, PREDICTOR), "all_predictors()")


def all_outcomes() -> Selector:
    return Selector(partial(_role_is, OUTCOME), "all_outcomes()")


def all_numeric() -> Selector:
    return Selector(partial(_type_is, is_numeric), "all_numeric()")


def all_nominal() -> Selector:
    return Selector(partial(_type_is, is_nominal), "all_nominal()")


def all_numeric_predictors() -> Selector:
    return Selector(partial(_role_and_type, PREDICTOR, is_numeric), "all_numeric_predictors()")


def all_nominal_predictors() -> Selector:
    return Selector(partial(_role_and_type, PREDICTOR, is_nominal), "all_nominal_predictors()")


def starts_with(prefix: str) -> Selector:
    return Selector(partial(_name_test, _starts, prefix), f"starts_with('{prefix}')")


def ends_with(suffix: str) -> Selector:
    return Selector(partial(_name_test, _ends, suffix), f"ends_with('{suffix}')")


def contains(text: str) -> Selector:
    return Selector(partial(_name_test, _contains, text), f"contains('{text}')")


def matches(pattern: str) -> Selector:
    return Selector(partial(_name_test, _search, re.compile(pattern)), f"matches('{pattern}')")


def one_of(*names: str) -> Selector:
    return _Names(names)
