# race_match_analysis/model.py
"""
Weighted binomial logistic regression on match proportions.

Model
-----
matchProp is a proportion, not a 0/1 label. Each school-group row is treated
as totalTeacher "trials" with success rate matchProp:

    logit(E[matchProp]) = X beta,   prior weights = totalTeacher

fit with statsmodels GLM (Binomial family, logit link, IRLS). The candidate
formula crosses three blocks:

    (enrollShare + totalTeacher + enrollTotal)
      * (Elementary + SchoolType)
      * C(EthnicGroup, Sum)

EthnicGroup uses deviation (sum-to-zero) coding, so each ethnic-group
coefficient is a deviation from the grand mean across groups and the omitted
group's effect is minus the sum of the others.

The full design matrix is built once with patsy; every sub-model is a column
subset of it, which keeps the coding of each term fixed during selection.
Sub-models are pruned with the stepwise search in ``selection.py`` scored by

    BIC = -2 * loglike + log(n_train) * rank(X)
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
import patsy
import polars as pl
import statsmodels.api as sm

from race_match_analysis.config import DEFAULT_QUANTITATIVE_PREDICTORS, DEFAULT_SCHOOL_FACTORS
from race_match_analysis.selection import SearchStrategy, SelectionResult, Term, select_terms

logger = logging.getLogger(__name__)


class ModelFitError(RuntimeError):
    """No valid model can be fitted (bad weights, rank deficiency, non-convergence)."""


@dataclass(frozen=True)
class ModelSpec:
    """Response, weight and predictor blocks of the candidate model."""

    response: str = "matchProp"
    weight: str = "totalTeacher"
    quantitative: tuple[str, ...] = DEFAULT_QUANTITATIVE_PREDICTORS
    school_factors: tuple[str, ...] = DEFAULT_SCHOOL_FACTORS
    group_factor: str | None = "EthnicGroup"

    @property
    def group_term(self) -> str | None:
        return f"C({self.group_factor}, Sum)" if self.group_factor else None

    def rhs(self) -> str:
        blocks = ["(" + " + ".join(self.quantitative) + ")"]
        if self.school_factors:
            blocks.append("(" + " + ".join(self.school_factors) + ")")
        if self.group_term:
            blocks.append(self.group_term)
        return " * ".join(blocks)

    def formula(self) -> str:
        return f"{self.response} ~ {self.rhs()}"

    def categorical_columns(self) -> list[str]:
        return [*self.school_factors, *([self.group_factor] if self.group_factor else [])]

    def predictor_columns(self) -> list[str]:
        cols = [*self.quantitative, *self.school_factors]
        if self.group_factor:
            cols.append(self.group_factor)
        return list(dict.fromkeys(cols))

    def required_columns(self) -> list[str]:
        return list(dict.fromkeys([self.response, self.weight, *self.predictor_columns()]))


def binomial_loglike(y: np.ndarray, mu: np.ndarray, weights: np.ndarray) -> float:
    """Weighted binomial log-likelihood kernel: sum w * (y log mu + (1 - y) log(1 - mu))."""
    mu = np.clip(mu, 1e-12, 1.0 - 1e-12)
    return float(np.sum(weights * (y * np.log(mu) + (1.0 - y) * np.log1p(-mu))))


def check_weights(df: pl.DataFrame, weight: str) -> np.ndarray:
    """Return weights as an array, or raise ModelFitError if any is missing or <= 0."""
    w = df.get_column(weight).cast(pl.Float64).to_numpy()
    bad = ~np.isfinite(w) | (w <= 0)
    if bad.any():
        raise ModelFitError(
            f"{int(bad.sum()):,} rows reach the fitter with missing or non-positive {weight}; "
            "these should have been dropped during aggregation"
        )
    return w


class DesignFrame:
    """Full-interaction design matrix plus the term -> column mapping."""

    def __init__(self, data: pl.DataFrame, spec: ModelSpec):
        missing = [c for c in spec.required_columns() if c not in data.columns]
        if missing:
            raise ValueError(f"Model data missing columns: {missing}")
        if data.height == 0:
            raise ValueError("Model data is empty")

        self.spec = spec
        self.weights = check_weights(data, spec.weight)

        pdf = data.select(spec.required_columns()).to_pandas()
        y, X = patsy.dmatrices(spec.formula(), pdf, return_type="dataframe", NA_action="raise")

        self.design_info = X.design_info
        self.exog: pd.DataFrame = X
        self.endog = np.asarray(y.iloc[:, 0], dtype=np.float64)
        self.n_obs = len(self.endog)
        self.levels: dict[str, set[Any]] = {
            c: set(data.get_column(c).unique().to_list()) for c in spec.categorical_columns()
        }

        self.intercept_columns: list[int] = []
        self.term_columns: dict[Term, list[int]] = {}
        self.term_names: dict[Term, str] = {}
        for term, sl in self.design_info.term_slices.items():
            cols = list(range(sl.start, sl.stop))
            if not term.factors:
                self.intercept_columns = cols
                continue
            key = frozenset(f.name() for f in term.factors)
            self.term_columns[key] = cols
            self.term_names[key] = term.name()

        # patsy design order, also the tie-break order during selection
        self.scope: tuple[Term, ...] = tuple(self.term_columns)

    def columns_for(self, terms: tuple[Term, ...]) -> list[int]:
        cols = list(self.intercept_columns)
        for t in terms:
            cols.extend(self.term_columns[t])
        return sorted(cols)

    def label(self, term: Term) -> str:
        return self.term_names[term]

    def fit_columns(self, cols: list[int]) -> Any:
        X = self.exog.iloc[:, cols]
        model = sm.GLM(self.endog, X, family=sm.families.Binomial(), var_weights=self.weights)
        return model.fit(method="IRLS", maxiter=100)

    def loglike(self, result: Any) -> float:
        return binomial_loglike(self.endog, np.asarray(result.fittedvalues, dtype=np.float64), self.weights)

    def bic(self, result: Any) -> float:
        k = int(round(result.df_model)) + 1
        return -2.0 * self.loglike(result) + np.log(self.n_obs) * k

    def score(self, terms: tuple[Term, ...]) -> float:
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=RuntimeWarning)
            result = self.fit_columns(self.columns_for(terms))
        return self.bic(result)


@dataclass
class FittedModel:
    """A fitted weighted logit with the terms it uses."""

    spec: ModelSpec
    terms: tuple[Term, ...]
    term_names: list[str]
    result: Any
    design_info: Any
    columns: list[int]
    loglike: float
    bic: float
    n_obs: int
    levels: dict[str, set[Any]] = field(default_factory=dict)

    @property
    def params(self) -> pd.Series:
        return self.result.params

    def coefficients(self) -> dict[str, float]:
        return {str(k): float(v) for k, v in self.params.items()}

    def odds_ratios(self) -> dict[str, float]:
        return {str(k): float(np.exp(v)) for k, v in self.params.items()}

    def coefficient_table(self) -> pl.DataFrame:
        params = self.params
        return pl.DataFrame({
            "term": [str(k) for k in params.index],
            "coef": params.to_numpy(dtype=np.float64),
            "odds_ratio": np.exp(params.to_numpy(dtype=np.float64)),
            "std_err": np.asarray(self.result.bse, dtype=np.float64),
            "z": np.asarray(self.result.tvalues, dtype=np.float64),
            "p_value": np.asarray(self.result.pvalues, dtype=np.float64),
        })

    def design(self, df: pl.DataFrame) -> np.ndarray:
        """Design matrix of ``df`` in the training coding.

        Raises:
            ValueError: if ``df`` holds a categorical level never seen in training
        """
        for col, seen in self.levels.items():
            unseen = sorted(set(df.get_column(col).unique().to_list()) - seen, key=str)
            if unseen:
                raise ValueError(f"{col} levels absent from the training data: {unseen}")

        pdf = df.select(self.spec.predictor_columns()).to_pandas()
        try:
            (X,) = patsy.build_design_matrices([self.design_info], pdf, return_type="dataframe", NA_action="raise")
        except patsy.PatsyError as e:
            raise ValueError(f"Cannot build the model design for new rows: {e}") from e
        return X.iloc[:, self.columns].to_numpy(dtype=np.float64)

    def predict(self, df: pl.DataFrame) -> np.ndarray:
        """Predicted match probability for each row of ``df``."""
        return np.asarray(self.result.predict(self.design(df)), dtype=np.float64)

    def summary_text(self) -> str:
        return self.result.summary().as_text()


def _fitted_model(design: DesignFrame, terms: tuple[Term, ...]) -> FittedModel:
    cols = design.columns_for(terms)
    X = design.exog.iloc[:, cols].to_numpy(dtype=np.float64)

    rank = np.linalg.matrix_rank(X * np.sqrt(design.weights)[:, None])
    if rank < X.shape[1]:
        raise ModelFitError(
            f"Weighted design matrix is rank-deficient (rank {rank} < {X.shape[1]} columns); "
            "coefficients are not identifiable"
        )

    result = design.fit_columns(cols)
    if not bool(getattr(result, "converged", True)):
        raise ModelFitError("IRLS did not converge for the selected model")

    return FittedModel(
        spec=design.spec,
        terms=terms,
        term_names=[design.label(t) for t in terms],
        result=result,
        design_info=design.design_info,
        columns=cols,
        loglike=design.loglike(result),
        bic=design.bic(result),
        n_obs=design.n_obs,
        levels=design.levels,
    )


def fit_weighted_logit(
    train: pl.DataFrame,
    spec: ModelSpec | None = None,
    terms: tuple[Term, ...] | None = None,
    *,
    design: DesignFrame | None = None,
) -> FittedModel:
    """Fit the given terms (default: every term of the full formula)."""
    spec = spec or ModelSpec()
    design = design or DesignFrame(train, spec)
    terms = design.scope if terms is None else tuple(t for t in design.scope if t in set(terms))
    return _fitted_model(design, terms)


def fit_null_model(
    train: pl.DataFrame,
    spec: ModelSpec | None = None,
    *,
    design: DesignFrame | None = None,
) -> FittedModel:
    """Intercept-only model with the same response and weights."""
    return fit_weighted_logit(train, spec, terms=(), design=design)


def build_model(
    train: pl.DataFrame,
    spec: ModelSpec | None = None,
    strategy: SearchStrategy | None = None,
    *,
    design: DesignFrame | None = None,
) -> tuple[FittedModel, SelectionResult]:
    """
    Fit the full-interaction model and prune it by stepwise BIC.

    Returns:
        (selected FittedModel, SelectionResult with the accepted moves)

    Raises:
        ModelFitError: if weights are invalid, or the selected model is
            rank-deficient or does not converge
    """
    spec = spec or ModelSpec()
    design = design or DesignFrame(train, spec)

    logger.info("Building weighted logit: %s", spec.formula())
    logger.info(
        "  %s training rows, %d candidate terms, %d design columns, weights=%s",
        f"{design.n_obs:,}",
        len(design.scope),
        design.exog.shape[1],
        spec.weight,
    )

    selection = select_terms(design.scope, design.score, strategy, label=design.label)
    model = _fitted_model(design, selection.terms)

    logger.info("  Selected terms: %s", model.term_names or ["(intercept only)"])
    logger.info("  loglike=%.3f, BIC=%.3f", model.loglike, model.bic)

    return model, selection
