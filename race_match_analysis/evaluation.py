# race_match_analysis/evaluation.py
"""In-sample and out-of-sample diagnostics for the fitted model."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass

import numpy as np
import polars as pl
from scipy import stats as scipy_stats
from sklearn.metrics import mean_squared_error

from race_match_analysis.model import FittedModel, fit_null_model

__all__ = [
    "HoldoutMetrics",
    "calibration_check",
    "fit_null_model",
    "holdout_metrics",
    "mcfadden_r2",
    "odds_ratios",
    "weighted_mean_response",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldoutMetrics:
    n_holdout: int
    rmse: float
    r2: float

    def to_dict(self) -> dict[str, float | int]:
        return asdict(self)


def mcfadden_r2(model: FittedModel, null_model: FittedModel) -> float:
    """McFadden's pseudo R²: 1 - loglike(model) / loglike(null)."""
    if null_model.loglike == 0.0:
        raise ValueError("Null model log-likelihood is zero; pseudo R² is undefined")
    return float(1.0 - model.loglike / null_model.loglike)


def holdout_metrics(model: FittedModel, holdout: pl.DataFrame) -> HoldoutMetrics:
    """RMSE and squared Pearson r between predicted and observed response on held-out rows."""
    if holdout.height == 0:
        raise ValueError("Holdout set is empty")

    actual = holdout.get_column(model.spec.response).cast(pl.Float64).to_numpy()
    predicted = model.predict(holdout)

    rmse = float(np.sqrt(mean_squared_error(actual, predicted)))

    if holdout.height < 2 or np.ptp(actual) == 0 or np.ptp(predicted) == 0:
        logger.warning("  Holdout r² undefined (constant predictions or observations)")
        r2 = float("nan")
    else:
        r, _p = scipy_stats.pearsonr(predicted, actual)
        r2 = float(r**2)

    logger.info("Holdout (%s rows): RMSE=%.4f, r²=%.4f", f"{holdout.height:,}", rmse, r2)
    return HoldoutMetrics(n_holdout=holdout.height, rmse=rmse, r2=r2)


def odds_ratios(model: FittedModel) -> dict[str, float]:
    """exp(coefficient) per design column, the odds multiplier for a one-unit change."""
    return model.odds_ratios()


def weighted_mean_response(df: pl.DataFrame, response: str = "matchProp", weight: str = "totalTeacher") -> float:
    return float(df.select((pl.col(response) * pl.col(weight)).sum() / pl.col(weight).sum()).item())


def calibration_check(model: FittedModel, train: pl.DataFrame) -> dict[str, float]:
    """Compare weighted mean prediction with weighted mean observed response on training rows."""
    w = train.get_column(model.spec.weight).cast(pl.Float64).to_numpy()
    predicted = model.predict(train)
    observed = weighted_mean_response(train, model.spec.response, model.spec.weight)
    mean_pred = float(np.sum(w * predicted) / np.sum(w))
    logger.info("  Calibration: weighted mean predicted=%.4f, observed=%.4f", mean_pred, observed)
    return {
        "weighted_mean_predicted": mean_pred,
        "weighted_mean_observed": observed,
        "mean_predicted": float(predicted.mean()),
        "mean_observed": float(train.get_column(model.spec.response).mean()),
    }
