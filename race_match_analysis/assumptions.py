# race_match_analysis/assumptions.py
"""
Pre-fit diagnostics for the logistic model.

- Multicollinearity: pairwise Pearson correlations among quantitative predictors
- Linearity of the logit: empirical log-odds of the response against each
  quantitative predictor

These only inform modeling choices; nothing here stops the pipeline.
"""

from __future__ import annotations

import logging

import numpy as np
import polars as pl

logger = logging.getLogger(__name__)


def correlation_matrix(df: pl.DataFrame, predictors: list[str]) -> pl.DataFrame:
    """Pearson correlation matrix, one row per predictor with a 'variable' column."""
    corr = df.select(pl.col(predictors).cast(pl.Float64)).corr()
    return corr.insert_column(0, pl.Series("variable", predictors))


def flag_collinear_pairs(corr: pl.DataFrame, threshold: float = 0.8) -> list[tuple[str, str, float]]:
    """Return predictor pairs with |r| above threshold (upper triangle only)."""
    names = [c for c in corr.columns if c != "variable"]
    values = corr.select(names).to_numpy()

    flagged: list[tuple[str, str, float]] = []
    for i in range(len(names)):
        for j in range(i + 1, len(names)):
            r = float(values[i, j])
            if np.isfinite(r) and abs(r) > threshold:
                flagged.append((names[i], names[j], r))

    if flagged:
        for a, b, r in flagged:
            logger.warning("  Collinear predictors: %s ~ %s (r=%.3f > %.2f)", a, b, r, threshold)
    else:
        logger.info("  No predictor pair exceeds |r| > %.2f", threshold)

    return flagged


def logit_linearity_series(
    df: pl.DataFrame,
    predictors: list[str],
    response: str = "matchProp",
) -> pl.DataFrame:
    """
    Long-form (predictor, value, log_odds) series for linearity inspection.

    log_odds = log(p / (1 - p)) of the observed response. Rows with p of
    exactly 0 or 1 have infinite log-odds and are left out.
    """
    usable = df.filter((pl.col(response) > 0) & (pl.col(response) < 1)).with_columns(
        (pl.col(response) / (1 - pl.col(response))).log().alias("log_odds")
    )

    n_excluded = df.height - usable.height
    if n_excluded > 0:
        logger.info("  Logit linearity: %s rows with %s in {0, 1} excluded", f"{n_excluded:,}", response)

    return pl.concat([
        usable.select(
            pl.lit(p).alias("predictor"),
            pl.col(p).cast(pl.Float64).alias("value"),
            pl.col("log_odds"),
        )
        for p in predictors
    ])


def logit_linearity_summary(series: pl.DataFrame) -> dict[str, float]:
    """Pearson r between each predictor and the empirical log-odds."""
    summary = (
        series.group_by("predictor", maintain_order=True)
        .agg(pl.corr("value", "log_odds").alias("r"))
        .iter_rows(named=True)
    )
    out = {row["predictor"]: float(row["r"]) if row["r"] is not None else float("nan") for row in summary}
    for name, r in out.items():
        logger.info("  log-odds vs %s: r=%.3f", name, r)
    return out
